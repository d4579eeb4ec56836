"""Content authoring for the local document store.

Adds WAT words and SRT situations (single text or one-per-line CSV with a
header row), registers picture files that already sit in the media
directory, and adds OIR questions and mock tests.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from .config import TrainerConfig, configure_logging
from .kinds import ExamKind, config_for
from .persistence import DocumentStore, SqliteDocumentStore
from .results import utc_now_iso
from .stimuli import MOCK_TESTS_COLLECTION

logger = logging.getLogger(__name__)

_TEXT_FIELDS = {ExamKind.WAT: "word", ExamKind.SRT: "situation"}
_PICTURE_KINDS = (ExamKind.PPDT, ExamKind.TAT)
_ANSWER_LETTERS = "ABCD"


def _text_kind(kind: ExamKind | str) -> ExamKind:
    kind = ExamKind(kind)
    if kind not in _TEXT_FIELDS:
        raise ValueError(f"{kind.value} does not take text items")
    return kind


def add_text_item(
    store: DocumentStore,
    kind: ExamKind | str,
    text: str,
    *,
    uploaded_by: str = "local",
) -> str | None:
    """Add one word or situation. Blank text is ignored (returns None)."""

    kind = _text_kind(kind)
    text = text.strip()
    if not text:
        return None
    cfg = config_for(kind)
    assert cfg.collection is not None
    return store.create(
        cfg.collection,
        {_TEXT_FIELDS[kind]: text, "createdAt": utc_now_iso(), "uploadedBy": uploaded_by},
    )


def import_lines(
    store: DocumentStore,
    kind: ExamKind | str,
    path: Path,
    *,
    uploaded_by: str = "local",
) -> list[str]:
    """Import one item per line; the first line is a header and is skipped."""

    kind = _text_kind(kind)
    lines = [ln.strip() for ln in Path(path).read_text(encoding="utf-8").splitlines()]
    lines = [ln for ln in lines if ln]
    ids: list[str] = []
    for line in lines[1:]:
        doc_id = add_text_item(store, kind, line, uploaded_by=uploaded_by)
        if doc_id is not None:
            ids.append(doc_id)
    if not ids:
        raise ValueError(f"no items found in {path}")
    logger.info("imported %d %s items from %s", len(ids), kind.value, path)
    return ids


def add_picture(
    store: DocumentStore,
    kind: ExamKind | str,
    path: Path,
    *,
    media_dir: Path,
    title: str | None = None,
    uploaded_by: str = "local",
) -> str:
    """Register an image file for PPDT or TAT.

    Files under ``media_dir`` are stored by relative path so the media
    directory can move; anything else is stored by absolute path.
    """

    kind = ExamKind(kind)
    if kind not in _PICTURE_KINDS:
        raise ValueError(f"{kind.value} does not use pictures")
    path = Path(path).expanduser().resolve()
    if not path.is_file():
        raise FileNotFoundError(path)

    media_dir = Path(media_dir).expanduser().resolve()
    try:
        storage_path = path.relative_to(media_dir).as_posix()
    except ValueError:
        storage_path = str(path)

    cfg = config_for(kind)
    assert cfg.collection is not None
    if title is None:
        existing = len(store.query(cfg.collection))
        title = f"{kind.value.upper()} Picture {existing + 1}"
    return store.create(
        cfg.collection,
        {
            "fileName": path.name,
            "storagePath": storage_path,
            "title": title,
            "createdAt": utc_now_iso(),
            "uploadedBy": uploaded_by,
        },
    )


def parse_answer(value: Any, option_count: int = 4) -> int:
    """Accept a 0-based index or an option letter (A-D)."""

    if isinstance(value, bool):
        raise ValueError(f"invalid answer: {value!r}")
    if isinstance(value, int):
        idx = value
    else:
        token = str(value).strip().upper()
        if len(token) == 1 and token in _ANSWER_LETTERS:
            idx = _ANSWER_LETTERS.index(token)
        elif token.isdigit():
            idx = int(token)
        else:
            raise ValueError(f"invalid answer: {value!r}")
    if not (0 <= idx < option_count):
        raise ValueError(f"answer {value!r} out of range for {option_count} options")
    return idx


def question_fields(
    *,
    question: str,
    options: Sequence[str],
    correct_answer: Any,
    explanation: str = "",
    image_path: str | None = None,
) -> dict[str, Any]:
    options = [str(o).strip() for o in options]
    if len(options) < 2 or any(not o for o in options):
        raise ValueError("a question needs at least two non-empty options")
    question = question.strip()
    if not question and not image_path:
        raise ValueError("a question needs text or an image")
    fields: dict[str, Any] = {
        "question": question,
        "options": options,
        "correctAnswer": parse_answer(correct_answer, len(options)),
        "explanation": explanation.strip(),
    }
    if image_path:
        fields["storagePath"] = image_path
    return fields


def add_oir_question(store: DocumentStore, *, uploaded_by: str = "local", **kwargs: Any) -> str:
    fields = question_fields(**kwargs)
    fields["createdAt"] = utc_now_iso()
    fields["uploadedBy"] = uploaded_by
    cfg = config_for(ExamKind.OIR)
    assert cfg.collection is not None
    return store.create(cfg.collection, fields)


def questions_from_csv(path: Path) -> list[dict[str, Any]]:
    """Rows of ``Question,OptionA,OptionB,OptionC,OptionD,CorrectAnswer,Explanation``.

    Rows missing the question or any option are skipped.
    """

    out: list[dict[str, Any]] = []
    with Path(path).open(newline="", encoding="utf-8") as f:
        for i, row in enumerate(csv.DictReader(f), start=1):
            row = {str(k).strip().lower(): (v or "").strip() for k, v in row.items() if k}
            options = [row.get(f"option{c.lower()}", "") for c in _ANSWER_LETTERS]
            if not row.get("question") or not all(options):
                logger.warning("skipping row %d of %s: missing fields", i, path)
                continue
            fields = question_fields(
                question=row["question"],
                options=options,
                correct_answer=row.get("correctanswer") or 0,
                explanation=row.get("explanation", ""),
            )
            fields["id"] = f"csv_{i}"
            out.append(fields)
    return out


def add_mock_test(
    store: DocumentStore,
    *,
    title: str,
    duration_minutes: int,
    questions: Sequence[Mapping[str, Any]],
    description: str = "",
    uploaded_by: str = "local",
) -> str:
    title = title.strip()
    if not title:
        raise ValueError("mock test title must be non-empty")
    if isinstance(duration_minutes, bool) or int(duration_minutes) <= 0:
        raise ValueError("duration must be a positive number of minutes")
    if not questions:
        raise ValueError("a mock test needs at least one question")

    normalized = []
    for i, q in enumerate(questions, start=1):
        fields = question_fields(
            question=str(q.get("question", "")),
            options=list(q.get("options", ())),
            correct_answer=q.get("correctAnswer", 0),
            explanation=str(q.get("explanation", "")),
            image_path=q.get("storagePath"),
        )
        fields["id"] = str(q.get("id") or f"q{i}")
        normalized.append(fields)

    return store.create(
        MOCK_TESTS_COLLECTION,
        {
            "title": title,
            "description": description.strip(),
            "duration": int(duration_minutes),
            "questions": normalized,
            "createdAt": utc_now_iso(),
            "createdBy": uploaded_by,
        },
    )


def load_mock_test_file(path: Path) -> dict[str, Any]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return data


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ssb-trainer-content", description="Add practice content")
    p.add_argument("--db", default=None, help="Document database path (default from environment)")
    sub = p.add_subparsers(dest="cmd", required=True)

    for name in ("words", "situations"):
        sp = sub.add_parser(name, help=f"Add {name} as text or from a CSV file")
        src = sp.add_mutually_exclusive_group(required=True)
        src.add_argument("--text", action="append", default=None, help="Item text (repeatable)")
        src.add_argument("--csv", type=Path, default=None, help="One item per line, first line is a header")

    pp = sub.add_parser("picture", help="Register PPDT/TAT picture files")
    pp.add_argument("kind", choices=[k.value for k in _PICTURE_KINDS])
    pp.add_argument("files", nargs="+", type=Path)
    pp.add_argument("--title", default=None)

    op = sub.add_parser("oir", help="Add an OIR question")
    op.add_argument("--question", default="")
    op.add_argument("--option", action="append", required=True, dest="options")
    op.add_argument("--answer", required=True, help="Correct option as A-D or 0-based index")
    op.add_argument("--explanation", default="")
    op.add_argument("--image", default=None, help="Storage path of a question image")

    mp = sub.add_parser("mock", help="Add a mock test from JSON or question CSV")
    mp.add_argument("file", type=Path)
    mp.add_argument("--title", default=None)
    mp.add_argument("--duration", type=int, default=None, help="Minutes")
    return p


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    cfg = TrainerConfig.from_env()
    configure_logging(cfg.log_level)

    store = SqliteDocumentStore(Path(args.db).expanduser() if args.db else cfg.db_path)
    try:
        if args.cmd in ("words", "situations"):
            kind = ExamKind.WAT if args.cmd == "words" else ExamKind.SRT
            if args.csv is not None:
                ids = import_lines(store, kind, args.csv, uploaded_by=cfg.user_id)
            else:
                ids = [
                    i
                    for i in (add_text_item(store, kind, t, uploaded_by=cfg.user_id) for t in args.text)
                    if i is not None
                ]
            print(f"Added {len(ids)} {args.cmd}.")
        elif args.cmd == "picture":
            for f in args.files:
                add_picture(store, args.kind, f, media_dir=cfg.media_dir, title=args.title, uploaded_by=cfg.user_id)
            print(f"Added {len(args.files)} {args.kind.upper()} picture(s).")
        elif args.cmd == "oir":
            add_oir_question(
                store,
                uploaded_by=cfg.user_id,
                question=args.question,
                options=args.options,
                correct_answer=args.answer,
                explanation=args.explanation,
                image_path=args.image,
            )
            print("Added 1 OIR question.")
        elif args.cmd == "mock":
            if args.file.suffix.lower() == ".csv":
                data: dict[str, Any] = {"questions": questions_from_csv(args.file)}
            else:
                data = load_mock_test_file(args.file)
            title = args.title or data.get("title") or ""
            duration = args.duration or data.get("duration") or 60
            questions = data.get("questions") or []
            add_mock_test(
                store,
                title=str(title),
                duration_minutes=int(duration),
                questions=questions,
                description=str(data.get("description") or ""),
                uploaded_by=cfg.user_id,
            )
            print(f"Added mock test {title!r} with {len(questions)} questions.")
    except (ValueError, OSError) as exc:
        logger.error("%s", exc)
        print(f"error: {exc}")
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
