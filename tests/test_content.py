from __future__ import annotations

import json
from pathlib import Path

import pytest

from ssb_trainer.content import (
    add_mock_test,
    add_oir_question,
    add_picture,
    add_text_item,
    import_lines,
    main,
    parse_answer,
    questions_from_csv,
)
from ssb_trainer.kinds import OIR, PPDT, SRT, WAT
from ssb_trainer.persistence import SqliteDocumentStore
from ssb_trainer.stimuli import StimulusSource, load_mock_tests


@pytest.fixture
def store() -> SqliteDocumentStore:
    s = SqliteDocumentStore(":memory:")
    yield s
    s.close()


def test_text_items_feed_the_pool(store: SqliteDocumentStore) -> None:
    assert add_text_item(store, "wat", "  courage ") is not None
    assert add_text_item(store, "wat", "   ") is None
    pool = StimulusSource(store).load_pool(WAT)
    assert [w.text for w in pool] == ["courage"]  # type: ignore[union-attr]


def test_text_items_reject_other_kinds(store: SqliteDocumentStore) -> None:
    with pytest.raises(ValueError):
        add_text_item(store, "tat", "story")


def test_import_lines_skips_header_and_blank_lines(tmp_path: Path, store: SqliteDocumentStore) -> None:
    csv_path = tmp_path / "srt.csv"
    csv_path.write_text("situation\nHe saw a fire.\n\nHis friend was injured.\n", encoding="utf-8")

    ids = import_lines(store, "srt", csv_path)
    assert len(ids) == 2
    texts = sorted(s.text for s in StimulusSource(store).load_pool(SRT))  # type: ignore[union-attr]
    assert texts == ["He saw a fire.", "His friend was injured."]


def test_import_lines_with_only_a_header_fails(tmp_path: Path, store: SqliteDocumentStore) -> None:
    csv_path = tmp_path / "words.csv"
    csv_path.write_text("word\n", encoding="utf-8")
    with pytest.raises(ValueError):
        import_lines(store, "wat", csv_path)


def test_add_picture_stores_relative_path_inside_media_dir(tmp_path: Path, store: SqliteDocumentStore) -> None:
    media = tmp_path / "media"
    (media / "ppdt").mkdir(parents=True)
    pic = media / "ppdt" / "scene.png"
    pic.write_bytes(b"not really a png")
    outside = tmp_path / "other.png"
    outside.write_bytes(b"x")

    add_picture(store, "ppdt", pic, media_dir=media)
    add_picture(store, "ppdt", outside, media_dir=media, title="Outside")

    docs = store.query(PPDT.collection)  # type: ignore[arg-type]
    assert docs[0].get("storagePath") == "ppdt/scene.png"
    assert docs[0].get("title") == "PPDT Picture 1"
    assert docs[1].get("storagePath") == str(outside.resolve())
    assert docs[1].get("title") == "Outside"

    with pytest.raises(FileNotFoundError):
        add_picture(store, "tat", tmp_path / "missing.png", media_dir=media)
    with pytest.raises(ValueError):
        add_picture(store, "wat", pic, media_dir=media)


@pytest.mark.parametrize(("raw", "idx"), [("A", 0), ("d", 3), ("2", 2), (1, 1)])
def test_parse_answer(raw: object, idx: int) -> None:
    assert parse_answer(raw) == idx


@pytest.mark.parametrize("raw", ["E", "AB", "", 4, True])
def test_parse_answer_rejects(raw: object) -> None:
    with pytest.raises(ValueError):
        parse_answer(raw)


def test_oir_question_round_trips_into_a_pool(store: SqliteDocumentStore) -> None:
    add_oir_question(store, question="Odd one out?", options=["2", "4", "7", "8"], correct_answer="C")
    pool = StimulusSource(store).load_pool(OIR)
    q = pool[0]
    assert q.correct_option_index == 2  # type: ignore[union-attr]
    assert q.options == ("2", "4", "7", "8")  # type: ignore[union-attr]


def test_questions_from_csv_skips_incomplete_rows(tmp_path: Path) -> None:
    path = tmp_path / "mock.csv"
    path.write_text(
        "Question,OptionA,OptionB,OptionC,OptionD,CorrectAnswer,Explanation\n"
        "Capital of India?,Delhi,Mumbai,Pune,Agra,A,It is Delhi.\n"
        "Broken row,one,two,,,B,\n"
        "2+3?,4,5,6,7,B,\n",
        encoding="utf-8",
    )
    rows = questions_from_csv(path)
    assert [r["question"] for r in rows] == ["Capital of India?", "2+3?"]
    assert [r["correctAnswer"] for r in rows] == [0, 1]
    assert rows[0]["explanation"] == "It is Delhi."


def test_add_mock_test_is_loadable(store: SqliteDocumentStore) -> None:
    add_mock_test(
        store,
        title="Reasoning 1",
        duration_minutes=20,
        questions=[
            {"question": "Q1", "options": ["a", "b", "c", "d"], "correctAnswer": "B"},
            {"id": "custom", "question": "Q2", "options": ["a", "b"], "correctAnswer": 0},
        ],
    )
    tests = load_mock_tests(store)
    assert len(tests) == 1
    assert tests[0].duration_minutes == 20
    assert tests[0].pool.ids() == ["q1", "custom"]

    with pytest.raises(ValueError):
        add_mock_test(store, title="", duration_minutes=10, questions=[])


def test_cli_words_and_mock(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    db = tmp_path / "cli.sqlite3"
    monkeypatch.setenv("SSB_TRAINER_DB_PATH", str(db))
    monkeypatch.setenv("SSB_TRAINER_MEDIA_DIR", str(tmp_path / "media"))

    assert main(["words", "--text", "honour", "--text", "valour"]) == 0

    mock_path = tmp_path / "mock.json"
    mock_path.write_text(
        json.dumps(
            {
                "title": "Mini",
                "duration": 5,
                "questions": [{"question": "Q", "options": ["x", "y"], "correctAnswer": 1}],
            }
        ),
        encoding="utf-8",
    )
    assert main(["mock", str(mock_path)]) == 0
    assert main(["mock", str(tmp_path / "missing.json")]) == 1

    store = SqliteDocumentStore(db)
    try:
        assert len(store.query("ssb_wat_words")) == 2
        assert [t.title for t in load_mock_tests(store)] == ["Mini"]
    finally:
        store.close()
