from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse
from urllib.request import url2pathname

from .errors import PersistFailure
from .kinds import CONFIGS, ExamKind, PersistShape, mock_test_config
from .results import AttemptRecord, utc_now_iso

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


@dataclass(frozen=True, slots=True)
class Document:
    id: str
    fields: dict[str, Any]

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)


ChangeCallback = Callable[[list[Document]], None]


class DocumentStore(Protocol):
    """Collection-of-JSON-documents store (create/query/listen)."""

    def query(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Mapping[str, Any] | None = None,
    ) -> list[Document]: ...

    def create(self, collection: str, fields: Mapping[str, Any]) -> str: ...

    def subscribe(
        self,
        collection: str,
        on_change: ChangeCallback,
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> Callable[[], None]: ...


class BlobStore(Protocol):
    def get_public_url(self, path: str) -> str: ...


def open_db(path: Path | str) -> sqlite3.Connection:
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA foreign_keys=ON;")
    if str(path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS document (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                collection TEXT NOT NULL,
                created_at_utc TEXT NOT NULL,
                body TEXT NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_document_collection ON document(collection, seq);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def _sort_documents(
    rows: list[tuple[int, Document]],
    order_by: str | None,
    descending: bool,
) -> list[Document]:
    if order_by is None:
        ordered = sorted(rows, key=lambda r: r[0], reverse=descending)
        return [doc for _, doc in ordered]

    present = [r for r in rows if r[1].fields.get(order_by) is not None]
    missing = [r for r in rows if r[1].fields.get(order_by) is None]
    try:
        present.sort(key=lambda r: (r[1].fields[order_by], r[0]), reverse=descending)
    except TypeError:
        present.sort(key=lambda r: (str(r[1].fields[order_by]), r[0]), reverse=descending)
    return [doc for _, doc in present] + [doc for _, doc in missing]


class SqliteDocumentStore:
    """Local stand-in for the managed document database.

    Listeners registered with ``subscribe`` are notified in-process after
    every ``create`` into their collection.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = path
        self._conn = open_db(path)
        self._listeners: dict[str, list[tuple[int, ChangeCallback, str | None, bool]]] = {}
        self._next_listener = 0

    def close(self) -> None:
        self._listeners.clear()
        self._conn.close()

    def query(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Mapping[str, Any] | None = None,
    ) -> list[Document]:
        cur = self._conn.execute(
            "SELECT seq, id, body FROM document WHERE collection = ? ORDER BY seq",
            (collection,),
        )
        rows: list[tuple[int, Document]] = []
        for seq, doc_id, body in cur.fetchall():
            fields = json.loads(body)
            if where is not None and any(fields.get(k) != v for k, v in where.items()):
                continue
            rows.append((int(seq), Document(id=str(doc_id), fields=fields)))
        return _sort_documents(rows, order_by, descending)

    def create(self, collection: str, fields: Mapping[str, Any]) -> str:
        if not collection:
            raise ValueError("collection must be non-empty")
        doc_id = uuid.uuid4().hex[:20]
        body = json.dumps(dict(fields), default=str)
        with self._conn:
            self._conn.execute(
                "INSERT INTO document(id, collection, created_at_utc, body) VALUES (?, ?, ?, ?)",
                (doc_id, collection, utc_now_iso(), body),
            )
        self._notify(collection)
        return doc_id

    def subscribe(
        self,
        collection: str,
        on_change: ChangeCallback,
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> Callable[[], None]:
        token = self._next_listener
        self._next_listener += 1
        self._listeners.setdefault(collection, []).append((token, on_change, order_by, descending))
        on_change(self.query(collection, order_by=order_by, descending=descending))

        def unsubscribe() -> None:
            entries = self._listeners.get(collection, [])
            self._listeners[collection] = [e for e in entries if e[0] != token]

        return unsubscribe

    def _notify(self, collection: str) -> None:
        for _, callback, order_by, descending in list(self._listeners.get(collection, [])):
            callback(self.query(collection, order_by=order_by, descending=descending))


class LocalBlobStore:
    """Resolves storage paths under a media directory to ``file://`` URLs."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def get_public_url(self, path: str) -> str:
        p = Path(path)
        if not p.is_absolute():
            p = self._root / p
        return p.resolve().as_uri()

    @staticmethod
    def local_path(url: str) -> Path | None:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            return Path(url2pathname(parsed.path))
        if parsed.scheme == "":
            return Path(url)
        return None


class PersistStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    FAILED = "failed"


class AttemptRecorder:
    """Queues attempt records and writes them one at a time from ``update()``.

    Failures never propagate: the record is parked for ``retry()`` and the
    failure callback is told so the UI can notify the user. There is no
    idempotency key, so a retry after a partial failure can duplicate.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        on_failure: Callable[[PersistFailure], None] | None = None,
    ) -> None:
        self._store = store
        self._on_failure = on_failure
        self._pending: deque[AttemptRecord] = deque()
        self._failed: list[AttemptRecord] = []
        self._saved_ids: list[str] = []
        self._status = PersistStatus.IDLE
        self._last_error: PersistFailure | None = None

    @property
    def status(self) -> PersistStatus:
        return self._status

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def failed(self) -> list[AttemptRecord]:
        return list(self._failed)

    @property
    def saved_ids(self) -> list[str]:
        return list(self._saved_ids)

    @property
    def last_error(self) -> PersistFailure | None:
        return self._last_error

    def submit(self, record: AttemptRecord) -> None:
        self._pending.append(record)
        self._status = PersistStatus.SAVING

    def persist(self, record: AttemptRecord) -> str:
        try:
            return self._store.create(record.collection, record.to_document())
        except PersistFailure:
            raise
        except Exception as exc:
            raise PersistFailure(record.collection, str(exc) or type(exc).__name__) from exc

    def update(self) -> None:
        if not self._pending:
            return
        record = self._pending.popleft()
        try:
            doc_id = self.persist(record)
        except PersistFailure as exc:
            logger.error("%s", exc, exc_info=exc.__cause__ is not None)
            self._failed.append(record)
            self._last_error = exc
            self._status = PersistStatus.FAILED
            if self._on_failure is not None:
                self._on_failure(exc)
            return

        logger.info("saved %s attempt %s to %s", record.test_kind.value, doc_id, record.collection)
        self._saved_ids.append(doc_id)
        if self._pending:
            self._status = PersistStatus.SAVING
        elif self._failed:
            self._status = PersistStatus.FAILED
        else:
            self._status = PersistStatus.SAVED

    def retry(self) -> int:
        n = len(self._failed)
        if n == 0:
            return 0
        self._pending.extend(self._failed)
        self._failed.clear()
        self._status = PersistStatus.SAVING
        return n

    def flush(self) -> None:
        # Each queued record is attempted once; failures stay parked.
        for _ in range(len(self._pending)):
            self.update()


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    kind: ExamKind
    document: Document

    @property
    def created_at(self) -> str:
        return str(self.document.get("createdAt", ""))

    def summary(self) -> str:
        doc = self.document
        when = self.created_at.replace("T", " ").rstrip("Z")
        if self.kind is ExamKind.TAT:
            words = len(str(doc.get("story", "")).split())
            return f"{when}  TAT picture {doc.get('pictureOrder', '?')}: {words} words"
        label = doc.get("testTitle") or self.kind.value.upper()
        return (
            f"{when}  {label}: {doc.get('score', 0)}% "
            f"({doc.get('correctAnswers', 0)}/{doc.get('totalQuestions', 0)})"
        )


def _history_collections(user_id: str) -> list[tuple[ExamKind, str]]:
    out = [
        (cfg.kind, cfg.attempts_collection_for(user_id))
        for cfg in CONFIGS.values()
        if cfg.persist_shape is not PersistShape.NOTHING
    ]
    mock = mock_test_config(title="", duration_minutes=1)
    out.append((ExamKind.MOCK, mock.attempts_collection_for(user_id)))
    return out


def attempt_history(
    store: DocumentStore,
    user_id: str,
    kind: ExamKind | None = None,
) -> list[HistoryEntry]:
    """The user's attempts across persisted kinds, newest first."""

    entries: list[HistoryEntry] = []
    for k, collection in _history_collections(user_id):
        if kind is not None and k is not kind:
            continue
        for doc in store.query(collection, where={"userId": user_id}):
            entries.append(HistoryEntry(kind=k, document=doc))
    entries.sort(key=lambda e: e.created_at, reverse=True)
    return entries


def subscribe_history(
    store: DocumentStore,
    user_id: str,
    on_change: Callable[[list[HistoryEntry]], None],
) -> Callable[[], None]:
    """Live attempt history; returns the unsubscribe function."""

    collections = _history_collections(user_id)
    ready = False

    def _refresh(_docs: list[Document]) -> None:
        if ready:
            on_change(attempt_history(store, user_id))

    unsubscribers = [store.subscribe(c, _refresh) for _, c in collections]
    ready = True
    on_change(attempt_history(store, user_id))

    def unsubscribe() -> None:
        for u in unsubscribers:
            u()

    return unsubscribe
