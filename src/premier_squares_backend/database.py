"""
SQLite-backed document store.

Documents are JSON objects grouped into named collections and addressed by
an opaque id, the same shape of API a hosted document database offers
(add / get / list / update). Two conditional writes run inside a single
``BEGIN IMMEDIATE`` transaction so that read-validate-write sequences are
atomic:

- ``atomic_update``: read one document, let the caller compute the change
  (or refuse it by raising), write the change.
- ``add_if_empty``: insert a document only if its collection is empty.

When no database path is configured, ``create_store`` returns an
``UnavailableDocumentStore`` whose every call raises ``ServiceUnavailable``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from uuid import uuid4

from .errors import ServiceUnavailable

logger = logging.getLogger(__name__)

Mutation = Callable[[Dict[str, Any]], Dict[str, Any]]


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


@dataclass
class Document:
    """A stored document: its id plus its JSON fields."""

    id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.data}


class DocumentStore:
    """Interface shared by every store implementation."""

    available = True

    def add(self, collection: str, data: Dict[str, Any]) -> Document:
        raise NotImplementedError

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    def list(self, collection: str, limit: Optional[int] = None) -> List[Document]:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> Optional[Document]:
        raise NotImplementedError

    def atomic_update(self, collection: str, doc_id: str, mutate: Mutation) -> Optional[Document]:
        raise NotImplementedError

    def add_if_empty(self, collection: str, data: Dict[str, Any]) -> Tuple[Document, bool]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class UnavailableDocumentStore(DocumentStore):
    """Stand-in used when no store is configured; every call fails with 503."""

    available = False

    def __init__(self, reason: str = "Document store is not configured") -> None:
        self.reason = reason

    def _fail(self) -> ServiceUnavailable:
        return ServiceUnavailable(self.reason)

    def add(self, collection, data):
        raise self._fail()

    def get(self, collection, doc_id):
        raise self._fail()

    def list(self, collection, limit=None):
        raise self._fail()

    def update(self, collection, doc_id, changes):
        raise self._fail()

    def atomic_update(self, collection, doc_id, mutate):
        raise self._fail()

    def add_if_empty(self, collection, data):
        raise self._fail()


class SQLiteDocumentStore(DocumentStore):
    """
    SQLite database holding JSON documents.

    Thread-safe: every call opens its own connection, SQLite serializes
    writers, and WAL mode lets readers proceed during writes.
    """

    def __init__(self, db_path: Path, timeout: float = 30.0):
        self.db_path = Path(db_path)
        self.timeout = timeout
        _ensure_db_dir(self.db_path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as exc:
            logger.error(f"Could not open document store at {self.db_path}: {exc}")
            raise ServiceUnavailable("Document store is unreachable") from exc
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside one write transaction.

        ``BEGIN IMMEDIATE`` takes the write lock up front, so a read made in
        the block cannot go stale before the block's write commits. Any
        exception rolls the transaction back and propagates; SQLite errors
        surface as ``ServiceUnavailable``.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            logger.error(f"Document store transaction failed: {exc}", exc_info=True)
            raise ServiceUnavailable("Document store is unreachable") from exc
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        except sqlite3.Error as exc:
            logger.error(f"Document store read failed: {exc}", exc_info=True)
            raise ServiceUnavailable("Document store is unreachable") from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    UNIQUE (collection, id)
                )
            """)

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(id=row["id"], data=json.loads(row["data"]))

    @staticmethod
    def _select(conn: sqlite3.Connection, collection: str, doc_id: str) -> Optional[Document]:
        row = conn.execute(
            "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
        ).fetchone()
        return SQLiteDocumentStore._row_to_document(row) if row else None

    @staticmethod
    def _insert(conn: sqlite3.Connection, collection: str, data: Dict[str, Any]) -> Document:
        doc_id = uuid4().hex
        conn.execute(
            "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)",
            (collection, doc_id, json.dumps(data)),
        )
        return Document(id=doc_id, data=dict(data))

    def add(self, collection: str, data: Dict[str, Any]) -> Document:
        """
        Store a new document and assign its id.

        Args:
            collection: Collection name
            data: JSON-serializable document fields

        Returns:
            The stored document
        """
        with self._transaction() as conn:
            return self._insert(conn, collection, data)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._reader() as conn:
            return self._select(conn, collection, doc_id)

    def list(self, collection: str, limit: Optional[int] = None) -> List[Document]:
        """List documents of a collection in insertion order."""
        query = "SELECT id, data FROM documents WHERE collection = ? ORDER BY seq"
        params: Tuple[Any, ...] = (collection,)
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)
        with self._reader() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_document(row) for row in rows]

    def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> Optional[Document]:
        """Merge ``changes`` into a document. Returns None if it does not exist."""
        return self.atomic_update(collection, doc_id, lambda _data: changes)

    def atomic_update(self, collection: str, doc_id: str, mutate: Mutation) -> Optional[Document]:
        """
        Read, validate and write one document under the write lock.

        Args:
            collection: Collection name
            doc_id: Document id
            mutate: Receives a copy of the current fields and returns the
                fields to merge in. Raising from it aborts without writing.

        Returns:
            The updated document, or None if it does not exist
        """
        with self._transaction() as conn:
            current = self._select(conn, collection, doc_id)
            if current is None:
                return None

            changes = mutate(dict(current.data))
            merged = {**current.data, **changes}
            conn.execute(
                "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
                (json.dumps(merged), collection, doc_id),
            )
            return Document(id=doc_id, data=merged)

    def add_if_empty(self, collection: str, data: Dict[str, Any]) -> Tuple[Document, bool]:
        """
        Insert ``data`` only when the collection holds no document yet.

        Returns:
            ``(document, True)`` when inserted, otherwise the first existing
            document and False
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? ORDER BY seq LIMIT 1",
                (collection,),
            ).fetchone()
            if row:
                return self._row_to_document(row), False
            return self._insert(conn, collection, data), True


def create_store(config: Any) -> DocumentStore:
    """
    Build the store described by the ``store`` config section.

    Returns an ``UnavailableDocumentStore`` when no path is configured or the
    database cannot be opened, so requests fail with 503 instead of the
    service refusing to boot.
    """
    path = config.get("path") if config is not None else None
    if not path:
        logger.warning("Document store path not configured; store calls will return 503")
        return UnavailableDocumentStore()

    try:
        store = SQLiteDocumentStore(Path(path), timeout=float(config.get("timeout_seconds", 30)))
    except (ServiceUnavailable, OSError) as exc:
        logger.error(f"Document store initialization failed: {exc}")
        return UnavailableDocumentStore("Document store is unreachable")

    logger.info(f"Document store ready at {store.db_path}")
    return store
