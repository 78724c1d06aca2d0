"""Document store: keyed collections of JSON documents persisted in SQLite."""

import asyncio
import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from ..errors import PersistenceError, StorageUnavailableError


logger = structlog.get_logger(__name__)

Document = Dict[str, Any]
Bound = Union[datetime, int, float, None]


class DocumentStore(ABC):
    """Opaque keyed collection API used by the session and flush paths."""

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """True once the store accepts reads and writes."""

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> str:
        """Append a document and return its generated id."""

    @abstractmethod
    async def update_one(self, collection: str, document_id: str, fields: Document) -> bool:
        """Set fields on one document. Returns False if it does not exist."""

    @abstractmethod
    async def find_one(self, collection: str, document_id: str) -> Optional[Document]:
        """Fetch one document by id."""

    @abstractmethod
    async def find(self,
                   collection: str,
                   range_field: Optional[str] = None,
                   gte: Bound = None,
                   lte: Bound = None,
                   sort_field: Optional[str] = None,
                   descending: bool = False,
                   limit: Optional[int] = None) -> List[Document]:
        """Range read over one collection."""


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"$date": _iso(value)}
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {"$date"}:
            return datetime.fromisoformat(value["$date"])
        return {key: _decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def _bound(value: Bound) -> Any:
    return _iso(value) if isinstance(value, datetime) else value


def _field_expr(field: str) -> str:
    """SQL expression reading a top-level field, unwrapping encoded datetimes."""
    if not field.replace("_", "").isalnum():
        raise ValueError(f"Invalid field name: {field!r}")
    return (
        f"COALESCE(json_extract(payload, '$.\"{field}\".\"$date\"'), "
        f"json_extract(payload, '$.\"{field}\"'))"
    )


class SQLiteDocumentStore(DocumentStore):
    """SQLite-backed document store.

    Blocking sqlite calls run in the default executor under a lock, so every
    store method is a real suspension point for the event loop.
    """

    def __init__(self,
                 database_path: Optional[str] = None,
                 in_memory: bool = False):
        if in_memory:
            self.database_path = ":memory:"
        else:
            self.database_path = database_path or "ovens.db"

        self.connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

        # Performance tracking
        self.query_count = 0
        self.insert_count = 0
        self.update_count = 0

    @property
    def is_ready(self) -> bool:
        return self.connection is not None

    async def initialize(self) -> None:
        """Open the database and create the documents table."""
        try:
            logger.info("Initializing document store", database_path=self.database_path)

            if self.database_path != ":memory:":
                Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)

            connection = sqlite3.connect(
                self.database_path,
                check_same_thread=False,
                timeout=30.0
            )

            if self.database_path != ":memory:":
                connection.execute("PRAGMA journal_mode=WAL")

            connection.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    collection TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_collection
                ON documents (collection)
            """)
            connection.commit()

            self.connection = connection
            logger.info("Document store initialized")

        except sqlite3.Error as e:
            logger.error("Failed to initialize document store", error=str(e))
            raise PersistenceError(str(e)) from e

    async def close(self) -> None:
        logger.info("Closing document store")
        with self._lock:
            if self.connection:
                self.connection.close()
                self.connection = None

    @contextmanager
    def _get_cursor(self):
        """Get a database cursor, committing on success and rolling back on error."""
        if not self.connection:
            raise StorageUnavailableError()

        cursor = self.connection.cursor()
        try:
            yield cursor
            self.connection.commit()
        except Exception as e:
            self.connection.rollback()
            logger.error("Database operation failed", error=str(e))
            raise
        finally:
            cursor.close()

    async def _run(self, operation: Callable[[], Any]) -> Any:
        if not self.is_ready:
            raise StorageUnavailableError()

        def locked():
            with self._lock:
                return operation()

        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, locked)
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e

    async def insert_one(self, collection: str, document: Document) -> str:
        document_id = uuid.uuid4().hex
        payload = json.dumps(_encode({k: v for k, v in document.items() if k != "_id"}))

        def insert():
            with self._get_cursor() as cursor:
                cursor.execute(
                    "INSERT INTO documents (id, collection, payload) VALUES (?, ?, ?)",
                    (document_id, collection, payload)
                )

        await self._run(insert)
        self.insert_count += 1
        return document_id

    async def update_one(self, collection: str, document_id: str, fields: Document) -> bool:
        def update():
            with self._get_cursor() as cursor:
                cursor.execute(
                    "SELECT payload FROM documents WHERE id = ? AND collection = ?",
                    (document_id, collection)
                )
                row = cursor.fetchone()
                if row is None:
                    return False

                payload = json.loads(row[0])
                payload.update(_encode(fields))
                cursor.execute(
                    "UPDATE documents SET payload = ? WHERE id = ?",
                    (json.dumps(payload), document_id)
                )
                return True

        updated = await self._run(update)
        self.update_count += 1
        return updated

    async def find_one(self, collection: str, document_id: str) -> Optional[Document]:
        def select():
            with self._get_cursor() as cursor:
                cursor.execute(
                    "SELECT id, payload FROM documents WHERE id = ? AND collection = ?",
                    (document_id, collection)
                )
                return cursor.fetchone()

        row = await self._run(select)
        self.query_count += 1
        return self._row_to_document(row) if row else None

    async def find(self,
                   collection: str,
                   range_field: Optional[str] = None,
                   gte: Bound = None,
                   lte: Bound = None,
                   sort_field: Optional[str] = None,
                   descending: bool = False,
                   limit: Optional[int] = None) -> List[Document]:
        query = "SELECT id, payload FROM documents WHERE collection = ?"
        params: List[Any] = [collection]

        if range_field and gte is not None:
            query += f" AND {_field_expr(range_field)} >= ?"
            params.append(_bound(gte))

        if range_field and lte is not None:
            query += f" AND {_field_expr(range_field)} <= ?"
            params.append(_bound(lte))

        if sort_field:
            query += f" ORDER BY {_field_expr(sort_field)} {'DESC' if descending else 'ASC'}, rowid"
        else:
            query += " ORDER BY rowid"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        def select():
            with self._get_cursor() as cursor:
                cursor.execute(query, params)
                return cursor.fetchall()

        rows = await self._run(select)
        self.query_count += 1
        return [self._row_to_document(row) for row in rows]

    @staticmethod
    def _row_to_document(row) -> Document:
        document = _decode(json.loads(row[1]))
        document["_id"] = row[0]
        return document

    def get_storage_stats(self) -> Dict[str, Any]:
        """Get storage counters and size statistics."""
        stats = {
            "database_path": self.database_path,
            "is_ready": self.is_ready,
            "query_count": self.query_count,
            "insert_count": self.insert_count,
            "update_count": self.update_count,
        }

        if self.database_path != ":memory:":
            db_path = Path(self.database_path)
            if db_path.exists():
                stats["database_size_mb"] = db_path.stat().st_size / (1024 * 1024)

        return stats


__all__ = ["DocumentStore", "SQLiteDocumentStore", "Document"]
