from __future__ import annotations

import logging
import time
from pathlib import Path
from sqlite3 import Error as SQLiteError
from typing import (
    Any,
    List,
    NoReturn,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from lantern._core._storages._sync_base import SyncBaseResponseStore, SyncBaseStructuredStore
from lantern._core._storages._packing import pack, unpack
from lantern._core.models import (
    Generation,
    Request,
    Response,
    ResponseMetadata,
    StructuredRecord,
)
from lantern._exceptions import StoreReadFailure, StoreWriteFailure
from lantern._synchronization import Lock, Shield
from lantern._utils import ensure_cache_dict, make_sync_iterator, request_identity

logger = logging.getLogger("lantern.storages")


try:
    import sqlite3

    class _SyncSqliteDatabase:
        def __init__(
            self,
            *,
            connection: Optional[sqlite3.Connection] = None,
            database_path: Union[str, Path],
        ) -> None:
            self.connection = connection
            self.database_path: Path = database_path if isinstance(database_path, Path) else Path(database_path)
            self._initialized = False
            self._lock = Lock()

        def _ensure_connection(self) -> sqlite3.Connection:
            """Ensure connection is established and database is initialized."""
            if self.connection is None:
                # Create cache directory and resolve full path on first connection
                parent = self.database_path.parent if self.database_path.parent != Path(".") else None
                full_path = ensure_cache_dict(parent) / self.database_path.name
                self.connection = sqlite3.connect(str(full_path), check_same_thread=False)
            if not self._initialized:
                self._initialize_database()
                self._initialized = True
            return self.connection

        def _initialize_database(self) -> None:
            raise NotImplementedError()

        def _abort_write(self, connection: sqlite3.Connection, exc: SQLiteError, action: str) -> NoReturn:
            logger.warning(f"Rolling back {action}: {exc}")
            connection.rollback()
            raise StoreWriteFailure(f"Could not {action}") from exc

        def _abort_read(self, exc: SQLiteError, action: str) -> NoReturn:
            logger.warning(f"Could not {action}: {exc}")
            raise StoreReadFailure(f"Could not {action}") from exc

        def close(self) -> None:
            if self.connection is not None:
                self.connection.close()
                self.connection = None

    class SyncSqliteResponseStore(_SyncSqliteDatabase, SyncBaseResponseStore):
        def __init__(
            self,
            *,
            connection: Optional[sqlite3.Connection] = None,
            database_path: Union[str, Path] = "lantern_responses.db",
        ) -> None:
            super().__init__(connection=connection, database_path=database_path)

        def _initialize_database(self) -> None:
            """Initialize the database schema."""
            assert self.connection is not None
            cursor = self.connection.cursor()

            # One row per generation, at most one of them flagged as active
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS generations (
                    name TEXT PRIMARY KEY,
                    created_at REAL NOT NULL,
                    active INTEGER NOT NULL DEFAULT 0
                )
            """)

            # Snapshot metadata is msgpack-packed in `data`, the raw body lives in `body`
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    generation TEXT NOT NULL,
                    cache_key TEXT NOT NULL,
                    data BLOB NOT NULL,
                    body BLOB NOT NULL,
                    created_at REAL NOT NULL,
                    PRIMARY KEY (generation, cache_key)
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_generations_active ON generations(active)")

            self.connection.commit()

        def open_generation(self, name: str) -> Generation:
            with self._lock, Shield():
                connection = self._ensure_connection()
                cursor = connection.cursor()
                try:
                    cursor.execute(
                        "INSERT OR IGNORE INTO generations (name, created_at, active) VALUES (?, ?, 0)",
                        (name, time.time()),
                    )
                    connection.commit()
                    generation = self._select_generation(cursor, name)
                except SQLiteError as exc:
                    self._abort_write(connection, exc, f"create generation {name!r}")

                assert generation is not None
                return generation

        def get(self, generation: Generation, request: Request) -> Optional[Response]:
            with self._lock:
                try:
                    connection = self._ensure_connection()
                    cursor = connection.cursor()
                    # Joining on the generation row hides entries of a generation that is being swept
                    cursor.execute(
                        """
                        SELECT e.data, e.body FROM entries e
                        JOIN generations g ON g.name = e.generation
                        WHERE e.generation = ? AND e.cache_key = ?
                        """,
                        (generation.name, request_identity(request.method, request.url)),
                    )
                    row = cursor.fetchone()
                except SQLiteError as exc:
                    self._abort_read(exc, f"look up {request.url!r} in generation {generation.name!r}")

            if row is None:
                return None

            snapshot = unpack(row[0])
            assert snapshot is not None
            body: bytes = row[1]
            response = Response(
                status_code=snapshot.status_code,
                headers=snapshot.headers,
                stream=make_sync_iterator([body]),
                metadata={
                    **snapshot.extra,
                    **ResponseMetadata(
                        lantern_from_cache=True,
                        lantern_generation=generation.name,
                        lantern_created_at=snapshot.created_at,
                    ),
                },
            )
            setattr(response, "collected_body", body)
            return response

        def put_many(self, generation: Generation, pairs: Sequence[Tuple[Request, Response]]) -> None:
            rows: List[Tuple[str, str, bytes, bytes, float]] = []
            for request, response in pairs:
                body = response.read()
                created_at = time.time()
                rows.append(
                    (
                        generation.name,
                        request_identity(request.method, request.url),
                        pack(request, response, created_at=created_at),
                        body,
                        created_at,
                    )
                )

            with self._lock, Shield():
                connection = self._ensure_connection()
                cursor = connection.cursor()
                try:
                    if self._select_generation(cursor, generation.name) is None:
                        raise StoreWriteFailure(f"Generation {generation.name!r} does not exist")
                    for row in rows:
                        cursor.execute(
                            "INSERT OR REPLACE INTO entries (generation, cache_key, data, body, created_at) "
                            "VALUES (?, ?, ?, ?, ?)",
                            row,
                        )
                    connection.commit()
                except SQLiteError as exc:
                    self._abort_write(connection, exc, f"store {len(rows)} entries in {generation.name!r}")
            logger.debug(f"Stored {len(rows)} entries in generation {generation.name!r}")

        def list_generations(self) -> List[str]:
            with self._lock:
                try:
                    connection = self._ensure_connection()
                    cursor = connection.cursor()
                    cursor.execute("SELECT name FROM generations ORDER BY created_at, name")
                    return [row[0] for row in cursor.fetchall()]
                except SQLiteError as exc:
                    self._abort_read(exc, "list generations")

        def delete_generation(self, name: str) -> None:
            with self._lock, Shield():
                connection = self._ensure_connection()
                cursor = connection.cursor()
                try:
                    # Row first, so no lookup can join against it once the transaction commits
                    cursor.execute("DELETE FROM generations WHERE name = ?", (name,))
                    cursor.execute("DELETE FROM entries WHERE generation = ?", (name,))
                    connection.commit()
                except SQLiteError as exc:
                    self._abort_write(connection, exc, f"delete generation {name!r}")
            logger.debug(f"Deleted generation {name!r}")

        def active_generation(self) -> Optional[Generation]:
            with self._lock:
                try:
                    connection = self._ensure_connection()
                    cursor = connection.cursor()
                    cursor.execute("SELECT name, created_at FROM generations WHERE active = 1 LIMIT 1")
                    row = cursor.fetchone()
                except SQLiteError as exc:
                    self._abort_read(exc, "read the active generation")
            if row is None:
                return None
            return Generation(name=row[0], created_at=row[1])

        def activate_generation(self, name: str) -> Generation:
            with self._lock, Shield():
                connection = self._ensure_connection()
                cursor = connection.cursor()
                try:
                    generation = self._select_generation(cursor, name)
                    if generation is None:
                        raise StoreWriteFailure(f"Generation {name!r} does not exist")
                    # A single statement swaps the pointer, readers see either the old or the new one
                    cursor.execute(
                        "UPDATE generations SET active = CASE WHEN name = ? THEN 1 ELSE 0 END",
                        (name,),
                    )
                    connection.commit()
                except SQLiteError as exc:
                    self._abort_write(connection, exc, f"activate generation {name!r}")
            return generation

        def _select_generation(self, cursor: sqlite3.Cursor, name: str) -> Optional[Generation]:
            cursor.execute("SELECT name, created_at FROM generations WHERE name = ?", (name,))
            row = cursor.fetchone()
            if row is None:
                return None
            return Generation(name=row[0], created_at=row[1])

    class SyncSqliteStructuredStore(_SyncSqliteDatabase, SyncBaseStructuredStore):
        def __init__(
            self,
            *,
            connection: Optional[sqlite3.Connection] = None,
            database_path: Union[str, Path] = "lantern_structured.db",
        ) -> None:
            super().__init__(connection=connection, database_path=database_path)

        def _initialize_database(self) -> None:
            """Initialize the database schema."""
            assert self.connection is not None
            cursor = self.connection.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    url TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            self.connection.commit()

        def get_record(self, url: str) -> Optional[StructuredRecord]:
            with self._lock:
                try:
                    connection = self._ensure_connection()
                    cursor = connection.cursor()
                    cursor.execute("SELECT url, payload, updated_at FROM records WHERE url = ?", (url,))
                    row = cursor.fetchone()
                except SQLiteError as exc:
                    self._abort_read(exc, f"read record for {url!r}")
            if row is None:
                return None
            return StructuredRecord(url=row[0], payload=row[1], updated_at=row[2])

        def put_record(self, record: StructuredRecord) -> StructuredRecord:
            with self._lock, Shield():
                # Stamped under the lock: the newest timestamp belongs to the last write
                stored = StructuredRecord(url=record.url, payload=record.payload, updated_at=time.time())
                connection = self._ensure_connection()
                cursor = connection.cursor()
                try:
                    cursor.execute(
                        "INSERT INTO records (url, payload, updated_at) VALUES (?, ?, ?) "
                        "ON CONFLICT(url) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at",
                        (stored.url, stored.payload, stored.updated_at),
                    )
                    connection.commit()
                except SQLiteError as exc:
                    self._abort_write(connection, exc, f"store record for {record.url!r}")
            return stored

        def delete(self, url: str) -> None:
            with self._lock, Shield():
                connection = self._ensure_connection()
                cursor = connection.cursor()
                try:
                    cursor.execute("DELETE FROM records WHERE url = ?", (url,))
                    connection.commit()
                except SQLiteError as exc:
                    self._abort_write(connection, exc, f"delete record for {url!r}")

except ImportError:

    class SyncSqliteResponseStore:  # type: ignore[no-redef]
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            raise ImportError(
                "This Python was built without the sqlite3 module, which `SyncSqliteResponseStore` requires."
            )

    class SyncSqliteStructuredStore:  # type: ignore[no-redef]
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            raise ImportError(
                "This Python was built without the sqlite3 module, which `SyncSqliteStructuredStore` requires."
            )
