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

from lantern._core._storages._async_base import AsyncBaseResponseStore, AsyncBaseStructuredStore
from lantern._core._storages._packing import pack, unpack
from lantern._core.models import (
    Generation,
    Request,
    Response,
    ResponseMetadata,
    StructuredRecord,
)
from lantern._exceptions import StoreReadFailure, StoreWriteFailure
from lantern._synchronization import AsyncLock, AsyncShield
from lantern._utils import ensure_cache_dict, make_async_iterator, request_identity

logger = logging.getLogger("lantern.storages")


try:
    import anysqlite

    class _AsyncSqliteDatabase:
        def __init__(
            self,
            *,
            connection: Optional[anysqlite.Connection] = None,
            database_path: Union[str, Path],
        ) -> None:
            self.connection = connection
            self.database_path: Path = database_path if isinstance(database_path, Path) else Path(database_path)
            self._initialized = False
            self._lock = AsyncLock()

        async def _ensure_connection(self) -> anysqlite.Connection:
            """Ensure connection is established and database is initialized."""
            if self.connection is None:
                # Create cache directory and resolve full path on first connection
                parent = self.database_path.parent if self.database_path.parent != Path(".") else None
                full_path = ensure_cache_dict(parent) / self.database_path.name
                self.connection = await anysqlite.connect(str(full_path))
            if not self._initialized:
                await self._initialize_database()
                self._initialized = True
            return self.connection

        async def _initialize_database(self) -> None:
            raise NotImplementedError()

        async def _abort_write(self, connection: anysqlite.Connection, exc: SQLiteError, action: str) -> NoReturn:
            logger.warning(f"Rolling back {action}: {exc}")
            await connection.rollback()
            raise StoreWriteFailure(f"Could not {action}") from exc

        def _abort_read(self, exc: SQLiteError, action: str) -> NoReturn:
            logger.warning(f"Could not {action}: {exc}")
            raise StoreReadFailure(f"Could not {action}") from exc

        async def close(self) -> None:
            if self.connection is not None:
                await self.connection.close()
                self.connection = None

    class AsyncSqliteResponseStore(_AsyncSqliteDatabase, AsyncBaseResponseStore):
        def __init__(
            self,
            *,
            connection: Optional[anysqlite.Connection] = None,
            database_path: Union[str, Path] = "lantern_responses.db",
        ) -> None:
            super().__init__(connection=connection, database_path=database_path)

        async def _initialize_database(self) -> None:
            """Initialize the database schema."""
            assert self.connection is not None
            cursor = await self.connection.cursor()

            # One row per generation, at most one of them flagged as active
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS generations (
                    name TEXT PRIMARY KEY,
                    created_at REAL NOT NULL,
                    active INTEGER NOT NULL DEFAULT 0
                )
            """)

            # Snapshot metadata is msgpack-packed in `data`, the raw body lives in `body`
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    generation TEXT NOT NULL,
                    cache_key TEXT NOT NULL,
                    data BLOB NOT NULL,
                    body BLOB NOT NULL,
                    created_at REAL NOT NULL,
                    PRIMARY KEY (generation, cache_key)
                )
            """)

            await cursor.execute("CREATE INDEX IF NOT EXISTS idx_generations_active ON generations(active)")

            await self.connection.commit()

        async def open_generation(self, name: str) -> Generation:
            async with self._lock, AsyncShield():
                connection = await self._ensure_connection()
                cursor = await connection.cursor()
                try:
                    await cursor.execute(
                        "INSERT OR IGNORE INTO generations (name, created_at, active) VALUES (?, ?, 0)",
                        (name, time.time()),
                    )
                    await connection.commit()
                    generation = await self._select_generation(cursor, name)
                except SQLiteError as exc:
                    await self._abort_write(connection, exc, f"create generation {name!r}")

                assert generation is not None
                return generation

        async def get(self, generation: Generation, request: Request) -> Optional[Response]:
            async with self._lock:
                try:
                    connection = await self._ensure_connection()
                    cursor = await connection.cursor()
                    # Joining on the generation row hides entries of a generation that is being swept
                    await cursor.execute(
                        """
                        SELECT e.data, e.body FROM entries e
                        JOIN generations g ON g.name = e.generation
                        WHERE e.generation = ? AND e.cache_key = ?
                        """,
                        (generation.name, request_identity(request.method, request.url)),
                    )
                    row = await cursor.fetchone()
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
                stream=make_async_iterator([body]),
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

        async def put_many(self, generation: Generation, pairs: Sequence[Tuple[Request, Response]]) -> None:
            rows: List[Tuple[str, str, bytes, bytes, float]] = []
            for request, response in pairs:
                body = await response.aread()
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

            async with self._lock, AsyncShield():
                connection = await self._ensure_connection()
                cursor = await connection.cursor()
                try:
                    if await self._select_generation(cursor, generation.name) is None:
                        raise StoreWriteFailure(f"Generation {generation.name!r} does not exist")
                    for row in rows:
                        await cursor.execute(
                            "INSERT OR REPLACE INTO entries (generation, cache_key, data, body, created_at) "
                            "VALUES (?, ?, ?, ?, ?)",
                            row,
                        )
                    await connection.commit()
                except SQLiteError as exc:
                    await self._abort_write(connection, exc, f"store {len(rows)} entries in {generation.name!r}")
            logger.debug(f"Stored {len(rows)} entries in generation {generation.name!r}")

        async def list_generations(self) -> List[str]:
            async with self._lock:
                try:
                    connection = await self._ensure_connection()
                    cursor = await connection.cursor()
                    await cursor.execute("SELECT name FROM generations ORDER BY created_at, name")
                    return [row[0] for row in await cursor.fetchall()]
                except SQLiteError as exc:
                    self._abort_read(exc, "list generations")

        async def delete_generation(self, name: str) -> None:
            async with self._lock, AsyncShield():
                connection = await self._ensure_connection()
                cursor = await connection.cursor()
                try:
                    # Row first, so no lookup can join against it once the transaction commits
                    await cursor.execute("DELETE FROM generations WHERE name = ?", (name,))
                    await cursor.execute("DELETE FROM entries WHERE generation = ?", (name,))
                    await connection.commit()
                except SQLiteError as exc:
                    await self._abort_write(connection, exc, f"delete generation {name!r}")
            logger.debug(f"Deleted generation {name!r}")

        async def active_generation(self) -> Optional[Generation]:
            async with self._lock:
                try:
                    connection = await self._ensure_connection()
                    cursor = await connection.cursor()
                    await cursor.execute("SELECT name, created_at FROM generations WHERE active = 1 LIMIT 1")
                    row = await cursor.fetchone()
                except SQLiteError as exc:
                    self._abort_read(exc, "read the active generation")
            if row is None:
                return None
            return Generation(name=row[0], created_at=row[1])

        async def activate_generation(self, name: str) -> Generation:
            async with self._lock, AsyncShield():
                connection = await self._ensure_connection()
                cursor = await connection.cursor()
                try:
                    generation = await self._select_generation(cursor, name)
                    if generation is None:
                        raise StoreWriteFailure(f"Generation {name!r} does not exist")
                    # A single statement swaps the pointer, readers see either the old or the new one
                    await cursor.execute(
                        "UPDATE generations SET active = CASE WHEN name = ? THEN 1 ELSE 0 END",
                        (name,),
                    )
                    await connection.commit()
                except SQLiteError as exc:
                    await self._abort_write(connection, exc, f"activate generation {name!r}")
            return generation

        async def _select_generation(self, cursor: anysqlite.Cursor, name: str) -> Optional[Generation]:
            await cursor.execute("SELECT name, created_at FROM generations WHERE name = ?", (name,))
            row = await cursor.fetchone()
            if row is None:
                return None
            return Generation(name=row[0], created_at=row[1])

    class AsyncSqliteStructuredStore(_AsyncSqliteDatabase, AsyncBaseStructuredStore):
        def __init__(
            self,
            *,
            connection: Optional[anysqlite.Connection] = None,
            database_path: Union[str, Path] = "lantern_structured.db",
        ) -> None:
            super().__init__(connection=connection, database_path=database_path)

        async def _initialize_database(self) -> None:
            """Initialize the database schema."""
            assert self.connection is not None
            cursor = await self.connection.cursor()
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    url TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            await self.connection.commit()

        async def get_record(self, url: str) -> Optional[StructuredRecord]:
            async with self._lock:
                try:
                    connection = await self._ensure_connection()
                    cursor = await connection.cursor()
                    await cursor.execute("SELECT url, payload, updated_at FROM records WHERE url = ?", (url,))
                    row = await cursor.fetchone()
                except SQLiteError as exc:
                    self._abort_read(exc, f"read record for {url!r}")
            if row is None:
                return None
            return StructuredRecord(url=row[0], payload=row[1], updated_at=row[2])

        async def put_record(self, record: StructuredRecord) -> StructuredRecord:
            async with self._lock, AsyncShield():
                # Stamped under the lock: the newest timestamp belongs to the last write
                stored = StructuredRecord(url=record.url, payload=record.payload, updated_at=time.time())
                connection = await self._ensure_connection()
                cursor = await connection.cursor()
                try:
                    await cursor.execute(
                        "INSERT INTO records (url, payload, updated_at) VALUES (?, ?, ?) "
                        "ON CONFLICT(url) DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at",
                        (stored.url, stored.payload, stored.updated_at),
                    )
                    await connection.commit()
                except SQLiteError as exc:
                    await self._abort_write(connection, exc, f"store record for {record.url!r}")
            return stored

        async def delete(self, url: str) -> None:
            async with self._lock, AsyncShield():
                connection = await self._ensure_connection()
                cursor = await connection.cursor()
                try:
                    await cursor.execute("DELETE FROM records WHERE url = ?", (url,))
                    await connection.commit()
                except SQLiteError as exc:
                    await self._abort_write(connection, exc, f"delete record for {url!r}")

except ImportError:

    class AsyncSqliteResponseStore:  # type: ignore[no-redef]
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            raise ImportError(
                "The 'anysqlite' library is required to use the `AsyncSqliteResponseStore`. "
                "Install it with 'pip install anysqlite'."
            )

    class AsyncSqliteStructuredStore:  # type: ignore[no-redef]
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            raise ImportError(
                "The 'anysqlite' library is required to use the `AsyncSqliteStructuredStore`. "
                "Install it with 'pip install anysqlite'."
            )
