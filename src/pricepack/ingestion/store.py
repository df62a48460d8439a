"""Storage backend: Protocol definitions, SQLite and PostgreSQL implementations, factory.

Ingestions write through an ``IngestSession``: one transaction that is
serialized against every other ingestion by the store itself (SQLite write
lock via ``BEGIN IMMEDIATE``, PostgreSQL transaction-level advisory lock).
No in-process locking is involved.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, ClassVar, Protocol, runtime_checkable

import aiosqlite
import psycopg
from psycopg.rows import dict_row

from pricepack.core.config import StorageConfig
from pricepack.core.exceptions import DuplicateRecordError, StorageError
from pricepack.core.models import (
    BatchTag,
    PriceRecord,
    StatsDelta,
    StorageBackend as StorageBackendEnum,
    StoredRecord,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class IngestSession(Protocol):
    """Operations available inside one serialized ingestion transaction."""

    async def watermark(self) -> int: ...
    async def insert_many(
        self,
        records: Sequence[PriceRecord],
        batch: BatchTag,
        keep_source_ids: bool = False,
    ) -> int: ...
    async def delta_after(self, watermark: int) -> StatsDelta: ...
    async def delta_for_batch(self, batch: BatchTag) -> StatsDelta: ...


@runtime_checkable
class StorageProtocol(Protocol):
    """Abstract storage interface for price records."""

    def ingest_session(self) -> AbstractAsyncContextManager[IngestSession]: ...
    async def list_records(self) -> list[StoredRecord]: ...
    async def count_records(self) -> int: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...


def _delta_from_row(row: Sequence[Any]) -> StatsDelta:
    items, categories, total = row
    return StatsDelta(
        total_items=int(items),
        total_categories=int(categories),
        total_price=float(total or 0),
    )


_DELTA_COLUMNS = "COUNT(*), COUNT(DISTINCT category), COALESCE(SUM(price), 0)"


# --- SQLite ---


class SqliteIngestSession:
    """IngestSession bound to a dedicated aiosqlite connection."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def watermark(self) -> int:
        try:
            async with self._db.execute("SELECT COALESCE(MAX(id), 0) FROM prices") as cursor:
                row = await cursor.fetchone()
            return int(row[0])
        except Exception as e:
            raise StorageError(
                f"Failed to read watermark: {e}",
                context={"operation": "query", "table": "prices"},
            ) from e

    async def insert_many(
        self,
        records: Sequence[PriceRecord],
        batch: BatchTag,
        keep_source_ids: bool = False,
    ) -> int:
        if not records:
            return 0
        if keep_source_ids:
            sql = """INSERT INTO prices (id, name, category, price, create_date, ingest_batch)
                     VALUES (?, ?, ?, ?, ?, ?)"""
            rows = [
                (r.source_id, r.name, r.category, str(r.price), r.create_date.isoformat(), batch)
                for r in records
            ]
        else:
            sql = """INSERT INTO prices (name, category, price, create_date, ingest_batch)
                     VALUES (?, ?, ?, ?, ?)"""
            rows = [
                (r.name, r.category, str(r.price), r.create_date.isoformat(), batch)
                for r in records
            ]
        try:
            await self._db.executemany(sql, rows)
        except aiosqlite.IntegrityError as e:
            raise DuplicateRecordError(
                f"Record id already exists: {e}",
                context={"operation": "insert", "table": "prices"},
            ) from e
        except Exception as e:
            raise StorageError(
                f"Failed to insert records: {e}",
                context={"operation": "insert", "table": "prices"},
            ) from e
        return len(rows)

    async def delta_after(self, watermark: int) -> StatsDelta:
        return await self._delta("id > ?", (watermark,))

    async def delta_for_batch(self, batch: BatchTag) -> StatsDelta:
        return await self._delta("ingest_batch = ?", (batch,))

    async def _delta(self, where: str, params: tuple) -> StatsDelta:
        try:
            async with self._db.execute(
                f"SELECT {_DELTA_COLUMNS} FROM prices WHERE {where}", params
            ) as cursor:
                row = await cursor.fetchone()
            return _delta_from_row(row)
        except Exception as e:
            raise StorageError(
                f"Failed to aggregate inserted records: {e}",
                context={"operation": "query", "table": "prices"},
            ) from e


class SqliteStore:
    """SQLite implementation of the storage protocol.

    Every operation opens its own aiosqlite connection in autocommit mode,
    so concurrent requests never share a transaction. Ingest sessions take
    the database write lock up front with ``BEGIN IMMEDIATE``; a competing
    session waits up to ``busy_timeout`` seconds for it.
    """

    _SCHEMA: ClassVar[list[str]] = [
        """CREATE TABLE IF NOT EXISTS prices (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            category TEXT NOT NULL,
            price NUMERIC NOT NULL,
            create_date TEXT NOT NULL,
            ingest_batch TEXT
        )""",
        "CREATE INDEX IF NOT EXISTS idx_prices_ingest_batch ON prices(ingest_batch)",
    ]

    def __init__(self, config: StorageConfig, busy_timeout: float = 30.0) -> None:
        self._path = config.sqlite_path
        self._busy_timeout = busy_timeout

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self._path, timeout=self._busy_timeout, isolation_level=None)

    async def initialize(self) -> None:
        """Create the database file, enable WAL, create the table."""
        try:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            async with self._connect() as db:
                await db.execute("PRAGMA journal_mode=WAL")
                for sql in self._SCHEMA:
                    await db.execute(sql)
        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e
        logger.info("SQLite store ready at %s", self._path)

    async def close(self) -> None:
        # Connections are per-operation; nothing is held open.
        return None

    async def health_check(self) -> bool:
        try:
            async with self._connect() as db:
                async with db.execute("SELECT 1") as cursor:
                    row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    @asynccontextmanager
    async def ingest_session(self) -> AsyncIterator[SqliteIngestSession]:
        try:
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    yield SqliteIngestSession(db)
                except BaseException:
                    await db.execute("ROLLBACK")
                    logger.warning("Ingest transaction rolled back")
                    raise
                await db.execute("COMMIT")
        except aiosqlite.Error as e:
            raise StorageError(
                f"Ingest transaction failed: {e}",
                context={"operation": "transaction", "table": "prices"},
            ) from e

    async def list_records(self) -> list[StoredRecord]:
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    """SELECT id, name, category, price, create_date
                       FROM prices ORDER BY id"""
                ) as cursor:
                    rows = await cursor.fetchall()
            return [self._row_to_record(r) for r in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to list records: {e}",
                context={"operation": "query", "table": "prices"},
            ) from e

    async def count_records(self) -> int:
        try:
            async with self._connect() as db:
                async with db.execute("SELECT COUNT(*) FROM prices") as cursor:
                    row = await cursor.fetchone()
            return int(row[0])
        except Exception as e:
            raise StorageError(
                f"Failed to count records: {e}",
                context={"operation": "query", "table": "prices"},
            ) from e

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> StoredRecord:
        return StoredRecord(
            id=row["id"],
            name=row["name"],
            category=row["category"],
            price=Decimal(str(row["price"])),
            create_date=date.fromisoformat(row["create_date"]),
        )


# --- PostgreSQL ---


class PostgresIngestSession:
    """IngestSession bound to an open psycopg transaction."""

    _SYNC_SEQUENCE: ClassVar[str] = """
        SELECT setval(
            pg_get_serial_sequence('prices', 'id'),
            GREATEST(COALESCE(MAX(id), 0), 1),
            COALESCE(MAX(id), 0) >= 1
        ) FROM prices"""

    def __init__(self, conn: psycopg.AsyncConnection) -> None:
        self._conn = conn

    async def watermark(self) -> int:
        try:
            cursor = await self._conn.execute("SELECT COALESCE(MAX(id), 0) FROM prices")
            row = await cursor.fetchone()
            return int(row[0])
        except psycopg.Error as e:
            raise StorageError(
                f"Failed to read watermark: {e}",
                context={"operation": "query", "table": "prices"},
            ) from e

    async def insert_many(
        self,
        records: Sequence[PriceRecord],
        batch: BatchTag,
        keep_source_ids: bool = False,
    ) -> int:
        if not records:
            return 0
        if keep_source_ids:
            sql = """INSERT INTO prices (id, name, category, price, create_date, ingest_batch)
                     VALUES (%s, %s, %s, %s, %s, %s)"""
            rows = [
                (r.source_id, r.name, r.category, r.price, r.create_date, batch)
                for r in records
            ]
        else:
            sql = """INSERT INTO prices (name, category, price, create_date, ingest_batch)
                     VALUES (%s, %s, %s, %s, %s)"""
            rows = [(r.name, r.category, r.price, r.create_date, batch) for r in records]
        try:
            async with self._conn.cursor() as cursor:
                await cursor.executemany(sql, rows)
                if keep_source_ids:
                    # Explicit ids bypass the identity sequence; move it past them.
                    # setval() rejects values below 1, so non-positive ids leave
                    # the sequence starting at 1.
                    await cursor.execute(self._SYNC_SEQUENCE)
        except psycopg.errors.UniqueViolation as e:
            raise DuplicateRecordError(
                f"Record id already exists: {e}",
                context={"operation": "insert", "table": "prices"},
            ) from e
        except psycopg.Error as e:
            raise StorageError(
                f"Failed to insert records: {e}",
                context={"operation": "insert", "table": "prices"},
            ) from e
        return len(rows)

    async def delta_after(self, watermark: int) -> StatsDelta:
        return await self._delta("id > %s", (watermark,))

    async def delta_for_batch(self, batch: BatchTag) -> StatsDelta:
        return await self._delta("ingest_batch = %s", (batch,))

    async def _delta(self, where: str, params: tuple) -> StatsDelta:
        try:
            cursor = await self._conn.execute(
                f"SELECT {_DELTA_COLUMNS} FROM prices WHERE {where}", params
            )
            row = await cursor.fetchone()
            return _delta_from_row(row)
        except psycopg.Error as e:
            raise StorageError(
                f"Failed to aggregate inserted records: {e}",
                context={"operation": "query", "table": "prices"},
            ) from e


class PostgresStore:
    """PostgreSQL implementation of the storage protocol (psycopg 3, async).

    Ingest sessions run in a single transaction that first takes a
    transaction-scoped advisory lock, so ingestions never interleave.
    """

    _SCHEMA: ClassVar[list[str]] = [
        """CREATE TABLE IF NOT EXISTS prices (
            id BIGINT GENERATED BY DEFAULT AS IDENTITY PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            category VARCHAR(255) NOT NULL,
            price NUMERIC NOT NULL,
            create_date DATE NOT NULL,
            ingest_batch VARCHAR(32)
        )""",
        "CREATE INDEX IF NOT EXISTS idx_prices_ingest_batch ON prices(ingest_batch)",
    ]

    # Arbitrary key shared by every pricepack ingest session.
    _INGEST_LOCK_KEY: ClassVar[int] = 0x7072_6963_6573

    def __init__(self, config: StorageConfig) -> None:
        self._conninfo = config.postgres_conninfo
        self._label = f"{config.postgres_host}:{config.postgres_port}/{config.postgres_db}"

    async def _connect(self, autocommit: bool = False) -> psycopg.AsyncConnection:
        return await psycopg.AsyncConnection.connect(self._conninfo, autocommit=autocommit)

    async def initialize(self) -> None:
        try:
            async with await self._connect(autocommit=True) as conn:
                for sql in self._SCHEMA:
                    await conn.execute(sql)
        except psycopg.Error as e:
            raise StorageError(
                f"Failed to initialize PostgreSQL store: {e}",
                context={"operation": "initialize", "database": self._label},
            ) from e
        logger.info("PostgreSQL store ready at %s", self._label)

    async def close(self) -> None:
        return None

    async def health_check(self) -> bool:
        try:
            async with await self._connect(autocommit=True) as conn:
                cursor = await conn.execute("SELECT 1")
                row = await cursor.fetchone()
            return row is not None
        except psycopg.Error:
            return False

    @asynccontextmanager
    async def ingest_session(self) -> AsyncIterator[PostgresIngestSession]:
        try:
            async with await self._connect() as conn:
                async with conn.transaction():
                    await conn.execute(
                        "SELECT pg_advisory_xact_lock(%s)", (self._INGEST_LOCK_KEY,)
                    )
                    yield PostgresIngestSession(conn)
        except psycopg.Error as e:
            raise StorageError(
                f"Ingest transaction failed: {e}",
                context={"operation": "transaction", "table": "prices"},
            ) from e

    async def list_records(self) -> list[StoredRecord]:
        try:
            async with await self._connect(autocommit=True) as conn:
                async with conn.cursor(row_factory=dict_row) as cursor:
                    await cursor.execute(
                        """SELECT id, name, category, price, create_date
                           FROM prices ORDER BY id"""
                    )
                    rows = await cursor.fetchall()
        except psycopg.Error as e:
            raise StorageError(
                f"Failed to list records: {e}",
                context={"operation": "query", "table": "prices"},
            ) from e
        return [StoredRecord.model_validate(r) for r in rows]

    async def count_records(self) -> int:
        try:
            async with await self._connect(autocommit=True) as conn:
                cursor = await conn.execute("SELECT COUNT(*) FROM prices")
                row = await cursor.fetchone()
            return int(row[0])
        except psycopg.Error as e:
            raise StorageError(
                f"Failed to count records: {e}",
                context={"operation": "query", "table": "prices"},
            ) from e


async def create_store(config: StorageConfig) -> SqliteStore | PostgresStore:
    """Create and initialize a storage backend based on configuration."""
    if config.backend == StorageBackendEnum.SQLITE:
        store: SqliteStore | PostgresStore = SqliteStore(config)
    elif config.backend == StorageBackendEnum.POSTGRESQL:
        store = PostgresStore(config)
    else:
        raise StorageError(
            f"Unsupported storage backend: {config.backend}",
            context={"operation": "create_store", "backend": str(config.backend)},
        )
    await store.initialize()
    return store
