"""
Durable local store for daily usage records, backed by async SQLite.

Holds one row per calendar date (upserted, never duplicated) and a small
key/value ``meta`` table carrying the last observed tank level used to
compute the next ingestion's delta, and the timestamp of the last ingested
reading so a restart does not ingest the same reading twice.  The database runs in WAL mode so a
reader (e.g. the API) never blocks the tick's write.

Operations:
- load_records(): all daily records, ordered by date.  Corrupt rows are
  skipped.
- save(records, last_level, last_reading_at): upsert records and the meta
  values in one transaction.
- load_last_level(): the persisted last observed level, or None.
- load_last_reading_at(): the persisted last ingested reading time, or None.
- prune_before(day): drop records older than *day*.
- clear(): drop everything (test/demo teardown).

Every SQLite failure is raised as :class:`~tankmon.src.errors.StorageError`;
the usage aggregator decides how to degrade.

CHANGELOG:
- 2026-10-18: Persist the last ingested reading timestamp (STORY-014)
- 2026-10-07: Add retention pruning (STORY-009)
- 2026-10-04: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable
from pathlib import Path

import aiosqlite
import pydantic

from tankmon.src.errors import StorageError
from tankmon.src.models import DailyUsageRecord

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """\
CREATE TABLE IF NOT EXISTS daily_usage (
    date TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

_UPSERT_RECORD_SQL = """\
INSERT INTO daily_usage (date, payload) VALUES (?, ?)
ON CONFLICT(date) DO UPDATE SET payload = excluded.payload, updated_at = datetime('now');
"""

_SELECT_RECORDS_SQL = "SELECT date, payload FROM daily_usage ORDER BY date ASC;"

_UPSERT_META_SQL = """\
INSERT INTO meta (key, value) VALUES (?, ?)
ON CONFLICT(key) DO UPDATE SET value = excluded.value;
"""

_LAST_LEVEL_KEY = "last_observed_level"
_LAST_READING_KEY = "last_reading_at"


class UsageStore:
    """SQLite-backed persistence for :class:`DailyUsageRecord` rows.

    Args:
        path: Filesystem path for the SQLite database file.  ``":memory:"``
            gives a throwaway database.

    Usage::

        async with UsageStore("/data/tankmon.db") as store:
            records = await store.load_records()
            await store.save(records, last_level=55.0)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the connection, enable WAL mode and create the schema.

        A file that is not a SQLite database is moved aside to
        ``<path>.corrupt`` and a fresh database is created in its place.

        Raises:
            StorageError: If the database cannot be opened or initialized.
        """
        try:
            await self._connect()
        except aiosqlite.DatabaseError as exc:
            await self.close()
            # OperationalError (locked, unreadable, missing dir) is not corruption.
            if self._path == ":memory:" or isinstance(exc, aiosqlite.OperationalError):
                raise StorageError(f"cannot open usage store at {self._path}: {exc}") from exc
            corrupt = Path(self._path).with_name(Path(self._path).name + ".corrupt")
            logger.error("Usage store %s is corrupt, moving it to %s", self._path, corrupt)
            try:
                Path(self._path).replace(corrupt)
                await self._connect()
            except (aiosqlite.Error, OSError) as retry_exc:
                await self.close()
                raise StorageError(f"cannot recreate usage store: {retry_exc}") from retry_exc
        except (aiosqlite.Error, OSError) as exc:
            await self.close()
            raise StorageError(f"cannot open usage store at {self._path}: {exc}") from exc

    async def _connect(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._path)
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.executescript(_CREATE_TABLES_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db is not None:
            try:
                await self._db.close()
            finally:
                self._db = None

    async def __aenter__(self) -> UsageStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def load_records(self) -> list[DailyUsageRecord]:
        """Return every stored record ordered by date ascending."""
        db = self._require_db()
        try:
            cursor = await db.execute(_SELECT_RECORDS_SQL)
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"cannot read daily usage: {exc}") from exc

        records: list[DailyUsageRecord] = []
        for day, payload in rows:
            try:
                records.append(DailyUsageRecord.model_validate_json(payload))
            except pydantic.ValidationError:
                logger.warning("Skipping corrupt usage record for %s", day, exc_info=True)
        return records

    async def load_last_level(self) -> float | None:
        """Return the persisted last observed level, or ``None``."""
        value = await self._load_meta(_LAST_LEVEL_KEY)
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            logger.warning("Ignoring corrupt last level value %r", value)
            return None

    async def load_last_reading_at(self) -> dt.datetime | None:
        """Return the timestamp of the last ingested reading, or ``None``."""
        value = await self._load_meta(_LAST_READING_KEY)
        if value is None:
            return None
        try:
            ts = dt.datetime.fromisoformat(value)
        except ValueError:
            logger.warning("Ignoring corrupt last reading timestamp %r", value)
            return None
        return ts if ts.tzinfo is not None else ts.replace(tzinfo=dt.UTC)

    async def save(
        self,
        records: Iterable[DailyUsageRecord],
        last_level: float | None,
        last_reading_at: dt.datetime | None = None,
    ) -> None:
        """Upsert *records* and the meta values in a single transaction.

        A ``None`` meta value deletes the stored one.
        """
        db = self._require_db()
        rows = [(r.date.isoformat(), r.model_dump_json()) for r in records]
        meta = {
            _LAST_LEVEL_KEY: repr(last_level) if last_level is not None else None,
            _LAST_READING_KEY: last_reading_at.isoformat() if last_reading_at is not None else None,
        }
        try:
            if rows:
                await db.executemany(_UPSERT_RECORD_SQL, rows)
            for key, value in meta.items():
                if value is None:
                    await db.execute("DELETE FROM meta WHERE key = ?;", (key,))
                else:
                    await db.execute(_UPSERT_META_SQL, (key, value))
            await db.commit()
        except aiosqlite.Error as exc:
            await self._rollback()
            raise StorageError(f"cannot write daily usage: {exc}") from exc

    async def prune_before(self, day: dt.date) -> int:
        """Delete records dated before *day*; return how many were removed."""
        db = self._require_db()
        try:
            cursor = await db.execute("DELETE FROM daily_usage WHERE date < ?;", (day.isoformat(),))
            await db.commit()
        except aiosqlite.Error as exc:
            await self._rollback()
            raise StorageError(f"cannot prune daily usage: {exc}") from exc
        return cursor.rowcount

    async def clear(self) -> None:
        """Delete every record and the last level."""
        db = self._require_db()
        try:
            await db.execute("DELETE FROM daily_usage;")
            await db.execute("DELETE FROM meta;")
            await db.commit()
        except aiosqlite.Error as exc:
            await self._rollback()
            raise StorageError(f"cannot clear usage store: {exc}") from exc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _load_meta(self, key: str) -> str | None:
        db = self._require_db()
        try:
            cursor = await db.execute("SELECT value FROM meta WHERE key = ?;", (key,))
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"cannot read {key}: {exc}") from exc
        return row[0] if row is not None else None

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("usage store is not open")
        return self._db

    async def _rollback(self) -> None:
        if self._db is None:
            return
        try:
            await self._db.rollback()
        except aiosqlite.Error:
            logger.warning("Rollback failed", exc_info=True)
