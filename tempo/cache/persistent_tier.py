"""Persistent tier of the analysis cache: DuckDB table of serialized results."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import duckdb
from pydantic import ValidationError

from tempo.cache.fingerprint import ContextFingerprint
from tempo.cache.memory_tier import CacheEntry
from tempo.models import AnalysisResult

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_COLUMNS = (
    "fingerprint, family, user_id, battery_bucket, battery_level, tags, "
    "time_bucket, env_bucket, result, created_at, expires_at"
)


class PersistentTier:
    """Cache tier backed by a DuckDB table."""

    def __init__(self, database_path: str | Path = ":memory:") -> None:
        """Initialize persistent tier.

        Args:
            database_path: DuckDB database path (":memory:" for in-memory)
        """
        self.db_path = database_path
        self.conn: duckdb.DuckDBPyConnection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create the schema."""
        async with self._lock:
            if self.conn:
                return
            self.conn = duckdb.connect(str(self.db_path))
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS analysis_cache (
                    fingerprint VARCHAR PRIMARY KEY,
                    family VARCHAR NOT NULL,
                    user_id VARCHAR NOT NULL,
                    battery_bucket INTEGER NOT NULL,
                    battery_level DOUBLE NOT NULL,
                    tags VARCHAR NOT NULL,
                    time_bucket VARCHAR NOT NULL,
                    env_bucket VARCHAR NOT NULL,
                    result VARCHAR NOT NULL,
                    created_at DOUBLE NOT NULL,
                    expires_at DOUBLE NOT NULL
                )
            """)
            logger.info(f"Persistent cache initialized ({self.db_path})")

    def _require_conn(self) -> duckdb.DuckDBPyConnection:
        if not self.conn:
            raise RuntimeError("Persistent cache not initialized")
        return self.conn

    async def get(self, digest: str, now: float) -> CacheEntry | None:
        """Get a live entry by fingerprint digest."""
        async with self._lock:
            row = (
                self._require_conn()
                .execute(
                    f"SELECT {_COLUMNS} FROM analysis_cache WHERE fingerprint = ? AND expires_at > ?",
                    [digest, now],
                )
                .fetchone()
            )
        return self._row_to_entry(row) if row else None

    async def find_similar(
        self, fingerprint: ContextFingerprint, tolerance: float, now: float
    ) -> CacheEntry | None:
        """Find the closest live entry of the same family and environment bucket.

        Args:
            fingerprint: Fingerprint of the request
            tolerance: Maximum battery level distance
            now: Current time (epoch seconds)

        Returns:
            Closest matching entry, newest first on ties
        """
        async with self._lock:
            row = (
                self._require_conn()
                .execute(
                    f"""
                    SELECT {_COLUMNS} FROM analysis_cache
                    WHERE family = ?
                      AND env_bucket = ?
                      AND expires_at > ?
                      AND abs(battery_level - ?) <= ?
                    ORDER BY abs(battery_level - ?) ASC, created_at DESC
                    LIMIT 1
                    """,
                    [
                        fingerprint.family,
                        fingerprint.env_bucket,
                        now,
                        fingerprint.battery_level,
                        tolerance,
                        fingerprint.battery_level,
                    ],
                )
                .fetchone()
            )
        return self._row_to_entry(row) if row else None

    async def put(self, entry: CacheEntry) -> None:
        """Insert or replace an entry."""
        fp = entry.fingerprint
        async with self._lock:
            self._require_conn().execute(
                f"INSERT OR REPLACE INTO analysis_cache ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    fp.digest,
                    fp.family,
                    fp.user_id,
                    fp.battery_bucket,
                    fp.battery_level,
                    ",".join(fp.tags),
                    fp.time_bucket,
                    fp.env_bucket,
                    entry.result.model_dump_json(),
                    entry.created_at,
                    entry.expires_at,
                ],
            )

    async def remove_family(self, family: str) -> set[str]:
        """Delete every entry of a fingerprint family.

        Returns:
            Digests of the removed entries
        """
        async with self._lock:
            conn = self._require_conn()
            rows = conn.execute(
                "SELECT fingerprint FROM analysis_cache WHERE family = ?", [family]
            ).fetchall()
            conn.execute("DELETE FROM analysis_cache WHERE family = ?", [family])
        return {row[0] for row in rows}

    async def purge_expired(self, now: float) -> int:
        async with self._lock:
            conn = self._require_conn()
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM analysis_cache WHERE expires_at <= ?", [now]
            ).fetchone()
            conn.execute("DELETE FROM analysis_cache WHERE expires_at <= ?", [now])
        return int(count)

    async def count(self) -> int:
        async with self._lock:
            (count,) = self._require_conn().execute("SELECT COUNT(*) FROM analysis_cache").fetchone()
        return int(count)

    async def clear(self) -> None:
        async with self._lock:
            self._require_conn().execute("DELETE FROM analysis_cache")

    async def close(self) -> None:
        """Close the database connection."""
        async with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.info("Persistent cache closed")

    @staticmethod
    def _row_to_entry(row: tuple) -> CacheEntry | None:
        (
            digest,
            _family,
            user_id,
            battery_bucket,
            battery_level,
            tags,
            time_bucket,
            env_bucket,
            result_json,
            created_at,
            expires_at,
        ) = row
        try:
            result = AnalysisResult.model_validate_json(result_json)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable cache entry {digest[:12]}: {e}")
            return None

        fingerprint = ContextFingerprint(
            digest=digest,
            user_id=user_id,
            battery_bucket=int(battery_bucket),
            tags=tuple(tag for tag in tags.split(",") if tag),
            time_bucket=time_bucket,
            env_bucket=env_bucket,
            battery_level=float(battery_level),
        )
        return CacheEntry(
            fingerprint=fingerprint,
            result=result,
            created_at=float(created_at),
            ttl=float(expires_at) - float(created_at),
        )
