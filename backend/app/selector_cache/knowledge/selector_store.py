"""
Selector Store - durable SQLite storage for selectors and navigation edges

The source of truth across restarts. Every operation is defensive: a
storage error is logged and reported as "not found" / "not persisted",
so the cache above it can keep serving from memory.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from ..errors import MalformedRecordError, StorageUnavailableError
from .models import NavigationEdge, SelectorEntry

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS selectors (
    id TEXT PRIMARY KEY,
    domain TEXT NOT NULL,
    url_pattern TEXT NOT NULL,
    test_id TEXT NOT NULL,
    css_selector TEXT NOT NULL,
    xpath_selector TEXT,
    element_type TEXT NOT NULL,
    description TEXT,
    confidence REAL DEFAULT 1.0,
    success_count INTEGER DEFAULT 0,
    failure_count INTEGER DEFAULT 0,
    last_used INTEGER,
    last_updated INTEGER,
    ttl_ms INTEGER,
    alternatives TEXT DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_domain ON selectors(domain);
CREATE INDEX IF NOT EXISTS idx_url_pattern ON selectors(url_pattern);
CREATE INDEX IF NOT EXISTS idx_test_id ON selectors(test_id);
CREATE INDEX IF NOT EXISTS idx_confidence ON selectors(confidence DESC);

CREATE TABLE IF NOT EXISTS navigation_patterns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    from_url TEXT NOT NULL,
    to_url TEXT NOT NULL,
    count INTEGER DEFAULT 1,
    last_seen INTEGER,
    UNIQUE(from_url, to_url)
);

CREATE INDEX IF NOT EXISTS idx_from_url ON navigation_patterns(from_url);
"""

SELECTOR_COLUMNS = (
    "id", "domain", "url_pattern", "test_id", "css_selector", "xpath_selector",
    "element_type", "description", "confidence", "success_count", "failure_count",
    "last_used", "last_updated", "ttl_ms", "alternatives"
)

# Best row for a (test_id, url_pattern) pair; outcome updates target this one
BEST_ROW_SUBQUERY = """
    SELECT id FROM selectors
    WHERE test_id = ? AND url_pattern = ?
    ORDER BY confidence DESC, last_updated DESC
    LIMIT 1
"""


class SelectorStore:
    """
    Async SQLite store for selector records and navigation edges.

    Usage:
        store = SelectorStore("data/selector_cache/selector_cache.db")
        await store.open()
        await store.put(entry)
        rows = await store.query("/login", min_confidence=0.7)
        await store.close()
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def open(self):
        """
        Open the database and make sure the schema exists.

        Raises:
            StorageUnavailableError: the file or schema could not be set up
        """
        if self._db is not None:
            return

        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(self.db_path)
        except (OSError, sqlite3.Error) as e:
            raise StorageUnavailableError(self.db_path, str(e)) from e

        try:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA journal_mode = WAL")
            await db.execute("PRAGMA synchronous = NORMAL")
            await db.executescript(SCHEMA)
            await db.commit()
        except sqlite3.Error as e:
            await db.close()
            raise StorageUnavailableError(self.db_path, str(e)) from e

        self._db = db
        logger.info(f"[SELECTOR-STORE] Database initialized at {self.db_path}")

    async def close(self):
        if self._db is None:
            return
        db, self._db = self._db, None
        try:
            await db.close()
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Error closing database: {e}")

    # ==================== Internal helpers ====================

    async def _fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        async with self._db.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        async with self._db.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def _execute(self, sql: str, params: tuple = ()) -> int:
        async with self._db.execute(sql, params) as cursor:
            changed = cursor.rowcount
        await self._db.commit()
        return changed

    def _decode_rows(self, rows: List[sqlite3.Row]) -> List[SelectorEntry]:
        entries = []
        for row in rows:
            try:
                entries.append(SelectorEntry.from_row(dict(row)))
            except MalformedRecordError as e:
                logger.error(f"[SELECTOR-STORE] Skipping row: {e}")
        return entries

    # ==================== Selector operations ====================

    async def put(self, entry: SelectorEntry) -> bool:
        """Upsert by id (full replace)"""
        if self._db is None:
            return False

        row = entry.to_row()
        placeholders = ", ".join("?" for _ in SELECTOR_COLUMNS)
        sql = (
            f"INSERT OR REPLACE INTO selectors ({', '.join(SELECTOR_COLUMNS)}) "
            f"VALUES ({placeholders})"
        )
        try:
            await self._execute(sql, tuple(row[c] for c in SELECTOR_COLUMNS))
            return True
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to persist selector {entry.id}: {e}")
            return False

    async def get(self, entry_id: str) -> Optional[SelectorEntry]:
        if self._db is None:
            return None
        try:
            row = await self._fetchone("SELECT * FROM selectors WHERE id = ?", (entry_id,))
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to load selector {entry_id}: {e}")
            return None

        if row is None:
            return None
        decoded = self._decode_rows([row])
        return decoded[0] if decoded else None

    async def query(
        self,
        url_pattern_or_domain: str,
        min_confidence: float,
        domain: Optional[str] = None,
        limit: int = 100
    ) -> List[SelectorEntry]:
        """
        Ranked rows for a URL pattern or domain.

        Args:
            url_pattern_or_domain: Matched against url_pattern, and against
                domain when no separate domain is given
            min_confidence: Rows below this are left out
            domain: Domain to match in addition to the pattern
            limit: Maximum rows returned

        Returns:
            Entries ordered by confidence, then success count
        """
        if self._db is None:
            return []

        domain = url_pattern_or_domain if domain is None else domain
        if domain:
            where = "(url_pattern = ? OR domain = ?)"
            params: tuple = (url_pattern_or_domain, domain)
        else:
            where = "url_pattern = ?"
            params = (url_pattern_or_domain,)

        sql = f"""
            SELECT * FROM selectors
            WHERE {where}
            AND confidence >= ?
            ORDER BY confidence DESC, success_count DESC
            LIMIT ?
        """
        try:
            rows = await self._fetchall(sql, params + (min_confidence, limit))
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Query failed for {url_pattern_or_domain}: {e}")
            return []
        return self._decode_rows(rows)

    async def get_by_test_id(self, test_id: str, url_pattern: Optional[str] = None) -> Optional[SelectorEntry]:
        """Single best row for a test id, scoped to url_pattern when given"""
        if self._db is None:
            return None

        if url_pattern:
            sql = """
                SELECT * FROM selectors
                WHERE test_id = ? AND url_pattern = ?
                ORDER BY confidence DESC, last_updated DESC
                LIMIT 1
            """
            params: tuple = (test_id, url_pattern)
        else:
            sql = """
                SELECT * FROM selectors
                WHERE test_id = ?
                ORDER BY confidence DESC, last_used DESC
                LIMIT 1
            """
            params = (test_id,)

        try:
            row = await self._fetchone(sql, params)
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to get selector by testId {test_id}: {e}")
            return None

        if row is None:
            return None
        decoded = self._decode_rows([row])
        return decoded[0] if decoded else None

    async def update_outcome(
        self,
        test_id: str,
        url_pattern: str,
        success: bool,
        now: int,
        entry_id: Optional[str] = None
    ) -> bool:
        """
        Count one success or failure in a single UPDATE.

        Confidence is recomputed from the incremented counters inside the
        same statement. SQLite evaluates every SET expression against the
        old row, so the +1 is spelled out.
        """
        if self._db is None:
            return False

        if success:
            assignments = """
                success_count = success_count + 1,
                confidence = CAST(success_count + 1 AS REAL) / (success_count + failure_count + 2)
            """
        else:
            assignments = """
                failure_count = failure_count + 1,
                confidence = CAST(success_count AS REAL) / (success_count + failure_count + 2)
            """

        if entry_id:
            target = "id = ?"
            params: tuple = (entry_id,)
        else:
            target = f"id = ({BEST_ROW_SUBQUERY})"
            params = (test_id, url_pattern)

        sql = f"UPDATE selectors SET {assignments}, last_used = ? WHERE {target}"
        try:
            changed = await self._execute(sql, (now,) + params)
            return changed > 0
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to update outcome for {test_id}@{url_pattern}: {e}")
            return False

    async def set_alternatives(self, entry_id: str, alternatives: List[str]) -> bool:
        if self._db is None:
            return False
        try:
            changed = await self._execute(
                "UPDATE selectors SET alternatives = ? WHERE id = ?",
                (json.dumps(alternatives), entry_id)
            )
            return changed > 0
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to update alternatives for {entry_id}: {e}")
            return False

    async def delete(self, entry_id: str) -> bool:
        if self._db is None:
            return False
        try:
            return await self._execute("DELETE FROM selectors WHERE id = ?", (entry_id,)) > 0
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to delete selector {entry_id}: {e}")
            return False

    async def delete_expired(self, now: int) -> int:
        """Remove rows whose last_updated + ttl_ms is in the past"""
        if self._db is None:
            return 0
        try:
            removed = await self._execute(
                "DELETE FROM selectors WHERE last_updated + ttl_ms < ?", (now,)
            )
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to cleanup: {e}")
            return 0

        if removed:
            logger.info(f"[SELECTOR-STORE] Cleaned up {removed} expired selectors")
        return removed

    async def list_low_confidence(self, threshold: float, limit: int = 50) -> List[SelectorEntry]:
        """Rows below a confidence threshold, weakest first"""
        if self._db is None:
            return []
        try:
            rows = await self._fetchall(
                "SELECT * FROM selectors WHERE confidence < ? ORDER BY confidence ASC LIMIT ?",
                (threshold, limit)
            )
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to get low confidence selectors: {e}")
            return []
        return self._decode_rows(rows)

    async def aggregate(self) -> Dict[str, Any]:
        """Row count, mean confidence and outcome totals"""
        empty = {"count": 0, "avg_confidence": 0.0, "total_success": 0, "total_failure": 0}
        if self._db is None:
            return empty
        try:
            row = await self._fetchone("""
                SELECT COUNT(*) AS count,
                       AVG(confidence) AS avg_confidence,
                       SUM(success_count) AS total_success,
                       SUM(failure_count) AS total_failure
                FROM selectors
            """)
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to get stats: {e}")
            return empty

        if row is None:
            return empty
        return {
            "count": row["count"] or 0,
            "avg_confidence": row["avg_confidence"] or 0.0,
            "total_success": row["total_success"] or 0,
            "total_failure": row["total_failure"] or 0,
        }

    # ==================== Navigation edges ====================

    async def record_transition(self, from_url: str, to_url: str, now: int) -> bool:
        if self._db is None:
            return False
        try:
            await self._execute("""
                INSERT INTO navigation_patterns (from_url, to_url, count, last_seen)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(from_url, to_url) DO UPDATE SET
                    count = count + 1,
                    last_seen = excluded.last_seen
            """, (from_url, to_url, now))
            return True
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to record navigation {from_url} -> {to_url}: {e}")
            return False

    async def get_transitions(self, from_url: str, limit: int = 5) -> List[NavigationEdge]:
        if self._db is None:
            return []
        try:
            rows = await self._fetchall("""
                SELECT from_url, to_url, count, last_seen
                FROM navigation_patterns
                WHERE from_url = ?
                ORDER BY count DESC
                LIMIT ?
            """, (from_url, limit))
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to get navigation patterns for {from_url}: {e}")
            return []

        return [
            NavigationEdge(
                from_url=row["from_url"],
                to_url=row["to_url"],
                count=row["count"] or 0,
                last_seen=row["last_seen"] or 0,
            )
            for row in rows
        ]

    async def clear_transitions(self) -> int:
        if self._db is None:
            return 0
        try:
            return await self._execute("DELETE FROM navigation_patterns")
        except sqlite3.Error as e:
            logger.error(f"[SELECTOR-STORE] Failed to reset navigation patterns: {e}")
            return 0
