"""
Selector Cache

Sub-10ms selector lookups for the browser agent:
- Tiered reads: memory -> prefetch queue -> SQLite
- Confidence scoring from reported successes and failures
- Auto-healing through stored alternative locators
- Predictive prefetch from learned navigation patterns

One instance is built at process start and handed to whoever needs it.
Nothing here raises into the caller: storage trouble degrades the cache to
memory-only mode and misses come back as empty results.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..config import CacheConfig
from ..context.navigation_model import NavigationModel
from ..errors import StorageUnavailableError
from ..knowledge.memory_cache import PrefetchQueue, VolatileCache
from ..knowledge.models import (
    CacheStats,
    CleanupReport,
    LookupSource,
    NavigationPrediction,
    OutcomeResult,
    SelectorDraft,
    SelectorEntry,
    SelectorLookupResult,
    extract_domain,
    now_ms,
)
from ..knowledge.reliability import ReliabilityTracker
from ..knowledge.selector_store import SelectorStore
from ..knowledge.write_queue import WriteBehindQueue
from ..telemetry import (
    JsonlTelemetrySink,
    LoggingTelemetrySink,
    TelemetrySink,
    safe_emit,
)

logger = logging.getLogger(__name__)


class SelectorCache:
    """
    Public entry point of the selector cache.

    Usage:
        cache = SelectorCache(CacheConfig(db_path="data/selectors.db"))
        await cache.init()

        results = await cache.get_selectors("https://app.example.com/login")
        if not results:
            ...  # live discovery, then cache_selector(...)

        healed = await cache.record_failure("login-btn", "https://app.example.com/login")
        cache.record_navigation("https://app.example.com/login", "https://app.example.com/home")

        await cache.close()
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        telemetry: Optional[TelemetrySink] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        self.config = config or CacheConfig()
        self.clock = clock or now_ms

        if telemetry is None:
            if self.config.telemetry_path:
                telemetry = JsonlTelemetrySink(self.config.telemetry_path)
            else:
                telemetry = LoggingTelemetrySink()
        self.telemetry = telemetry

        self.store = SelectorStore(self.config.db_path)
        self.writes = WriteBehindQueue()
        self.volatile = VolatileCache(capacity=self.config.memory_cache_size)
        self.prefetch_queue = PrefetchQueue()
        self.tracker = ReliabilityTracker(
            volatile=self.volatile,
            store=self.store,
            writes=self.writes,
            clock=self.clock,
            max_alternatives=self.config.max_alternatives,
            telemetry=self.telemetry,
        )
        self.navigation = NavigationModel(
            store=self.store,
            writes=self.writes,
            clock=self.clock,
            prediction_limit=self.config.prediction_limit,
        )

        self._prefetch_tasks: Set[asyncio.Task] = set()
        self._initialized = False
        self._closed = False
        self.current_url: Optional[str] = None

        self.stats: Dict[str, int] = {
            "memory_hits": 0,
            "prefetch_hits": 0,
            "store_hits": 0,
            "misses": 0,
        }

    # ==================== Lifecycle ====================

    @property
    def memory_only(self) -> bool:
        """True when the durable store is not available"""
        return not self.store.is_open

    async def init(self):
        """Open the store and start background writes"""
        if self._initialized:
            return
        try:
            await self.store.open()
        except StorageUnavailableError as e:
            logger.warning(f"[SELECTOR-CACHE] {e}; continuing in memory-only mode")
        self.writes.start()
        self._initialized = True
        self._closed = False

    async def close(self):
        """Abandon pending prefetches, flush queued writes and close the store"""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._prefetch_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._prefetch_tasks.clear()

        await self.writes.stop()
        await self.store.close()
        self._initialized = False

    async def __aenter__(self) -> "SelectorCache":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def flush(self):
        """Wait for every queued store write to land"""
        await self.writes.flush()

    # ==================== Lookups ====================

    async def get_selectors(self, url_pattern: str) -> List[SelectorLookupResult]:
        """
        Selectors for a URL pattern, best first.

        An empty list is a normal answer: the caller should fall back to
        live discovery.
        """
        start = time.perf_counter()
        now = self.clock()

        # 1. Memory (fastest)
        cached = self.volatile.get(url_pattern, now)
        if cached:
            elapsed = self._elapsed_ms(start)
            self.stats["memory_hits"] += 1
            self._emit_lookup(url_pattern, len(cached), elapsed, "memory")
            return [SelectorLookupResult(entry=e, source=LookupSource.CACHE, lookup_time_ms=elapsed) for e in cached]

        # 2. Prefetch queue, promoted into memory on hit
        prefetched = self.prefetch_queue.take(url_pattern, now)
        if prefetched:
            self.volatile.put(url_pattern, prefetched)
            elapsed = self._elapsed_ms(start)
            self.stats["prefetch_hits"] += 1
            self._emit_lookup(url_pattern, len(prefetched), elapsed, "prefetch")
            return [SelectorLookupResult(entry=e, source=LookupSource.PREFETCH, lookup_time_ms=elapsed) for e in prefetched]

        # 3. Durable store, populating memory on hit
        stored = await self._query_store(url_pattern)
        elapsed = self._elapsed_ms(start)
        if stored:
            self.volatile.put(url_pattern, stored)
            self.stats["store_hits"] += 1
            self._emit_lookup(url_pattern, len(stored), elapsed, "sqlite")
            return [SelectorLookupResult(entry=e, source=LookupSource.CACHE, lookup_time_ms=elapsed) for e in stored]

        self.stats["misses"] += 1
        self._emit_lookup(url_pattern, 0, elapsed, LookupSource.DISCOVERY_MISS.value)
        return []

    async def get_selector_by_test_id(
        self,
        test_id: str,
        url_pattern: Optional[str] = None
    ) -> Optional[SelectorEntry]:
        """Best entry for a logical element, scoped to a page when given"""
        start = time.perf_counter()
        now = self.clock()

        found = self.volatile.find(test_id, url_pattern, now)
        if found is not None:
            self.stats["memory_hits"] += 1
            return found

        if url_pattern is not None and url_pattern in self.prefetch_queue:
            prefetched = self.prefetch_queue.take(url_pattern, now)
            if prefetched:
                self.volatile.put(url_pattern, prefetched)
                found = self.volatile.find(test_id, url_pattern, now)
                if found is not None:
                    self.stats["prefetch_hits"] += 1
                    self._emit_lookup(test_id, 1, self._elapsed_ms(start), "prefetch-testid")
                    return found

        stored = await self.store.get_by_test_id(test_id, url_pattern)
        if stored is not None and not stored.is_expired(now):
            self.stats["store_hits"] += 1
            self._emit_lookup(test_id, 1, self._elapsed_ms(start), "sqlite-testid")
            return stored

        self.stats["misses"] += 1
        return None

    async def _query_store(self, url_pattern: str) -> List[SelectorEntry]:
        now = self.clock()
        rows = await self.store.query(
            url_pattern,
            self.config.confidence_threshold,
            domain=extract_domain(url_pattern),
            limit=self.config.query_limit,
        )
        return [e for e in rows if not e.is_expired(now)]

    # ==================== Writes ====================

    async def cache_selector(self, draft: Union[SelectorDraft, Dict[str, Any]]) -> str:
        """Store a newly discovered selector; returns its id"""
        if not isinstance(draft, SelectorDraft):
            draft = SelectorDraft.model_validate(draft)

        entry = draft.to_entry(
            entry_id=str(uuid.uuid4()),
            now=self.clock(),
            default_ttl_ms=self.config.default_ttl_ms,
            max_alternatives=self.config.max_alternatives,
        )
        self.volatile.add_entry(entry)
        self.writes.submit(f"put:{entry.id}", lambda: self.store.put(entry))
        logger.debug(f"[SELECTOR-CACHE] Cached '{entry.test_id}' -> '{entry.css_selector}' for {entry.url_pattern}")
        return entry.id

    async def record_success(
        self,
        test_id: str,
        url_pattern: str,
        entry_id: Optional[str] = None
    ) -> Optional[SelectorEntry]:
        return await self.tracker.record_success(test_id, url_pattern, entry_id)

    async def record_failure(
        self,
        test_id: str,
        url_pattern: str,
        entry_id: Optional[str] = None
    ) -> Optional[SelectorEntry]:
        """
        Report that a returned locator did not work.

        Args:
            test_id: Logical element name
            url_pattern: Page the locator was used on
            entry_id: The exact entry that failed (defaults to the best
                match for test_id/url_pattern)

        Returns:
            The healed entry, or None when no alternative is left
        """
        return await self.tracker.record_failure(test_id, url_pattern, entry_id)

    async def record_outcome(
        self,
        test_id: str,
        url_pattern: str,
        success: bool,
        entry_id: Optional[str] = None
    ) -> OutcomeResult:
        """Record a success or failure; the result carries the counted entry and any heal"""
        if success:
            return OutcomeResult(entry=await self.tracker.record_success(test_id, url_pattern, entry_id))
        failed, healed = await self.tracker.apply_failure(test_id, url_pattern, entry_id)
        return OutcomeResult(entry=failed, healed=healed)

    async def add_alternatives(
        self,
        test_id: str,
        url_pattern: str,
        alternatives: List[str]
    ) -> Optional[SelectorEntry]:
        return await self.tracker.add_alternatives(test_id, url_pattern, alternatives)

    async def get_confidence(self, test_id: str, url_pattern: str) -> float:
        return await self.tracker.get_confidence(test_id, url_pattern)

    async def delete_selector(self, entry_id: str) -> bool:
        """Remove an entry from every tier"""
        in_memory = self.volatile.remove_entry(entry_id)
        self.prefetch_queue.discard_entry(entry_id)
        await self.writes.flush()
        in_store = await self.store.delete(entry_id)
        return in_memory or in_store

    async def get_low_confidence_selectors(self, threshold: float = 0.5) -> List[SelectorEntry]:
        """Weak selectors worth reviewing or re-discovering"""
        if self.memory_only:
            weak = [e for e in self.volatile.entries() if e.confidence < threshold]
            weak.sort(key=lambda e: e.confidence)
            return weak[:self.config.low_confidence_limit]
        await self.writes.flush()
        return await self.store.list_low_confidence(threshold, limit=self.config.low_confidence_limit)

    # ==================== Navigation & prefetch ====================

    def record_navigation(self, from_url: str, to_url: str) -> Optional[asyncio.Task]:
        """
        Learn a page transition and start prefetching for the destination.

        Never waits for the prefetch. Returns its task (None when no event
        loop is running or the transition was ignored).
        """
        if not from_url or not to_url or from_url == to_url:
            return None

        self.navigation.record_transition(from_url, to_url)
        self.current_url = to_url

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("[SELECTOR-CACHE] No running event loop, skipping prefetch")
            return None

        if self._closed:
            return None

        task = loop.create_task(self._run_prefetch(to_url), name=f"prefetch:{to_url}")
        self._prefetch_tasks.add(task)
        task.add_done_callback(self._prefetch_tasks.discard)
        return task

    async def _run_prefetch(self, url: str):
        try:
            await self.prefetch_for_navigation(url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[SELECTOR-CACHE] Prefetch for {url} failed: {e}")

    async def predict_navigation(self, url: str) -> List[NavigationPrediction]:
        return await self.navigation.predict(url)

    async def prefetch_for_navigation(self, current_url: str) -> int:
        """
        Stage selectors for the likely next pages after current_url.

        Returns:
            Number of URL patterns staged in the prefetch queue
        """
        self.current_url = current_url
        predictions = await self.navigation.predict(current_url)
        eligible = NavigationModel.eligible(predictions, self.config.prefetch_confidence_threshold)

        staged = 0
        for prediction in eligible:
            target = prediction.to_url
            if target in self.volatile or target in self.prefetch_queue:
                continue
            entries = await self._query_store(target)
            if entries:
                self.prefetch_queue.stage(target, entries)
                staged += 1

        safe_emit(self.telemetry, {
            "action": "prefetch",
            "key": current_url,
            "count": staged,
            "predictions": len(predictions),
            "prefetchQueueSize": len(self.prefetch_queue),
        })
        return staged

    async def reset_navigation(self) -> int:
        return await self.navigation.reset()

    # ==================== Maintenance ====================

    async def cleanup(self) -> CleanupReport:
        """Drop TTL-expired entries from every tier"""
        now = self.clock()
        report = CleanupReport(
            memory_removed=self.volatile.remove_expired(now),
            prefetch_removed=self.prefetch_queue.remove_expired(now),
        )
        await self.writes.flush()
        report.store_removed = await self.store.delete_expired(now)

        logger.info(
            f"[SELECTOR-CACHE] Cleanup removed {report.total} expired selectors "
            f"(memory: {report.memory_removed}, prefetch: {report.prefetch_removed}, store: {report.store_removed})"
        )
        return report

    async def get_stats(self) -> CacheStats:
        if self.memory_only:
            entries = self.volatile.entries()
            total_success = sum(e.success_count for e in entries)
            total_failure = sum(e.failure_count for e in entries)
            aggregate = {
                "count": len(entries),
                "avg_confidence": (sum(e.confidence for e in entries) / len(entries)) if entries else 0.0,
                "total_success": total_success,
                "total_failure": total_failure,
            }
        else:
            await self.writes.flush()
            aggregate = await self.store.aggregate()

        outcomes = aggregate["total_success"] + aggregate["total_failure"]
        return CacheStats(
            total_selectors=aggregate["count"],
            memory_cache_size=len(self.volatile),
            prefetch_queue_size=len(self.prefetch_queue),
            avg_confidence=aggregate["avg_confidence"],
            hit_rate=(aggregate["total_success"] / outcomes) if outcomes > 0 else 0.0,
            memory_only=self.memory_only,
            **self.stats,
        )

    # ==================== Helpers ====================

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 2)

    def _emit_lookup(self, key: str, count: int, time_ms: float, source: str):
        safe_emit(self.telemetry, {
            "action": "lookup",
            "key": key,
            "count": count,
            "timeMs": time_ms,
            "source": source,
        })
