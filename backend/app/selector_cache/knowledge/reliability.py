"""
Reliability Tracker

Keeps success/failure counters and confidence for cached selectors and
auto-heals a failing selector by promoting its next stored alternative.

Entry lifecycle (derived from confidence, see SelectorHealth):
    fresh (>= 0.7) -> degraded (>= 0.3) -> exhausted (< 0.3, no alternatives)
Exhausted entries stay readable; only TTL cleanup or explicit deletion
removes them.
"""

import logging
import uuid
from typing import Callable, List, Optional, Tuple

from .memory_cache import VolatileCache
from .models import (
    HEALED_CONFIDENCE,
    SelectorEntry,
    merge_alternatives,
)
from .selector_store import SelectorStore
from .write_queue import WriteBehindQueue
from ..telemetry import TelemetrySink, NullTelemetrySink, safe_emit

logger = logging.getLogger(__name__)


class ReliabilityTracker:
    """
    Records selector outcomes and performs auto-heal.

    Updates are whole-object replacements in the memory tier followed by a
    queued store write, so a reader sees either the old entry or the new
    one, never a mix.
    """

    def __init__(
        self,
        volatile: VolatileCache,
        store: SelectorStore,
        writes: WriteBehindQueue,
        clock: Callable[[], int],
        max_alternatives: int = 5,
        telemetry: Optional[TelemetrySink] = None
    ):
        self.volatile = volatile
        self.store = store
        self.writes = writes
        self.clock = clock
        self.max_alternatives = max_alternatives
        self.telemetry = telemetry or NullTelemetrySink()

    async def _resolve(
        self,
        test_id: str,
        url_pattern: str,
        entry_id: Optional[str] = None
    ) -> Optional[SelectorEntry]:
        """
        The entry outcomes for (test_id, url_pattern) apply to.

        Without an entry_id this is the best-ranked match, the same one
        get_selector_by_test_id hands out.
        """
        now = self.clock()
        if entry_id is not None:
            entry = self.volatile.find_by_id(entry_id)
            if entry is None:
                entry = await self.store.get(entry_id)
            if entry is not None and (entry.test_id != test_id or entry.url_pattern != url_pattern):
                logger.warning(f"[RELIABILITY] Entry {entry_id} does not belong to {test_id}@{url_pattern}")
                return None
        else:
            entry = self.volatile.find(test_id, url_pattern, now)
            if entry is not None:
                return entry
            entry = await self.store.get_by_test_id(test_id, url_pattern)

        if entry is None or entry.is_expired(now):
            return None

        # Keep it in memory so back-to-back outcomes don't re-read a row
        # whose queued update hasn't landed yet
        self.volatile.add_entry(entry)
        return entry

    async def record_success(
        self,
        test_id: str,
        url_pattern: str,
        entry_id: Optional[str] = None
    ) -> Optional[SelectorEntry]:
        """Count a successful use; returns the updated entry"""
        entry = await self._resolve(test_id, url_pattern, entry_id)
        if entry is None:
            logger.debug(f"[RELIABILITY] No selector for {test_id}@{url_pattern}, success not recorded")
            return None

        now = self.clock()
        updated = entry.with_outcome(success=True, now=now)
        self.volatile.replace_entry(updated)
        self.writes.submit(
            f"success:{updated.id}",
            lambda: self.store.update_outcome(test_id, url_pattern, True, now, entry_id=updated.id)
        )

        safe_emit(self.telemetry, {
            "action": "record_usage",
            "testId": test_id,
            "urlPattern": url_pattern,
            "success": True,
            "confidence": updated.confidence,
        })
        return updated

    async def record_failure(
        self,
        test_id: str,
        url_pattern: str,
        entry_id: Optional[str] = None
    ) -> Optional[SelectorEntry]:
        """
        Count a failed use and try to heal.

        Returns:
            A new entry built from the next alternative locator, or None
            when there is nothing left to try (or the selector is unknown)
        """
        _, healed = await self.apply_failure(test_id, url_pattern, entry_id)
        return healed

    async def apply_failure(
        self,
        test_id: str,
        url_pattern: str,
        entry_id: Optional[str] = None
    ) -> Tuple[Optional[SelectorEntry], Optional[SelectorEntry]]:
        """
        record_failure, also handing back the entry that failed.

        Returns:
            (failed, healed): the failed entry with its new counters and
            confidence, and the entry healed from its next alternative.
            Either is None when the selector is unknown or nothing is left
            to try.
        """
        entry = await self._resolve(test_id, url_pattern, entry_id)
        if entry is None:
            logger.debug(f"[RELIABILITY] No selector for {test_id}@{url_pattern}, failure not recorded")
            return None, None

        now = self.clock()
        updated = entry.with_outcome(success=False, now=now)

        safe_emit(self.telemetry, {
            "action": "record_usage",
            "testId": test_id,
            "urlPattern": url_pattern,
            "success": False,
            "confidence": updated.confidence,
        })

        if not updated.alternatives:
            self.volatile.replace_entry(updated)
            self.writes.submit(
                f"failure:{updated.id}",
                lambda: self.store.update_outcome(test_id, url_pattern, False, now, entry_id=updated.id)
            )
            logger.info(
                f"[RELIABILITY] {test_id}@{url_pattern} failed with no alternatives left "
                f"(confidence: {updated.confidence:.2f})"
            )
            return updated, None

        replacement, remaining = updated.alternatives[0], list(updated.alternatives[1:])
        updated = updated.model_copy(update={"alternatives": remaining})
        healed = updated.model_copy(update={
            "id": str(uuid.uuid4()),
            "css_selector": replacement,
            "confidence": HEALED_CONFIDENCE,
            "success_count": 0,
            "failure_count": 0,
            "last_used": now,
            "last_updated": now,
            "alternatives": remaining,
        })

        self.volatile.replace_entry(updated)
        self.volatile.add_entry(healed)

        async def persist():
            await self.store.update_outcome(test_id, url_pattern, False, now, entry_id=updated.id)
            await self.store.set_alternatives(updated.id, remaining)
            await self.store.put(healed)

        self.writes.submit(f"heal:{updated.id}", persist)

        logger.info(f"[RELIABILITY] Auto-healed {test_id}@{url_pattern}: '{entry.css_selector}' -> '{replacement}'")
        safe_emit(self.telemetry, {
            "action": "auto_heal",
            "testId": test_id,
            "urlPattern": url_pattern,
            "newSelector": replacement,
            "remaining": len(remaining),
        })
        return updated, healed

    async def add_alternatives(
        self,
        test_id: str,
        url_pattern: str,
        alternatives: List[str]
    ) -> Optional[SelectorEntry]:
        """Merge fallback locators into an entry (deduplicated, capped)"""
        entry = await self._resolve(test_id, url_pattern)
        if entry is None:
            return None

        merged = merge_alternatives(
            entry.alternatives,
            alternatives,
            self.max_alternatives,
            exclude=entry.css_selector
        )
        if merged == entry.alternatives:
            return entry

        updated = entry.model_copy(update={"alternatives": merged})
        self.volatile.replace_entry(updated)
        self.writes.submit(
            f"alternatives:{updated.id}",
            lambda: self.store.set_alternatives(updated.id, merged)
        )
        return updated

    async def get_confidence(self, test_id: str, url_pattern: str) -> float:
        entry = await self._resolve(test_id, url_pattern)
        return entry.confidence if entry is not None else 0.0
