"""
Navigation Model

Learns which page the agent tends to visit after which, so selectors for
the likely next page can be loaded before they are asked for.

Edges live in two places:
- an in-memory map updated synchronously on every transition
- the navigation_patterns table, updated through the write-behind queue

Predictions prefer the in-memory counts and fill in destinations that are
only known historically.
"""

import logging
import threading
from typing import Callable, Dict, List

from ..knowledge.models import NavigationEdge, NavigationPrediction
from ..knowledge.selector_store import SelectorStore
from ..knowledge.write_queue import WriteBehindQueue

logger = logging.getLogger(__name__)


class NavigationModel:
    """
    First-order transition model over URL patterns.

    P(to | from) = count(from, to) / sum(count(from, *))
    """

    def __init__(
        self,
        store: SelectorStore,
        writes: WriteBehindQueue,
        clock: Callable[[], int],
        prediction_limit: int = 5
    ):
        self.store = store
        self.writes = writes
        self.clock = clock
        self.prediction_limit = prediction_limit

        # from_url -> to_url -> edge
        self._edges: Dict[str, Dict[str, NavigationEdge]] = {}
        self._lock = threading.Lock()

    def record_transition(self, from_url: str, to_url: str) -> NavigationEdge:
        """Count one from_url -> to_url navigation"""
        now = self.clock()
        with self._lock:
            destinations = self._edges.setdefault(from_url, {})
            existing = destinations.get(to_url)
            edge = NavigationEdge(
                from_url=from_url,
                to_url=to_url,
                count=(existing.count + 1) if existing else 1,
                last_seen=now,
            )
            destinations[to_url] = edge

        self.writes.submit(
            f"navigation:{from_url}->{to_url}",
            lambda: self.store.record_transition(from_url, to_url, now)
        )
        return edge

    def edges(self, from_url: str) -> List[NavigationEdge]:
        """In-memory edges leaving a URL"""
        with self._lock:
            return list(self._edges.get(from_url, {}).values())

    async def predict(self, from_url: str) -> List[NavigationPrediction]:
        """
        Likely next destinations from a URL, most probable first.

        Returns:
            Predictions whose probabilities sum to 1 (empty when the URL
            has never been left)
        """
        historical = await self.store.get_transitions(from_url, limit=self.prediction_limit)

        merged: Dict[str, int] = {}
        for edge in self.edges(from_url):
            merged[edge.to_url] = edge.count
        for edge in historical:
            if edge.to_url not in merged:
                merged[edge.to_url] = edge.count

        total = sum(merged.values())
        if total <= 0:
            return []

        predictions = [
            NavigationPrediction(to_url=to_url, probability=count / total)
            for to_url, count in merged.items()
        ]
        predictions.sort(key=lambda p: p.probability, reverse=True)
        return predictions

    @staticmethod
    def eligible(predictions: List[NavigationPrediction], threshold: float) -> List[NavigationPrediction]:
        return [p for p in predictions if p.probability >= threshold]

    async def reset(self) -> int:
        """Forget every edge, in memory and on disk"""
        with self._lock:
            self._edges.clear()
        await self.writes.flush()
        removed = await self.store.clear_transitions()
        logger.info(f"[NAV-MODEL] Navigation history reset ({removed} stored edges removed)")
        return removed
