"""
Unit tests for NavigationModel and the write-behind queue it feeds.
"""

import asyncio
import pytest
import pytest_asyncio
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from selector_cache.context.navigation_model import NavigationModel
from selector_cache.knowledge.models import NavigationPrediction
from selector_cache.knowledge.write_queue import WriteBehindQueue


@pytest_asyncio.fixture
async def writes():
    queue = WriteBehindQueue()
    queue.start()
    yield queue
    await queue.stop()


@pytest.fixture
def model(store, writes, clock):
    return NavigationModel(store=store, writes=writes, clock=clock, prediction_limit=5)


class TestRecordTransition:
    """Test transition counting."""

    @pytest.mark.asyncio
    async def test_counts_in_memory_immediately(self, model):
        model.record_transition("/a", "/b")
        edge = model.record_transition("/a", "/b")

        assert edge.count == 2
        assert [(e.to_url, e.count) for e in model.edges("/a")] == [("/b", 2)]

    @pytest.mark.asyncio
    async def test_persists_through_queue(self, model, store, writes):
        model.record_transition("/a", "/b")
        model.record_transition("/a", "/b")
        await writes.flush()

        edges = await store.get_transitions("/a")

        assert [(e.to_url, e.count) for e in edges] == [("/b", 2)]


class TestPredict:
    """Test next-page predictions."""

    @pytest.mark.asyncio
    async def test_probabilities_from_counts(self, model):
        """Test the five-to-one split between two destinations."""
        for _ in range(5):
            model.record_transition("/a", "/b")
        model.record_transition("/a", "/c")

        predictions = await model.predict("/a")

        assert [p.to_url for p in predictions] == ["/b", "/c"]
        assert predictions[0].probability == pytest.approx(5 / 6)
        assert predictions[1].probability == pytest.approx(1 / 6)

    @pytest.mark.asyncio
    async def test_probabilities_sum_to_one(self, model):
        for to_url, times in [("/b", 3), ("/c", 2), ("/d", 1)]:
            for _ in range(times):
                model.record_transition("/a", to_url)

        predictions = await model.predict("/a")

        assert sum(p.probability for p in predictions) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_unknown_url_has_no_predictions(self, model):
        assert await model.predict("/never") == []

    @pytest.mark.asyncio
    async def test_uses_history_from_store(self, store, writes, clock):
        """Test that a fresh model predicts from persisted edges."""
        await store.record_transition("/a", "/b", clock())
        await store.record_transition("/a", "/b", clock())
        await store.record_transition("/a", "/c", clock())

        fresh = NavigationModel(store=store, writes=writes, clock=clock)
        predictions = await fresh.predict("/a")

        assert [p.to_url for p in predictions] == ["/b", "/c"]
        assert predictions[0].probability == pytest.approx(2 / 3)

    @pytest.mark.asyncio
    async def test_memory_counts_win_over_history(self, store, writes, clock):
        await store.record_transition("/a", "/b", clock())
        await store.record_transition("/a", "/c", clock())

        model = NavigationModel(store=store, writes=writes, clock=clock)
        for _ in range(3):
            model.record_transition("/a", "/c")

        predictions = await model.predict("/a")

        assert predictions[0].to_url == "/c"
        assert predictions[0].probability == pytest.approx(3 / 4)

    def test_eligible_filters_by_threshold(self):
        predictions = [
            NavigationPrediction(to_url="/b", probability=0.8),
            NavigationPrediction(to_url="/c", probability=0.6),
            NavigationPrediction(to_url="/d", probability=0.2),
        ]

        eligible = NavigationModel.eligible(predictions, 0.6)

        assert [p.to_url for p in eligible] == ["/b", "/c"]


class TestReset:
    """Test forgetting navigation history."""

    @pytest.mark.asyncio
    async def test_reset_clears_memory_and_store(self, model, store):
        model.record_transition("/a", "/b")
        model.record_transition("/b", "/c")

        removed = await model.reset()

        assert removed == 2
        assert model.edges("/a") == []
        assert await model.predict("/a") == []


class TestWriteBehindQueue:
    """Test the background write queue."""

    @pytest.mark.asyncio
    async def test_writes_apply_in_order(self, writes):
        applied = []

        async def op(n):
            await asyncio.sleep(0)
            applied.append(n)

        for n in range(5):
            writes.submit(f"op-{n}", lambda n=n: op(n))
        await writes.flush()

        assert applied == [0, 1, 2, 3, 4]
        assert writes.completed == 5

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_drainer(self, writes):
        applied = []

        async def boom():
            raise RuntimeError("disk full")

        async def ok():
            applied.append("ok")

        writes.submit("boom", boom)
        writes.submit("ok", ok)
        await writes.flush()

        assert applied == ["ok"]
        assert writes.failed == 1

    @pytest.mark.asyncio
    async def test_submit_after_stop_is_dropped(self):
        queue = WriteBehindQueue()
        queue.start()
        await queue.stop()

        queue.submit("late", lambda: asyncio.sleep(0))

        assert queue.pending == 0
        assert not queue.running
