"""
Pytest configuration and shared fixtures for selector cache tests.
"""

import pytest
import pytest_asyncio
import sys
from pathlib import Path
from unittest.mock import Mock, AsyncMock, MagicMock

# Add backend app to path
sys.path.insert(0, str(Path(__file__).parent.parent / "app"))

from selector_cache import CacheConfig, SelectorCache, SelectorStore

# Fixed epoch-ms start time for the fake clock
CLOCK_START = 1_700_000_000_000


class FakeClock:
    """Controllable epoch-ms clock"""

    def __init__(self, start: int = CLOCK_START):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class RecordingSink:
    """Telemetry sink that keeps every event"""

    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)

    def actions(self):
        return [e["action"] for e in self.events]


# ==================== Clock / Telemetry Fixtures ====================

@pytest.fixture
def clock():
    """Fake clock starting at a fixed time."""
    return FakeClock()


@pytest.fixture
def telemetry():
    """Recording telemetry sink."""
    return RecordingSink()


# ==================== Storage Fixtures ====================

@pytest.fixture
def db_path(tmp_path):
    """Path for a fresh selector database."""
    return str(tmp_path / "data" / "selector_cache" / "selectors.db")


@pytest.fixture
def cache_config(db_path):
    """Cache config pointing at the temporary database."""
    return CacheConfig(db_path=db_path)


@pytest_asyncio.fixture
async def store(db_path):
    """Opened selector store."""
    store = SelectorStore(db_path)
    await store.open()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def cache(cache_config, clock, telemetry):
    """Initialized selector cache on a temporary database."""
    cache = SelectorCache(cache_config, telemetry=telemetry, clock=clock)
    await cache.init()
    yield cache
    await cache.close()


# ==================== Mock Page Fixture ====================

@pytest.fixture
def mock_page():
    """Create a mock Playwright page object."""
    page = AsyncMock()

    # Basic properties
    page.url = "https://example.com/login?next=/home"
    page.main_frame = MagicMock()
    page.main_frame.url = page.url

    # Locators
    mock_locator = AsyncMock()
    mock_locator.wait_for = AsyncMock()
    mock_locator.click = AsyncMock()
    mock_locator.first = mock_locator

    page.locator = Mock(return_value=mock_locator)
    page.on = Mock()

    return page
