"""
Unit tests for SelectorResolver.

Uses a mocked Playwright page; locators are attached or time out
depending on the selector.
"""

import asyncio
import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, Mock
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from playwright.async_api import Error as PlaywrightError

from selector_cache import SelectorResolver


def page_with(mock_page, attached):
    """Make page.locator(selector) resolve only for the given selectors."""
    locators = {}

    def locator(selector):
        if selector not in locators:
            loc = AsyncMock()
            loc.first = loc
            if selector in attached:
                loc.wait_for = AsyncMock(return_value=None)
            else:
                loc.wait_for = AsyncMock(side_effect=PlaywrightError("Timeout 2000ms exceeded"))
            locators[selector] = loc
        return locators[selector]

    mock_page.locator = Mock(side_effect=locator)
    return mock_page


class TestUrlPattern:
    """Test URL normalization."""

    def test_drops_query_and_fragment(self):
        assert SelectorResolver.url_pattern_for("https://example.com/login?next=/x#top") == "https://example.com/login"

    def test_root_path(self):
        assert SelectorResolver.url_pattern_for("https://example.com") == "https://example.com/"

    def test_non_url_unchanged(self):
        assert SelectorResolver.url_pattern_for("/login") == "/login"


class TestResolve:
    """Test resolving cached selectors on a page."""

    @pytest.mark.asyncio
    async def test_requires_page(self, cache):
        resolver = SelectorResolver(cache)

        with pytest.raises(ValueError):
            await resolver.resolve("x", "/p")

    @pytest.mark.asyncio
    async def test_resolves_working_selector(self, cache, mock_page):
        await cache.cache_selector({"url_pattern": "/p", "test_id": "x", "css_selector": "#a"})
        resolver = SelectorResolver(cache, page_with(mock_page, {"#a"}))

        resolved = await resolver.resolve("x", "/p")

        assert resolved.selector == "#a"
        assert resolved.selector_type == "css"
        assert not resolved.healed
        assert resolved.attempts == 1
        assert (await cache.get_selector_by_test_id("x", "/p")).success_count == 1

    @pytest.mark.asyncio
    async def test_defaults_to_current_page_url(self, cache, mock_page):
        await cache.cache_selector({"url_pattern": "https://example.com/login", "test_id": "x", "css_selector": "#a"})
        resolver = SelectorResolver(cache, page_with(mock_page, {"#a"}))

        resolved = await resolver.resolve("x")

        assert resolved is not None
        assert resolved.entry.url_pattern == "https://example.com/login"

    @pytest.mark.asyncio
    async def test_falls_back_to_xpath(self, cache, mock_page):
        await cache.cache_selector({
            "url_pattern": "/p",
            "test_id": "x",
            "css_selector": "#a",
            "xpath_selector": "//button[@id='a']"
        })
        resolver = SelectorResolver(cache, page_with(mock_page, {"xpath=//button[@id='a']"}))

        resolved = await resolver.resolve("x", "/p")

        assert resolved.selector_type == "xpath"
        assert not resolved.healed

    @pytest.mark.asyncio
    async def test_heals_through_alternatives(self, cache, mock_page):
        """Test that a stale selector is replaced by a working alternative."""
        await cache.cache_selector({
            "url_pattern": "/p",
            "test_id": "x",
            "css_selector": "#a",
            "alternatives": ["#b", "#c"]
        })
        resolver = SelectorResolver(cache, page_with(mock_page, {"#c"}))

        resolved = await resolver.resolve("x", "/p")

        assert resolved.selector == "#c"
        assert resolved.healed
        assert resolved.attempts == 3
        assert resolved.entry.success_count == 0

        best = await cache.get_selector_by_test_id("x", "/p")
        assert best.css_selector == "#c"
        assert best.success_count == 1

    @pytest.mark.asyncio
    async def test_returns_none_when_exhausted(self, cache, mock_page):
        await cache.cache_selector({"url_pattern": "/p", "test_id": "x", "css_selector": "#a", "alternatives": ["#b"]})
        resolver = SelectorResolver(cache, page_with(mock_page, set()))

        assert await resolver.resolve("x", "/p") is None
        assert await cache.get_confidence("x", "/p") == 0.0

    @pytest.mark.asyncio
    async def test_unknown_test_id(self, cache, mock_page):
        resolver = SelectorResolver(cache, page_with(mock_page, {"#a"}))

        assert await resolver.resolve("missing", "/p") is None
        mock_page.locator.assert_not_called()


class TestTrackNavigation:
    """Test navigation tracking through framenavigated."""

    @pytest.mark.asyncio
    async def test_main_frame_navigation_recorded(self, cache, mock_page):
        resolver = SelectorResolver(cache, mock_page)
        resolver.track_navigation()

        event, handler = mock_page.on.call_args[0]
        assert event == "framenavigated"

        mock_page.main_frame.url = "https://example.com/home?tab=1"
        handler(mock_page.main_frame)
        await asyncio.gather(*list(cache._prefetch_tasks), return_exceptions=True)

        edges = cache.navigation.edges("https://example.com/login")
        assert [e.to_url for e in edges] == ["https://example.com/home"]

    @pytest.mark.asyncio
    async def test_child_frames_ignored(self, cache, mock_page):
        resolver = SelectorResolver(cache, mock_page)
        resolver.track_navigation()
        _, handler = mock_page.on.call_args[0]

        child = MagicMock()
        child.url = "https://ads.example.net/frame"
        handler(child)

        assert cache.navigation.edges("https://example.com/login") == []

    @pytest.mark.asyncio
    async def test_reload_is_not_a_transition(self, cache, mock_page):
        resolver = SelectorResolver(cache, mock_page)
        resolver.track_navigation()
        _, handler = mock_page.on.call_args[0]

        mock_page.main_frame.url = "https://example.com/login?retry=1"
        handler(mock_page.main_frame)

        assert cache.navigation.edges("https://example.com/login") == []
