"""
Selector Resolver

Bridges the selector cache and a live Playwright page: fetches the cached
locator for an element, checks it against the page, reports the outcome
and walks the auto-heal chain when the locator has gone stale.
"""

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Frame, Locator, Page

from ..knowledge.models import SelectorEntry
from .selector_cache import SelectorCache

logger = logging.getLogger(__name__)


@dataclass
class ResolvedSelector:
    """A cached selector that was confirmed on the page"""
    entry: SelectorEntry
    locator: Locator
    selector: str
    selector_type: str  # css or xpath
    healed: bool
    attempts: int
    resolve_time_ms: int


class SelectorResolver:
    """
    Resolves logical element names to live locators using the cache.

    Usage:
        resolver = SelectorResolver(cache, page)
        resolver.track_navigation()
        resolved = await resolver.resolve("login-btn")
        if resolved:
            await resolved.locator.click()
        else:
            ...  # live discovery, then cache.cache_selector(...)
    """

    DEFAULT_ATTACH_TIMEOUT = 2000

    def __init__(
        self,
        cache: SelectorCache,
        page: Optional[Page] = None,
        attach_timeout_ms: int = DEFAULT_ATTACH_TIMEOUT
    ):
        self.cache = cache
        self.page = page
        self.attach_timeout_ms = attach_timeout_ms
        self._tracked_url: Optional[str] = None

    def set_page(self, page: Page):
        """Set the Playwright page object"""
        self.page = page

    @staticmethod
    def url_pattern_for(url: str) -> str:
        """Scheme, host and path of a URL; query and fragment are dropped"""
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            return url
        return f"{parsed.scheme}://{parsed.netloc}{parsed.path or '/'}"

    @staticmethod
    def _candidates(entry: SelectorEntry) -> List[Tuple[str, str]]:
        candidates = [(entry.css_selector, "css")]
        if entry.xpath_selector:
            candidates.append((f"xpath={entry.xpath_selector}", "xpath"))
        return candidates

    async def _locate(self, selector: str) -> Optional[Locator]:
        """Locator for selector if it is attached within the attach timeout"""
        locator = self.page.locator(selector).first
        try:
            await locator.wait_for(state="attached", timeout=self.attach_timeout_ms)
            return locator
        except PlaywrightError as e:
            logger.debug(f"[RESOLVER] '{selector}' not found: {e}")
            return None

    async def resolve(self, test_id: str, url_pattern: Optional[str] = None) -> Optional[ResolvedSelector]:
        """
        Find a working locator for a logical element.

        Args:
            test_id: Logical element name
            url_pattern: Page key; defaults to the current page URL

        Returns:
            ResolvedSelector, or None when nothing cached works (the caller
            should discover the element live)
        """
        if self.page is None:
            raise ValueError("SelectorResolver has no page")

        start = time.perf_counter()
        url_pattern = url_pattern or self.url_pattern_for(self.page.url)

        entry = await self.cache.get_selector_by_test_id(test_id, url_pattern)
        healed = False
        attempts = 0
        max_attempts = self.cache.config.max_alternatives + 1

        while entry is not None and attempts < max_attempts:
            attempts += 1
            for selector, selector_type in self._candidates(entry):
                locator = await self._locate(selector)
                if locator is None:
                    continue

                await self.cache.record_success(test_id, entry.url_pattern, entry_id=entry.id)
                elapsed = int((time.perf_counter() - start) * 1000)
                if healed:
                    logger.info(f"[RESOLVER] '{test_id}' resolved with healed selector '{selector}'")
                return ResolvedSelector(
                    entry=entry,
                    locator=locator,
                    selector=selector,
                    selector_type=selector_type,
                    healed=healed,
                    attempts=attempts,
                    resolve_time_ms=elapsed,
                )

            entry = await self.cache.record_failure(test_id, entry.url_pattern, entry_id=entry.id)
            if entry is not None:
                healed = True

        logger.info(f"[RESOLVER] No cached selector works for '{test_id}' on {url_pattern}")
        return None

    def track_navigation(self, page: Optional[Page] = None):
        """Report every main-frame navigation of the page to the cache"""
        page = page or self.page
        if page is None:
            raise ValueError("SelectorResolver has no page")

        self._tracked_url = self.url_pattern_for(page.url) if page.url else None

        def on_frame_navigated(frame: Frame):
            if frame != page.main_frame:
                return
            new_url = self.url_pattern_for(frame.url)
            previous, self._tracked_url = self._tracked_url, new_url
            if previous and previous != new_url:
                self.cache.record_navigation(previous, new_url)

        page.on("framenavigated", on_frame_navigated)
