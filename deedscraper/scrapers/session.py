"""
Tracking of the page the pipeline acts on.

Many recorder sites open their viewer or detail page in a new window. The
manager remembers which pages existed before a UI action, waits a bounded
time for a new one, and makes it the active page. It is the only place that
changes which page is active.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

from ..errors import ErrorKind, NotFound

logger = logging.getLogger(__name__)

POLL_INTERVAL_S = 0.25


class SessionManager:
    def __init__(self, context: BrowserContext, page: Page, timeout_ms: int = 15000):
        self.context = context
        self.timeout_ms = timeout_ms
        self._active = page
        self._origin = page

    @property
    def active_page(self) -> Page:
        return self._active

    def snapshot(self) -> List[Page]:
        """Pages currently open in the browser context."""
        return list(self.context.pages)

    def switch_to(self, page: Page) -> Page:
        if page is not self._active:
            logger.info(f"🪟 Switching active page to {page.url}")
        self._active = page
        return page

    async def track_spawned_context(
        self,
        existing: Sequence[Page],
        timeout_ms: Optional[int] = None,
        url_before: Optional[str] = None,
    ) -> Optional[Page]:
        """
        Wait for a page that was not in ``existing`` and make it active.

        Falls back to the active page when no new page appears but the active
        page navigated away from ``url_before``. Returns None when neither happened.
        """
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        known = {id(page) for page in existing}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000

        while True:
            spawned = [page for page in self.context.pages if id(page) not in known and not page.is_closed()]
            if spawned:
                page = spawned[-1]
                remaining_ms = max(1, int((deadline - loop.time()) * 1000))
                try:
                    await page.wait_for_load_state("domcontentloaded", timeout=remaining_ms)
                except PlaywrightTimeoutError:
                    logger.warning(f"Spawned page did not finish loading: {page.url}")
                return self.switch_to(page)
            if loop.time() >= deadline:
                break
            await asyncio.sleep(min(POLL_INTERVAL_S, max(0.0, deadline - loop.time())))

        if url_before is not None and not self._active.is_closed() and self._active.url != url_before:
            logger.info(f"No new window; active page navigated to {self._active.url}")
            return self._active

        logger.info("No new window appeared and the active page did not navigate")
        return None

    async def follow(
        self,
        action: Callable[[], Awaitable[object]],
        timeout_ms: Optional[int] = None,
        what: str = "spawned page",
    ):
        """Run a UI action and hand control to whatever page it opened. Returns the page or NotFound."""
        existing = self.snapshot()
        url_before = self._active.url
        await action()
        page = await self.track_spawned_context(existing, timeout_ms, url_before=url_before)
        if page is None:
            return NotFound(kind=ErrorKind.NOT_FOUND, message=f"{what} did not open")
        return page

    async def close_spawned(self):
        """Close every page except the first one and make that one active again."""
        for page in self.snapshot():
            if page is self._origin or page.is_closed():
                continue
            try:
                await page.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing page {page.url}: {e}")
        self.switch_to(self._origin)
