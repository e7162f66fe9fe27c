import asyncio
import logging
import random
from typing import Optional

from faker import Faker
from playwright.async_api import Browser, BrowserContext, Error as PlaywrightError, Page, async_playwright

from ..config import RetrievalSettings
from .session import SessionManager

logger = logging.getLogger(__name__)

# Upper bound for any single politeness pause
MAX_PAUSE_MS = 10000

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-debugging-pane",
    "--no-first-run",
]

VIEWPORTS = [
    {"width": 1366, "height": 768},
    {"width": 1920, "height": 1080},
    {"width": 1280, "height": 720},
    {"width": 1440, "height": 900},
]

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

# Hide the most common automation fingerprints before any site script runs
STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
window.chrome = window.chrome || { runtime: {} };
const originalQuery = window.navigator.permissions && window.navigator.permissions.query;
if (originalQuery) {
  window.navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications'
      ? Promise.resolve({ state: Notification.permission })
      : originalQuery(parameters)
  );
}
"""


def random_user_agent() -> str:
    """Return a realistic desktop Chrome user agent."""
    return Faker(providers=["faker.providers.user_agent"]).chrome()


class Politeness:
    """Randomized, bounded pauses between UI actions."""

    def __init__(self, min_ms: int = 500, max_ms: int = 1500, enabled: bool = True, rng=None):
        self.min_ms = min_ms
        self.max_ms = max_ms
        self.enabled = enabled
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: RetrievalSettings) -> "Politeness":
        return cls(settings.politeness_min_ms, settings.politeness_max_ms, settings.politeness_enabled)

    @classmethod
    def disabled(cls) -> "Politeness":
        return cls(0, 0, enabled=False)

    def delay_ms(self, min_ms: Optional[int] = None, max_ms: Optional[int] = None) -> int:
        low = self.min_ms if min_ms is None else min_ms
        high = self.max_ms if max_ms is None else max_ms
        low = max(0, min(low, MAX_PAUSE_MS))
        high = max(low, min(high, MAX_PAUSE_MS))
        return self._rng.randint(low, high)

    async def pause(self, min_ms: Optional[int] = None, max_ms: Optional[int] = None) -> float:
        """Sleep for a random time within the bounds. Cancelling the task interrupts the sleep."""
        if not self.enabled:
            return 0.0
        seconds = self.delay_ms(min_ms, max_ms) / 1000
        await asyncio.sleep(seconds)
        return seconds


class BrowserSession:
    """
    One browser, one context and one starting page for a single retrieval.

    Use as an async context manager; leaving the block always tears down the
    context, the browser and the Playwright driver, also on cancellation.
    """

    def __init__(self, settings: Optional[RetrievalSettings] = None):
        self.settings = settings or RetrievalSettings()
        self._playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.manager: Optional[SessionManager] = None

    @property
    def page(self) -> Page:
        return self.manager.active_page

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def start(self):
        logger.info("🚀 Launching browser session")
        self._playwright = await async_playwright().start()
        try:
            self.browser = await self._playwright.chromium.launch(
                headless=self.settings.headless, args=LAUNCH_ARGS
            )
            self.context = await self.browser.new_context(
                user_agent=random_user_agent(),
                viewport=random.choice(VIEWPORTS),
                locale="en-US",
                extra_http_headers=EXTRA_HEADERS,
                accept_downloads=True,
            )
            await self.context.add_init_script(STEALTH_SCRIPT)
            self.context.set_default_timeout(self.settings.timeout_ms)
            self.context.set_default_navigation_timeout(self.settings.timeout_ms)
            page = await self.context.new_page()
            self.manager = SessionManager(self.context, page, self.settings.popup_timeout_ms)
        except BaseException:
            await self.close()
            raise

    async def close(self):
        if self.context is not None:
            try:
                await self.context.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser context: {e}")
            self.context = None
        if self.browser is not None:
            try:
                await self.browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
            self.browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("🔒 Browser session closed")
