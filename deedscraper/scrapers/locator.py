"""
Adaptive element location.

Target sites change markup between redesigns and A/B variants, so adapters
describe a UI target as several candidate selectors ordered by confidence.
The locator returns the highest-confidence candidate that is attached and
visible, within a total time budget.
"""

import asyncio
import logging
from typing import Iterable, List, Optional, Sequence, Union

from playwright.async_api import Error as PlaywrightError, Locator, TimeoutError as PlaywrightTimeoutError

from ..errors import ErrorKind, NotFound
from ..state import CandidateSelector
from .browser import Politeness

logger = logging.getLogger(__name__)

# Only visible matches count, so hidden duplicates such as templates are skipped
VISIBLE = " >> visible=true"


def candidates(*descriptors: str, start: float = 1.0, step: float = 0.1) -> List[CandidateSelector]:
    """Build candidates with descending confidence from selectors given best-first."""
    return [
        CandidateSelector(descriptor=descriptor, confidence=round(max(0.0, start - i * step), 3))
        for i, descriptor in enumerate(descriptors)
    ]


def visible_only(descriptor: str) -> str:
    return descriptor if descriptor.endswith(VISIBLE) else descriptor + VISIBLE


def order_candidates(items: Iterable[Union[CandidateSelector, str]]) -> List[CandidateSelector]:
    normalized = [
        item if isinstance(item, CandidateSelector) else CandidateSelector(descriptor=item)
        for item in items
    ]
    # sorted() is stable, so equal confidences keep the caller's order
    return sorted(normalized, key=lambda c: c.confidence, reverse=True)


class ElementLocator:
    def __init__(
        self,
        timeout_ms: int = 10000,
        candidate_max_ms: int = 3000,
        politeness: Optional[Politeness] = None,
    ):
        self.timeout_ms = timeout_ms
        self.candidate_max_ms = candidate_max_ms
        self.politeness = politeness or Politeness.disabled()

    async def _visible_now(self, locator: Locator) -> bool:
        try:
            return await locator.is_visible()
        except PlaywrightError as e:
            # Malformed selectors and detached frames count as unresolved
            logger.debug(f"Candidate check failed: {e}")
            return False

    async def locate(
        self,
        page,
        candidate_list: Sequence[Union[CandidateSelector, str]],
        timeout_ms: Optional[int] = None,
        what: str = "element",
    ):
        """
        Resolve the first candidate that exists and is visible.

        Args:
            page: Playwright page or frame to search
            candidate_list: Candidate selectors, any order
            timeout_ms: Total budget across all candidates
            what: Name of the UI target, used in logs and the NotFound message

        Returns:
            The resolved Locator, or NotFound
        """
        ordered = order_candidates(candidate_list)
        if not ordered:
            return NotFound(kind=ErrorKind.SITE_STRUCTURE_CHANGED, message=f"no candidates for {what}")

        budget_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget_ms / 1000

        # Immediate pass: never let a slow high-confidence wait hand the win to a lower one
        for candidate in ordered:
            locator = page.locator(visible_only(candidate.descriptor)).first
            if await self._visible_now(locator):
                logger.info(f"✅ Found {what}: {candidate.descriptor}")
                return locator

        tried = []
        for index, candidate in enumerate(ordered):
            remaining_ms = int((deadline - loop.time()) * 1000)
            if remaining_ms <= 0:
                break
            slice_ms = max(1, min(self.candidate_max_ms, remaining_ms // (len(ordered) - index)))
            tried.append(candidate.descriptor)
            locator = page.locator(visible_only(candidate.descriptor)).first
            try:
                await locator.wait_for(state="visible", timeout=slice_ms)
            except PlaywrightTimeoutError:
                continue
            except PlaywrightError as e:
                logger.debug(f"Candidate {candidate.descriptor} rejected: {e}")
                continue
            logger.info(f"✅ Found {what}: {candidate.descriptor}")
            return locator

        if len(tried) == len(ordered):
            logger.warning(f"⚠️ No candidate resolved for {what}; tried {len(tried)} selectors")
            return NotFound(
                kind=ErrorKind.SITE_STRUCTURE_CHANGED,
                message=f"no candidate selector resolved for {what}",
                tried=tuple(tried),
            )
        logger.warning(f"⚠️ Budget of {budget_ms}ms exhausted locating {what}")
        return NotFound(
            kind=ErrorKind.TIMEOUT,
            message=f"timed out after {budget_ms}ms locating {what}",
            tried=tuple(tried),
        )

    async def click(self, page, candidate_list, timeout_ms: Optional[int] = None, what: str = "element"):
        """Locate and click. Returns the locator or the NotFound from ``locate``."""
        element = await self.locate(page, candidate_list, timeout_ms, what)
        if not element:
            return element
        await self.politeness.pause(100, 400)
        await element.click()
        return element

    async def fill(self, page, candidate_list, text: str, timeout_ms: Optional[int] = None, what: str = "field"):
        """Locate a field, clear it and type ``text`` with human-like key delays."""
        element = await self.locate(page, candidate_list, timeout_ms, what)
        if not element:
            return element
        await element.click()
        await element.fill("")
        if self.politeness.enabled:
            await element.press_sequentially(text, delay=self.politeness.delay_ms(50, 150))
        else:
            await element.fill(text)
        return element
