"""
Duval County, Florida.

The Property Appraiser search takes the street number, name and type in
separate fields; its detail page lists sales with instrument numbers (newer
records) or Official Records book/page pairs. The Clerk's Official Records
search accepts either and opens the document viewer in a new window.
"""

import logging
import re
from types import MappingProxyType
from typing import Optional, Tuple

from ..errors import ErrorKind
from ..scrapers.extractor import ExtractionRules, exclude_document_types
from ..scrapers.locator import candidates
from ..state import InstrumentReference, PipelineContext
from .base import SiteAdapter, StageOutcome

logger = logging.getLogger(__name__)

STREET_TYPES = {
    "ave": "Avenue",
    "avenue": "Avenue",
    "blvd": "Boulevard",
    "boulevard": "Boulevard",
    "cir": "Circle",
    "cv": "Cove",
    "cove": "Cove",
    "circle": "Circle",
    "ct": "Court",
    "court": "Court",
    "dr": "Drive",
    "drive": "Drive",
    "hwy": "Highway",
    "highway": "Highway",
    "ln": "Lane",
    "lane": "Lane",
    "pkwy": "Parkway",
    "parkway": "Parkway",
    "pl": "Place",
    "place": "Place",
    "rd": "Road",
    "road": "Road",
    "st": "Street",
    "street": "Street",
    "ter": "Terrace",
    "terrace": "Terrace",
    "trl": "Trail",
    "trail": "Trail",
    "way": "Way",
}
ADDRESS_PATTERN = re.compile(
    r"^(\d+)\s+(.+?)(?:\s+(" + "|".join(sorted(STREET_TYPES, key=len, reverse=True)) + r")\.?)?$",
    re.IGNORECASE,
)

STREET_NUMBER = candidates('input[name="streetNumber"]', 'input[id*="StreetNumber" i]')
STREET_NAME = candidates('input[name="streetName"]', 'input[id*="StreetName" i]')
STREET_TYPE = 'select[name="streetType"]'
SEARCH_BUTTON = candidates(
    'button:has-text("Search")',
    'input[type="submit"][value*="Search" i]',
    'input[type="button"][value*="Search" i]',
    'button:has-text("Find")',
)
RESULT_LINK = candidates(
    r'a:text-matches("^\\d{6}-\\d{4}$")',
    r'a:text-matches("^\\d{6,}$")',
    "table tbody tr a",
)

INSTRUMENT_OPTION = candidates(
    r'a:text-matches("instrument\\s*(number|#)", "i")',
    r'button:text-matches("instrument\\s*(number|#)", "i")',
)
INSTRUMENT_FIELD = candidates('input[name*="instrument" i]', 'input[id*="instrument" i]')
BOOK_PAGE_OPTION = candidates(
    r'a:text-matches("book.*page", "i")',
    r'button:text-matches("book.*page", "i")',
)
BOOK_FIELD = candidates('input[name*="book" i]', 'input[id*="book" i]')
PAGE_FIELD = candidates('input[name*="page" i]:not([name*="book" i])', 'input[id*="page" i]:not([id*="book" i])')
CLERK_SEARCH_BUTTON = candidates(
    'button:has-text("Search")',
    'input[type="submit"][value*="Search" i]',
    'button:has-text("Submit")',
    'input[type="submit"]',
)
VIEW_BUTTON = candidates(
    'a:has-text("View")',
    'button:has-text("View")',
    'input[type="button"][value*="View" i]',
    'a[href*=".pdf" i]',
    'a[href*="document" i]',
)


def split_address(address: str) -> Tuple[str, str, str]:
    """Split '123 Main St, Jacksonville, FL' into ('123', 'Main', 'Street')."""
    street = address.split(",")[0].strip()
    match = ADDRESS_PATTERN.match(street)
    if match:
        number, name, street_type = match.group(1), match.group(2), match.group(3) or ""
    else:
        parts = street.split()
        number = parts[0] if parts else ""
        name = " ".join(parts[1:-1]) or " ".join(parts[1:])
        street_type = parts[-1] if len(parts) > 2 else ""
    return number, name, STREET_TYPES.get(street_type.lower(), street_type)


class DuvalCountyFlorida(SiteAdapter):
    name = "duval-county-florida"
    county = "Duval"
    state = "FL"
    assessor_url = "https://paopropertysearch.coj.net"
    recorder_url = "https://or.duvalclerk.com/"
    skippable_stages = MappingProxyType({"resolve_identifier": "appraiser is searched by street address"})
    extraction_rules = ExtractionRules(
        instrument_patterns=(
            re.compile(
                r"\b(?:Instrument|Inst|Document|Doc|CFN)\s*(?:No\.?|Number|#)?[\s#:]*(?P<instrument>\d{8,12})\b",
                re.IGNORECASE,
            ),
        ),
        instrument_format=re.compile(r"\d{8,12}"),
        min_book_number=101,
    )
    reference_filter = staticmethod(exclude_document_types())

    async def locate_source_record(self, ctx: PipelineContext) -> StageOutcome:
        await self.open(ctx, self.assessor_url)

        number, name, street_type = split_address(ctx.address)
        logger.info(f"🏠 Searching appraiser for number={number} name={name} type={street_type}")
        field = await self.locator.fill(ctx.page, STREET_NUMBER, number, what="street number field")
        if not field:
            return StageOutcome.from_failure(field)
        field = await self.locator.fill(ctx.page, STREET_NAME, name, what="street name field")
        if not field:
            return StageOutcome.from_failure(field)
        if street_type:
            await self.select_street_type(ctx, street_type)
        await self.submit(ctx, SEARCH_BUTTON)

        link = await self.locator.locate(ctx.page, RESULT_LINK, what="property result")
        if not link:
            return StageOutcome.from_failure(link, kind=ErrorKind.NOT_FOUND)
        re_number = (await link.inner_text()).strip()

        detail = await ctx.session.follow(link.click, what="property detail")
        if not detail:
            return StageOutcome.from_failure(detail)
        await self.politeness.pause()
        return StageOutcome.ok(value={"url": detail.url, "re_number": re_number}, url=detail.url, reNumber=re_number)

    async def select_street_type(self, ctx: PipelineContext, street_type: str) -> Optional[str]:
        """Pick the street type option matching ``street_type``; leave the field alone when none does."""
        select = ctx.page.locator(STREET_TYPE)
        if not await select.count():
            return None
        labels = [label.strip() for label in await select.locator("option").all_inner_texts()]
        wanted = {street_type.lower(), STREET_TYPES.get(street_type.lower(), street_type).lower()}
        wanted |= {abbr for abbr, full in STREET_TYPES.items() if full.lower() in wanted}
        label = next((label for label in labels if label.lower() in wanted), None)
        if label is None:
            logger.warning(f"⚠️ No street type option for {street_type}, searching without it")
            return None
        await ctx.page.select_option(STREET_TYPE, label=label)
        return label

    async def locate_target_record(self, ctx: PipelineContext) -> StageOutcome:
        reference = ctx.reference
        await self.open(ctx, self.recorder_url)
        await self.accept_disclaimer(ctx)

        if isinstance(reference, InstrumentReference):
            logger.info(f"🔍 Searching clerk by instrument {reference.instrument_number}")
            await self.locator.click(ctx.page, INSTRUMENT_OPTION, timeout_ms=3000, what="instrument search option")
            field = await self.locator.fill(ctx.page, INSTRUMENT_FIELD, reference.instrument_number, what="instrument field")
            if not field:
                return StageOutcome.from_failure(field)
        else:
            logger.info(f"🔍 Searching clerk by book {reference.book_number} page {reference.page_number}")
            await self.locator.click(ctx.page, BOOK_PAGE_OPTION, timeout_ms=3000, what="book/page search option")
            field = await self.locator.fill(ctx.page, BOOK_FIELD, reference.book_number, what="book field")
            if not field:
                return StageOutcome.from_failure(field)
            field = await self.locator.fill(ctx.page, PAGE_FIELD, reference.page_number, what="page field")
            if not field:
                return StageOutcome.from_failure(field)
        await self.submit(ctx, CLERK_SEARCH_BUTTON)

        view = await self.locator.locate(ctx.page, VIEW_BUTTON, what="document view link")
        if not view:
            return StageOutcome.from_failure(view, kind=ErrorKind.NOT_FOUND)

        viewer = await ctx.session.follow(view.click, what="document viewer")
        if not viewer:
            return StageOutcome.from_failure(viewer)
        await self.politeness.pause()

        document_url = await self.document_url_on(viewer)
        return StageOutcome.ok(value={"document_url": document_url}, documentUrl=document_url)
