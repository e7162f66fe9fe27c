"""
Durham County, North Carolina.

- Assessor: Spatialest tax portal, searched directly by street address. The
  property detail opens in a new window; the Deeds tab lists the recording
  history with the "Current" deed first.
- Register of Deeds: book/page document search behind a disclaimer. The
  result row reveals a download button on hover, which opens the document.
"""

import logging
import re
from types import MappingProxyType
from typing import Dict, List, Tuple

from ..errors import ErrorKind
from ..scrapers.extractor import ExtractionRules
from ..scrapers.locator import candidates
from ..state import BookPageReference, PipelineContext
from .base import SiteAdapter, StageOutcome

logger = logging.getLogger(__name__)

SEARCH_INPUT = candidates("#searchTerm", 'input[placeholder*="address" i]', 'input[type="search"]')
SEARCH_BUTTON = candidates(
    'button:has-text("Search")',
    "button:has(.fa-search)",
    'input[type="submit"]',
)
RESULT_CELL = candidates(
    r'tbody tr td a:text-matches("^\\d{5,}$")',
    r'tbody tr td:text-matches("^\\d{5,}$")',
)
DEEDS_TAB = candidates(
    'role=tab[name=/^deeds?$/i]',
    r'a:text-matches("^\\s*deeds?\\s*$", "i")',
    r'button:text-matches("^\\s*deeds?\\s*$", "i")',
    r'span:text-matches("^\\s*deeds?\\s*$", "i")',
)
CURRENT_ROW = candidates('tr:has(td:text-is("Current"))', 'td:has-text("Current")')

BOOK_FIELD = candidates("#field_BookPageID_DOT_Volume", 'input[name*="volume" i]', 'input[name*="book" i]')
PAGE_FIELD = candidates("#field_BookPageID_DOT_Page", 'input[id$="_DOT_Page"]', 'input[name*="page" i]')
ROD_SEARCH_BUTTON = candidates(
    "#searchButton",
    'button:has-text("Search")',
    'input[type="submit"][value*="Search" i]',
    'input[type="button"][value*="Search" i]',
)
DOCUMENT_ROW = candidates(r'tr:has(td:text-matches("^\\d{10}$"))')
DOWNLOAD_BUTTON = candidates(
    '[class*="download" i]',
    '[title*="download" i]',
    '[class*="pdf" i]',
    'a[href*=".pdf" i]',
    "button",
)


class DurhamCountyNorthCarolina(SiteAdapter):
    name = "durham-county-north-carolina"
    county = "Durham"
    state = "NC"
    assessor_url = "https://property.spatialest.com/nc/durham-tax/#/"
    recorder_url = "https://rodweb.dconc.gov/web/search/DOCSEARCH5S1"
    skippable_stages = MappingProxyType({"resolve_identifier": "assessor is searched by street address"})
    extraction_rules = ExtractionRules(
        book_format=re.compile(r"\d{4,6}"),
        page_format=re.compile(r"\d{1,6}"),
        min_book_number=1000,
    )

    async def locate_source_record(self, ctx: PipelineContext) -> StageOutcome:
        await self.open(ctx, self.assessor_url)

        street = ctx.address.split(",")[0].strip()
        field = await self.locator.fill(ctx.page, SEARCH_INPUT, street, what="address search field")
        if not field:
            return StageOutcome.from_failure(field)
        await self.submit(ctx, SEARCH_BUTTON)

        cell = await self.locator.locate(ctx.page, RESULT_CELL, what="parcel result")
        if not cell:
            return StageOutcome.from_failure(cell, kind=ErrorKind.NOT_FOUND)
        parcel_id = (await cell.inner_text()).strip()
        logger.info(f"🏠 Found parcel {parcel_id}")

        detail = await ctx.session.follow(cell.click, what="property detail window")
        if not detail:
            return StageOutcome.from_failure(detail)
        await self.politeness.pause()

        tab = await self.locator.click(detail, DEEDS_TAB, what="Deeds tab")
        if not tab:
            return StageOutcome.from_failure(tab)
        current = await self.locator.locate(detail, CURRENT_ROW, what="current deed row")
        if not current:
            logger.warning("⚠️ Deeds table has no Current row yet, reading it anyway")

        return StageOutcome.ok(value={"url": detail.url, "parcel_id": parcel_id}, url=detail.url, parcelId=parcel_id)

    async def source_content(self, ctx: PipelineContext) -> Tuple[str, List[Dict[str, str]]]:
        text, rows = await super().source_content(ctx)
        # The row labelled "Current" is the deed of the present owner
        current = [row for row in rows if "current" in next(iter(row.values()), "").lower()]
        return text, current or rows

    async def locate_target_record(self, ctx: PipelineContext) -> StageOutcome:
        reference = ctx.reference
        if not isinstance(reference, BookPageReference):
            return StageOutcome.fail(ErrorKind.NOT_FOUND, "Register of Deeds search needs a book and page")

        await self.open(ctx, self.recorder_url)
        await self.accept_disclaimer(ctx)

        book = await self.locator.fill(ctx.page, BOOK_FIELD, reference.book_number, what="book field")
        if not book:
            return StageOutcome.from_failure(book)
        page_field = await self.locator.fill(ctx.page, PAGE_FIELD, reference.page_number, what="page field")
        if not page_field:
            return StageOutcome.from_failure(page_field)
        await self.submit(ctx, ROD_SEARCH_BUTTON)

        row = await self.locator.locate(ctx.page, DOCUMENT_ROW, what="document result row")
        if not row:
            return StageOutcome.from_failure(row, kind=ErrorKind.NOT_FOUND)
        document_number = re.search(r"\b\d{10}\b", await row.inner_text())
        document_number = document_number.group(0) if document_number else None
        logger.info(f"📄 Found document {document_number}")

        # The download control only appears while the row is hovered
        await row.hover()
        button = await self.locator.locate(row, DOWNLOAD_BUTTON, what="download button")
        if not button:
            return StageOutcome.from_failure(button)

        viewer = await ctx.session.follow(button.click, what="document viewer")
        if not viewer:
            return StageOutcome.from_failure(viewer)
        await self.politeness.pause()

        document_url = await self.document_url_on(viewer)
        return StageOutcome.ok(
            value={"document_url": document_url, "document_number": document_number},
            documentUrl=document_url,
            documentNumber=document_number,
        )
