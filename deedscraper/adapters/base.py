import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urljoin

from playwright.async_api import Error as PlaywrightError

from ..config import RetrievalSettings
from ..errors import ConfigurationError, ErrorKind, Failure
from ..scrapers.browser import Politeness
from ..scrapers.capture import PDF, CaptureHint, DocumentCapture, DocumentSignature
from ..scrapers.extractor import (
    DEFAULT_RULES,
    ExtractionRules,
    ReferenceExtractor,
    ReferenceFilter,
    rows_from_html,
    text_from_html,
)
from ..scrapers.locator import ElementLocator, candidates
from ..state import STAGES, BookPageReference, InstrumentReference, PipelineContext

logger = logging.getLogger(__name__)

# Selectors shared by many county sites
DISCLAIMER_BUTTONS = candidates(
    "#submitDisclaimerAccept",
    'button:has-text("Accept")',
    'input[type="submit"][value*="Accept" i]',
    'a:has-text("I Accept")',
    'button:has-text("Agree")',
    'a:has-text("Agree")',
)

DOCUMENT_FRAMES = candidates(
    'iframe[src*=".pdf" i]',
    'embed[src*=".pdf" i]',
    'iframe[src*="document" i]',
    'a[href*=".pdf" i]',
)


@dataclass(frozen=True)
class StageOutcome:
    """
    What a stage hook reports back.

    Attributes:
        success: Whether the stage reached its goal
        data: JSON-friendly details for the audit trail
        value: Python value the stage produced for later stages
        error: The failure when success is False
        skipped: Set when the hook decided at runtime not to act
    """

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    value: Any = None
    error: Optional[Failure] = None
    skipped: bool = False

    @classmethod
    def ok(cls, value: Any = None, **data) -> "StageOutcome":
        return cls(success=True, data=data, value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, **data) -> "StageOutcome":
        return cls(success=False, data=data, error=Failure(kind=kind, message=message))

    @classmethod
    def from_failure(cls, failure: Failure, kind: Optional[ErrorKind] = None, **data) -> "StageOutcome":
        if hasattr(failure, "tried") and failure.tried:
            data.setdefault("tried", list(failure.tried))
        return cls.fail(kind or failure.kind, failure.message, **data)

    @classmethod
    def skip(cls, reason: str) -> "StageOutcome":
        return cls(success=True, data={"reason": reason}, skipped=True)


class SiteAdapter(ABC):
    """
    Everything that is specific to one county's pair of websites.

    Subclasses set the class attributes and implement the two record lookup
    hooks; the remaining hooks have defaults that work for most sites.
    """

    name: str = ""
    county: str = ""
    state: str = ""
    assessor_url: str = ""
    recorder_url: str = ""
    # stage name -> reason; the stage is recorded as skipped without running
    skippable_stages: Mapping[str, str] = MappingProxyType({})
    requires_identifier: bool = False
    extraction_rules: ExtractionRules = DEFAULT_RULES
    reference_filter: Optional[ReferenceFilter] = None
    document_signature: DocumentSignature = PDF
    capture_strategies: Tuple[str, ...] = ("direct_fetch", "intercept", "page_images", "snapshot")

    def __init__(
        self,
        settings: Optional[RetrievalSettings] = None,
        locator: Optional[ElementLocator] = None,
        capture: Optional[DocumentCapture] = None,
        politeness: Optional[Politeness] = None,
    ):
        self.settings = settings or RetrievalSettings()
        self.politeness = politeness or Politeness.from_settings(self.settings)
        self.locator = locator or ElementLocator(
            self.settings.locate_timeout_ms, self.settings.locate_candidate_max_ms, self.politeness
        )
        self.capture = capture or DocumentCapture(self.settings.capture_timeout_ms)
        self.extractor = ReferenceExtractor(self.extraction_rules, self.reference_filter)

    def __repr__(self):
        return f"<{type(self).__name__} {self.county}, {self.state}>"

    # --- declarations ---

    def validate(self) -> "SiteAdapter":
        """Raise ConfigurationError for inconsistent declarations."""
        unknown = set(self.skippable_stages) - set(STAGES)
        if unknown:
            raise ConfigurationError(f"{self.name}: unknown skippable stage(s): {', '.join(sorted(unknown))}")
        if "capture_document" in self.skippable_stages:
            raise ConfigurationError(f"{self.name}: capture_document can never be skipped")
        if "extract_reference" in self.skippable_stages:
            raise ConfigurationError(f"{self.name}: extract_reference can never be skipped")
        if self.requires_identifier and "resolve_identifier" in self.skippable_stages:
            raise ConfigurationError(f"{self.name}: requires an identifier but skips resolve_identifier")
        if not self.capture_strategies:
            raise ConfigurationError(f"{self.name}: no capture strategies declared")
        return self

    def skip_reason(self, stage: str, ctx: Optional[PipelineContext] = None) -> Optional[str]:
        """Why ``stage`` should not run for this request, or None."""
        if stage == "capture_document":
            return None
        if stage in self.skippable_stages:
            return self.skippable_stages[stage]
        if ctx is None:
            return None
        if stage == "resolve_identifier" and not self.requires_identifier:
            return "site is searched by street address"
        if stage == "locate_source_record" and self.known_reference(ctx) is not None:
            return "recording reference supplied by the caller"
        return None

    @staticmethod
    def known_reference(ctx: PipelineContext):
        known = ctx.request.known_identifiers
        if known.instrument_number:
            return InstrumentReference(known.instrument_number, source="known")
        if known.book_number and known.page_number:
            return BookPageReference(known.book_number, known.page_number, source="known")
        return None

    # --- stage hooks ---

    async def resolve_identifier(self, ctx: PipelineContext) -> StageOutcome:
        known = ctx.request.known_identifiers.parcel_id
        if known:
            return StageOutcome.ok(value=known, identifier=known, source="known")
        if ctx.resolver is None:
            raise ConfigurationError(f"{self.name} needs an identifier resolver")
        result = await ctx.resolver.resolve(ctx.address)
        if not result:
            return StageOutcome.from_failure(result)
        return StageOutcome.ok(value=result, identifier=result, source="resolver")

    @abstractmethod
    async def locate_source_record(self, ctx: PipelineContext) -> StageOutcome:
        """Open the assessor record of the property; the record page becomes the active page."""

    async def source_content(self, ctx: PipelineContext) -> Tuple[str, List[Dict[str, str]]]:
        """Text and table rows of the assessor record the extractor should read."""
        html = await ctx.page.content()
        return text_from_html(html), rows_from_html(html)

    async def extract_reference(self, ctx: PipelineContext) -> StageOutcome:
        known = self.known_reference(ctx)
        if known is not None:
            ctx.references = [known]
            return StageOutcome.ok(value=known, reference=known.to_dict(), candidates=1)

        text, rows = await self.source_content(ctx)
        references = self.extractor.extract(text, rows)
        ctx.references = references
        if not references:
            return StageOutcome.fail(ErrorKind.NOT_FOUND, "no recording reference on the property record")
        chosen = references[0]
        logger.info(f"📜 Using recording reference {chosen.key}")
        return StageOutcome.ok(value=chosen, reference=chosen.to_dict(), candidates=len(references))

    @abstractmethod
    async def locate_target_record(self, ctx: PipelineContext) -> StageOutcome:
        """Find the document of ``ctx.reference`` on the recorder site; value carries ``document_url``."""

    def capture_hint(self, ctx: PipelineContext) -> CaptureHint:
        page = ctx.page
        return CaptureHint(
            strategies=self.capture_strategies,
            document_url=ctx.target_record.get("document_url"),
            # Reloading the viewer makes the site request the document again
            trigger=lambda: page.reload(wait_until="domcontentloaded"),
            signature=self.document_signature,
            filename=self.filename_for(ctx),
        )

    async def capture_document(self, ctx: PipelineContext) -> StageOutcome:
        result = await self.capture.capture(ctx.page, self.capture_hint(ctx))
        if not result:
            return StageOutcome.from_failure(result, strategy=result.strategy)
        return StageOutcome.ok(value=result, **result.to_dict(include_bytes=False))

    # --- helpers for subclasses ---

    def filename_for(self, ctx: PipelineContext) -> str:
        prefix = re.sub(r"[^a-z0-9]+", "_", f"{self.county} {self.state}".lower()).strip("_")
        reference = ctx.reference
        if isinstance(reference, InstrumentReference):
            suffix = re.sub(r"[^A-Za-z0-9]+", "", reference.instrument_number)
        elif isinstance(reference, BookPageReference):
            suffix = f"B{reference.book_number}_P{reference.page_number}"
        else:
            suffix = "deed"
        return f"{prefix}_{suffix}.{self.document_signature.extension}"

    async def open(self, ctx: PipelineContext, url: str):
        logger.info(f"🌐 Navigating to {url}")
        await ctx.page.goto(url, wait_until="domcontentloaded")
        await self.politeness.pause()

    async def accept_disclaimer(self, ctx: PipelineContext, timeout_ms: int = 3000) -> bool:
        button = await self.locator.locate(ctx.page, DISCLAIMER_BUTTONS, timeout_ms=timeout_ms, what="disclaimer")
        if not button:
            return False
        await button.click()
        logger.info("✅ Accepted disclaimer")
        await self.politeness.pause()
        return True

    async def document_url_on(self, page) -> Optional[str]:
        """URL of the document shown by a viewer page: an embedded frame or link, else the page itself."""
        for candidate in DOCUMENT_FRAMES:
            element = page.locator(candidate.descriptor).first
            try:
                if not await element.count():
                    continue
                src = await element.get_attribute("src") or await element.get_attribute("href")
            except PlaywrightError as e:
                logger.debug(f"Viewer frame check failed: {e}")
                continue
            if src:
                return urljoin(page.url, src)
        return page.url

    async def submit(self, ctx: PipelineContext, buttons: Sequence, what: str = "search button"):
        """Click a submit button, falling back to pressing Enter."""
        clicked = await self.locator.click(ctx.page, buttons, what=what)
        if not clicked:
            logger.warning(f"⚠️ Could not find {what}, pressing Enter")
            await ctx.page.keyboard.press("Enter")
        await self.politeness.pause()
