"""
Document capture.

Recorder sites deliver deeds in several ways: a plain document URL, a viewer
that streams the file in a background request, one image per page, or only a
rendered page. Each way is a strategy; the subsystem tries them in the order
the adapter hints and runs every payload through the same signature check
before anything is reported as a captured document.
"""

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urljoin

from PIL import Image, UnidentifiedImageError
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from ..errors import CaptureFailure, ConfigurationError, ErrorKind, classify_exception
from ..state import CapturedDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentSignature:
    """Magic bytes and content types of an accepted document format."""

    name: str
    magic: Tuple[bytes, ...]
    content_types: Tuple[str, ...]
    extension: str

    def matches(self, body: bytes) -> bool:
        return any(body.startswith(marker) for marker in self.magic)

    def accepts_content_type(self, content_type: Optional[str]) -> bool:
        content_type = (content_type or "").lower()
        return any(expected in content_type for expected in self.content_types)


PDF = DocumentSignature("PDF", (b"%PDF",), ("application/pdf", "application/x-pdf"), "pdf")
TIFF = DocumentSignature("TIFF", (b"II*\x00", b"MM\x00*"), ("image/tiff", "image/tif"), "tif")

HTML_MARKERS = (b"<!doctype html", b"<html", b"<head", b"<body", b"<?xml")

# Viewers that serve one image per page, in the order the pages appear
PAGE_IMAGE_SELECTOR = (
    'img[src*="page" i], img[src*="image" i], img[src*="getimage" i], img[id*="page" i], img[class*="page" i]'
)


def validate_payload(
    body: Optional[bytes],
    signature: DocumentSignature = PDF,
    source_url: Optional[str] = None,
    strategy: str = "direct_fetch",
    filename: Optional[str] = None,
):
    """
    Check a payload against the expected document signature.

    Args:
        body: Raw bytes returned by a strategy
        signature: Expected document format
        source_url: Where the bytes came from
        strategy: Name of the strategy that produced them
        filename: Suggested filename for the caller

    Returns:
        CapturedDocument when the magic bytes match, CaptureFailure otherwise
    """
    if not body:
        return CaptureFailure(message=f"{strategy} returned an empty body", strategy=strategy)

    head = bytes(body[:512]).lstrip().lower()
    if any(head.startswith(marker) for marker in HTML_MARKERS):
        return CaptureFailure(message=f"{strategy} returned an HTML page instead of a document", strategy=strategy)

    if not signature.matches(bytes(body)):
        return CaptureFailure(
            message=f"{strategy} payload does not carry the {signature.name} signature",
            strategy=strategy,
        )

    return CapturedDocument(
        content=bytes(body),
        byte_length=len(body),
        mime_signature_valid=True,
        source_url=source_url,
        strategy=strategy,
        filename=filename or f"deed.{signature.extension}",
        content_type=signature.content_types[0],
    )


@dataclass
class CaptureHint:
    """
    How an adapter expects the document to be delivered.

    Attributes:
        strategies: Strategy names, tried in order
        document_url: URL of the document for direct fetching; defaults to the page URL
        trigger: UI action that makes the site request the document, for interception
        url_filter: Substring the intercepted response URL must contain
        page_images: Page image URLs; read from the viewer with ``image_selector`` when empty
        image_selector: Selector of the page images on the viewer
        signature: Expected document format
        timeout_ms: Per-strategy budget; the subsystem default when None
        filename: Suggested filename
    """

    strategies: Tuple[str, ...] = ("direct_fetch", "intercept", "page_images", "snapshot")
    document_url: Optional[str] = None
    trigger: Optional[Callable[[], Awaitable[Any]]] = None
    url_filter: Optional[str] = None
    page_images: Sequence[str] = ()
    image_selector: str = PAGE_IMAGE_SELECTOR
    signature: DocumentSignature = PDF
    timeout_ms: Optional[int] = None
    filename: Optional[str] = None


class DirectFetchStrategy:
    name = "direct_fetch"

    async def fetch(self, page, hint: CaptureHint, timeout_ms: int):
        url = hint.document_url or page.url
        if not url or url == "about:blank":
            return CaptureFailure(kind=ErrorKind.NOT_FOUND, message="no document URL to fetch", strategy=self.name)

        # The context's request client shares the session cookies with the page
        response = await page.context.request.get(url, headers={"Referer": page.url}, timeout=timeout_ms)
        status = response.status
        if status in (401, 403):
            return CaptureFailure(
                kind=ErrorKind.AUTHENTICATION_REQUIRED,
                message=f"document request was refused with HTTP {status}",
                strategy=self.name,
            )
        if status == 404:
            return CaptureFailure(kind=ErrorKind.NOT_FOUND, message=f"document not found at {url}", strategy=self.name)
        if not response.ok:
            return CaptureFailure(
                kind=ErrorKind.NETWORK_ERROR,
                message=f"document request failed with HTTP {status}",
                strategy=self.name,
            )
        body = await response.body()
        return validate_payload(body, hint.signature, url, self.name, hint.filename)


class ResponseInterceptStrategy:
    name = "intercept"

    async def fetch(self, page, hint: CaptureHint, timeout_ms: int):
        if hint.trigger is None:
            return CaptureFailure(kind=ErrorKind.NOT_FOUND, message="no action to intercept", strategy=self.name)

        def _is_document(response) -> bool:
            if hint.url_filter and hint.url_filter not in response.url:
                return False
            return hint.signature.accepts_content_type(response.headers.get("content-type"))

        # Listen on the context so responses loaded by spawned windows count too
        async with page.context.expect_event("response", predicate=_is_document, timeout=timeout_ms) as event:
            await hint.trigger()
        response = await event.value
        body = await response.body()
        return validate_payload(body, hint.signature, response.url, self.name, hint.filename)


def images_to_pdf(images: Sequence[bytes]) -> bytes:
    """Stack page images into one PDF, a page per image. Raises UnidentifiedImageError for non-images."""
    pages = []
    for body in images:
        with Image.open(BytesIO(body)) as image:
            pages.append(image.convert("RGB"))
    buffer = BytesIO()
    pages[0].save(buffer, format="PDF", save_all=True, append_images=pages[1:], resolution=150.0)
    return buffer.getvalue()


class PageImagesStrategy:
    name = "page_images"

    async def image_urls(self, page, hint: CaptureHint) -> List[str]:
        sources = list(hint.page_images)
        if not sources:
            sources = await page.locator(hint.image_selector).evaluate_all(
                "images => images.map(img => img.currentSrc || img.src)"
            )
        urls = []
        for src in sources:
            url = urljoin(page.url, src) if src else None
            if url and url not in urls:
                urls.append(url)
        return urls

    async def fetch(self, page, hint: CaptureHint, timeout_ms: int):
        if hint.signature is not PDF:
            return CaptureFailure(message=f"page images are combined into PDF, not {hint.signature.name}", strategy=self.name)

        urls = await self.image_urls(page, hint)
        if not urls:
            return CaptureFailure(kind=ErrorKind.NOT_FOUND, message="viewer shows no page images", strategy=self.name)

        images = []
        for url in urls:
            response = await page.context.request.get(url, headers={"Referer": page.url}, timeout=timeout_ms)
            if not response.ok:
                return CaptureFailure(
                    kind=ErrorKind.NETWORK_ERROR,
                    message=f"page image request failed with HTTP {response.status}: {url}",
                    strategy=self.name,
                )
            images.append(await response.body())
        logger.info(f"🖼️ Combining {len(images)} page image(s) into a PDF")

        try:
            body = await asyncio.to_thread(images_to_pdf, images)
        except (UnidentifiedImageError, OSError) as e:
            return CaptureFailure(message=f"page images could not be decoded: {e}", strategy=self.name)
        return validate_payload(body, PDF, urls[0], self.name, hint.filename)


class RenderedSnapshotStrategy:
    name = "snapshot"

    async def fetch(self, page, hint: CaptureHint, timeout_ms: int):
        if hint.signature is not PDF:
            return CaptureFailure(message=f"snapshots render PDF, not {hint.signature.name}", strategy=self.name)
        body = await page.pdf(print_background=True)
        return validate_payload(body, PDF, page.url, self.name, hint.filename)


class DocumentCapture:
    def __init__(self, timeout_ms: int = 60000, strategies: Optional[Dict[str, Any]] = None):
        self.timeout_ms = timeout_ms
        self.strategies = strategies or {
            s.name: s
            for s in (DirectFetchStrategy(), ResponseInterceptStrategy(), PageImagesStrategy(), RenderedSnapshotStrategy())
        }

    async def capture(self, page, hint: CaptureHint):
        """
        Try the hinted strategies in order until one yields a valid document.

        Returns:
            CapturedDocument, or CaptureFailure summarizing every attempt
        """
        if not hint.strategies:
            raise ConfigurationError("CaptureHint.strategies must name at least one strategy")
        timeout_ms = hint.timeout_ms or self.timeout_ms

        failures: List[CaptureFailure] = []
        for name in hint.strategies:
            strategy = self.strategies.get(name)
            if strategy is None:
                raise ConfigurationError(f"Unknown capture strategy: {name}")

            logger.info(f"📄 Capturing document via {name}")
            try:
                result = await strategy.fetch(page, hint, timeout_ms)
            except PlaywrightTimeoutError:
                result = CaptureFailure(kind=ErrorKind.TIMEOUT, message=f"{name} timed out after {timeout_ms}ms", strategy=name)
            except PlaywrightError as e:
                result = CaptureFailure(kind=classify_exception(e), message=f"{name} failed: {e}", strategy=name)

            if result:
                logger.info(f"✅ Captured {result.byte_length} bytes via {name}")
                return result
            logger.warning(f"⚠️ {name} failed: {result.message}")
            failures.append(result)

        return self._summarize(failures)

    @staticmethod
    def _summarize(failures: List[CaptureFailure]) -> CaptureFailure:
        # A payload that arrived but failed the signature check is the most telling outcome
        primary = next((f for f in failures if f.kind == ErrorKind.VALIDATION_FAILURE), failures[0])
        details = "; ".join(f"{f.strategy}: {f.message}" for f in failures)
        return CaptureFailure(
            kind=primary.kind,
            message=f"all capture strategies failed ({details})",
            strategy=primary.strategy,
        )
