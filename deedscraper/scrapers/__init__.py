"""
Deed Retrieval Scrapers - browser building blocks shared by every site adapter.

- Browser: Playwright session setup and politeness pauses
- Session: tracking of the active page across spawned windows
- Locator: selector fallback chains resolved within a time budget
- Extractor: recording references mined from assessor pages
- Capture: document download strategies and signature validation
- Resolver: address to parcel identifier lookup
"""

from .browser import BrowserSession, Politeness
from .session import SessionManager
from .locator import ElementLocator, candidates
from .extractor import ExtractionRules, ReferenceExtractor, exclude_document_types, rows_from_html, text_from_html
from .capture import PDF, TIFF, CaptureHint, DocumentCapture, DocumentSignature, images_to_pdf, validate_payload
from .resolver import HttpIdentifierResolver, IdentifierResolver

__all__ = [
    "BrowserSession",
    "Politeness",
    "SessionManager",
    "ElementLocator",
    "candidates",
    "ExtractionRules",
    "ReferenceExtractor",
    "exclude_document_types",
    "rows_from_html",
    "text_from_html",
    "PDF",
    "TIFF",
    "CaptureHint",
    "DocumentCapture",
    "DocumentSignature",
    "images_to_pdf",
    "validate_payload",
    "HttpIdentifierResolver",
    "IdentifierResolver",
]
