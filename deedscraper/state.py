import base64
import operator
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, TYPE_CHECKING, Tuple, TypedDict, Union, Annotated

from .errors import ConfigurationError, ErrorInfo

if TYPE_CHECKING:
    from .scrapers.session import SessionManager


STAGES = (
    "resolve_identifier",
    "locate_source_record",
    "extract_reference",
    "locate_target_record",
    "capture_document",
)


@dataclass(frozen=True)
class KnownIdentifiers:
    """Identifiers the caller already has for the property."""

    parcel_id: Optional[str] = None
    instrument_number: Optional[str] = None
    book_number: Optional[str] = None
    page_number: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "KnownIdentifiers":
        if not data:
            return cls()
        return cls(
            parcel_id=data.get("parcelId") or data.get("parcel_id"),
            instrument_number=data.get("instrumentNumber") or data.get("instrument_number"),
            book_number=data.get("bookNumber") or data.get("book_number"),
            page_number=data.get("pageNumber") or data.get("page_number"),
        )


@dataclass(frozen=True)
class RetrievalRequest:
    """
    Input for one deed retrieval.

    Attributes:
        address: Street address of the property
        known_identifiers: Optional identifiers that let adapters skip lookups
    """

    address: str
    known_identifiers: KnownIdentifiers = field(default_factory=KnownIdentifiers)

    def __post_init__(self):
        if not self.address or not self.address.strip():
            raise ConfigurationError("RetrievalRequest.address must be a non-empty string")


@dataclass(frozen=True)
class CandidateSelector:
    """One way of finding a UI element; higher confidence is tried first."""

    descriptor: str
    confidence: float = 1.0


@dataclass(frozen=True)
class InstrumentReference:
    """A recorded document identified by its instrument number."""

    instrument_number: str
    recorded_date: Optional[date] = None
    document_type: Optional[str] = None
    source: str = "text"

    @property
    def key(self) -> str:
        return "I:" + "".join(ch for ch in self.instrument_number if ch.isalnum()).upper()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instrumentNumber": self.instrument_number,
            "recordedDate": self.recorded_date.isoformat() if self.recorded_date else None,
            "documentType": self.document_type,
            "source": self.source,
        }


@dataclass(frozen=True)
class BookPageReference:
    """A recorded document identified by the legacy book/page pair."""

    book_number: str
    page_number: str
    recorded_date: Optional[date] = None
    document_type: Optional[str] = None
    source: str = "text"

    @property
    def key(self) -> str:
        book = self.book_number.strip().lstrip("0") or "0"
        page = self.page_number.strip().lstrip("0") or "0"
        return f"B:{book}/P:{page}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bookNumber": self.book_number,
            "pageNumber": self.page_number,
            "recordedDate": self.recorded_date.isoformat() if self.recorded_date else None,
            "documentType": self.document_type,
            "source": self.source,
        }


RecordingReference = Union[InstrumentReference, BookPageReference]


@dataclass(frozen=True)
class CapturedDocument:
    """
    Validated document bytes.

    Only the capture subsystem builds these, after the signature check passed.
    """

    content: bytes
    byte_length: int
    mime_signature_valid: bool
    source_url: Optional[str]
    strategy: str
    filename: str
    content_type: str = "application/pdf"

    def to_dict(self, include_bytes: bool = True) -> Dict[str, Any]:
        data = {
            "byteLength": self.byte_length,
            "filename": self.filename,
            "sourceUrl": self.source_url,
            "strategy": self.strategy,
            "contentType": self.content_type,
        }
        if include_bytes:
            data["bytes"] = base64.b64encode(self.content).decode("ascii")
        return data


@dataclass
class StageResult:
    """Outcome of a single pipeline stage; one entry of the audit trail."""

    stage_name: str
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ErrorInfo] = None
    skipped: bool = False
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stageName": self.stage_name,
            "success": self.success,
            "skipped": self.skipped,
            "data": self.data,
            "error": self.error.to_dict() if self.error else None,
            "durationMs": self.duration_ms,
        }


@dataclass(frozen=True)
class RetrievalResult:
    """Terminal result of one retrieval, returned to the caller."""

    success: bool
    steps: Tuple[StageResult, ...]
    document: Optional[CapturedDocument] = None
    error: Optional[ErrorInfo] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "steps": [step.to_dict() for step in self.steps],
            "document": self.document.to_dict() if self.document else None,
            "error": self.error.to_dict() if self.error else None,
            "durationMs": self.duration_ms,
        }


@dataclass
class PipelineContext:
    """
    Mutable state of one retrieval, threaded through every stage.

    The active page lives on the session manager; only the manager changes it.
    """

    request: RetrievalRequest
    session: Optional["SessionManager"] = None
    resolver: Any = None
    identifier: Optional[str] = None
    source_record: Dict[str, Any] = field(default_factory=dict)
    references: List[RecordingReference] = field(default_factory=list)
    reference: Optional[RecordingReference] = None
    target_record: Dict[str, Any] = field(default_factory=dict)
    document: Optional[CapturedDocument] = None
    started_at: float = field(default_factory=time.monotonic)
    markers: Dict[str, float] = field(default_factory=dict)

    @property
    def address(self) -> str:
        return self.request.address

    @property
    def page(self):
        """The page stages should act on."""
        if self.session is None:
            raise ConfigurationError("PipelineContext has no browser session")
        return self.session.active_page

    def mark(self, label: str) -> float:
        """Record elapsed seconds since the run started under ``label``."""
        elapsed = time.monotonic() - self.started_at
        self.markers[label] = elapsed
        return elapsed


class InputState(TypedDict, total=False):
    """
    Input state for the retrieval graph.

    Attributes:
        context: The pipeline context of the request being processed
    """

    context: PipelineContext


class PipelineState(InputState):
    """
    Complete graph state for one retrieval.
    """

    steps: Annotated[List[StageResult], operator.add]
    """Audit trail; each stage appends exactly one result"""

    current_step: Annotated[str, lambda x, y: y]  # Take the latest step
    """Name of the stage that ran last"""

    halted: bool
    """Set once a stage failed; routes the graph to END"""
