import base64
from datetime import date

import pytest

from deedscraper.errors import ConfigurationError, ErrorInfo, ErrorKind
from deedscraper.scrapers.capture import validate_payload
from deedscraper.state import (
    BookPageReference,
    InstrumentReference,
    KnownIdentifiers,
    PipelineContext,
    RetrievalRequest,
    RetrievalResult,
    StageResult,
)
from tests.fakes import PDF_BYTES


@pytest.mark.parametrize("address", ["", "   "])
def test_blank_address_is_rejected(address) -> None:
    with pytest.raises(ConfigurationError):
        RetrievalRequest(address=address)


def test_known_identifiers_accept_both_spellings() -> None:
    camel = KnownIdentifiers.from_dict({"parcelId": "0821", "bookNumber": "9512", "pageNumber": "204"})
    snake = KnownIdentifiers.from_dict({"parcel_id": "0821", "book_number": "9512", "page_number": "204"})
    assert camel == snake
    assert KnownIdentifiers.from_dict(None) == KnownIdentifiers()


def test_reference_keys_normalize() -> None:
    assert InstrumentReference("2023-000123").key == InstrumentReference("2023000123").key
    assert BookPageReference("09512", "0204").key == "B:9512/P:204"


def test_reference_to_dict() -> None:
    reference = InstrumentReference("2023000123", date(2023, 5, 1), "Warranty Deed", "table")
    assert reference.to_dict() == {
        "instrumentNumber": "2023000123",
        "recordedDate": "2023-05-01",
        "documentType": "Warranty Deed",
        "source": "table",
    }


def test_result_to_dict_encodes_document() -> None:
    document = validate_payload(PDF_BYTES, source_url="https://recorder.test/doc.pdf")
    result = RetrievalResult(
        success=True,
        steps=(StageResult("capture_document", True, {"strategy": "direct_fetch"}),),
        document=document,
    )

    data = result.to_dict()

    assert base64.b64decode(data["document"]["bytes"]) == PDF_BYTES
    assert data["steps"][0]["stageName"] == "capture_document"
    assert data["steps"][0]["error"] is None
    assert "bytes" not in document.to_dict(include_bytes=False)


def test_failed_step_serializes_error() -> None:
    step = StageResult(
        "locate_source_record",
        False,
        error=ErrorInfo(ErrorKind.SITE_STRUCTURE_CHANGED, "no search field", "locate_source_record"),
    )
    assert step.to_dict()["error"] == {
        "kind": "SiteStructureChanged",
        "message": "no search field",
        "step": "locate_source_record",
    }


def test_context_without_session_has_no_page() -> None:
    ctx = PipelineContext(request=RetrievalRequest(address="1 Main St"))
    assert ctx.address == "1 Main St"
    with pytest.raises(ConfigurationError):
        ctx.page
    assert ctx.mark("start") >= 0
    assert "start" in ctx.markers
