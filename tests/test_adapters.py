import asyncio

import pytest

from deedscraper.adapters import DurhamCountyNorthCarolina, DuvalCountyFlorida, get_adapter, list_adapters
from deedscraper.adapters.base import SiteAdapter, StageOutcome
from deedscraper.adapters.duval_county_florida import split_address
from deedscraper.errors import ConfigurationError, ErrorKind, NotFound
from deedscraper.scrapers.browser import Politeness
from deedscraper.state import (
    BookPageReference,
    InstrumentReference,
    KnownIdentifiers,
    PipelineContext,
    RetrievalRequest,
)
from tests.fakes import PDF_BYTES, FakeBrowserSession, FakeResolver, quiet_settings

ADDRESS = "1418 Alabama Ave, Durham, NC 27705"


class PlainAdapter(SiteAdapter):
    name = "plain"
    county = "Plain"
    state = "PL"
    requires_identifier = True

    async def locate_source_record(self, ctx):
        return StageOutcome.ok(value={"url": ctx.page.url}, url=ctx.page.url)

    async def locate_target_record(self, ctx):
        return StageOutcome.ok(value={"document_url": "https://recorder.test/doc.pdf"})


def _adapter(cls=PlainAdapter):
    return cls(settings=quiet_settings(), politeness=Politeness.disabled())


def _ctx(address=ADDRESS, known=None, html="", resolver=None):
    session = FakeBrowserSession()
    session.origin.html = html
    request = RetrievalRequest(address=address, known_identifiers=known or KnownIdentifiers())
    return PipelineContext(request=request, session=session.manager, resolver=resolver)


def test_registry_lookup_is_forgiving() -> None:
    assert isinstance(get_adapter("Durham County", "nc", settings=quiet_settings()), DurhamCountyNorthCarolina)
    assert isinstance(get_adapter("duval", "FL", settings=quiet_settings()), DuvalCountyFlorida)


def test_unknown_county_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        get_adapter("Nowhere", "ZZ")


def test_list_adapters() -> None:
    listed = {(a["county"], a["state"]) for a in list_adapters()}
    assert listed == {("Durham", "NC"), ("Duval", "FL")}
    assert all(a["assessorUrl"] and a["recorderUrl"] for a in list_adapters())


def test_registered_adapters_are_consistent() -> None:
    for cls in (DurhamCountyNorthCarolina, DuvalCountyFlorida):
        assert _adapter(cls).validate()


def test_unknown_skippable_stage_is_rejected() -> None:
    class Typo(PlainAdapter):
        requires_identifier = False
        skippable_stages = {"resolve_identifer": "typo"}

    with pytest.raises(ConfigurationError):
        _adapter(Typo).validate()


def test_required_identifier_cannot_be_skipped() -> None:
    class Contradiction(PlainAdapter):
        skippable_stages = {"resolve_identifier": "not needed"}

    with pytest.raises(ConfigurationError):
        _adapter(Contradiction).validate()


def test_skip_reason() -> None:
    durham = _adapter(DurhamCountyNorthCarolina)
    plain = _adapter()

    assert durham.skip_reason("resolve_identifier") == "assessor is searched by street address"
    assert plain.skip_reason("resolve_identifier", _ctx()) is None
    assert plain.skip_reason("locate_source_record", _ctx()) is None
    known = _ctx(known=KnownIdentifiers(book_number="9512", page_number="204"))
    assert plain.skip_reason("locate_source_record", known) == "recording reference supplied by the caller"
    assert plain.skip_reason("capture_document", known) is None


def test_resolve_identifier_prefers_known_parcel_id() -> None:
    resolver = FakeResolver()
    ctx = _ctx(known=KnownIdentifiers(parcel_id="0821-17-1234"), resolver=resolver)

    outcome = asyncio.run(_adapter().resolve_identifier(ctx))

    assert outcome.success
    assert outcome.value == "0821-17-1234"
    assert outcome.data["source"] == "known"
    assert resolver.addresses == []


def test_resolve_identifier_uses_resolver() -> None:
    resolver = FakeResolver("0812-34-5678")

    outcome = asyncio.run(_adapter().resolve_identifier(_ctx(resolver=resolver)))

    assert outcome.value == "0812-34-5678"
    assert resolver.addresses == [ADDRESS]


def test_resolver_failure_keeps_its_kind() -> None:
    resolver = FakeResolver(NotFound(kind=ErrorKind.AUTHENTICATION_REQUIRED, message="bad token"))

    outcome = asyncio.run(_adapter().resolve_identifier(_ctx(resolver=resolver)))

    assert not outcome.success
    assert outcome.error.kind == ErrorKind.AUTHENTICATION_REQUIRED


def test_missing_resolver_is_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        asyncio.run(_adapter().resolve_identifier(_ctx()))


SALES_PAGE = """
<table>
  <tr><th>Sale Date</th><th>Book/Page</th><th>Deed Type</th></tr>
  <tr><td>03/14/2016</td><td>7890 / 455</td><td>Warranty Deed</td></tr>
  <tr><td>08/02/2021</td><td>9512 / 204</td><td>Warranty Deed</td></tr>
</table>
"""


def test_extract_reference_picks_most_recent() -> None:
    ctx = _ctx(html=SALES_PAGE)

    outcome = asyncio.run(_adapter().extract_reference(ctx))

    assert outcome.success
    assert outcome.value.key == "B:9512/P:204"
    assert outcome.data["candidates"] == 2
    assert len(ctx.references) == 2


def test_extract_reference_uses_known_reference() -> None:
    ctx = _ctx(known=KnownIdentifiers(instrument_number="2023000123"), html=SALES_PAGE)

    outcome = asyncio.run(_adapter().extract_reference(ctx))

    assert outcome.value == InstrumentReference("2023000123", source="known")
    assert ctx.references == [outcome.value]


def test_extract_reference_without_candidates_fails() -> None:
    outcome = asyncio.run(_adapter().extract_reference(_ctx(html="<p>No sales on file</p>")))
    assert not outcome.success
    assert outcome.error.kind == ErrorKind.NOT_FOUND


DURHAM_DEEDS = """
<table>
  <tr><th>Status</th><th>Book</th><th>Page</th><th>Date</th></tr>
  <tr><td>Previous</td><td>8801</td><td>12</td><td>01/02/2022</td></tr>
  <tr><td>Current</td><td>9512</td><td>204</td><td>08/02/2021</td></tr>
</table>
"""


def test_durham_reads_the_current_deed_row() -> None:
    ctx = _ctx(html=DURHAM_DEEDS)

    outcome = asyncio.run(_adapter(DurhamCountyNorthCarolina).extract_reference(ctx))

    assert outcome.value.key == "B:9512/P:204"
    assert outcome.value.source == "table"
    assert len(ctx.references) == 1


def test_durham_recorder_search_needs_book_and_page() -> None:
    ctx = _ctx()
    ctx.reference = InstrumentReference("2023000123")

    outcome = asyncio.run(_adapter(DurhamCountyNorthCarolina).locate_target_record(ctx))

    assert not outcome.success
    assert outcome.error.kind == ErrorKind.NOT_FOUND
    assert ctx.page.visited == []


def test_duval_skips_affidavits() -> None:
    html = """
    <table>
      <tr><th>Sale Date</th><th>Instrument</th><th>Document Type</th></tr>
      <tr><td>06/01/2023</td><td>2023000999</td><td>Affidavit</td></tr>
      <tr><td>02/01/2019</td><td>2019000111</td><td>Warranty Deed</td></tr>
    </table>
    """

    outcome = asyncio.run(_adapter(DuvalCountyFlorida).extract_reference(_ctx(html=html)))

    assert outcome.value.instrument_number == "2019000111"


@pytest.mark.parametrize(
    "address,expected",
    [
        ("123 Main St, Jacksonville, FL 32202", ("123", "Main", "Street")),
        ("4500 San Jose Blvd.", ("4500", "San Jose", "Boulevard")),
        ("77 Riverside", ("77", "Riverside", "")),
    ],
)
def test_split_address(address, expected) -> None:
    assert split_address(address) == expected


def test_filename_for() -> None:
    adapter = _adapter(DurhamCountyNorthCarolina)
    ctx = _ctx()
    assert adapter.filename_for(ctx) == "durham_nc_deed.pdf"
    ctx.reference = BookPageReference("9512", "204")
    assert adapter.filename_for(ctx) == "durham_nc_B9512_P204.pdf"
    ctx.reference = InstrumentReference("2023-000123")
    assert adapter.filename_for(ctx) == "durham_nc_2023000123.pdf"


def test_default_capture_fetches_target_document() -> None:
    ctx = _ctx()
    ctx.reference = InstrumentReference("2023000123")
    ctx.target_record = {"document_url": "https://recorder.test/doc.pdf"}

    outcome = asyncio.run(_adapter().capture_document(ctx))

    assert outcome.success
    assert outcome.value.content == PDF_BYTES
    assert outcome.data["filename"] == "plain_pl_2023000123.pdf"
    assert "bytes" not in outcome.data


def test_stage_outcome_from_failure_keeps_tried_selectors() -> None:
    outcome = StageOutcome.from_failure(NotFound(tried=("#a", "#b")), kind=ErrorKind.NOT_FOUND)
    assert not outcome.success
    assert outcome.data["tried"] == ["#a", "#b"]


def test_extract_reference_can_never_be_skipped() -> None:
    class NoReference(PlainAdapter):
        skippable_stages = {"extract_reference": "recorder is searched by address"}

    with pytest.raises(ConfigurationError):
        _adapter(NoReference).validate()


def test_adapter_without_record_lookups_cannot_be_built() -> None:
    class Incomplete(SiteAdapter):
        name = "incomplete"

    with pytest.raises(TypeError):
        _adapter(Incomplete)


def test_default_skippable_stages_are_read_only() -> None:
    with pytest.raises(TypeError):
        PlainAdapter.skippable_stages["resolve_identifier"] = "shared by every adapter"
    assert dict(SiteAdapter.skippable_stages) == {}
