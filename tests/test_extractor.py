import re
from datetime import date

from deedscraper.scrapers.extractor import (
    ExtractionRules,
    ReferenceExtractor,
    exclude_document_types,
    parse_date,
    rows_from_html,
    text_from_html,
)
from deedscraper.state import BookPageReference, InstrumentReference

SALES_TABLE = """
<html><body>
<h2>Sales History</h2>
<table>
  <tr><th>Sale Date</th><th>Instrument</th><th>Deed Type</th><th>Price</th></tr>
  <tr><td>01/15/2019</td><td>2019000456</td><td>Warranty Deed</td><td>$210,000</td></tr>
  <tr><td>05/01/2023</td><td>2023000123</td><td>Special Warranty Deed</td><td>$355,000</td></tr>
</table>
<p>Visitor counter: 88812345</p>
</body></html>
"""


def test_most_recent_transaction_comes_first() -> None:
    rows = rows_from_html(SALES_TABLE)
    references = ReferenceExtractor().extract(text_from_html(SALES_TABLE), rows)

    assert [r.instrument_number for r in references] == ["2023000123", "2019000456"]
    assert references[0].recorded_date == date(2023, 5, 1)
    assert references[0].document_type == "Special Warranty Deed"
    assert references[0].source == "table"


def test_text_pass_orders_by_date() -> None:
    text = "Sale 2019-01-01 Instrument # 2019000456\nSale 2023-05-01 Instrument # 2023000123"

    references = ReferenceExtractor().extract(text)

    assert [r.instrument_number for r in references] == ["2023000123", "2019000456"]
    assert all(r.source == "text" for r in references)


def test_hit_counter_is_not_a_reference() -> None:
    references = ReferenceExtractor().extract("Page views: 1203\nTotal hits Doc # 45678901")
    assert references == []


def test_parcel_number_before_label_does_not_block() -> None:
    references = ReferenceExtractor().extract("Parcel ID: 12345 Instrument: 2023000123")
    assert [r.instrument_number for r in references] == ["2023000123"]


def test_row_hit_wins_and_text_fills_missing_date() -> None:
    rows = [{"Instrument": "2023000123", "Type": "Warranty Deed"}]
    text = "Recorded 05/01/2023 Instrument: 2023000123"

    references = ReferenceExtractor().extract(text, rows)

    assert len(references) == 1
    assert references[0].source == "table"
    assert references[0].recorded_date == date(2023, 5, 1)


def test_book_page_deduplicates_leading_zeros() -> None:
    text = "OR Book 01234 Page 0567\nBook 1234, Page 567"

    references = ReferenceExtractor().extract(text)

    assert len(references) == 1
    assert isinstance(references[0], BookPageReference)
    assert references[0].key == "B:1234/P:567"


def test_book_below_minimum_is_rejected() -> None:
    rules = ExtractionRules(min_book_number=101)
    references = ReferenceExtractor(rules).extract("Book 12 Page 3\nBook 18250 Page 1177")
    assert [(r.book_number, r.page_number) for r in references] == [("18250", "1177")]


def test_all_zero_and_malformed_values_rejected() -> None:
    references = ReferenceExtractor().extract("Instrument: 00000000\nDocument # 1234567\nInstrument 2023000123")
    assert [r.instrument_number for r in references] == ["2023000123"]


def test_jurisdiction_format_is_respected() -> None:
    rules = ExtractionRules(instrument_format=re.compile(r"\d{10}"))
    references = ReferenceExtractor(rules).extract("Instrument: 202300012\nInstrument: 2023000123")
    assert [r.instrument_number for r in references] == ["2023000123"]


def test_affidavit_filter_is_opt_in() -> None:
    rows = [
        {"Date": "06/01/2023", "Instrument": "2023000999", "Document Type": "EXCISE TAX AFFIDAVIT"},
        {"Date": "02/01/2019", "Instrument": "2019000111", "Document Type": "STATUTORY WARRANTY DEED"},
    ]

    unfiltered = ReferenceExtractor().extract("", rows)
    filtered = ReferenceExtractor(reference_filter=exclude_document_types("EXCISE TAX AFFIDAVIT")).extract("", rows)

    assert [r.instrument_number for r in unfiltered] == ["2023000999", "2019000111"]
    assert [r.instrument_number for r in filtered] == ["2019000111"]


def test_default_exclusions_keep_deeds() -> None:
    keep = exclude_document_types()
    assert keep(InstrumentReference("2023000123", document_type="WARRANTY DEED"))
    assert not keep(InstrumentReference("2023000123", document_type="DEED OF TRUST"))
    assert keep(InstrumentReference("2023000123"))


def test_undated_references_follow_dated_in_discovery_order() -> None:
    rows = [
        {"Book": "5001", "Page": "10"},
        {"Book": "5002", "Page": "20", "Recorded Date": "03/03/2020"},
        {"Book": "5003", "Page": "30"},
    ]

    references = ReferenceExtractor().extract("", rows)

    assert [r.book_number for r in references] == ["5002", "5001", "5003"]


def test_combined_book_page_column() -> None:
    rows = [{"Book/Page": "18250 / 1177", "Sale Date": "2021-07-09"}]
    references = ReferenceExtractor().extract("", rows)
    assert references == [BookPageReference("18250", "1177", date(2021, 7, 9), None, "table")]


def test_unrecognized_columns_fall_back_to_cell_shapes() -> None:
    html = "<table><tr><td>Doc</td><td>Date</td></tr><tr><td>2022004455</td><td>04/04/2022</td></tr></table>"
    references = ReferenceExtractor().extract("", rows_from_html(html))
    assert [r.instrument_number for r in references] == ["2022004455"]
    assert references[0].recorded_date == date(2022, 4, 4)


def test_extraction_is_deterministic() -> None:
    rows = rows_from_html(SALES_TABLE)
    text = text_from_html(SALES_TABLE)
    extractor = ReferenceExtractor()
    assert extractor.extract(text, rows) == extractor.extract(text, rows)


def test_rows_from_html_uses_th_headers() -> None:
    rows = rows_from_html(SALES_TABLE)
    assert rows[0]["Instrument"] == "2019000456"
    assert rows[1]["Sale Date"] == "05/01/2023"
    assert len(rows) == 2


def test_parse_date_formats() -> None:
    assert parse_date("Recorded 05/01/2023") == date(2023, 5, 1)
    assert parse_date("2023-05-01") == date(2023, 5, 1)
    assert parse_date("May 1, 2023") == date(2023, 5, 1)
    assert parse_date("no date here") is None


def test_parcel_and_phone_columns_are_not_references() -> None:
    html = """
    <table><tr><th>Parcel ID</th><th>Owner</th></tr><tr><td>0831234567</td><td>SMITH JOHN</td></tr></table>
    <table>
      <tr><th>Sale Date</th><th>Book</th><th>Page</th></tr>
      <tr><td>08/02/2021</td><td>9512</td><td>204</td></tr>
    </table>
    <table><tr><th>Owner</th><th>Phone</th></tr><tr><td>SMITH JOHN</td><td>9195551234</td></tr></table>
    """

    references = ReferenceExtractor().extract(text_from_html(html), rows_from_html(html))

    assert [r.key for r in references] == ["B:9512/P:204"]


def test_phone_table_alone_yields_nothing() -> None:
    html = "<table><tr><th>Owner</th><th>Phone</th></tr><tr><td>SMITH JOHN</td><td>9195551234</td></tr></table>"
    assert ReferenceExtractor().extract(text_from_html(html), rows_from_html(html)) == []


def test_inline_markup_keeps_dates_with_their_numbers() -> None:
    html = """
    <div><span>Recorded 01/01/2019</span> <span>Instrument # 2019000456</span></div>
    <div><span>Recorded 05/01/2023</span> <a href="#">Instrument # 2023000123</a></div>
    """

    references = ReferenceExtractor().extract(text_from_html(html))

    assert [(r.instrument_number, r.recorded_date) for r in references] == [
        ("2023000123", date(2023, 5, 1)),
        ("2019000456", date(2019, 1, 1)),
    ]


def test_text_from_html_lines_follow_blocks() -> None:
    html = "<p>Sale <b>05/01/2023</b><br>Book 9512 Page 204</p><script>var x = 1;</script><li>Deed</li>"
    assert text_from_html(html).splitlines() == ["Sale 05/01/2023", "Book 9512 Page 204", "Deed"]
