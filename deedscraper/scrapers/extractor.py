"""
Recording reference extraction.

Assessor pages list a property's sale history in wildly different layouts.
This module mines that content for instrument numbers and book/page pairs:
structured table rows first (columns tell date, type and reference apart),
then regular expressions over the page text. Results are deduplicated,
checked against the jurisdiction's number formats and ordered newest first.
"""

import logging
import re
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from bs4 import BeautifulSoup

from ..state import BookPageReference, InstrumentReference, RecordingReference

logger = logging.getLogger(__name__)

ReferenceFilter = Callable[[RecordingReference], bool]

DATE_FORMATS = (
    "%m/%d/%Y",
    "%Y-%m-%d",
    "%m-%d-%Y",
    "%m/%d/%y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d-%b-%Y",
)
DATE_PATTERN = re.compile(
    r"\b(\d{4}-\d{2}-\d{2}|\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{1,2}-[A-Za-z]{3}-\d{4}|[A-Z][a-z]{2,8}\.? \d{1,2}, \d{4})\b"
)

# Longest phrases first so "EXCISE TAX AFFIDAVIT" wins over "AFFIDAVIT"
DOCUMENT_TYPE_PATTERN = re.compile(
    r"\b(excise tax affidavit|special warranty deed|warranty deed|quit\s?claim deed|quitclaim|"
    r"trustee'?s deed|executor'?s deed|personal representative'?s deed|deed of trust|"
    r"affidavit|mortgage|satisfaction|release|lien|deed)\b",
    re.IGNORECASE,
)

NON_CONVEYANCE_TYPES = (
    "EXCISE TAX AFFIDAVIT",
    "AFFIDAVIT",
    "DEED OF TRUST",
    "MORTGAGE",
    "SATISFACTION",
    "RELEASE",
    "LIEN",
)

BLOCK_TAGS = (
    "address", "article", "aside", "blockquote", "dd", "div", "dl", "dt", "fieldset", "figure",
    "footer", "form", "h1", "h2", "h3", "h4", "h5", "h6", "header", "hr", "li", "main", "nav",
    "ol", "p", "pre", "section", "table", "tbody", "tfoot", "thead", "tr", "ul",
)
HIDDEN_TAGS = ("script", "style", "noscript", "template")


def parse_date(text: Optional[str]) -> Optional[date]:
    """Parse the first date found in ``text``; None when there is none."""
    if not text:
        return None
    match = DATE_PATTERN.search(text)
    if not match:
        return None
    value = match.group(1).replace(".", "")
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def exclude_document_types(*types: str) -> ReferenceFilter:
    """Build a filter that drops references whose document type contains any of ``types``."""
    blocked = tuple(t.upper() for t in (types or NON_CONVEYANCE_TYPES))

    def _keep(reference: RecordingReference) -> bool:
        doc_type = (reference.document_type or "").upper()
        return not any(b in doc_type for b in blocked)

    return _keep


@dataclass(frozen=True)
class ExtractionRules:
    """Number shapes and plausibility limits of one jurisdiction."""

    instrument_patterns: Tuple[Pattern, ...] = (
        re.compile(
            r"\b(?:Instrument|Inst|Document|Doc|CFN|Recording|Reception)\s*(?:No\.?|Number|Num|#)?[\s#:]*(?P<instrument>\d{6,14})\b",
            re.IGNORECASE,
        ),
    )
    book_page_patterns: Tuple[Pattern, ...] = (
        re.compile(
            r"\b(?:OR\s+|Deed\s+)?(?:Book|Bk|Volume|Vol)\.?[\s:#]*(?P<book>\d{1,6})[\s,;]*(?:Page|Pg)\.?[\s:#]*(?P<page>\d{1,5})\b",
            re.IGNORECASE,
        ),
        re.compile(
            r"\b(?:Book\s*/\s*Page|Bk\s*/\s*Pg|B/P)[\s:#]*(?P<book>\d{1,6})\s*[/-]\s*(?P<page>\d{1,5})\b",
            re.IGNORECASE,
        ),
    )
    instrument_format: Pattern = re.compile(r"\d{8,12}")
    book_format: Pattern = re.compile(r"\d{1,6}")
    page_format: Pattern = re.compile(r"\d{1,5}")
    min_book_number: int = 1
    unrelated_context: Tuple[str, ...] = (
        "visitor",
        "visits",
        "hits",
        "counter",
        "views",
        "phone",
        "fax",
        "parcel",
        "account",
        "zip",
    )
    context_window: int = 40


DEFAULT_RULES = ExtractionRules()


class _Column:
    INSTRUMENT = ("instrument", "document number", "document #", "document no", "doc number", "doc #",
                  "doc no", "cfn", "recording number", "reception", "deed number")
    BOOK_PAGE = ("book/page", "bk/pg", "book-page", "book & page", "book and page", "b/p")
    BOOK = ("book", "volume", "vol")
    PAGE = ("page", "pg")
    DATE = ("date",)
    TYPE = ("type", "description", "deed code")


def _classify_columns(headers: Sequence[str]) -> Dict[str, str]:
    columns: Dict[str, str] = {}
    for header in headers:
        name = header.strip().lower()
        if not name:
            continue
        if "date" in name:
            columns.setdefault("date", header)
        elif any(k in name for k in _Column.TYPE):
            columns.setdefault("type", header)
        elif any(k in name for k in _Column.BOOK_PAGE) or ("book" in name and "page" in name):
            columns.setdefault("book_page", header)
        elif any(k in name for k in _Column.INSTRUMENT):
            columns.setdefault("instrument", header)
        elif any(name == k or name.startswith(k + " ") or name.endswith(" " + k) for k in _Column.BOOK):
            columns.setdefault("book", header)
        elif any(name == k or name.startswith(k + " ") or name.endswith(" " + k) for k in _Column.PAGE):
            columns.setdefault("page", header)
    return columns


class ReferenceExtractor:
    def __init__(self, rules: ExtractionRules = DEFAULT_RULES, reference_filter: Optional[ReferenceFilter] = None):
        self.rules = rules
        self.reference_filter = reference_filter

    # --- validation ---

    def valid_instrument(self, value: str) -> Optional[str]:
        value = (value or "").strip()
        if self.rules.instrument_format.fullmatch(value) is None:
            digits = re.sub(r"\D", "", value)
            if not digits or self.rules.instrument_format.fullmatch(digits) is None:
                return None
            value = digits
        if not value.strip("0-"):
            return None
        return value

    def valid_book_page(self, book: str, page: str) -> Optional[Tuple[str, str]]:
        book = (book or "").strip()
        page = (page or "").strip()
        if self.rules.book_format.fullmatch(book) is None or self.rules.page_format.fullmatch(page) is None:
            return None
        if int(book) < max(1, self.rules.min_book_number) or int(page) < 1:
            return None
        return book, page

    def _unrelated(self, line: str, start: int) -> bool:
        prefix = line[max(0, start - self.rules.context_window):start]
        # Only the text after the previous number describes this one
        prefix = re.split(r"\d", prefix)[-1].lower()
        return any(word in prefix for word in self.rules.unrelated_context)

    def _unrelated_column(self, header: str) -> bool:
        name = (header or "").lower()
        return any(word in name for word in self.rules.unrelated_context)

    # --- passes ---

    def _from_rows(self, rows: Sequence[Mapping[str, str]]) -> List[RecordingReference]:
        found: List[RecordingReference] = []
        for row in rows:
            if not row:
                continue
            headers = list(row.keys())
            columns = _classify_columns(headers)
            row_date = parse_date(row.get(columns["date"])) if "date" in columns else None
            doc_type = ((row.get(columns["type"]) or "").strip() or None) if "type" in columns else None

            if "instrument" in columns:
                number = self.valid_instrument(row.get(columns["instrument"], ""))
                if number:
                    found.append(InstrumentReference(number, row_date, doc_type, source="table"))

            book_page = None
            if "book_page" in columns:
                match = re.search(r"(\d+)\s*[/\-,]\s*(?:pg\.?\s*)?(\d+)", row.get(columns["book_page"], ""), re.IGNORECASE)
                if match:
                    book_page = self.valid_book_page(match.group(1), match.group(2))
            elif "book" in columns and "page" in columns:
                book_page = self.valid_book_page(row.get(columns["book"], ""), row.get(columns["page"], ""))
            if book_page:
                found.append(BookPageReference(book_page[0], book_page[1], row_date, doc_type, source="table"))

            if not any(k in columns for k in ("instrument", "book_page", "book")):
                # No reference column: any cell shaped like an instrument number,
                # except under headers naming parcels, phones, accounts and the like
                cell_date = row_date or next((parse_date(v) for v in row.values() if parse_date(v)), None)
                for header, value in row.items():
                    if self._unrelated_column(header):
                        continue
                    value = (value or "").strip()
                    if self.rules.instrument_format.fullmatch(value) and value.strip("0"):
                        found.append(InstrumentReference(value, cell_date, doc_type, source="table"))
        return found

    def _from_text(self, page_text: str) -> List[RecordingReference]:
        found: List[RecordingReference] = []
        for line in (page_text or "").splitlines():
            if not line.strip():
                continue
            line_date = parse_date(line)
            type_match = DOCUMENT_TYPE_PATTERN.search(line)
            doc_type = type_match.group(1).upper() if type_match else None

            for pattern in self.rules.instrument_patterns:
                for match in pattern.finditer(line):
                    if self._unrelated(line, match.start()):
                        continue
                    number = self.valid_instrument(match.group("instrument"))
                    if number:
                        found.append(InstrumentReference(number, line_date, doc_type, source="text"))

            for pattern in self.rules.book_page_patterns:
                for match in pattern.finditer(line):
                    if self._unrelated(line, match.start()):
                        continue
                    book_page = self.valid_book_page(match.group("book"), match.group("page"))
                    if book_page:
                        found.append(BookPageReference(book_page[0], book_page[1], line_date, doc_type, source="text"))
        return found

    def extract(self, page_text: str, structured_rows: Sequence[Mapping[str, str]] = ()) -> List[RecordingReference]:
        """
        Extract recording references from page text and table rows.

        Args:
            page_text: Visible text of the page
            structured_rows: Table rows as header -> cell text mappings

        Returns:
            list: Unique references, most recent first
        """
        merged: Dict[str, RecordingReference] = {}
        for reference in self._from_rows(structured_rows) + self._from_text(page_text):
            existing = merged.get(reference.key)
            if existing is None:
                merged[reference.key] = reference
            elif existing.recorded_date is None and reference.recorded_date is not None:
                merged[reference.key] = replace(existing, recorded_date=reference.recorded_date)
            elif existing.document_type is None and reference.document_type is not None:
                merged[reference.key] = replace(existing, document_type=reference.document_type)

        references = list(merged.values())
        if self.reference_filter is not None:
            kept = [r for r in references if self.reference_filter(r)]
            if len(kept) != len(references):
                logger.info(f"Filtered out {len(references) - len(kept)} non-qualifying reference(s)")
            references = kept

        order = {id(r): i for i, r in enumerate(references)}
        references.sort(
            key=lambda r: (
                r.recorded_date is None,
                -(r.recorded_date.toordinal()) if r.recorded_date else 0,
                order[id(r)],
            )
        )
        logger.info(f"✅ Found {len(references)} recording reference(s)")
        return references


def rows_from_html(html: str) -> List[Dict[str, str]]:
    """
    Flatten every HTML table into header -> cell text rows.

    Header cells come from the first row made of <th> cells, or the first row
    when a table has none. Rows of nested tables belong to the nested table.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    rows: List[Dict[str, str]] = []
    for table in soup.find_all("table"):
        headers: Optional[List[str]] = None
        for tr in table.find_all("tr"):
            if tr.find_parent("table") is not table:
                continue
            cells = tr.find_all(["th", "td"])
            cells = [c for c in cells if c.find_parent("tr") is tr]
            texts = [" ".join(c.get_text(" ", strip=True).split()) for c in cells]
            if not any(texts):
                continue
            if headers is None or all(c.name == "th" for c in cells):
                headers = _unique_headers(texts)
                continue
            row = {}
            for i, text in enumerate(texts):
                key = headers[i] if i < len(headers) else f"col{i}"
                row[key] = text
            rows.append(row)
    return rows


def _unique_headers(texts: Sequence[str]) -> List[str]:
    seen: Dict[str, int] = {}
    headers = []
    for i, text in enumerate(texts):
        name = text or f"col{i}"
        if name in seen:
            seen[name] += 1
            name = f"{name} ({seen[name]})"
        else:
            seen[name] = 0
        headers.append(name)
    return headers


def text_from_html(html: str) -> str:
    """
    Visible text of an HTML document, one block per line.

    Inline elements of a block (spans, links, labels) stay on the block's
    line, so a number keeps the date and document type written next to it.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup.find_all(HIDDEN_TAGS):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")
    lines = (" ".join(line.split()) for line in soup.get_text(" ").splitlines())
    return "\n".join(line for line in lines if line)
