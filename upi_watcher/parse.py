"""
Parse module for the UPI Watcher pipeline.

This module locates the TPAP table inside the listing page and converts
it into structured entries (app name, go-live date, partner PSP banks
and their UPI handles).

The table is positional: a row whose first cell is a serial number starts
a new entry, and the rows after it that do not start with a serial number
add further bank/handle pairs to that entry.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from upi_watcher.utils import WatcherError, get_logger, sanitize_text


# Module logger
logger = get_logger("parse")

# Container holding the data table on the listing page
TABLE_SELECTOR = ".table-responsive > table"

# Leading rows that hold column headings rather than data
HEADER_ROWS = 1

SERIAL_NUMBER_PATTERN = re.compile(r"[0-9]+")


class NotFoundError(WatcherError):
    """Raised when the page has no table inside the expected container."""


class EmptyContentError(WatcherError):
    """Raised when the table exists but has no content."""


class ParseError(WatcherError):
    """Raised when table or snapshot content cannot be interpreted."""


@dataclass(frozen=True)
class PartnerBank:
    """A PSP bank and the UPI handle it issues for an app."""
    bank_name: Optional[str]
    handle_name: Optional[str]

    def to_dict(self) -> Dict[str, str]:
        """Convert to the snapshot representation, omitting missing values."""
        data = {"bank": self.bank_name, "handleName": self.handle_name}
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PartnerBank":
        return cls(bank_name=data.get("bank"), handle_name=data.get("handleName"))


@dataclass
class Entry:
    """
    One third-party app listed in the table.

    Attributes:
        serial_number: Digits from the first column; identity key across runs.
        app_name: Display name of the third-party app.
        go_live_date: Go-live date or label as printed on the page.
        partner_banks: Bank/handle pairs in table order.
        reference_link: Link from the row's anchor, or the raw text of the
                        link column when the row has no anchor.
    """
    serial_number: str
    app_name: Optional[str] = None
    go_live_date: Optional[str] = None
    partner_banks: List[PartnerBank] = field(default_factory=list)
    reference_link: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to the snapshot representation.

        Keys match the documents already kept in the snapshot store, and
        missing values are left out rather than written as null.
        """
        data: Dict[str, Any] = {
            "srNo": self.serial_number,
            "tpap": self.app_name,
            "goLive": self.go_live_date,
            "pspBanks": [bank.to_dict() for bank in self.partner_banks],
            "linksURL": self.reference_link,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entry":
        """Build an Entry from its snapshot representation."""
        return cls(
            serial_number=data.get("srNo"),
            app_name=data.get("tpap"),
            go_live_date=data.get("goLive"),
            partner_banks=[PartnerBank.from_dict(b) for b in data.get("pspBanks") or []],
            reference_link=data.get("linksURL"),
        )


def extract_table(content: str) -> str:
    """
    Locate the data table in the page and return its inner markup.

    Args:
        content: Raw HTML of the listing page.

    Returns:
        Inner HTML of the table element.

    Raises:
        NotFoundError: If the container or its table is missing.
        EmptyContentError: If the table has no inner markup.
    """
    soup = BeautifulSoup(content or "", "html.parser")
    table = soup.select_one(TABLE_SELECTOR)

    if table is None:
        raise NotFoundError("Table not found in the HTML content")

    markup = table.decode_contents()
    if not markup.strip():
        raise EmptyContentError("Table content is empty")

    logger.debug(f"Extracted table markup ({len(markup)} bytes)")
    return markup


def is_serial_number(text: Optional[str]) -> bool:
    """Return True if ``text`` consists entirely of ASCII digits."""
    return bool(text) and SERIAL_NUMBER_PATTERN.fullmatch(text) is not None


def extract_cells(row: Tag) -> List[str]:
    """
    Return the whitespace-normalised text of each data cell in a row.

    Text from nested elements is joined with a space so that line breaks
    inside a cell do not glue words together.
    """
    return [sanitize_text(cell.get_text(" ")) for cell in row.find_all("td")]


def extract_row_link(row: Tag) -> Optional[str]:
    """Return the first non-blank link target in a row, if any."""
    for link in row.find_all("a", href=True):
        href = str(link["href"]).strip()
        if href:
            return href
    return None


def _cell(cells: List[str], index: int) -> Optional[str]:
    return cells[index] if index < len(cells) else None


def parse_table(markup: str) -> List[Entry]:
    """
    Convert table markup into entries.

    A row whose first cell is a serial number starts a new entry from the
    first five cells; a following row with at least two cells is a
    continuation that adds one more bank/handle pair. Other rows are
    ignored. Rows with missing cells produce entries with missing fields
    instead of failing.

    Args:
        markup: Inner HTML of the data table.

    Returns:
        Entries in table order.
    """
    soup = BeautifulSoup(markup or "", "html.parser")
    rows = soup.find_all("tr")[HEADER_ROWS:]

    entries: List[Entry] = []
    current: Optional[Entry] = None
    skipped = 0

    for row in rows:
        cells = extract_cells(row)
        if not cells:
            continue

        if is_serial_number(cells[0]):
            if current is not None:
                entries.append(current)

            link = extract_row_link(row)
            current = Entry(
                serial_number=cells[0],
                app_name=_cell(cells, 1),
                go_live_date=_cell(cells, 2),
                partner_banks=[PartnerBank(_cell(cells, 3), _cell(cells, 4))],
                reference_link=link or _cell(cells, 5),
            )
        elif current is not None and len(cells) >= 2:
            current.partner_banks.append(PartnerBank(cells[0], cells[1]))
        else:
            skipped += 1
            logger.debug(f"Ignoring row with {len(cells)} cell(s): {cells[:2]}")

    if current is not None:
        entries.append(current)

    if skipped:
        logger.debug(f"Ignored {skipped} row(s) that neither start nor continue an entry")
    logger.info(f"Parsed {len(entries)} entr{'y' if len(entries) == 1 else 'ies'} from table")

    return entries
