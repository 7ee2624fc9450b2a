"""
Compare module for the UPI Watcher pipeline.

This module handles serialising entries into the canonical snapshot
document and comparing freshly parsed entries with the stored snapshot
to detect newly listed apps.

Entries are identified by serial number only: an existing serial number
whose other fields changed is not reported as new.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, List, Set

from upi_watcher.parse import Entry, ParseError
from upi_watcher.utils import get_logger


# Module logger
logger = get_logger("compare")

SNAPSHOT_INDENT = 2


@dataclass
class SnapshotComparison:
    """
    Outcome of comparing current entries with the stored snapshot.

    Attributes:
        changed: Whether the serialised entries differ from the stored document.
        serialized: Canonical serialisation of the current entries.
        new_entries: Current entries whose serial number was not stored before.
    """
    changed: bool
    serialized: str
    new_entries: List[Entry] = field(default_factory=list)


def serialize_entries(entries: List[Entry]) -> str:
    """
    Serialise entries into the canonical snapshot document.

    Args:
        entries: Entries to serialise.

    Returns:
        JSON array pretty-printed with 2-space indentation.
    """
    return json.dumps(
        [entry.to_dict() for entry in entries],
        indent=SNAPSHOT_INDENT,
        ensure_ascii=False
    )


def deserialize_entries(raw: str) -> List[Entry]:
    """
    Parse a snapshot document back into entries.

    Args:
        raw: JSON array as written by serialize_entries.

    Returns:
        List of entries in document order.

    Raises:
        ParseError: If the document is not a JSON array of objects, or an
                    item's partner banks are not an array of objects.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"Stored snapshot is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise ParseError(f"Stored snapshot must be a JSON array, got {type(data).__name__}")

    entries = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ParseError(f"Stored snapshot item {index} is not an object")
        banks = item.get("pspBanks")
        if banks is not None and not isinstance(banks, list):
            raise ParseError(f"Stored snapshot item {index} has pspBanks that is not an array")
        if any(not isinstance(bank, dict) for bank in banks or []):
            raise ParseError(f"Stored snapshot item {index} has a partner bank that is not an object")
        entries.append(Entry.from_dict(item))

    return entries


def build_serial_set(entries: List[Entry]) -> Set[str]:
    """
    Build a set of serial numbers from a list of entries.

    Args:
        entries: List of entries.

    Returns:
        Set of serial number strings.
    """
    return {e.serial_number for e in entries if e.serial_number}


def find_new_entries(current: List[Entry], previous: List[Entry]) -> List[Entry]:
    """
    Find entries that are in current but not in previous.

    Args:
        current: Freshly parsed entries.
        previous: Entries from the stored snapshot.

    Returns:
        New entries, in current order.
    """
    previous_serials = build_serial_set(previous)

    new_entries = [e for e in current if e.serial_number not in previous_serials]

    logger.info(f"Found {len(new_entries)} new entr{'y' if len(new_entries) == 1 else 'ies'}")

    return new_entries


def find_removed_entries(current: List[Entry], previous: List[Entry]) -> List[Entry]:
    """Find entries that were in previous but are no longer listed."""
    current_serials = build_serial_set(current)

    removed = [e for e in previous if e.serial_number not in current_serials]

    logger.debug(f"Found {len(removed)} removed entr{'y' if len(removed) == 1 else 'ies'}")

    return removed


def compare_snapshot(current: List[Entry], previous_raw: str) -> SnapshotComparison:
    """
    Compare current entries with the stored snapshot document.

    If the canonical serialisation of ``current`` equals ``previous_raw``
    exactly, nothing changed and the stored document is never decoded.
    Otherwise the stored document is decoded and new entries are found by
    serial number.

    Args:
        current: Freshly parsed entries.
        previous_raw: Snapshot document as read from the store.

    Returns:
        SnapshotComparison describing the outcome.

    Raises:
        ParseError: If the content changed and the stored document cannot
                    be decoded.
    """
    serialized = serialize_entries(current)

    if serialized == previous_raw:
        logger.info("No changes detected in the table content")
        return SnapshotComparison(changed=False, serialized=serialized)

    previous = deserialize_entries(previous_raw)
    new_entries = find_new_entries(current, previous)

    summary = get_comparison_summary(current, previous)
    logger.info(
        f"Comparison complete: "
        f"{summary['current_count']} current, "
        f"{summary['previous_count']} previous, "
        f"{summary['new_count']} new, "
        f"{summary['removed_count']} removed"
    )

    for entry in find_removed_entries(current, previous):
        logger.info(f"No longer listed: #{entry.serial_number} {entry.app_name}")

    return SnapshotComparison(changed=True, serialized=serialized, new_entries=new_entries)


def detect_new_entries(current: List[Entry], previous_raw: str) -> List[Entry]:
    """
    Return the entries of ``current`` that the stored snapshot lacks.

    Returns an empty list when the serialised entries equal
    ``previous_raw`` exactly.
    """
    return compare_snapshot(current, previous_raw).new_entries


def get_comparison_summary(current: List[Entry], previous: List[Entry]) -> Dict[str, int]:
    """
    Get a summary of the comparison between current and previous entries.

    Args:
        current: Freshly parsed entries.
        previous: Entries from the stored snapshot.

    Returns:
        Dictionary with comparison statistics.
    """
    current_serials = build_serial_set(current)
    previous_serials = build_serial_set(previous)

    return {
        "current_count": len(current),
        "previous_count": len(previous),
        "new_count": len(current_serials - previous_serials),
        "removed_count": len(previous_serials - current_serials),
        "unchanged_count": len(current_serials & previous_serials)
    }
