"""Extract scrub/resilver progress from the prose of the `scan:` section.

zpool prints this section as English sentences whose wording shifts
between releases, e.g.

    scrub repaired 0B in 00:01:30 with 0 errors on Sun Jan 14 00:25:00 2024

    scrub in progress since Sun Jan 14 00:00:00 2024
        500G scanned at 100M/s, 250G issued at 50M/s, 1T total
        0B repaired, 25.0% done, 04:00:00 to go

    resilvered 1.20G in 0 days 00:10:00 with 0 errors on Mon Jan 15 ...

There is no grammar to follow, so each field is pulled out by its own
keyword-anchored extractor. Every extractor returns a zero value when its
keyword is missing; one absent field never spoils the others.
"""

import re
from datetime import datetime, timedelta

from models import ScanFunction, ScanInfo, ScanState
from services.units import (
    parse_duration,
    parse_hhmmss,
    parse_percentage,
    parse_size,
    parse_timestamp,
)

# Timestamp prose ends at one of these; the trim loop handles the rest
_TIMESTAMP_END_MARKERS = (" with ", " 0b ", " 0B ")

_SIZE_TOKEN = r"(\d+(?:\.\d+)?[KMGTPE]?(?:i?B)?)"

_ELAPSED_RE = re.compile(r"\bin\s+(?:(\d+)\s+days?\s+)?(\d+:\d{2}:\d{2})", re.IGNORECASE)
_ERRORS_RE = re.compile(r"(\d+)\s+errors?\b", re.IGNORECASE)
_SCANNED_RE = re.compile(_SIZE_TOKEN + r"\s+scanned", re.IGNORECASE)
_OUT_OF_RE = re.compile(r"out of\s+" + _SIZE_TOKEN, re.IGNORECASE)
_TOTAL_RE = re.compile(_SIZE_TOKEN + r"\s+total", re.IGNORECASE)
_REPAIRED_BEFORE_RE = re.compile(_SIZE_TOKEN + r"\s+repaired", re.IGNORECASE)
_REPAIRED_AFTER_RE = re.compile(r"repaired\s+" + _SIZE_TOKEN, re.IGNORECASE)
_RATE_RE = re.compile(r"(\d+(?:\.\d+)?[KMGTPE]?)(?:i?B)?/s", re.IGNORECASE)
_TO_GO_RE = re.compile(
    r"((?:\d+\s+days?\s+)?\d+:\d{1,2}:\d{1,2}|(?:\d+\s*[dhms]\s*)+)\s*to go", re.IGNORECASE
)


def parse_scan_text(text: str) -> ScanInfo:
    """Parse the joined `scan:` section (without the `scan:` label)."""
    scan = ScanInfo()
    full_text = " ".join(text.split())
    lower = full_text.lower()

    if "no scans" in lower or "none requested" in lower:
        return scan

    scan.function = scan_function(lower)
    scan.state = scan_state(lower)

    scan.start_time = extract_timestamp(full_text, "since")
    scan.end_time = extract_timestamp(full_text, "on")

    scan.duration = extract_elapsed(full_text)
    if not scan.duration and scan.start_time and scan.end_time:
        scan.duration = max(0, int((scan.end_time - scan.start_time).total_seconds()))
    if scan.start_time is None and scan.end_time and scan.duration:
        scan.start_time = scan.end_time - timedelta(seconds=scan.duration)

    scan.progress_pct = parse_percentage(lower, "% done")
    if not scan.progress_pct and scan.state == ScanState.FINISHED:
        scan.progress_pct = 100.0

    scan.errors_found = extract_errors(full_text)
    scan.data_examined = _size_match(_SCANNED_RE, full_text)
    scan.data_total = extract_total(full_text)
    scan.bytes_repaired = extract_repaired(full_text)
    scan.rate = extract_rate(full_text)
    scan.time_remaining = extract_time_remaining(full_text)
    return scan


def scan_function(lower: str) -> ScanFunction:
    if "resilver" in lower:
        return ScanFunction.RESILVER
    if "scrub" in lower:
        return ScanFunction.SCRUB
    return ScanFunction.NONE


def scan_state(lower: str) -> ScanState:
    if "in progress" in lower:
        return ScanState.SCANNING
    if "canceled" in lower or "cancelled" in lower:
        return ScanState.CANCELED
    if "repaired" in lower or "resilvered" in lower:
        return ScanState.FINISHED
    return ScanState.NONE


def extract_timestamp(text: str, keyword: str) -> datetime | None:
    """Parse the timestamp written after ``keyword`` ('since' or 'on')."""
    match = re.search(rf"\b{keyword}\s+", text, re.IGNORECASE)
    if not match:
        return None
    rest = text[match.end():]
    for marker in _TIMESTAMP_END_MARKERS:
        idx = rest.find(marker)
        if idx > 0:
            rest = rest[:idx]
            break
    return parse_timestamp(rest)


def extract_elapsed(text: str) -> int:
    """Seconds from an explicit 'in [N days ]HH:MM:SS'."""
    match = _ELAPSED_RE.search(text)
    if not match:
        return 0
    days = int(match.group(1)) if match.group(1) else 0
    return days * 86400 + parse_hhmmss(match.group(2))


def extract_errors(text: str) -> int:
    match = _ERRORS_RE.search(text)
    return int(match.group(1)) if match else 0


def extract_total(text: str) -> int:
    total = _size_match(_OUT_OF_RE, text)
    if total:
        return total
    return _size_match(_TOTAL_RE, text)


def extract_repaired(text: str) -> int:
    """Bytes repaired; in-progress text puts the size before the keyword,
    finished text after it ('scrub repaired 4K in ...')."""
    repaired = _size_match(_REPAIRED_BEFORE_RE, text)
    if repaired:
        return repaired
    return _size_match(_REPAIRED_AFTER_RE, text)


def extract_rate(text: str) -> int:
    return _size_match(_RATE_RE, text)


def extract_time_remaining(text: str) -> int:
    match = _TO_GO_RE.search(text)
    if not match:
        return 0
    return parse_duration(match.group(1))


def _size_match(pattern: re.Pattern[str], text: str) -> int:
    match = pattern.search(text)
    return parse_size(match.group(1)) if match else 0
