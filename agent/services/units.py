"""Parsers for the human-readable values zpool prints.

Every function here is total: malformed input yields a zero value (or
None for timestamps), never an exception. zpool output differs across
versions and platforms, so a field that cannot be read is expected.
"""

import re
from datetime import datetime

_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?|\.\d+)\s*([KMGTPE]?)(?:I?B)?$")

_MULTIPLIERS = {
    "": 1,
    "K": 1024,
    "M": 1024**2,
    "G": 1024**3,
    "T": 1024**4,
    "P": 1024**5,
    "E": 1024**6,
}

# strptime formats seen in zpool status/history output, tried in order.
# Day-of-month with %d accepts both "2" and "02".
TIMESTAMP_FORMATS = [
    "%a %b %d %H:%M:%S %Y",  # Mon Jan  2 03:04:05 2023
    "%b %d %H:%M:%S %Y",  # Jan  2 03:04:05 2023
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d.%H:%M:%S",  # zpool history
]

# Shortest candidate the trailing-trim loop will still try
_MIN_TIMESTAMP_LEN = 10
# Longest timestamp in TIMESTAMP_FORMATS is well under this
_MAX_TIMESTAMP_LEN = 48

_COMPOSITE_DURATION_RE = re.compile(r"(\d+)\s*([dhms])", re.IGNORECASE)
_DAYS_RE = re.compile(r"(\d+)\s+days?\s+(\d+:\d{1,2}:\d{1,2})", re.IGNORECASE)

_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}


def _is_blank(value: str | None) -> bool:
    return value is None or value.strip() in ("", "-")


def parse_size(value: str | None) -> int:
    """Parse '512G', '1.00T', '4.5K', '0B' or a plain byte count into bytes.

    Suffixes are binary (K = 1024) and case-insensitive.
    """
    if _is_blank(value):
        return 0
    match = _SIZE_RE.match(value.strip().upper())
    if not match:
        return 0
    number, suffix = match.groups()
    multiplier = _MULTIPLIERS[suffix]
    if "." not in number:
        return int(number) * multiplier
    return int(float(number) * multiplier)


def parse_int(value: str | None) -> int:
    """Parse an integer column, tolerating '-', '%' suffixes and decimals."""
    if _is_blank(value):
        return 0
    value = value.strip().rstrip("%")
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return int(float(value))
    except ValueError:
        return 0


def parse_float(value: str | None) -> float:
    """Parse a float column, tolerating '-' and a trailing '%'."""
    if _is_blank(value):
        return 0.0
    try:
        return float(value.strip().rstrip("%"))
    except ValueError:
        return 0.0


def parse_percentage(text: str, marker: str = "% done") -> float:
    """Return the number written immediately before ``marker`` in ``text``."""
    idx = text.find(marker)
    if idx <= 0:
        return 0.0
    match = re.search(r"(\d+(?:\.\d+)?)\s*$", text[:idx])
    if not match:
        return 0.0
    return float(match.group(1))


def parse_hhmmss(value: str | None) -> int:
    """Parse 'HH:MM:SS' into seconds. Anything without exactly three
    numeric segments is 0."""
    if _is_blank(value):
        return 0
    parts = value.strip().split(":")
    if len(parts) != 3:
        return 0
    try:
        hours, mins, secs = (int(p) for p in parts)
    except ValueError:
        return 0
    return hours * 3600 + mins * 60 + secs


def parse_duration(value: str | None) -> int:
    """Parse a free-form duration into seconds.

    Accepts 'HH:MM:SS', 'N days HH:MM:SS' and composite notations such as
    '1h30m', '2h 5m 10s' or '3d4h'.
    """
    if _is_blank(value):
        return 0
    value = value.strip()

    match = _DAYS_RE.search(value)
    if match:
        return int(match.group(1)) * 86400 + parse_hhmmss(match.group(2))

    if ":" in value:
        return parse_hhmmss(value.split()[-1])

    return sum(
        int(amount) * _UNIT_SECONDS[unit.lower()]
        for amount, unit in _COMPOSITE_DURATION_RE.findall(value)
    )


def parse_timestamp(text: str | None, formats: list[str] | None = None) -> datetime | None:
    """Parse a timestamp at the start of ``text``.

    The surrounding prose has no reliable terminator, so each format is
    tried against progressively shorter prefixes of the candidate.
    """
    if _is_blank(text):
        return None
    candidate = " ".join(text.split())[:_MAX_TIMESTAMP_LEN]
    for fmt in formats or TIMESTAMP_FORMATS:
        for end in range(len(candidate), _MIN_TIMESTAMP_LEN, -1):
            try:
                return datetime.strptime(candidate[:end], fmt)
            except ValueError:
                continue
    return None
