from datetime import date, datetime
from typing import Any, Optional
import re

WIRE_DATE_FORMAT = "%Y-%m-%d"
WIRE_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# tried in order after ISO 8601
_FALLBACK_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
]

# "Thu Oct 16 2025 00:00:00 GMT-0300 (Brasilia Standard Time)" as produced by browsers
_BROWSER_DATE_RX = re.compile(r"^(\w{3} \w{3} \d{1,2} \d{4} \d{2}:\d{2}:\d{2}) GMT([+-]\d{4})")


def parse_date(value: Any) -> Optional[datetime]:
    """Parse ISO, common local formats and browser date strings. None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    iso = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    match = _BROWSER_DATE_RX.match(text)
    if match:
        try:
            return datetime.strptime(f"{match.group(1)} {match.group(2)}", "%a %b %d %Y %H:%M:%S %z")
        except ValueError:
            return None
    return None


def format_wire_date(value: Any) -> Any:
    """``YYYY-MM-DD`` using the wall-clock date as entered. Unparseable values pass through."""
    parsed = parse_date(value)
    if parsed is None:
        return value
    return parsed.strftime(WIRE_DATE_FORMAT)


def format_wire_datetime(value: Any) -> Any:
    """``YYYY-MM-DD HH:MM:SS`` using the wall-clock time as entered. Unparseable values pass through."""
    parsed = parse_date(value)
    if parsed is None:
        return value
    return parsed.strftime(WIRE_DATETIME_FORMAT)
