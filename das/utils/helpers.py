"""Shared utility functions.

parse_date:      lenient date parsing for query parameters (None on bad input)
parse_date_input: strict variant (ValueError on bad input)
row_value:       first non-empty cell among several header spellings
find_header:     header lookup by a normalised predicate
list_arg:        multi-value query parameter with blanks dropped
"""
import logging
from datetime import date, datetime

from flask import request

logger = logging.getLogger(__name__)

# Header spellings seen in uploaded sheets
SITE_CODE_KEYS = ("SITE CODE", "Site Code", "site code", "siteCode", "SITECODE")
CIRCLE_KEYS = ("CIRCLE", "Circle", "circle")
DIVISION_KEYS = ("DIVISION", "Division", "division")
SUB_DIVISION_KEYS = ("SUB DIVISION", "Sub Division", "subDivision", "sub_division")
DEVICE_STATUS_KEYS = ("DEVICE STATUS", "Device Status", "device status", "DeviceStatus", "device_status")
DEVICE_TYPE_KEYS = ("DEVICE TYPE", "Device Type", "device type", "DeviceType", "device_type")
EQUIPMENT_MAKE_KEYS = ("EQUIPMENT MAKE", "Equipment Make", "equipment make", "EquipmentMake", "equipment_make")
RTU_MAKE_KEYS = ("RTU MAKE", "RTU Make", "rtu make", "RtuMake", "rtu_make")
HRN_KEYS = ("HRN", "Hrn", "hrn")
ATTRIBUTE_KEYS = ("ATTRIBUTE", "Attribute", "attribute")


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY / DD-MM-YYYY) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in ("%d.%m.%Y", "%d-%m-%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_date_input(value):
    """Same as parse_date() but raises ValueError on unparseable input."""
    if not value:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed


def row_value(row: dict, keys) -> str:
    """Return the first non-empty cell among ``keys`` as trimmed text."""
    for key in keys:
        val = (row or {}).get(key)
        if val is None:
            continue
        text = val.isoformat() if isinstance(val, (date, datetime)) else str(val)
        if text.strip():
            return text.strip()
    return ""


def normalize_header(header) -> str:
    return str(header or "").strip().lower()


def find_header(headers, predicate):
    """First header whose normalised form satisfies ``predicate``."""
    for header in headers or []:
        if predicate(normalize_header(header)):
            return header
    return None


def list_arg(name: str) -> list[str]:
    """Read a repeated (or comma-separated) query parameter."""
    values = []
    for raw in request.args.getlist(name):
        values.extend(part.strip() for part in str(raw).split(","))
    return [v for v in values if v]


def to_int(value, default=None):
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def row_value_matching(row: dict, predicate) -> str:
    """First non-empty cell whose normalised header satisfies ``predicate``."""
    for key, val in (row or {}).items():
        if val is None or not predicate(normalize_header(key)):
            continue
        text = str(val).strip()
        if text:
            return text
    return ""
