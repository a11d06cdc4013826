"""
Typed value maps for row snapshots and free-form metadata.

Uploaded spreadsheet rows arrive as ``{header: cell}`` dicts whose cells may be
text, numbers, booleans or dates.  Storing them as an untyped JSON blob loses
the distinction between ``"12"`` and ``12`` and turns dates into strings, so
each cell is persisted as a small tagged value::

    {"Site Code": {"t": "str", "v": "3W1575"},
     "No of Days Offline": {"t": "int", "v": 4},
     "Last Seen": {"t": "date", "v": "2026-10-01"}}

``TypedValueMap`` is the column type; application code only ever sees plain
Python dicts.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy.types import JSON, TypeDecorator


class UnsupportedValueError(TypeError):
    """Raised when a cell value cannot be represented as a RowValue."""


def encode_value(value) -> dict:
    """Encode one scalar into its ``{"t", "v"}`` tagged form.

    ``bool`` is checked before ``int`` and ``datetime`` before ``date``
    because of Python's subclass relationships.
    """
    if value is None:
        return {"t": "null", "v": None}
    if isinstance(value, bool):
        return {"t": "bool", "v": value}
    if isinstance(value, int):
        return {"t": "int", "v": value}
    if isinstance(value, float):
        return {"t": "float", "v": value}
    if isinstance(value, datetime):
        return {"t": "datetime", "v": value.isoformat()}
    if isinstance(value, date):
        return {"t": "date", "v": value.isoformat()}
    if isinstance(value, str):
        return {"t": "str", "v": value}
    raise UnsupportedValueError(
        f"Unsupported row value type {type(value).__name__!r}; "
        "expected str, int, float, bool, date, datetime or None"
    )


def decode_value(tagged):
    """Inverse of :func:`encode_value`.

    Untagged legacy values (plain JSON scalars) are returned unchanged.
    """
    if not isinstance(tagged, dict) or "t" not in tagged:
        return tagged
    tag, raw = tagged["t"], tagged.get("v")
    if tag == "null" or raw is None:
        return None
    if tag == "datetime":
        return datetime.fromisoformat(raw)
    if tag == "date":
        return date.fromisoformat(raw)
    if tag == "bool":
        return bool(raw)
    if tag == "int":
        return int(raw)
    if tag == "float":
        return float(raw)
    return str(raw)


def coerce_value(value):
    """Flatten nested containers that arrive from JSON request bodies.

    Lists and dicts are not valid RowValues; they are kept as their string
    form rather than rejected so a bulk import never fails on one odd cell.
    """
    if isinstance(value, (list, dict)):
        return str(value)
    return value


def encode_map(values: dict | None) -> dict:
    return {str(k): encode_value(coerce_value(v)) for k, v in (values or {}).items()}


def decode_map(stored: dict | None) -> dict:
    return {k: decode_value(v) for k, v in (stored or {}).items()}


def to_json_map(values: dict | None) -> dict:
    """Render a decoded map for an HTTP response (dates as ISO strings)."""
    out = {}
    for k, v in (values or {}).items():
        out[k] = v.isoformat() if isinstance(v, (date, datetime)) else v
    return out


class TypedValueMap(TypeDecorator):
    """JSON column holding a ``{str: RowValue}`` mapping."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return {}
        return encode_map(value)

    def process_result_value(self, value, dialect):
        return decode_map(value)
