from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Annotated, Literal, Optional

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


_CLOSED_WORDS = {"CLOSED", "DONE", "SHORT CLOSED", "SHORT-CLOSED"}


def _to_status(v):
    # Hand-edited status cells: blank or anything unrecognised reads as OPEN.
    s = _to_upper_str(v) or ""
    if s.startswith("COMPLETE") or s in _CLOSED_WORDS:
        return "COMPLETED"
    return "OPEN"


def _to_trimmed_str(v):
    if v is None:
        return ""
    return str(v).strip()


def _to_optional_text(v):
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def parse_decimal(v) -> Decimal:
    """Lenient numeric parse for sheet cells: blanks and junk become 0."""
    if v is None:
        return Decimal("0")
    if isinstance(v, Decimal):
        return v
    if isinstance(v, bool):
        return Decimal(int(v))
    if isinstance(v, (int, float)):
        return Decimal(str(v))
    s = str(v).strip().replace(",", "")
    if not s:
        return Decimal("0")
    try:
        d = Decimal(s)
    except InvalidOperation:
        return Decimal("0")
    if not d.is_finite():
        return Decimal("0")
    return d


EntryStatus = Annotated[Literal["OPEN", "COMPLETED"], BeforeValidator(_to_status)]
TrimmedStr = Annotated[str, BeforeValidator(_to_trimmed_str)]
OptionalText = Annotated[Optional[str], BeforeValidator(_to_optional_text)]
Quantity = Annotated[Decimal, BeforeValidator(parse_decimal)]

# Vendor codes prefix generated challan numbers, so keep them to a safe charset.
VendorCode = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=1, max_length=16, pattern=r"^[A-Z0-9][A-Z0-9_-]*$"),
]
