"""
Duplicate detection against rows already persisted remotely.

Signatures are only ever compared with each other; they are not identities.
Inward rows have no natural key of their own, so (day, vendor, outward
challan, qty) is the receipt-event key: re-entering the same receipt with
different remarks still collapses onto the one remote row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Sequence, Union

from .models import AppState, Item, User, Vendor, WorkType
from .schema import ItemRow, PLACEHOLDER, SheetRow, UserRow, VendorRow, WorkTypeRow, format_decimal


def _fold(v: str) -> str:
    return (v or "").strip().lower()


def outward_signature(challan_no: str) -> str:
    # Generated vendor-prefixed sequence; compared case-sensitively.
    return (challan_no or "").strip()


def inward_signature(day: str, vendor_name: str, outward_challan: str, qty: Decimal) -> str:
    return f"{(day or '').strip()}|{_fold(vendor_name)}|{_fold(outward_challan)}|{format_decimal(qty)}"


MasterLike = Union[Vendor, Item, WorkType, User, VendorRow, ItemRow, WorkTypeRow, UserRow]


def master_signature(kind: str, rec: MasterLike) -> str:
    if kind == "vendors":
        return _fold(rec.code)  # type: ignore[union-attr]
    if kind == "items":
        return _fold(rec.sku)  # type: ignore[union-attr]
    if kind in {"work_types", "users"}:
        return _fold(rec.name)  # type: ignore[union-attr]
    raise ValueError(f"unknown master kind: {kind}")


def row_signature(kind: str, row) -> str:
    if kind == "outward":
        return outward_signature(row.challan_no)
    if kind == "inward":
        return inward_signature(row.day_key, row.vendor_name, row.outward_challan_no, row.qty)
    return master_signature(kind, row)


def candidate_signature(kind: str, rec, state: AppState) -> str:
    """Signature of a local record, resolving its id references through `state`."""
    if kind == "outward":
        return outward_signature(rec.challan_no)
    if kind == "inward":
        return inward_signature(
            rec.date.isoformat(),
            state.entry_vendor_name(rec),
            state.entry_challan(rec) or PLACEHOLDER,
            rec.qty,
        )
    return master_signature(kind, rec)


@dataclass(frozen=True)
class SignatureSet:
    by_kind: Mapping[str, frozenset[str]] = field(default_factory=dict)

    def contains(self, kind: str, signature: str) -> bool:
        return signature in self.by_kind.get(kind, frozenset())


def build_signatures(rows_by_kind: Mapping[str, Sequence[SheetRow]]) -> SignatureSet:
    out: dict[str, frozenset[str]] = {}
    for kind, rows in rows_by_kind.items():
        sigs = {row_signature(kind, r) for r in rows}
        sigs.discard("")
        out[kind] = frozenset(sigs)
    return SignatureSet(by_kind=out)


def is_duplicate(kind: str, candidate, sigs: SignatureSet, state: AppState) -> bool:
    return sigs.contains(kind, candidate_signature(kind, candidate, state))
