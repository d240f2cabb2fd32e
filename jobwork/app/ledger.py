"""
Local bookkeeping operations on the app snapshot.

Each function takes the current AppState and returns a new one plus the
record it touched; nothing is mutated. Rejections are HTTPExceptions so the
routers can let them propagate unchanged.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Optional

from fastapi import HTTPException

from .dedup import master_signature
from .models import AppState, InwardEntry, Item, OutwardEntry

MASTER_FIELDS = {
    "vendors": "vendors",
    "items": "items",
    "work_types": "work_types",
    "users": "users",
}
AUTO_ITEM_DESCRIPTION = "Auto"


def _fold(v: Optional[str]) -> str:
    return (v or "").strip().lower()


def add_master(state: AppState, kind: str, record):
    field = MASTER_FIELDS.get(kind)
    if not field:
        raise HTTPException(status_code=404, detail="unknown master type")
    sig = master_signature(kind, record)
    if not sig:
        raise HTTPException(status_code=400, detail="name/code is required")
    existing = getattr(state, field)
    if any(master_signature(kind, r) == sig for r in existing):
        raise HTTPException(status_code=409, detail=f"{kind} entry already exists")
    return state.model_copy(update={field: existing + (record,)}), record


def import_masters(state: AppState, kind: str, records):
    """
    Bulk add. Records whose code/SKU/name already exists, locally or earlier
    in the same batch, are skipped rather than rejected.
    """
    field = MASTER_FIELDS.get(kind)
    if not field:
        raise HTTPException(status_code=404, detail="unknown master type")
    existing = getattr(state, field)
    seen = {master_signature(kind, r) for r in existing}
    added = []
    for rec in records:
        sig = master_signature(kind, rec)
        if not sig or sig in seen:
            continue
        seen.add(sig)
        added.append(rec)
    return state.model_copy(update={field: existing + tuple(added)}), added


def _references(state: AppState, kind: str, record_id: str) -> bool:
    entries = state.outward_entries + state.inward_entries
    if kind == "vendors":
        return any(e.vendor_id == record_id for e in entries)
    if kind == "items":
        return any(e.sku_id == record_id for e in entries)
    if kind == "work_types":
        return any(o.work_id == record_id for o in state.outward_entries)
    return False


def delete_master(state: AppState, kind: str, record_id: str):
    field = MASTER_FIELDS.get(kind)
    if not field:
        raise HTTPException(status_code=404, detail="unknown master type")
    existing = getattr(state, field)
    record = next((r for r in existing if r.id == record_id), None)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{kind} entry not found")
    # Only records that never reached the sheet can be deleted locally.
    if record.synced:
        raise HTTPException(status_code=409, detail=f"{kind} entry is already in the sheet")
    if _references(state, kind, record_id):
        raise HTTPException(status_code=409, detail=f"{kind} entry is used by entries")
    return state.model_copy(update={field: tuple(r for r in existing if r.id != record_id)}), record


def next_challan(state: AppState, vendor_id: str) -> str:
    vendor = state.vendor(vendor_id)
    if not vendor:
        raise HTTPException(status_code=404, detail="vendor not found")
    taken = {o.challan_no for o in state.outward_entries}
    n = sum(1 for o in state.outward_entries if o.vendor_id == vendor_id) + 1
    while f"{vendor.code}-{n:03d}" in taken:
        n += 1
    return f"{vendor.code}-{n:03d}"


def _item_for_sku(state: AppState, sku: str) -> tuple[AppState, Item]:
    key = _fold(sku)
    if not key:
        raise HTTPException(status_code=400, detail="sku is required")
    found = next((i for i in state.items if _fold(i.sku) == key), None)
    if found:
        return state, found
    # Unknown SKUs typed at the gate become items; the master sheet picks them up on sync.
    item = Item(sku=sku.strip().upper(), description=AUTO_ITEM_DESCRIPTION)
    return state.model_copy(update={"items": state.items + (item,)}), item


def _check_quantities(qty: Decimal, *others: Decimal) -> None:
    if qty <= 0:
        raise HTTPException(status_code=400, detail="qty must be positive")
    if any(v < 0 for v in others):
        raise HTTPException(status_code=400, detail="quantities and weights cannot be negative")


def create_outward(
    state: AppState,
    *,
    vendor_id: str,
    sku: str,
    qty: Decimal,
    date: Optional[dt.date] = None,
    challan_no: Optional[str] = None,
    combo_qty: Decimal = Decimal("0"),
    total_weight: Decimal = Decimal("0"),
    pendal_weight: Decimal = Decimal("0"),
    work_id: str = "",
    photo: Optional[str] = None,
    remarks: Optional[str] = None,
    entered_by: Optional[str] = None,
    checked_by: Optional[str] = None,
) -> tuple[AppState, OutwardEntry]:
    _check_quantities(qty, combo_qty, total_weight, pendal_weight)
    if not state.vendor(vendor_id):
        raise HTTPException(status_code=404, detail="vendor not found")
    if work_id and not state.work_type(work_id):
        raise HTTPException(status_code=404, detail="work type not found")

    challan = (challan_no or "").strip() or next_challan(state, vendor_id)
    if any(o.challan_no == challan for o in state.outward_entries):
        raise HTTPException(status_code=409, detail=f"challan {challan} already exists")

    state, item = _item_for_sku(state, sku)
    entry = OutwardEntry(
        date=date or dt.date.today(),
        vendor_id=vendor_id,
        challan_no=challan,
        sku_id=item.id,
        qty=qty,
        combo_qty=combo_qty,
        total_weight=total_weight,
        pendal_weight=pendal_weight,
        work_id=work_id,
        photo=photo,
        remarks=remarks,
        entered_by=entered_by,
        checked_by=checked_by,
    )
    return state.model_copy(update={"outward_entries": state.outward_entries + (entry,)}), entry


def received_qty(state: AppState, outward_id: str) -> Decimal:
    return sum((i.qty for i in state.inward_entries if i.outward_id == outward_id), Decimal("0"))


def create_inward(
    state: AppState,
    *,
    outward_id: str,
    qty: Decimal,
    date: Optional[dt.date] = None,
    combo_qty: Decimal = Decimal("0"),
    total_weight: Decimal = Decimal("0"),
    pendal_weight: Decimal = Decimal("0"),
    photo: Optional[str] = None,
    remarks: Optional[str] = None,
    entered_by: Optional[str] = None,
    checked_by: Optional[str] = None,
) -> tuple[AppState, InwardEntry]:
    _check_quantities(qty, combo_qty, total_weight, pendal_weight)
    outward = state.outward(outward_id)
    if not outward:
        raise HTTPException(status_code=404, detail="outward entry not found")
    if received_qty(state, outward_id) + qty > outward.qty:
        raise HTTPException(status_code=400, detail="received qty exceeds outward qty")

    entry = InwardEntry(
        date=date or dt.date.today(),
        outward_id=outward.id,
        vendor_id=outward.vendor_id,
        sku_id=outward.sku_id,
        qty=qty,
        combo_qty=combo_qty,
        total_weight=total_weight,
        pendal_weight=pendal_weight,
        photo=photo,
        remarks=remarks,
        entered_by=entered_by,
        checked_by=checked_by,
    )
    return state.model_copy(update={"inward_entries": state.inward_entries + (entry,)}), entry


def short_close(state: AppState, outward_id: str) -> tuple[AppState, OutwardEntry]:
    outward = state.outward(outward_id)
    if not outward:
        raise HTTPException(status_code=404, detail="outward entry not found")
    if outward.is_closed:
        return state, outward
    closed = outward.model_copy(update={"status": "COMPLETED", "synced": False})
    entries = tuple(closed if o.id == outward_id else o for o in state.outward_entries)
    return state.model_copy(update={"outward_entries": entries}), closed
