import datetime as dt
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from ..deps import get_engine, get_holder
from ..ledger import create_inward, create_outward, next_challan, received_qty, short_close
from ..models import AppState, InwardEntry, OutwardEntry
from ..state import StateHolder
from ..validation import OptionalText, TrimmedStr
from .sync import schedule_sync

router = APIRouter(tags=["entries"])


class _EntryIn(BaseModel):
    date: Optional[dt.date] = None
    qty: Decimal
    combo_qty: Decimal = Decimal("0")
    total_weight: Decimal = Decimal("0")
    pendal_weight: Decimal = Decimal("0")
    photo: Optional[str] = None
    remarks: OptionalText = None
    entered_by: OptionalText = None
    checked_by: OptionalText = None


class OutwardIn(_EntryIn):
    vendor_id: str
    sku: TrimmedStr
    challan_no: OptionalText = None
    work_id: str = ""


class InwardIn(_EntryIn):
    outward_id: str


def _outward_view(state: AppState, o: OutwardEntry) -> dict:
    out = o.model_dump(mode="json", exclude={"photo"})
    out.update(
        vendor_name=state.entry_vendor_name(o),
        sku=state.sku(o.sku_id),
        work_name=state.work_name(o.work_id),
        received_qty=str(received_qty(state, o.id)),
        has_photo=bool(o.photo or o.photo_url),
    )
    return out


def _inward_view(state: AppState, i: InwardEntry) -> dict:
    out = i.model_dump(mode="json", exclude={"photo"})
    out.update(
        vendor_name=state.entry_vendor_name(i),
        sku=state.sku(i.sku_id),
        outward_challan_no=state.entry_challan(i) or "Unknown",
        has_photo=bool(i.photo or i.photo_url),
    )
    return out


@router.get("/outward")
def list_outward(
    vendor_id: Optional[str] = None,
    status: Optional[str] = None,
    holder: StateHolder = Depends(get_holder),
):
    state = holder.snapshot()
    want = (status or "").strip().upper()
    if want and want not in {"OPEN", "COMPLETED"}:
        raise HTTPException(status_code=400, detail="status must be OPEN or COMPLETED")
    rows = [
        _outward_view(state, o)
        for o in state.outward_entries
        if (not vendor_id or o.vendor_id == vendor_id) and (not want or o.status == want)
    ]
    return {"outward": rows}


@router.get("/outward/next-challan")
def get_next_challan(vendor_id: str, holder: StateHolder = Depends(get_holder)):
    return {"challan_no": next_challan(holder.snapshot(), vendor_id)}


@router.post("/outward")
def post_outward(
    data: OutwardIn,
    background: BackgroundTasks,
    holder: StateHolder = Depends(get_holder),
    engine=Depends(get_engine),
):
    fields = data.model_dump()
    entry = holder.update(lambda s: create_outward(s, **fields))
    schedule_sync(background, holder, engine)
    return {"id": entry.id, "challan_no": entry.challan_no, "outward": _outward_view(holder.snapshot(), entry)}


@router.post("/outward/{outward_id}/complete")
def complete_outward(
    outward_id: str,
    background: BackgroundTasks,
    holder: StateHolder = Depends(get_holder),
    engine=Depends(get_engine),
):
    entry = holder.update(lambda s: short_close(s, outward_id))
    if not entry.synced:
        schedule_sync(background, holder, engine)
    return {"ok": True, "outward": _outward_view(holder.snapshot(), entry)}


@router.get("/inward")
def list_inward(outward_id: Optional[str] = None, holder: StateHolder = Depends(get_holder)):
    state = holder.snapshot()
    rows = [_inward_view(state, i) for i in state.inward_entries if not outward_id or i.outward_id == outward_id]
    return {"inward": rows}


@router.post("/inward")
def post_inward(
    data: InwardIn,
    background: BackgroundTasks,
    holder: StateHolder = Depends(get_holder),
    engine=Depends(get_engine),
):
    fields = data.model_dump()
    entry = holder.update(lambda s: create_inward(s, **fields))
    schedule_sync(background, holder, engine)
    return {"id": entry.id, "inward": _inward_view(holder.snapshot(), entry)}
