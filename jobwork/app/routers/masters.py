from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from ..deps import get_engine, get_holder
from ..ledger import add_master, delete_master, import_masters
from ..models import Item, User, Vendor, WorkType
from ..state import StateHolder
from ..validation import TrimmedStr, VendorCode
from .sync import schedule_sync

router = APIRouter(prefix="/masters", tags=["masters"])

# URL segment -> state field (also the dedup signature kind)
KINDS = {
    "vendors": "vendors",
    "items": "items",
    "work-types": "work_types",
    "users": "users",
}


class VendorIn(BaseModel):
    name: TrimmedStr
    code: VendorCode


class ItemIn(BaseModel):
    sku: TrimmedStr
    description: TrimmedStr = ""


class NameIn(BaseModel):
    name: TrimmedStr


def _kind(segment: str) -> str:
    kind = KINDS.get(segment)
    if not kind:
        raise HTTPException(status_code=404, detail="unknown master type")
    return kind


def _dump(records) -> list[dict]:
    return [r.model_dump(mode="json") for r in records]


@router.get("/{master}")
def list_masters(master: str, holder: StateHolder = Depends(get_holder)):
    kind = _kind(master)
    return {kind: _dump(getattr(holder.snapshot(), kind))}


def _create(kind: str, record, holder: StateHolder, background: BackgroundTasks, engine):
    created = holder.update(lambda s: add_master(s, kind, record))
    schedule_sync(background, holder, engine)
    return {"id": created.id, "record": created.model_dump(mode="json")}


@router.post("/vendors")
def create_vendor(data: VendorIn, background: BackgroundTasks, holder: StateHolder = Depends(get_holder), engine=Depends(get_engine)):
    if not data.name:
        raise HTTPException(status_code=400, detail="name is required")
    return _create("vendors", Vendor(name=data.name, code=data.code), holder, background, engine)


@router.post("/items")
def create_item(data: ItemIn, background: BackgroundTasks, holder: StateHolder = Depends(get_holder), engine=Depends(get_engine)):
    sku = data.sku.upper()
    if not sku:
        raise HTTPException(status_code=400, detail="sku is required")
    return _create("items", Item(sku=sku, description=data.description), holder, background, engine)


@router.post("/work-types")
def create_work_type(data: NameIn, background: BackgroundTasks, holder: StateHolder = Depends(get_holder), engine=Depends(get_engine)):
    return _create("work_types", WorkType(name=data.name), holder, background, engine)


@router.post("/users")
def create_user(data: NameIn, background: BackgroundTasks, holder: StateHolder = Depends(get_holder), engine=Depends(get_engine)):
    return _create("users", User(name=data.name), holder, background, engine)


MAX_IMPORT_ROWS = 5000


class MastersBulkIn(BaseModel):
    # Sheet/CSV rows keyed by column header ("Name", "Code", "SKU", "Description").
    rows: list[dict[str, Any]]


def _record_from(kind: str, raw: dict[str, Any]):
    data = {str(k).strip().lower(): v for k, v in raw.items()}
    if kind == "vendors":
        v = VendorIn.model_validate(data)
        return Vendor(name=v.name, code=v.code) if v.name else None
    if kind == "items":
        i = ItemIn.model_validate(data)
        return Item(sku=i.sku.upper(), description=i.description) if i.sku else None
    n = NameIn.model_validate(data)
    if not n.name:
        return None
    return WorkType(name=n.name) if kind == "work_types" else User(name=n.name)


@router.post("/{master}/bulk")
def bulk_import_masters(
    master: str,
    data: MastersBulkIn,
    background: BackgroundTasks,
    holder: StateHolder = Depends(get_holder),
    engine=Depends(get_engine),
):
    """
    Import a master list exported from a sheet. Rows missing their required
    columns are counted as invalid; rows already known by code/SKU/name are
    skipped.
    """
    kind = _kind(master)
    rows = data.rows or []
    if not rows:
        raise HTTPException(status_code=400, detail="rows is required")
    if len(rows) > MAX_IMPORT_ROWS:
        raise HTTPException(status_code=400, detail=f"too many rows (max {MAX_IMPORT_ROWS})")

    records = []
    invalid = 0
    for raw in rows:
        try:
            rec = _record_from(kind, raw)
        except ValidationError:
            rec = None
        if rec is None:
            invalid += 1
            continue
        records.append(rec)

    added = holder.update(lambda s: import_masters(s, kind, records))
    if added:
        schedule_sync(background, holder, engine)
    return {
        "imported": len(added),
        "skipped": len(records) - len(added),
        "invalid": invalid,
        kind: _dump(added),
    }


@router.delete("/{master}/{record_id}")
def delete_master_record(master: str, record_id: str, holder: StateHolder = Depends(get_holder)):
    kind = _kind(master)
    deleted = holder.update(lambda s: delete_master(s, kind, record_id))
    return {"ok": True, "id": deleted.id}
