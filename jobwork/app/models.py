"""
Domain records and the app-state snapshot.

Every record is frozen: a sync cycle works on one snapshot and hands back a
new one, nothing is edited in place while a cycle runs. `synced` is local
bookkeeping only and is never written to the remote store.
"""

from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .validation import EntryStatus, OptionalText, Quantity, TrimmedStr

WEIGHT_PLACES = Decimal("0.001")


def new_id() -> str:
    return str(uuid.uuid4())


def material_weight(total_weight: Decimal, pendal_weight: Decimal) -> Decimal:
    return max(Decimal("0"), total_weight - pendal_weight).quantize(WEIGHT_PLACES)


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    synced: bool = False


class Vendor(_Record):
    name: TrimmedStr
    code: TrimmedStr


class Item(_Record):
    sku: TrimmedStr
    description: TrimmedStr = ""


class WorkType(_Record):
    name: TrimmedStr


class User(_Record):
    name: TrimmedStr


class _Entry(_Record):
    date: dt.date
    vendor_id: str = ""
    sku_id: str = ""
    qty: Quantity = Decimal("0")
    combo_qty: Quantity = Decimal("0")
    total_weight: Quantity = Decimal("0")
    pendal_weight: Quantity = Decimal("0")
    # Base64 (optionally a data: URL) JPEG/PNG payload, kept only until uploaded.
    photo: Optional[str] = None
    photo_url: OptionalText = None
    remarks: OptionalText = None
    entered_by: OptionalText = None
    checked_by: OptionalText = None
    # Vendor name as read from the sheet when it matched no vendor record.
    vendor_name: OptionalText = None

    # Derived, never read back from input: a stale or hand-edited value in the
    # sheet or in an old snapshot is ignored.
    @computed_field  # type: ignore[prop-decorator]
    @property
    def material_weight(self) -> Decimal:
        return material_weight(self.total_weight, self.pendal_weight)

    @property
    def has_unsent_photo(self) -> bool:
        return bool(self.photo) and not self.photo_url


class OutwardEntry(_Entry):
    challan_no: TrimmedStr
    work_id: str = ""
    status: EntryStatus = "OPEN"

    @property
    def is_closed(self) -> bool:
        return self.status == "COMPLETED"


class InwardEntry(_Entry):
    # Id of the OutwardEntry this receipt is booked against.
    outward_id: str = ""
    # Challan as read from the sheet when it matched no outward entry.
    outward_challan_no: OptionalText = None


class AppState(BaseModel):
    model_config = ConfigDict(frozen=True)

    vendors: tuple[Vendor, ...] = ()
    items: tuple[Item, ...] = ()
    work_types: tuple[WorkType, ...] = ()
    users: tuple[User, ...] = ()
    outward_entries: tuple[OutwardEntry, ...] = ()
    inward_entries: tuple[InwardEntry, ...] = ()

    def vendor(self, vendor_id: str) -> Optional[Vendor]:
        return next((v for v in self.vendors if v.id == vendor_id), None)

    def item(self, item_id: str) -> Optional[Item]:
        return next((i for i in self.items if i.id == item_id), None)

    def work_type(self, work_id: str) -> Optional[WorkType]:
        return next((w for w in self.work_types if w.id == work_id), None)

    def outward(self, outward_id: str) -> Optional[OutwardEntry]:
        return next((o for o in self.outward_entries if o.id == outward_id), None)

    def vendor_name(self, vendor_id: str) -> str:
        v = self.vendor(vendor_id)
        return v.name if v else "Unknown"

    def entry_vendor_name(self, rec) -> str:
        v = self.vendor(rec.vendor_id)
        if v:
            return v.name
        return rec.vendor_name or "Unknown"

    def sku(self, item_id: str) -> str:
        i = self.item(item_id)
        return i.sku if i else "Unknown"

    def work_name(self, work_id: str) -> str:
        w = self.work_type(work_id)
        return w.name if w else ""

    def challan_for(self, outward_id: str) -> Optional[str]:
        o = self.outward(outward_id)
        return o.challan_no if o else None

    def entry_challan(self, rec) -> Optional[str]:
        return self.challan_for(rec.outward_id) or rec.outward_challan_no

    def unsynced_count(self) -> int:
        groups = (
            self.vendors,
            self.items,
            self.work_types,
            self.users,
            self.outward_entries,
            self.inward_entries,
        )
        return sum(1 for g in groups for r in g if not r.synced)

    def all_ids(self) -> set[str]:
        out: set[str] = set()
        for g in (self.vendors, self.items, self.work_types, self.users, self.outward_entries, self.inward_entries):
            out.update(r.id for r in g)
        return out
