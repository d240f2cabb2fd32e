"""
Remote sheet layout: one typed row model per named range.

Column order here is authoritative. The writer (`to_values`) and the parser
(`from_values`) both read `COLUMNS`, so reordering a sheet means changing
exactly one tuple. Row 1 of every range is a header row.
"""

from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, ClassVar, Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

from .config import settings
from .validation import EntryStatus, OptionalText, Quantity, TrimmedStr

PLACEHOLDER = "---"

_EXTRA_DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%d/%m/%y",
)


def parse_sheet_date(value: Any, date_format: str) -> Optional[dt.date]:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return dt.datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    # Sheets may append a time when the cell is a datetime.
    head = s.split(" ", 1)[0].split("T", 1)[0]
    for fmt in (date_format, *_EXTRA_DATE_FORMATS):
        for candidate in (s, head):
            try:
                return dt.datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue
    return None


def format_decimal(d: Decimal) -> str:
    if d == d.to_integral_value():
        return str(d.quantize(Decimal("1")))
    return format(d.normalize(), "f")


def column_letter(index: int) -> str:
    """0-based column index -> A1 column letters."""
    n = index + 1
    out = ""
    while n:
        n, rem = divmod(n - 1, 26)
        out = chr(65 + rem) + out
    return out


_SIMPLE_TITLE_RE = re.compile(r"^[A-Za-z0-9_]+$")


def quote_title(title: str) -> str:
    normalised = (title or "").strip()
    if not normalised:
        return "''"
    if _SIMPLE_TITLE_RE.fullmatch(normalised):
        return normalised
    escaped = normalised.replace("'", "''")
    return f"'{escaped}'"


def a1_range(title: str, range_spec: str) -> str:
    return f"{quote_title(title)}!{range_spec}"


class SheetRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    COLUMNS: ClassVar[tuple[str, ...]] = ()
    HEADERS: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def last_column(cls) -> str:
        return column_letter(len(cls.COLUMNS) - 1)

    @classmethod
    def column_index(cls, name: str) -> int:
        return cls.COLUMNS.index(name)

    @classmethod
    def from_values(cls, values: Sequence[Any], *, date_format: str):
        cells = list(values or [])[: len(cls.COLUMNS)]
        cells += [""] * (len(cls.COLUMNS) - len(cells))
        data = dict(zip(cls.COLUMNS, cells))
        return cls.model_validate(data, context={"date_format": date_format})

    def to_values(self, *, date_format: str) -> list[Any]:
        return [_cell(getattr(self, c), date_format) for c in self.COLUMNS]


def _cell(value: Any, date_format: str) -> Any:
    if value is None:
        return ""
    if isinstance(value, dt.date):
        return value.strftime(date_format)
    if isinstance(value, Decimal):
        return format_decimal(value)
    if isinstance(value, tuple):
        parts = [_cell(v, date_format) for v in value]
        return "; ".join(p for p in parts if p) or PLACEHOLDER
    return value


class _DatedRow(SheetRow):
    # The raw cell is kept so rows with unparseable dates still dedup stably.
    date_text: str = ""
    date: Optional[dt.date] = None

    @classmethod
    def from_values(cls, values: Sequence[Any], *, date_format: str):
        row = super().from_values(values, date_format=date_format)
        raw = str((list(values or []) + [""])[0] or "").strip()
        return row.model_copy(update={"date_text": raw})

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, v, info: ValidationInfo):
        fmt = (info.context or {}).get("date_format") or settings.sheet_date_format
        return parse_sheet_date(v, fmt)

    def to_values(self, *, date_format: str) -> list[Any]:
        values = super().to_values(date_format=date_format)
        if self.date is None:
            values[0] = self.date_text
        return values

    @property
    def day_key(self) -> str:
        return self.date.isoformat() if self.date else self.date_text


class VendorRow(SheetRow):
    COLUMNS: ClassVar[tuple[str, ...]] = ("name", "code")
    HEADERS: ClassVar[tuple[str, ...]] = ("Vendor Name", "Vendor Code")

    name: TrimmedStr = ""
    code: TrimmedStr = ""


class ItemRow(SheetRow):
    COLUMNS: ClassVar[tuple[str, ...]] = ("sku", "description")
    HEADERS: ClassVar[tuple[str, ...]] = ("SKU", "Description")

    sku: TrimmedStr = ""
    description: TrimmedStr = ""


class WorkTypeRow(SheetRow):
    COLUMNS: ClassVar[tuple[str, ...]] = ("name",)
    HEADERS: ClassVar[tuple[str, ...]] = ("Work Name",)

    name: TrimmedStr = ""


class UserRow(SheetRow):
    COLUMNS: ClassVar[tuple[str, ...]] = ("name",)
    HEADERS: ClassVar[tuple[str, ...]] = ("User Name",)

    name: TrimmedStr = ""


class OutwardRow(_DatedRow):
    COLUMNS: ClassVar[tuple[str, ...]] = (
        "date",
        "vendor_name",
        "challan_no",
        "sku",
        "qty",
        "combo_qty",
        "total_weight",
        "pendal_weight",
        "material_weight",
        "checked_by",
        "entered_by",
        "photo_url",
        "work_name",
        "remarks",
        "status",
        "sync_timestamp",
    )
    HEADERS: ClassVar[tuple[str, ...]] = (
        "Date",
        "Vendor",
        "Challan No",
        "SKU",
        "Qty",
        "Combo Qty",
        "Total Weight",
        "Pendal Weight",
        "Material Weight",
        "Checked By",
        "Entered By",
        "Photo",
        "Work",
        "Remarks",
        "Status",
        "Synced At",
    )

    vendor_name: TrimmedStr = ""
    challan_no: TrimmedStr = ""
    sku: TrimmedStr = ""
    qty: Quantity = Decimal("0")
    combo_qty: Quantity = Decimal("0")
    total_weight: Quantity = Decimal("0")
    pendal_weight: Quantity = Decimal("0")
    material_weight: Quantity = Decimal("0")
    checked_by: OptionalText = None
    entered_by: OptionalText = None
    photo_url: OptionalText = None
    work_name: TrimmedStr = ""
    remarks: OptionalText = None
    status: EntryStatus = "OPEN"
    sync_timestamp: TrimmedStr = ""


class InwardRow(_DatedRow):
    COLUMNS: ClassVar[tuple[str, ...]] = (
        "date",
        "vendor_name",
        "outward_challan_no",
        "sku",
        "qty",
        "combo_qty",
        "total_weight",
        "pendal_weight",
        "material_weight",
        "checked_by",
        "entered_by",
        "photo_url",
        "remarks",
        "sync_timestamp",
    )
    HEADERS: ClassVar[tuple[str, ...]] = (
        "Date",
        "Vendor",
        "Outward Challan No",
        "SKU",
        "Qty",
        "Combo Qty",
        "Total Weight",
        "Pendal Weight",
        "Material Weight",
        "Checked By",
        "Entered By",
        "Photo",
        "Remarks",
        "Synced At",
    )

    vendor_name: TrimmedStr = ""
    outward_challan_no: TrimmedStr = ""
    sku: TrimmedStr = ""
    qty: Quantity = Decimal("0")
    combo_qty: Quantity = Decimal("0")
    total_weight: Quantity = Decimal("0")
    pendal_weight: Quantity = Decimal("0")
    material_weight: Quantity = Decimal("0")
    checked_by: OptionalText = None
    entered_by: OptionalText = None
    photo_url: OptionalText = None
    remarks: OptionalText = None
    sync_timestamp: TrimmedStr = ""


class ReconciliationRow(SheetRow):
    COLUMNS: ClassVar[tuple[str, ...]] = (
        "status",
        "vendor",
        "sent_date",
        "received_dates",
        "challan_no",
        "work",
        "sku",
        "qty_sent",
        "qty_received",
        "short_qty",
        "combo_sent",
        "combo_received",
        "combo_short",
        "weight_sent",
        "weight_received",
        "weight_delta",
        "inward_checked_by",
        "inward_entered_by",
        "inward_remarks",
        "outward_checked_by",
        "outward_remarks",
    )
    HEADERS: ClassVar[tuple[str, ...]] = (
        "Status",
        "Vendor",
        "Sent Date",
        "Received Dates",
        "Challan No",
        "Work",
        "SKU",
        "Qty Sent",
        "Qty Received",
        "Short Qty",
        "Combo Sent",
        "Combo Received",
        "Combo Short",
        "Weight Sent",
        "Weight Received",
        "Weight Delta",
        "Inward Checked By",
        "Inward Entered By",
        "Inward Remarks",
        "Outward Checked By",
        "Outward Remarks",
    )

    # Not a sheet column; lets the report API link back to the entry.
    outward_id: str = ""
    status: str
    vendor: str
    sent_date: dt.date
    received_dates: tuple[dt.date, ...] = ()
    challan_no: str
    work: str = ""
    sku: str
    qty_sent: Decimal
    qty_received: Decimal
    short_qty: Decimal
    combo_sent: Decimal
    combo_received: Decimal
    combo_short: Decimal
    weight_sent: Decimal
    weight_received: Decimal
    weight_delta: str
    inward_checked_by: str = PLACEHOLDER
    inward_entered_by: str = PLACEHOLDER
    inward_remarks: str = PLACEHOLDER
    outward_checked_by: str = PLACEHOLDER
    outward_remarks: str = PLACEHOLDER


MASTER_ROWS = {
    "vendors": VendorRow,
    "items": ItemRow,
    "work_types": WorkTypeRow,
    "users": UserRow,
}
ENTRY_ROWS = {
    "outward": OutwardRow,
    "inward": InwardRow,
}
# Masters first: entries carry master names by value.
READ_ORDER = ("vendors", "items", "work_types", "users", "outward", "inward")
ROW_TYPES = {**MASTER_ROWS, **ENTRY_ROWS}


@dataclass(frozen=True)
class SheetLayout:
    sheet_titles: dict[str, str]
    reconciliation_title: str
    date_format: str

    @classmethod
    def from_settings(cls, s=settings) -> "SheetLayout":
        return cls(
            sheet_titles={
                "vendors": s.sheet_vendors,
                "items": s.sheet_items,
                "work_types": s.sheet_works,
                "users": s.sheet_users,
                "outward": s.sheet_outward,
                "inward": s.sheet_inward,
            },
            reconciliation_title=s.sheet_reconciliation,
            date_format=s.sheet_date_format,
        )

    def full_range(self, kind: str) -> str:
        row_type = ROW_TYPES[kind]
        return a1_range(self.sheet_titles[kind], f"A:{row_type.last_column()}")

    def read_ranges(self) -> list[str]:
        return [self.full_range(k) for k in READ_ORDER]

    def reconciliation_range(self) -> str:
        return a1_range(self.reconciliation_title, f"A:{ReconciliationRow.last_column()}")

    def reconciliation_write_range(self, row_count: int) -> str:
        # +1 for the header row.
        return a1_range(self.reconciliation_title, f"A1:{ReconciliationRow.last_column()}{row_count + 1}")

    def outward_status_cell(self, sheet_row_number: int) -> str:
        col = column_letter(OutwardRow.column_index("status"))
        return a1_range(self.sheet_titles["outward"], f"{col}{sheet_row_number}")

    def parse(self, kind: str, values: Sequence[Any]):
        return ROW_TYPES[kind].from_values(values, date_format=self.date_format)
