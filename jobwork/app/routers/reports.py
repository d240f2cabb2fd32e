import csv
import datetime as dt
import io
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Response

from ..deps import get_holder
from ..reconciliation import compute
from ..schema import ReconciliationRow
from ..state import StateHolder

router = APIRouter(prefix="/reports", tags=["reports"])

SortBy = Literal["date", "qty", "overdue"]
SortOrder = Literal["asc", "desc"]


def _report_rows(state, today: dt.date) -> list[dict]:
    out = []
    for row in compute(state.outward_entries, state.inward_entries, state):
        entry = state.outward(row.outward_id)
        vendor = state.vendor(entry.vendor_id) if entry else None
        closed = bool(entry and entry.is_closed)
        pending = Decimal("0") if closed else max(Decimal("0"), row.qty_sent - row.qty_received)
        out.append(
            {
                "row": row,
                "vendor_code": vendor.code if vendor else "UNK",
                "closed": closed,
                "pending": pending,
                "days_outstanding": max(0, (today - row.sent_date).days),
                "last_received": row.received_dates[-1] if row.received_dates else None,
            }
        )
    return out


def _matches(r: dict, search: str) -> bool:
    row: ReconciliationRow = r["row"]
    return search in row.vendor.lower() or search in r["vendor_code"].lower() or search in row.challan_no.lower()


@router.get("/reconciliation")
def reconciliation_report(
    search: Optional[str] = None,
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    hide_completed: bool = False,
    sort_by: SortBy = "date",
    sort_order: SortOrder = "desc",
    format: Optional[str] = None,
    holder: StateHolder = Depends(get_holder),
):
    state = holder.snapshot()
    rows = _report_rows(state, dt.date.today())

    term = (search or "").strip().lower()
    if term:
        rows = [r for r in rows if _matches(r, term)]
    if date_from:
        rows = [r for r in rows if r["row"].sent_date >= date_from]
    if date_to:
        rows = [r for r in rows if r["row"].sent_date <= date_to]
    if hide_completed:
        rows = [r for r in rows if r["pending"] > 0 and not r["closed"]]

    if sort_by == "qty":
        key = lambda r: r["row"].qty_sent  # noqa: E731
    elif sort_by == "overdue":
        key = lambda r: r["days_outstanding"]  # noqa: E731
    else:
        key = lambda r: r["row"].sent_date  # noqa: E731
    rows.sort(key=key, reverse=(sort_order == "desc"))

    if format == "csv":
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(list(ReconciliationRow.HEADERS) + ["Pending", "Days Outstanding"])
        for r in rows:
            writer.writerow(r["row"].to_values(date_format="%Y-%m-%d") + [str(r["pending"]), r["days_outstanding"]])
        return Response(content=output.getvalue(), media_type="text/csv")

    return {
        "rows": [
            {
                **r["row"].model_dump(mode="json"),
                "vendor_code": r["vendor_code"],
                "pending": str(r["pending"]),
                "days_outstanding": r["days_outstanding"],
                "last_received": r["last_received"].isoformat() if r["last_received"] else None,
            }
            for r in rows
        ],
        "pending_count": sum(1 for r in rows if r["pending"] > 0 and not r["closed"]),
    }
