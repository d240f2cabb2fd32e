"""
Reconciliation report: outward shipments against what came back.

`compute` is a pure function of the merged entries. The report sheet is
always rewritten from its output, never patched.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional, Sequence

from .models import AppState, InwardEntry, OutwardEntry
from .schema import PLACEHOLDER, ReconciliationRow

STATUS_SHORT_CLOSED = "short-qty-completed"
STATUS_COMPLETE = "complete"
STATUS_PENDING = "pending"

ZERO = Decimal("0")


def reconcile_status(closed: bool, sent: Decimal, received: Decimal) -> str:
    # First match wins.
    if closed and received < sent:
        return STATUS_SHORT_CLOSED
    if closed:
        return STATUS_COMPLETE
    if received >= sent and sent > 0:
        return STATUS_COMPLETE
    return STATUS_PENDING


def _unique(values: Iterable[Optional[str]]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        s = (v or "").strip()
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out


def _joined(values: Iterable[Optional[str]], sep: str) -> str:
    return sep.join(_unique(values)) or PLACEHOLDER


def compute(
    outward_entries: Sequence[OutwardEntry],
    inward_entries: Sequence[InwardEntry],
    masters: Optional[AppState] = None,
) -> list[ReconciliationRow]:
    names = masters or AppState()
    by_outward: dict[str, list[InwardEntry]] = {}
    for i in inward_entries:
        by_outward.setdefault(i.outward_id, []).append(i)

    rows: list[ReconciliationRow] = []
    for o in outward_entries:
        ins = by_outward.get(o.id, [])
        qty_in = sum((i.qty for i in ins), ZERO)
        combo_in = sum((i.combo_qty for i in ins), ZERO)
        weight_in = sum((i.total_weight for i in ins), ZERO)

        status = reconcile_status(o.is_closed, o.qty, qty_in)
        short = status == STATUS_SHORT_CLOSED

        rows.append(
            ReconciliationRow(
                outward_id=o.id,
                status=status,
                vendor=names.entry_vendor_name(o),
                sent_date=o.date,
                received_dates=tuple(sorted({i.date for i in ins})),
                challan_no=o.challan_no,
                work=names.work_name(o.work_id),
                sku=names.sku(o.sku_id),
                qty_sent=o.qty,
                qty_received=qty_in,
                short_qty=max(ZERO, o.qty - qty_in) if short else ZERO,
                combo_sent=o.combo_qty,
                combo_received=combo_in,
                combo_short=max(ZERO, o.combo_qty - combo_in) if short else ZERO,
                weight_sent=o.total_weight,
                weight_received=weight_in,
                weight_delta=f"{(o.total_weight - weight_in):.3f}",
                inward_checked_by=_joined((i.checked_by for i in ins), "; "),
                inward_entered_by=_joined((i.entered_by for i in ins), "; "),
                inward_remarks=_joined((i.remarks for i in ins), " | "),
                outward_checked_by=o.checked_by or PLACEHOLDER,
                outward_remarks=o.remarks or PLACEHOLDER,
            )
        )
    return rows
