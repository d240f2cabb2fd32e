from datetime import date
from decimal import Decimal

from jobwork.app.models import AppState, InwardEntry, Item, OutwardEntry, Vendor, WorkType, material_weight
from jobwork.app.reconciliation import compute, reconcile_status


def _outward(qty, status="OPEN", **kw):
    return OutwardEntry(date=date(2026, 1, 5), challan_no="ABC-001", qty=Decimal(qty), status=status, **kw)


def _inward(o, qty, day=date(2026, 1, 9), **kw):
    return InwardEntry(date=day, outward_id=o.id, qty=Decimal(qty), **kw)


def test_status_precedence():
    assert reconcile_status(True, Decimal("10"), Decimal("7")) == "short-qty-completed"
    assert reconcile_status(True, Decimal("10"), Decimal("10")) == "complete"
    assert reconcile_status(False, Decimal("10"), Decimal("10")) == "complete"
    assert reconcile_status(False, Decimal("10"), Decimal("9")) == "pending"
    # Nothing sent is never complete on its own.
    assert reconcile_status(False, Decimal("0"), Decimal("0")) == "pending"


def test_open_entry_fully_received_is_complete():
    o = _outward("10")
    rows = compute([o], [_inward(o, "6"), _inward(o, "4")])
    assert rows[0].status == "complete"
    assert rows[0].qty_received == Decimal("10")
    assert rows[0].short_qty == Decimal("0")


def test_short_closed_entry_reports_shortfall():
    o = _outward("10", status="COMPLETED", combo_qty=Decimal("4"))
    rows = compute([o], [_inward(o, "7", combo_qty=Decimal("1"))])
    assert rows[0].status == "short-qty-completed"
    assert rows[0].short_qty == Decimal("3")
    assert rows[0].combo_short == Decimal("3")


def test_short_qty_is_zero_unless_short_closed():
    o = _outward("10")
    rows = compute([o], [_inward(o, "7")])
    assert rows[0].status == "pending"
    assert rows[0].short_qty == Decimal("0")


def test_received_qty_sums_only_matching_inward():
    a = _outward("10")
    b = OutwardEntry(date=date(2026, 1, 6), challan_no="ABC-002", qty=Decimal("5"))
    rows = compute([a, b], [_inward(a, "3"), _inward(b, "5"), _inward(a, "2")])
    assert [r.qty_received for r in rows] == [Decimal("5"), Decimal("5")]
    assert [r.status for r in rows] == ["pending", "complete"]


def test_audit_columns_are_deduped_in_order():
    o = _outward("10", checked_by="Ravi")
    ins = [
        _inward(o, "2", day=date(2026, 1, 12), entered_by="Meena", checked_by="Ravi", remarks="dent"),
        _inward(o, "2", day=date(2026, 1, 9), entered_by="Meena", checked_by="Arun", remarks="ok"),
        _inward(o, "2", day=date(2026, 1, 9), entered_by="Suresh", remarks="dent"),
    ]
    row = compute([o], ins)[0]
    assert row.inward_entered_by == "Meena; Suresh"
    assert row.inward_checked_by == "Ravi; Arun"
    assert row.inward_remarks == "dent | ok"
    assert row.received_dates == (date(2026, 1, 9), date(2026, 1, 12))
    assert row.outward_checked_by == "Ravi"
    assert row.outward_remarks == "---"


def test_names_resolve_through_masters():
    v = Vendor(name="Acme", code="ABC")
    i = Item(sku="RING-01")
    w = WorkType(name="Plating")
    o = _outward("10", vendor_id=v.id, sku_id=i.id, work_id=w.id, total_weight=Decimal("12.5"))
    state = AppState(vendors=(v,), items=(i,), work_types=(w,))
    row = compute([o], [_inward(o, "10", total_weight=Decimal("12.25"))], state)[0]
    assert (row.vendor, row.sku, row.work) == ("Acme", "RING-01", "Plating")
    assert row.weight_delta == "0.250"


def test_unknown_references_render_unknown():
    o = _outward("1", vendor_id="gone", sku_id="gone")
    row = compute([o], [])[0]
    assert row.vendor == "Unknown"
    assert row.sku == "Unknown"
    assert row.inward_remarks == "---"


def test_material_weight():
    assert material_weight(Decimal("12.500"), Decimal("2.500")) == Decimal("10.000")
    assert material_weight(Decimal("1"), Decimal("2.5")) == Decimal("0.000")
    o = _outward("1", total_weight=Decimal("12.500"), pendal_weight=Decimal("2.500"))
    assert o.material_weight == Decimal("10.000")
