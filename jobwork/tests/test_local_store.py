import sqlite3
from datetime import date
from decimal import Decimal

from jobwork.app.models import AppState, OutwardEntry, Vendor
from jobwork.app.state import StateHolder, carry_over
from jobwork.app.storage.local_store import LocalStore


def _entry(challan, synced, photo="data:image/jpeg;base64,/9j/AAAA"):
    return OutwardEntry(date=date(2026, 4, 1), challan_no=challan, qty=Decimal("3"), photo=photo, synced=synced)


def test_round_trip_and_photo_shedding(tmp_path):
    store = LocalStore(db_path=str(tmp_path / "state.sqlite"))
    state = AppState(
        vendors=(Vendor(name="Acme", code="ABC", synced=True),),
        outward_entries=(_entry("ABC-001", synced=True), _entry("ABC-002", synced=False)),
    )

    assert store.save(state) is True
    loaded = store.load()

    assert loaded.vendors == state.vendors
    synced, pending = loaded.outward_entries
    assert synced.photo is None
    assert pending.photo == state.outward_entries[1].photo
    assert pending.qty == Decimal("3")


def test_empty_store_loads_empty_state(tmp_path):
    store = LocalStore(db_path=str(tmp_path / "nested" / "state.sqlite"))
    assert store.load() == AppState()


def test_quota_overrun_keeps_previous_snapshot(tmp_path):
    path = str(tmp_path / "state.sqlite")
    LocalStore(db_path=path).save(AppState(outward_entries=(_entry("ABC-001", synced=False),)))

    small = LocalStore(db_path=path, max_bytes=50)
    big = AppState(outward_entries=tuple(_entry(f"ABC-{n:03d}", synced=False) for n in range(1, 20)))
    assert small.save(big) is False

    assert [o.challan_no for o in LocalStore(db_path=path).load().outward_entries] == ["ABC-001"]


def test_disk_full_is_skipped_not_raised(tmp_path, monkeypatch):
    store = LocalStore(db_path=str(tmp_path / "state.sqlite"))

    def full(_payload):
        raise sqlite3.OperationalError("database or disk is full")

    monkeypatch.setattr(store, "_write", full)
    assert store.save(AppState()) is False


def test_other_storage_errors_propagate(tmp_path, monkeypatch):
    store = LocalStore(db_path=str(tmp_path / "state.sqlite"))

    def broken(_payload):
        raise sqlite3.OperationalError("no such table: app_snapshots")

    monkeypatch.setattr(store, "_write", broken)
    try:
        store.save(AppState())
        assert False, "expected OperationalError"
    except sqlite3.OperationalError:
        pass


def test_corrupt_snapshot_loads_empty(tmp_path):
    path = str(tmp_path / "state.sqlite")
    store = LocalStore(db_path=path)
    store.save(AppState())
    with sqlite3.connect(path) as conn:
        conn.execute("UPDATE app_snapshots SET payload_json = '{not json'")
        conn.commit()
    assert store.load() == AppState()


def test_records_created_during_a_cycle_are_carried_over():
    before = AppState(outward_entries=(_entry("ABC-001", synced=False),))
    merged = AppState(outward_entries=(before.outward_entries[0].model_copy(update={"synced": True, "photo": None}),))
    created = _entry("ABC-002", synced=False)
    closed = before.outward_entries[0].model_copy(update={"status": "COMPLETED"})
    current = AppState(outward_entries=(closed, created))

    combined = carry_over(before, current, merged)

    assert [o.challan_no for o in combined.outward_entries] == ["ABC-001", "ABC-002"]
    # Edited while syncing: the local edit wins and stays pending.
    assert combined.outward_entries[0].status == "COMPLETED"
    assert combined.outward_entries[0].synced is False


def test_holder_persists_every_update(tmp_path):
    path = str(tmp_path / "state.sqlite")
    holder = StateHolder(LocalStore(db_path=path))
    vendor = Vendor(name="Acme", code="ABC")

    result = holder.update(lambda s: (s.model_copy(update={"vendors": (vendor,)}), vendor))

    assert result is vendor
    assert StateHolder(LocalStore(db_path=path)).snapshot().vendors == (vendor,)
