from datetime import date
from decimal import Decimal

from jobwork.app.models import AppState, OutwardEntry
from jobwork.app.state import StateHolder
from jobwork.app.storage.local_store import LocalStore
from jobwork.app.sync_engine import SyncEngine
from jobwork.tests.fakes import FakeAttachments, FakeAuthorizer, FakeTabular, make_layout
from jobwork.workers import worker_service
from jobwork.workers.sheets_sync import run_sheets_sync


def _holder(tmp_path, state=None) -> StateHolder:
    store = LocalStore(db_path=str(tmp_path / "worker.sqlite"))
    if state is not None:
        store.save(state)
    return StateHolder(store)


def _engine(tab, auth=None):
    return SyncEngine(
        auth or FakeAuthorizer(),
        layout=tab.layout,
        tabular_factory=lambda _c: tab,
        attachment_factory=lambda _c: FakeAttachments(),
        throttle_seconds=0,
    )


def test_run_sheets_sync_persists_merged_state(tmp_path):
    tab = FakeTabular(make_layout())
    entry = OutwardEntry(date=date(2026, 5, 2), challan_no="ABC-001", qty=Decimal("2"))
    holder = _holder(tmp_path, AppState(outward_entries=(entry,)))

    outcome = run_sheets_sync(holder, _engine(tab))

    assert outcome.ok
    reloaded = _holder(tmp_path).snapshot()
    assert reloaded.outward_entries[0].synced
    assert reloaded.outward_entries[0].id == entry.id


def test_worker_cycle_survives_lost_authorization(tmp_path):
    tab = FakeTabular(make_layout())
    entry = OutwardEntry(date=date(2026, 5, 2), challan_no="ABC-001", qty=Decimal("2"))
    holder = _holder(tmp_path, AppState(outward_entries=(entry,)))
    auth = FakeAuthorizer(lost=True)

    pending = worker_service.run_once(holder, _engine(tab, auth))

    assert pending is True
    assert auth.interactive_calls == [False]
    assert tab.calls == []
    assert holder.snapshot().outward_entries[0].synced is False


def test_worker_cycle_swallows_unexpected_errors(tmp_path):
    class Exploding:
        def try_sync(self, state, *, interactive=False):
            raise RuntimeError("boom")

    assert worker_service.run_once(_holder(tmp_path), Exploding()) is False
