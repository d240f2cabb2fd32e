import threading
from typing import Callable, Optional, TypeVar

from .logs import json_log
from .models import AppState
from .storage.local_store import LocalStore

T = TypeVar("T")

STATE_FIELDS = ("vendors", "items", "work_types", "users", "outward_entries", "inward_entries")


def carry_over(before: AppState, current: AppState, merged: AppState) -> AppState:
    """
    Fold local changes made while a sync cycle ran into its merged result.

    Records whose id was not in the cycle's input snapshot were created during
    the cycle and are appended. Records edited during the cycle (and so still
    unsynced) replace their merged counterpart.
    """
    updates = {}
    for name in STATE_FIELDS:
        before_by_id = {r.id: r for r in getattr(before, name)}
        records = list(getattr(merged, name))
        index = {r.id: i for i, r in enumerate(records)}
        for rec in getattr(current, name):
            prev = before_by_id.get(rec.id)
            if prev is None:
                if rec.id not in index:
                    records.append(rec)
            elif rec != prev and not rec.synced and rec.id in index:
                records[index[rec.id]] = rec
        updates[name] = tuple(records)
    return merged.model_copy(update=updates)


class StateHolder:
    """Process-wide owner of the current snapshot; every change is persisted."""

    def __init__(self, store: LocalStore):
        self.store = store
        self._lock = threading.Lock()
        self._state: Optional[AppState] = None

    def snapshot(self) -> AppState:
        with self._lock:
            if self._state is None:
                self._state = self.store.load()
            return self._state

    def update(self, fn: Callable[[AppState], tuple[AppState, T]]) -> T:
        with self._lock:
            current = self._state if self._state is not None else self.store.load()
            new_state, result = fn(current)
            self._state = new_state
            self.store.save(new_state)
            return result

    def apply_sync_result(self, before: AppState, merged: AppState) -> AppState:
        with self._lock:
            current = self._state if self._state is not None else before
            combined = carry_over(before, current, merged)
            self._state = combined
            self.store.save(combined)
            return combined

    def sync(self, engine, *, interactive: bool = False):
        before = self.snapshot()
        merged, outcome = engine.try_sync(before, interactive=interactive)
        if outcome.status == "skipped":
            return outcome
        after = self.apply_sync_result(before, merged)
        json_log("info", "state.synced", status=outcome.status, unsynced=after.unsynced_count())
        return outcome
