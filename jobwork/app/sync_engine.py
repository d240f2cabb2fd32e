"""
Sheets <-> local sync cycle.

One cycle:
- authorize (interactive consent only when the user asked for the sync)
- read every range in one batch request
- push pending status changes for entries that already exist remotely
- append masters, then entries (photos uploaded first, one at a time)
- merge remote + appended + still-pending local records into a new snapshot
- rewrite the reconciliation sheet

Appends are never blindly repeated: every candidate is checked against the
signatures of rows already in the sheet, so a cycle that dies half-way and is
re-run does not write anything twice.
"""

from __future__ import annotations

import datetime as dt
import sys
import threading
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import ValidationError

from .config import settings
from .dedup import build_signatures, candidate_signature, row_signature
from .errors import AuthorizationLost, ConfigurationError, RemoteStoreError
from .logs import json_log
from .models import AppState, InwardEntry, Item, OutwardEntry, User, Vendor, WorkType, new_id
from .reconciliation import compute
from .schema import (
    PLACEHOLDER,
    InwardRow,
    ItemRow,
    OutwardRow,
    ReconciliationRow,
    SheetLayout,
    UserRow,
    VendorRow,
    WorkTypeRow,
    format_decimal,
)

MASTER_KINDS = ("vendors", "items", "work_types", "users")
ENTRY_KINDS = ("outward", "inward")
STATE_FIELDS = {
    "vendors": "vendors",
    "items": "items",
    "work_types": "work_types",
    "users": "users",
    "outward": "outward_entries",
    "inward": "inward_entries",
}
PHOTO_PREFIX = {"outward": "OUT", "inward": "IN"}

OUTCOME_SUCCESS = "success"
OUTCOME_PARTIAL = "partial"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


@dataclass(frozen=True)
class SyncOutcome:
    status: str
    message: str
    failed_attachments: int = 0
    status_updates: int = 0
    appended: dict[str, int] = field(default_factory=dict)
    error_kind: Optional[str] = None
    finished_at: str = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc).isoformat())

    @property
    def ok(self) -> bool:
        return self.status == OUTCOME_SUCCESS

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "status": self.status,
            "message": self.message,
            "failed_attachments": self.failed_attachments,
            "status_updates": self.status_updates,
            "appended": dict(self.appended),
            "error_kind": self.error_kind,
            "finished_at": self.finished_at,
        }


def _fold(v: Optional[str]) -> str:
    return (v or "").strip().lower()


def _default_tabular_factory(credentials):
    from .storage.sheets import RemoteTabularClient

    return RemoteTabularClient.from_credentials(credentials)


def _default_attachment_factory(credentials):
    from .storage.drive import AttachmentStore

    return AttachmentStore.from_credentials(credentials)


class _Cycle:
    """Progress of one sync run; `merge()` is valid at any point after `pull()`."""

    def __init__(self, state: AppState, layout: SheetLayout, stamp: str):
        self.state = state
        self.layout = layout
        self.stamp = stamp
        self.remote: Optional[dict[str, list[tuple[int, Any]]]] = None
        self.appended: dict[str, list[tuple[Any, Any]]] = {k: [] for k in STATE_FIELDS}
        self.uploaded_urls: dict[str, str] = {}
        self.failed_attachments: set[str] = set()
        self.status_pushed: set[str] = set()

    # -- read --------------------------------------------------------------

    def pull(self, tabular) -> None:
        kinds = list(STATE_FIELDS)
        values = tabular.batch_get(self.layout.read_ranges())
        remote: dict[str, list[tuple[int, Any]]] = {}
        for kind, rows in zip(kinds, values):
            parsed: list[tuple[int, Any]] = []
            # Row 1 is the header; sheet rows are 1-based.
            for offset, raw in enumerate(rows[1:]):
                if not any(str(c).strip() for c in raw):
                    continue
                try:
                    parsed.append((offset + 2, self.layout.parse(kind, raw)))
                except ValidationError as ex:
                    json_log("error", "sync.row.invalid", kind=kind, row=offset + 2, error=str(ex)[:500])
            remote[kind] = parsed
        self.remote = remote

    def _remote_rows(self, kind: str) -> list[Any]:
        return [r for _, r in (self.remote or {}).get(kind, [])]

    def _pending(self, kind: str) -> list[Any]:
        return [r for r in getattr(self.state, STATE_FIELDS[kind]) if not r.synced]

    def _new_candidates(self, kind: str) -> list[Any]:
        """Unsynced local records whose signature is not in the sheet yet (first of each signature)."""
        sigs = build_signatures({kind: self._remote_rows(kind)})
        seen: set[str] = set()
        out = []
        for rec in self._pending(kind):
            sig = candidate_signature(kind, rec, self.state)
            if sigs.contains(kind, sig) or sig in seen:
                continue
            seen.add(sig)
            out.append(rec)
        return out

    # -- write -------------------------------------------------------------

    def push_status(self, tabular) -> int:
        closed = {o.challan_no for o in self._pending("outward") if o.is_closed}
        if not closed:
            return 0
        data = []
        challans = set()
        for number, row in (self.remote or {}).get("outward", []):
            if row.challan_no in closed and row.status != "COMPLETED":
                data.append({"range": self.layout.outward_status_cell(number), "values": [["COMPLETED"]]})
                challans.add(row.challan_no)
        if not data:
            return 0
        tabular.batch_update(data)
        self.status_pushed |= challans
        json_log("info", "sync.status.pushed", count=len(data))
        return len(data)

    def _master_row(self, kind: str, rec):
        if kind == "vendors":
            return VendorRow(name=rec.name, code=rec.code)
        if kind == "items":
            return ItemRow(sku=rec.sku, description=rec.description)
        if kind == "work_types":
            return WorkTypeRow(name=rec.name)
        return UserRow(name=rec.name)

    def push_masters(self, tabular) -> None:
        for kind in MASTER_KINDS:
            rows = [(self._master_row(kind, rec), rec) for rec in self._new_candidates(kind)]
            if not rows:
                continue
            tabular.append(
                self.layout.full_range(kind),
                [r.to_values(date_format=self.layout.date_format) for r, _ in rows],
            )
            self.appended[kind].extend(rows)
            json_log("info", "sync.append", kind=kind, count=len(rows))

    def _entry_row(self, kind: str, rec, photo_url: Optional[str]):
        s = self.state
        common = dict(
            date=rec.date,
            date_text=rec.date.isoformat(),
            vendor_name=s.entry_vendor_name(rec),
            sku=s.sku(rec.sku_id),
            qty=rec.qty,
            combo_qty=rec.combo_qty,
            total_weight=rec.total_weight,
            pendal_weight=rec.pendal_weight,
            material_weight=rec.material_weight,
            checked_by=rec.checked_by,
            entered_by=rec.entered_by,
            photo_url=photo_url,
            remarks=rec.remarks,
            sync_timestamp=self.stamp,
        )
        if kind == "outward":
            return OutwardRow(
                challan_no=rec.challan_no,
                work_name=s.work_name(rec.work_id),
                status=rec.status,
                **common,
            )
        return InwardRow(outward_challan_no=s.entry_challan(rec) or PLACEHOLDER, **common)

    def _photo_name(self, kind: str, rec) -> str:
        if kind == "outward":
            challan = rec.challan_no
        else:
            challan = self.state.entry_challan(rec) or "UNK"
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in challan)
        return f"{PHOTO_PREFIX[kind]}_{safe}.jpg"

    def push_entries(self, tabular, attachments: Callable[[], Any], throttle: float, sleep) -> None:
        uploads = 0
        for kind in ENTRY_KINDS:
            rows = []
            for rec in self._new_candidates(kind):
                url = rec.photo_url
                if rec.has_unsent_photo:
                    if uploads and throttle > 0:
                        sleep(throttle)
                    uploads += 1
                    url = attachments().upload(rec.photo, self._photo_name(kind, rec), kind)
                    if not url:
                        self.failed_attachments.add(rec.id)
                        json_log("warning", "sync.attachment.failed", kind=kind, entry_id=rec.id)
                        continue
                    self.uploaded_urls[rec.id] = url
                rows.append((self._entry_row(kind, rec, url), rec))
            if not rows:
                continue
            tabular.append(
                self.layout.full_range(kind),
                [r.to_values(date_format=self.layout.date_format) for r, _ in rows],
            )
            self.appended[kind].extend(rows)
            json_log("info", "sync.append", kind=kind, count=len(rows))

    # -- merge -------------------------------------------------------------

    def _confirmed(self, kind: str) -> list[tuple[Any, Any]]:
        """(row, producing local record or None) for every row known to be in the sheet."""
        out: list[tuple[Any, Any]] = [(r, None) for r in self._remote_rows(kind)]
        out.extend(self.appended[kind])
        return out

    def _assign_ids(self, kind: str, confirmed, remap: dict[str, str]):
        """
        Give each confirmed row a stable id.

        Rows this cycle appended keep their producer's id. Pre-existing rows
        take the id of the first unused local record with the same signature
        (or, for rows with a blank signature, the same content); each local
        record is used at most once. Unused local records sharing a row's
        signature are folded into that row's id via `remap`.

        Returns (assigned, signatures seen, ids of local records used).
        """
        by_sig: dict[str, list[Any]] = {}
        by_content: dict[str, list[Any]] = {}
        for rec in getattr(self.state, STATE_FIELDS[kind]):
            sig = candidate_signature(kind, rec, self.state)
            if sig:
                by_sig.setdefault(sig, []).append(rec)
            else:
                by_content.setdefault(self._local_content_key(kind, rec), []).append(rec)

        taken: set[str] = {rec.id for _, rec in self.appended[kind]}
        owners: dict[str, str] = {}
        out = []
        for row, producer in confirmed:
            sig = row_signature(kind, row)
            local = producer
            if local is None:
                pool = by_sig.get(sig, []) if sig else by_content.get(self._content_key(kind, row), [])
                local = next((r for r in pool if r.id not in taken), None)
            rid = local.id if local is not None else new_id()
            if local is not None:
                taken.add(local.id)
            if sig:
                owners.setdefault(sig, rid)
            out.append((row, rid, local))

        for sig, rid in owners.items():
            for rec in by_sig.get(sig, []):
                if rec.id not in taken:
                    remap[rec.id] = rid
        return out, set(owners), taken

    def _content_key(self, kind: str, row) -> str:
        if kind == "outward":
            return f"{row.day_key}|{_fold(row.vendor_name or 'Unknown')}|{format_decimal(row.qty)}"
        if kind == "inward":
            return ""
        return "|".join(_fold(str(v)) for v in row.to_values(date_format=self.layout.date_format))

    def _local_content_key(self, kind: str, rec) -> str:
        if kind == "outward":
            return f"{rec.date.isoformat()}|{_fold(self.state.entry_vendor_name(rec))}|{format_decimal(rec.qty)}"
        if kind == "inward":
            return ""
        return self._content_key(kind, self._master_row(kind, rec))

    def _leftovers(self, kind: str, confirmed_sigs: set[str], taken: set[str]) -> list[Any]:
        return [
            rec
            for rec in self._pending(kind)
            if rec.id not in taken and candidate_signature(kind, rec, self.state) not in confirmed_sigs
        ]

    def _undated(self, kind: str, row, local) -> bool:
        if row.date is not None or local is not None:
            return False
        json_log("error", "sync.row.invalid", kind=kind, error="unparseable date", value=row.date_text[:100])
        return True

    def merge(self) -> AppState:
        if self.remote is None:
            return self.state

        remap: dict[str, str] = {}
        merged: dict[str, list[Any]] = {}

        for kind in MASTER_KINDS:
            assigned, sigs, taken = self._assign_ids(kind, self._confirmed(kind), remap)
            records = [self._master_record(kind, row, rid) for row, rid, _ in assigned]
            records.extend(self._leftovers(kind, sigs, taken))
            merged[kind] = records

        vendor_ids = _first_by(merged["vendors"], lambda v: v.name)
        item_ids = _first_by(merged["items"], lambda i: i.sku)
        work_ids = _first_by(merged["work_types"], lambda w: w.name)

        def ref(old: str) -> str:
            return remap.get(old, old)

        assigned, sigs, taken = self._assign_ids("outward", self._confirmed("outward"), remap)
        outward: list[OutwardEntry] = []
        for row, rid, local in assigned:
            if self._undated("outward", row, local):
                continue
            outward.append(self._outward_record(row, rid, local, vendor_ids, item_ids, work_ids))
        for rec in self._leftovers("outward", sigs, taken):
            outward.append(
                rec.model_copy(
                    update={
                        "vendor_id": ref(rec.vendor_id),
                        "sku_id": ref(rec.sku_id),
                        "work_id": ref(rec.work_id),
                        "photo_url": self.uploaded_urls.get(rec.id, rec.photo_url),
                    }
                )
            )

        outward_ids: dict[str, str] = {}
        for o in outward:
            outward_ids.setdefault(o.challan_no, o.id)
            outward_ids.setdefault(_fold(o.challan_no), o.id)

        assigned, sigs, taken = self._assign_ids("inward", self._confirmed("inward"), remap)
        inward: list[InwardEntry] = []
        for row, rid, local in assigned:
            if self._undated("inward", row, local):
                continue
            inward.append(self._inward_record(row, rid, local, vendor_ids, item_ids, outward_ids))
        for rec in self._leftovers("inward", sigs, taken):
            inward.append(
                rec.model_copy(
                    update={
                        "vendor_id": ref(rec.vendor_id),
                        "sku_id": ref(rec.sku_id),
                        "outward_id": ref(rec.outward_id),
                        "photo_url": self.uploaded_urls.get(rec.id, rec.photo_url),
                    }
                )
            )

        return AppState(
            vendors=tuple(merged["vendors"]),
            items=tuple(merged["items"]),
            work_types=tuple(merged["work_types"]),
            users=tuple(merged["users"]),
            outward_entries=tuple(outward),
            inward_entries=tuple(inward),
        )

    def _master_record(self, kind: str, row, rid: str):
        if kind == "vendors":
            return Vendor(id=rid, name=row.name, code=row.code, synced=True)
        if kind == "items":
            return Item(id=rid, sku=row.sku, description=row.description, synced=True)
        if kind == "work_types":
            return WorkType(id=rid, name=row.name, synced=True)
        return User(id=rid, name=row.name, synced=True)

    def _entry_fields(self, row, local, vendor_ids, item_ids) -> dict[str, Any]:
        vendor_id = vendor_ids.get(_fold(row.vendor_name), "")
        return dict(
            date=row.date or local.date,
            vendor_id=vendor_id,
            vendor_name=None if vendor_id else (row.vendor_name or None),
            sku_id=item_ids.get(_fold(row.sku), ""),
            qty=row.qty,
            combo_qty=row.combo_qty,
            total_weight=row.total_weight,
            pendal_weight=row.pendal_weight,
            photo=None,
            photo_url=row.photo_url,
            remarks=row.remarks,
            entered_by=row.entered_by,
            checked_by=row.checked_by,
        )

    def _outward_record(self, row: OutwardRow, rid, local, vendor_ids, item_ids, work_ids) -> OutwardEntry:
        local_closed = local is not None and local.is_closed
        remote_closed = row.status == "COMPLETED" or row.challan_no in self.status_pushed
        # A local close that has not reached the sheet yet stays pending.
        synced = not (local_closed and not remote_closed)
        return OutwardEntry(
            id=rid,
            challan_no=row.challan_no,
            work_id=work_ids.get(_fold(row.work_name), ""),
            status="COMPLETED" if (local_closed or remote_closed) else "OPEN",
            synced=synced,
            **self._entry_fields(row, local, vendor_ids, item_ids),
        )

    def _inward_record(self, row: InwardRow, rid, local, vendor_ids, item_ids, outward_ids) -> InwardEntry:
        challan = row.outward_challan_no
        outward_id = outward_ids.get(challan) or outward_ids.get(_fold(challan), "")
        unresolved = None if outward_id or challan == PLACEHOLDER else (challan or None)
        return InwardEntry(
            id=rid,
            outward_id=outward_id,
            outward_challan_no=unresolved,
            synced=True,
            **self._entry_fields(row, local, vendor_ids, item_ids),
        )

    # -- report ------------------------------------------------------------

    def write_report(self, tabular, merged: AppState) -> int:
        rows = compute(merged.outward_entries, merged.inward_entries, merged)
        values = [list(ReconciliationRow.HEADERS)]
        values.extend(r.to_values(date_format=self.layout.date_format) for r in rows)
        tabular.clear(self.layout.reconciliation_range())
        tabular.update(self.layout.reconciliation_write_range(len(rows)), values)
        return len(rows)


def _first_by(records, key) -> dict[str, str]:
    out: dict[str, str] = {}
    for r in records:
        out.setdefault(_fold(key(r)), r.id)
    return out


class SyncEngine:
    """
    Runs sync cycles, at most one at a time.

    `try_sync` never raises: every failure becomes a SyncOutcome, and the
    returned state is the best one known (the merge of whatever the sheet
    confirmed before the failure, or the input state if nothing was read).
    """

    def __init__(
        self,
        authorizer,
        *,
        layout: Optional[SheetLayout] = None,
        tabular_factory: Callable[[Any], Any] = _default_tabular_factory,
        attachment_factory: Callable[[Any], Any] = _default_attachment_factory,
        throttle_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.authorizer = authorizer
        self.layout = layout or SheetLayout.from_settings()
        self._tabular_factory = tabular_factory
        self._attachment_factory = attachment_factory
        self.throttle_seconds = settings.upload_throttle_seconds if throttle_seconds is None else throttle_seconds
        self._sleep = sleep
        self._busy = threading.Lock()
        self.last_outcome: Optional[SyncOutcome] = None

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def try_sync(self, state: AppState, *, interactive: bool = False) -> tuple[AppState, SyncOutcome]:
        if not self._busy.acquire(blocking=False):
            json_log("info", "sync.skipped", reason="in_progress")
            return state, SyncOutcome(status=OUTCOME_SKIPPED, message="A sync is already in progress.")
        try:
            merged, outcome = self._run(state, interactive=interactive)
        finally:
            self._busy.release()
        self.last_outcome = outcome
        return merged, outcome

    def _run(self, state: AppState, *, interactive: bool) -> tuple[AppState, SyncOutcome]:
        stamp = dt.datetime.now().strftime(f"{self.layout.date_format} %H:%M:%S")
        cycle = _Cycle(state, self.layout, stamp)
        started = time.monotonic()
        status_updates = 0
        json_log("info", "sync.cycle.start", interactive=interactive, pending=state.unsynced_count())

        try:
            creds = self.authorizer.credentials(interactive=interactive)
            tabular = self._tabular_factory(creds)
            attachments = None

            def get_attachments():
                nonlocal attachments
                if attachments is None:
                    attachments = self._attachment_factory(creds)
                return attachments

            cycle.pull(tabular)
            status_updates = cycle.push_status(tabular)
            cycle.push_masters(tabular)
            cycle.push_entries(tabular, get_attachments, self.throttle_seconds, self._sleep)
            merged = cycle.merge()
            cycle.write_report(tabular, merged)
        except AuthorizationLost as ex:
            self.authorizer.invalidate()
            return self._failed(cycle, status_updates, "authorization_lost", f"Authorization required: {ex}")
        except ConfigurationError as ex:
            return self._failed(cycle, status_updates, "configuration", str(ex))
        except RemoteStoreError as ex:
            kind = "remote_write_failed" if cycle.remote is not None else "remote_read_failed"
            return self._failed(cycle, status_updates, kind, f"Sync failed: {ex}")
        except Exception as ex:
            traceback.print_exc(file=sys.stderr)
            return self._failed(cycle, status_updates, "unexpected", f"Sync failed: {ex}")

        appended = {k: len(v) for k, v in cycle.appended.items() if v}
        failed = len(cycle.failed_attachments)
        if failed:
            outcome = SyncOutcome(
                status=OUTCOME_PARTIAL,
                message=f"Synced with errors. {failed} image(s) failed to upload; they will be retried on the next sync.",
                failed_attachments=failed,
                status_updates=status_updates,
                appended=appended,
                error_kind="attachment_upload_failed",
            )
        else:
            outcome = SyncOutcome(
                status=OUTCOME_SUCCESS,
                message=f"Sync complete: {stamp}",
                status_updates=status_updates,
                appended=appended,
            )
        json_log(
            "info",
            "sync.cycle.done",
            status=outcome.status,
            appended=appended,
            failed_attachments=failed,
            status_updates=status_updates,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return merged, outcome

    def _failed(self, cycle: _Cycle, status_updates: int, kind: str, message: str) -> tuple[AppState, SyncOutcome]:
        json_log("error", "sync.cycle.failed", error_kind=kind, error=message)
        outcome = SyncOutcome(
            status=OUTCOME_FAILED,
            message=message,
            failed_attachments=len(cycle.failed_attachments),
            status_updates=status_updates,
            appended={k: len(v) for k, v in cycle.appended.items() if v},
            error_kind=kind,
        )
        return cycle.merge(), outcome
