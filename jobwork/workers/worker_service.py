#!/usr/bin/env python3
"""
Long-running sync worker.

Runs a non-interactive sync cycle every SYNC_INTERVAL_SECONDS against the
local snapshot. A cycle that needs the user to sign in again just logs and
waits for the next tick (or for a manual `sheets_sync --interactive`).
"""

import argparse
import sys
import time
import traceback

from jobwork.app.config import settings
from jobwork.app.google_auth import GoogleAuthorizer
from jobwork.app.logs import json_log
from jobwork.app.state import StateHolder
from jobwork.app.storage.local_store import LocalStore
from jobwork.app.sync_engine import OUTCOME_SUCCESS, SyncEngine

from jobwork.workers.sheets_sync import run_sheets_sync

WORKER_NAME = "sheets-sync-worker"


def run_once(holder: StateHolder, engine: SyncEngine) -> bool:
    """One guarded cycle. Returns True when there is still local work pending."""
    try:
        outcome = run_sheets_sync(holder, engine, interactive=False)
    except Exception as ex:
        # Never crash the worker loop due to sync errors.
        json_log("error", "worker.sync.error", worker=WORKER_NAME, error=str(ex))
        traceback.print_exc(file=sys.stderr)
        return False
    pending = holder.snapshot().unsynced_count()
    json_log(
        "info" if outcome.status == OUTCOME_SUCCESS else "warning",
        "worker.sync.cycle",
        worker=WORKER_NAME,
        status=outcome.status,
        message=outcome.message,
        unsynced=pending,
    )
    return pending > 0


def main(argv=None):
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=None)
    parser.add_argument("--interval", type=float, default=settings.sync_interval_seconds)
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    args = parser.parse_args(argv)

    holder = StateHolder(LocalStore(db_path=args.db))
    engine = SyncEngine(GoogleAuthorizer())
    json_log("info", "worker.start", worker=WORKER_NAME, interval_s=args.interval, db_path=holder.store.db_path)

    while True:
        run_once(holder, engine)
        if args.once:
            break
        time.sleep(max(1.0, args.interval))


if __name__ == "__main__":
    main()
