#!/usr/bin/env python3
"""
Local snapshot <-> Google Sheets sync (one cycle).

Usage:
  python3 -m jobwork.workers.sheets_sync              # background-safe, never prompts
  python3 -m jobwork.workers.sheets_sync --interactive  # allow the consent screen

Prints the outcome as one JSON object on stdout; exit code 0 on success or
partial success (some photos pending), 1 on failure.
"""

import argparse
import json
import sys

from jobwork.app.google_auth import GoogleAuthorizer
from jobwork.app.state import StateHolder
from jobwork.app.storage.local_store import LocalStore
from jobwork.app.sync_engine import OUTCOME_FAILED, SyncEngine, SyncOutcome


def run_sheets_sync(holder: StateHolder, engine: SyncEngine, *, interactive: bool = False) -> SyncOutcome:
    return holder.sync(engine, interactive=interactive)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--db", default=None, help="Local snapshot sqlite path (default: JOBWORK_DB_PATH)")
    parser.add_argument("--token", default=None, help="OAuth token file (default: GOOGLE_TOKEN_PATH)")
    parser.add_argument("--interactive", action="store_true", help="Allow interactive consent if no valid token")
    args = parser.parse_args(argv)

    holder = StateHolder(LocalStore(db_path=args.db))
    engine = SyncEngine(GoogleAuthorizer(token_path=args.token))
    outcome = run_sheets_sync(holder, engine, interactive=args.interactive)
    print(json.dumps({**outcome.as_dict(), "unsynced": holder.snapshot().unsynced_count()}, default=str))
    return 1 if outcome.status == OUTCOME_FAILED else 0


if __name__ == "__main__":
    sys.exit(main())
