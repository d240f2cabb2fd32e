"""
Local snapshot store (sqlite).

The whole AppState is one JSON document under one key. A save either
replaces the previous snapshot in a single transaction or leaves it
untouched; a full disk or quota overrun is logged and skipped.
"""

import errno
import json
import os
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from ..config import settings
from ..errors import LocalStorageCapacityExceeded
from ..logs import json_log
from ..models import AppState

STORAGE_KEY = "jobwork_app_state_v3"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_snapshots (
    key TEXT PRIMARY KEY,
    payload_json TEXT NOT NULL,
    saved_at TEXT NOT NULL
)
"""


def shed_synced_payloads(state: AppState) -> AppState:
    """Drop photo bytes from entries that already have a durable remote copy."""
    return state.model_copy(
        update={
            "outward_entries": tuple(e.model_copy(update={"photo": None}) if e.synced else e for e in state.outward_entries),
            "inward_entries": tuple(e.model_copy(update={"photo": None}) if e.synced else e for e in state.inward_entries),
        }
    )


def _is_capacity_error(exc: Exception) -> bool:
    if isinstance(exc, sqlite3.OperationalError):
        code = getattr(exc, "sqlite_errorcode", None)
        if code is not None and code == getattr(sqlite3, "SQLITE_FULL", 13):
            return True
        return "disk is full" in str(exc).lower()
    if isinstance(exc, OSError):
        return exc.errno in {errno.ENOSPC, errno.EDQUOT}
    return False


class LocalStore:
    def __init__(self, db_path: Optional[str] = None, max_bytes: Optional[int] = None, key: str = STORAGE_KEY):
        self.db_path = db_path or settings.db_path
        self.max_bytes = settings.store_max_bytes if max_bytes is None else max(0, int(max_bytes))
        self.key = key
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        if self._initialized:
            return
        parent = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(parent, exist_ok=True)
        with self._connect() as conn:
            conn.execute(SCHEMA_SQL)
            conn.commit()
        self._initialized = True

    def load(self) -> AppState:
        self._ensure_schema()
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT payload_json FROM app_snapshots WHERE key = ?", (self.key,))
            row = cur.fetchone()
        if not row:
            return AppState()
        try:
            return AppState.model_validate(json.loads(row[0]))
        except (ValueError, ValidationError) as ex:
            # A snapshot we cannot read must not take the app down.
            json_log("error", "store.load.invalid", db_path=self.db_path, error=str(ex)[:500])
            return AppState()

    def _write(self, payload: str) -> None:
        if self.max_bytes and len(payload.encode("utf-8")) > self.max_bytes:
            raise LocalStorageCapacityExceeded(f"snapshot is {len(payload)} bytes, quota is {self.max_bytes}")
        self._ensure_schema()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO app_snapshots (key, payload_json, saved_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  payload_json=excluded.payload_json,
                  saved_at=excluded.saved_at
                """,
                (self.key, payload, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    def save(self, state: AppState) -> bool:
        payload = shed_synced_payloads(state).model_dump_json()
        try:
            self._write(payload)
        except LocalStorageCapacityExceeded as ex:
            json_log("warning", "store.save.quota", db_path=self.db_path, error=str(ex))
            return False
        except (sqlite3.OperationalError, OSError) as ex:
            if not _is_capacity_error(ex):
                raise
            json_log("warning", "store.save.disk_full", db_path=self.db_path, error=str(ex))
            return False
        return True
