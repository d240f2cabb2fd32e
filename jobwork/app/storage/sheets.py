import time
from typing import Any, Callable, Optional, Sequence

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import settings
from ..errors import ConfigurationError, RemoteReadFailed, RemoteStoreError, RemoteWriteFailed, translate_http_error
from ..logs import json_log

BACKOFF_SCHEDULE = (1, 2, 4)
VALUE_INPUT_OPTION = "USER_ENTERED"


class RemoteTabularClient:
    """
    Thin typed adapter over the Sheets values API.

    Reads, clears and overwrites are idempotent and retried with backoff on
    transient failures. Appends are sent once: if one times out after the
    server applied it, the next cycle's duplicate check absorbs it, while a
    blind retry would write the rows twice.
    """

    def __init__(
        self,
        service,
        spreadsheet_id: str,
        *,
        max_attempts: int = len(BACKOFF_SCHEDULE),
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not (spreadsheet_id or "").strip():
            raise ConfigurationError("SHEETS_SPREADSHEET_ID is not set")
        self._service = service
        self.spreadsheet_id = spreadsheet_id.strip()
        self.max_attempts = max(1, int(max_attempts))
        self._sleep = sleep

    @classmethod
    def from_credentials(cls, credentials, spreadsheet_id: Optional[str] = None) -> "RemoteTabularClient":
        service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return cls(service, spreadsheet_id if spreadsheet_id is not None else settings.spreadsheet_id)

    def _values(self):
        return self._service.spreadsheets().values()

    def _execute(self, make_request: Callable[[], Any], op: str, *, write: bool, retry: bool) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return make_request().execute()
            except HttpError as ex:
                err = translate_http_error(ex, op=op, write=write)
            except (httplib2.HttpLib2Error, OSError) as ex:
                cls = RemoteWriteFailed if write else RemoteReadFailed
                err = cls(f"{op}: transport error: {ex}", retryable=True)

            if not isinstance(err, RemoteStoreError) or not err.retryable or not retry or attempt >= self.max_attempts:
                raise err
            delay = BACKOFF_SCHEDULE[min(attempt - 1, len(BACKOFF_SCHEDULE) - 1)]
            json_log("warning", "sheets.retry", op=op, status=err.status, attempt=attempt, delay_s=delay)
            self._sleep(delay)

    def batch_get(self, ranges: Sequence[str]) -> list[list[list[Any]]]:
        """One request for every range; result order matches `ranges`."""
        result = self._execute(
            lambda: self._values().batchGet(spreadsheetId=self.spreadsheet_id, ranges=list(ranges), majorDimension="ROWS"),
            "values.batchGet",
            write=False,
            retry=True,
        )
        value_ranges = (result or {}).get("valueRanges") or []
        out: list[list[list[Any]]] = []
        for i in range(len(ranges)):
            vr = value_ranges[i] if i < len(value_ranges) else {}
            out.append([list(r) for r in (vr.get("values") or [])])
        return out

    def append(self, range_: str, rows: Sequence[Sequence[Any]]) -> int:
        if not rows:
            return 0
        self._execute(
            lambda: self._values().append(
                spreadsheetId=self.spreadsheet_id,
                range=range_,
                valueInputOption=VALUE_INPUT_OPTION,
                insertDataOption="INSERT_ROWS",
                body={"values": [list(r) for r in rows]},
            ),
            "values.append",
            write=True,
            retry=False,
        )
        return len(rows)

    def update(self, range_: str, rows: Sequence[Sequence[Any]]) -> None:
        self._execute(
            lambda: self._values().update(
                spreadsheetId=self.spreadsheet_id,
                range=range_,
                valueInputOption=VALUE_INPUT_OPTION,
                body={"values": [list(r) for r in rows]},
            ),
            "values.update",
            write=True,
            retry=True,
        )

    def batch_update(self, data: Sequence[dict]) -> None:
        if not data:
            return
        self._execute(
            lambda: self._values().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={"valueInputOption": VALUE_INPUT_OPTION, "data": list(data)},
            ),
            "values.batchUpdate",
            write=True,
            retry=True,
        )

    def clear(self, range_: str) -> None:
        self._execute(
            lambda: self._values().clear(spreadsheetId=self.spreadsheet_id, range=range_, body={}),
            "values.clear",
            write=True,
            retry=True,
        )
