"""In-memory stand-ins for the Sheets client, Drive store and authorizer."""

import re

from jobwork.app.errors import AuthorizationLost, RemoteWriteFailed
from jobwork.app.schema import ROW_TYPES, ReconciliationRow, SheetLayout

_CELL_RE = re.compile(r"^([A-Z]+)(\d+)")


def _title(range_: str) -> str:
    title = range_.split("!", 1)[0]
    if title.startswith("'") and title.endswith("'"):
        title = title[1:-1].replace("''", "'")
    return title


def _start(range_: str) -> tuple[int, int]:
    spec = range_.split("!", 1)[1]
    m = _CELL_RE.match(spec)
    if not m:
        return 0, 0
    col = 0
    for ch in m.group(1):
        col = col * 26 + (ord(ch) - 64)
    return int(m.group(2)) - 1, col - 1


def make_layout() -> SheetLayout:
    return SheetLayout(
        sheet_titles={
            "vendors": "VENDOR MASTER",
            "items": "ITEM MASTER",
            "work_types": "WORK MASTER",
            "users": "USER MASTER",
            "outward": "Outward",
            "inward": "Inward",
        },
        reconciliation_title="Reconciliation",
        date_format="%d/%m/%Y",
    )


class FakeTabular:
    def __init__(self, layout: SheetLayout):
        self.layout = layout
        self.sheets: dict[str, list[list]] = {}
        for kind, row_type in ROW_TYPES.items():
            self.sheets[layout.sheet_titles[kind]] = [list(row_type.HEADERS)]
        self.sheets[layout.reconciliation_title] = [list(ReconciliationRow.HEADERS)]
        self.calls: list[tuple] = []
        # Sheet title -> "reject" (nothing written) or "lost_ack" (written, then error).
        self.fail_append: dict[str, str] = {}

    def rows(self, kind: str) -> list[list]:
        """Data rows (header excluded) of an entity sheet."""
        return self.sheets[self.layout.sheet_titles[kind]][1:]

    def seed(self, kind: str, values: list) -> None:
        self.sheets[self.layout.sheet_titles[kind]].append([str(v) for v in values])

    @property
    def writes(self) -> list[tuple]:
        return [c for c in self.calls if c[0] != "batch_get"]

    def batch_get(self, ranges):
        self.calls.append(("batch_get", tuple(ranges)))
        return [[list(r) for r in self.sheets.get(_title(r), [])] for r in ranges]

    def append(self, range_, rows):
        title = _title(range_)
        self.calls.append(("append", title, len(rows)))
        mode = self.fail_append.get(title)
        if mode == "reject":
            raise RemoteWriteFailed(f"append {title}: http 503", status=503, retryable=True)
        self.sheets.setdefault(title, []).extend([list(r) for r in rows])
        if mode == "lost_ack":
            raise RemoteWriteFailed(f"append {title}: timed out", retryable=True)
        return len(rows)

    def _write_block(self, range_, rows):
        sheet = self.sheets.setdefault(_title(range_), [])
        r0, c0 = _start(range_)
        for i, values in enumerate(rows):
            while len(sheet) <= r0 + i:
                sheet.append([])
            row = sheet[r0 + i]
            for j, v in enumerate(values):
                while len(row) <= c0 + j:
                    row.append("")
                row[c0 + j] = v

    def update(self, range_, rows):
        self.calls.append(("update", _title(range_), len(rows)))
        self._write_block(range_, rows)

    def batch_update(self, data):
        self.calls.append(("batch_update", tuple(d["range"] for d in data)))
        for d in data:
            self._write_block(d["range"], d["values"])

    def clear(self, range_):
        self.calls.append(("clear", _title(range_)))
        self.sheets[_title(range_)] = []


class FakeAttachments:
    def __init__(self, failing=(), lost_on=()):
        self.failing = set(failing)
        self.lost_on = set(lost_on)
        self.uploads: list[str] = []

    def upload(self, photo, file_name, category):
        self.uploads.append(file_name)
        if file_name in self.lost_on:
            raise AuthorizationLost("token revoked")
        if file_name in self.failing:
            return None
        return f"https://drive.example/{category}/{file_name}"


class FakeAuthorizer:
    def __init__(self, lost: bool = False, on_credentials=None):
        self.lost = lost
        self.on_credentials = on_credentials
        self.invalidated = False
        self.interactive_calls: list[bool] = []

    def credentials(self, *, interactive=False):
        self.interactive_calls.append(interactive)
        if self.on_credentials:
            self.on_credentials()
        if self.lost:
            raise AuthorizationLost("token expired")
        return object()

    def invalidate(self):
        self.invalidated = True
