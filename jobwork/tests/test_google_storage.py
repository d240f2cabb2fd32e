import base64
import io

import httplib2
from googleapiclient.errors import HttpError
from PIL import Image

from jobwork.app.errors import AuthorizationLost, ConfigurationError, RemoteWriteFailed
from jobwork.app.storage.drive import AttachmentStore, DriveConfig, compress_image
from jobwork.app.storage.sheets import RemoteTabularClient


def _http(status: int, content: bytes = b"error") -> HttpError:
    return HttpError(httplib2.Response({"status": status}), content)


def _png_data_url(size=(1600, 1200), mode="RGBA") -> str:
    img = Image.new(mode, size, (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class _Req:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class _Files:
    def __init__(self, upload_failures=(), deny_parent=None):
        self.folders: dict[tuple, str] = {}
        self.uploads: list[dict] = []
        self.upload_failures = list(upload_failures)
        self.deny_parent = deny_parent

    def list(self, q, **_kw):
        def run():
            if self.deny_parent and f"'{self.deny_parent}' in parents" in q:
                raise _http(403, b"insufficient permissions")
            for (name, parent), fid in self.folders.items():
                if f"name='{name}'" not in q:
                    continue
                if (parent and f"'{parent}' in parents" in q) or (not parent and "in parents" not in q):
                    return {"files": [{"id": fid, "name": name}]}
            return {"files": []}

        return _Req(run)

    def create(self, body, media_body=None, fields=None):
        def run():
            if media_body is None:
                fid = f"folder-{len(self.folders) + 1}"
                self.folders[(body["name"], (body.get("parents") or [None])[0])] = fid
                return {"id": fid}
            if self.upload_failures:
                raise self.upload_failures.pop(0)
            self.uploads.append(body)
            return {"id": f"file-{len(self.uploads)}", "webViewLink": f"https://drive.example/{body['name']}"}

        return _Req(run)


class _DriveService:
    def __init__(self, files: _Files):
        self._files = files

    def files(self):
        return self._files


def _store(files: _Files, sleeps: list, root="root123") -> AttachmentStore:
    config = DriveConfig(root_folder_id=root, max_dimension=800, jpeg_quality=60, max_attempts=3, backoff_seconds=1.0)
    return AttachmentStore(_DriveService(files), config, sleep=sleeps.append)


def test_compress_image_bounds_size_and_flattens_alpha():
    raw = base64.b64decode(_png_data_url().split(",", 1)[1])
    out = compress_image(raw, max_dimension=800, quality=60)
    img = Image.open(io.BytesIO(out))
    assert img.format == "JPEG"
    assert img.mode == "RGB"
    assert img.size == (800, 600)


def test_upload_creates_category_folder_under_root():
    files, sleeps = _Files(), []
    url = _store(files, sleeps).upload(_png_data_url(), "OUT_ABC-001.jpg", "outward")

    assert url == "https://drive.example/OUT_ABC-001.jpg"
    assert files.folders == {("Outward Images", "root123"): "folder-1"}
    assert files.uploads[0]["parents"] == ["folder-1"]
    assert sleeps == []


def test_upload_retries_transient_failures_with_linear_backoff():
    files, sleeps = _Files(upload_failures=[_http(503), _http(503)]), []
    url = _store(files, sleeps).upload(_png_data_url(), "IN_ABC-001.jpg", "inward")

    assert url == "https://drive.example/IN_ABC-001.jpg"
    assert sleeps == [1.0, 2.0]


def test_upload_gives_up_after_bounded_attempts():
    files, sleeps = _Files(upload_failures=[_http(503), _http(500), _http(503)]), []
    assert _store(files, sleeps).upload(_png_data_url(), "OUT_X.jpg", "outward") is None
    assert sleeps == [1.0, 2.0]
    assert files.uploads == []


def test_non_retryable_failure_returns_none_at_once():
    files, sleeps = _Files(upload_failures=[_http(400, b"bad request")]), []
    assert _store(files, sleeps).upload(_png_data_url(), "OUT_X.jpg", "outward") is None
    assert sleeps == []


def test_lost_authorization_propagates():
    files, sleeps = _Files(upload_failures=[_http(401)]), []
    try:
        _store(files, sleeps).upload(_png_data_url(), "OUT_X.jpg", "outward")
        assert False, "expected AuthorizationLost"
    except AuthorizationLost:
        pass


def test_disabled_drive_api_propagates_without_retry():
    body = b'{"error": {"code": 403, "message": "Drive API has not been used in project 42 before or it is disabled."}}'
    files, sleeps = _Files(upload_failures=[_http(403, body)]), []
    try:
        _store(files, sleeps).upload(_png_data_url(), "OUT_X.jpg", "outward")
        assert False, "expected ConfigurationError"
    except ConfigurationError:
        pass
    assert sleeps == []
    assert files.uploads == []


def test_unwritable_root_falls_back_to_top_level_folder():
    files, sleeps = _Files(deny_parent="root123"), []
    url = _store(files, sleeps).upload(_png_data_url(), "OUT_X.jpg", "outward")

    assert url
    assert files.folders == {("Outward Images", None): "folder-1"}
    assert files.uploads[0]["parents"] == ["folder-1"]


def test_bad_payload_is_not_uploaded():
    files, sleeps = _Files(), []
    assert _store(files, sleeps).upload("data:image/png;base64,AAAA", "OUT_X.jpg", "outward") is None
    assert files.uploads == []


class _Values:
    def __init__(self, failures=()):
        self.failures = list(failures)
        self.calls: list[str] = []

    def _run(self, name, result):
        def run():
            self.calls.append(name)
            if self.failures:
                raise self.failures.pop(0)
            return result

        return _Req(run)

    def batchGet(self, spreadsheetId, ranges, majorDimension):
        return self._run("batchGet", {"valueRanges": [{"values": [["Name", "Code"], ["Acme", "ABC"]]}]})

    def append(self, **_kw):
        return self._run("append", {"updates": {}})


class _SheetsService:
    def __init__(self, values: _Values):
        self._values = values

    def spreadsheets(self):
        return self

    def values(self):
        return self._values


def test_reads_are_retried_and_missing_ranges_come_back_empty():
    values, sleeps = _Values(failures=[_http(503), _http(429)]), []
    client = RemoteTabularClient(_SheetsService(values), "sheet-1", sleep=sleeps.append)

    out = client.batch_get(["'VENDOR MASTER'!A:B", "Outward!A:P"])

    assert out == [[["Name", "Code"], ["Acme", "ABC"]], []]
    assert values.calls == ["batchGet"] * 3
    assert sleeps == [1, 2]


def test_appends_are_sent_once():
    values, sleeps = _Values(failures=[_http(503)]), []
    client = RemoteTabularClient(_SheetsService(values), "sheet-1", sleep=sleeps.append)
    try:
        client.append("Outward!A:P", [["x"]])
        assert False, "expected RemoteWriteFailed"
    except RemoteWriteFailed as ex:
        assert ex.retryable
    assert values.calls == ["append"]
    assert sleeps == []


def test_missing_spreadsheet_id_is_configuration_error():
    try:
        RemoteTabularClient(_SheetsService(_Values()), "  ")
        assert False, "expected ConfigurationError"
    except ConfigurationError:
        pass
