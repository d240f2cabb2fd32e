from jobwork.app.errors import (
    AuthorizationLost,
    ConfigurationError,
    RemoteReadFailed,
    RemoteWriteFailed,
    translate_http_error,
)


class _FakeHttpError(Exception):
    def __init__(self, status, message="", reasons=()):
        super().__init__(message)
        self.status_code = status
        self.error_details = [{"reason": r} for r in reasons]


def test_401_is_authorization_lost():
    err = translate_http_error(_FakeHttpError(401, "invalid credentials"), op="values.append", write=True)
    assert isinstance(err, AuthorizationLost)


def test_disabled_api_is_configuration_error():
    ex = _FakeHttpError(403, "Google Sheets API has not been used in project 12345 before or it is disabled.")
    assert isinstance(translate_http_error(ex, op="values.batchGet", write=False), ConfigurationError)

    ex = _FakeHttpError(403, "forbidden", reasons=("accessNotConfigured",))
    assert isinstance(translate_http_error(ex, op="values.batchGet", write=False), ConfigurationError)


def test_transient_statuses_are_retryable():
    for status in (429, 500, 503):
        err = translate_http_error(_FakeHttpError(status, "busy"), op="values.update", write=True)
        assert isinstance(err, RemoteWriteFailed)
        assert err.retryable
        assert err.status == status


def test_rate_limit_403_is_retryable_read():
    err = translate_http_error(_FakeHttpError(403, "Rate Limit Exceeded"), op="values.batchGet", write=False)
    assert isinstance(err, RemoteReadFailed)
    assert err.retryable


def test_bad_request_is_not_retryable():
    err = translate_http_error(_FakeHttpError(400, "Unable to parse range"), op="values.append", write=True)
    assert isinstance(err, RemoteWriteFailed)
    assert not err.retryable
