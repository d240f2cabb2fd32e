"""
Error taxonomy for the sync engine and its adapters.

Component-local failures (a photo that would not upload, a folder that could
not be resolved) are swallowed into None/False by the component. Everything
here that reaches the engine is turned into a SyncOutcome; nothing is raised
past `SyncEngine.try_sync`.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for every error the sync stack raises on purpose."""


class AuthorizationLost(SyncError):
    """No valid token. The cycle aborts before any remote mutation."""


class AttachmentUploadFailed(SyncError):
    """One photo could not be uploaded. Isolated to its entry."""


class RemoteStoreError(SyncError):
    def __init__(self, message: str, *, status: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class RemoteReadFailed(RemoteStoreError):
    pass


class RemoteWriteFailed(RemoteStoreError):
    """Transient network/quota failure on a write. Aborts the rest of the cycle."""


class ConfigurationError(SyncError):
    """Misconfiguration (missing ids, disabled API, disallowed origin). Never auto-retried."""


class LocalStorageCapacityExceeded(SyncError):
    pass


# Google reasons that mean "fix your project settings", not "try again".
_CONFIG_REASONS = {
    "accessNotConfigured",
    "SERVICE_DISABLED",
    "API_KEY_HTTP_REFERRER_BLOCKED",
    "API_KEY_INVALID",
    "forbiddenOrigin",
}
RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}


def http_status(exc) -> int:
    status = getattr(exc, "status_code", None)
    if status is not None:
        try:
            return int(status)
        except (TypeError, ValueError):
            return 0
    resp = getattr(exc, "resp", None)
    if resp is not None:
        try:
            return int(getattr(resp, "status", 0))
        except (TypeError, ValueError):
            return 0
    return 0


def _reasons(exc) -> set[str]:
    out: set[str] = set()
    details = getattr(exc, "error_details", None)
    if isinstance(details, list):
        for d in details:
            if isinstance(d, dict):
                r = d.get("reason")
                if r:
                    out.add(str(r))
    return out


def translate_http_error(exc, *, op: str, write: bool) -> SyncError:
    """Map a googleapiclient HttpError onto the taxonomy."""
    status = http_status(exc)
    msg = f"{op}: http {status} {exc}".strip()
    if status == 401:
        return AuthorizationLost(msg)
    reasons = _reasons(exc)
    text = str(exc).lower()
    if status == 403 and (
        reasons & _CONFIG_REASONS
        or "has not been used in project" in text
        or "origin" in text
        or "referer" in text
    ):
        return ConfigurationError(str(exc))
    retryable = status in RETRYABLE_STATUSES or (status == 403 and "ratelimitexceeded" in text.replace(" ", ""))
    cls = RemoteWriteFailed if write else RemoteReadFailed
    return cls(msg, status=status, retryable=retryable)
