import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


def _truthy(raw: str) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        self.api_version = os.getenv("APP_VERSION", "2.6.0").strip() or "2.6.0"
        # Comma-separated list of allowed CORS origins for the browser/mobile front end.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )

        # Local snapshot store. 0 means no quota beyond what the disk allows.
        self.db_path = os.getenv("JOBWORK_DB_PATH", "jobwork.sqlite").strip() or "jobwork.sqlite"
        self.store_max_bytes = max(0, _env_int("JOBWORK_STORE_MAX_BYTES", 0))

        self.spreadsheet_id = (os.getenv("SHEETS_SPREADSHEET_ID") or "").strip()
        self.sheet_vendors = os.getenv("SHEET_VENDORS", "VENDOR MASTER")
        self.sheet_items = os.getenv("SHEET_ITEMS", "ITEM MASTER")
        self.sheet_works = os.getenv("SHEET_WORKS", "WORK MASTER")
        self.sheet_users = os.getenv("SHEET_USERS", "USER MASTER")
        self.sheet_outward = os.getenv("SHEET_OUTWARD", "Outward")
        self.sheet_inward = os.getenv("SHEET_INWARD", "Inward")
        self.sheet_reconciliation = os.getenv("SHEET_RECONCILIATION", "Reconciliation")
        self.sheet_date_format = os.getenv("SHEET_DATE_FORMAT", "%d/%m/%Y")

        self.drive_root_folder_id = (os.getenv("DRIVE_ROOT_FOLDER_ID") or "").strip()
        self.photo_max_dimension = max(64, _env_int("PHOTO_MAX_DIMENSION", 800))
        self.photo_jpeg_quality = min(95, max(10, _env_int("PHOTO_JPEG_QUALITY", 60)))
        self.upload_max_attempts = max(1, _env_int("UPLOAD_MAX_ATTEMPTS", 3))
        self.upload_backoff_seconds = max(0.0, _env_float("UPLOAD_BACKOFF_SECONDS", 1.0))
        self.upload_throttle_seconds = max(0.0, _env_float("UPLOAD_THROTTLE_SECONDS", 0.8))

        self.google_client_secrets_path = (os.getenv("GOOGLE_CLIENT_SECRETS_PATH") or "").strip()
        self.google_token_path = os.getenv("GOOGLE_TOKEN_PATH", "google_token.json").strip() or "google_token.json"

        self.auto_sync_enabled = _truthy(os.getenv("AUTO_SYNC_ENABLED", "1"))
        self.sync_interval_seconds = max(5, _env_int("SYNC_INTERVAL_SECONDS", 300))


settings = Settings()
