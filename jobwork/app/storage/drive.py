import base64
import binascii
import io
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload
from PIL import Image, UnidentifiedImageError

from ..config import settings
from ..errors import (
    AttachmentUploadFailed,
    AuthorizationLost,
    ConfigurationError,
    RemoteStoreError,
    translate_http_error,
)
from ..logs import json_log

FOLDER_MIME = "application/vnd.google-apps.folder"
FOLDER_NAMES = {
    "outward": "Outward Images",
    "inward": "Inward Images",
}
# Anything smaller than this cannot be a real photo.
MIN_PAYLOAD_BYTES = 100


@dataclass(frozen=True)
class DriveConfig:
    root_folder_id: str
    max_dimension: int
    jpeg_quality: int
    max_attempts: int
    backoff_seconds: float


def get_drive_config() -> DriveConfig:
    return DriveConfig(
        root_folder_id=settings.drive_root_folder_id,
        max_dimension=settings.photo_max_dimension,
        jpeg_quality=settings.photo_jpeg_quality,
        max_attempts=settings.upload_max_attempts,
        backoff_seconds=settings.upload_backoff_seconds,
    )


def decode_photo(photo: str) -> bytes:
    """Accept a data: URL or bare base64."""
    raw = (photo or "").strip()
    if raw.startswith("data:"):
        if "," not in raw:
            raise AttachmentUploadFailed("malformed data URL")
        raw = raw.split(",", 1)[1]
    try:
        data = base64.b64decode(raw, validate=False)
    except (binascii.Error, ValueError) as ex:
        raise AttachmentUploadFailed(f"photo is not valid base64: {ex}") from ex
    if len(data) < MIN_PAYLOAD_BYTES:
        raise AttachmentUploadFailed(f"photo payload too small ({len(data)} bytes)")
    return data


def compress_image(data: bytes, *, max_dimension: int, quality: int) -> bytes:
    """Downscale to fit max_dimension (aspect kept) and re-encode as JPEG."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as ex:
        raise AttachmentUploadFailed(f"photo could not be decoded: {ex}") from ex

    if img.mode in ("RGBA", "LA", "P"):
        # JPEG has no alpha: flatten onto white.
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        img = background
    elif img.mode != "RGB":
        img = img.convert("RGB")

    img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
    out = io.BytesIO()
    img.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


def _quote_query(value: str) -> str:
    return (value or "").replace("\\", "\\\\").replace("'", "\\'")


class AttachmentStore:
    """
    Photo uploads to Drive.

    `upload` never raises for a failed upload: it returns None and the caller
    decides what that means. Two failures do propagate so the sync cycle can
    stop: AuthorizationLost (token revoked or expired) and ConfigurationError
    (Drive API disabled for the project, disallowed origin). Neither is
    retried here.
    """

    def __init__(self, service, config: Optional[DriveConfig] = None, *, sleep: Callable[[float], None] = time.sleep):
        self._service = service
        self.config = config or get_drive_config()
        self._sleep = sleep
        self._folders: dict[str, Optional[str]] = {}

    @classmethod
    def from_credentials(cls, credentials) -> "AttachmentStore":
        return cls(build("drive", "v3", credentials=credentials, cache_discovery=False))

    def _files(self):
        return self._service.files()

    def _find_folder(self, name: str, parent_id: Optional[str]) -> Optional[str]:
        q = f"name='{_quote_query(name)}' and mimeType='{FOLDER_MIME}' and trashed=false"
        if parent_id:
            q += f" and '{_quote_query(parent_id)}' in parents"
        res = self._files().list(q=q, spaces="drive", fields="files(id,name)", pageSize=1).execute()
        files = (res or {}).get("files") or []
        return files[0].get("id") if files else None

    def _create_folder(self, name: str, parent_id: Optional[str]) -> Optional[str]:
        body = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            body["parents"] = [parent_id]
        res = self._files().create(body=body, fields="id").execute()
        return (res or {}).get("id")

    def _find_or_create(self, name: str, parent_id: Optional[str]) -> Optional[str]:
        return self._find_folder(name, parent_id) or self._create_folder(name, parent_id)

    def resolve_folder(self, category: str) -> Optional[str]:
        if category in self._folders:
            return self._folders[category]
        name = FOLDER_NAMES.get(category) or f"{category.title()} Images"

        folder_id = None
        parents = [self.config.root_folder_id, None] if self.config.root_folder_id else [None]
        for parent in parents:
            try:
                folder_id = self._find_or_create(name, parent)
            except HttpError as ex:
                err = translate_http_error(ex, op="drive.folder", write=True)
                if isinstance(err, AuthorizationLost):
                    raise err
                # Shared parent not writable with a file-scoped grant: try the user's own drive.
                json_log("warning", "drive.folder.failed", folder=name, parent=parent or "root", error=str(err))
                continue
            except (httplib2.HttpLib2Error, OSError) as ex:
                json_log("warning", "drive.folder.failed", folder=name, parent=parent or "root", error=str(ex))
                continue
            if folder_id:
                break

        if not folder_id:
            json_log("warning", "drive.folder.unresolved", folder=name)
        self._folders[category] = folder_id
        return folder_id

    def _send(self, data: bytes, file_name: str, folder_id: Optional[str]) -> Optional[str]:
        metadata = {"name": file_name, "mimeType": "image/jpeg"}
        if folder_id:
            metadata["parents"] = [folder_id]
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype="image/jpeg", resumable=False)
        res = self._files().create(body=metadata, media_body=media, fields="id,webViewLink").execute() or {}
        link = res.get("webViewLink")
        if not link and res.get("id"):
            link = f"https://drive.google.com/file/d/{res['id']}/view"
        return link

    def upload(self, photo: str, file_name: str, category: str) -> Optional[str]:
        try:
            data = compress_image(
                decode_photo(photo),
                max_dimension=self.config.max_dimension,
                quality=self.config.jpeg_quality,
            )
        except AttachmentUploadFailed as ex:
            json_log("error", "drive.upload.bad_payload", file_name=file_name, error=str(ex))
            return None

        folder_id = self.resolve_folder(category)

        attempts = max(1, self.config.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                link = self._send(data, file_name, folder_id)
            except HttpError as ex:
                err = translate_http_error(ex, op="drive.upload", write=True)
                if isinstance(err, (AuthorizationLost, ConfigurationError)):
                    raise err
                json_log("warning", "drive.upload.failed", file_name=file_name, attempt=attempt, error=str(err))
                if isinstance(err, RemoteStoreError) and not err.retryable:
                    return None
            except (httplib2.HttpLib2Error, OSError) as ex:
                json_log("warning", "drive.upload.transport_error", file_name=file_name, attempt=attempt, error=str(ex))
            else:
                if link:
                    json_log("info", "drive.upload.ok", file_name=file_name, url=link)
                    return link
                json_log("warning", "drive.upload.no_link", file_name=file_name, attempt=attempt)
            if attempt < attempts:
                self._sleep(self.config.backoff_seconds * attempt)

        json_log("error", "drive.upload.gave_up", file_name=file_name, attempts=attempts)
        return None
