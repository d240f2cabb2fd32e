import os
from typing import Optional, Sequence

import google.auth.transport.requests
import google.oauth2.credentials
from google.auth.exceptions import RefreshError, TransportError
from google_auth_oauthlib.flow import InstalledAppFlow

from .config import settings
from .errors import AuthorizationLost, ConfigurationError
from .logs import json_log

SCOPES: tuple[str, ...] = (
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
)


class GoogleAuthorizer:
    """
    Delegated-consent credentials for the Sheets + Drive adapters.

    Order of attempts:
    - credentials cached on this instance
    - token file on disk
    - silent refresh with the stored refresh token
    - interactive consent (only when the caller says the user asked for it)
    """

    def __init__(
        self,
        client_secrets_path: Optional[str] = None,
        token_path: Optional[str] = None,
        scopes: Sequence[str] = SCOPES,
    ):
        self.client_secrets_path = client_secrets_path if client_secrets_path is not None else settings.google_client_secrets_path
        self.token_path = token_path or settings.google_token_path
        self.scopes = list(scopes)
        self._creds: Optional[google.oauth2.credentials.Credentials] = None

    def _load_token(self) -> Optional[google.oauth2.credentials.Credentials]:
        if not self.token_path or not os.path.exists(self.token_path):
            return None
        try:
            return google.oauth2.credentials.Credentials.from_authorized_user_file(self.token_path, self.scopes)
        except (ValueError, OSError) as ex:
            json_log("warning", "auth.token_file.invalid", path=self.token_path, error=str(ex))
            return None

    def _store(self, creds: google.oauth2.credentials.Credentials) -> None:
        self._creds = creds
        if not self.token_path:
            return
        try:
            with open(self.token_path, "w", encoding="utf-8") as f:
                f.write(creds.to_json())
        except OSError as ex:
            # Token still works for this process; the next start just re-consents.
            json_log("warning", "auth.token_file.write_failed", path=self.token_path, error=str(ex))

    def _silent(self) -> Optional[google.oauth2.credentials.Credentials]:
        creds = self._creds or self._load_token()
        if creds is None:
            return None
        if creds.valid:
            self._creds = creds
            return creds
        if creds.expired and creds.refresh_token:
            try:
                creds.refresh(google.auth.transport.requests.Request())
            except (RefreshError, TransportError) as ex:
                json_log("warning", "auth.refresh_failed", error=str(ex))
                return None
            self._store(creds)
            return creds
        return None

    def _consent(self) -> google.oauth2.credentials.Credentials:
        path = self.client_secrets_path
        if not path or not os.path.exists(path):
            raise ConfigurationError("GOOGLE_CLIENT_SECRETS_PATH is not set or does not exist")
        flow = InstalledAppFlow.from_client_secrets_file(path, scopes=self.scopes)
        creds = flow.run_local_server(port=0, prompt="select_account")
        self._store(creds)
        json_log("info", "auth.consent_granted")
        return creds

    def credentials(self, *, interactive: bool = False) -> google.oauth2.credentials.Credentials:
        creds = self._silent()
        if creds is not None:
            return creds
        if not interactive:
            raise AuthorizationLost("authorization required: run a manual sync to sign in")
        return self._consent()

    def invalidate(self) -> None:
        """Forget cached credentials after the remote side rejected them."""
        self._creds = None
