import re
import time
import logging
from typing import Dict, Optional

import httpx

from lib.config import BridgeConfig
from lib.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

MAX_FOLDER_NAME_LENGTH = 100
# Refresh this many seconds before Google says the token expires
TOKEN_EXPIRY_MARGIN = 60

_FORBIDDEN_CHARS = re.compile(r'[\\/:*?"<>|#%]')
_WHITESPACE = re.compile(r'\s+')


def sanitize_folder_name(name: str) -> str:
    """
    Replace characters Drive/desktop sync clients choke on with spaces,
    collapse whitespace and cap the length.
    """
    cleaned = _FORBIDDEN_CHARS.sub(' ', name or '')
    cleaned = _WHITESPACE.sub(' ', cleaned).strip()
    return cleaned[:MAX_FOLDER_NAME_LENGTH].rstrip()


class DriveFolderProvisioner:
    """
    Creates Drive folders. Exchanges the refresh token for an access token
    and reuses it until shortly before it expires.
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        refresh_token: Optional[str],
        parent_folder_id: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.parent_folder_id = parent_folder_id
        self.client = client or httpx.Client(timeout=timeout)
        self._access_token: Optional[str] = None
        self._expires_at: float = 0.0

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "DriveFolderProvisioner":
        return cls(
            config.google_client_id,
            config.google_client_secret,
            config.google_refresh_token,
            parent_folder_id=config.drive_parent_folder_id,
            timeout=config.http_timeout,
        )

    def close(self):
        self.client.close()

    def get_access_token(self) -> str:
        """
        Exchanges the refresh token for a new access token when the cached
        one is missing or about to expire.
        """
        if self._access_token and time.time() < self._expires_at:
            return self._access_token

        if not all([self.client_id, self.client_secret, self.refresh_token]):
            raise ConfigurationError("Missing Google OAuth credentials in environment variables.")

        try:
            response = self.client.post(GOOGLE_TOKEN_URL, data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            })
        except httpx.HTTPError as e:
            raise UpstreamError("Google token exchange", body=str(e)) from e

        if not response.is_success:
            raise UpstreamError("Google token exchange", response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Google token exchange", response.status_code, response.text) from e
        if not isinstance(data, dict) or not data.get("access_token"):
            raise UpstreamError("Google token exchange", response.status_code, "no access_token in response")

        try:
            expires_in = int(data.get("expires_in", 3600))
        except (TypeError, ValueError) as e:
            raise UpstreamError("Google token exchange", response.status_code, f"bad expires_in: {data.get('expires_in')}") from e
        self._access_token = data["access_token"]
        self._expires_at = time.time() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        return self._access_token

    def create_folder(self, name: str) -> Dict[str, str]:
        """Create a folder and return {"url", "id", "name"}."""
        token = self.get_access_token()
        body = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if self.parent_folder_id:
            body["parents"] = [self.parent_folder_id]

        try:
            response = self.client.post(
                DRIVE_FILES_URL,
                headers={"Authorization": f"Bearer {token}"},
                params={"fields": "id,name,webViewLink", "supportsAllDrives": "true"},
                json=body,
            )
        except httpx.HTTPError as e:
            raise UpstreamError("Drive create folder", body=str(e)) from e

        if not response.is_success:
            raise UpstreamError("Drive create folder", response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Drive create folder", response.status_code, response.text) from e
        folder_id = data.get("id") if isinstance(data, dict) else None
        if not folder_id:
            raise UpstreamError("Drive create folder", response.status_code, "no id in response")

        logger.info(f"Created Drive folder '{name}' ({folder_id})")
        return {
            "url": data.get("webViewLink") or f"https://drive.google.com/drive/folders/{folder_id}",
            "id": folder_id,
            "name": data.get("name", name),
        }
