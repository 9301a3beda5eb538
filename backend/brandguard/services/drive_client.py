from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Callable

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from brandguard.db.models import DriveToken

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

DRIVE_SCOPES = [
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/drive.file",
]

FILE_FIELDS = "id,name,mimeType,webViewLink,size,modifiedTime"
LIST_PAGE_SIZE = 100


class DriveAccessError(RuntimeError):
    def __init__(self, message: str, *, auth_expired: bool = False, status_code: int | None = None) -> None:
        super().__init__(message)
        self.auth_expired = auth_expired
        self.status_code = status_code


def _wrap_error(action: str, exc: Exception) -> DriveAccessError:
    if isinstance(exc, RefreshError):
        return DriveAccessError(f"Failed to {action}: invalid_grant", auth_expired=True, status_code=401)
    if isinstance(exc, HttpError):
        status_code = getattr(exc.resp, "status", None)
        return DriveAccessError(
            f"Failed to {action}: {exc}",
            auth_expired=status_code == 401,
            status_code=status_code,
        )
    return DriveAccessError(f"Failed to {action}: {exc}")


class DriveClient:
    """Thin Drive v3 wrapper bound to one user's OAuth credentials."""

    def __init__(self, credentials: Credentials) -> None:
        self.credentials = credentials
        self._service = build("drive", "v3", credentials=credentials, cache_discovery=False)

    def get_file(self, file_id: str) -> dict[str, Any]:
        try:
            return self._service.files().get(fileId=file_id, fields=FILE_FIELDS, supportsAllDrives=True).execute()
        except (HttpError, RefreshError) as exc:
            raise _wrap_error("get file metadata", exc) from exc

    def export(self, file_id: str, mime_type: str) -> str:
        try:
            data = self._service.files().export(fileId=file_id, mimeType=mime_type).execute()
        except (HttpError, RefreshError) as exc:
            raise _wrap_error(f"export file as {mime_type}", exc) from exc
        return data.decode("utf-8", errors="replace") if isinstance(data, bytes) else str(data or "")

    def download(self, file_id: str) -> bytes:
        try:
            return self._service.files().get_media(fileId=file_id, supportsAllDrives=True).execute()
        except (HttpError, RefreshError) as exc:
            raise _wrap_error("download file", exc) from exc

    def list_folder(self, folder_id: str) -> list[dict[str, Any]]:
        files: list[dict[str, Any]] = []
        page_token: str | None = None
        try:
            while True:
                response = (
                    self._service.files()
                    .list(
                        q=f"'{folder_id}' in parents and trashed=false",
                        fields=f"nextPageToken,files({FILE_FIELDS})",
                        pageSize=LIST_PAGE_SIZE,
                        pageToken=page_token,
                        supportsAllDrives=True,
                        includeItemsFromAllDrives=True,
                    )
                    .execute()
                )
                files.extend(response.get("files", []))
                page_token = response.get("nextPageToken")
                if not page_token:
                    return files
        except (HttpError, RefreshError) as exc:
            raise _wrap_error("list folder", exc) from exc

    @property
    def access_token(self) -> str | None:
        return self.credentials.token

    @property
    def expires_at(self) -> datetime | None:
        return self.credentials.expiry


def build_credentials(token: DriveToken) -> Credentials:
    credentials = Credentials(
        token=token.access_token,
        refresh_token=token.refresh_token,
        client_id=GOOGLE_CLIENT_ID or None,
        client_secret=GOOGLE_CLIENT_SECRET or None,
        token_uri=GOOGLE_TOKEN_URI,
        scopes=DRIVE_SCOPES,
    )
    credentials.expiry = token.expires_at
    if credentials.expired and credentials.refresh_token:
        try:
            credentials.refresh(Request())
        except RefreshError as exc:
            raise _wrap_error("refresh Google Drive access", exc) from exc
    return credentials


def create_drive_client(token: DriveToken) -> DriveClient:
    return DriveClient(build_credentials(token))


DriveClientFactory = Callable[[DriveToken], DriveClient]
