from __future__ import annotations

import os
from typing import Any

from brandguard.core.observability import log_event
from brandguard.core.schemas import CamelModel
from brandguard.db.database import SessionLocal
from brandguard.db.models import DriveFolder, DriveToken
from brandguard.repositories.drive_repository import DriveRepository
from brandguard.services import oauth_service
from brandguard.services.auth_service import UserRecord
from brandguard.services.brand_file_extractor import extract_content, is_supported_drive_mime
from brandguard.services.drive_client import DriveAccessError, DriveClient, DriveClientFactory
from brandguard.services.extraction import ExtractionError
from brandguard.services.oauth_service import GoogleTokens, calculate_expires_at

BRAND_FOLDER_NAME = os.getenv("BRAND_FOLDER_NAME", "Brand Guidelines Test")
FOLDER_MIME = "application/vnd.google-apps.folder"


class DriveLookupError(Exception):
    """A Drive precondition failed; carries the JSON body for the client."""

    def __init__(self, status: int, error: str, diagnostic: str, **extra: Any) -> None:
        super().__init__(error)
        self.status = status
        self.error = error
        self.diagnostic = diagnostic
        self.extra = extra

    def body(self) -> dict[str, Any]:
        return {"error": self.error, "diagnostic": self.diagnostic, **self.extra}


class DriveFolderInfo(CamelModel):
    id: str
    drive_folder_id: str
    name: str
    web_view_link: str | None = None
    shared: bool = False
    is_active: bool = False
    created_at: str | None = None


class DriveFileInfo(CamelModel):
    id: str
    name: str
    mime_type: str
    web_view_link: str | None = None
    size: int | None = None
    modified_time: str | None = None


class FoldersResponse(CamelModel):
    folders: list[DriveFolderInfo]


class ActivateFolderRequest(CamelModel):
    folder_id: str | None = None


class ActivateFolderResponse(CamelModel):
    success: bool
    folder: DriveFolderInfo


class RegisterFolderRequest(CamelModel):
    drive_folder_id: str | None = None


class BrandFilesResponse(CamelModel):
    files: list[DriveFileInfo]
    folder: DriveFolderInfo


class SyncResponse(CamelModel):
    folder: DriveFolderInfo
    synced: int
    skipped: list[str]
    removed: int = 0


def to_folder_info(folder: DriveFolder) -> DriveFolderInfo:
    return DriveFolderInfo(
        id=folder.id,
        drive_folder_id=folder.drive_folder_id,
        name=folder.name,
        web_view_link=folder.web_view_link,
        shared=folder.shared,
        is_active=folder.is_active,
        created_at=folder.created_at.strftime("%Y-%m-%dT%H:%M:%SZ") if folder.created_at else None,
    )


def to_file_info(item: dict[str, Any]) -> DriveFileInfo:
    size = item.get("size")
    return DriveFileInfo(
        id=item["id"],
        name=item.get("name", ""),
        mime_type=item.get("mimeType", ""),
        web_view_link=item.get("webViewLink"),
        size=int(size) if size is not None else None,
        modified_time=item.get("modifiedTime"),
    )


def save_tokens(user_id: str, tokens: GoogleTokens) -> DriveToken:
    with SessionLocal() as session:
        token = DriveRepository(session).upsert_token(
            user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=calculate_expires_at(tokens.expires_in),
        )
    log_event("drive_tokens_saved", user_id=user_id, has_refresh_token=bool(tokens.refresh_token))
    return token


def drive_for_user(user_id: str, factory: DriveClientFactory) -> DriveClient | None:
    with SessionLocal() as session:
        token = DriveRepository(session).get_token(user_id)
    if token is None:
        return None
    drive = factory(token)
    if drive.access_token and drive.access_token != token.access_token:
        persist_refreshed_token(user_id, drive)
    return drive


def persist_refreshed_token(user_id: str, drive: DriveClient) -> None:
    with SessionLocal() as session:
        DriveRepository(session).upsert_token(
            user_id,
            access_token=drive.access_token,
            refresh_token=None,
            expires_at=drive.expires_at,
        )
    log_event("drive_token_refreshed", user_id=user_id)


def _require_drive(user_id: str, factory: DriveClientFactory) -> DriveClient:
    try:
        drive = drive_for_user(user_id, factory)
    except DriveAccessError as exc:
        # Building the client refreshes an expired access token.
        if exc.auth_expired:
            raise _auth_expired(exc) from exc
        raise
    if drive is None:
        raise DriveLookupError(
            401,
            "Google Drive tokens not found. Please reconnect Google Drive.",
            "MISSING_DRIVE_TOKENS",
        )
    return drive


def _auth_expired(exc: DriveAccessError) -> DriveLookupError:
    return DriveLookupError(
        401,
        "Google Drive authorization expired. Please reconnect Google Drive.",
        "DRIVE_AUTH_EXPIRED",
        details=str(exc),
    )


def list_folders(current_user: UserRecord) -> FoldersResponse:
    with SessionLocal() as session:
        folders = DriveRepository(session).list_folders_by_user(current_user.id)
        return FoldersResponse(folders=[to_folder_info(folder) for folder in folders])


def activate_folder(current_user: UserRecord, folder_id: str) -> ActivateFolderResponse:
    with SessionLocal() as session:
        folder = DriveRepository(session).activate_folder(folder_id, current_user.id)
        if folder is None:
            raise ValueError("Folder not found or not owned by user")
        info = to_folder_info(folder)
    log_event("drive_folder_activated", user_id=current_user.id, folder_id=folder_id)
    return ActivateFolderResponse(success=True, folder=info)


def register_folder(current_user: UserRecord, drive_folder_id: str, factory: DriveClientFactory) -> DriveFolderInfo:
    with SessionLocal() as session:
        existing = DriveRepository(session).get_folder_by_drive_id(drive_folder_id)
    if existing is not None and existing.connected_by != current_user.id:
        raise DriveLookupError(
            409,
            "This Drive folder is already connected by another user",
            "FOLDER_ALREADY_CONNECTED",
        )

    drive = _require_drive(current_user.id, factory)
    try:
        metadata = drive.get_file(drive_folder_id)
    except DriveAccessError as exc:
        if exc.auth_expired:
            raise _auth_expired(exc) from exc
        raise DriveLookupError(404, "Folder not found in Google Drive", "FOLDER_NOT_FOUND", details=str(exc)) from exc
    if metadata.get("mimeType") != FOLDER_MIME:
        raise ValueError("The selected Drive item is not a folder")

    with SessionLocal() as session:
        repository = DriveRepository(session)
        folder = repository.save_folder(
            drive_folder_id=drive_folder_id,
            name=metadata.get("name", "Untitled folder"),
            web_view_link=metadata.get("webViewLink"),
            shared=bool(metadata.get("shared", False)),
            connected_by=current_user.id,
        )
        folder = repository.activate_folder(folder.id, current_user.id)
        info = to_folder_info(folder)
    log_event("drive_folder_registered", user_id=current_user.id, folder_id=info.id)
    return info


def sync_folder(current_user: UserRecord, folder_id: str, factory: DriveClientFactory) -> SyncResponse:
    with SessionLocal() as session:
        folder = DriveRepository(session).get_folder(folder_id)
    if folder is None or folder.connected_by != current_user.id:
        raise ValueError("Folder not found or not owned by user")

    drive = _require_drive(current_user.id, factory)
    try:
        listing = drive.list_folder(folder.drive_folder_id)
    except DriveAccessError as exc:
        if exc.auth_expired:
            raise _auth_expired(exc) from exc
        raise

    rows: list[dict[str, Any]] = []
    skipped: list[str] = []
    for item in listing:
        if not is_supported_drive_mime(item.get("mimeType", "")):
            skipped.append(item.get("name", item["id"]))
            continue
        try:
            content = extract_content(drive, item)
        except (ExtractionError, DriveAccessError) as exc:
            log_event("drive_file_sync_failed", file_id=item["id"], error=str(exc))
            skipped.append(item.get("name", item["id"]))
            continue
        rows.append(
            {
                "drive_file_id": item["id"],
                "name": item.get("name", ""),
                "mime_type": item.get("mimeType", ""),
                "size_bytes": int(item["size"]) if item.get("size") else None,
                "modified_time": item.get("modifiedTime"),
                "web_view_link": item.get("webViewLink"),
                "content": content,
            }
        )

    with SessionLocal() as session:
        repository = DriveRepository(session)
        repository.save_files(folder.id, rows)
        removed = repository.remove_missing_files(folder.id, {item["id"] for item in listing})
    log_event(
        "drive_folder_synced",
        folder_id=folder.id,
        synced=len(rows),
        skipped=len(skipped),
        removed=removed,
    )
    return SyncResponse(folder=to_folder_info(folder), synced=len(rows), skipped=skipped, removed=removed)


def _resolve_brand_folder(folders: list[DriveFolder]) -> DriveFolder | None:
    for folder in folders:
        if folder.name == BRAND_FOLDER_NAME:
            return folder
    for folder in folders:
        if folder.is_active:
            return folder
    return None


def list_brand_files(current_user: UserRecord, factory: DriveClientFactory) -> BrandFilesResponse:
    with SessionLocal() as session:
        folders = DriveRepository(session).list_folders_by_user(current_user.id)
    if not folders:
        raise DriveLookupError(
            404,
            "No Google Drive folders connected",
            "NO_DRIVE_CONNECTION",
            suggestion="Connect Google Drive and register a brand guidelines folder.",
        )

    folder = _resolve_brand_folder(folders)
    if folder is None:
        raise DriveLookupError(
            404,
            f'Brand guidelines folder "{BRAND_FOLDER_NAME}" not found',
            "MISSING_BRAND_FOLDER",
            availableFolders=[item.name for item in folders],
            suggestion=f'Create a folder named "{BRAND_FOLDER_NAME}" or activate one of your folders.',
        )

    drive = _require_drive(current_user.id, factory)
    try:
        listing = drive.list_folder(folder.drive_folder_id)
    except DriveAccessError as exc:
        if exc.auth_expired:
            raise _auth_expired(exc) from exc
        raise

    files = [to_file_info(item) for item in listing if is_supported_drive_mime(item.get("mimeType", ""))]
    return BrandFilesResponse(files=files, folder=to_folder_info(folder))


def diagnostic(current_user: UserRecord) -> dict[str, Any]:
    with SessionLocal() as session:
        repository = DriveRepository(session)
        folders = repository.list_folders_by_user(current_user.id)
        token = repository.get_token(current_user.id)

    google_api = oauth_service.config_status()
    brand_folder = _resolve_brand_folder(folders)
    recommendations: list[dict[str, str]] = []

    if not google_api["clientIdConfigured"] or not google_api["clientSecretConfigured"]:
        recommendations.append(
            {
                "type": "error",
                "message": "Google OAuth client credentials are not configured on the server.",
                "action": "Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.",
            }
        )
    if not google_api["redirectUriConfigured"]:
        recommendations.append(
            {
                "type": "warning",
                "message": "GOOGLE_REDIRECT_URI is not set.",
                "action": "Set GOOGLE_REDIRECT_URI to the OAuth callback URL registered with Google.",
            }
        )
    if token is None:
        recommendations.append(
            {
                "type": "error",
                "message": "Google Drive is not connected for this account.",
                "action": "Connect Google Drive from the settings page.",
            }
        )
    if not folders:
        recommendations.append(
            {
                "type": "warning",
                "message": "No Drive folders are registered.",
                "action": "Register the folder that holds your brand guidelines.",
            }
        )
    elif brand_folder is None:
        recommendations.append(
            {
                "type": "info",
                "message": f'No folder named "{BRAND_FOLDER_NAME}" and no active folder.',
                "action": "Activate one of your folders or create the brand guidelines folder.",
            }
        )
    if not recommendations:
        recommendations.append(
            {
                "type": "success",
                "message": "Google Drive is connected and a brand guidelines folder is available.",
                "action": "No action needed.",
            }
        )

    return {
        "user": {"id": current_user.id, "email": current_user.email, "role": current_user.role},
        "googleApi": google_api,
        "drive": {
            "foldersConnected": len(folders),
            "tokenExists": token is not None,
            "brandGuidelinesFolder": to_folder_info(brand_folder).model_dump(by_alias=True) if brand_folder else None,
            "availableFolders": [folder.name for folder in folders],
        },
        "recommendations": recommendations,
    }
