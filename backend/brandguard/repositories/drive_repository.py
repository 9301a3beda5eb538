from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from brandguard.db.models import DriveFile, DriveFolder, DriveToken


def _now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DriveRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    # folders

    def get_folder(self, folder_id: str) -> DriveFolder | None:
        return self.session.get(DriveFolder, folder_id)

    def list_folders_by_user(self, user_id: str) -> list[DriveFolder]:
        return (
            self.session.query(DriveFolder)
            .filter(DriveFolder.connected_by == user_id)
            .order_by(DriveFolder.created_at.desc())
            .all()
        )

    def get_active_folder(self) -> DriveFolder | None:
        return self.session.query(DriveFolder).filter(DriveFolder.is_active.is_(True)).first()

    def get_folder_by_drive_id(self, drive_folder_id: str) -> DriveFolder | None:
        return self.session.query(DriveFolder).filter(DriveFolder.drive_folder_id == drive_folder_id).first()

    def save_folder(self, *, drive_folder_id: str, name: str, web_view_link: str | None, shared: bool, connected_by: str) -> DriveFolder:
        folder = self.get_folder_by_drive_id(drive_folder_id)
        now = _now_utc()
        if folder is None:
            folder = DriveFolder(
                id=str(uuid.uuid4()),
                drive_folder_id=drive_folder_id,
                is_active=False,
                created_at=now,
            )
            self.session.add(folder)
        folder.name = name
        folder.web_view_link = web_view_link
        folder.shared = shared
        folder.connected_by = connected_by
        folder.updated_at = now
        self.session.commit()
        self.session.refresh(folder)
        return folder

    def deactivate_all(self, *, keep: str | None = None) -> None:
        query = self.session.query(DriveFolder).filter(DriveFolder.is_active.is_(True))
        if keep is not None:
            query = query.filter(DriveFolder.id != keep)
        query.update(
            {DriveFolder.is_active: False, DriveFolder.updated_at: _now_utc()},
            synchronize_session=False,
        )

    def activate_folder(self, folder_id: str, user_id: str) -> DriveFolder | None:
        """Make ``folder_id`` the single active folder.

        Deactivation and activation commit together; nothing changes when the
        folder does not belong to ``user_id``.
        """
        folder = (
            self.session.query(DriveFolder)
            .filter(DriveFolder.id == folder_id, DriveFolder.connected_by == user_id)
            .first()
        )
        if folder is None:
            return None
        self.deactivate_all(keep=folder.id)
        folder.is_active = True
        folder.updated_at = _now_utc()
        self.session.commit()
        self.session.refresh(folder)
        return folder

    # files

    def save_files(self, folder_id: str, files: list[dict]) -> list[DriveFile]:
        saved: list[DriveFile] = []
        now = _now_utc()
        for item in files:
            row = self.session.query(DriveFile).filter(DriveFile.drive_file_id == item["drive_file_id"]).first()
            if row is None:
                row = DriveFile(id=str(uuid.uuid4()), drive_file_id=item["drive_file_id"])
                self.session.add(row)
            row.drive_folder_id = folder_id
            row.name = item["name"]
            row.mime_type = item["mime_type"]
            row.size_bytes = item.get("size_bytes")
            row.modified_time = item.get("modified_time")
            row.web_view_link = item.get("web_view_link")
            row.download_url = item.get("download_url")
            row.content = item.get("content")
            row.last_synced = now
            saved.append(row)
        self.session.commit()
        return saved

    def remove_missing_files(self, folder_id: str, present_drive_file_ids: set[str]) -> int:
        """Delete the folder's rows for files no longer listed in Drive."""
        query = self.session.query(DriveFile).filter(DriveFile.drive_folder_id == folder_id)
        if present_drive_file_ids:
            query = query.filter(DriveFile.drive_file_id.not_in(present_drive_file_ids))
        removed = query.delete(synchronize_session=False)
        self.session.commit()
        return removed

    def list_files_by_folder(self, folder_id: str) -> list[DriveFile]:
        return (
            self.session.query(DriveFile)
            .filter(DriveFile.drive_folder_id == folder_id)
            .order_by(DriveFile.name.asc())
            .all()
        )

    def brand_files(self) -> list[DriveFile]:
        active = self.get_active_folder()
        if active is None:
            return []
        return self.list_files_by_folder(active.id)

    # tokens

    def get_token(self, user_id: str, provider: str = "google") -> DriveToken | None:
        return (
            self.session.query(DriveToken)
            .filter(DriveToken.user_id == user_id, DriveToken.provider == provider)
            .first()
        )

    def upsert_token(
        self,
        user_id: str,
        *,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None,
        provider: str = "google",
    ) -> DriveToken:
        token = self.get_token(user_id, provider)
        if token is None:
            token = DriveToken(id=str(uuid.uuid4()), user_id=user_id, provider=provider)
            self.session.add(token)
        token.access_token = access_token
        # Google omits the refresh token on re-consent; keep the stored one.
        if refresh_token:
            token.refresh_token = refresh_token
        token.expires_at = expires_at
        token.updated_at = _now_utc()
        self.session.commit()
        self.session.refresh(token)
        return token
