from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from brandguard.db.models import FileProcessingResult, UploadedFile

_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"processing", "failed"},
    "processing": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FileRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, uploaded: UploadedFile) -> UploadedFile:
        uploaded.status = "pending"
        self.session.add(uploaded)
        self.session.commit()
        self.session.refresh(uploaded)
        return uploaded

    def get_by_id(self, file_id: str) -> UploadedFile | None:
        return self.session.get(UploadedFile, file_id)

    def update_status(self, file_id: str, next_status: str) -> UploadedFile:
        uploaded = self.get_by_id(file_id)
        if uploaded is None:
            raise ValueError("File not found")
        if next_status != uploaded.status:
            allowed = _ALLOWED_TRANSITIONS.get(uploaded.status, set())
            if next_status not in allowed:
                raise ValueError(f"Invalid status transition: {uploaded.status} -> {next_status}")
        uploaded.status = next_status
        uploaded.updated_at = _now_utc()
        self.session.commit()
        return uploaded

    def list_by_user(self, user_id: str) -> list[UploadedFile]:
        return (
            self.session.query(UploadedFile)
            .filter(UploadedFile.user_id == user_id)
            .order_by(UploadedFile.uploaded_at.desc())
            .all()
        )

    def list_all(self) -> list[UploadedFile]:
        return self.session.query(UploadedFile).order_by(UploadedFile.uploaded_at.desc()).all()

    def save_processing_result(self, result: FileProcessingResult) -> FileProcessingResult:
        self.session.add(result)
        self.session.commit()
        self.session.refresh(result)
        return result

    def get_processing_result(self, file_id: str) -> FileProcessingResult | None:
        return self.session.query(FileProcessingResult).filter(FileProcessingResult.file_id == file_id).first()

    def get_with_results(self, file_id: str) -> tuple[UploadedFile, FileProcessingResult | None] | None:
        uploaded = self.get_by_id(file_id)
        if uploaded is None:
            return None
        return uploaded, self.get_processing_result(file_id)

    def processing_results_for(self, file_ids: list[str]) -> dict[str, FileProcessingResult]:
        if not file_ids:
            return {}
        rows = self.session.query(FileProcessingResult).filter(FileProcessingResult.file_id.in_(file_ids)).all()
        return {row.file_id: row for row in rows}
