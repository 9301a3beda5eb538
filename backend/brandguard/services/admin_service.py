from __future__ import annotations

from brandguard.core.schemas import CamelModel
from brandguard.db.database import SessionLocal
from brandguard.db.models import UploadedFile
from brandguard.repositories.analysis_repository import AnalysisRepository
from brandguard.repositories.file_repository import FileRepository
from brandguard.repositories.user_repository import UserRepository
from brandguard.services.files_service import AnalysisBrief, UploadedFileInfo, to_analysis_brief, to_file_info

RECENT_ACTIVITY_LIMIT = 10

_DOCUMENT_MARKERS = ("word", "document", "text/", "rtf", "presentation", "spreadsheet", "json", "xml")


class DashboardStats(CamelModel):
    total_users: int
    files_processed: int
    storage_used: int
    recent_activity: list[AnalysisBrief]


class DashboardResponse(CamelModel):
    stats: DashboardStats


class FileTypeCounts(CamelModel):
    images: int = 0
    pdfs: int = 0
    documents: int = 0
    other: int = 0


class AdminFilesStats(CamelModel):
    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    total_size: int
    types: FileTypeCounts


class AdminFileInfo(UploadedFileInfo):
    user_id: str


class AdminFilesResponse(CamelModel):
    files: list[AdminFileInfo]
    stats: AdminFilesStats


class TestEmailRequest(CamelModel):
    test_email: str | None = None


class TestEmailResponse(CamelModel):
    success: bool
    message: str


def file_kind(mime_type: str) -> str:
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return "images"
    if mime == "application/pdf":
        return "pdfs"
    if any(marker in mime for marker in _DOCUMENT_MARKERS):
        return "documents"
    return "other"


def dashboard() -> DashboardResponse:
    with SessionLocal() as session:
        files = FileRepository(session).list_all()
        stats = DashboardStats(
            total_users=UserRepository(session).count(),
            files_processed=sum(1 for item in files if item.status == "completed"),
            storage_used=sum(item.file_size for item in files),
            recent_activity=[to_analysis_brief(row) for row in AnalysisRepository(session).recent(RECENT_ACTIVITY_LIMIT)],
        )
    return DashboardResponse(stats=stats)


def _files_stats(files: list[UploadedFile]) -> AdminFilesStats:
    by_status = {status: 0 for status in ("pending", "processing", "completed", "failed")}
    types = FileTypeCounts()
    for item in files:
        if item.status in by_status:
            by_status[item.status] += 1
        kind = file_kind(item.mime_type)
        setattr(types, kind, getattr(types, kind) + 1)
    return AdminFilesStats(
        total=len(files),
        total_size=sum(item.file_size for item in files),
        types=types,
        **by_status,
    )


def list_all_files() -> AdminFilesResponse:
    with SessionLocal() as session:
        repository = FileRepository(session)
        files = repository.list_all()
        results = repository.processing_results_for([item.id for item in files])
        infos = [
            AdminFileInfo(**to_file_info(item, results.get(item.id)).model_dump(), user_id=item.user_id)
            for item in files
        ]
        stats = _files_stats(files)
    return AdminFilesResponse(files=infos, stats=stats)
