from __future__ import annotations

import os
import time
from pathlib import Path
from urllib.parse import quote

from jose import JWTError, jwt

from brandguard.core.schemas import CamelModel
from brandguard.db.database import SessionLocal
from brandguard.db.models import BrandAnalysisResult, FileProcessingResult, UploadedFile
from brandguard.repositories.analysis_repository import AnalysisRepository
from brandguard.repositories.file_repository import FileRepository
from brandguard.services.auth_service import UserRecord

APP_URL = (os.getenv("APP_URL") or os.getenv("NEXT_PUBLIC_APP_URL", "http://localhost:3000")).rstrip("/")
API_URL = os.getenv("API_URL", APP_URL).rstrip("/")
DOWNLOAD_URL_TTL_SECONDS = int(os.getenv("DOWNLOAD_URL_TTL_SECONDS", "3600"))
DOWNLOAD_TOKEN_SECRET = os.getenv("DOWNLOAD_TOKEN_SECRET") or os.getenv("SUPABASE_JWT_SECRET", "dev-secret-change-me")
DOWNLOAD_TOKEN_ALGORITHM = "HS256"


def _iso(value) -> str | None:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ") if value is not None else None


class ProcessingResultInfo(CamelModel):
    word_count: int
    character_count: int
    page_count: int | None = None
    language: str | None = None
    colors: list[str] = []
    font_families: list[str] = []
    font_sizes: list[str] = []
    extracted_images: int | None = None
    confidence_score: float | None = None
    processing_time_ms: int
    processed_at: str | None = None


class ProcessingResultDetail(ProcessingResultInfo):
    extracted_text: str
    metadata: dict | None = None


class UploadedFileInfo(CamelModel):
    id: str
    original_filename: str
    file_type: str
    file_size: int
    mime_type: str
    status: str
    uploaded_at: str | None = None
    processing_result: ProcessingResultInfo | None = None


class AnalysisBrief(CamelModel):
    id: str
    compliance_score: int
    total_issues: int
    high_severity_issues: int
    medium_severity_issues: int
    low_severity_issues: int
    rules_applied: int
    analyzed_at: str | None = None


class FilesListResponse(CamelModel):
    files: list[UploadedFileInfo]
    total: int


class FileDetailResponse(CamelModel):
    file: UploadedFileInfo
    processing_result: ProcessingResultDetail | None = None
    latest_analysis: AnalysisBrief | None = None
    download_url: str | None = None


def to_processing_info(result: FileProcessingResult) -> ProcessingResultInfo:
    return ProcessingResultInfo(
        word_count=result.word_count,
        character_count=result.character_count,
        page_count=result.page_count,
        language=result.language,
        colors=result.colors or [],
        font_families=result.font_families or [],
        font_sizes=result.font_sizes or [],
        extracted_images=result.extracted_images,
        confidence_score=result.confidence_score,
        processing_time_ms=result.processing_time_ms,
        processed_at=_iso(result.processed_at),
    )


def to_file_info(uploaded: UploadedFile, result: FileProcessingResult | None = None) -> UploadedFileInfo:
    return UploadedFileInfo(
        id=uploaded.id,
        original_filename=uploaded.original_filename,
        file_type=uploaded.file_type,
        file_size=uploaded.file_size,
        mime_type=uploaded.mime_type,
        status=uploaded.status,
        uploaded_at=_iso(uploaded.uploaded_at),
        processing_result=to_processing_info(result) if result is not None else None,
    )


def to_analysis_brief(analysis: BrandAnalysisResult) -> AnalysisBrief:
    return AnalysisBrief(
        id=analysis.id,
        compliance_score=analysis.compliance_score,
        total_issues=analysis.total_issues,
        high_severity_issues=analysis.high_severity_issues,
        medium_severity_issues=analysis.medium_severity_issues,
        low_severity_issues=analysis.low_severity_issues,
        rules_applied=analysis.rules_applied,
        analyzed_at=_iso(analysis.analyzed_at),
    )


def generate_file_download_url(file_id: str, expires_in: int = DOWNLOAD_URL_TTL_SECONDS) -> str:
    now = int(time.time())
    token = jwt.encode(
        {"sub": file_id, "purpose": "download", "iat": now, "exp": now + expires_in},
        DOWNLOAD_TOKEN_SECRET,
        algorithm=DOWNLOAD_TOKEN_ALGORITHM,
    )
    return f"{API_URL}/api/user/files/{file_id}/download?token={quote(token)}"


def verify_download_token(file_id: str, token: str) -> bool:
    try:
        payload = jwt.decode(token, DOWNLOAD_TOKEN_SECRET, algorithms=[DOWNLOAD_TOKEN_ALGORITHM])
    except JWTError:
        return False
    return payload.get("sub") == file_id and payload.get("purpose") == "download"


def _load_owned_file(session, current_user: UserRecord, file_id: str) -> UploadedFile:
    uploaded = FileRepository(session).get_by_id(file_id)
    if uploaded is None:
        raise ValueError("File not found")
    if uploaded.user_id != current_user.id and not current_user.is_admin:
        raise PermissionError("Access denied")
    return uploaded


def list_user_files(current_user: UserRecord) -> FilesListResponse:
    with SessionLocal() as session:
        repository = FileRepository(session)
        files = repository.list_by_user(current_user.id)
        results = repository.processing_results_for([item.id for item in files])
        infos = [to_file_info(item, results.get(item.id)) for item in files]
    return FilesListResponse(files=infos, total=len(infos))


def get_file_detail(current_user: UserRecord, file_id: str) -> FileDetailResponse:
    with SessionLocal() as session:
        uploaded = _load_owned_file(session, current_user, file_id)
        result = FileRepository(session).get_processing_result(file_id)
        analysis = AnalysisRepository(session).get_by_file_id(file_id)

    detail = None
    if result is not None:
        detail = ProcessingResultDetail(
            **to_processing_info(result).model_dump(),
            extracted_text=result.extracted_text,
            metadata=result.metadata_payload,
        )
    return FileDetailResponse(
        file=to_file_info(uploaded, result),
        processing_result=detail,
        latest_analysis=to_analysis_brief(analysis) if analysis is not None else None,
        download_url=generate_file_download_url(file_id),
    )


def resolve_download(file_id: str, token: str) -> tuple[Path, str, str]:
    if not verify_download_token(file_id, token):
        raise PermissionError("Invalid or expired download link")
    with SessionLocal() as session:
        uploaded = FileRepository(session).get_by_id(file_id)
    if uploaded is None:
        raise ValueError("File not found")
    path = Path(uploaded.storage_path)
    if not path.is_file():
        raise ValueError("File not found")
    return path, uploaded.original_filename, uploaded.mime_type
