from __future__ import annotations

import asyncio
import os
import re
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

from fastapi import UploadFile
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from brandguard.core.observability import log_event
from brandguard.core.schemas import CamelModel
from brandguard.db.database import SessionLocal
from brandguard.db.models import FileProcessingResult, UploadedFile
from brandguard.repositories.file_repository import FileRepository
from brandguard.services.auth_service import UserRecord
from brandguard.services.extraction import (
    EXTENSION_MIME_TYPES,
    MIME_HANDLERS,
    FileParsingResult,
    parse_file,
    resolve_mime_type,
)

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "./uploads"))
PARSE_TIMEOUT_SECONDS = float(os.getenv("PARSE_TIMEOUT_SECONDS", "30"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]")


class ParsingSummary(CamelModel):
    success: bool
    text_length: int = 0
    word_count: int = 0
    character_count: int = 0
    colors: list[str] = []
    processing_time: int = 0
    error: str | None = None


class UploadResultItem(CamelModel):
    filename: str
    status: str
    file_id: str | None = None
    parsing: ParsingSummary | None = None
    error: str | None = None


class UploadProcessResponse(CamelModel):
    message: str
    results: list[UploadResultItem]
    total_files: int
    success_count: int
    failed_count: int


class UploadCapabilities(CamelModel):
    supported_mime_types: list[str]
    supported_extensions: list[str]
    max_file_size: int
    parse_timeout_seconds: float


def _now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def sanitize_filename(filename: str) -> str:
    cleaned = _UNSAFE_FILENAME_RE.sub("_", os.path.basename(filename or "upload"))
    return cleaned.strip("._") or "upload"


def upload_capabilities() -> UploadCapabilities:
    return UploadCapabilities(
        supported_mime_types=sorted(set(MIME_HANDLERS) | {"image/*", "text/*"}),
        supported_extensions=sorted(EXTENSION_MIME_TYPES),
        max_file_size=MAX_UPLOAD_BYTES,
        parse_timeout_seconds=PARSE_TIMEOUT_SECONDS,
    )


def _store_upload(user_id: str, filename: str, mime_type: str, data: bytes) -> str:
    directory = UPLOAD_DIR / user_id
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{int(time.time() * 1000)}_{sanitize_filename(filename)}"
    path.write_bytes(data)

    _, ext = os.path.splitext(filename.lower())
    now = _now_utc()
    with SessionLocal() as session:
        repository = FileRepository(session)
        uploaded = repository.create(
            UploadedFile(
                id=str(uuid.uuid4()),
                user_id=user_id,
                original_filename=filename,
                file_type=ext.lstrip(".") or mime_type.rsplit("/", 1)[-1],
                file_size=len(data),
                mime_type=mime_type,
                storage_path=str(path),
                uploaded_at=now,
                updated_at=now,
            )
        )
        repository.update_status(uploaded.id, "processing")
    return uploaded.id


def _save_parsing_result(file_id: str, result: FileParsingResult) -> None:
    with SessionLocal() as session:
        repository = FileRepository(session)
        if not result.success or result.content is None:
            repository.update_status(file_id, "failed")
            return
        metadata = result.content.metadata
        repository.save_processing_result(
            FileProcessingResult(
                id=str(uuid.uuid4()),
                file_id=file_id,
                extracted_text=result.content.text,
                word_count=metadata.word_count,
                character_count=metadata.character_count,
                page_count=metadata.page_count,
                language=metadata.language,
                colors=metadata.colors,
                font_families=metadata.font_families,
                font_sizes=metadata.font_size,
                extracted_images=metadata.extracted_images,
                metadata_payload=result.content.raw_data,
                confidence_score=result.confidence,
                processing_time_ms=result.processing_time,
                processed_at=_now_utc(),
            )
        )
        repository.update_status(file_id, "completed")


def _mark_failed(file_id: str) -> None:
    with SessionLocal() as session:
        FileRepository(session).update_status(file_id, "failed")


def _summarize(result: FileParsingResult) -> ParsingSummary:
    if not result.success or result.content is None:
        return ParsingSummary(success=False, processing_time=result.processing_time, error=result.error)
    metadata = result.content.metadata
    return ParsingSummary(
        success=True,
        text_length=len(result.content.text),
        word_count=metadata.word_count,
        character_count=metadata.character_count,
        colors=metadata.colors,
        processing_time=result.processing_time,
    )


async def _process_one(current_user: UserRecord, upload: UploadFile) -> UploadResultItem:
    filename = upload.filename or "upload"
    data = await upload.read()
    if len(data) > MAX_UPLOAD_BYTES:
        return UploadResultItem(filename=filename, status="error", error="File exceeds the maximum upload size")

    mime_type = resolve_mime_type(upload.content_type, filename)
    try:
        file_id = await run_in_threadpool(_store_upload, current_user.id, filename, mime_type, data)
    except (OSError, SQLAlchemyError, ValueError) as exc:
        log_event("upload_store_failed", user_id=current_user.id, filename=filename, error=str(exc))
        return UploadResultItem(filename=filename, status="error", error=str(exc))

    try:
        # The worker thread keeps running after a timeout; its result is discarded.
        result = await asyncio.wait_for(
            run_in_threadpool(parse_file, data, filename, mime_type),
            timeout=PARSE_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        log_event("upload_parse_timeout", file_id=file_id, timeout_seconds=PARSE_TIMEOUT_SECONDS)
        await run_in_threadpool(_mark_failed, file_id)
        return UploadResultItem(
            filename=filename,
            status="failed",
            file_id=file_id,
            parsing=ParsingSummary(success=False, error=f"File parsing timed out after {PARSE_TIMEOUT_SECONDS:g} seconds"),
        )
    except Exception as exc:  # handlers wrap third-party parsers; the row must not stay processing
        log_event("upload_parse_crashed", file_id=file_id, filename=filename, error=str(exc))
        await run_in_threadpool(_mark_failed, file_id)
        return UploadResultItem(
            filename=filename,
            status="failed",
            file_id=file_id,
            parsing=ParsingSummary(success=False, error=f"File parsing failed: {exc}"),
        )

    try:
        await run_in_threadpool(_save_parsing_result, file_id, result)
    except (SQLAlchemyError, ValueError) as exc:
        log_event("upload_result_save_failed", file_id=file_id, error=str(exc))
        await run_in_threadpool(_mark_failed, file_id)
        return UploadResultItem(filename=filename, status="error", file_id=file_id, error=str(exc))

    status = "completed" if result.success else "failed"
    log_event("upload_processed", user_id=current_user.id, file_id=file_id, status=status)
    return UploadResultItem(filename=filename, status=status, file_id=file_id, parsing=_summarize(result))


async def process_uploads(current_user: UserRecord, uploads: list[UploadFile]) -> UploadProcessResponse:
    if not uploads:
        raise ValueError("No files provided")

    results = [await _process_one(current_user, upload) for upload in uploads]
    success_count = sum(1 for item in results if item.status == "completed")
    return UploadProcessResponse(
        message="Files processed",
        results=results,
        total_files=len(results),
        success_count=success_count,
        failed_count=len(results) - success_count,
    )
