from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from brandguard.core.errors import BadRequestError
from brandguard.core.observability import log_event
from brandguard.core.schemas import CamelModel
from brandguard.db.database import SessionLocal
from brandguard.db.models import AnalysisIssue, BrandAnalysisResult
from brandguard.repositories.analysis_repository import ISSUE_STATUSES, AnalysisRepository
from brandguard.repositories.file_repository import FileRepository
from brandguard.repositories.user_repository import UserRepository
from brandguard.services import job_queue
from brandguard.services.auth_service import UserRecord
from brandguard.services.brand_file_extractor import (
    extract_brand_guidelines_from_file,
    generate_brand_rules_from_content,
)
from brandguard.services.brand_rules_service import BrandRules, BrandRulesService, count_rules
from brandguard.services.drive_client import DriveAccessError, DriveClientFactory
from brandguard.services.drive_service import drive_for_user
from brandguard.services.email_service import EmailService
from brandguard.services.extraction import ExtractionError
from brandguard.services.files_service import AnalysisBrief, to_analysis_brief
from brandguard.services.llm_analysis import (
    AnalysisSummary,
    BrandAnalysisClient,
    BrandAnalysisRequest,
    BrandIssue,
    LLMAnalysisError,
)


class AnalysisInputError(BadRequestError):
    pass


class AnalysisFailedError(Exception):
    def __init__(self, error: str, details: str | None = None) -> None:
        super().__init__(error)
        self.error = error
        self.details = details


class AnalyzeFileRequest(CamelModel):
    brand_file_id: str | None = None


class AnalyzeFileResponse(CamelModel):
    message: str
    analysis_id: str
    summary: AnalysisSummary
    issues: list[BrandIssue]
    rules_applied: int
    analysis_time: int
    email_sent: bool = False
    cached: bool = False
    rules_source: str


class IssueInfo(CamelModel):
    id: str
    issue_type: str
    severity: str
    message: str
    rule_violated: str | None = None
    location_context: str | None = None
    line_number: int | None = None
    position_number: int | None = None
    suggestion: str | None = None
    status: str


class AnalysisIssuesResponse(CamelModel):
    analysis: AnalysisBrief
    issues: list[IssueInfo]


class IssueStatusUpdate(CamelModel):
    issue_id: Any = None
    status: Any = None


class IssueStatusResponse(CamelModel):
    message: str
    issue_id: str
    status: str


class AnalysisStats(CamelModel):
    total_analyses: int
    avg_compliance_score: int
    total_issues: int
    recent_analyses: list[AnalysisBrief]


class AnalysisListResponse(CamelModel):
    analyses: list[AnalysisBrief]
    stats: AnalysisStats | None = None


def _now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def rules_checksum(rules: BrandRules | None, guidelines: str | None) -> str:
    material = guidelines if guidelines else (rules.canonical_json() if rules is not None else "")
    return hashlib.md5(material.encode("utf-8")).hexdigest()


def _summary_from_row(row: BrandAnalysisResult) -> AnalysisSummary:
    return AnalysisSummary(
        total_issues=row.total_issues,
        high_severity=row.high_severity_issues,
        medium_severity=row.medium_severity_issues,
        low_severity=row.low_severity_issues,
        compliance_score=row.compliance_score,
    )


def _to_issue_info(issue: AnalysisIssue) -> IssueInfo:
    return IssueInfo(
        id=issue.id,
        issue_type=issue.issue_type,
        severity=issue.severity,
        message=issue.message,
        rule_violated=issue.rule_violated,
        location_context=issue.location_context,
        line_number=issue.line_number,
        position_number=issue.position_number,
        suggestion=issue.suggestion,
        status=issue.status,
    )


def _resolve_rules(
    current_user: UserRecord,
    brand_file_id: str | None,
    rules_service: BrandRulesService,
    drive_factory: DriveClientFactory,
) -> tuple[BrandRules | None, str | None, str]:
    """Return ``(rules, guidelines, source)``; exactly one of rules/guidelines is set."""
    if brand_file_id:
        try:
            drive = drive_for_user(current_user.id, drive_factory)
            extracted = extract_brand_guidelines_from_file(drive, brand_file_id)
            return None, generate_brand_rules_from_content(extracted), "drive_file"
        except (DriveAccessError, ExtractionError) as exc:
            log_event(
                "brand_file_guidelines_failed",
                user_id=current_user.id,
                brand_file_id=brand_file_id,
                error=str(exc),
            )

    rules = rules_service.aggregate_brand_rules()
    if count_rules(rules) == 0:
        raise AnalysisInputError("No brand rules available. Please configure brand guidelines first.")
    return rules, None, "aggregated"


def analyze_file(
    current_user: UserRecord,
    file_id: str,
    payload: AnalyzeFileRequest,
    *,
    llm_client: BrandAnalysisClient,
    drive_factory: DriveClientFactory,
    email_service: EmailService,
    rules_service: BrandRulesService | None = None,
) -> AnalyzeFileResponse:
    with SessionLocal() as session:
        loaded = FileRepository(session).get_with_results(file_id)
        if loaded is None:
            raise ValueError("File not found")
        uploaded, processing = loaded
        if uploaded.user_id != current_user.id and not current_user.is_admin:
            raise PermissionError("Access denied")
        owner = UserRepository(session).get_by_id(uploaded.user_id)

    if processing is None or not processing.extracted_text.strip():
        raise AnalysisInputError("File has not been processed or contains no text content")

    rules, guidelines, source = _resolve_rules(
        current_user, payload.brand_file_id, rules_service or BrandRulesService(), drive_factory
    )
    checksum = rules_checksum(rules, guidelines)

    with SessionLocal() as session:
        cached = AnalysisRepository(session).get_cached(file_id, checksum)
    if cached is not None:
        log_event("analysis_result_reused", file_id=file_id, analysis_id=cached.id)
        return AnalyzeFileResponse(
            message="Analysis completed successfully (cached)",
            analysis_id=cached.id,
            summary=_summary_from_row(cached),
            issues=[BrandIssue.model_validate(item) for item in cached.issues or []],
            rules_applied=cached.rules_applied,
            analysis_time=cached.analysis_time_ms,
            cached=True,
            rules_source=source,
        )

    try:
        result = llm_client.analyze_content(
            BrandAnalysisRequest(
                content=processing.extracted_text,
                brand_rules=rules,
                brand_guidelines=guidelines,
                file_name=uploaded.original_filename,
                colors=processing.colors or [],
            )
        )
    except LLMAnalysisError as exc:
        raise AnalysisFailedError("Claude analysis failed", str(exc)) from exc

    analysis_id = str(uuid.uuid4())
    now = _now_utc()
    try:
        with SessionLocal() as session:
            AnalysisRepository(session).save_result(
                BrandAnalysisResult(
                    id=analysis_id,
                    file_id=file_id,
                    user_id=uploaded.user_id,
                    total_issues=result.summary.total_issues,
                    high_severity_issues=result.summary.high_severity,
                    medium_severity_issues=result.summary.medium_severity,
                    low_severity_issues=result.summary.low_severity,
                    compliance_score=result.summary.compliance_score,
                    issues=[issue.model_dump(by_alias=True) for issue in result.issues],
                    analysis_time_ms=result.metadata.analysis_time,
                    content_length=result.metadata.content_length,
                    rules_applied=result.metadata.rules_applied,
                    rules_snapshot=rules.model_dump(by_alias=True) if rules is not None else {"guidelines": guidelines},
                    rules_checksum=checksum,
                    analyzed_at=now,
                )
            )
    except SQLAlchemyError as exc:
        log_event("analysis_save_failed", file_id=file_id, error=str(exc))
        raise AnalysisFailedError("Failed to save analysis results", str(exc)) from exc

    # Issue rows and the email are best effort; the analysis itself is saved.
    try:
        with SessionLocal() as session:
            AnalysisRepository(session).save_issues(
                [
                    AnalysisIssue(
                        id=str(uuid.uuid4()),
                        analysis_id=analysis_id,
                        issue_type=issue.type,
                        severity=issue.severity,
                        message=issue.message,
                        rule_violated=issue.rule_violated,
                        location_context=issue.location.context if issue.location else None,
                        line_number=issue.location.line if issue.location else None,
                        position_number=issue.location.position if issue.location else None,
                        suggestion=issue.suggestion,
                        status="open",
                        created_at=now,
                        updated_at=now,
                    )
                    for issue in result.issues
                ]
            )
    except SQLAlchemyError as exc:
        log_event("analysis_issues_save_failed", analysis_id=analysis_id, error=str(exc))

    email_sent = False
    if owner is not None and owner.email_notifications:
        try:
            email_sent = job_queue.enqueue_analysis_email(analysis_id, email_service) is not None
        except (RedisError, OSError) as exc:
            log_event("analysis_email_enqueue_failed", analysis_id=analysis_id, error=str(exc))

    log_event(
        "file_analyzed",
        file_id=file_id,
        analysis_id=analysis_id,
        compliance_score=result.summary.compliance_score,
        rules_source=source,
        email_sent=email_sent,
    )
    return AnalyzeFileResponse(
        message="Analysis completed successfully",
        analysis_id=analysis_id,
        summary=result.summary,
        issues=result.issues,
        rules_applied=result.metadata.rules_applied,
        analysis_time=result.metadata.analysis_time,
        email_sent=email_sent,
        rules_source=source,
    )


def list_analyses(current_user: UserRecord, *, include_stats: bool = False, file_id: str | None = None) -> AnalysisListResponse:
    with SessionLocal() as session:
        repository = AnalysisRepository(session)
        if file_id:
            latest = repository.get_by_file_id(file_id)
            rows = [latest] if latest is not None and latest.user_id == current_user.id else []
        else:
            rows = repository.list_by_user(current_user.id)
        stats = None
        if include_stats:
            raw = repository.user_stats(current_user.id)
            stats = AnalysisStats(
                total_analyses=raw["total_analyses"],
                avg_compliance_score=raw["avg_compliance_score"],
                total_issues=raw["total_issues"],
                recent_analyses=[to_analysis_brief(row) for row in raw["recent_analyses"]],
            )
    return AnalysisListResponse(analyses=[to_analysis_brief(row) for row in rows], stats=stats)


def _load_owned_analysis(session, current_user: UserRecord, analysis_id: str) -> BrandAnalysisResult:
    analysis = AnalysisRepository(session).get_by_id(analysis_id)
    if analysis is None:
        raise ValueError("Analysis not found")
    if analysis.user_id != current_user.id and not current_user.is_admin:
        raise PermissionError("Access denied")
    return analysis


def get_analysis_issues(current_user: UserRecord, analysis_id: str) -> AnalysisIssuesResponse:
    with SessionLocal() as session:
        analysis = _load_owned_analysis(session, current_user, analysis_id)
        issues = AnalysisRepository(session).list_issues(analysis_id)
        return AnalysisIssuesResponse(
            analysis=to_analysis_brief(analysis),
            issues=[_to_issue_info(issue) for issue in issues],
        )


def update_issue_status(current_user: UserRecord, analysis_id: str, payload: IssueStatusUpdate) -> IssueStatusResponse:
    valid_id = isinstance(payload.issue_id, str) and bool(payload.issue_id)
    if not valid_id or not isinstance(payload.status, str) or payload.status not in ISSUE_STATUSES:
        raise AnalysisInputError("Invalid issueId or status")

    with SessionLocal() as session:
        _load_owned_analysis(session, current_user, analysis_id)
        issue = AnalysisRepository(session).update_issue_status(analysis_id, payload.issue_id, payload.status)
    if issue is None:
        raise ValueError("Issue not found")

    log_event("analysis_issue_updated", analysis_id=analysis_id, issue_id=payload.issue_id, status=payload.status)
    return IssueStatusResponse(
        message="Issue status updated successfully",
        issue_id=payload.issue_id,
        status=payload.status,
    )
