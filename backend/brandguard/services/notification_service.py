from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from brandguard.core.observability import log_event
from brandguard.db.database import SessionLocal
from brandguard.repositories.analysis_repository import AnalysisRepository
from brandguard.repositories.drive_repository import DriveRepository
from brandguard.repositories.file_repository import FileRepository
from brandguard.repositories.user_repository import UserRepository
from brandguard.services.email_service import EmailAnalysisData, EmailIssue, EmailService
from brandguard.services.files_service import generate_file_download_url


def build_analysis_email(analysis_id: str) -> EmailAnalysisData | None:
    with SessionLocal() as session:
        analysis = AnalysisRepository(session).get_by_id(analysis_id)
        if analysis is None:
            return None
        user = UserRepository(session).get_by_id(analysis.user_id)
        uploaded = FileRepository(session).get_by_id(analysis.file_id)
        folder = DriveRepository(session).get_active_folder()
        if user is None or uploaded is None:
            return None

        issues = [
            EmailIssue(
                type=item.get("type", "other"),
                severity=item.get("severity", "low"),
                message=item.get("message", ""),
                suggestion=item.get("suggestion"),
                context=(item.get("location") or {}).get("context"),
            )
            for item in analysis.issues or []
        ]
        return EmailAnalysisData(
            user_email=user.email,
            user_name=user.full_name,
            file_name=uploaded.original_filename,
            file_id=uploaded.id,
            analysis_id=analysis.id,
            compliance_score=analysis.compliance_score,
            total_issues=analysis.total_issues,
            high_severity=analysis.high_severity_issues,
            medium_severity=analysis.medium_severity_issues,
            low_severity=analysis.low_severity_issues,
            analysis_date=analysis.analyzed_at.strftime("%Y-%m-%d %H:%M UTC"),
            issues=issues,
            download_url=generate_file_download_url(uploaded.id),
            drive_folder_name=folder.name if folder is not None else None,
        )


def deliver_analysis_email(analysis_id: str, email_service: EmailService | None = None) -> bool:
    """Send the results email for ``analysis_id``; never raises."""
    try:
        data = build_analysis_email(analysis_id)
    except SQLAlchemyError as exc:
        log_event("email_build_failed", analysis_id=analysis_id, error=str(exc))
        return False
    if data is None:
        log_event("email_skipped", analysis_id=analysis_id, reason="analysis_not_found")
        return False
    return (email_service or EmailService()).send_analysis_results(data)
