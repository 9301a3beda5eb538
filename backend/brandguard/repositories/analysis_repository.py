from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from brandguard.db.models import AnalysisIssue, BrandAnalysisResult

ISSUE_STATUSES = frozenset({"open", "acknowledged", "fixed", "dismissed"})


def _now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AnalysisRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def save_result(self, result: BrandAnalysisResult) -> BrandAnalysisResult:
        self.session.add(result)
        self.session.commit()
        self.session.refresh(result)
        return result

    def save_issues(self, issues: list[AnalysisIssue]) -> list[AnalysisIssue]:
        if not issues:
            return []
        self.session.add_all(issues)
        self.session.commit()
        return issues

    def get_by_id(self, analysis_id: str) -> BrandAnalysisResult | None:
        return self.session.get(BrandAnalysisResult, analysis_id)

    def list_by_user(self, user_id: str) -> list[BrandAnalysisResult]:
        return (
            self.session.query(BrandAnalysisResult)
            .filter(BrandAnalysisResult.user_id == user_id)
            .order_by(BrandAnalysisResult.analyzed_at.desc())
            .all()
        )

    def get_by_file_id(self, file_id: str) -> BrandAnalysisResult | None:
        return (
            self.session.query(BrandAnalysisResult)
            .filter(BrandAnalysisResult.file_id == file_id)
            .order_by(BrandAnalysisResult.analyzed_at.desc())
            .first()
        )

    def get_cached(self, file_id: str, rules_checksum: str) -> BrandAnalysisResult | None:
        return (
            self.session.query(BrandAnalysisResult)
            .filter(BrandAnalysisResult.file_id == file_id, BrandAnalysisResult.rules_checksum == rules_checksum)
            .order_by(BrandAnalysisResult.analyzed_at.desc())
            .first()
        )

    def recent(self, limit: int = 10) -> list[BrandAnalysisResult]:
        return self.session.query(BrandAnalysisResult).order_by(BrandAnalysisResult.analyzed_at.desc()).limit(limit).all()

    def list_issues(self, analysis_id: str) -> list[AnalysisIssue]:
        return (
            self.session.query(AnalysisIssue)
            .filter(AnalysisIssue.analysis_id == analysis_id)
            .order_by(AnalysisIssue.created_at.asc())
            .all()
        )

    def update_issue_status(self, analysis_id: str, issue_id: str, status: str) -> AnalysisIssue | None:
        if status not in ISSUE_STATUSES:
            raise ValueError(f"Invalid issue status: {status}")
        issue = (
            self.session.query(AnalysisIssue)
            .filter(AnalysisIssue.id == issue_id, AnalysisIssue.analysis_id == analysis_id)
            .first()
        )
        if issue is None:
            return None
        issue.status = status
        issue.updated_at = _now_utc()
        self.session.commit()
        return issue

    def user_stats(self, user_id: str) -> dict:
        total, avg_score, total_issues = (
            self.session.query(
                func.count(BrandAnalysisResult.id),
                func.avg(BrandAnalysisResult.compliance_score),
                func.sum(BrandAnalysisResult.total_issues),
            )
            .filter(BrandAnalysisResult.user_id == user_id)
            .one()
        )
        recent = self.list_by_user(user_id)[:5]
        return {
            "total_analyses": total or 0,
            "avg_compliance_score": round(float(avg_score)) if avg_score is not None else 0,
            "total_issues": int(total_issues or 0),
            "recent_analyses": recent,
        }
