from fastapi import APIRouter, Depends, HTTPException, Query, status

from brandguard.core.dependencies import require_auth
from brandguard.core.errors import BadRequestError
from brandguard.services.analysis_service import (
    AnalysisIssuesResponse,
    AnalysisListResponse,
    IssueStatusResponse,
    IssueStatusUpdate,
    get_analysis_issues,
    list_analyses,
    update_issue_status,
)
from brandguard.services.auth_service import UserRecord

router = APIRouter(prefix="/api/user/analysis", tags=["Analysis"])


@router.get("", response_model=AnalysisListResponse)
def get_analyses(
    stats: bool = Query(default=False),
    file_id: str | None = Query(default=None, alias="fileId"),
    current_user: UserRecord = Depends(require_auth),
) -> AnalysisListResponse:
    return list_analyses(current_user, include_stats=stats, file_id=file_id)


@router.get("/{analysis_id}/issues", response_model=AnalysisIssuesResponse)
def get_issues(analysis_id: str, current_user: UserRecord = Depends(require_auth)) -> AnalysisIssuesResponse:
    try:
        return get_analysis_issues(current_user, analysis_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


@router.patch("/{analysis_id}/issues", response_model=IssueStatusResponse)
def patch_issue(
    analysis_id: str,
    payload: IssueStatusUpdate,
    current_user: UserRecord = Depends(require_auth),
) -> IssueStatusResponse:
    try:
        return update_issue_status(current_user, analysis_id, payload)
    except BadRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
