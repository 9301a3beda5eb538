from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse

from brandguard.core.dependencies import get_drive_client_factory, get_email_service, get_llm_client, require_auth
from brandguard.core.errors import BadRequestError
from brandguard.services.analysis_service import (
    AnalysisFailedError,
    AnalyzeFileRequest,
    AnalyzeFileResponse,
    analyze_file,
)
from brandguard.services.auth_service import UserRecord
from brandguard.services.drive_client import DriveClientFactory
from brandguard.services.email_service import EmailService
from brandguard.services.files_service import (
    FileDetailResponse,
    FilesListResponse,
    get_file_detail,
    list_user_files,
    resolve_download,
)
from brandguard.services.llm_analysis import BrandAnalysisClient

router = APIRouter(prefix="/api/user/files", tags=["Files"])


@router.get("", response_model=FilesListResponse)
def list_files(current_user: UserRecord = Depends(require_auth)) -> FilesListResponse:
    return list_user_files(current_user)


@router.get("/{file_id}", response_model=FileDetailResponse)
def get_file(file_id: str, current_user: UserRecord = Depends(require_auth)) -> FileDetailResponse:
    try:
        return get_file_detail(current_user, file_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


@router.get("/{file_id}/download")
def download_file(file_id: str, token: str = Query(default="")) -> FileResponse:
    # The signed token is the credential; links are opened outside the SPA.
    try:
        path, filename, mime_type = resolve_download(file_id, token)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return FileResponse(path, media_type=mime_type, filename=filename)


@router.post("/{file_id}/analyze", response_model=AnalyzeFileResponse)
def analyze(
    file_id: str,
    payload: AnalyzeFileRequest | None = Body(default=None),
    current_user: UserRecord = Depends(require_auth),
    llm_client: BrandAnalysisClient = Depends(get_llm_client),
    drive_factory: DriveClientFactory = Depends(get_drive_client_factory),
    email_service: EmailService = Depends(get_email_service),
) -> AnalyzeFileResponse:
    try:
        return analyze_file(
            current_user,
            file_id,
            payload or AnalyzeFileRequest(),
            llm_client=llm_client,
            drive_factory=drive_factory,
            email_service=email_service,
        )
    except BadRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except AnalysisFailedError as exc:
        detail = {"error": exc.error}
        if exc.details:
            detail["details"] = exc.details
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail) from exc
