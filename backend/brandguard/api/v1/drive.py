from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from brandguard.core.dependencies import get_drive_client_factory, require_auth
from brandguard.core.observability import log_event
from brandguard.services import oauth_service
from brandguard.services.auth_service import UserRecord
from brandguard.services.drive_client import DriveAccessError, DriveClientFactory
from brandguard.services.drive_service import (
    ActivateFolderRequest,
    ActivateFolderResponse,
    BrandFilesResponse,
    DriveFolderInfo,
    DriveLookupError,
    FoldersResponse,
    RegisterFolderRequest,
    SyncResponse,
    activate_folder,
    diagnostic,
    list_brand_files,
    list_folders,
    register_folder,
    save_tokens,
    sync_folder,
)
from brandguard.services.oauth_service import TokenExchangeError

router = APIRouter(prefix="/api/drive", tags=["Drive"])


def _dashboard_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(f"{oauth_service.APP_URL}/dashboard?{urlencode(params)}", status_code=302)


def _lookup_failed(exc: DriveLookupError) -> HTTPException:
    return HTTPException(status_code=exc.status, detail=exc.body())


def _drive_failed(exc: DriveAccessError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"error": "Google Drive request failed", "details": str(exc)},
    )


@router.get("/auth")
def auth_url(current_user: UserRecord = Depends(require_auth)) -> dict[str, str]:
    if not oauth_service.GOOGLE_CLIENT_ID:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Google Drive integration not configured: GOOGLE_CLIENT_ID missing",
                "diagnostic": "MISSING_CLIENT_ID",
            },
        )
    if not oauth_service.GOOGLE_CLIENT_SECRET:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Google Drive integration not configured: GOOGLE_CLIENT_SECRET missing",
                "diagnostic": "MISSING_CLIENT_SECRET",
            },
        )

    url = oauth_service.build_google_auth_url(
        oauth_service.GOOGLE_CLIENT_ID,
        oauth_service.drive_redirect_uri(),
        oauth_service.DRIVE_OAUTH_SCOPES,
        oauth_service.encode_user_state(current_user.id),
    )
    log_event("oauth_started", flow="drive", user_id=current_user.id)
    return {"authUrl": url}


@router.get("/callback")
def callback(request: Request) -> RedirectResponse:
    params = request.query_params
    error = params.get("error")
    if error:
        log_event("oauth_denied", flow="drive", error=error)
        return _dashboard_redirect(error="oauth_failed", message=f"Google OAuth error: {error}")

    code = params.get("code")
    state = params.get("state")
    if not code or not state:
        return _dashboard_redirect(error="missing_code", message="Missing authorization code from Google")

    user_id = oauth_service.decode_user_state(state)
    if user_id is None:
        log_event("oauth_state_mismatch", flow="drive")
        return _dashboard_redirect(error="invalid_state", message="OAuth state is invalid or expired")

    try:
        tokens = oauth_service.exchange_code_for_tokens(
            code,
            client_id=oauth_service.GOOGLE_CLIENT_ID,
            client_secret=oauth_service.GOOGLE_CLIENT_SECRET,
            redirect_uri=oauth_service.drive_redirect_uri(),
        )
    except TokenExchangeError as exc:
        log_event("oauth_callback_failed", flow="drive", error=str(exc))
        return _dashboard_redirect(error="callback_failed", message="OAuth callback failed - please try again")

    try:
        save_tokens(user_id, tokens)
    except SQLAlchemyError as exc:
        log_event("oauth_token_save_failed", flow="drive", user_id=user_id, error=str(exc))
        return _dashboard_redirect(error="token_save_failed", message="Failed to save authentication tokens")

    log_event("oauth_connected", flow="drive", user_id=user_id)
    return _dashboard_redirect(success="drive_connected", message="Google Drive connected successfully!")


@router.get("/folders", response_model=FoldersResponse)
def get_folders(current_user: UserRecord = Depends(require_auth)) -> FoldersResponse:
    return list_folders(current_user)


@router.post("/folders", response_model=DriveFolderInfo, status_code=status.HTTP_201_CREATED)
def post_folder(
    payload: RegisterFolderRequest,
    current_user: UserRecord = Depends(require_auth),
    drive_factory: DriveClientFactory = Depends(get_drive_client_factory),
) -> DriveFolderInfo:
    if not payload.drive_folder_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Drive folder ID is required")
    try:
        return register_folder(current_user, payload.drive_folder_id, drive_factory)
    except DriveLookupError as exc:
        raise _lookup_failed(exc) from exc
    except DriveAccessError as exc:
        raise _drive_failed(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("/folders/{folder_id}/sync", response_model=SyncResponse)
def post_sync(
    folder_id: str,
    current_user: UserRecord = Depends(require_auth),
    drive_factory: DriveClientFactory = Depends(get_drive_client_factory),
) -> SyncResponse:
    try:
        return sync_folder(current_user, folder_id, drive_factory)
    except DriveLookupError as exc:
        raise _lookup_failed(exc) from exc
    except DriveAccessError as exc:
        raise _drive_failed(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/activate", response_model=ActivateFolderResponse)
def post_activate(payload: ActivateFolderRequest, current_user: UserRecord = Depends(require_auth)) -> ActivateFolderResponse:
    if not payload.folder_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Folder ID is required")
    try:
        return activate_folder(current_user, payload.folder_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("/brand-files", response_model=BrandFilesResponse)
def get_brand_files(
    current_user: UserRecord = Depends(require_auth),
    drive_factory: DriveClientFactory = Depends(get_drive_client_factory),
) -> BrandFilesResponse:
    try:
        return list_brand_files(current_user, drive_factory)
    except DriveLookupError as exc:
        raise _lookup_failed(exc) from exc
    except DriveAccessError as exc:
        raise _drive_failed(exc) from exc


@router.get("/diagnostic")
def get_diagnostic(current_user: UserRecord = Depends(require_auth)) -> dict:
    return diagnostic(current_user)
