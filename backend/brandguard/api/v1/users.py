from fastapi import APIRouter, Depends, HTTPException, status

from brandguard.core.dependencies import require_auth
from brandguard.core.errors import BadRequestError
from brandguard.services.auth_service import UserRecord
from brandguard.services.users_service import (
    EmailPreferences,
    EmailPreferencesUpdate,
    get_email_preferences,
    update_email_preferences,
)

router = APIRouter(prefix="/api/user", tags=["Users"])


@router.get("/email-preferences", response_model=EmailPreferences)
def get_preferences(current_user: UserRecord = Depends(require_auth)) -> EmailPreferences:
    try:
        return get_email_preferences(current_user)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.patch("/email-preferences", response_model=EmailPreferences)
def patch_preferences(
    payload: EmailPreferencesUpdate,
    current_user: UserRecord = Depends(require_auth),
) -> EmailPreferences:
    try:
        return update_email_preferences(current_user, payload)
    except BadRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
