from fastapi import APIRouter, Body, Depends, HTTPException, status

from brandguard.core.dependencies import get_email_service, require_admin
from brandguard.core.errors import BadRequestError
from brandguard.core.observability import log_event
from brandguard.services.admin_service import (
    AdminFilesResponse,
    DashboardResponse,
    TestEmailRequest,
    TestEmailResponse,
    dashboard,
    list_all_files,
)
from brandguard.services.auth_service import UserRecord
from brandguard.services.brand_rules_service import BrandRulesResponse, BrandRulesService
from brandguard.services.email_service import EmailService
from brandguard.services.users_service import RoleUpdate, RoleUpdateResponse, UsersResponse, list_users, update_user_role

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/users", response_model=UsersResponse)
def get_users(_: UserRecord = Depends(require_admin)) -> UsersResponse:
    return list_users()


@router.patch("/users", response_model=RoleUpdateResponse)
def patch_user_role(payload: RoleUpdate, current_user: UserRecord = Depends(require_admin)) -> RoleUpdateResponse:
    try:
        return update_user_role(current_user, payload)
    except BadRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("/brand-rules", response_model=BrandRulesResponse)
def get_brand_rules(_: UserRecord = Depends(require_admin)) -> BrandRulesResponse:
    return BrandRulesService().brand_rules_response()


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(_: UserRecord = Depends(require_admin)) -> DashboardResponse:
    return dashboard()


@router.get("/files", response_model=AdminFilesResponse)
def get_files(_: UserRecord = Depends(require_admin)) -> AdminFilesResponse:
    return list_all_files()


@router.post("/test-email", response_model=TestEmailResponse)
def send_test_email(
    payload: TestEmailRequest | None = Body(default=None),
    current_user: UserRecord = Depends(require_admin),
    email_service: EmailService = Depends(get_email_service),
) -> TestEmailResponse:
    recipient = (payload.test_email if payload else None) or current_user.email
    if not email_service.send_test_email(recipient):
        log_event("admin_test_email_failed", admin_id=current_user.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to send test email", "details": "Check the SendGrid configuration"},
        )
    return TestEmailResponse(success=True, message=f"Test email sent to {recipient}")
