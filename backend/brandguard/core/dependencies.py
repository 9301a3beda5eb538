from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from brandguard.services.auth_service import UserRecord, authenticate
from brandguard.services.drive_client import DriveClientFactory, create_drive_client
from brandguard.services.email_service import EmailService
from brandguard.services.llm_analysis import BrandAnalysisClient, build_analysis_cache, create_anthropic_client


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_auth(authorization: str | None = Header(default=None)) -> UserRecord:
    token = bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"error": "Unauthorized"})

    user = authenticate(token)
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"error": "Account disabled"})
    return user


def require_admin(current_user: UserRecord = Depends(require_auth)) -> UserRecord:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"error": "Admin access required"})
    return current_user


@lru_cache
def get_llm_client() -> BrandAnalysisClient:
    return BrandAnalysisClient(create_anthropic_client(), build_analysis_cache())


def get_drive_client_factory() -> DriveClientFactory:
    return create_drive_client


@lru_cache
def get_email_service() -> EmailService:
    return EmailService()
