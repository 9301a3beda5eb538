from urllib.parse import urlencode

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from sqlalchemy.exc import SQLAlchemyError

from brandguard.core.dependencies import bearer_token
from brandguard.core.observability import log_event
from brandguard.services import oauth_service
from brandguard.services.auth_service import authenticate
from brandguard.services.drive_service import save_tokens
from brandguard.services.oauth_service import OAuthError, TokenExchangeError, oauth_error_response

router = APIRouter(prefix="/api/google/oauth", tags=["Google OAuth"])


def _settings_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(f"{oauth_service.APP_URL}/settings/drive?{urlencode(params)}", status_code=302)


@router.get("/start")
def start() -> Response:
    client_id = oauth_service.GOOGLE_CLIENT_ID
    redirect_uri = oauth_service.GOOGLE_REDIRECT_URI
    if not client_id or not redirect_uri:
        log_event("oauth_config_missing", flow="google_oauth")
        return oauth_error_response(
            OAuthError(
                500,
                "OAUTH_CONFIG_MISSING",
                "Google OAuth not properly configured",
                "SERVER_CONFIG",
                {"hasClientId": bool(client_id), "hasRedirectUri": bool(redirect_uri)},
            )
        )

    try:
        state = oauth_service.generate_state()
        url = oauth_service.build_google_auth_url(client_id, redirect_uri, oauth_service.DRIVE_OAUTH_SCOPES, state)
    except Exception as exc:
        log_event("oauth_start_failed", error=str(exc))
        return oauth_error_response(
            OAuthError(500, "OAUTH_START_ERROR", "Failed to initialize OAuth flow", "INTERNAL_ERROR", str(exc))
        )

    response = JSONResponse({"ok": True, "url": url, "state": f"{state[:8]}..."})
    response.set_cookie(oauth_service.STATE_COOKIE_NAME, state, **oauth_service.state_cookie_kwargs())
    log_event("oauth_started", flow="google_oauth")
    return response


def _session_token(request: Request) -> str | None:
    return request.cookies.get(oauth_service.SESSION_COOKIE_NAME) or bearer_token(request.headers.get("authorization"))


@router.get("/callback")
def callback(request: Request) -> Response:
    try:
        return _complete_callback(request)
    except Exception as exc:
        log_event("oauth_callback_failed", error=str(exc))
        return oauth_error_response(
            OAuthError(
                500,
                "OAUTH_CALLBACK_ERROR",
                "Unexpected error during OAuth callback",
                "INTERNAL_ERROR",
                str(exc),
            )
        )


def _complete_callback(request: Request) -> Response:
    params = request.query_params
    error = params.get("error")
    if error:
        log_event("oauth_denied", flow="google_oauth", error=error)
        return _settings_redirect(error="oauth_denied", message=f"Google OAuth error: {error}")

    code = params.get("code")
    state = params.get("state")
    if not code:
        return oauth_error_response(
            OAuthError(400, "MISSING_CODE", "Authorization code not provided", "OAUTH_FLOW_ERROR")
        )
    if not state:
        return oauth_error_response(
            OAuthError(400, "MISSING_STATE", "State parameter not provided", "OAUTH_FLOW_ERROR")
        )

    stored_state = request.cookies.get(oauth_service.STATE_COOKIE_NAME)
    if not stored_state or stored_state != state:
        log_event("oauth_state_mismatch", flow="google_oauth")
        return oauth_error_response(
            OAuthError(
                400,
                "OAUTH_STATE_MISMATCH",
                "Invalid state parameter - possible CSRF attack",
                "SECURITY_ERROR",
            )
        )

    client_id = oauth_service.GOOGLE_CLIENT_ID
    client_secret = oauth_service.GOOGLE_CLIENT_SECRET
    redirect_uri = oauth_service.GOOGLE_REDIRECT_URI
    if not client_id or not client_secret or not redirect_uri:
        return oauth_error_response(
            OAuthError(500, "OAUTH_CONFIG_MISSING", "Google OAuth not properly configured", "SERVER_CONFIG")
        )

    try:
        tokens = oauth_service.exchange_code_for_tokens(
            code,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
        )
    except TokenExchangeError as exc:
        return oauth_error_response(
            OAuthError(
                400,
                "TOKEN_EXCHANGE_FAILED",
                "Failed to exchange authorization code for tokens",
                "GOOGLE_API_ERROR",
                str(exc),
            )
        )

    session_token = _session_token(request)
    if not session_token:
        return _settings_redirect(error="session_required", message="Please sign in first")
    try:
        user = authenticate(session_token)
    except HTTPException:
        return _settings_redirect(error="invalid_session", message="Please sign in again")

    try:
        save_tokens(user.id, tokens)
    except SQLAlchemyError as exc:
        log_event("oauth_token_save_failed", user_id=user.id, error=str(exc))
        return oauth_error_response(
            OAuthError(500, "DB_ERROR", "Failed to save authentication tokens", "DATABASE_ERROR", str(exc))
        )

    log_event("oauth_connected", flow="google_oauth", user_id=user.id)
    response = _settings_redirect(connected="1")
    response.delete_cookie(oauth_service.STATE_COOKIE_NAME, path="/")
    return response


@router.get("/config")
def config() -> dict:
    return oauth_service.public_config()
