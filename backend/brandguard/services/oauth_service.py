"""Google OAuth plumbing shared by the ``/api/google/oauth`` and ``/api/drive`` flows."""

from __future__ import annotations

import json
import os
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
from fastapi.responses import JSONResponse
from jose import JWTError, jwt

from brandguard.core.observability import log_event

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "")
APP_URL = (os.getenv("APP_URL") or os.getenv("NEXT_PUBLIC_APP_URL", "http://localhost:3000")).rstrip("/")
APP_ENV = os.getenv("APP_ENV", "dev").strip().lower()
STATE_SECRET = os.getenv("OAUTH_STATE_SECRET") or os.getenv("SUPABASE_JWT_SECRET", "dev-secret-change-me")

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/drive.file",
]

STATE_COOKIE_NAME = "oauth_state"
STATE_COOKIE_MAX_AGE = 600
SESSION_COOKIE_NAME = "supabase-auth-token"
TOKEN_EXCHANGE_TIMEOUT_SECONDS = 15.0


class OAuthError(Exception):
    def __init__(self, status: int, code: str, message: str, diagnostic: str, details: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message
        self.diagnostic = diagnostic
        self.details = details


class TokenExchangeError(Exception):
    pass


@dataclass
class GoogleTokens:
    access_token: str
    refresh_token: str | None
    expires_in: int | None
    scope: str | None = None
    token_type: str | None = None


def oauth_error_response(error: OAuthError) -> JSONResponse:
    body: dict[str, Any] = {
        "ok": False,
        "status": error.status,
        "code": error.code,
        "message": error.message,
        "diagnostic": error.diagnostic,
    }
    if error.details is not None:
        body["details"] = error.details
    return JSONResponse(status_code=error.status, content=body)


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def calculate_expires_at(expires_in: int | None) -> datetime | None:
    if not expires_in:
        return None
    return datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(seconds=int(expires_in))


def build_google_auth_url(client_id: str, redirect_uri: str, scopes: list[str], state: str) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def safe_json(response: httpx.Response) -> dict[str, Any]:
    body = response.text
    if not body.strip():
        return {"error": "Empty response"}
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return {"error": "Invalid JSON", "raw": body[:200]}
    return data if isinstance(data, dict) else {"error": "Invalid JSON", "raw": body[:200]}


def exchange_code_for_tokens(
    code: str,
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
) -> GoogleTokens:
    try:
        response = httpx.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
            timeout=TOKEN_EXCHANGE_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        raise TokenExchangeError(f"Token exchange failed: {exc}") from exc

    data = safe_json(response)
    if not response.is_success or "access_token" not in data:
        error = data.get("error_description") or data.get("error") or f"HTTP {response.status_code}"
        log_event("oauth_token_exchange_failed", status_code=response.status_code, error=str(error))
        raise TokenExchangeError(f"Token exchange failed: {error}")

    return GoogleTokens(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_in=data.get("expires_in"),
        scope=data.get("scope"),
        token_type=data.get("token_type"),
    )


def state_cookie_kwargs() -> dict[str, Any]:
    return {
        "httponly": True,
        "secure": APP_ENV == "prod",
        "samesite": "lax",
        "max_age": STATE_COOKIE_MAX_AGE,
        "path": "/",
    }


def encode_user_state(user_id: str) -> str:
    """Signed, short-lived state for the dashboard Drive flow."""
    now = int(time.time())
    payload = {"sub": user_id, "nonce": generate_state(), "iat": now, "exp": now + STATE_COOKIE_MAX_AGE}
    return jwt.encode(payload, STATE_SECRET, algorithm="HS256")


def decode_user_state(state: str) -> str | None:
    try:
        payload = jwt.decode(state, STATE_SECRET, algorithms=["HS256"])
    except JWTError:
        return None
    user_id = payload.get("sub")
    return str(user_id) if user_id else None


def drive_redirect_uri() -> str:
    return GOOGLE_REDIRECT_URI or f"{APP_URL}/api/drive/callback"


def public_config() -> dict[str, Any]:
    """Settings overview for the OAuth setup screen; the secret is reported as a flag."""
    return {
        "message": "Google OAuth Configuration",
        "config": {
            "clientId": f"{GOOGLE_CLIENT_ID[:12]}..." if GOOGLE_CLIENT_ID else "NOT_SET",
            "redirectUri": GOOGLE_REDIRECT_URI or "NOT_SET",
            "hasClientSecret": bool(GOOGLE_CLIENT_SECRET),
            "appUrl": APP_URL,
        },
        "expectedRedirectUri": f"{APP_URL}/api/google/oauth/callback",
    }


def config_status(redirect_uri: str | None = None) -> dict[str, Any]:
    return {
        "clientIdConfigured": bool(GOOGLE_CLIENT_ID),
        "clientSecretConfigured": bool(GOOGLE_CLIENT_SECRET),
        "redirectUriConfigured": bool(GOOGLE_REDIRECT_URI),
        "redirectUri": redirect_uri or GOOGLE_REDIRECT_URI or None,
    }
