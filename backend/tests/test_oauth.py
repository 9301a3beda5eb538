from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from brandguard.db.database import SessionLocal
from brandguard.repositories.drive_repository import DriveRepository
from brandguard.services import oauth_service
from brandguard.services.oauth_service import GoogleTokens, TokenExchangeError, exchange_code_for_tokens, safe_json

CALLBACK = "/api/google/oauth/callback"


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(oauth_service, "GOOGLE_CLIENT_ID", "client-123.apps.googleusercontent.com")
    monkeypatch.setattr(oauth_service, "GOOGLE_CLIENT_SECRET", "shh")
    monkeypatch.setattr(oauth_service, "GOOGLE_REDIRECT_URI", "http://localhost:3000/api/google/oauth/callback")


def _fake_exchange(code: str, **kwargs) -> GoogleTokens:
    return GoogleTokens(access_token=f"ya29.{code}", refresh_token="1//refresh", expires_in=3600)


def test_start_without_config_reports_missing_settings(client, monkeypatch) -> None:
    monkeypatch.setattr(oauth_service, "GOOGLE_CLIENT_ID", "")
    monkeypatch.setattr(oauth_service, "GOOGLE_REDIRECT_URI", "")

    resp = client.get("/api/google/oauth/start")

    assert resp.status_code == 500
    body = resp.json()
    assert body["ok"] is False
    assert body["code"] == "OAUTH_CONFIG_MISSING"
    assert body["diagnostic"] == "SERVER_CONFIG"
    assert body["details"] == {"hasClientId": False, "hasRedirectUri": False}


def test_start_sets_state_cookie(client, configured) -> None:
    resp = client.get("/api/google/oauth/start")

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    state = resp.cookies["oauth_state"]
    assert body["state"] == f"{state[:8]}..."
    query = parse_qs(urlsplit(body["url"]).query)
    assert query["state"] == [state]
    assert query["client_id"] == ["client-123.apps.googleusercontent.com"]
    assert query["prompt"] == ["consent"]
    assert "HttpOnly" in resp.headers["set-cookie"]


def test_callback_with_google_error_redirects_to_settings(client) -> None:
    resp = client.get(CALLBACK, params={"error": "access_denied"}, follow_redirects=False)

    assert resp.status_code == 302
    location = resp.headers["location"]
    assert location.startswith(f"{oauth_service.APP_URL}/settings/drive?")
    assert parse_qs(urlsplit(location).query)["error"] == ["oauth_denied"]


def test_callback_requires_code_and_state(client) -> None:
    missing_code = client.get(CALLBACK, params={"state": "abc"})
    assert missing_code.status_code == 400
    assert missing_code.json()["code"] == "MISSING_CODE"

    missing_state = client.get(CALLBACK, params={"code": "abc"})
    assert missing_state.status_code == 400
    assert missing_state.json()["code"] == "MISSING_STATE"


def test_callback_rejects_state_mismatch(client, configured) -> None:
    client.cookies.set("oauth_state", "expected-state")

    resp = client.get(CALLBACK, params={"code": "abc", "state": "other-state"})

    assert resp.status_code == 400
    assert resp.json()["code"] == "OAUTH_STATE_MISMATCH"
    assert resp.json()["diagnostic"] == "SECURITY_ERROR"


def test_callback_reports_token_exchange_failure(client, configured, monkeypatch) -> None:
    def _fail(code: str, **kwargs) -> GoogleTokens:
        raise TokenExchangeError("Token exchange failed: invalid_grant")

    monkeypatch.setattr(oauth_service, "exchange_code_for_tokens", _fail)
    client.cookies.set("oauth_state", "s1")

    resp = client.get(CALLBACK, params={"code": "abc", "state": "s1"})

    assert resp.status_code == 400
    assert resp.json()["code"] == "TOKEN_EXCHANGE_FAILED"
    assert "invalid_grant" in resp.json()["details"]


def test_callback_requires_a_session(client, configured, monkeypatch) -> None:
    monkeypatch.setattr(oauth_service, "exchange_code_for_tokens", _fake_exchange)
    client.cookies.set("oauth_state", "s1")

    anonymous = client.get(CALLBACK, params={"code": "abc", "state": "s1"}, follow_redirects=False)
    assert parse_qs(urlsplit(anonymous.headers["location"]).query)["error"] == ["session_required"]

    invalid = client.get(
        CALLBACK,
        params={"code": "abc", "state": "s1"},
        headers={"Authorization": "Bearer not-a-jwt"},
        follow_redirects=False,
    )
    assert parse_qs(urlsplit(invalid.headers["location"]).query)["error"] == ["invalid_session"]


def test_full_flow_stores_tokens_and_clears_state(client, login, configured, monkeypatch) -> None:
    monkeypatch.setattr(oauth_service, "exchange_code_for_tokens", _fake_exchange)
    user = login()
    state = client.get("/api/google/oauth/start").cookies["oauth_state"]

    resp = client.get(CALLBACK, params={"code": "abc", "state": state}, headers=user.headers, follow_redirects=False)

    assert resp.status_code == 302
    assert parse_qs(urlsplit(resp.headers["location"]).query)["connected"] == ["1"]
    set_cookie = resp.headers["set-cookie"]
    assert set_cookie.startswith("oauth_state=")
    assert "Max-Age=0" in set_cookie
    with SessionLocal() as session:
        token = DriveRepository(session).get_token(user.id)
    assert token.access_token == "ya29.abc"
    assert token.expires_at is not None


def test_config_masks_client_id(client, configured) -> None:
    body = client.get("/api/google/oauth/config").json()

    assert body["config"]["clientId"] == "client-123.a..."
    assert body["config"]["hasClientSecret"] is True
    assert body["expectedRedirectUri"] == f"{oauth_service.APP_URL}/api/google/oauth/callback"
    assert "shh" not in str(body)


def test_safe_json_tolerates_empty_and_html_bodies() -> None:
    assert safe_json(httpx.Response(200, text="")) == {"error": "Empty response"}
    assert safe_json(httpx.Response(502, text="<html>Bad gateway</html>")) == {
        "error": "Invalid JSON",
        "raw": "<html>Bad gateway</html>",
    }
    assert safe_json(httpx.Response(200, json={"access_token": "t"})) == {"access_token": "t"}


def test_exchange_code_for_tokens(monkeypatch) -> None:
    seen: dict = {}

    def _post(url, data=None, headers=None, timeout=None):
        seen.update(url=url, data=data)
        return httpx.Response(200, json={"access_token": "ya29.x", "expires_in": 3599, "scope": "drive"})

    monkeypatch.setattr(oauth_service.httpx, "post", _post)

    tokens = exchange_code_for_tokens("code-1", client_id="cid", client_secret="sec", redirect_uri="http://cb")

    assert tokens.access_token == "ya29.x"
    assert tokens.refresh_token is None
    assert tokens.expires_in == 3599
    assert seen["url"] == oauth_service.GOOGLE_TOKEN_URL
    assert seen["data"]["grant_type"] == "authorization_code"


def test_exchange_failure_raises(monkeypatch) -> None:
    monkeypatch.setattr(
        oauth_service.httpx,
        "post",
        lambda *args, **kwargs: httpx.Response(400, json={"error": "invalid_grant", "error_description": "Bad code"}),
    )

    with pytest.raises(TokenExchangeError, match="Bad code"):
        exchange_code_for_tokens("code-1", client_id="cid", client_secret="sec", redirect_uri="http://cb")


def test_user_state_round_trip() -> None:
    state = oauth_service.encode_user_state("user-1")

    assert oauth_service.decode_user_state(state) == "user-1"
    assert oauth_service.decode_user_state(state + "x") is None
