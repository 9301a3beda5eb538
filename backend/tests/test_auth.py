import pytest
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError

from brandguard.db.database import SessionLocal
from brandguard.db.models import User
from brandguard.repositories.user_repository import UserRepository
from brandguard.services import auth_service
from brandguard.services.auth_service import AuthIdentity, resolve_user

from conftest import make_token


def test_missing_authorization_header_is_rejected(client) -> None:
    resp = client.get("/api/user/files")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}


def test_non_bearer_scheme_is_rejected(client) -> None:
    resp = client.get("/api/user/files", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}


def test_token_signed_with_wrong_secret_is_rejected(client) -> None:
    token = make_token("user-1", "someone@example.com", secret="wrong-secret")
    resp = client.get("/api/user/files", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid token"}


def test_expired_token_is_rejected(client) -> None:
    token = make_token("user-1", "someone@example.com", expires_in=-60)
    resp = client.get("/api/user/files", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid token"}


def test_first_request_creates_user_with_domain_role(client, login) -> None:
    member = login()
    admin = login(email="owner@danielbrian.com")

    assert client.get("/api/user/email-preferences", headers=member.headers).status_code == 200
    assert client.get("/api/user/email-preferences", headers=admin.headers).status_code == 200

    with SessionLocal() as session:
        repository = UserRepository(session)
        assert repository.get_by_id(member.id).role == "user"
        assert repository.get_by_id(admin.id).role == "admin"
        assert repository.get_by_id(member.id).email_notifications is True


def test_admin_routes_require_admin_role(client, login) -> None:
    member = login()
    resp = client.get("/api/admin/users", headers=member.headers)
    assert resp.status_code == 403
    assert resp.json() == {"error": "Admin access required"}

    admin = login(email="boss@danielbrian.com")
    resp = client.get("/api/admin/users", headers=admin.headers)
    assert resp.status_code == 200
    emails = {user["email"] for user in resp.json()["users"]}
    assert "boss@danielbrian.com" in emails


def test_disabled_account_is_forbidden(client, login) -> None:
    member = login()
    client.get("/api/user/email-preferences", headers=member.headers)
    with SessionLocal() as session:
        user = session.get(User, member.id)
        user.is_active = False
        session.commit()

    resp = client.get("/api/user/files", headers=member.headers)
    assert resp.status_code == 403
    assert resp.json() == {"error": "Account disabled"}


def test_dev_secret_is_refused_in_production(client, login, monkeypatch) -> None:
    monkeypatch.setattr(auth_service, "APP_ENV", "prod")
    resp = client.get("/api/user/files", headers=login().headers)
    assert resp.status_code == 500
    assert resp.json() == {"error": "Auth is misconfigured"}


def test_unresolved_creation_race_reports_500(monkeypatch) -> None:
    def _conflict(self, user):
        raise IntegrityError("INSERT INTO users", {}, Exception("duplicate key"))

    monkeypatch.setattr(UserRepository, "create", _conflict)

    with pytest.raises(HTTPException) as excinfo:
        resolve_user(AuthIdentity(id="ghost", email="ghost@example.com"))

    assert excinfo.value.status_code == 500
    assert excinfo.value.detail == {"error": "User creation race condition"}


def test_existing_user_is_matched_by_email(client, login) -> None:
    first = login(email="same@example.com")
    client.get("/api/user/email-preferences", headers=first.headers)

    record = resolve_user(AuthIdentity(id="another-id", email="same@example.com"))

    assert record.id == first.id
