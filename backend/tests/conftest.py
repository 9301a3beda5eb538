import io
import struct
import uuid
import zlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from PIL import Image

from brandguard.core.dependencies import get_drive_client_factory, get_email_service, get_llm_client
from brandguard.db.database import Base, SessionLocal, init_db
from brandguard.main import app
from brandguard.services import job_queue, upload_service
from brandguard.services.drive_client import DriveAccessError
from brandguard.services.email_service import EmailService
from brandguard.services.llm_analysis import BrandAnalysisClient, InMemoryAnalysisCache

DEV_SECRET = "dev-secret-change-me"

SAMPLE_ISSUES = """Here is what I found:
[
  {"type": "banned_word", "severity": "high", "message": "Uses banned word 'really'",
   "location": {"line": 1, "position": 6, "context": "really great"}, "suggestion": "Remove it",
   "ruleViolated": "Banned words"},
  {"type": "grammar", "severity": "low", "message": "Missing period",
   "location": {"line": 2, "context": "the end"}, "suggestion": "Add a period"}
]"""


@dataclass
class AuthedUser:
    id: str
    email: str
    headers: dict[str, str]


class FakeAnthropic:
    """Stands in for ``anthropic.Anthropic``; ``client.messages.create`` records prompts."""

    def __init__(self, reply: str = "[]") -> None:
        self.reply = reply
        self.calls: list[dict] = []
        self.messages = self

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.reply)])


class FakeEmailService(EmailService):
    def __init__(self, succeed: bool = True) -> None:
        super().__init__(api_key="SG.test", from_email="noreply@example.com", from_name="Brand Guard")
        self.succeed = succeed
        self.sent: list[dict] = []

    def _send(self, to_email: str, subject: str, html: str, text: str | None = None) -> bool:
        self.sent.append({"to": to_email, "subject": subject, "html": html, "text": text})
        return self.succeed


class FakeDrive:
    """In-memory Drive: ``files`` maps id to metadata, ``exports`` maps (id, mime) to text."""

    access_token = None
    expires_at = None

    def __init__(self) -> None:
        self.files: dict[str, dict] = {}
        self.exports: dict[tuple[str, str], str] = {}
        self.downloads: dict[str, bytes] = {}
        self.children: dict[str, list[dict]] = {}
        self.error: DriveAccessError | None = None

    def add_file(self, file_id: str, name: str, mime_type: str, parent: str | None = None, **extra) -> dict:
        metadata = {"id": file_id, "name": name, "mimeType": mime_type, **extra}
        self.files[file_id] = metadata
        if parent is not None:
            self.children.setdefault(parent, []).append(metadata)
        return metadata

    def _check(self) -> None:
        if self.error is not None:
            raise self.error

    def get_file(self, file_id: str) -> dict:
        self._check()
        if file_id not in self.files:
            raise DriveAccessError(f"Failed to get file metadata: {file_id} not found", status_code=404)
        return self.files[file_id]

    def export(self, file_id: str, mime_type: str) -> str:
        self._check()
        if (file_id, mime_type) not in self.exports:
            raise DriveAccessError(f"Failed to export file: {mime_type} not available", status_code=400)
        return self.exports[(file_id, mime_type)]

    def download(self, file_id: str) -> bytes:
        self._check()
        return self.downloads[file_id]

    def list_folder(self, folder_id: str) -> list[dict]:
        self._check()
        return list(self.children.get(folder_id, []))


def png_with_dimensions(width: int, height: int) -> bytes:
    """A valid 16x16 PNG whose header declares ``width`` x ``height``."""
    buffer = io.BytesIO()
    Image.new("RGB", (16, 16), (255, 0, 0)).save(buffer, format="PNG")
    data = bytearray(buffer.getvalue())
    data[16:24] = struct.pack(">II", width, height)
    data[29:33] = struct.pack(">I", zlib.crc32(bytes(data[12:29])))
    return bytes(data)


def make_token(user_id: str, email: str, *, secret: str = DEV_SECRET, expires_in: int = 600) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {
            "sub": user_id,
            "email": email,
            "aud": "authenticated",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
        },
        secret,
        algorithm="HS256",
    )


@pytest.fixture(autouse=True)
def _clean_tables():
    init_db()
    with SessionLocal() as session:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
    yield


@pytest.fixture(autouse=True)
def _isolated_uploads(tmp_path, monkeypatch):
    monkeypatch.setattr(upload_service, "UPLOAD_DIR", tmp_path / "uploads")
    monkeypatch.setattr(job_queue, "QUEUE_MODE", "inline")


@pytest.fixture
def fake_anthropic() -> FakeAnthropic:
    return FakeAnthropic(SAMPLE_ISSUES)


@pytest.fixture
def email_service() -> FakeEmailService:
    return FakeEmailService()


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def client(fake_anthropic, email_service, drive):
    llm_client = BrandAnalysisClient(fake_anthropic, InMemoryAnalysisCache())
    app.dependency_overrides[get_llm_client] = lambda: llm_client
    app.dependency_overrides[get_email_service] = lambda: email_service
    app.dependency_overrides[get_drive_client_factory] = lambda: (lambda token: drive)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def login():
    def _login(email: str | None = None, user_id: str | None = None) -> AuthedUser:
        user_id = user_id or str(uuid.uuid4())
        email = email or f"user-{uuid.uuid4().hex}@example.com"
        return AuthedUser(id=user_id, email=email, headers={"Authorization": f"Bearer {make_token(user_id, email)}"})

    return _login
