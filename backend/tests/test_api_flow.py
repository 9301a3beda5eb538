import time
from urllib.parse import urlsplit

from brandguard.db.database import SessionLocal
from brandguard.db.models import AnalysisIssue, UploadedFile
from brandguard.services import upload_service

from conftest import AuthedUser, png_with_dimensions


def _upload(client, user: AuthedUser, name: str = "post.txt", data: bytes = b"Hello world", mime: str = "text/plain") -> dict:
    resp = client.post("/api/user/upload/process", files=[("files", (name, data, mime))], headers=user.headers)
    assert resp.status_code == 200
    return resp.json()


def _uploaded_file_id(client, user: AuthedUser, **kwargs) -> str:
    body = _upload(client, user, **kwargs)
    return body["results"][0]["fileId"]


def test_upload_capabilities(client, login) -> None:
    resp = client.get("/api/user/upload/process", headers=login().headers)

    assert resp.status_code == 200
    body = resp.json()
    assert "application/pdf" in body["supportedMimeTypes"]
    assert ".docx" in body["supportedExtensions"]
    assert body["parseTimeoutSeconds"] == 30


def test_upload_without_files_is_rejected(client, login) -> None:
    resp = client.post("/api/user/upload/process", headers=login().headers)

    assert resp.status_code == 400
    assert resp.json() == {"error": "No files provided"}


def test_upload_parses_text_and_completes(client, login) -> None:
    user = login()
    body = _upload(client, user)

    assert body["message"] == "Files processed"
    assert body["totalFiles"] == 1
    assert body["successCount"] == 1
    assert body["failedCount"] == 0
    result = body["results"][0]
    assert result["status"] == "completed"
    assert result["filename"] == "post.txt"
    assert result["parsing"]["success"] is True
    assert result["parsing"]["wordCount"] == 2
    assert result["parsing"]["characterCount"] == 11
    assert result["parsing"]["textLength"] == 11

    with SessionLocal() as session:
        stored = session.get(UploadedFile, result["fileId"])
        assert stored.status == "completed"
        assert stored.user_id == user.id


def test_unsupported_upload_ends_failed(client, login) -> None:
    user = login()
    body = _upload(client, user, name="blob.bin", data=b"\x00\x01\x02", mime="application/octet-stream")

    result = body["results"][0]
    assert result["status"] == "failed"
    assert result["parsing"]["error"] == "Unsupported file type: application/octet-stream"
    assert body["failedCount"] == 1
    with SessionLocal() as session:
        assert session.get(UploadedFile, result["fileId"]).status == "failed"


def test_oversized_image_upload_completes_with_placeholder(client, login) -> None:
    body = _upload(client, login(), name="huge.png", data=png_with_dimensions(20000, 10000), mime="image/png")

    result = body["results"][0]
    assert result["status"] == "completed"
    assert result["parsing"]["colors"] == ["#000000", "#ffffff"]
    with SessionLocal() as session:
        assert session.get(UploadedFile, result["fileId"]).status == "completed"


def test_parser_crash_marks_upload_failed(client, login, monkeypatch) -> None:
    def _crash(data, filename, mime_type):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr(upload_service, "parse_file", _crash)
    body = _upload(client, login())

    result = body["results"][0]
    assert result["status"] == "failed"
    assert result["parsing"]["error"] == "File parsing failed: parser exploded"
    assert body["failedCount"] == 1
    with SessionLocal() as session:
        assert session.get(UploadedFile, result["fileId"]).status == "failed"


def test_parse_timeout_marks_upload_failed(client, login, monkeypatch) -> None:
    def _slow_parse(data, filename, mime_type):
        time.sleep(0.5)
        raise AssertionError("result should have been discarded")

    monkeypatch.setattr(upload_service, "PARSE_TIMEOUT_SECONDS", 0.05)
    monkeypatch.setattr(upload_service, "parse_file", _slow_parse)
    body = _upload(client, login())

    result = body["results"][0]
    assert result["status"] == "failed"
    assert result["parsing"]["error"] == "File parsing timed out after 0.05 seconds"
    with SessionLocal() as session:
        assert session.get(UploadedFile, result["fileId"]).status == "failed"


def test_files_list_and_detail(client, login) -> None:
    user = login()
    file_id = _uploaded_file_id(client, user)

    listing = client.get("/api/user/files", headers=user.headers)
    assert listing.status_code == 200
    files = listing.json()["files"]
    assert [item["id"] for item in files] == [file_id]
    assert files[0]["originalFilename"] == "post.txt"
    assert files[0]["processingResult"]["wordCount"] == 2

    detail = client.get(f"/api/user/files/{file_id}", headers=user.headers)
    assert detail.status_code == 200
    body = detail.json()
    assert body["processingResult"]["extractedText"] == "Hello world"
    assert body["latestAnalysis"] is None
    assert f"/api/user/files/{file_id}/download?token=" in body["downloadUrl"]


def test_file_detail_errors(client, login) -> None:
    owner = login()
    stranger = login()
    file_id = _uploaded_file_id(client, owner)

    missing = client.get("/api/user/files/does-not-exist", headers=owner.headers)
    assert missing.status_code == 404
    assert missing.json() == {"error": "File not found"}

    forbidden = client.get(f"/api/user/files/{file_id}", headers=stranger.headers)
    assert forbidden.status_code == 403
    assert forbidden.json() == {"error": "Access denied"}

    admin = login(email="support@danielbrian.com")
    assert client.get(f"/api/user/files/{file_id}", headers=admin.headers).status_code == 200


def test_signed_download_link(client, login) -> None:
    user = login()
    file_id = _uploaded_file_id(client, user)
    url = client.get(f"/api/user/files/{file_id}", headers=user.headers).json()["downloadUrl"]
    parts = urlsplit(url)

    resp = client.get(f"{parts.path}?{parts.query}")
    assert resp.status_code == 200
    assert resp.content == b"Hello world"

    tampered = client.get(f"/api/user/files/{file_id}/download?token=bogus")
    assert tampered.status_code == 403


def test_analyze_persists_results_and_sends_email(client, login, fake_anthropic, email_service) -> None:
    user = login()
    file_id = _uploaded_file_id(client, user)

    resp = client.post(f"/api/user/files/{file_id}/analyze", json={}, headers=user.headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Analysis completed successfully"
    assert body["summary"] == {
        "totalIssues": 2,
        "highSeverity": 1,
        "mediumSeverity": 0,
        "lowSeverity": 1,
        "complianceScore": 88,
    }
    assert body["issues"][0]["type"] == "banned_word"
    assert body["cached"] is False
    assert body["emailSent"] is True
    assert len(fake_anthropic.calls) == 1
    assert "Hello world" in fake_anthropic.calls[0]["messages"][0]["content"]

    assert len(email_service.sent) == 1
    sent = email_service.sent[0]
    assert sent["to"] == user.email
    assert "post.txt" in sent["html"]

    detail = client.get(f"/api/user/files/{file_id}", headers=user.headers).json()
    assert detail["latestAnalysis"]["id"] == body["analysisId"]
    assert detail["latestAnalysis"]["complianceScore"] == 88


def test_reanalysis_with_same_rules_reuses_result(client, login, fake_anthropic) -> None:
    user = login()
    file_id = _uploaded_file_id(client, user)

    first = client.post(f"/api/user/files/{file_id}/analyze", headers=user.headers).json()
    second = client.post(f"/api/user/files/{file_id}/analyze", headers=user.headers).json()

    assert second["message"] == "Analysis completed successfully (cached)"
    assert second["cached"] is True
    assert second["analysisId"] == first["analysisId"]
    assert second["summary"] == first["summary"]
    assert len(fake_anthropic.calls) == 1


def test_analyze_requires_processed_text(client, login) -> None:
    user = login()
    file_id = _uploaded_file_id(client, user, name="blob.bin", data=b"\x00", mime="application/octet-stream")

    resp = client.post(f"/api/user/files/{file_id}/analyze", headers=user.headers)

    assert resp.status_code == 400
    assert resp.json() == {"error": "File has not been processed or contains no text content"}


def test_analyze_reports_llm_failure(client, login, fake_anthropic) -> None:
    class _Broken:
        def create(self, **kwargs):
            from anthropic import AnthropicError

            raise AnthropicError("overloaded")

    fake_anthropic.messages = _Broken()
    user = login()
    file_id = _uploaded_file_id(client, user)

    resp = client.post(f"/api/user/files/{file_id}/analyze", headers=user.headers)

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "Claude analysis failed"
    assert "Failed to analyze content with Claude" in body["details"]


def test_analysis_listing_and_stats(client, login) -> None:
    user = login()
    file_id = _uploaded_file_id(client, user)
    analysis_id = client.post(f"/api/user/files/{file_id}/analyze", headers=user.headers).json()["analysisId"]

    listing = client.get("/api/user/analysis", params={"stats": "true"}, headers=user.headers)
    assert listing.status_code == 200
    body = listing.json()
    assert [item["id"] for item in body["analyses"]] == [analysis_id]
    assert body["stats"]["totalAnalyses"] == 1
    assert body["stats"]["avgComplianceScore"] == 88
    assert body["stats"]["totalIssues"] == 2

    by_file = client.get("/api/user/analysis", params={"fileId": file_id}, headers=user.headers).json()
    assert [item["id"] for item in by_file["analyses"]] == [analysis_id]
    assert by_file["stats"] is None

    other = client.get("/api/user/analysis", params={"fileId": file_id}, headers=login().headers).json()
    assert other["analyses"] == []


def test_issue_status_updates(client, login) -> None:
    user = login()
    file_id = _uploaded_file_id(client, user)
    analysis_id = client.post(f"/api/user/files/{file_id}/analyze", headers=user.headers).json()["analysisId"]

    issues_resp = client.get(f"/api/user/analysis/{analysis_id}/issues", headers=user.headers)
    assert issues_resp.status_code == 200
    issues = issues_resp.json()["issues"]
    assert len(issues) == 2
    assert {issue["status"] for issue in issues} == {"open"}
    issue_id = issues[0]["id"]

    invalid = client.patch(
        f"/api/user/analysis/{analysis_id}/issues",
        json={"issueId": issue_id, "status": "bogus"},
        headers=user.headers,
    )
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "Invalid issueId or status"}

    missing_id = client.patch(
        f"/api/user/analysis/{analysis_id}/issues",
        json={"status": "fixed"},
        headers=user.headers,
    )
    assert missing_id.status_code == 400

    unknown = client.patch(
        f"/api/user/analysis/{analysis_id}/issues",
        json={"issueId": "not-an-issue", "status": "fixed"},
        headers=user.headers,
    )
    assert unknown.status_code == 404
    assert unknown.json() == {"error": "Issue not found"}

    updated = client.patch(
        f"/api/user/analysis/{analysis_id}/issues",
        json={"issueId": issue_id, "status": "fixed"},
        headers=user.headers,
    )
    assert updated.status_code == 200
    assert updated.json() == {"message": "Issue status updated successfully", "issueId": issue_id, "status": "fixed"}
    with SessionLocal() as session:
        assert session.get(AnalysisIssue, issue_id).status == "fixed"


def test_issues_of_foreign_analysis_are_forbidden(client, login) -> None:
    owner = login()
    file_id = _uploaded_file_id(client, owner)
    analysis_id = client.post(f"/api/user/files/{file_id}/analyze", headers=owner.headers).json()["analysisId"]

    resp = client.get(f"/api/user/analysis/{analysis_id}/issues", headers=login().headers)
    assert resp.status_code == 403

    missing = client.get("/api/user/analysis/unknown/issues", headers=owner.headers)
    assert missing.status_code == 404
    assert missing.json() == {"error": "Analysis not found"}


def test_email_preferences(client, login, email_service) -> None:
    user = login()

    current = client.get("/api/user/email-preferences", headers=user.headers)
    assert current.json() == {"emailNotifications": True, "email": user.email}

    invalid = client.patch("/api/user/email-preferences", json={"emailNotifications": "yes"}, headers=user.headers)
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "emailNotifications must be a boolean"}

    disabled = client.patch("/api/user/email-preferences", json={"emailNotifications": False}, headers=user.headers)
    assert disabled.status_code == 200
    assert disabled.json()["emailNotifications"] is False

    file_id = _uploaded_file_id(client, user)
    body = client.post(f"/api/user/files/{file_id}/analyze", headers=user.headers).json()
    assert body["emailSent"] is False
    assert email_service.sent == []
