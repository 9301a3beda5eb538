import httpx
import jinja2

from brandguard.services import email_service as email_module
from brandguard.services.email_service import (
    SENDGRID_SEND_URL,
    EmailAnalysisData,
    EmailIssue,
    EmailService,
    analysis_subject,
    render_analysis_email,
)
from brandguard.services.notification_service import deliver_analysis_email


def _analysis_data(issue_count: int) -> EmailAnalysisData:
    issues = [
        EmailIssue(type="banned_word", severity="high", message=f"Issue number {index}", context=f"ctx {index}")
        for index in range(issue_count)
    ]
    return EmailAnalysisData(
        user_email="writer@example.com",
        file_name="launch <draft>.docx",
        file_id="file-1",
        analysis_id="analysis-1",
        compliance_score=64,
        total_issues=issue_count,
        high_severity=issue_count,
        medium_severity=0,
        low_severity=0,
        analysis_date="2024-05-01 10:00 UTC",
        issues=issues,
    )


def test_html_lists_first_ten_issues_and_counts_the_rest() -> None:
    html, text = render_analysis_email(_analysis_data(12))

    assert "Issue number 9" in html
    assert "Issue number 10" not in html
    assert "... and 2 more issues" in html
    assert "Issue number 4" in text
    assert "Issue number 5" not in text
    assert "... and 7 more issues" in text
    assert "launch &lt;draft&gt;.docx" in html


def test_clean_file_says_no_issues_found() -> None:
    html, text = render_analysis_email(_analysis_data(0))

    assert "No Issues Found" in html
    assert "No Issues Found" in text
    assert "more issues" not in html


def test_subject_carries_file_and_score() -> None:
    assert analysis_subject(_analysis_data(1)) == "Brand Analysis Complete: launch <draft>.docx (Score: 64/100)"


def test_unconfigured_service_does_not_send() -> None:
    service = EmailService(api_key="", from_email="")

    assert service.configured is False
    assert service.send_analysis_results(_analysis_data(1)) is False


def test_sendgrid_payload_and_success() -> None:
    captured: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202)

    service = EmailService(
        api_key="SG.key",
        from_email="noreply@example.com",
        from_name="Brand Guard",
        http_client=httpx.Client(transport=httpx.MockTransport(_handler)),
    )

    assert service.send_test_email("admin@example.com") is True
    [request] = captured
    assert str(request.url) == SENDGRID_SEND_URL
    assert request.headers["authorization"] == "Bearer SG.key"
    assert b'"email":"admin@example.com"' in request.content.replace(b" ", b"")


def test_sendgrid_failure_returns_false() -> None:
    service = EmailService(
        api_key="SG.key",
        from_email="noreply@example.com",
        http_client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )

    assert service.send_analysis_results(_analysis_data(3)) is False


def test_test_email_template_fault_returns_false(monkeypatch) -> None:
    captured: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202)

    service = EmailService(
        api_key="SG.key",
        from_email="noreply@example.com",
        http_client=httpx.Client(transport=httpx.MockTransport(_handler)),
    )
    monkeypatch.setattr(email_module, "template_env", jinja2.Environment(loader=jinja2.DictLoader({})))

    assert service.send_test_email("admin@example.com") is False
    assert captured == []


def test_delivery_for_unknown_analysis_is_skipped(email_service) -> None:
    assert deliver_analysis_email("missing-analysis", email_service) is False
    assert email_service.sent == []


def test_admin_test_email(client, login, email_service) -> None:
    admin = login(email="ops@danielbrian.com")

    default_recipient = client.post("/api/admin/test-email", headers=admin.headers)
    assert default_recipient.status_code == 200
    assert default_recipient.json() == {"success": True, "message": f"Test email sent to {admin.email}"}

    explicit = client.post("/api/admin/test-email", json={"testEmail": "qa@example.com"}, headers=admin.headers)
    assert explicit.json()["message"] == "Test email sent to qa@example.com"
    assert [item["to"] for item in email_service.sent] == [admin.email, "qa@example.com"]
    assert email_service.sent[0]["subject"] == "Brand Guard test email"

    email_service.succeed = False
    failed = client.post("/api/admin/test-email", headers=admin.headers)
    assert failed.status_code == 500
    assert failed.json()["error"] == "Failed to send test email"

    assert client.post("/api/admin/test-email", headers=login().headers).status_code == 403


def test_admin_dashboard_and_files(client, login) -> None:
    user = login()
    upload = client.post(
        "/api/user/upload/process",
        files=[
            ("files", ("post.txt", b"Hello world", "text/plain")),
            ("files", ("blob.bin", b"\x00\x01", "application/octet-stream")),
        ],
        headers=user.headers,
    )
    text_file_id = upload.json()["results"][0]["fileId"]
    client.post(f"/api/user/files/{text_file_id}/analyze", headers=user.headers)
    admin = login(email="ops@danielbrian.com")

    stats = client.get("/api/admin/dashboard", headers=admin.headers).json()["stats"]
    assert stats["totalUsers"] == 2
    assert stats["filesProcessed"] == 1
    assert stats["storageUsed"] == 13
    assert len(stats["recentActivity"]) == 1
    assert stats["recentActivity"][0]["complianceScore"] == 88

    files = client.get("/api/admin/files", headers=admin.headers).json()
    assert {item["userId"] for item in files["files"]} == {user.id}
    assert files["stats"]["total"] == 2
    assert files["stats"]["completed"] == 1
    assert files["stats"]["failed"] == 1
    assert files["stats"]["totalSize"] == 13
    assert files["stats"]["types"] == {"images": 0, "pdfs": 0, "documents": 1, "other": 1}


def test_admin_role_update(client, login) -> None:
    user = login()
    client.get("/api/user/email-preferences", headers=user.headers)
    admin = login(email="ops@danielbrian.com")

    promoted = client.patch("/api/admin/users", json={"email": user.email, "role": "admin"}, headers=admin.headers)
    assert promoted.status_code == 200
    assert promoted.json()["message"] == "User role updated successfully"
    assert promoted.json()["user"]["role"] == "admin"

    invalid = client.patch("/api/admin/users", json={"email": user.email, "role": "owner"}, headers=admin.headers)
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "Invalid email or role"}

    unknown = client.patch("/api/admin/users", json={"email": "nobody@example.com", "role": "user"}, headers=admin.headers)
    assert unknown.status_code == 404

    users = client.get("/api/admin/users", headers=admin.headers).json()["users"]
    assert {item["email"]: item["role"] for item in users}[user.email] == "admin"
