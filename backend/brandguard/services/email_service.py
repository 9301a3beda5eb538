"""Analysis-result emails, rendered with jinja2 and delivered through SendGrid."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import jinja2

from brandguard.core.observability import log_event

SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY", "")
SENDGRID_FROM_EMAIL = os.getenv("SENDGRID_FROM_EMAIL", "")
SENDGRID_FROM_NAME = os.getenv("SENDGRID_FROM_NAME", "Brand Guard")
SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
SEND_TIMEOUT_SECONDS = 10.0

APP_URL = (os.getenv("APP_URL") or os.getenv("NEXT_PUBLIC_APP_URL", "http://localhost:3000")).rstrip("/")

HTML_ISSUE_LIMIT = 10
TEXT_ISSUE_LIMIT = 5

templates_path = Path(__file__).resolve().parent.parent / "templates" / "emails"
template_env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(searchpath=templates_path),
    autoescape=jinja2.select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


@dataclass
class EmailIssue:
    type: str
    severity: str
    message: str
    suggestion: str | None = None
    context: str | None = None


@dataclass
class EmailAnalysisData:
    user_email: str
    file_name: str
    file_id: str
    analysis_id: str
    compliance_score: int
    total_issues: int
    high_severity: int
    medium_severity: int
    low_severity: int
    analysis_date: str
    user_name: str | None = None
    issues: list[EmailIssue] = field(default_factory=list)
    download_url: str | None = None
    drive_folder_name: str | None = None


def score_color(score: int) -> str:
    if score >= 90:
        return "#10b981"
    if score >= 70:
        return "#f59e0b"
    return "#ef4444"


def analysis_subject(data: EmailAnalysisData) -> str:
    return f"Brand Analysis Complete: {data.file_name} (Score: {data.compliance_score}/100)"


def render_analysis_email(data: EmailAnalysisData) -> tuple[str, str]:
    context = {
        "data": data,
        "score_color": score_color(data.compliance_score),
        "html_issues": data.issues[:HTML_ISSUE_LIMIT],
        "html_remaining": max(0, len(data.issues) - HTML_ISSUE_LIMIT),
        "text_issues": data.issues[:TEXT_ISSUE_LIMIT],
        "text_remaining": max(0, len(data.issues) - TEXT_ISSUE_LIMIT),
        "dashboard_url": f"{APP_URL}/dashboard",
    }
    html = template_env.get_template("analysis_results.html").render(**context)
    text = template_env.get_template("analysis_results.txt").render(**context)
    return html, text


class EmailService:
    """Transactional email sender. Failures are logged and reported as ``False``."""

    def __init__(
        self,
        api_key: str = SENDGRID_API_KEY,
        from_email: str = SENDGRID_FROM_EMAIL,
        from_name: str = SENDGRID_FROM_NAME,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.http_client = http_client

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    def _send(self, to_email: str, subject: str, html: str, text: str | None = None) -> bool:
        if not self.configured:
            log_event("email_not_configured", to=to_email, subject=subject)
            return False

        content = [{"type": "text/plain", "value": text}] if text else []
        content.append({"type": "text/html", "value": html})
        payload = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": subject,
            "content": content,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self.http_client is not None:
                response = self.http_client.post(SENDGRID_SEND_URL, json=payload, headers=headers)
            else:
                response = httpx.post(SENDGRID_SEND_URL, json=payload, headers=headers, timeout=SEND_TIMEOUT_SECONDS)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            log_event("email_send_failed", to=to_email, subject=subject, error=str(exc))
            return False

        log_event("email_sent", to=to_email, subject=subject)
        return True

    def send_analysis_results(self, data: EmailAnalysisData) -> bool:
        try:
            html, text = render_analysis_email(data)
        except jinja2.TemplateError as exc:
            log_event("email_render_failed", analysis_id=data.analysis_id, error=str(exc))
            return False
        return self._send(data.user_email, analysis_subject(data), html, text)

    def send_test_email(self, to_email: str) -> bool:
        try:
            html = template_env.get_template("test_email.html").render(from_name=self.from_name, app_url=APP_URL)
        except jinja2.TemplateError as exc:
            log_event("email_render_failed", to=to_email, error=str(exc))
            return False
        text = f"This is a test email from {self.from_name}. Email delivery is configured correctly."
        return self._send(to_email, f"{self.from_name} test email", html, text)
