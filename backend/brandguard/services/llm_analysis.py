from __future__ import annotations

import hashlib
import json
import os
import re
import threading
import time
from typing import Any, Literal, Protocol

from anthropic import Anthropic, AnthropicError
from pydantic import ValidationError, field_validator

from brandguard.core.observability import log_event
from brandguard.core.schemas import CamelModel
from brandguard.services.brand_rules_service import BrandRules, count_rules

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022")
ANALYSIS_CACHE_BACKEND = os.getenv("ANALYSIS_CACHE_BACKEND", "memory").strip().lower()
ANALYSIS_CACHE_TTL_SECONDS = int(os.getenv("ANALYSIS_CACHE_TTL_SECONDS", str(24 * 60 * 60)))
REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")

MAX_TOKENS = 4000
TEMPERATURE = 0.1

ISSUE_TYPES = ("grammar", "banned_word", "color_violation", "image_violation", "voice_tone", "other")

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


class LLMAnalysisError(RuntimeError):
    pass


class IssueLocation(CamelModel):
    line: int | None = None
    position: int | None = None
    context: str | None = None


class BrandIssue(CamelModel):
    type: str
    severity: Literal["high", "medium", "low"]
    message: str
    location: IssueLocation | None = None
    suggestion: str | None = None
    rule_violated: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> str:
        normalized = str(value or "").strip().lower()
        return normalized if normalized in ISSUE_TYPES else "other"

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, value: Any) -> str:
        return str(value or "").strip().lower()


class AnalysisSummary(CamelModel):
    total_issues: int
    high_severity: int
    medium_severity: int
    low_severity: int
    compliance_score: int


class AnalysisMetadata(CamelModel):
    analysis_time: int
    content_length: int
    rules_applied: int


class BrandAnalysisRequest(CamelModel):
    content: str
    brand_rules: BrandRules | None = None
    brand_guidelines: str | None = None
    file_name: str | None = None
    colors: list[str] = []
    images: list[str] = []


class BrandAnalysisResponse(CamelModel):
    issues: list[BrandIssue]
    summary: AnalysisSummary
    metadata: AnalysisMetadata


class AnalysisCache(Protocol):
    def get(self, key: str) -> dict | None: ...

    def set(self, key: str, value: dict) -> None: ...


class InMemoryAnalysisCache:
    def __init__(self, ttl_seconds: int = ANALYSIS_CACHE_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, dict]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: dict) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic() + self.ttl_seconds, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisAnalysisCache:
    prefix = "brandguard:analysis:"

    def __init__(self, connection, ttl_seconds: int = ANALYSIS_CACHE_TTL_SECONDS) -> None:
        self.connection = connection
        self.ttl_seconds = ttl_seconds

    def get(self, key: str) -> dict | None:
        raw = self.connection.get(self.prefix + key)
        return json.loads(raw) if raw else None

    def set(self, key: str, value: dict) -> None:
        self.connection.setex(self.prefix + key, self.ttl_seconds, json.dumps(value))


def build_analysis_cache() -> AnalysisCache:
    if ANALYSIS_CACHE_BACKEND == "redis":
        from redis import Redis

        return RedisAnalysisCache(Redis.from_url(REDIS_URL))
    return InMemoryAnalysisCache()


def rules_fingerprint(request: BrandAnalysisRequest) -> str:
    if request.brand_guidelines:
        return request.brand_guidelines
    if request.brand_rules is not None:
        return request.brand_rules.canonical_json()
    return ""


def cache_key(request: BrandAnalysisRequest) -> str:
    material = json.dumps({"content": request.content, "rules": rules_fingerprint(request)}, sort_keys=True)
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items) if items else "- (none)"


def _rules_section(rules: BrandRules) -> str:
    return "\n".join(
        [
            "BRAND RULES:",
            f"Grammar expectations: {rules.grammar.expectations}",
            "Grammar rules:",
            _bullets(rules.grammar.rules),
            f"Banned words: {', '.join(rules.banned_words) or '(none)'}",
            f"Approved colors: {', '.join(rules.approved_colors) or '(none)'}",
            "Image rules:",
            _bullets(rules.image_restrictions.rules),
            f"Allowed image formats: {', '.join(rules.image_restrictions.allowed_formats)}",
            f"Image size requirements: {rules.image_restrictions.size_requirements}",
            f"Voice and tone: {rules.voice_and_tone.description}",
            "Voice examples:",
            _bullets(rules.voice_and_tone.examples),
            "Additional rules:",
            _bullets(rules.additional_rules),
        ]
    )


_RESPONSE_FORMAT = """REQUIRED JSON FORMAT:
Respond with ONLY a JSON array, no prose before or after it. Each element:
{
  "type": "grammar" | "banned_word" | "color_violation" | "image_violation" | "voice_tone" | "other",
  "severity": "high" | "medium" | "low",
  "message": "what is wrong",
  "location": {"line": 1, "position": 0, "context": "the offending text"},
  "suggestion": "how to fix it",
  "ruleViolated": "the rule that was broken"
}
Return empty array [] if no violations found."""


def build_prompt(request: BrandAnalysisRequest) -> str:
    source = f' (from "{request.file_name}")' if request.file_name else ""
    sections = [
        "You are a professional brand proofreader and compliance reviewer. Check the content below "
        "against the brand guidelines and report every violation you find. Be specific and only report "
        "genuine violations.",
        f'CONTENT TO ANALYZE{source}:\n"""\n{request.content}\n"""',
    ]
    if request.colors:
        sections.append(f"COLORS USED IN THE FILE: {', '.join(request.colors)}")
    if request.images:
        sections.append(f"IMAGES IN THE FILE: {', '.join(request.images)}")
    if request.brand_guidelines:
        sections.append(f"BRAND GUIDELINES:\n{request.brand_guidelines}")
    elif request.brand_rules is not None:
        sections.append(_rules_section(request.brand_rules))
    sections.append(_RESPONSE_FORMAT)
    return "\n\n".join(sections)


def parse_issues(text: str) -> list[BrandIssue]:
    match = _JSON_ARRAY_RE.search(text or "")
    if match is None:
        log_event("llm_response_without_json", length=len(text or ""))
        return []
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        log_event("llm_response_parse_failed", error=str(exc))
        return []
    if not isinstance(data, list):
        return []

    issues: list[BrandIssue] = []
    for item in data:
        try:
            issues.append(BrandIssue.model_validate(item))
        except ValidationError:
            log_event("llm_issue_dropped", item=str(item)[:200])
    return issues


def compliance_score(high: int, medium: int, low: int) -> int:
    if high == medium == low == 0:
        return 100
    return max(0, round(100 - (high * 10 + medium * 5 + low * 2)))


def summarize_issues(issues: list[BrandIssue]) -> AnalysisSummary:
    high = sum(1 for issue in issues if issue.severity == "high")
    medium = sum(1 for issue in issues if issue.severity == "medium")
    low = sum(1 for issue in issues if issue.severity == "low")
    return AnalysisSummary(
        total_issues=len(issues),
        high_severity=high,
        medium_severity=medium,
        low_severity=low,
        compliance_score=compliance_score(high, medium, low),
    )


def rules_applied(request: BrandAnalysisRequest) -> int:
    if request.brand_guidelines:
        return 1
    if request.brand_rules is None:
        return 0
    return count_rules(request.brand_rules) + len(request.brand_rules.voice_and_tone.examples)


class BrandAnalysisClient:
    def __init__(
        self,
        anthropic_client: Anthropic | None,
        cache: AnalysisCache,
        *,
        model: str = ANTHROPIC_MODEL,
        max_tokens: int = MAX_TOKENS,
        temperature: float = TEMPERATURE,
    ) -> None:
        self.anthropic_client = anthropic_client
        self.cache = cache
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def _complete(self, prompt: str) -> str:
        if self.anthropic_client is None:
            raise LLMAnalysisError("Failed to analyze content with Claude: ANTHROPIC_API_KEY is not configured")
        try:
            message = self.anthropic_client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except AnthropicError as exc:
            log_event("llm_request_failed", model=self.model, error=str(exc))
            raise LLMAnalysisError("Failed to analyze content with Claude") from exc
        return "".join(getattr(block, "text", "") for block in message.content)

    def analyze_content(self, request: BrandAnalysisRequest) -> BrandAnalysisResponse:
        key = cache_key(request)
        cached = self.cache.get(key)
        if cached is not None:
            log_event("analysis_cache_hit", cache_key=key[:12])
            return BrandAnalysisResponse.model_validate(cached)

        started = time.perf_counter()
        issues = parse_issues(self._complete(build_prompt(request)))
        response = BrandAnalysisResponse(
            issues=issues,
            summary=summarize_issues(issues),
            metadata=AnalysisMetadata(
                analysis_time=int((time.perf_counter() - started) * 1000),
                content_length=len(request.content),
                rules_applied=rules_applied(request),
            ),
        )
        self.cache.set(key, response.model_dump(by_alias=True))
        log_event(
            "analysis_completed",
            model=self.model,
            total_issues=response.summary.total_issues,
            compliance_score=response.summary.compliance_score,
        )
        return response


def create_anthropic_client() -> Anthropic | None:
    if not ANTHROPIC_API_KEY:
        return None
    return Anthropic(api_key=ANTHROPIC_API_KEY)
