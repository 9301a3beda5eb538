import pytest
from anthropic import AnthropicError

from brandguard.services.brand_rules_service import default_brand_rules
from brandguard.services.llm_analysis import (
    BrandAnalysisClient,
    BrandAnalysisRequest,
    InMemoryAnalysisCache,
    LLMAnalysisError,
    RedisAnalysisCache,
    build_prompt,
    cache_key,
    compliance_score,
    parse_issues,
)

from conftest import SAMPLE_ISSUES, FakeAnthropic


class _FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, tuple[int, str]] = {}

    def get(self, key: str):
        entry = self.store.get(key)
        return entry[1].encode("utf-8") if entry else None

    def setex(self, key: str, ttl: int, value: str) -> None:
        self.store[key] = (ttl, value)


class _FailingMessages:
    def create(self, **kwargs):
        raise AnthropicError("upstream overloaded")


def _request(content: str = "This is really great", **overrides) -> BrandAnalysisRequest:
    fields = {"content": content, "brand_rules": default_brand_rules(), "file_name": "post.txt", **overrides}
    return BrandAnalysisRequest(**fields)


def test_parse_issues_reads_first_json_array_span() -> None:
    issues = parse_issues(SAMPLE_ISSUES)

    assert [issue.type for issue in issues] == ["banned_word", "grammar"]
    assert issues[0].location.context == "really great"
    assert issues[0].rule_violated == "Banned words"


def test_parse_issues_tolerates_bad_output() -> None:
    assert parse_issues("no violations here") == []
    assert parse_issues("[not json]") == []
    assert parse_issues("") == []


def test_unknown_issue_type_becomes_other() -> None:
    issues = parse_issues('[{"type": "Typography", "severity": "MEDIUM", "message": "Wrong font"}]')

    assert issues[0].type == "other"
    assert issues[0].severity == "medium"


def test_compliance_score_weights() -> None:
    assert compliance_score(0, 0, 0) == 100
    assert compliance_score(1, 0, 1) == 88
    assert compliance_score(12, 0, 0) == 0


def test_identical_requests_hit_the_cache() -> None:
    fake = FakeAnthropic(SAMPLE_ISSUES)
    client = BrandAnalysisClient(fake, InMemoryAnalysisCache())

    first = client.analyze_content(_request())
    second = client.analyze_content(_request())

    assert len(fake.calls) == 1
    assert second.summary == first.summary
    assert first.summary.total_issues == 2
    assert first.summary.high_severity == 1
    assert first.summary.compliance_score == 88


def test_changed_rules_miss_the_cache() -> None:
    fake = FakeAnthropic("[]")
    client = BrandAnalysisClient(fake, InMemoryAnalysisCache())

    client.analyze_content(_request())
    client.analyze_content(_request(brand_rules=None, brand_guidelines="Never say synergy"))

    assert len(fake.calls) == 2
    assert cache_key(_request()) != cache_key(_request(brand_rules=None, brand_guidelines="Never say synergy"))


def test_expired_cache_entries_are_dropped() -> None:
    cache = InMemoryAnalysisCache(ttl_seconds=0)
    cache.set("key", {"value": 1})
    assert cache.get("key") is None


def test_redis_cache_stores_with_ttl() -> None:
    connection = _FakeRedis()
    fake = FakeAnthropic("[]")
    client = BrandAnalysisClient(fake, RedisAnalysisCache(connection, ttl_seconds=60))

    client.analyze_content(_request())
    client.analyze_content(_request())

    assert len(fake.calls) == 1
    [(ttl, _)] = connection.store.values()
    assert ttl == 60


def test_missing_api_key_raises_analysis_error() -> None:
    client = BrandAnalysisClient(None, InMemoryAnalysisCache())
    with pytest.raises(LLMAnalysisError):
        client.analyze_content(_request())


def test_sdk_failure_is_wrapped() -> None:
    fake = FakeAnthropic()
    fake.messages = _FailingMessages()
    client = BrandAnalysisClient(fake, InMemoryAnalysisCache())

    with pytest.raises(LLMAnalysisError, match="Failed to analyze content with Claude"):
        client.analyze_content(_request())


def test_prompt_prefers_guidelines_over_rules() -> None:
    with_rules = build_prompt(_request(colors=["#FF0000"]))
    with_guidelines = build_prompt(_request(brand_guidelines="Brand Guidelines from \"Guide\""))

    assert "BRAND RULES:" in with_rules
    assert "Banned words: very, really, actually, literally, obviously" in with_rules
    assert "COLORS USED IN THE FILE: #FF0000" in with_rules
    assert "BRAND GUIDELINES:" in with_guidelines
    assert "BRAND RULES:" not in with_guidelines
    assert "Return empty array [] if no violations found." in with_rules
