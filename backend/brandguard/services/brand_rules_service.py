"""Build a categorized ``BrandRules`` set from the active Drive folder's files."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any, Callable, Iterable

from pydantic import Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from brandguard.core.observability import log_event
from brandguard.core.schemas import CamelModel
from brandguard.db.database import SessionLocal
from brandguard.db.models import DriveFile
from brandguard.repositories.drive_repository import DriveRepository
from brandguard.repositories.rules_cache_repository import RulesCacheRepository

DEFAULT_GRAMMAR_EXPECTATIONS = "Follow professional writing standards"
DEFAULT_VOICE_DESCRIPTION = "Maintain consistent brand voice and tone"
DEFAULT_IMAGE_FORMATS = ["jpg", "png", "svg"]
DEFAULT_IMAGE_SIZE = "Follow standard web image guidelines"
OTHER_EXCERPT_LENGTH = 200

_BULLET_RE = re.compile(r"^\s*(?:[-•*]|\d+[.)])\s+(.*)$")
_HEX_COLOR_RE = re.compile(r"#(?:[A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})(?![A-Fa-f0-9])")
_IMAGE_FORMAT_RE = re.compile(r"\b(jpg|jpeg|png|gif|svg|webp)\b")

_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("banned_words", ("banned", "forbidden", "avoid")),
    ("colors", ("color", "colour", "palette", "hex")),
    ("grammar", ("grammar", "style", "writing")),
    ("voice_tone", ("voice", "tone", "brand")),
    ("image_guidelines", ("image", "photo", "visual")),
)


class GrammarRules(CamelModel):
    rules: list[str] = []
    expectations: str = DEFAULT_GRAMMAR_EXPECTATIONS


class ImageRestrictions(CamelModel):
    rules: list[str] = []
    allowed_formats: list[str] = list(DEFAULT_IMAGE_FORMATS)
    size_requirements: str = DEFAULT_IMAGE_SIZE


class VoiceAndTone(CamelModel):
    description: str = DEFAULT_VOICE_DESCRIPTION
    examples: list[str] = []


class BrandRules(CamelModel):
    grammar: GrammarRules = Field(default_factory=GrammarRules)
    banned_words: list[str] = []
    approved_colors: list[str] = []
    image_restrictions: ImageRestrictions = Field(default_factory=ImageRestrictions)
    voice_and_tone: VoiceAndTone = Field(default_factory=VoiceAndTone)
    additional_rules: list[str] = []

    def canonical_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), indent=2, sort_keys=True)


class BrandRulesSummary(CamelModel):
    grammar_rules: int
    banned_words: int
    approved_colors: int
    image_restrictions: int
    additional_rules: int
    total_rules: int


class BrandRulesResponse(CamelModel):
    brand_rules: BrandRules
    summary: BrandRulesSummary


def default_brand_rules() -> BrandRules:
    return BrandRules(
        grammar=GrammarRules(
            rules=[
                "Use active voice when possible",
                "Avoid overly complex sentences",
                "Check for spelling and grammar errors",
                "Use consistent terminology",
            ],
            expectations="Professional, clear, and engaging writing style",
        ),
        banned_words=["very", "really", "actually", "literally", "obviously"],
        approved_colors=["#000000", "#FFFFFF", "#007BFF", "#28A745", "#DC3545"],
        image_restrictions=ImageRestrictions(
            rules=[
                "Images should be high resolution",
                "Maintain consistent visual style",
                "Use approved color palette",
                "Include proper alt text",
            ],
            allowed_formats=["jpg", "png", "svg"],
            size_requirements="Minimum 300dpi for print materials",
        ),
        voice_and_tone=VoiceAndTone(
            description="Professional, friendly, and informative tone",
            examples=[
                "We help you achieve your goals",
                "Discover the possibilities",
                "Transform your business",
            ],
        ),
        additional_rules=[
            "Always include a clear call-to-action",
            "Ensure content is accessible and inclusive",
            "Maintain brand consistency across all materials",
        ],
    )


def count_rules(rules: BrandRules) -> int:
    return (
        len(rules.grammar.rules)
        + len(rules.banned_words)
        + len(rules.approved_colors)
        + len(rules.image_restrictions.rules)
        + len(rules.additional_rules)
        + (1 if rules.voice_and_tone.description else 0)
    )


def summarize_rules(rules: BrandRules) -> BrandRulesSummary:
    counts = {
        "grammar_rules": len(rules.grammar.rules),
        "banned_words": len(rules.banned_words),
        "approved_colors": len(rules.approved_colors),
        "image_restrictions": len(rules.image_restrictions.rules),
        "additional_rules": len(rules.additional_rules),
    }
    return BrandRulesSummary(**counts, total_rules=sum(counts.values()))


def categorize_file(filename: str) -> str:
    lower = filename.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return category
    return "other"


def _content_lines(content: str) -> Iterable[str]:
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or stripped.startswith("//"):
            continue
        yield stripped


def _bullet_text(line: str) -> str | None:
    match = _BULLET_RE.match(line)
    return match.group(1).strip() if match else None


def _dedupe(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(item for item in items if item))


def _load_json(content: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        return None


def parse_banned_words(content: str) -> list[str]:
    data = _load_json(content)
    if isinstance(data, dict):
        data = data.get("banned_words") or data.get("bannedWords")
    if isinstance(data, list):
        return _dedupe(str(word).strip().lower() for word in data)

    words: list[str] = []
    for line in _content_lines(content):
        line = _bullet_text(line) or line
        words.extend(part.strip().lower() for part in re.split(r"[,;]", line))
    return _dedupe(words)


def parse_colors(content: str) -> list[str]:
    data = _load_json(content)
    if isinstance(data, dict):
        data = data.get("colors") or data.get("palette")
    if isinstance(data, list):
        values = [item.get("hex", "") if isinstance(item, dict) else str(item) for item in data]
        return _dedupe(value.strip().upper() for value in values)
    return _dedupe(match.upper() for match in _HEX_COLOR_RE.findall(content))


def parse_grammar_rules(content: str) -> GrammarRules:
    rules: list[str] = []
    expectations = ""
    for line in _content_lines(content):
        bullet = _bullet_text(line)
        if bullet:
            rules.append(bullet)
            continue
        lower = line.lower()
        if "expectation" in lower or "overview" in lower:
            _, sep, rest = line.partition(":")
            expectations = rest.strip() if sep and rest.strip() else line
            continue
        rules.append(line)
    return GrammarRules(rules=_dedupe(rules), expectations=expectations or DEFAULT_GRAMMAR_EXPECTATIONS)


def parse_voice_and_tone(content: str) -> VoiceAndTone:
    description: list[str] = []
    examples: list[str] = []
    in_examples = False
    for line in _content_lines(content):
        lower = line.lower()
        if "example" in lower or "sample" in lower:
            in_examples = True
            continue
        bullet = _bullet_text(line)
        if in_examples:
            if bullet:
                examples.append(bullet)
            elif len(line) > 10:
                examples.append(line)
        elif len(line) > 10:
            description.append(bullet or line)
    return VoiceAndTone(
        description=" ".join(description) or DEFAULT_VOICE_DESCRIPTION,
        examples=_dedupe(examples),
    )


def parse_image_guidelines(content: str) -> ImageRestrictions:
    rules: list[str] = []
    formats: list[str] = []
    size_requirements = ""
    for line in _content_lines(content):
        lower = line.lower()
        if "format" in lower and any(ext in lower for ext in ("jpg", "png", "svg")):
            formats.extend(_IMAGE_FORMAT_RE.findall(lower))
            continue
        if "size" in lower or "dimension" in lower:
            size_requirements = _bullet_text(line) or line
            continue
        bullet = _bullet_text(line)
        if bullet:
            rules.append(bullet)
        elif len(line) > 10:
            rules.append(line)
    return ImageRestrictions(
        rules=_dedupe(rules),
        allowed_formats=_dedupe(formats) or list(DEFAULT_IMAGE_FORMATS),
        size_requirements=size_requirements or DEFAULT_IMAGE_SIZE,
    )


_PARSERS: dict[str, Callable[[str], Any]] = {
    "banned_words": parse_banned_words,
    "colors": parse_colors,
    "grammar": parse_grammar_rules,
    "voice_tone": parse_voice_and_tone,
    "image_guidelines": parse_image_guidelines,
}


def merge_rules(parsed: list[tuple[str, str, Any]]) -> BrandRules:
    """Merge ``(category, filename, parsed)`` triples into one rule set."""
    grammar_rules: list[str] = []
    banned: list[str] = []
    colors: list[str] = []
    image_rules: list[str] = []
    formats: list[str] = []
    examples: list[str] = []
    additional: list[str] = []
    expectations = DEFAULT_GRAMMAR_EXPECTATIONS
    voice_description = DEFAULT_VOICE_DESCRIPTION
    size_requirements = DEFAULT_IMAGE_SIZE

    for category, filename, value in parsed:
        if category == "banned_words":
            banned.extend(value)
        elif category == "colors":
            colors.extend(value)
        elif category == "grammar":
            grammar_rules.extend(value.rules)
            if value.expectations != DEFAULT_GRAMMAR_EXPECTATIONS:
                expectations = value.expectations
        elif category == "voice_tone":
            examples.extend(value.examples)
            if value.description != DEFAULT_VOICE_DESCRIPTION:
                voice_description = value.description
        elif category == "image_guidelines":
            image_rules.extend(value.rules)
            formats.extend(value.allowed_formats)
            if value.size_requirements != DEFAULT_IMAGE_SIZE:
                size_requirements = value.size_requirements
        else:
            additional.append(f"From {filename}: {value[:OTHER_EXCERPT_LENGTH]}...")

    return BrandRules(
        grammar=GrammarRules(rules=_dedupe(grammar_rules), expectations=expectations),
        banned_words=_dedupe(banned),
        approved_colors=_dedupe(colors),
        image_restrictions=ImageRestrictions(
            rules=_dedupe(image_rules),
            allowed_formats=_dedupe(formats) or list(DEFAULT_IMAGE_FORMATS),
            size_requirements=size_requirements,
        ),
        voice_and_tone=VoiceAndTone(description=voice_description, examples=_dedupe(examples)),
        additional_rules=_dedupe(additional),
    )


def parse_brand_files(files: list[DriveFile]) -> BrandRules:
    parsed: list[tuple[str, str, Any]] = []
    for drive_file in files:
        content = (drive_file.content or "").strip()
        category = categorize_file(drive_file.name)
        parser = _PARSERS.get(category)
        parsed.append((category, drive_file.name, parser(content) if parser else content))
    return merge_rules(parsed)


def calculate_checksum(files: list[DriveFile]) -> str:
    parts = sorted(f"{item.name}:{item.modified_time}:{len(item.content or '')}" for item in files)
    return hashlib.md5("|".join(parts).encode("utf-8")).hexdigest()


class BrandRulesService:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self.session_factory = session_factory

    def aggregate_brand_rules(self) -> BrandRules:
        with self.session_factory() as session:
            files = [item for item in DriveRepository(session).brand_files() if item.content]
            if not files:
                log_event("brand_rules_default_used", reason="no_brand_files")
                return default_brand_rules()

            checksum = calculate_checksum(files)
            cache = RulesCacheRepository(session)
            cached = cache.get(checksum)
            if cached is not None:
                log_event("brand_rules_cache_hit", checksum=checksum)
                return BrandRules.model_validate(cached.rules_data)

            rules = parse_brand_files(files)
            try:
                cache.put(checksum, rules.model_dump(by_alias=True), count_rules(rules))
            except SQLAlchemyError as exc:
                session.rollback()
                log_event("brand_rules_cache_write_failed", checksum=checksum, error=str(exc))

        log_event("brand_rules_aggregated", checksum=checksum, files=len(files), total_rules=count_rules(rules))
        return rules

    def brand_rules_response(self) -> BrandRulesResponse:
        rules = self.aggregate_brand_rules()
        return BrandRulesResponse(brand_rules=rules, summary=summarize_rules(rules))
