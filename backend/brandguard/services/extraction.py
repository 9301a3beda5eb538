"""Turn uploaded or downloaded file bytes into text plus simple metadata.

Every supported format is a handler in ``MIME_HANDLERS``. Handlers never raise
for damaged but supported input; they return placeholder text so the analysis
pipeline can keep going. Only unknown MIME types and empty results are errors.
"""

from __future__ import annotations

import io
import json
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from docx import Document
from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader

from brandguard.core.observability import log_event
from brandguard.core.schemas import CamelModel

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOTX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.template"
DOCM_MIME = "application/vnd.ms-word.document.macroEnabled.12"
DOC_MIME = "application/msword"
PPTX_MIME = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
PPT_MIME = "application/vnd.ms-powerpoint"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLS_MIME = "application/vnd.ms-excel"

DEFAULT_IMAGE_COLORS = ["#000000", "#ffffff"]
MAX_IMAGE_COLORS = 5

_RTF_CONTROL_RE = re.compile(r"\\[a-z]+-?\d*\s?", re.IGNORECASE)
_RTF_BRACES_RE = re.compile(r"[{}]")


class ExtractionError(Exception):
    pass


class UnsupportedFileTypeError(ExtractionError):
    def __init__(self, mime_type: str) -> None:
        super().__init__(f"Unsupported file type: {mime_type}")
        self.mime_type = mime_type


@dataclass
class ExtractedContent:
    text: str
    page_count: int | None = None
    colors: list[str] = field(default_factory=list)
    font_families: list[str] = field(default_factory=list)
    font_sizes: list[str] = field(default_factory=list)
    extracted_images: int = 0
    confidence: float | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    degraded: bool = False


Handler = Callable[[bytes, str], ExtractedContent]


def decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _dominant_colors(image: Image.Image, limit: int = MAX_IMAGE_COLORS) -> list[str]:
    rgb = image.convert("RGB")
    rgb.thumbnail((128, 128))
    quantized = rgb.quantize(colors=limit)
    palette = quantized.getpalette() or []
    colors: list[str] = []
    for _, index in sorted(quantized.getcolors() or [], reverse=True):
        r, g, b = palette[index * 3 : index * 3 + 3]
        color = f"#{r:02x}{g:02x}{b:02x}"
        if color not in colors:
            colors.append(color)
    return colors[:limit]


def extract_image(data: bytes, name: str) -> ExtractedContent:
    # OCR is disabled, images are reviewed through their colors and metadata.
    text = (
        f"[Image Content - {name}]\n"
        "This image was uploaded for brand compliance analysis. "
        "Text recognition is not enabled; review visual elements such as colors, "
        "logos and imagery against the brand guidelines."
    )
    _, ext = os.path.splitext(name)
    degraded = False
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            metadata = {
                "width": image.width,
                "height": image.height,
                "format": image.format or ext.lstrip(".").upper(),
                "mode": image.mode,
            }
            colors = _dominant_colors(image) or list(DEFAULT_IMAGE_COLORS)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        log_event("image_metadata_unavailable", filename=name, error=str(exc))
        metadata = {
            "width": 0,
            "height": 0,
            "format": ext.lstrip(".").upper() or "unknown",
            "note": "Image metadata could not be read",
        }
        colors = list(DEFAULT_IMAGE_COLORS)
        degraded = True

    return ExtractedContent(
        text=text,
        colors=colors,
        extracted_images=1,
        confidence=0.0,
        raw_data={"image": metadata},
        degraded=degraded,
    )


def extract_pdf(data: bytes, name: str) -> ExtractedContent:
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
        info = {key.lstrip("/"): str(value) for key, value in (reader.metadata or {}).items()}
    except Exception as exc:  # pypdf raises a wide range of errors on damaged input
        log_event("pdf_extraction_failed", filename=name, error=str(exc))
        return ExtractedContent(
            text=(
                f"[PDF document: {name}. Text extraction failed; the file may be scanned, "
                "image-based or password protected. Please provide a text version for a full review.]"
            ),
            degraded=True,
        )

    text = "\n".join(page.strip() for page in pages if page.strip())
    if not text:
        return ExtractedContent(
            text=(
                f"[PDF document: {name}. No selectable text was found; the file is likely "
                "image-based. Please provide a text version for a full review.]"
            ),
            page_count=len(pages),
            raw_data={"info": info},
            degraded=True,
        )
    return ExtractedContent(text=text, page_count=len(pages), raw_data={"info": info})


def _docx_fonts(document) -> tuple[list[str], list[str]]:
    families: list[str] = []
    sizes: list[str] = []
    for paragraph in document.paragraphs:
        for run in paragraph.runs:
            if run.font.name and run.font.name not in families:
                families.append(run.font.name)
            if run.font.size is not None:
                size = f"{run.font.size.pt:g}pt"
                if size not in sizes:
                    sizes.append(size)
    return families, sizes


def extract_docx(data: bytes, name: str) -> ExtractedContent:
    try:
        document = Document(io.BytesIO(data))
    except Exception as exc:  # python-docx surfaces zip, xml and key errors
        log_event("docx_extraction_failed", filename=name, error=str(exc))
        return ExtractedContent(
            text=(
                f"[Word document: {name}. The document could not be read; it may be corrupted "
                "or password protected. Please re-save it as .docx or upload a PDF.]"
            ),
            degraded=True,
        )

    parts = [paragraph.text.strip() for paragraph in document.paragraphs if paragraph.text.strip()]
    for table in document.tables:
        for row in table.rows:
            line = " | ".join(cell.text.strip() for cell in row.cells if cell.text.strip())
            if line:
                parts.append(line)

    families, sizes = _docx_fonts(document)
    text = "\n".join(parts)
    if not text:
        return ExtractedContent(
            text=f"[Word document: {name}. The document appears to be empty or contains only images.]",
            font_families=families,
            font_sizes=sizes,
            degraded=True,
        )
    return ExtractedContent(
        text=text,
        font_families=families,
        font_sizes=sizes,
        extracted_images=len(document.inline_shapes),
        raw_data={"paragraphs": len(document.paragraphs), "tables": len(document.tables)},
    )


def extract_legacy_doc(data: bytes, name: str) -> ExtractedContent:
    return ExtractedContent(
        text=(
            f"[Word document: {name}. This file uses the legacy .doc format, which cannot be "
            "read directly. Please convert it to .docx or PDF for a full review.]"
        ),
        degraded=True,
    )


def extract_plain_text(data: bytes, name: str) -> ExtractedContent:
    return ExtractedContent(text=decode_text(data))


def extract_rtf(data: bytes, name: str) -> ExtractedContent:
    text = _RTF_CONTROL_RE.sub("", decode_text(data))
    text = _RTF_BRACES_RE.sub("", text)
    return ExtractedContent(text=text.strip())


def extract_json(data: bytes, name: str) -> ExtractedContent:
    raw = decode_text(data)
    try:
        pretty = json.dumps(json.loads(raw), indent=2, ensure_ascii=False)
    except json.JSONDecodeError:
        return ExtractedContent(text=f"[JSON data from {name}]\n{raw}", degraded=True)
    return ExtractedContent(text=f"[JSON data from {name}]\n{pretty}")


def extract_xml(data: bytes, name: str) -> ExtractedContent:
    return ExtractedContent(text=f"[XML data from {name}]\n{decode_text(data)}")


def _placeholder(template: str) -> Handler:
    def handler(data: bytes, name: str) -> ExtractedContent:
        return ExtractedContent(text=template.format(name=name), degraded=True)

    return handler


_presentation = _placeholder(
    "[Presentation: {name}. Slide decks cannot be read directly; export the slides "
    "as PDF or upload them to Google Slides for a full review.]"
)
_spreadsheet = _placeholder(
    "[Spreadsheet: {name}. Excel workbooks cannot be read directly; upload the sheet "
    "to Google Sheets or export it as CSV for a full review.]"
)
_archive = _placeholder(
    "[Archive: {name}. Compressed archives are not unpacked; upload the individual files instead.]"
)
_adobe = _placeholder(
    "[Design file: {name}. Adobe design formats cannot be read; export a PDF or image instead.]"
)
_opendocument = _placeholder(
    "[OpenDocument file: {name}. OpenDocument formats cannot be read directly; "
    "export the file as PDF or .docx instead.]"
)

MIME_HANDLERS: dict[str, Handler] = {
    "application/pdf": extract_pdf,
    DOCX_MIME: extract_docx,
    DOTX_MIME: extract_docx,
    DOCM_MIME: extract_docx,
    DOC_MIME: extract_legacy_doc,
    "text/plain": extract_plain_text,
    "text/markdown": extract_plain_text,
    "text/x-markdown": extract_plain_text,
    "text/html": extract_plain_text,
    "text/css": extract_plain_text,
    "text/csv": extract_plain_text,
    "application/rtf": extract_rtf,
    "text/rtf": extract_rtf,
    "application/json": extract_json,
    "application/xml": extract_xml,
    "text/xml": extract_xml,
    PPTX_MIME: _presentation,
    PPT_MIME: _presentation,
    XLSX_MIME: _spreadsheet,
    XLS_MIME: _spreadsheet,
    "application/zip": _archive,
    "application/x-zip-compressed": _archive,
    "application/x-rar-compressed": _archive,
    "application/vnd.rar": _archive,
    "application/x-7z-compressed": _archive,
    "image/vnd.adobe.photoshop": _adobe,
    "application/postscript": _adobe,
    "application/illustrator": _adobe,
    "application/x-indesign": _adobe,
    "application/vnd.oasis.opendocument.text": _opendocument,
    "application/vnd.oasis.opendocument.spreadsheet": _opendocument,
    "application/vnd.oasis.opendocument.presentation": _opendocument,
}

PREFIX_HANDLERS: tuple[tuple[str, Handler], ...] = (
    ("image/", extract_image),
    ("text/", extract_plain_text),
)

EXTENSION_MIME_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".docx": DOCX_MIME,
    ".dotx": DOTX_MIME,
    ".docm": DOCM_MIME,
    ".doc": DOC_MIME,
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".csv": "text/csv",
    ".rtf": "application/rtf",
    ".json": "application/json",
    ".xml": "application/xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".pptx": PPTX_MIME,
    ".ppt": PPT_MIME,
    ".xlsx": XLSX_MIME,
    ".xls": XLS_MIME,
    ".zip": "application/zip",
    ".psd": "image/vnd.adobe.photoshop",
    ".ai": "application/postscript",
    ".odt": "application/vnd.oasis.opendocument.text",
}


def get_handler(mime_type: str) -> Handler | None:
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    handler = MIME_HANDLERS.get(mime)
    if handler is not None:
        return handler
    for prefix, prefix_handler in PREFIX_HANDLERS:
        if mime.startswith(prefix):
            return prefix_handler
    return None


def resolve_mime_type(mime_type: str | None, filename: str) -> str:
    """Prefer the declared type; fall back to the extension for generic uploads."""
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime and get_handler(mime) is not None:
        return mime
    _, ext = os.path.splitext(filename.lower())
    return EXTENSION_MIME_TYPES.get(ext, mime or "application/octet-stream")


def is_supported(mime_type: str) -> bool:
    return get_handler(mime_type) is not None


def extract_bytes(data: bytes, name: str, mime_type: str) -> ExtractedContent:
    handler = get_handler(mime_type)
    if handler is None:
        raise UnsupportedFileTypeError(mime_type)
    content = handler(data, name)
    if not content.text.strip():
        raise ExtractionError("No text content could be extracted")
    return content


class ContentMetadata(CamelModel):
    page_count: int | None = None
    word_count: int
    character_count: int
    language: str | None = None
    extracted_images: int = 0
    colors: list[str] = []
    font_size: list[str] = []
    font_families: list[str] = []


class ParsedContent(CamelModel):
    text: str
    metadata: ContentMetadata
    raw_data: dict[str, Any] = {}


class FileParsingResult(CamelModel):
    success: bool
    content: ParsedContent | None = None
    error: str | None = None
    processing_time: int
    confidence: float | None = None


def count_words(text: str) -> int:
    return len(text.split())


def parse_file(data: bytes, filename: str, mime_type: str | None) -> FileParsingResult:
    started = time.perf_counter()
    mime = resolve_mime_type(mime_type, filename)
    try:
        extracted = extract_bytes(data, filename, mime)
    except ExtractionError as exc:
        elapsed = int((time.perf_counter() - started) * 1000)
        log_event("file_parse_failed", filename=filename, mime_type=mime, error=str(exc))
        return FileParsingResult(success=False, error=str(exc), processing_time=elapsed)

    elapsed = int((time.perf_counter() - started) * 1000)
    metadata = ContentMetadata(
        page_count=extracted.page_count,
        word_count=count_words(extracted.text),
        character_count=len(extracted.text),
        extracted_images=extracted.extracted_images,
        colors=extracted.colors,
        font_size=extracted.font_sizes,
        font_families=extracted.font_families,
    )
    log_event(
        "file_parsed",
        filename=filename,
        mime_type=mime,
        word_count=metadata.word_count,
        degraded=extracted.degraded,
        processing_time_ms=elapsed,
    )
    return FileParsingResult(
        success=True,
        content=ParsedContent(text=extracted.text, metadata=metadata, raw_data=extracted.raw_data),
        processing_time=elapsed,
        confidence=extracted.confidence,
    )
