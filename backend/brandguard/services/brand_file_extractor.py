from __future__ import annotations

import time
from typing import Callable

from brandguard.core.observability import log_event
from brandguard.core.schemas import CamelModel
from brandguard.services.drive_client import DriveAccessError, DriveClient
from brandguard.services.extraction import ExtractionError, UnsupportedFileTypeError, get_handler

GOOGLE_DOC_MIME = "application/vnd.google-apps.document"
GOOGLE_SLIDES_MIME = "application/vnd.google-apps.presentation"
GOOGLE_SHEETS_MIME = "application/vnd.google-apps.spreadsheet"
GOOGLE_DRAWING_MIME = "application/vnd.google-apps.drawing"
GOOGLE_FORM_MIME = "application/vnd.google-apps.form"


class BrandGuidelinesContent(CamelModel):
    content: str
    file_type: str
    file_name: str
    extracted_at: str


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _export_text(drive: DriveClient, metadata: dict) -> str:
    return drive.export(metadata["id"], "text/plain")


def _format_sheet(name: str, raw: str, separator: str) -> str:
    rows = [line.split(separator) for line in raw.splitlines() if line.strip()]
    if not rows:
        return ""
    header, *body = rows
    lines = [f"[Spreadsheet: {name}]", "Columns: " + " | ".join(cell.strip() for cell in header), ""]
    for index, row in enumerate(body, start=1):
        cells = [cell.strip() for cell in row if cell.strip()]
        if cells:
            lines.append(f"Row {index}: " + " | ".join(cells))
    return "\n".join(lines)


def _export_sheet(drive: DriveClient, metadata: dict) -> str:
    name = metadata.get("name", "spreadsheet")
    for mime_type, separator in (("text/tab-separated-values", "\t"), ("text/csv", ",")):
        try:
            content = _format_sheet(name, drive.export(metadata["id"], mime_type), separator)
        except DriveAccessError as exc:
            if exc.auth_expired:
                raise
            log_event("sheet_export_failed", file_id=metadata["id"], export_mime=mime_type, error=str(exc))
            continue
        if content:
            return content
    return (
        f"[Google Sheet: {name}. The spreadsheet could not be exported as TSV or CSV. "
        "Check that the sheet is shared with the connected account.]"
    )


def _workspace_placeholder(kind: str) -> Callable[[DriveClient, dict], str]:
    def exporter(drive: DriveClient, metadata: dict) -> str:
        return f"[{kind}: {metadata.get('name', 'untitled')}. This Google Workspace type has no text export.]"

    return exporter


WORKSPACE_EXPORTERS: dict[str, Callable[[DriveClient, dict], str]] = {
    GOOGLE_DOC_MIME: _export_text,
    GOOGLE_SLIDES_MIME: _export_text,
    GOOGLE_SHEETS_MIME: _export_sheet,
    GOOGLE_DRAWING_MIME: _workspace_placeholder("Google Drawing"),
    GOOGLE_FORM_MIME: _workspace_placeholder("Google Form"),
}


def is_supported_drive_mime(mime_type: str) -> bool:
    return mime_type in WORKSPACE_EXPORTERS or get_handler(mime_type) is not None


def extract_content(drive: DriveClient, metadata: dict) -> str:
    """Extract text from a Drive file whose metadata is already known."""
    mime_type = metadata.get("mimeType", "")
    name = metadata.get("name", "untitled")

    exporter = WORKSPACE_EXPORTERS.get(mime_type)
    if exporter is not None:
        return exporter(drive, metadata)

    handler = get_handler(mime_type)
    if handler is None:
        raise UnsupportedFileTypeError(mime_type)
    return handler(drive.download(metadata["id"]), name).text


def extract_brand_guidelines_from_file(drive: DriveClient | None, file_id: str) -> BrandGuidelinesContent:
    if drive is None:
        raise DriveAccessError(
            "Google Drive authentication expired or missing. Please reconnect to Google Drive.",
            auth_expired=True,
        )

    metadata = drive.get_file(file_id)
    content = extract_content(drive, metadata).strip()
    if not content:
        raise ExtractionError("No text content could be extracted from the brand guidelines file")

    log_event("brand_file_extracted", file_id=file_id, mime_type=metadata.get("mimeType"), length=len(content))
    return BrandGuidelinesContent(
        content=content,
        file_type=metadata.get("mimeType", ""),
        file_name=metadata.get("name", "untitled"),
        extracted_at=_now_iso(),
    )


def generate_brand_rules_from_content(extracted: BrandGuidelinesContent) -> str:
    return (
        f'Brand Guidelines from "{extracted.file_name}":\n\n'
        f"{extracted.content}\n\n"
        "---\n"
        f"Extracted at: {extracted.extracted_at}\n"
        f"File type: {extracted.file_type}\n\n"
        "Please analyze the content against these brand guidelines, paying close attention to "
        "terminology, tone, visual identity requirements and any explicit dos and don'ts."
    )
