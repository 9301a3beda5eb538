from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from brandguard.db.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class UploadedFile(Base):
    __tablename__ = "uploaded_files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    original_filename: Mapped[str] = mapped_column(String(512), nullable=False)
    file_type: Mapped[str] = mapped_column(String(32), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class FileProcessingResult(Base):
    __tablename__ = "file_processing_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    file_id: Mapped[str] = mapped_column(String(36), ForeignKey("uploaded_files.id"), unique=True, nullable=False)
    extracted_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    character_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    colors: Mapped[list | None] = mapped_column(JSON, nullable=True)
    font_families: Mapped[list | None] = mapped_column(JSON, nullable=True)
    font_sizes: Mapped[list | None] = mapped_column(JSON, nullable=True)
    extracted_images: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_payload: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class BrandAnalysisResult(Base):
    __tablename__ = "brand_analysis_results"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    file_id: Mapped[str] = mapped_column(String(36), ForeignKey("uploaded_files.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    total_issues: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    high_severity_issues: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    medium_severity_issues: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    low_severity_issues: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    compliance_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    issues: Mapped[list | None] = mapped_column(JSON, nullable=True)
    analysis_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rules_applied: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rules_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    rules_checksum: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    analyzed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class AnalysisIssue(Base):
    __tablename__ = "analysis_issues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    analysis_id: Mapped[str] = mapped_column(String(36), ForeignKey("brand_analysis_results.id"), nullable=False, index=True)
    issue_type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    rule_violated: Mapped[str | None] = mapped_column(Text, nullable=True)
    location_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    line_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    position_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    suggestion: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class DriveFolder(Base):
    __tablename__ = "drive_folders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    drive_folder_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    web_view_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    shared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    connected_by: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class DriveFile(Base):
    __tablename__ = "drive_files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    drive_file_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    drive_folder_id: Mapped[str] = mapped_column(String(36), ForeignKey("drive_folders.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    modified_time: Mapped[str | None] = mapped_column(String(64), nullable=True)
    web_view_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    download_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class DriveToken(Base):
    __tablename__ = "drive_tokens"
    __table_args__ = (UniqueConstraint("user_id", "provider", name="uq_drive_tokens_user_provider"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False, default="google")
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class BrandRulesCache(Base):
    __tablename__ = "brand_rules_cache"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    checksum: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    rules_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    total_rules: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
