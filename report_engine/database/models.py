"""SQLAlchemy models for all database tables."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, String, Text, TIMESTAMP, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from report_engine.core.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Property(Base):
    """A property whose monthly reports are generated."""

    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    address: Mapped[str | None] = mapped_column(String, nullable=True)
    units: Mapped[int | None] = mapped_column(Integer, nullable=True)
    investment_strategy: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())

    reports: Mapped[list["Report"]] = relationship("Report", back_populates="property")


class UserSettings(Base):
    """Per-user product tier, branding and report template."""

    __tablename__ = "user_settings"

    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    tier: Mapped[str] = mapped_column(String, nullable=False, default="foundational")
    company_name: Mapped[str | None] = mapped_column(String, nullable=True)
    accent_color: Mapped[str | None] = mapped_column(String, nullable=True)
    secondary_color: Mapped[str | None] = mapped_column(String, nullable=True)
    report_accent_color: Mapped[str | None] = mapped_column(String, nullable=True)
    report_template: Mapped[list | None] = mapped_column(
        JSONB, nullable=True, comment="Ordered section ids; empty means tier defaults"
    )
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())


class Report(Base):
    """One monthly investor report and its generation state."""

    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    property_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False, index=True)
    selected_month: Mapped[int] = mapped_column(Integer, nullable=False)
    selected_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    generated_sections: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    generation_status: Mapped[str] = mapped_column(String, nullable=False, default="idle", index=True)
    generation_run_id: Mapped[str | None] = mapped_column(String, nullable=True)
    generation_started_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    generation_state_entered_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    generation_completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    generation_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    generation_config: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    raw_analysis: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    questionnaire_answers: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    distribution_status: Mapped[str] = mapped_column(String, nullable=False, default="none")
    distribution_note: Mapped[str] = mapped_column(Text, nullable=False, default="")
    freeform_narrative: Mapped[str] = mapped_column(Text, nullable=False, default="")

    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Incremented on every write; guards concurrent updates"
    )
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())

    property: Mapped["Property"] = relationship("Property", back_populates="reports")
    files: Mapped[list["ReportFile"]] = relationship(
        "ReportFile", back_populates="report", cascade="all, delete-orphan"
    )


class ReportFile(Base):
    """An uploaded source document with its already-parsed text."""

    __tablename__ = "report_files"

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=_uuid)
    report_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False, index=True
    )
    property_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    file_type: Mapped[str] = mapped_column(String, nullable=False)
    file_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    parsed_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), server_default=func.now())

    report: Mapped["Report"] = relationship("Report", back_populates="files")
