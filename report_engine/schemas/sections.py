"""Section definitions and generated section models."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Tier(str, Enum):
    """Product packaging level."""
    FOUNDATIONAL = "foundational"
    PROFESSIONAL = "professional"
    INSTITUTIONAL = "institutional"

    @classmethod
    def coerce(cls, value: Optional[str]) -> "Tier":
        """Map a stored tier string to a Tier, falling back to foundational."""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.FOUNDATIONAL


class VisualizationTier(str, Enum):
    NONE = "none"
    KPI_CARDS = "kpi-cards"
    CHARTS = "charts"
    PREMIUM = "premium"


class SectionDefinition(BaseModel):
    """Static definition of one report section."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    required_files: List[str] = Field(default_factory=list)
    required_questions: List[str] = Field(default_factory=list)
    is_conditional: bool = False
    visualization_tier: VisualizationTier = VisualizationTier.NONE
    prompt_guidance: str = ""


class SectionMetric(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    label: str
    value: str
    change: Optional[str] = None
    change_direction: Optional[str] = Field(default=None, alias="changeDirection")
    vsbudget: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def null_value_as_empty(cls, v):
        return "" if v is None else v


class GeneratedSection(BaseModel):
    """One titled unit of a generated report.

    The persisted and wire form uses camelCase ``skipReason`` and
    ``changeDirection``; dump with ``by_alias=True``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str
    content: str = ""
    chart_html: str = ""
    metrics: List[SectionMetric] = Field(default_factory=list)
    included: bool = True
    skip_reason: Optional[str] = Field(default=None, alias="skipReason")

    @field_validator("content", "chart_html", mode="before")
    @classmethod
    def null_body_as_empty(cls, v):
        """Skipped sections often come back with a null body."""
        return "" if v is None else v

    @field_validator("metrics", mode="before")
    @classmethod
    def null_metrics_as_empty(cls, v):
        return [] if v is None else v

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=False)


class AnalysisSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    overall_sentiment: Optional[str] = None
    key_findings: List[str] = Field(default_factory=list)
    data_quality_notes: List[str] = Field(default_factory=list)


class ParsedNarrative(BaseModel):
    """Result of parsing the narrative call output."""

    sections: List[GeneratedSection] = Field(default_factory=list)
    analysis_summary: AnalysisSummary = Field(default_factory=AnalysisSummary)
    used_fallback: bool = False
    recovered_truncated: bool = False
