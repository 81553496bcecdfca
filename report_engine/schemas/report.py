"""Report, pipeline and stream models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from report_engine.schemas.extraction import ExtractedFinancialData
from report_engine.schemas.sections import AnalysisSummary, GeneratedSection, Tier


MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


class GenerationState(str, Enum):
    """Lifecycle of one generation run."""
    IDLE = "idle"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    NARRATING = "narrating"
    PARSING = "parsing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationState.COMPLETED, GenerationState.ERROR)


class FileType(str, Enum):
    T12 = "t12"
    RENT_ROLL = "rent_roll"
    LEASING_ACTIVITY = "leasing_activity"
    BUDGET = "budget"
    ADDITIONAL = "additional"


class BrandColors(BaseModel):
    primary: str = "#27272A"
    secondary: str = "#EFF6FF"
    accent: str = "#2563EB"


class ReportContext(BaseModel):
    """Property identity and product settings for one report."""

    property_name: str
    property_address: str = ""
    unit_count: Optional[int] = None
    investment_strategy: str = ""
    company_name: str = ""
    tier: Tier = Tier.FOUNDATIONAL
    brand_colors: BrandColors = Field(default_factory=BrandColors)
    custom_section_ids: Optional[List[str]] = None
    month: int = Field(ge=1, le=12)
    year: int

    @property
    def month_name(self) -> str:
        return MONTH_NAMES[self.month - 1]

    @property
    def period_label(self) -> str:
        return f"{self.month_name} {self.year}"


class ReportDocument(BaseModel):
    """Already-parsed text of one uploaded file."""

    file_type: str
    file_name: str = ""
    text: str = ""


class ReportRecord(BaseModel):
    """Persisted report state."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    property_id: str
    user_id: str
    selected_month: int
    selected_year: int
    status: str = "draft"
    generated_sections: List[GeneratedSection] = Field(default_factory=list)
    generation_status: GenerationState = GenerationState.IDLE
    generation_run_id: Optional[str] = None
    generation_started_at: Optional[datetime] = None
    generation_state_entered_at: Optional[datetime] = None
    generation_completed_at: Optional[datetime] = None
    generation_error: Optional[str] = None
    generation_config: Dict[str, Any] = Field(default_factory=dict)
    raw_analysis: Dict[str, Any] = Field(default_factory=dict)
    questionnaire_answers: Dict[str, str] = Field(default_factory=dict)
    distribution_status: str = "none"
    distribution_note: str = ""
    freeform_narrative: str = ""
    version: int = 0

    def find_section(self, section_id: str) -> Optional[GeneratedSection]:
        for section in self.generated_sections:
            if section.id == section_id:
                return section
        return None


class ValidationResult(BaseModel):
    """Outcome of validating one extraction."""

    valid: bool
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    corrected: ExtractedFinancialData
    sections_to_skip: List[str] = Field(default_factory=list)
    skip_reasons: Dict[str, str] = Field(default_factory=dict)


class PromptPair(BaseModel):
    system: str
    user: str


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class GenerationResult(BaseModel):
    content: str
    usage: Usage = Field(default_factory=Usage)


class StreamEvent(BaseModel):
    """One event of the narrative stream."""

    type: Literal["text", "usage", "error", "done"]
    text: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    message: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Wire shape of the event."""
        if self.type == "text":
            return {"type": "text", "text": self.text or ""}
        if self.type == "usage":
            return {
                "type": "usage",
                "inputTokens": self.input_tokens or 0,
                "outputTokens": self.output_tokens or 0,
            }
        if self.type == "error":
            return {"type": "error", "message": self.message or "Unknown error"}
        return {"type": "done"}


class GenerationOutcome(BaseModel):
    """Summary returned to the caller after a non-streaming run."""

    report_id: str
    success: bool
    generation_status: GenerationState
    sections: List[GeneratedSection] = Field(default_factory=list)
    analysis_summary: Optional[AnalysisSummary] = None
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)
