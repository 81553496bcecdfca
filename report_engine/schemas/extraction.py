"""Pydantic schemas for the extraction call output.

Every numeric leaf is either a value read from the source documents or None.
There is deliberately no zero default anywhere in this tree: a silent zero
cannot be told apart from a line item that really is zero.

Text labels the model could not read arrive as null and are stored as
empty strings so a missing label never fails the extraction.

Unknown keys are kept (``extra="allow"``) so the validator can see what the
model emitted beyond the schema and strip it.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExtractionModel(BaseModel):
    """Base for all extraction nodes."""

    model_config = ConfigDict(extra="allow")


def _blank_if_null(v):
    return "" if v is None else v


class FinancialLineItem(ExtractionModel):
    """A current / prior / budget triple for one line item."""

    current: Optional[float] = None
    prior: Optional[float] = None
    budget: Optional[float] = None


class ExpenseCategory(FinancialLineItem):
    """One operating expense category."""

    name: str

    @field_validator("name", mode="before")
    @classmethod
    def blank_name(cls, v):
        return _blank_if_null(v)


class UnitMixEntry(ExtractionModel):
    """Rent roll summary for one floorplan."""

    floorplan: str
    unit_count: Optional[int] = None
    avg_rent: Optional[float] = None
    avg_sqft: Optional[float] = None
    avg_rent_per_sqft: Optional[float] = None
    occupancy_pct: Optional[float] = None

    @field_validator("floorplan", mode="before")
    @classmethod
    def blank_floorplan(cls, v):
        return _blank_if_null(v)


class PropertyIdentity(ExtractionModel):
    name: str = ""
    units: Optional[int] = None
    month: str = ""
    year: Optional[int] = None

    @field_validator("name", "month", mode="before")
    @classmethod
    def blank_labels(cls, v):
        return _blank_if_null(v)


class IncomeStatement(ExtractionModel):
    gross_potential_rent: FinancialLineItem = Field(default_factory=FinancialLineItem)
    vacancy_loss: FinancialLineItem = Field(default_factory=FinancialLineItem)
    loss_to_lease: FinancialLineItem = Field(default_factory=FinancialLineItem)
    concessions: FinancialLineItem = Field(default_factory=FinancialLineItem)
    bad_debt: FinancialLineItem = Field(default_factory=FinancialLineItem)
    net_rental_income: FinancialLineItem = Field(default_factory=FinancialLineItem)
    other_income: FinancialLineItem = Field(default_factory=FinancialLineItem)
    total_revenue: FinancialLineItem = Field(default_factory=FinancialLineItem)


class ExpenseStatement(ExtractionModel):
    categories: List[ExpenseCategory] = Field(default_factory=list)
    total_expenses: FinancialLineItem = Field(default_factory=FinancialLineItem)


class OccupancySnapshot(ExtractionModel):
    physical_percent: Optional[float] = None
    economic_percent: Optional[float] = None
    units_occupied: Optional[int] = None
    units_vacant: Optional[int] = None
    units_on_notice: Optional[int] = None
    units_preleased: Optional[int] = None


class LeasingActivity(ExtractionModel):
    move_ins: Optional[int] = None
    move_outs: Optional[int] = None
    renewals: Optional[int] = None
    notices_to_vacate: Optional[int] = None
    new_lease_avg_rent: Optional[float] = None
    renewal_avg_rent: Optional[float] = None


class RentRollSummary(ExtractionModel):
    unit_mix: List[UnitMixEntry] = Field(default_factory=list)
    total_units: Optional[int] = None
    avg_rent: Optional[float] = None


class TrailingTwelve(ExtractionModel):
    months: List[str] = Field(default_factory=list)
    noi: List[Optional[float]] = Field(default_factory=list)
    revenue: List[Optional[float]] = Field(default_factory=list)
    expenses: List[Optional[float]] = Field(default_factory=list)
    occupancy: List[Optional[float]] = Field(default_factory=list)

    @field_validator("months", mode="before")
    @classmethod
    def month_labels(cls, v):
        if v is None:
            return []
        if isinstance(v, list):
            return [_blank_if_null(item) for item in v]
        return v


class DataQuality(ExtractionModel):
    """Which source documents the extraction actually found."""

    t12_found: bool = False
    rent_roll_found: bool = False
    leasing_found: bool = False
    budget_found: bool = False
    month_match_confirmed: bool = False
    notes: List[str] = Field(default_factory=list)

    def has_file(self, file_type: str) -> bool:
        """Whether the flag backing ``file_type`` is set.

        Unknown file types are reported as present; only the four typed
        source documents gate section availability.
        """
        flag = DATA_QUALITY_FLAGS.get(file_type)
        if flag is None:
            return True
        return bool(getattr(self, flag))


DATA_QUALITY_FLAGS = {
    "t12": "t12_found",
    "rent_roll": "rent_roll_found",
    "leasing_activity": "leasing_found",
    "budget": "budget_found",
}


class ExtractedFinancialData(ExtractionModel):
    """Structured financial data for one property and report month."""

    property: PropertyIdentity = Field(default_factory=PropertyIdentity)
    income: IncomeStatement = Field(default_factory=IncomeStatement)
    expenses: ExpenseStatement = Field(default_factory=ExpenseStatement)
    noi: FinancialLineItem = Field(default_factory=FinancialLineItem)
    occupancy: OccupancySnapshot = Field(default_factory=OccupancySnapshot)
    leasing_activity: LeasingActivity = Field(default_factory=LeasingActivity)
    rent_roll: RentRollSummary = Field(default_factory=RentRollSummary)
    trailing_12: TrailingTwelve = Field(default_factory=TrailingTwelve)
    data_quality: DataQuality = Field(default_factory=DataQuality)
