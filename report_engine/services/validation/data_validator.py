"""Programmatic validation of extracted financial data.

Runs between the extraction call and the narrative call. Catches arithmetic
inconsistencies and impossible values, enforces the NOI ceiling, and decides
which sections cannot be generated from the documents that were found.

The input is never mutated; all corrections land on a deep copy.
"""

import re
from typing import Dict, List, Optional, Sequence

from report_engine.schemas.extraction import ExtractedFinancialData, ExtractionModel
from report_engine.schemas.report import ValidationResult
from report_engine.schemas.sections import SectionDefinition
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


T12_MISSING_ERROR = "T-12 operating statement not found in uploaded documents. Cannot generate report."

NOI_TOLERANCE_PCT = 0.02
DECOMPOSITION_TOLERANCE_PCT = 0.02
UNIT_COUNT_TOLERANCE = 2

BELOW_NOI_FIELDS = [
    "debt_service",
    "capex",
    "capital_expenditures",
    "distributions",
    "loan_payments",
    "mortgage",
]

# Matches the fields above and the usual spellings of them
BELOW_NOI_PATTERN = re.compile(
    r"debt_?service|cap_?ex|capital_?expenditure|distribution|loan_?payment|mortgage"
)

DEFAULT_SKIP_REASON = "Insufficient data for this section"

FILE_SKIP_REASONS = {
    "rent_roll": "Rent roll not uploaded — unit-level data unavailable",
    "budget": "Budget CSV not uploaded — budget comparison unavailable",
    "leasing_activity": "Leasing activity report not uploaded — leasing data unavailable",
}


def _money(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def _normalize_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", key.lower()).strip("_")


def is_below_noi(name: str) -> bool:
    """Whether a field or category name denotes a below-NOI concept."""
    return bool(BELOW_NOI_PATTERN.search(_normalize_key(name)))


def validate_extracted_data(
    data: ExtractedFinancialData,
    sections: Sequence[SectionDefinition],
) -> ValidationResult:
    """Validate one extraction against the sections requested for the report.

    Args:
        data: Extraction output; left untouched
        sections: Sections the report will generate

    Returns:
        ValidationResult with warnings, errors, the corrected copy and the
        sections that cannot be generated
    """
    warnings: List[str] = []
    errors: List[str] = []
    corrected = data.model_copy(deep=True)

    if not data.data_quality.t12_found:
        errors.append(T12_MISSING_ERROR)
        LOGGER.warning("Validation failed: no T-12 in extraction")
        return ValidationResult(valid=False, warnings=warnings, errors=errors, corrected=corrected)

    _check_noi(data, corrected, warnings)
    _check_revenue_decomposition(data, warnings)
    _clamp_occupancy(data, corrected, warnings)
    _check_unit_count(data, warnings)

    revenue = data.income.total_revenue.current
    if revenue is not None and revenue < 0:
        warnings.append(
            f"Total revenue is negative (${_money(revenue)}), which is unusual. Verify source data."
        )

    _strip_below_noi_categories(corrected, warnings)
    _strip_unknown_fields(corrected, "", warnings)

    sections_to_skip: List[str] = []
    skip_reasons: Dict[str, str] = {}
    for section in sections:
        reason = check_section_availability(section, data)
        if reason is not None:
            sections_to_skip.append(section.id)
            skip_reasons[section.id] = reason

    LOGGER.info(
        "Validated extracted data",
        extra={
            "warnings": len(warnings),
            "sections_to_skip": sections_to_skip,
        },
    )

    return ValidationResult(
        valid=len(errors) == 0,
        warnings=warnings,
        errors=errors,
        corrected=corrected,
        sections_to_skip=sections_to_skip,
        skip_reasons=skip_reasons,
    )


def _check_noi(data: ExtractedFinancialData, corrected: ExtractedFinancialData, warnings: List[str]) -> None:
    revenue = data.income.total_revenue.current
    expenses = data.expenses.total_expenses.current
    noi = data.noi.current
    if revenue is None or expenses is None or noi is None:
        return

    expected = revenue - expenses
    diff = abs(noi - expected)
    if diff > abs(revenue) * NOI_TOLERANCE_PCT:
        warnings.append(
            f"NOI sanity check: NOI (${_money(noi)}) does not equal Revenue (${_money(revenue)}) - "
            f"Expenses (${_money(expenses)}) = ${_money(expected)}. Difference: ${_money(diff)}."
        )
        corrected.noi.current = expected
        warnings.append(f"Auto-corrected NOI to ${_money(expected)}.")


def _check_revenue_decomposition(data: ExtractedFinancialData, warnings: List[str]) -> None:
    income = data.income
    gpr = income.gross_potential_rent.current
    nri = income.net_rental_income.current
    if gpr is None or nri is None:
        return

    # Missing deductions count as zero
    deductions = sum(
        item.current or 0
        for item in (income.vacancy_loss, income.loss_to_lease, income.concessions, income.bad_debt)
    )
    expected = gpr - deductions
    diff = abs(nri - expected)
    if diff > abs(gpr) * DECOMPOSITION_TOLERANCE_PCT:
        warnings.append(
            f"Revenue decomposition check: NRI (${_money(nri)}) does not match GPR minus deductions "
            f"(${_money(expected)}). Difference: ${_money(diff)}."
        )


def _clamp_occupancy(data: ExtractedFinancialData, corrected: ExtractedFinancialData, warnings: List[str]) -> None:
    for field_name, label in (("physical_percent", "Physical"), ("economic_percent", "Economic")):
        value = getattr(data.occupancy, field_name)
        if value is None or 0 <= value <= 100:
            continue
        warnings.append(f"{label} occupancy {value}% is out of range (0-100%).")
        setattr(corrected.occupancy, field_name, max(0.0, min(100.0, value)))


def _check_unit_count(data: ExtractedFinancialData, warnings: List[str]) -> None:
    occupied = data.occupancy.units_occupied
    vacant = data.occupancy.units_vacant
    units = data.property.units
    if occupied is None or vacant is None or units is None:
        return

    total = occupied + vacant
    if abs(total - units) > UNIT_COUNT_TOLERANCE:
        warnings.append(
            f"Unit count mismatch: occupied ({occupied}) + vacant ({vacant}) = {total}, "
            f"but property has {units} units."
        )


def _strip_below_noi_categories(corrected: ExtractedFinancialData, warnings: List[str]) -> None:
    kept = []
    for category in corrected.expenses.categories:
        if is_below_noi(category.name):
            warnings.append(
                f"Removed below-NOI field: expenses.categories[{category.name}] (NOI ceiling enforcement)."
            )
            continue
        kept.append(category)
    corrected.expenses.categories = kept


def _strip_unknown_fields(node: ExtractionModel, path: str, warnings: List[str]) -> None:
    """Drop every key the extraction schema does not declare, at any depth."""
    extras = node.model_extra
    if extras:
        for key in list(extras):
            qualified = f"{path}.{key}" if path else key
            if is_below_noi(key):
                warnings.append(f"Removed below-NOI field: {qualified} (NOI ceiling enforcement).")
            else:
                warnings.append(f"Removed unrecognized field: {qualified} (not in extraction schema).")
            del extras[key]

    for name in type(node).model_fields:
        value = getattr(node, name)
        child_path = f"{path}.{name}" if path else name
        if isinstance(value, ExtractionModel):
            _strip_unknown_fields(value, child_path, warnings)
        elif isinstance(value, list):
            for index, item in enumerate(value):
                if isinstance(item, ExtractionModel):
                    _strip_unknown_fields(item, f"{child_path}[{index}]", warnings)


def check_section_availability(section: SectionDefinition, data: ExtractedFinancialData) -> Optional[str]:
    """Skip reason for a section, or None when its source files were found.

    Only hard file requirements are checked here. Sections that depend on
    operator notes are left for the narrative call to include or skip.
    """
    for file_type in section.required_files:
        if not data.data_quality.has_file(file_type):
            return FILE_SKIP_REASONS.get(file_type, DEFAULT_SKIP_REASON)
    return None


def get_skip_reason(section: SectionDefinition, data: ExtractedFinancialData) -> str:
    """Human-readable reason a pre-skipped section was left out."""
    return check_section_availability(section, data) or DEFAULT_SKIP_REASON
