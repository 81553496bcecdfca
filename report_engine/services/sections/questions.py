"""Operator questionnaire and the sections each question feeds."""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class QuestionDefinition:
    id: str
    label: str
    placeholder: str
    related_sections: List[str] = field(default_factory=list)


ALL_QUESTIONS: List[QuestionDefinition] = [
    QuestionDefinition(
        id="executive_summary_notes",
        label="Executive Summary",
        placeholder="What should investors know this month?",
        related_sections=["executive_summary"],
    ),
    QuestionDefinition(
        id="occupancy_notes",
        label="Occupancy & Leasing",
        placeholder="Occupancy changes? Move-ins and move-outs?",
        related_sections=["occupancy_leasing", "lease_expiration_rollover", "resident_operational_metrics"],
    ),
    QuestionDefinition(
        id="lease_expiration_notes",
        label="Lease Expirations & Renewals",
        placeholder="Renewals completed? Upcoming expirations?",
        related_sections=["lease_expiration_rollover", "rent_roll_insights", "rent_roll_deep_dive"],
    ),
    QuestionDefinition(
        id="financial_notes",
        label="Financial Performance",
        placeholder="Revenue or expense items to highlight?",
        related_sections=[
            "revenue_summary",
            "revenue_analysis",
            "expense_summary",
            "expense_analysis",
            "noi_performance",
            "budget_vs_actual",
        ],
    ),
    QuestionDefinition(
        id="delinquency_notes",
        label="Delinquency & Collections",
        placeholder="Delinquent tenants? Collection actions?",
        related_sections=["risk_watch_items", "risk_matrix"],
    ),
    QuestionDefinition(
        id="leasing_notes",
        label="Leasing Activity",
        placeholder="Traffic trends? Application volume?",
        related_sections=["occupancy_leasing", "rent_roll_insights"],
    ),
    QuestionDefinition(
        id="capex_notes",
        label="Capital Expenditures",
        placeholder="Renovation updates? CapEx spending?",
        related_sections=["capital_improvements", "capital_improvements_tracker"],
    ),
    QuestionDefinition(
        id="market_notes",
        label="Market Context",
        placeholder="Local market changes? New competitive supply?",
        related_sections=["market_positioning", "market_submarket_analysis"],
    ),
    QuestionDefinition(
        id="operations_notes",
        label="Operations & Maintenance",
        placeholder="Work order volume? Staffing? Turn times?",
        related_sections=["resident_operational_metrics"],
    ),
    QuestionDefinition(
        id="compliance_notes",
        label="Compliance & Covenants",
        placeholder="Covenant status? Insurance renewals? Regulatory changes?",
        related_sections=["regulatory_compliance"],
    ),
    QuestionDefinition(
        id="outlook_notes",
        label="Outlook & Distributions",
        placeholder="What should investors expect? Distribution updates?",
        related_sections=["asset_manager_outlook", "asset_manager_strategic_outlook", "investment_thesis_update"],
    ),
]

_BY_ID = {q.id: q for q in ALL_QUESTIONS}


def get_question(question_id: str) -> Optional[QuestionDefinition]:
    return _BY_ID.get(question_id)


def get_questions_for_sections(section_ids: Optional[Sequence[str]]) -> List[QuestionDefinition]:
    """Questions relevant to the enabled sections; all of them when none are given."""
    if not section_ids:
        return list(ALL_QUESTIONS)
    enabled = set(section_ids)
    return [q for q in ALL_QUESTIONS if any(s in enabled for s in q.related_sections)]


def question_label(question_id: str) -> str:
    """Display label for an answer key, title-casing unknown keys."""
    question = _BY_ID.get(question_id)
    if question is not None:
        return question.label
    return question_id.replace("_", " ").title()
