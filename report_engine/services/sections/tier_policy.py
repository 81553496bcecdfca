"""Per-tier generation policy.

Narrative length, chart access, model selection and token budgets for each
tier. The prompt builder renders the length and chart tables as hard numeric
instructions.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from report_engine.core.config import settings
from report_engine.schemas.sections import Tier


DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

KPI_STRIP = "kpi_strip"


@dataclass(frozen=True)
class SectionLength:
    """Sentence range and paragraph cap for one section.

    Attributes:
        min_sentences: Lower bound on narrative sentences
        max_sentences: Upper bound on narrative sentences
        max_paragraphs: Maximum number of paragraphs
    """
    min_sentences: int
    max_sentences: int
    max_paragraphs: int


@dataclass(frozen=True)
class ModelConfig:
    model: str
    temperature: float
    max_tokens: int


def _length(sentences: Tuple[int, int], paragraphs: int) -> SectionLength:
    return SectionLength(sentences[0], sentences[1], paragraphs)


_DEFAULT = "default"

SECTION_LENGTH: Dict[Tier, Dict[str, SectionLength]] = {
    Tier.FOUNDATIONAL: {
        _DEFAULT: _length((2, 3), 1),
        "executive_summary": _length((2, 3), 1),
        "revenue_summary": _length((2, 3), 1),
        "expense_summary": _length((2, 3), 1),
        "asset_manager_outlook": _length((2, 3), 1),
    },
    Tier.PROFESSIONAL: {
        _DEFAULT: _length((3, 5), 2),
        "executive_summary": _length((3, 4), 1),
        "revenue_summary": _length((3, 5), 2),
        "expense_summary": _length((3, 5), 2),
        "revenue_analysis": _length((3, 5), 2),
        "expense_analysis": _length((3, 5), 2),
        "occupancy_leasing": _length((3, 5), 2),
        "noi_performance": _length((3, 5), 2),
        "rent_roll_insights": _length((2, 4), 1),
        "risk_watch_items": _length((2, 3), 1),
        "market_positioning": _length((3, 5), 2),
        "capital_improvements": _length((2, 4), 1),
        "asset_manager_outlook": _length((3, 5), 2),
    },
    Tier.INSTITUTIONAL: {
        _DEFAULT: _length((4, 7), 3),
        "executive_summary": _length((3, 5), 2),
        "revenue_summary": _length((4, 6), 2),
        "expense_summary": _length((4, 6), 2),
        "revenue_analysis": _length((4, 7), 3),
        "expense_analysis": _length((4, 7), 3),
        "occupancy_leasing": _length((4, 7), 3),
        "noi_performance": _length((4, 7), 3),
        "rent_roll_insights": _length((3, 5), 2),
        "risk_watch_items": _length((3, 5), 2),
        "market_positioning": _length((4, 7), 3),
        "capital_improvements": _length((3, 5), 2),
        "asset_manager_outlook": _length((4, 7), 3),
        "investment_thesis_update": _length((4, 7), 3),
        "lease_expiration_rollover": _length((3, 5), 2),
        "rent_roll_deep_dive": _length((4, 6), 2),
        "budget_vs_actual": _length((4, 7), 3),
        "market_submarket_analysis": _length((4, 7), 3),
        "capital_improvements_tracker": _length((3, 5), 2),
        "risk_matrix": _length((4, 7), 3),
        "resident_operational_metrics": _length((3, 5), 2),
        "regulatory_compliance": _length((3, 5), 2),
        "asset_manager_strategic_outlook": _length((4, 7), 3),
    },
}

_STANDARD_CHARTS = [
    "budget_variance_table",
    "revenue_waterfall",
    "expense_horizontal_bars",
    "occupancy_gauge",
    "noi_trend_bars",
    "rent_roll_table",
    "risk_cards",
    "move_in_out_bars",
]

CHART_ACCESS: Dict[Tier, List[str]] = {
    Tier.FOUNDATIONAL: [],
    Tier.PROFESSIONAL: list(_STANDARD_CHARTS),
    Tier.INSTITUTIONAL: _STANDARD_CHARTS + ["comparison_table"],
}

SECTION_CHART_MAP: Dict[str, List[str]] = {
    "executive_summary": [],
    "revenue_summary": ["budget_variance_table"],
    "expense_summary": ["budget_variance_table"],
    "revenue_analysis": ["revenue_waterfall"],
    "expense_analysis": ["expense_horizontal_bars"],
    "occupancy_leasing": ["occupancy_gauge", "move_in_out_bars"],
    "noi_performance": ["noi_trend_bars"],
    "rent_roll_insights": ["rent_roll_table"],
    "rent_roll_deep_dive": ["rent_roll_table"],
    "risk_watch_items": ["risk_cards"],
    "risk_matrix": ["risk_cards"],
    "budget_vs_actual": ["budget_variance_table"],
    "market_positioning": ["comparison_table"],
    "market_submarket_analysis": ["comparison_table"],
    "capital_improvements": [],
    "capital_improvements_tracker": [],
    "investment_thesis_update": [],
    "lease_expiration_rollover": ["comparison_table"],
    "asset_manager_outlook": [],
    "asset_manager_strategic_outlook": [],
    "resident_operational_metrics": ["comparison_table"],
    "regulatory_compliance": [],
}

_TEMPERATURES: Dict[str, Dict[Tier, float]] = {
    "extraction": {
        Tier.FOUNDATIONAL: 0.0,
        Tier.PROFESSIONAL: 0.0,
        Tier.INSTITUTIONAL: 0.0,
    },
    "narrative": {
        Tier.FOUNDATIONAL: 0.15,
        Tier.PROFESSIONAL: 0.2,
        Tier.INSTITUTIONAL: 0.25,
    },
}

TOKEN_LIMITS: Dict[str, Dict[Tier, int]] = {
    "extraction": {
        Tier.FOUNDATIONAL: 2500,
        Tier.PROFESSIONAL: 4000,
        Tier.INSTITUTIONAL: 6000,
    },
    "narrative": {
        Tier.FOUNDATIONAL: 8000,
        Tier.PROFESSIONAL: 20000,
        Tier.INSTITUTIONAL: 30000,
    },
}


def get_section_length(section_id: str, tier) -> SectionLength:
    """Length allowance for a section, falling back to the tier default."""
    table = SECTION_LENGTH[Tier.coerce(tier)]
    return table.get(section_id, table[_DEFAULT])


def get_available_charts(tier) -> List[str]:
    return list(CHART_ACCESS[Tier.coerce(tier)])


def get_charts_for_section(section_id: str, tier) -> List[str]:
    """Chart templates a section may use at a tier.

    KPI cards are available at every tier; a section left with no permitted
    chart gets ``kpi_strip`` only.
    """
    available = CHART_ACCESS[Tier.coerce(tier)]
    recommended = SECTION_CHART_MAP.get(section_id, [KPI_STRIP])
    charts = [chart for chart in recommended if chart in available]
    return charts or [KPI_STRIP]


def get_model_config(tier, call_type: str) -> ModelConfig:
    """Model, temperature and token budget for one call.

    Args:
        tier: Report tier; unknown values fall back to foundational
        call_type: ``extraction`` or ``narrative``

    Returns:
        ModelConfig with environment model overrides applied
    """
    if call_type not in TOKEN_LIMITS:
        raise ValueError(f"Unknown call type: {call_type}")

    resolved = Tier.coerce(tier)
    override = (
        settings.llm.extraction_model if call_type == "extraction" else settings.llm.narrative_model
    )
    model = override or settings.llm.default_model or DEFAULT_MODEL

    return ModelConfig(
        model=model,
        temperature=_TEMPERATURES[call_type][resolved],
        max_tokens=TOKEN_LIMITS[call_type][resolved],
    )


def build_section_length_instruction(section_id: str, tier) -> str:
    length = get_section_length(section_id, tier)
    if length.max_paragraphs == 1:
        return f"Write {length.min_sentences}–{length.max_sentences} sentences in a single paragraph."
    return (
        f"Write {length.min_sentences}–{length.max_sentences} sentences "
        f"across 1–{length.max_paragraphs} paragraphs."
    )


def build_section_length_rules_block(section_ids: Sequence[str], tier) -> str:
    rules = "\n".join(
        f'  <section id="{section_id}">{build_section_length_instruction(section_id, tier)}</section>'
        for section_id in section_ids
    )
    return (
        "<section_length_rules>\n"
        "Each section's narrative must follow these length constraints exactly.\n"
        "Do not exceed the maximum sentences or paragraphs for any section.\n"
        "Charts and tables do NOT count toward the sentence limit; only narrative text does.\n"
        f"{rules}\n"
        "</section_length_rules>"
    )


def build_chart_access_block(section_ids: Sequence[str], tier) -> str:
    lines = "\n".join(
        f'  <section id="{section_id}">{", ".join(get_charts_for_section(section_id, tier))}</section>'
        for section_id in section_ids
    )
    return (
        "<chart_access>\n"
        "For each section, use ONLY the chart templates listed below.\n"
        'If a section shows "kpi_strip" only, do NOT generate any other chart type.\n'
        f"{lines}\n"
        "</chart_access>"
    )
