"""Static catalog of report sections and the sections each tier unlocks."""

from typing import Dict, List, Optional, Sequence

from report_engine.schemas.sections import SectionDefinition, Tier, VisualizationTier
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


_KPI = VisualizationTier.KPI_CARDS
_CHARTS = VisualizationTier.CHARTS
_PREMIUM = VisualizationTier.PREMIUM
_NONE = VisualizationTier.NONE


ALL_SECTIONS: Dict[str, SectionDefinition] = {
    s.id: s
    for s in [
        SectionDefinition(
            id="executive_summary",
            title="Executive Summary",
            description="High-level overview of property performance with headline KPIs.",
            required_files=["t12"],
            required_questions=["executive_summary_notes"],
            visualization_tier=_KPI,
            prompt_guidance=(
                "Open with the headline NOI figure and its month-over-month change.\n"
                "Name the main driver of the change.\n"
                "Close with one forward-looking risk or opportunity.\n"
                "Provide KPI metrics for occupancy, NOI, total revenue and total expenses."
            ),
        ),
        SectionDefinition(
            id="revenue_summary",
            title="Revenue Summary",
            description="Top-line revenue performance and effective rent.",
            required_files=["t12"],
            required_questions=["financial_notes"],
            visualization_tier=_KPI,
            prompt_guidance=(
                "Report total revenue against prior month and budget.\n"
                "Mention gross potential rent and the largest revenue deduction."
            ),
        ),
        SectionDefinition(
            id="expense_summary",
            title="Expense Summary",
            description="Total operating expenses and key categories.",
            required_files=["t12"],
            required_questions=["financial_notes"],
            visualization_tier=_KPI,
            prompt_guidance=(
                "Report total operating expenses, per-unit cost and expense ratio.\n"
                "Call out the one or two categories that moved most."
            ),
        ),
        SectionDefinition(
            id="asset_manager_outlook",
            title="Asset Manager Outlook",
            description="Forward-looking narrative from the asset manager's notes.",
            required_files=[],
            required_questions=["outlook_notes"],
            visualization_tier=_NONE,
            prompt_guidance=(
                "Write in third person from the asset manager's notes.\n"
                "Cover plans for the next 30-60 days and distribution status if provided.\n"
                "If no notes were provided, write two sentences based on the financial data."
            ),
        ),
        SectionDefinition(
            id="occupancy_leasing",
            title="Occupancy & Leasing",
            description="Physical and economic occupancy with move-in and move-out activity.",
            required_files=["t12"],
            required_questions=["occupancy_notes", "leasing_notes"],
            visualization_tier=_CHARTS,
            prompt_guidance=(
                "Lead with physical occupancy and its change from prior month.\n"
                "Contrast physical and economic occupancy when both are available.\n"
                "Summarize move-ins, move-outs, renewals and notices if leasing data exists."
            ),
        ),
        SectionDefinition(
            id="revenue_analysis",
            title="Revenue Analysis",
            description="Revenue bridge from gross potential rent to total revenue.",
            required_files=["t12"],
            required_questions=["financial_notes"],
            visualization_tier=_CHARTS,
            prompt_guidance=(
                "Walk from gross potential rent through vacancy, loss-to-lease, "
                "concessions and bad debt to net rental income.\n"
                "Add other income to reach total revenue and compare to budget."
            ),
        ),
        SectionDefinition(
            id="expense_analysis",
            title="Expense Analysis",
            description="Category-level expense breakdown with budget variance.",
            required_files=["t12"],
            required_questions=["financial_notes"],
            visualization_tier=_CHARTS,
            prompt_guidance=(
                "Break expenses down by category.\n"
                "Flag categories more than 5% over budget with the dollar variance."
            ),
        ),
        SectionDefinition(
            id="noi_performance",
            title="Net Operating Income",
            description="NOI against prior month, budget and the trailing trend.",
            required_files=["t12"],
            required_questions=["financial_notes"],
            visualization_tier=_CHARTS,
            prompt_guidance=(
                "State current NOI with prior-month and budget comparisons.\n"
                "Describe the trailing-12 trend when the series is available."
            ),
        ),
        SectionDefinition(
            id="rent_roll_insights",
            title="Rent Roll Insights",
            description="Unit mix with average rent by floorplan.",
            required_files=["rent_roll"],
            required_questions=["lease_expiration_notes", "leasing_notes"],
            visualization_tier=_CHARTS,
            prompt_guidance=(
                "Summarize the unit mix by floorplan with average rent, rent per square "
                "foot and occupancy.\n"
                "Point out the weakest-occupied floorplan."
            ),
        ),
        SectionDefinition(
            id="market_positioning",
            title="Market Positioning",
            description="Property positioning against its submarket.",
            required_files=[],
            required_questions=["market_notes"],
            is_conditional=True,
            visualization_tier=_CHARTS,
            prompt_guidance=(
                "Only include if the asset manager provided market notes.\n"
                "Describe rent positioning, competitive advantages and threats."
            ),
        ),
        SectionDefinition(
            id="capital_improvements",
            title="Capital & Improvements Update",
            description="Capital improvement progress reported by the asset manager.",
            required_files=[],
            required_questions=["capex_notes"],
            is_conditional=True,
            visualization_tier=_NONE,
            prompt_guidance=(
                "Only include if the asset manager provided capex notes.\n"
                "Report only what the notes state."
            ),
        ),
        SectionDefinition(
            id="risk_watch_items",
            title="Risk & Watch Items",
            description="Data-driven risk flags and concerns.",
            required_files=["t12"],
            required_questions=["delinquency_notes"],
            visualization_tier=_CHARTS,
            prompt_guidance=(
                "List two to four specific risks ranked by severity.\n"
                "Tie every risk to a number in the extracted data and suggest a mitigation."
            ),
        ),
        SectionDefinition(
            id="investment_thesis_update",
            title="Investment Thesis Update",
            description="Progress against the original investment strategy.",
            required_files=["t12"],
            required_questions=["outlook_notes"],
            visualization_tier=_PREMIUM,
            prompt_guidance=(
                "Measure current performance against the stated investment strategy.\n"
                "Say which value-add milestones are on track and which are behind."
            ),
        ),
        SectionDefinition(
            id="budget_vs_actual",
            title="Budget vs. Actual",
            description="Full variance analysis of revenue and expenses against budget.",
            required_files=["t12", "budget"],
            required_questions=["financial_notes"],
            visualization_tier=_PREMIUM,
            prompt_guidance=(
                "Compare every revenue and expense line with a budget value.\n"
                "Separate favorable from unfavorable variances and explain the largest of each."
            ),
        ),
        SectionDefinition(
            id="rent_roll_deep_dive",
            title="Rent Roll Deep Dive",
            description="Unit-level analysis with floorplan performance tables.",
            required_files=["rent_roll"],
            required_questions=["lease_expiration_notes"],
            visualization_tier=_PREMIUM,
            prompt_guidance=(
                "Analyze rent distribution and floorplan performance in depth.\n"
                "Quantify the spread between highest and lowest rent per square foot."
            ),
        ),
        SectionDefinition(
            id="lease_expiration_rollover",
            title="Lease Expiration & Rollover Analysis",
            description="Lease expiration schedule and revenue at risk.",
            required_files=["rent_roll"],
            required_questions=["lease_expiration_notes", "occupancy_notes"],
            is_conditional=True,
            visualization_tier=_PREMIUM,
            prompt_guidance=(
                "Only include if the rent roll carries lease dates.\n"
                "Show expirations over the next 12 months and the revenue at risk."
            ),
        ),
        SectionDefinition(
            id="market_submarket_analysis",
            title="Market & Submarket Analysis",
            description="Comparable properties, rent trends and supply pipeline.",
            required_files=[],
            required_questions=["market_notes"],
            is_conditional=True,
            visualization_tier=_PREMIUM,
            prompt_guidance=(
                "Only include if the asset manager provided market notes.\n"
                "Cover comparable rents, new supply and demand drivers."
            ),
        ),
        SectionDefinition(
            id="capital_improvements_tracker",
            title="Capital Improvements & Value-Add Tracker",
            description="Renovation progress and premium achieved.",
            required_files=[],
            required_questions=["capex_notes"],
            is_conditional=True,
            visualization_tier=_PREMIUM,
            prompt_guidance=(
                "Only include if the asset manager provided capex notes.\n"
                "Track budget against spend, completion and rent premium per project."
            ),
        ),
        SectionDefinition(
            id="risk_matrix",
            title="Risk Matrix",
            description="Categorized risks with severity ratings.",
            required_files=["t12"],
            required_questions=["delinquency_notes"],
            visualization_tier=_PREMIUM,
            prompt_guidance=(
                "Rate risks across occupancy, revenue, expense, market and operational categories.\n"
                "Give each a severity, a trend and a mitigation plan."
            ),
        ),
        SectionDefinition(
            id="resident_operational_metrics",
            title="Resident & Operational Metrics",
            description="Turnover, turn time, work orders and collections.",
            required_files=[],
            required_questions=["operations_notes", "occupancy_notes"],
            is_conditional=True,
            visualization_tier=_PREMIUM,
            prompt_guidance=(
                "Only include if operational data or notes are available.\n"
                "Report turnover, turn time and work order completion."
            ),
        ),
        SectionDefinition(
            id="regulatory_compliance",
            title="Regulatory & Compliance Notes",
            description="Covenant, insurance and tax updates from the asset manager.",
            required_files=[],
            required_questions=["compliance_notes"],
            is_conditional=True,
            visualization_tier=_NONE,
            prompt_guidance=(
                "Only include if the asset manager provided compliance notes.\n"
                "Report only what the notes state."
            ),
        ),
        SectionDefinition(
            id="asset_manager_strategic_outlook",
            title="Asset Manager Strategic Outlook",
            description="Comprehensive forward look with action items.",
            required_files=["t12"],
            required_questions=["outlook_notes"],
            visualization_tier=_PREMIUM,
            prompt_guidance=(
                "Give specific 30, 60 and 90-day action items.\n"
                "State the overall investment sentiment and what would change it."
            ),
        ),
    ]
}


TIER_SECTIONS: Dict[Tier, List[str]] = {
    Tier.FOUNDATIONAL: [
        "executive_summary",
        "revenue_summary",
        "expense_summary",
        "asset_manager_outlook",
    ],
    Tier.PROFESSIONAL: [
        "executive_summary",
        "occupancy_leasing",
        "revenue_analysis",
        "expense_analysis",
        "noi_performance",
        "rent_roll_insights",
        "market_positioning",
        "capital_improvements",
        "risk_watch_items",
        "asset_manager_outlook",
    ],
    Tier.INSTITUTIONAL: [
        "executive_summary",
        "investment_thesis_update",
        "occupancy_leasing",
        "revenue_analysis",
        "expense_analysis",
        "noi_performance",
        "budget_vs_actual",
        "rent_roll_deep_dive",
        "lease_expiration_rollover",
        "market_submarket_analysis",
        "capital_improvements_tracker",
        "risk_matrix",
        "resident_operational_metrics",
        "regulatory_compliance",
        "asset_manager_strategic_outlook",
    ],
}

_TIER_ORDER = [Tier.FOUNDATIONAL, Tier.PROFESSIONAL, Tier.INSTITUTIONAL]


def get_section(section_id: str) -> Optional[SectionDefinition]:
    return ALL_SECTIONS.get(section_id)


def get_sections_for_tier(tier) -> List[SectionDefinition]:
    """Ordered section definitions for a tier; unknown tiers get foundational."""
    resolved = Tier.coerce(tier)
    return [ALL_SECTIONS[section_id] for section_id in TIER_SECTIONS[resolved]]


def sections_available_at(tier) -> List[str]:
    """Every section id unlocked at or below ``tier``."""
    resolved = Tier.coerce(tier)
    available: List[str] = []
    for level in _TIER_ORDER[: _TIER_ORDER.index(resolved) + 1]:
        for section_id in TIER_SECTIONS[level]:
            if section_id not in available:
                available.append(section_id)
    return available


def resolve_sections(tier, template_ids: Optional[Sequence[str]] = None) -> List[SectionDefinition]:
    """Sections to generate for a report.

    A custom template is honored in its own order but filtered to the ids the
    tier unlocks. An empty or fully filtered template falls back to the tier
    defaults.
    """
    if not template_ids:
        return get_sections_for_tier(tier)

    allowed = set(sections_available_at(tier))
    chosen: List[SectionDefinition] = []
    seen = set()
    for section_id in template_ids:
        if section_id in allowed and section_id not in seen:
            chosen.append(ALL_SECTIONS[section_id])
            seen.add(section_id)

    dropped = [s for s in template_ids if s not in allowed]
    if dropped:
        LOGGER.info(
            "Dropped template sections not available at tier",
            extra={"tier": Tier.coerce(tier).value, "dropped": dropped},
        )

    if not chosen:
        return get_sections_for_tier(tier)
    return chosen
