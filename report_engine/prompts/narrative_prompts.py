# Prompts for the narrative call.
# The system prompt depends only on tier, property identity, historical context
# and the section set, so it can be cached by the generation service. Anything
# per-report (brand colors, extracted data, operator notes) goes in the user prompt.

import json
from typing import Dict, List, Optional, Sequence

from report_engine.schemas.report import BrandColors, PromptPair, ReportContext, ValidationResult
from report_engine.schemas.sections import SectionDefinition, Tier
from report_engine.services.sections.questions import ALL_QUESTIONS, question_label
from report_engine.services.sections.tier_policy import (
    build_chart_access_block,
    build_section_length_rules_block,
)

STATUS_COLORS = {
    "GREEN": "#059669",
    "RED": "#DC2626",
    "AMBER": "#D97706",
}

NARRATIVE_ROLE = r"""<role>
You are an expert multifamily real estate analyst at a private equity firm writing institutional-quality investor reports. Your reports are read by Limited Partners (LPs), sophisticated investors who read dozens of property reports and value precision over prose.
</role>"""

TIER_INSTRUCTIONS = {
    Tier.FOUNDATIONAL: (
        "Concise 4-section report. Use KPI metric cards (kpi_strip template) only, no other charts.\n"
        "Keep narrative brief. Focus on headline numbers."
    ),
    Tier.PROFESSIONAL: (
        "Polished 10-section report with inline HTML charts using the templates provided.\n"
        "Balance narrative with visual data presentation.\n"
        "Charts help investors scan the report quickly; use them to replace paragraphs of numbers.\n"
        "After a chart, write 1-2 sentences of insight, not a re-description of chart data."
    ),
    Tier.INSTITUTIONAL: (
        "Comprehensive institutional-grade report with up to 15 sections and premium visualizations.\n"
        "Dense with data; every word earns its place.\n"
        "Use multiple chart types per section where appropriate."
    ),
}

NOI_CEILING = r"""<noi_ceiling>
Your analysis STOPS at Net Operating Income (NOI = Total Revenue - Total Expenses).
NEVER reference, calculate, or mention: debt service, mortgage payments, capital expenditures,
distributions, investor returns, IRR, equity multiples, or cash-on-cash return.
EXCEPTION: If the asset manager explicitly provided capex, debt, or distribution information
in their notes, you may include ONLY what they mentioned.
</noi_ceiling>"""

FORBIDDEN_WORDS = [
    "significant",
    "notable",
    "it is worth noting",
    "robust",
    "solid",
    "going forward",
    "leverage",
    "utilize",
]

NARRATIVE_STYLE = r"""<narrative_style>
VOICE: Monthly investor reports for multifamily real estate private equity LPs.
The audience understands real estate terms (NOI, GPR, LTL, basis points). Do not define terms.

STRUCTURE:
- Lead every section with the headline number, not a setup sentence.
- Bold the single most important metric in each section using <strong> tags.
- Every percentage: one decimal place (91.4%, not 91% or 91.42%).
- Dollar values in narrative: no cents, with commas ($113,848 not $113,848.00).
- Negative values in narrative: en-dash format (–$4,667), not minus sign.
- Negative values in tables: parenthetical format ($4,667).
- Always contextualize: compare to prior month, budget, or trailing average.

FORBIDDEN WORDS (never use these):
__FORBIDDEN_WORDS__

ASSET MANAGER OUTLOOK:
- Use the asset manager's questionnaire answers and freeform notes.
- Write in third person: "The asset management team reports..."
- If no notes are provided, write 2 sentences based on the financial data.
</narrative_style>""".replace(
    "__FORBIDDEN_WORDS__", "\n".join(f'- "{word}"' for word in FORBIDDEN_WORDS)
)

VISUALIZATION_TEMPLATES = r"""<visualization_templates>
Put chart markup in the section's "chart_html" field, never inside "content".
Chart HTML uses inline styles only, no external CSS and no JavaScript.
Use color tokens {{PRIMARY}}, {{SECONDARY}}, {{ACCENT}}, {{GREEN}}, {{RED}}, {{AMBER}}.
- kpi_strip: a row of 3-4 metric cards (label, value, change)
- budget_variance_table: line items with actual, budget, variance $ and variance %
- revenue_waterfall: bars from GPR through each deduction to net rental income
- expense_horizontal_bars: one bar per expense category, over-budget bars in {{RED}}
- occupancy_gauge: semicircle gauge of physical occupancy
- noi_trend_bars: vertical bars of trailing NOI by month
- rent_roll_table: floorplan rows with units, avg rent, avg sqft, rent/sqft, occupancy
- risk_cards: one card per risk with a severity color
- move_in_out_bars: paired bars of move-ins and move-outs
- comparison_table: generic comparison rows with a highlighted subject row
</visualization_templates>"""

OUTPUT_FORMAT = r"""<output_format>
Respond with ONLY a JSON object. No markdown fences, no preamble, no text before or after.
Your response must start with { and end with }.

{
  "sections": [
    {
      "id": "section_id",
      "title": "Section Title",
      "content": "Narrative text...",
      "chart_html": "Inline HTML chart from the templates, or empty string",
      "metrics": [{"label": "Name", "value": "$X", "change": "+X%", "changeDirection": "up", "vsbudget": "+X%"}],
      "included": true,
      "skipReason": null
    }
  ],
  "analysis_summary": {
    "overall_sentiment": "improving|stable|declining",
    "key_findings": ["finding 1", "finding 2"],
    "data_quality_notes": ["any issues"]
  }
}

The "sections" array MUST contain one object for EVERY section in the <sections_to_generate> block
and every section in the <pre_skipped_sections> block.
Generate ALL sections in a single response. Do NOT stop after the first section.
For sections with insufficient data: set "included": false with a "skipReason".
</output_format>"""

CRITICAL_RULES = r"""<critical_rules>
<rule>Use exact numbers from the <extracted_data> in the user prompt. Never round unless the source is rounded.</rule>
<rule>Format: $1,234,567 (commas) | 94.5% (one decimal) | $850/unit | +3.2% or –1.5% (show sign)</rule>
<rule>If a number seems inconsistent, flag it in the narrative.</rule>
<rule>Never fabricate data. Missing data = "included": false with skipReason.</rule>
<rule>When a value is null in <extracted_data>, write "data not available" rather than estimating it.</rule>
<rule>Use real estate terminology naturally: NOI, GPR, EGI, NER, loss-to-lease.</rule>
<rule>Replace {{PRIMARY}}, {{SECONDARY}}, {{ACCENT}}, {{GREEN}}, {{RED}}, {{AMBER}} with values from <brand_colors>.</rule>
</critical_rules>"""


def _xml_attr(value: str) -> str:
    return value.replace("&", "&amp;").replace('"', "&quot;")


def build_section_guidance_block(sections: Sequence[SectionDefinition]) -> str:
    blocks = [
        (
            f'<section_guidance id="{section.id}" title="{_xml_attr(section.title)}" '
            f'conditional="{str(section.is_conditional).lower()}" '
            f'visualizations="{section.visualization_tier.value}">\n'
            f"{section.prompt_guidance}\n"
            "</section_guidance>"
        )
        for section in sections
    ]
    return "<section_definitions>\n" + "\n\n".join(blocks) + "\n</section_definitions>"


def build_narrative_system_prompt(
    context: ReportContext,
    sections: Sequence[SectionDefinition],
    historical_context: Optional[str] = None,
) -> str:
    tier = context.tier
    section_ids = [section.id for section in sections]

    property_lines = [f"<name>{context.property_name}</name>"]
    if context.property_address:
        property_lines.append(f"<address>{context.property_address}</address>")
    if context.unit_count:
        property_lines.append(f"<units>{context.unit_count}</units>")
    if context.investment_strategy:
        property_lines.append(f"<investment_strategy>{context.investment_strategy}</investment_strategy>")

    blocks = [
        NARRATIVE_ROLE,
        "<property_context>\n" + "\n".join(property_lines) + "\n</property_context>",
        (
            "<tier_config>\n"
            f"<tier>{tier.value}</tier>\n"
            f"<instructions>\n{TIER_INSTRUCTIONS[tier]}\n</instructions>\n"
            "</tier_config>"
        ),
    ]
    if historical_context:
        blocks.append(f"<historical_data>\n{historical_context}\n</historical_data>")
    blocks.extend([NOI_CEILING, NARRATIVE_STYLE])
    if context.company_name:
        blocks.append(
            "<report_header>\n"
            "Include a report header at the top of the FIRST section's content.\n"
            f"Company name: {context.company_name}\n"
            "</report_header>"
        )
    blocks.extend([
        VISUALIZATION_TEMPLATES,
        build_section_guidance_block(sections),
        OUTPUT_FORMAT,
        build_section_length_rules_block(section_ids, tier),
        build_chart_access_block(section_ids, tier),
        CRITICAL_RULES,
    ])
    return "\n\n".join(blocks)


def build_brand_colors_block(colors: BrandColors) -> str:
    lines = [
        f"PRIMARY={colors.primary}",
        f"SECONDARY={colors.secondary}",
        f"ACCENT={colors.accent}",
    ]
    lines.extend(f"{name}={value}" for name, value in STATUS_COLORS.items())
    return "<brand_colors>\n" + "\n".join(lines) + "\n</brand_colors>"


def _ordered_answers(answers: Dict[str, str]) -> List[str]:
    """Answered question keys in questionnaire order, unknown keys after, sorted."""
    known_ids = {q.id for q in ALL_QUESTIONS}
    known = [q.id for q in ALL_QUESTIONS if (answers.get(q.id) or "").strip()]
    extra = sorted(k for k, v in answers.items() if k not in known_ids and (v or "").strip())
    return known + extra


def build_narrative_user_prompt(
    context: ReportContext,
    sections: Sequence[SectionDefinition],
    validation: ValidationResult,
    answers: Optional[Dict[str, str]] = None,
    distribution_status: str = "none",
    distribution_note: str = "",
    freeform: str = "",
) -> str:
    answers = answers or {}
    skip = set(validation.sections_to_skip)
    active = [s for s in sections if s.id not in skip]
    skipped = [s for s in sections if s.id in skip]

    extracted_json = json.dumps(validation.corrected.model_dump(mode="json"), indent=2)

    parts = [
        f"Generate the investor report for {context.period_label}.",
        build_brand_colors_block(context.brand_colors),
        f"<extracted_data>\n{extracted_json}\n</extracted_data>",
    ]

    answered = _ordered_answers(answers)
    if answered or freeform.strip():
        note_lines = [
            f'<note category="{key}">{question_label(key)}: {answers[key].strip()}</note>'
            for key in answered
        ]
        if freeform.strip():
            note_lines.append(f"<freeform>{freeform.strip()}</freeform>")
        parts.append("<asset_manager_notes>\n" + "\n".join(note_lines) + "\n</asset_manager_notes>")

    if distribution_status and distribution_status != "none":
        status_lines = [f"<status>{distribution_status}</status>"]
        if distribution_note:
            status_lines.append(f"<note>{distribution_note}</note>")
        parts.append("<distribution_status>\n" + "\n".join(status_lines) + "\n</distribution_status>")

    section_lines = [
        (
            f'<section id="{s.id}" title="{_xml_attr(s.title)}" visualizations="{s.visualization_tier.value}">\n'
            f'Refer to section_guidance id="{s.id}" in the system prompt for analysis instructions.\n'
            "</section>"
        )
        for s in active
    ]
    parts.append("<sections_to_generate>\n" + "\n\n".join(section_lines) + "\n</sections_to_generate>")

    if skipped:
        skipped_lines = [
            f'- {s.id}: "{s.title}" ({validation.skip_reasons.get(s.id, "Insufficient data for this section")})'
            for s in skipped
        ]
        parts.append(
            "<pre_skipped_sections>\n"
            'These sections were skipped due to missing data. Include them in your response with "included": false.\n'
            + "\n".join(skipped_lines)
            + "\n</pre_skipped_sections>"
        )

    parts.append(
        "<final_instructions>\n"
        "<instruction>Use the data from <extracted_data>; do not re-read original documents.</instruction>\n"
        "<instruction>Replace all {{COLOR}} tokens in chart HTML with values from <brand_colors>.</instruction>\n"
        f"<instruction>Return a SINGLE JSON with ALL {len(sections)} sections "
        f"({len(active)} active + {len(skipped)} skipped).</instruction>\n"
        "<instruction>STOP AT NOI. No debt service, capex, or distributions unless the asset manager mentioned them.</instruction>\n"
        "</final_instructions>"
    )
    return "\n\n".join(parts)


def build_narrative_prompt(
    context: ReportContext,
    sections: Sequence[SectionDefinition],
    validation: ValidationResult,
    answers: Optional[Dict[str, str]] = None,
    distribution_status: str = "none",
    distribution_note: str = "",
    freeform: str = "",
    historical_context: Optional[str] = None,
) -> PromptPair:
    """Build the narrative call prompt pair.

    Args:
        context: Property identity, tier and brand colors
        sections: Sections requested for the report, in report order
        validation: Validator output; its corrected data is sent to the model
        answers: Questionnaire answers keyed by question id
        distribution_status: Distribution status; "none" omits the block
        distribution_note: Note attached to the distribution status
        freeform: Free-text notes from the asset manager
        historical_context: Prior-period metrics, if any

    Returns:
        PromptPair
    """
    return PromptPair(
        system=build_narrative_system_prompt(context, sections, historical_context),
        user=build_narrative_user_prompt(
            context,
            sections,
            validation,
            answers=answers,
            distribution_status=distribution_status,
            distribution_note=distribution_note,
            freeform=freeform,
        ),
    )
