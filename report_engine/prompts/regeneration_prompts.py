# Prompt for regenerating one section from user feedback.
# Only the one section's guidance, current content and the feedback are sent;
# no other section of the report is included.

import json

from report_engine.schemas.report import PromptPair, ReportContext
from report_engine.schemas.sections import GeneratedSection, SectionDefinition
from report_engine.prompts.narrative_prompts import build_brand_colors_block
from report_engine.services.sections.tier_policy import (
    build_section_length_instruction,
    get_charts_for_section,
)

DEFAULT_USER_NOTES = "Improve this section"

REGENERATION_SYSTEM = r"""<role>
You are an expert multifamily real estate analyst revising one section of an investor report.
Keep every number from the current content unless the user's feedback corrects it. Never fabricate data.
Your analysis STOPS at NOI: no debt service, capex, or distributions unless the feedback supplies them.
Respond with ONLY a JSON object for the one section. No markdown fences, no preamble.
</role>"""


def build_section_regeneration_prompt(
    context: ReportContext,
    section_def: SectionDefinition,
    current_section: GeneratedSection,
    user_notes: str,
) -> PromptPair:
    """Build the prompt pair for regenerating a single section.

    Blank notes default to a generic improvement request.
    """
    notes = user_notes.strip() or DEFAULT_USER_NOTES
    charts = ", ".join(get_charts_for_section(section_def.id, context.tier))
    template = json.dumps(
        {
            "id": section_def.id,
            "title": section_def.title,
            "content": "Updated narrative...",
            "chart_html": "Inline HTML chart, or empty string",
            "metrics": [{"label": "Name", "value": "$X", "change": "+X%", "changeDirection": "up"}],
            "included": True,
            "skipReason": None,
        },
        indent=2,
    )

    user = "\n\n".join([
        f'<task>Regenerate ONLY the "{section_def.title}" section of the {context.period_label} '
        f"report for {context.property_name} based on user feedback.</task>",
        f"<current_content>\n{current_section.content}\n</current_content>",
        f"<user_feedback>\n{notes}\n</user_feedback>",
        build_brand_colors_block(context.brand_colors),
        (
            "<section_guidelines>\n"
            f"{section_def.prompt_guidance}\n"
            f"{build_section_length_instruction(section_def.id, context.tier)}\n"
            f"Allowed chart templates: {charts}\n"
            "</section_guidelines>"
        ),
        f"<output_format>\n{template}\n</output_format>",
    ])
    return PromptPair(system=REGENERATION_SYSTEM, user=user)
