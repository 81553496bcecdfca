# Prompts for the extraction call.
# The extraction call turns uploaded document text into the financial data
# schema. It runs at temperature 0 and must never produce narrative.

from typing import Dict, List

from report_engine.schemas.report import PromptPair, ReportContext

TYPED_FILE_TYPES = ("t12", "rent_roll", "leasing_activity", "budget")

EXTRACTION_ROLE = r"""<role>
You are a financial data extraction engine for multifamily real estate operating statements.
Parse uploaded financial documents and extract every relevant number into the exact JSON schema below.
Do not generate narrative text, HTML, charts, or analysis. Return ONLY the JSON object.
</role>"""

EXTRACTION_OUTPUT_SCHEMA = r"""<output_schema>
Respond with ONLY a JSON object matching this exact structure. No markdown fences, no preamble.
Your response must start with { and end with }.

{
  "property": {
    "name": "string",
    "units": number|null,
    "month": "string",
    "year": number
  },
  "income": {
    "gross_potential_rent": { "current": number|null, "prior": number|null, "budget": number|null },
    "vacancy_loss": { "current": number|null, "prior": number|null, "budget": number|null },
    "loss_to_lease": { "current": number|null, "prior": number|null, "budget": number|null },
    "concessions": { "current": number|null, "prior": number|null, "budget": number|null },
    "bad_debt": { "current": number|null, "prior": number|null, "budget": number|null },
    "net_rental_income": { "current": number|null, "prior": number|null, "budget": number|null },
    "other_income": { "current": number|null, "prior": number|null, "budget": number|null },
    "total_revenue": { "current": number|null, "prior": number|null, "budget": number|null }
  },
  "expenses": {
    "categories": [
      { "name": "string", "current": number|null, "prior": number|null, "budget": number|null }
    ],
    "total_expenses": { "current": number|null, "prior": number|null, "budget": number|null }
  },
  "noi": { "current": number|null, "prior": number|null, "budget": number|null },
  "occupancy": {
    "physical_percent": number|null,
    "economic_percent": number|null,
    "units_occupied": number|null,
    "units_vacant": number|null,
    "units_on_notice": number|null,
    "units_preleased": number|null
  },
  "leasing_activity": {
    "move_ins": number|null,
    "move_outs": number|null,
    "renewals": number|null,
    "notices_to_vacate": number|null,
    "new_lease_avg_rent": number|null,
    "renewal_avg_rent": number|null
  },
  "rent_roll": {
    "unit_mix": [
      { "floorplan": "string", "unit_count": number, "avg_rent": number|null, "avg_sqft": number|null, "avg_rent_per_sqft": number|null, "occupancy_pct": number|null }
    ],
    "total_units": number|null,
    "avg_rent": number|null
  },
  "trailing_12": {
    "months": ["string"],
    "noi": [number|null],
    "revenue": [number|null],
    "expenses": [number|null],
    "occupancy": [number|null]
  },
  "data_quality": {
    "t12_found": boolean,
    "rent_roll_found": boolean,
    "leasing_found": boolean,
    "budget_found": boolean,
    "month_match_confirmed": boolean,
    "notes": ["string"]
  }
}
</output_schema>"""


def build_extraction_system_prompt(context: ReportContext) -> str:
    month = context.month_name
    year = context.year

    property_lines = [f"Property: {context.property_name}"]
    if context.property_address:
        property_lines.append(f"Address: {context.property_address}")
    if context.unit_count:
        property_lines.append(f"Units: {context.unit_count}")
    property_lines.append(f"Report Month: {month} {year}")

    rules = [
        f'- Extract the CURRENT MONTH column ({month} or {context.month}/{year}) as "current" values',
        '- Extract the PRIOR MONTH column (one column to the left of current) as "prior" values',
        '- Extract the BUDGET column if present as "budget" values',
        "- Extract trailing 12 months of NOI, Revenue, Expenses, and Occupancy if available in the T-12",
        "- For the rent roll: extract unit mix summary grouped by floorplan with average rents, sqft, and occupancy",
        "- For leasing activity: extract move-ins, move-outs, renewals, and notices to vacate counts",
        "- All dollar values as integers with no cents: 113848 not 113848.00 or 113,848",
        '- All percentages as numbers with one decimal: 91.4 not 0.914 or "91.4%"',
        "- If a value cannot be found in the documents, use null. NEVER guess or fabricate numbers",
        "- STOP AT NOI. Do not extract debt service, loan payments, capex, distributions, or any below-the-line items",
        "- If the documents contain below-NOI items, IGNORE them completely",
    ]

    return "\n\n".join([
        EXTRACTION_ROLE,
        "<property_context>\n" + "\n".join(property_lines) + "\n</property_context>",
        "<extraction_rules>\n" + "\n".join(rules) + "\n</extraction_rules>",
        EXTRACTION_OUTPUT_SCHEMA,
    ])


def build_extraction_user_prompt(context: ReportContext, file_contents: Dict[str, str]) -> str:
    """Wrap each document's text in its own tag.

    Typed documents come first in a fixed order; additional documents follow
    sorted by type so the prompt does not depend on upload order.
    """
    parts: List[str] = ["<uploaded_documents>"]

    t12 = file_contents.get("t12")
    if t12:
        parts.append(f"<t12_operating_statement>\n{t12}\n</t12_operating_statement>\n")
    else:
        parts.append("<t12_operating_statement>NOT PROVIDED</t12_operating_statement>\n")

    if file_contents.get("rent_roll"):
        parts.append(f"<rent_roll>\n{file_contents['rent_roll']}\n</rent_roll>\n")
    if file_contents.get("leasing_activity"):
        parts.append(f"<leasing_activity>\n{file_contents['leasing_activity']}\n</leasing_activity>\n")
    if file_contents.get("budget"):
        parts.append(f"<annual_budget>\n{file_contents['budget']}\n</annual_budget>\n")

    for key in sorted(k for k in file_contents if k not in TYPED_FILE_TYPES):
        parts.append(f'<additional_document type="{key}">\n{file_contents[key]}\n</additional_document>\n')

    parts.append("</uploaded_documents>\n")
    parts.append(
        f"Extract all financial data for {context.period_label} into the JSON schema "
        "specified in the system prompt. Return ONLY the JSON object."
    )
    return "\n".join(parts)


def build_extraction_prompt(context: ReportContext, file_contents: Dict[str, str]) -> PromptPair:
    return PromptPair(
        system=build_extraction_system_prompt(context),
        user=build_extraction_user_prompt(context, file_contents),
    )
