"""Parsing of model output into report structures.

Model output is not guaranteed to be clean JSON. It may be wrapped in a code
fence, preceded by commentary, or cut off at the token limit. The narrative
parser distinguishes two failure modes:

- output that is not JSON at all falls back to a single catch-all section so
  the user always gets the text back;
- output that is JSON but not a section list raises ResponseShapeError.
"""

import json
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from report_engine.core.exceptions import (
    ExtractionParseError,
    ResponseParseError,
    ResponseShapeError,
)
from report_engine.schemas.extraction import ExtractedFinancialData
from report_engine.schemas.sections import AnalysisSummary, GeneratedSection, ParsedNarrative
from report_engine.utils.json_parser import (
    extract_fenced_block,
    find_json_object_span,
    parse_json_safely,
    recover_array_objects,
)
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


FALLBACK_SECTION_ID = "executive_summary"
FALLBACK_SECTION_TITLE = "Report"
TRUNCATION_NOTE = "Response JSON was truncated; recovered sections from partial output"
FALLBACK_NOTE = "Response was not valid JSON; returned raw output as a single section"


def parse_narrative(raw: str) -> ParsedNarrative:
    """Parse the narrative call output.

    Order: code fence interior, then the first balanced object span, then
    ``json.loads``, then the ``sections`` array. Truncated output recovers
    every complete section object before falling back.

    Args:
        raw: Full model output

    Returns:
        ParsedNarrative

    Raises:
        ResponseShapeError: If the output is JSON but not a section list
    """
    candidate = extract_fenced_block(raw)
    if candidate is None:
        candidate = raw
    span = find_json_object_span(candidate)
    if span is None:
        LOGGER.warning("No JSON object in narrative output, using fallback section")
        return _fallback(raw)

    try:
        payload = json.loads(span)
    except json.JSONDecodeError as e:
        recovered = _recover_truncated(span)
        if recovered:
            LOGGER.warning(
                "Narrative JSON truncated, recovered complete sections",
                extra={"recovered": len(recovered), "error": str(e)},
            )
            return ParsedNarrative(
                sections=recovered,
                analysis_summary=AnalysisSummary(
                    overall_sentiment="unknown",
                    data_quality_notes=[TRUNCATION_NOTE],
                ),
                recovered_truncated=True,
            )
        LOGGER.warning(f"Narrative output is not valid JSON: {e}")
        return _fallback(raw)

    return _narrative_from_payload(payload)


def _narrative_from_payload(payload: Any) -> ParsedNarrative:
    if not isinstance(payload, dict):
        raise ResponseShapeError(f"Expected a JSON object, got {type(payload).__name__}")

    raw_sections = payload.get("sections")
    if not isinstance(raw_sections, list):
        raise ResponseShapeError("Response JSON has no 'sections' array")
    if not raw_sections:
        raise ResponseShapeError("Response JSON has an empty 'sections' array")

    sections = [_validate_section(item, index) for index, item in enumerate(raw_sections)]

    summary_payload = payload.get("analysis_summary") or payload.get("analysisSummary")
    summary = AnalysisSummary(overall_sentiment="unknown")
    if isinstance(summary_payload, dict):
        try:
            summary = AnalysisSummary.model_validate(summary_payload)
        except ValidationError as e:
            LOGGER.warning(f"Ignoring malformed analysis_summary: {e}")

    return ParsedNarrative(sections=sections, analysis_summary=summary)


def _validate_section(item: Any, index: int) -> GeneratedSection:
    if not isinstance(item, dict):
        raise ResponseShapeError(f"Section {index} is not an object")
    try:
        section = GeneratedSection.model_validate(item)
    except ValidationError as e:
        raise ResponseShapeError(f"Section {index} has an invalid shape: {e}", e) from e
    if not section.id.strip() or not section.title.strip():
        raise ResponseShapeError(f"Section {index} is missing an id or title")
    return section


def _recover_truncated(text: str) -> List[GeneratedSection]:
    sections = []
    for obj in recover_array_objects(text, "sections"):
        try:
            sections.append(_validate_section(obj, len(sections)))
        except ResponseShapeError as e:
            LOGGER.debug(f"Skipping unrecoverable section: {e}")
    return sections


def _fallback(raw: str) -> ParsedNarrative:
    return ParsedNarrative(
        sections=[
            GeneratedSection(
                id=FALLBACK_SECTION_ID,
                title=FALLBACK_SECTION_TITLE,
                content=raw,
                included=True,
            )
        ],
        analysis_summary=AnalysisSummary(
            overall_sentiment="unknown",
            data_quality_notes=[FALLBACK_NOTE],
        ),
        used_fallback=True,
    )


def parse_section(raw: str, expected_id: Optional[str] = None) -> GeneratedSection:
    """Parse a single regenerated section object.

    Args:
        raw: Model output
        expected_id: Section being regenerated; the result is keyed to it

    Raises:
        ResponseParseError: If no JSON object can be read
        ResponseShapeError: If the object is not a section
    """
    payload = parse_json_safely(raw)
    if payload is None:
        raise ResponseParseError("Regenerated section output is not valid JSON")

    section = _validate_section(payload, 0)
    if expected_id and section.id != expected_id:
        LOGGER.warning(
            "Regenerated section id mismatch, keeping requested id",
            extra={"expected": expected_id, "received": section.id},
        )
        section = section.model_copy(update={"id": expected_id})
    return section


def parse_extraction(raw: str) -> ExtractedFinancialData:
    """Parse the extraction call output.

    Raises:
        ExtractionParseError: If the output is not an extraction object
    """
    payload = parse_json_safely(raw)
    if not isinstance(payload, dict):
        raise ExtractionParseError("Extraction output is not a JSON object")
    try:
        return ExtractedFinancialData.model_validate(payload)
    except ValidationError as e:
        raise ExtractionParseError(f"Extraction output does not match schema: {e}", e) from e


def sections_to_records(sections: List[GeneratedSection]) -> List[Dict[str, Any]]:
    return [section.to_record() for section in sections]
