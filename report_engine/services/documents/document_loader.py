"""Assembles uploaded document text for the extraction prompt."""

import re
from typing import Dict, Iterable, Optional

from report_engine.schemas.report import MONTH_NAMES, FileType, ReportDocument
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

_TYPED = {FileType.T12.value, FileType.RENT_ROLL.value, FileType.LEASING_ACTIVITY.value, FileType.BUDGET.value}


def _additional_key(document: ReportDocument, taken: Dict[str, str]) -> str:
    base = document.file_type if document.file_type != FileType.ADDITIONAL.value else "additional"
    if document.file_name:
        base = f"{base}:{document.file_name}"
    key = base
    suffix = 2
    while key in taken:
        key = f"{base}#{suffix}"
        suffix += 1
    return key


def build_file_contents(documents: Iterable[ReportDocument]) -> Dict[str, str]:
    """Map file type to document text.

    Several documents of the same typed kind are concatenated in upload
    order. Untyped documents are keyed by type and file name so none is lost.
    Documents with no text are skipped.
    """
    contents: Dict[str, str] = {}
    for document in documents:
        text = (document.text or "").strip()
        if not text:
            LOGGER.warning(
                "Skipping document with no text",
                extra={"file_type": document.file_type, "file_name": document.file_name},
            )
            continue

        if document.file_type in _TYPED:
            existing = contents.get(document.file_type)
            contents[document.file_type] = f"{existing}\n\n{text}" if existing else text
        else:
            contents[_additional_key(document, contents)] = text

    LOGGER.info("Assembled document text", extra={"file_types": sorted(contents)})
    return contents


def validate_t12_month(t12_text: str, month: int, year: int) -> Optional[str]:
    """Check that a T-12 mentions the report month.

    Accepts the month's abbreviation or full name as a word, or ``M/YYYY``
    or ``MM/YYYY``.

    Returns:
        None when the month is present, otherwise a message for the user
    """
    full = MONTH_NAMES[month - 1]
    abbr = full[:3]
    lower = t12_text.lower()

    if re.search(rf"\b{abbr.lower()}", lower):
        return None
    if re.search(rf"(?<!\d){month}/{year}\b", lower) or re.search(rf"\b{month:02d}/{year}\b", lower):
        return None

    return (
        f"Your T-12 doesn't appear to include {full} {year} data. "
        "Please upload a T-12 that covers this period."
    )
