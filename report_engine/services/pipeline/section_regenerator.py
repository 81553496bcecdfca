"""Single-section regeneration.

Only the one section's guidance, its current content and the user's notes are
sent to the model. The result is spliced into the stored section list by id
with a versioned write, so two regenerations racing on the same report cannot
silently overwrite each other.
"""

from typing import Optional

from report_engine.core.config import GenerationSettings, settings
from report_engine.core.exceptions import (
    ReportNotFoundError,
    ResponseParseError,
    SectionNotFoundError,
)
from report_engine.core.llm_client import GenerationClient
from report_engine.prompts.regeneration_prompts import build_section_regeneration_prompt
from report_engine.schemas.sections import GeneratedSection
from report_engine.services.parsing.response_parser import parse_section
from report_engine.services.sections.section_catalog import get_section
from report_engine.services.sections.tier_policy import get_model_config
from report_engine.services.stores import ReportStore, SettingsStore
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


class SectionRegenerator:
    def __init__(
        self,
        report_store: ReportStore,
        settings_store: SettingsStore,
        client: GenerationClient,
        generation_settings: Optional[GenerationSettings] = None,
    ):
        self.report_store = report_store
        self.settings_store = settings_store
        self.client = client
        self.generation_settings = generation_settings or settings.generation

    async def regenerate_section(self, report_id: str, section_id: str, user_notes: str = "") -> GeneratedSection:
        """Regenerate one section and store it in place.

        Args:
            report_id: Report to update
            section_id: Section to regenerate
            user_notes: Feedback for the model; blank notes ask for a general improvement

        Returns:
            The new section, or the existing one unchanged if the model
            output could not be parsed

        Raises:
            ReportNotFoundError: If the report does not exist
            SectionNotFoundError: If the report has no such section
            StaleReportError: If the report changed while the section was regenerating
            APIClientError: If the generation call fails
        """
        record = await self.report_store.get(report_id)
        if record is None:
            raise ReportNotFoundError(f"Report {report_id} not found")

        current = record.find_section(section_id)
        if current is None:
            raise SectionNotFoundError(f"Section {section_id} not found in report {report_id}")

        section_def = get_section(section_id)
        if section_def is None:
            raise SectionNotFoundError(f"Unknown section: {section_id}")

        context = await self.settings_store.get_context(record)
        prompt = build_section_regeneration_prompt(context, section_def, current, user_notes)
        config = get_model_config(context.tier, "narrative")

        result = await self.client.generate(
            prompt.system,
            prompt.user,
            self.generation_settings.regeneration_max_tokens,
            config.model,
            config.temperature,
        )

        try:
            regenerated = parse_section(result.content, expected_id=section_id)
        except ResponseParseError as e:
            LOGGER.warning(
                f"Could not parse regenerated section, keeping existing content: {e}",
                extra={"report_id": report_id, "section_id": section_id},
            )
            return current

        sections = [
            regenerated if section.id == section_id else section
            for section in record.generated_sections
        ]
        await self.report_store.update(
            report_id,
            record.version,
            {"generated_sections": [section.to_record() for section in sections]},
        )

        LOGGER.info(
            "Section regenerated",
            extra={
                "report_id": report_id,
                "section_id": section_id,
                "output_tokens": result.usage.output_tokens,
            },
        )
        return regenerated
