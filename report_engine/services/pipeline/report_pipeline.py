"""Report generation pipeline.

Two model calls run in sequence: a deterministic extraction of financial
figures from the uploaded documents, then a tiered narrative over the
validated figures. The run is driven by ``GenerationStateMachine``:

    idle -> extracting -> validating -> narrating -> parsing -> completed
                     \\____________\\____________\\_________\\-> error

``run`` makes the narrative call in one piece; ``stream_run`` relays it to
the caller as server-sent events and persists the parsed report before the
final ``done`` event.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from report_engine.core.config import GenerationSettings, settings
from report_engine.core.exceptions import AppError, DocumentValidationError
from report_engine.core.llm_client import GenerationClient
from report_engine.prompts.extraction_prompts import build_extraction_prompt
from report_engine.prompts.narrative_prompts import build_narrative_prompt
from report_engine.schemas.report import (
    FileType,
    GenerationOutcome,
    GenerationState,
    PromptPair,
    ReportContext,
    ReportRecord,
    StreamEvent,
    Usage,
    ValidationResult,
)
from report_engine.schemas.sections import AnalysisSummary, GeneratedSection, SectionDefinition
from report_engine.services.documents.document_loader import build_file_contents, validate_t12_month
from report_engine.services.parsing.response_parser import parse_extraction, parse_narrative, sections_to_records
from report_engine.services.pipeline.sse import format_sse
from report_engine.services.pipeline.state_machine import GenerationStateMachine, utcnow
from report_engine.services.sections.section_catalog import resolve_sections
from report_engine.services.sections.tier_policy import ModelConfig, get_model_config
from report_engine.services.stores import DocumentStore, ReportStore, SettingsStore
from report_engine.services.validation.data_validator import validate_extracted_data
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

NO_DOCUMENTS_ERROR = "No documents with readable text were uploaded for this report."


@dataclass
class PreparedNarrative:
    """Everything the narrative call and the final write need."""

    context: ReportContext
    sections: List[SectionDefinition]
    validation: ValidationResult
    prompt: PromptPair
    model_config: ModelConfig
    extraction_model: str
    extraction_usage: Usage
    files_used: List[str]
    raw_analysis: Dict[str, Any] = field(default_factory=dict)


def prior_period(month: int, year: int) -> tuple:
    if month == 1:
        return 12, year - 1
    return month - 1, year


def build_historical_context(prior: Optional[ReportRecord], month: int, year: int) -> Optional[str]:
    """Summarize the metrics of the prior month's completed report.

    Args:
        prior: Completed report for the prior month, if any
        month: Prior month
        year: Prior month's year

    Returns:
        Prompt text, or None when the prior report has no metrics
    """
    if prior is None:
        return None
    lines = [
        f"{metric.label}: {metric.value}"
        for section in prior.generated_sections
        for metric in section.metrics
    ]
    if not lines:
        return None
    return f"Prior month ({month}/{year}) key metrics:\n" + "\n".join(lines)


def apply_pre_skipped(
    sections: List[GeneratedSection],
    validation: ValidationResult,
    definitions: List[SectionDefinition],
) -> List[GeneratedSection]:
    """Force sections the validator ruled out to ``included=False``.

    A ruled-out section the model left out of its output is appended as a
    skipped placeholder so the report lists every requested section.
    """
    skipped = set(validation.sections_to_skip)
    result = []
    for section in sections:
        if section.id in skipped:
            section = section.model_copy(
                update={
                    "included": False,
                    "skip_reason": validation.skip_reasons.get(section.id) or section.skip_reason,
                }
            )
        result.append(section)

    present = {section.id for section in result}
    for definition in definitions:
        if definition.id in skipped and definition.id not in present:
            result.append(
                GeneratedSection(
                    id=definition.id,
                    title=definition.title,
                    included=False,
                    skip_reason=validation.skip_reasons.get(definition.id),
                )
            )
    return result


class ReportPipeline:
    """Runs report generation for one report at a time."""

    def __init__(
        self,
        report_store: ReportStore,
        document_store: DocumentStore,
        settings_store: SettingsStore,
        client: GenerationClient,
        generation_settings: Optional[GenerationSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.report_store = report_store
        self.document_store = document_store
        self.settings_store = settings_store
        self.client = client
        self.generation_settings = generation_settings or settings.generation
        self.clock = clock

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.generation_settings.generation_timeout_seconds)

    async def begin(self, report_id: str) -> GenerationStateMachine:
        """Claim the report for a new run.

        Raises:
            ReportNotFoundError: If the report does not exist
            GenerationInProgressError: If a live run already owns the report
            StaleReportError: If another caller claimed it first
        """
        return await GenerationStateMachine.start(
            self.report_store, report_id, self.stale_after, clock=self.clock
        )

    async def run(self, report_id: str) -> GenerationOutcome:
        """Generate a report without streaming."""
        machine = await self.begin(report_id)
        return await self.execute(machine)

    async def execute(self, machine: GenerationStateMachine) -> GenerationOutcome:
        try:
            prepared = await self._prepare(machine)
            config = prepared.model_config
            result = await self.client.generate(
                prepared.prompt.system,
                prepared.prompt.user,
                config.max_tokens,
                config.model,
                config.temperature,
            )
            return await self._finish(machine, prepared, result.content, result.usage)
        except AppError as e:
            LOGGER.error(
                f"Report generation failed: {e}",
                extra={"report_id": machine.report_id, "state": machine.state.value},
            )
            await machine.fail(str(e))
            return GenerationOutcome(
                report_id=machine.report_id,
                success=False,
                generation_status=GenerationState.ERROR,
                error=str(e),
            )
        except Exception as e:
            LOGGER.error(f"Unexpected error generating report {machine.report_id}: {e}", exc_info=True)
            await machine.fail(f"Unexpected error: {e}")
            raise

    async def stream(self, report_id: str) -> AsyncIterator[str]:
        machine = await self.begin(report_id)
        async for message in self.stream_run(machine):
            yield message

    async def stream_run(self, machine: GenerationStateMachine) -> AsyncIterator[str]:
        """Relay the narrative call as SSE messages.

        Text deltas are forwarded as they arrive, followed by one usage
        event. The parsed report is persisted before ``done`` is sent. Any
        failure ends the stream with a single error event.
        """
        try:
            prepared = await self._prepare(machine)
            config = prepared.model_config

            chunks: List[str] = []
            usage = Usage()
            async for event in self.client.generate_stream(
                prepared.prompt.system,
                prepared.prompt.user,
                config.max_tokens,
                config.model,
                config.temperature,
            ):
                if event.type == "text":
                    chunks.append(event.text or "")
                    yield format_sse(event)
                elif event.type == "usage":
                    usage = Usage(
                        input_tokens=event.input_tokens or 0,
                        output_tokens=event.output_tokens or 0,
                    )
                    yield format_sse(event)
                elif event.type == "error":
                    await machine.fail(event.message or "Generation stream failed")
                    yield format_sse(event)
                    return
                else:
                    break

            await self._finish(machine, prepared, "".join(chunks), usage)
            yield format_sse(StreamEvent(type="done"))

        except asyncio.CancelledError:
            LOGGER.info(
                f"Report stream cancelled for {machine.report_id}",
                extra={"run_id": machine.run_id, "state": machine.state.value},
            )
            raise
        except AppError as e:
            LOGGER.error(
                f"Report generation failed: {e}",
                extra={"report_id": machine.report_id, "state": machine.state.value},
            )
            await machine.fail(str(e))
            yield format_sse(StreamEvent(type="error", message=str(e)))
        except Exception as e:
            LOGGER.error(f"Error in report stream for {machine.report_id}: {e}", exc_info=True)
            await machine.fail(f"Unexpected error: {e}")
            yield format_sse(StreamEvent(type="error", message=f"Stream error: {e}"))

    async def _prepare(self, machine: GenerationStateMachine) -> PreparedNarrative:
        """Run extraction and validation and build the narrative prompt."""
        record = machine.record
        context = await self.settings_store.get_context(record)
        documents = await self.document_store.list_documents(record)
        file_contents = build_file_contents(documents)
        if not file_contents:
            raise DocumentValidationError(NO_DOCUMENTS_ERROR)

        t12_text = file_contents.get(FileType.T12.value)
        if t12_text and self.generation_settings.enforce_t12_month_check:
            message = validate_t12_month(t12_text, context.month, context.year)
            if message:
                raise DocumentValidationError(message)

        sections = resolve_sections(context.tier, context.custom_section_ids)

        # Call 1: extraction
        extraction_config = get_model_config(context.tier, "extraction")
        extraction_prompt = build_extraction_prompt(context, file_contents)
        extraction = await self.client.generate(
            extraction_prompt.system,
            extraction_prompt.user,
            extraction_config.max_tokens,
            extraction_config.model,
            extraction_config.temperature,
        )
        extracted = parse_extraction(extraction.content)

        await machine.transition(GenerationState.VALIDATING)
        validation = validate_extracted_data(extracted, sections)
        if not validation.valid:
            raise DocumentValidationError(f"Data validation failed: {'; '.join(validation.errors)}")

        month, year = prior_period(context.month, context.year)
        prior = await self.report_store.find_completed(record.property_id, month, year)
        historical_context = build_historical_context(prior, month, year)

        narrative_config = get_model_config(context.tier, "narrative")
        prompt = build_narrative_prompt(
            context,
            sections,
            validation,
            answers=record.questionnaire_answers,
            distribution_status=record.distribution_status,
            distribution_note=record.distribution_note,
            freeform=record.freeform_narrative,
            historical_context=historical_context,
        )

        raw_analysis = {
            "extraction": validation.corrected.model_dump(mode="json"),
            "validation_warnings": validation.warnings,
            "sections_skipped": validation.sections_to_skip,
            "extraction_model": extraction_config.model,
            "narrative_model": narrative_config.model,
            "extraction_tokens": {
                "inputTokens": extraction.usage.input_tokens,
                "outputTokens": extraction.usage.output_tokens,
            },
        }
        await machine.transition(GenerationState.NARRATING, {"raw_analysis": raw_analysis})

        LOGGER.info(
            "Prepared narrative call",
            extra={
                "report_id": record.id,
                "tier": context.tier.value,
                "sections": len(sections),
                "sections_skipped": len(validation.sections_to_skip),
                "has_history": historical_context is not None,
            },
        )

        return PreparedNarrative(
            context=context,
            sections=sections,
            validation=validation,
            prompt=prompt,
            model_config=narrative_config,
            extraction_model=extraction_config.model,
            extraction_usage=extraction.usage,
            files_used=sorted(file_contents),
            raw_analysis=raw_analysis,
        )

    async def _finish(
        self,
        machine: GenerationStateMachine,
        prepared: PreparedNarrative,
        content: str,
        usage: Usage,
    ) -> GenerationOutcome:
        """Parse the narrative output and persist the completed report."""
        await machine.transition(GenerationState.PARSING)
        parsed = parse_narrative(content)
        sections = apply_pre_skipped(parsed.sections, prepared.validation, prepared.sections)
        summary = parsed.analysis_summary or AnalysisSummary()

        raw_analysis = dict(prepared.raw_analysis)
        raw_analysis["analysis_summary"] = summary.model_dump(mode="json")
        raw_analysis["used_fallback"] = parsed.used_fallback

        await machine.transition(
            GenerationState.COMPLETED,
            {
                "status": "complete",
                "generated_sections": sections_to_records(sections),
                "generation_completed_at": self.clock(),
                "generation_error": None,
                "generation_config": {
                    "tier": prepared.context.tier.value,
                    "model": prepared.model_config.model,
                    "inputTokens": usage.input_tokens,
                    "outputTokens": usage.output_tokens,
                    "extractionModel": prepared.extraction_model,
                    "filesUsed": prepared.files_used,
                },
                "raw_analysis": raw_analysis,
            },
        )

        LOGGER.info(
            "Report generation completed",
            extra={
                "report_id": machine.report_id,
                "sections": len(sections),
                "used_fallback": parsed.used_fallback,
                "output_tokens": usage.output_tokens,
            },
        )

        return GenerationOutcome(
            report_id=machine.report_id,
            success=True,
            generation_status=GenerationState.COMPLETED,
            sections=sections,
            analysis_summary=summary,
            warnings=prepared.validation.warnings,
            usage=usage,
        )
