"""Tests for the two-call report generation pipeline."""

import json
from datetime import timedelta
from typing import List

import pytest

from report_engine.core.config import GenerationSettings
from report_engine.core.exceptions import APIClientError, GenerationInProgressError, ReportNotFoundError
from report_engine.schemas.extraction import ExtractedFinancialData
from report_engine.schemas.report import GenerationState, ReportDocument, StreamEvent, ValidationResult
from report_engine.schemas.sections import GeneratedSection, SectionMetric, Tier
from report_engine.services.pipeline.report_pipeline import (
    NO_DOCUMENTS_ERROR,
    ReportPipeline,
    apply_pre_skipped,
    build_historical_context,
    prior_period,
)
from report_engine.services.sections.section_catalog import TIER_SECTIONS, get_sections_for_tier
from report_engine.services.validation.data_validator import T12_MISSING_ERROR

SUCCESS_STATES = ["extracting", "validating", "narrating", "parsing", "completed"]


@pytest.fixture
def generation_settings():
    return GenerationSettings(GENERATION_TIMEOUT_SECONDS=900, ENFORCE_T12_MONTH_CHECK=True)


@pytest.fixture
def make_pipeline(report_store, document_store, settings_store, generation_settings, now):
    def factory(client, store=None, clock=None, config=None):
        return ReportPipeline(
            store or report_store,
            document_store,
            settings_store,
            client,
            generation_settings=config or generation_settings,
            clock=clock or (lambda: now),
        )

    return factory


def _payloads(messages: List[str]) -> List[dict]:
    assert all(m.startswith("data: ") and m.endswith("\n\n") for m in messages)
    return [json.loads(m[len("data: "):]) for m in messages]


class TestHelpers:
    def test_prior_period_wraps_year(self):
        assert prior_period(1, 2025) == (12, 2024)
        assert prior_period(3, 2025) == (2, 2025)

    def test_historical_context_lists_metrics(self, report_record):
        prior = report_record.model_copy(
            update={
                "generated_sections": [
                    GeneratedSection(
                        id="executive_summary",
                        title="Executive Summary",
                        metrics=[
                            SectionMetric(label="NOI", value="$210,000"),
                            SectionMetric(label="Occupancy", value="95.1%"),
                        ],
                    )
                ]
            }
        )

        assert build_historical_context(prior, 2, 2025) == (
            "Prior month (2/2025) key metrics:\nNOI: $210,000\nOccupancy: 95.1%"
        )

    def test_historical_context_without_metrics(self, report_record):
        assert build_historical_context(None, 2, 2025) is None
        assert build_historical_context(report_record, 2, 2025) is None

    def test_apply_pre_skipped_forces_and_appends(self, make_extraction_payload):
        validation = ValidationResult(
            valid=True,
            corrected=ExtractedFinancialData.model_validate(make_extraction_payload()),
            sections_to_skip=["rent_roll_insights", "budget_vs_actual"],
            skip_reasons={"rent_roll_insights": "no rent roll", "budget_vs_actual": "no budget"},
        )
        generated = [
            GeneratedSection(id="executive_summary", title="Executive Summary", content="x"),
            GeneratedSection(id="rent_roll_insights", title="Rent Roll Insights", content="made up"),
        ]
        definitions = get_sections_for_tier(Tier.PROFESSIONAL) + get_sections_for_tier(Tier.INSTITUTIONAL)

        result = apply_pre_skipped(generated, validation, definitions)

        assert [s.id for s in result] == ["executive_summary", "rent_roll_insights", "budget_vs_actual"]
        assert result[0].included is True
        assert (result[1].included, result[1].skip_reason) == (False, "no rent roll")
        assert (result[2].included, result[2].skip_reason, result[2].title) == (False, "no budget", "Budget vs. Actual")


class TestRun:
    @pytest.mark.asyncio
    async def test_success(self, make_pipeline, make_client, report_store, extraction_payload, narrative_output):
        client = make_client([json.dumps(extraction_payload), narrative_output])

        outcome = await make_pipeline(client).run("report-1")

        stored = report_store.records["report-1"]
        assert outcome.success is True
        assert outcome.generation_status == GenerationState.COMPLETED
        assert report_store.states_written() == SUCCESS_STATES
        assert stored.status == "complete"
        assert [s.id for s in stored.generated_sections] == TIER_SECTIONS[Tier.FOUNDATIONAL]
        assert stored.generation_completed_at is not None
        assert stored.generation_error is None
        assert stored.generation_config["tier"] == "foundational"
        assert stored.generation_config["filesUsed"] == ["rent_roll", "t12"]
        assert (stored.generation_config["inputTokens"], stored.generation_config["outputTokens"]) == (1200, 300)
        assert stored.raw_analysis["extraction_tokens"] == {"inputTokens": 1200, "outputTokens": 300}
        assert stored.raw_analysis["used_fallback"] is False
        assert stored.raw_analysis["analysis_summary"]["overall_sentiment"] == "neutral"

    @pytest.mark.asyncio
    async def test_calls_use_tier_budgets(self, make_pipeline, make_client, extraction_payload, narrative_output):
        client = make_client([json.dumps(extraction_payload), narrative_output])

        await make_pipeline(client).run("report-1")

        extraction_call, narrative_call = client.calls
        assert (extraction_call["max_tokens"], extraction_call["temperature"]) == (2500, 0.0)
        assert (narrative_call["max_tokens"], narrative_call["temperature"]) == (8000, 0.15)
        assert "<t12_operating_statement>" in extraction_call["user"]
        assert "<extracted_data>" in narrative_call["user"]
        assert (
            '<note category="executive_summary_notes">Executive Summary: Roof replacement finished on schedule.</note>'
            in narrative_call["user"]
        )

    @pytest.mark.asyncio
    async def test_validated_data_is_sent_to_narrative(self, make_pipeline, make_client, make_extraction_payload,
                                                       narrative_output, report_store):
        payload = make_extraction_payload()
        payload["noi"]["current"] = 150000
        client = make_client([json.dumps(payload), narrative_output])

        outcome = await make_pipeline(client).run("report-1")

        narrative_user = client.calls[1]["user"]
        extracted = json.loads(narrative_user.split("<extracted_data>\n")[1].split("\n</extracted_data>")[0])
        assert extracted["noi"]["current"] == 200000
        assert "Auto-corrected NOI to $200,000." in outcome.warnings
        assert "Auto-corrected NOI to $200,000." in report_store.records["report-1"].raw_analysis["validation_warnings"]

    @pytest.mark.asyncio
    async def test_missing_t12_stops_before_narrative(self, make_pipeline, make_client, make_extraction_payload,
                                                      report_store):
        client = make_client([json.dumps(make_extraction_payload(t12_found=False))])

        outcome = await make_pipeline(client).run("report-1")

        stored = report_store.records["report-1"]
        assert outcome.success is False
        assert T12_MISSING_ERROR in outcome.error
        assert len(client.calls) == 1
        assert report_store.states_written() == ["extracting", "validating", "error"]
        assert stored.generation_status == GenerationState.ERROR
        assert stored.generation_error.startswith("Data validation failed:")
        assert stored.status == "draft"

    @pytest.mark.asyncio
    async def test_t12_month_mismatch_fails_without_model_calls(self, make_pipeline, make_client, report_store,
                                                               document_store):
        document_store.documents = [ReportDocument(file_type="t12", file_name="t12.xlsx", text="Jan 2025  Feb 2025")]
        client = make_client([])

        outcome = await make_pipeline(client).run("report-1")

        assert outcome.success is False
        assert "doesn't appear to include March 2025" in outcome.error
        assert client.calls == []
        assert report_store.states_written() == ["extracting", "error"]

    @pytest.mark.asyncio
    async def test_month_check_can_be_disabled(self, make_pipeline, make_client, document_store,
                                               extraction_payload, narrative_output):
        document_store.documents = [ReportDocument(file_type="t12", file_name="t12.xlsx", text="Jan 2025  Feb 2025")]
        client = make_client([json.dumps(extraction_payload), narrative_output])
        config = GenerationSettings(ENFORCE_T12_MONTH_CHECK=False)

        outcome = await make_pipeline(client, config=config).run("report-1")

        assert outcome.success is True

    @pytest.mark.asyncio
    async def test_no_documents(self, make_pipeline, make_client, document_store, report_store):
        document_store.documents = [ReportDocument(file_type="t12", file_name="empty.xlsx", text="")]
        client = make_client([])

        outcome = await make_pipeline(client).run("report-1")

        assert outcome.error == NO_DOCUMENTS_ERROR
        assert client.calls == []
        assert report_store.records["report-1"].generation_error == NO_DOCUMENTS_ERROR

    @pytest.mark.asyncio
    async def test_unparseable_extraction_fails(self, make_pipeline, make_client, report_store):
        client = make_client(["I could not find any financial data."])

        outcome = await make_pipeline(client).run("report-1")

        assert outcome.success is False
        assert report_store.states_written() == ["extracting", "error"]

    @pytest.mark.asyncio
    async def test_narrative_api_failure(self, make_pipeline, make_client, report_store, extraction_payload):
        client = make_client([json.dumps(extraction_payload), APIClientError("API HTTP Error 529 after retries")])

        outcome = await make_pipeline(client).run("report-1")

        stored = report_store.records["report-1"]
        assert outcome.error == "API HTTP Error 529 after retries"
        assert report_store.states_written() == ["extracting", "validating", "narrating", "error"]
        assert stored.generation_error == "API HTTP Error 529 after retries"
        assert stored.raw_analysis["sections_skipped"] == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded_and_raised(self, make_pipeline, make_client, report_store,
                                                           extraction_payload):
        client = make_client([json.dumps(extraction_payload), RuntimeError("socket closed")])

        with pytest.raises(RuntimeError):
            await make_pipeline(client).run("report-1")

        stored = report_store.records["report-1"]
        assert stored.generation_status == GenerationState.ERROR
        assert stored.generation_error == "Unexpected error: socket closed"

    @pytest.mark.asyncio
    async def test_plain_text_narrative_uses_fallback(self, make_pipeline, make_client, report_store,
                                                      extraction_payload):
        client = make_client([json.dumps(extraction_payload), "Maple Court had a steady month."])

        outcome = await make_pipeline(client).run("report-1")

        stored = report_store.records["report-1"]
        assert outcome.success is True
        assert [(s.id, s.title) for s in stored.generated_sections] == [("executive_summary", "Report")]
        assert stored.raw_analysis["used_fallback"] is True

    @pytest.mark.asyncio
    async def test_wrong_shape_narrative_fails_run(self, make_pipeline, make_client, report_store,
                                                   extraction_payload):
        client = make_client([json.dumps(extraction_payload), json.dumps({"report": "no sections here"})])

        outcome = await make_pipeline(client).run("report-1")

        stored = report_store.records["report-1"]
        assert outcome.success is False
        assert outcome.generation_status == GenerationState.ERROR
        assert report_store.states_written() == ["extracting", "validating", "narrating", "parsing", "error"]
        assert stored.generation_status == GenerationState.ERROR
        assert "sections" in stored.generation_error
        assert stored.status != "complete"

    @pytest.mark.asyncio
    async def test_pre_skipped_sections_are_forced(self, make_pipeline, make_client, settings_store, report_store,
                                                   make_extraction_payload, make_narrative_output):
        settings_store.context = settings_store.context.model_copy(update={"tier": Tier.PROFESSIONAL})
        professional_ids = TIER_SECTIONS[Tier.PROFESSIONAL]
        client = make_client(
            [json.dumps(make_extraction_payload(rent_roll_found=False)), make_narrative_output(professional_ids)]
        )

        await make_pipeline(client).run("report-1")

        stored = report_store.records["report-1"]
        rent_roll = stored.find_section("rent_roll_insights")
        assert '- rent_roll_insights: "Rent Roll Insights"' in client.calls[1]["user"]
        assert rent_roll.included is False
        assert rent_roll.skip_reason.startswith("Rent roll not uploaded")
        assert stored.raw_analysis["sections_skipped"] == ["rent_roll_insights"]
        assert len(stored.generated_sections) == len(professional_ids)

    @pytest.mark.asyncio
    async def test_prior_month_report_feeds_historical_context(self, make_pipeline, make_client, make_report_store,
                                                               report_record, extraction_payload, narrative_output):
        prior = report_record.model_copy(
            update={
                "id": "report-0",
                "selected_month": 2,
                "status": "complete",
                "generated_sections": [
                    GeneratedSection(
                        id="executive_summary",
                        title="Executive Summary",
                        metrics=[SectionMetric(label="NOI", value="$210,000")],
                    )
                ],
            }
        )
        store = make_report_store([report_record, prior])
        client = make_client([json.dumps(extraction_payload), narrative_output])

        await make_pipeline(client, store=store).run("report-1")

        assert "Prior month (2/2025) key metrics:\nNOI: $210,000" in client.calls[1]["system"]

    @pytest.mark.asyncio
    async def test_missing_report(self, make_pipeline, make_client):
        with pytest.raises(ReportNotFoundError):
            await make_pipeline(make_client([])).run("missing")

    @pytest.mark.asyncio
    async def test_live_run_blocks_new_run(self, make_pipeline, make_client, make_report_store, generating_record,
                                           now):
        store = make_report_store([generating_record])
        client = make_client([])

        with pytest.raises(GenerationInProgressError):
            await make_pipeline(client, store=store, clock=lambda: now + timedelta(minutes=2)).run("report-1")
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_stale_run_is_superseded(self, make_pipeline, make_client, make_report_store, generating_record,
                                           now, extraction_payload, narrative_output):
        store = make_report_store([generating_record])
        client = make_client([json.dumps(extraction_payload), narrative_output])

        outcome = await make_pipeline(client, store=store, clock=lambda: now + timedelta(hours=1)).run("report-1")

        assert outcome.success is True
        assert store.records["report-1"].generation_run_id != "run-old"


class TestStream:
    def _stream_events(self, text: str) -> List[StreamEvent]:
        middle = len(text) // 2
        return [
            StreamEvent(type="text", text=text[:middle]),
            StreamEvent(type="text", text=text[middle:]),
            StreamEvent(type="usage", input_tokens=4000, output_tokens=900),
            StreamEvent(type="done"),
        ]

    @pytest.mark.asyncio
    async def test_stream_relays_text_then_persists_before_done(self, make_pipeline, make_client, report_store,
                                                                extraction_payload, narrative_output):
        client = make_client([json.dumps(extraction_payload)], stream_events=self._stream_events(narrative_output))
        pipeline = make_pipeline(client)

        messages = []
        async for message in pipeline.stream("report-1"):
            if '"done"' in message:
                assert report_store.records["report-1"].generation_status == GenerationState.COMPLETED
            messages.append(message)

        payloads = _payloads(messages)
        assert [p["type"] for p in payloads] == ["text", "text", "usage", "done"]
        assert "".join(p["text"] for p in payloads if p["type"] == "text") == narrative_output
        assert payloads[2] == {"type": "usage", "inputTokens": 4000, "outputTokens": 900}

        stored = report_store.records["report-1"]
        assert report_store.states_written() == SUCCESS_STATES
        assert stored.generation_config["outputTokens"] == 900
        assert len(stored.generated_sections) == 4

    @pytest.mark.asyncio
    async def test_stream_error_event_fails_run(self, make_pipeline, make_client, report_store, extraction_payload):
        events = [StreamEvent(type="text", text='{"sections": ['), StreamEvent(type="error", message="Overloaded")]
        client = make_client([json.dumps(extraction_payload)], stream_events=events)

        payloads = _payloads([m async for m in make_pipeline(client).stream("report-1")])

        assert [p["type"] for p in payloads] == ["text", "error"]
        assert payloads[1]["message"] == "Overloaded"
        stored = report_store.records["report-1"]
        assert stored.generation_status == GenerationState.ERROR
        assert stored.generation_error == "Overloaded"

    @pytest.mark.asyncio
    async def test_wrong_shape_stream_ends_with_one_error_event(self, make_pipeline, make_client, report_store,
                                                                extraction_payload):
        body = json.dumps({"sections": "not a list"})
        client = make_client([json.dumps(extraction_payload)], stream_events=self._stream_events(body))

        payloads = _payloads([m async for m in make_pipeline(client).stream("report-1")])

        types = [p["type"] for p in payloads]
        assert types == ["text", "text", "usage", "error"]
        assert types.count("error") == 1
        assert "done" not in types
        stored = report_store.records["report-1"]
        assert stored.generation_status == GenerationState.ERROR
        assert stored.generation_error == payloads[-1]["message"]

    @pytest.mark.asyncio
    async def test_preparation_failure_is_one_error_event(self, make_pipeline, make_client, report_store,
                                                          make_extraction_payload):
        client = make_client([json.dumps(make_extraction_payload(t12_found=False))])

        payloads = _payloads([m async for m in make_pipeline(client).stream("report-1")])

        assert len(payloads) == 1
        assert payloads[0]["type"] == "error"
        assert T12_MISSING_ERROR in payloads[0]["message"]
        assert report_store.records["report-1"].generation_status == GenerationState.ERROR

    @pytest.mark.asyncio
    async def test_superseded_run_does_not_touch_report(self, make_pipeline, make_client, report_store,
                                                        extraction_payload):
        client = make_client([json.dumps(extraction_payload)])
        pipeline = make_pipeline(client)
        machine = await pipeline.begin("report-1")
        current = report_store.records["report-1"]
        await report_store.update("report-1", current.version, {"generation_run_id": "run-new"})

        payloads = _payloads([m async for m in pipeline.stream_run(machine)])

        stored = report_store.records["report-1"]
        assert [p["type"] for p in payloads] == ["error"]
        assert stored.generation_run_id == "run-new"
        assert stored.generation_status == GenerationState.EXTRACTING
        assert stored.generation_error is None
