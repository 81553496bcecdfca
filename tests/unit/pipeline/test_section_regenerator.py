"""Tests for single-section regeneration."""

import json

import pytest

from report_engine.core.config import GenerationSettings
from report_engine.core.exceptions import APIClientError, ReportNotFoundError, SectionNotFoundError, StaleReportError
from report_engine.schemas.sections import GeneratedSection
from report_engine.services.pipeline.section_regenerator import SectionRegenerator


@pytest.fixture
def completed_record(report_record):
    return report_record.model_copy(
        update={
            "status": "complete",
            "version": 7,
            "generated_sections": [
                GeneratedSection(id="executive_summary", title="Executive Summary", content="Old summary."),
                GeneratedSection(id="revenue_summary", title="Revenue Summary", content="Old revenue."),
                GeneratedSection(id="custom_block", title="Custom", content="Not in the catalog."),
            ],
        }
    )


@pytest.fixture
def store(make_report_store, completed_record):
    return make_report_store([completed_record])


@pytest.fixture
def make_regenerator(store, settings_store):
    def factory(client):
        return SectionRegenerator(store, settings_store, client, GenerationSettings(REGENERATION_MAX_TOKENS=4000))

    return factory


def _section_json(section_id="revenue_summary", content="New revenue."):
    return json.dumps({"id": section_id, "title": "Revenue Summary", "content": content, "included": True})


class TestRegenerateSection:
    @pytest.mark.asyncio
    async def test_splices_section_in_place(self, make_regenerator, make_client, store):
        client = make_client([_section_json()])

        section = await make_regenerator(client).regenerate_section("report-1", "revenue_summary", "Add concessions")

        stored = store.records["report-1"]
        assert section.content == "New revenue."
        assert [s.id for s in stored.generated_sections] == ["executive_summary", "revenue_summary", "custom_block"]
        assert stored.find_section("revenue_summary").content == "New revenue."
        assert stored.find_section("executive_summary").content == "Old summary."
        assert stored.version == 8
        assert store.updates == [{"generated_sections": [s.to_record() for s in stored.generated_sections]}]

    @pytest.mark.asyncio
    async def test_call_is_scoped_to_one_section(self, make_regenerator, make_client):
        client = make_client([_section_json()])

        await make_regenerator(client).regenerate_section("report-1", "revenue_summary", "")

        call = client.calls[0]
        assert call["max_tokens"] == 4000
        assert "<current_content>\nOld revenue.\n</current_content>" in call["user"]
        assert "<user_feedback>\nImprove this section\n</user_feedback>" in call["user"]
        assert "Old summary." not in call["user"]

    @pytest.mark.asyncio
    async def test_mismatched_id_is_kept_under_requested_id(self, make_regenerator, make_client, store):
        client = make_client([_section_json(section_id="expense_summary")])

        section = await make_regenerator(client).regenerate_section("report-1", "revenue_summary")

        assert section.id == "revenue_summary"
        assert [s.id for s in store.records["report-1"].generated_sections] == [
            "executive_summary",
            "revenue_summary",
            "custom_block",
        ]

    @pytest.mark.asyncio
    async def test_unparseable_output_keeps_existing_section(self, make_regenerator, make_client, store):
        client = make_client(["I'm sorry, I can't help with that."])

        section = await make_regenerator(client).regenerate_section("report-1", "revenue_summary")

        assert section.content == "Old revenue."
        assert store.updates == []
        assert store.records["report-1"].version == 7

    @pytest.mark.asyncio
    async def test_missing_report(self, make_regenerator, make_client):
        with pytest.raises(ReportNotFoundError):
            await make_regenerator(make_client([])).regenerate_section("missing", "revenue_summary")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("section_id", ["noi_performance", "custom_block"])
    async def test_unknown_section(self, make_regenerator, make_client, section_id):
        client = make_client([])

        with pytest.raises(SectionNotFoundError):
            await make_regenerator(client).regenerate_section("report-1", section_id)
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_change_is_rejected(self, make_regenerator, make_client, store):
        client = make_client([_section_json()])
        regenerator = make_regenerator(client)
        original_generate = client.generate

        async def generate_while_report_changes(*args, **kwargs):
            current = store.records["report-1"]
            await store.update("report-1", current.version, {"distribution_note": "edited elsewhere"})
            return await original_generate(*args, **kwargs)

        client.generate = generate_while_report_changes

        with pytest.raises(StaleReportError):
            await regenerator.regenerate_section("report-1", "revenue_summary")
        assert store.records["report-1"].find_section("revenue_summary").content == "Old revenue."

    @pytest.mark.asyncio
    async def test_api_failure_propagates(self, make_regenerator, make_client, store):
        client = make_client([APIClientError("API Client Error 401: invalid key")])

        with pytest.raises(APIClientError):
            await make_regenerator(client).regenerate_section("report-1", "revenue_summary")
        assert store.updates == []
