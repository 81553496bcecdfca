"""Tests for the section catalog and template resolution."""

from report_engine.schemas.sections import Tier
from report_engine.services.sections.section_catalog import (
    ALL_SECTIONS,
    TIER_SECTIONS,
    get_section,
    get_sections_for_tier,
    resolve_sections,
    sections_available_at,
)


class TestCatalog:
    def test_every_tier_section_is_defined(self):
        for section_ids in TIER_SECTIONS.values():
            for section_id in section_ids:
                assert section_id in ALL_SECTIONS

    def test_foundational_sections_in_order(self):
        ids = [s.id for s in get_sections_for_tier(Tier.FOUNDATIONAL)]

        assert ids == ["executive_summary", "revenue_summary", "expense_summary", "asset_manager_outlook"]

    def test_unknown_tier_gets_foundational(self):
        assert get_sections_for_tier("gold") == get_sections_for_tier(Tier.FOUNDATIONAL)

    def test_get_section_returns_none_for_unknown_id(self):
        assert get_section("made_up") is None
        assert get_section("risk_matrix").title == "Risk Matrix"

    def test_available_sections_accumulate_across_tiers(self):
        professional = sections_available_at(Tier.PROFESSIONAL)

        assert "revenue_summary" in professional
        assert "rent_roll_insights" in professional
        assert "risk_matrix" not in professional
        assert len(professional) == len(set(professional))


class TestResolveSections:
    def test_no_template_uses_tier_defaults(self):
        assert resolve_sections(Tier.PROFESSIONAL, None) == get_sections_for_tier(Tier.PROFESSIONAL)
        assert resolve_sections(Tier.PROFESSIONAL, []) == get_sections_for_tier(Tier.PROFESSIONAL)

    def test_template_order_is_kept_and_filtered(self):
        sections = resolve_sections(
            Tier.FOUNDATIONAL,
            ["asset_manager_outlook", "risk_matrix", "executive_summary", "asset_manager_outlook"],
        )

        assert [s.id for s in sections] == ["asset_manager_outlook", "executive_summary"]

    def test_lower_tier_sections_remain_available(self):
        sections = resolve_sections(Tier.INSTITUTIONAL, ["revenue_summary", "budget_vs_actual"])

        assert [s.id for s in sections] == ["revenue_summary", "budget_vs_actual"]

    def test_fully_filtered_template_falls_back(self):
        sections = resolve_sections(Tier.FOUNDATIONAL, ["risk_matrix", "nope"])

        assert sections == get_sections_for_tier(Tier.FOUNDATIONAL)
