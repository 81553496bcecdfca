"""Tests for document text assembly and the T-12 month check."""

import pytest

from report_engine.schemas.report import ReportDocument
from report_engine.services.documents.document_loader import build_file_contents, validate_t12_month


class TestBuildFileContents:
    def test_typed_documents_are_keyed_by_type(self):
        contents = build_file_contents(
            [
                ReportDocument(file_type="t12", file_name="t12.xlsx", text="T12"),
                ReportDocument(file_type="budget", file_name="budget.csv", text="BUDGET"),
            ]
        )

        assert contents == {"t12": "T12", "budget": "BUDGET"}

    def test_repeated_typed_documents_are_concatenated(self):
        contents = build_file_contents(
            [
                ReportDocument(file_type="t12", file_name="a.xlsx", text="first"),
                ReportDocument(file_type="t12", file_name="b.xlsx", text="second"),
            ]
        )

        assert contents["t12"] == "first\n\nsecond"

    def test_additional_documents_are_all_kept(self):
        contents = build_file_contents(
            [
                ReportDocument(file_type="additional", file_name="notes.pdf", text="one"),
                ReportDocument(file_type="additional", file_name="notes.pdf", text="two"),
                ReportDocument(file_type="appraisal", file_name="", text="three"),
            ]
        )

        assert contents == {
            "additional:notes.pdf": "one",
            "additional:notes.pdf#2": "two",
            "appraisal": "three",
        }

    def test_empty_text_is_skipped(self):
        contents = build_file_contents([ReportDocument(file_type="rent_roll", file_name="rr.csv", text="   ")])

        assert contents == {}


class TestValidateT12Month:
    @pytest.mark.parametrize(
        "text",
        ["Account  Mar 2025  Feb 2025", "MARCH 2025 ACTUAL", "Period 3/2025", "Period 03/2025"],
    )
    def test_month_present(self, text):
        assert validate_t12_month(text, 3, 2025) is None

    def test_month_missing(self):
        message = validate_t12_month("Jan 2025  Feb 2025", 3, 2025)

        assert message == (
            "Your T-12 doesn't appear to include March 2025 data. "
            "Please upload a T-12 that covers this period."
        )

    def test_numeric_form_does_not_match_other_months(self):
        assert validate_t12_month("Period 13/2025", 3, 2025) is not None
