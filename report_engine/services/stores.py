"""Collaborator interfaces used by the pipeline.

The pipeline only talks to these abstractions; the SQLAlchemy repositories
implement them for production and the tests use in-memory fakes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from report_engine.schemas.report import GenerationState, ReportContext, ReportDocument, ReportRecord


class ReportStore(ABC):
    """Persistence of report records with versioned writes."""

    @abstractmethod
    async def get(self, report_id: str) -> Optional[ReportRecord]:
        ...

    @abstractmethod
    async def update(self, report_id: str, expected_version: int, changes: Dict[str, Any]) -> ReportRecord:
        """Apply ``changes`` only if the stored version equals ``expected_version``.

        The stored version is incremented on success.

        Raises:
            ReportNotFoundError: If the report does not exist
            StaleReportError: If the stored version has moved on
        """

    @abstractmethod
    async def find_completed(self, property_id: str, month: int, year: int) -> Optional[ReportRecord]:
        """Completed report for a property and period, if any."""

    @abstractmethod
    async def list_in_states(
        self, states: Sequence[GenerationState], entered_before: datetime
    ) -> List[ReportRecord]:
        """Reports whose current state is one of ``states`` and was entered before the cutoff."""


class DocumentStore(ABC):
    @abstractmethod
    async def list_documents(self, report: ReportRecord) -> List[ReportDocument]:
        """Already-parsed text of every file uploaded for a report."""


class SettingsStore(ABC):
    @abstractmethod
    async def get_context(self, report: ReportRecord) -> ReportContext:
        """Property identity, tier, brand colors and section template for a report."""
