from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from report_engine.core.exceptions import ReportNotFoundError, StaleReportError
from report_engine.database.models import Report
from report_engine.repositories.base_repository import BaseRepository
from report_engine.schemas.report import GenerationState, ReportRecord
from report_engine.services.stores import ReportStore


class ReportRepository(BaseRepository[Report], ReportStore):
    """Repository for report records with versioned writes."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Report)

    async def get(self, report_id: str) -> Optional[ReportRecord]:
        report = await self.get_by_id(report_id)
        if report is None:
            return None
        return ReportRecord.model_validate(report)

    async def update(self, report_id: str, expected_version: int, changes: Dict[str, Any]) -> ReportRecord:
        """Compare-and-swap update on ``version``.

        The row is updated only while its version still equals
        ``expected_version``; the version is incremented in the same statement.
        """
        self._check_columns(changes)
        values = dict(changes)
        values["version"] = Report.version + 1
        values["updated_at"] = datetime.now(timezone.utc)

        query = (
            update(Report)
            .where(Report.id == report_id, Report.version == expected_version)
            .values(**values)
            .returning(Report)
        )
        try:
            result = await self.session.execute(query)
            report = result.scalar_one_or_none()
            if report is None:
                await self.session.rollback()
                exists = await self.session.scalar(select(Report.id).where(Report.id == report_id))
                if exists is None:
                    raise ReportNotFoundError(f"Report {report_id} not found")
                raise StaleReportError(report_id, expected_version)
            await self.session.commit()
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating report {report_id}: {str(e)}", exc_info=True)
            await self.session.rollback()
            raise

        return ReportRecord.model_validate(report)

    async def find_completed(self, property_id: str, month: int, year: int) -> Optional[ReportRecord]:
        query = (
            select(Report)
            .where(
                Report.property_id == property_id,
                Report.selected_month == month,
                Report.selected_year == year,
                Report.status == "complete",
            )
            .order_by(Report.generation_completed_at.desc().nulls_last())
            .limit(1)
        )
        result = await self.session.execute(query)
        report = result.scalar_one_or_none()
        return ReportRecord.model_validate(report) if report is not None else None

    async def list_in_states(
        self, states: Sequence[GenerationState], entered_before: datetime
    ) -> List[ReportRecord]:
        entered = func.coalesce(Report.generation_state_entered_at, Report.generation_started_at)
        query = select(Report).where(
            Report.generation_status.in_([state.value for state in states]),
            entered < entered_before,
        )
        result = await self.session.execute(query)
        return [ReportRecord.model_validate(report) for report in result.scalars().all()]
