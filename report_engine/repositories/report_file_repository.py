from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from report_engine.database.models import ReportFile
from report_engine.repositories.base_repository import BaseRepository
from report_engine.schemas.report import ReportDocument, ReportRecord
from report_engine.services.stores import DocumentStore


class ReportFileRepository(BaseRepository[ReportFile], DocumentStore):
    """Repository for uploaded report files."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, ReportFile)

    async def list_documents(self, report: ReportRecord) -> List[ReportDocument]:
        """Parsed text of every file uploaded for a report, in upload order."""
        query = (
            select(ReportFile)
            .where(ReportFile.report_id == report.id)
            .order_by(ReportFile.uploaded_at.asc())
        )
        result = await self.session.execute(query)
        files = result.scalars().all()

        self.logger.debug(f"Loaded {len(files)} files for report {report.id}")
        return [
            ReportDocument(
                file_type=f.file_type,
                file_name=f.file_name or "",
                text=f.parsed_text or "",
            )
            for f in files
        ]
