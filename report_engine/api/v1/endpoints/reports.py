"""Report generation API endpoints."""

from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from report_engine.core.database import get_async_session as get_session
from report_engine.core.exceptions import (
    AppError,
    APIClientError,
    ConfigurationError,
    GenerationInProgressError,
    ReportNotFoundError,
    SectionNotFoundError,
    StaleReportError,
)
from report_engine.core.llm_client import GenerationClient, create_generation_client_from_settings
from report_engine.repositories.report_file_repository import ReportFileRepository
from report_engine.repositories.report_repository import ReportRepository
from report_engine.repositories.settings_repository import SettingsRepository
from report_engine.schemas.api import (
    ApiResponse,
    GenerateReportRequest,
    RegenerateSectionRequest,
    ReportStatusResponse,
)
from report_engine.services.pipeline.report_pipeline import ReportPipeline
from report_engine.services.pipeline.section_regenerator import SectionRegenerator
from report_engine.services.pipeline.sse import SSE_HEADERS
from report_engine.utils.logging import get_logger
from report_engine.utils.responses import create_api_response, create_error_detail

LOGGER = get_logger(__name__)

router = APIRouter()


@lru_cache(maxsize=1)
def _generation_client() -> GenerationClient:
    return create_generation_client_from_settings()


async def get_generation_client() -> GenerationClient:
    try:
        return _generation_client()
    except ConfigurationError as e:
        LOGGER.error(f"Generation client unavailable: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Text generation is not configured",
        )


async def get_report_repository(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> ReportRepository:
    return ReportRepository(db_session)


async def get_report_pipeline(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    client: Annotated[GenerationClient, Depends(get_generation_client)],
) -> ReportPipeline:
    return ReportPipeline(
        report_store=ReportRepository(db_session),
        document_store=ReportFileRepository(db_session),
        settings_store=SettingsRepository(db_session),
        client=client,
    )


async def get_section_regenerator(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    client: Annotated[GenerationClient, Depends(get_generation_client)],
) -> SectionRegenerator:
    return SectionRegenerator(
        report_store=ReportRepository(db_session),
        settings_store=SettingsRepository(db_session),
        client=client,
    )


_ERROR_STATUS = [
    (ReportNotFoundError, status.HTTP_404_NOT_FOUND, "Report Not Found"),
    (SectionNotFoundError, status.HTTP_404_NOT_FOUND, "Section Not Found"),
    (GenerationInProgressError, status.HTTP_409_CONFLICT, "Generation In Progress"),
    (StaleReportError, status.HTTP_409_CONFLICT, "Report Modified Concurrently"),
    (APIClientError, status.HTTP_502_BAD_GATEWAY, "Text Generation Failed"),
]


def _http_error(error: AppError, request: Request) -> HTTPException:
    for error_type, status_code, title in _ERROR_STATUS:
        if isinstance(error, error_type):
            break
    else:
        status_code, title = status.HTTP_500_INTERNAL_SERVER_ERROR, "Report Operation Failed"

    error_detail = create_error_detail(title=title, status=status_code, detail=str(error), request=request)
    return HTTPException(status_code=status_code, detail=error_detail.model_dump(mode="json"))


@router.post(
    "/generate",
    response_model=ApiResponse,
    summary="Generate a report",
    description="Run extraction and narrative generation; stream the narrative when requested",
    operation_id="generate_report",
)
async def generate_report(
    request: Request,
    payload: GenerateReportRequest,
    pipeline: Annotated[ReportPipeline, Depends(get_report_pipeline)],
):
    """Generate a report as a JSON outcome or a server-sent event stream."""
    try:
        machine = await pipeline.begin(payload.report_id)
    except AppError as e:
        LOGGER.warning(f"Could not start generation: {e}", extra={"report_id": payload.report_id})
        raise _http_error(e, request)

    if payload.streaming:
        return StreamingResponse(
            pipeline.stream_run(machine),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    outcome = await pipeline.execute(machine)
    return create_api_response(
        data=outcome,
        message="Report generated" if outcome.success else (outcome.error or "Report generation failed"),
        status=outcome.success,
        request=request,
    )


@router.post(
    "/{report_id}/regenerate-section",
    response_model=ApiResponse,
    summary="Regenerate one report section",
    operation_id="regenerate_report_section",
)
async def regenerate_section(
    request: Request,
    report_id: str,
    payload: RegenerateSectionRequest,
    regenerator: Annotated[SectionRegenerator, Depends(get_section_regenerator)],
) -> ApiResponse:
    try:
        section = await regenerator.regenerate_section(report_id, payload.section_id, payload.user_notes)
    except AppError as e:
        LOGGER.warning(
            f"Section regeneration failed: {e}",
            extra={"report_id": report_id, "section_id": payload.section_id},
        )
        raise _http_error(e, request)

    return create_api_response(data={"section": section.to_record()}, message="Section regenerated", request=request)


@router.get(
    "/{report_id}/status",
    response_model=ApiResponse,
    summary="Get report generation status",
    operation_id="get_report_status",
)
async def get_report_status(
    request: Request,
    report_id: str,
    reports: Annotated[ReportRepository, Depends(get_report_repository)],
) -> ApiResponse:
    record = await reports.get(report_id)
    if record is None:
        raise _http_error(ReportNotFoundError(f"Report {report_id} not found"), request)

    data = ReportStatusResponse(
        report_id=record.id,
        status=record.status,
        generation_status=record.generation_status,
        generation_run_id=record.generation_run_id,
        generation_started_at=record.generation_started_at,
        generation_completed_at=record.generation_completed_at,
        generation_error=record.generation_error,
        version=record.version,
    )
    return create_api_response(data=data, message="Report status retrieved", request=request)
