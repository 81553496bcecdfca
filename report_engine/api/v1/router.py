from fastapi import APIRouter

from report_engine.api.v1.endpoints import health, reports

api_router = APIRouter()

api_router.include_router(reports.router, prefix="/reports", tags=["Reports"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])

__all__ = ["api_router"]
