"""
Health API endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response, status

from . import schemas, service

router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/health/db", response_model=schemas.DatabaseStatusResponse)
async def database_health(request: Request, response: Response) -> schemas.DatabaseStatusResponse:
    """
    Database reachability plus catalog check. 503 when the database is unusable.
    """
    bootstrapper = getattr(request.app.state, "bootstrapper", None)
    result = await service.database_health(bootstrapper)
    if not result.connected or result.missing_tables:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result
