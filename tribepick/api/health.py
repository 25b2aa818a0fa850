"""
Health check endpoints.

Liveness and readiness probes. Readiness covers both collaborators a
session needs to start: the database and the item catalog.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tribepick.api.sessions import get_catalog
from tribepick.db.database import get_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str | None = None
    catalog: str | None = None


async def _database_state(session: AsyncSession) -> str:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("readiness_database_unavailable", exc_info=True)
        return "disconnected"
    return "connected"


def _catalog_state() -> str:
    try:
        get_catalog()
    except (OSError, ValueError):
        logger.warning("readiness_catalog_unavailable", exc_info=True)
        return "unavailable"
    return "loaded"


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness probe; the process is up. No dependency checks."""
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    """Readiness probe; 503 unless sessions can both be stored and started."""
    database = await _database_state(session)
    catalog = _catalog_state()
    if (database, catalog) != ("connected", "loaded"):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database=database, catalog=catalog)
    return HealthResponse(status="ready", database=database, catalog=catalog)
