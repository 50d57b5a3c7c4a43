"""Public health check."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loadflow.api.v1.deps import get_db
from loadflow.core.config import settings
from loadflow.realtime.broker import broker

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    db: bool
    event_subscribers: int
    version: str


@router.get("/health", response_model=HealthResponse)
async def health(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """DB connectivity and number of live event-stream subscribers."""
    db_ok = True
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Health check: DB unreachable: %s", exc)
        db_ok = False
    return HealthResponse(
        db=db_ok, event_subscribers=broker.subscriber_count, version=settings.VERSION
    )
