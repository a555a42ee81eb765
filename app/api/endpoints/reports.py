import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import schemas
from app.core.config import settings
from app.core.database import get_db
from app.ai_feature import fallback
from app.ai_feature.conversation import SessionRegistry
from app.ai_feature.errors import SnapshotUnavailable
from app.ai_feature.pipeline import Orchestrator
from app.ai_feature.service import get_orchestrator, get_session_id, get_session_registry
from app.ai_feature.snapshot import DatabaseSnapshotProvider

router = APIRouter(prefix="/api", tags=["Reports"])

db_dep = Annotated[AsyncSession, Depends(get_db)]


@router.post("/generate-report", response_model=schemas.ReportResponse)
async def generate_report(
    orchestrator: Annotated[Orchestrator, Depends(get_orchestrator)],
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
    session_id: Annotated[str, Depends(get_session_id)],
):
    """
    Run the assistant pipeline with the fixed "full report" query.
    Without a model configured a static report with row counts is returned.
    An unexpected crash still answers 200 with an apologetic report.
    """
    session = registry.get_or_create(session_id)
    try:
        report = await orchestrator.generate_report(session)
    except Exception as error:
        logging.error(f"Report generation crashed for session {session_id}: {error}")
        report = fallback.GENERATION_APOLOGY
    return schemas.ReportResponse(report=report, generated_at=datetime.now(timezone.utc))


@router.get("/stats", response_model=schemas.StatsResponse)
async def stats(db: db_dep):
    """Row counts of the two tables the assistant can analyze."""
    provider = DatabaseSnapshotProvider(db, row_limit=settings.SNAPSHOT_ROW_LIMIT)
    try:
        counts = await provider.counts()
    except SnapshotUnavailable as error:
        logging.error(f"Failed to fetch stats: {error}")
        raise HTTPException(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch stats"
        )
    return schemas.StatsResponse(
        patients=counts.get("patients", 0), inventory=counts.get("inventory", 0)
    )
