"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from datetime import datetime
import logging

from app.database import get_db
from app.models.schemas import HealthCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of database and LLM backend, plus
        counts of open collaboration rooms and running import jobs
    """
    # Check database connection
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    # Check LLM backend
    llm_status = "ok"
    try:
        is_healthy = await request.app.state.llm_client.check_health()
        if not is_healthy:
            llm_status = "error"
    except Exception as e:
        logger.error("LLM health check failed: %s", e)
        llm_status = "error"

    # Overall status
    overall_status = "healthy" if db_status == "ok" and llm_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        llm=llm_status,
        active_rooms=len(request.app.state.room_registry.room_ids()),
        running_imports=request.app.state.import_manager.running_count(),
        timestamp=datetime.utcnow()
    )
