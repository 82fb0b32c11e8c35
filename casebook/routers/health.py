"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging

from casebook.database import get_db
from casebook.dependencies.services import get_label_service
from casebook.models.schemas import HealthCheckResponse
from casebook.services.labels import LabelService
from casebook.utils.helpers import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse, response_model_by_alias=True)
async def health_check(
    db: AsyncSession = Depends(get_db),
    labels: LabelService = Depends(get_label_service),
):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of the database and the blob store
    """
    # Check database connection
    db_status = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    # Check blob store
    blob_status = "ok" if await labels.is_available() else "error"

    # Overall status
    overall_status = "healthy" if db_status == "ok" and blob_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        blob_store=blob_status,
        timestamp=utc_now(),
    )
