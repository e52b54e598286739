"""
Health check endpoint.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.config import settings
from asset_admin.core.database import get_db
from asset_admin.services.storage import LocalStorage, get_storage

router = APIRouter()


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """Report database connectivity and whether the storage root exists."""
    try:
        await db.execute(text("SELECT 1"))
        database = "healthy"
    except Exception as e:
        database = f"unhealthy: {e}"

    storage_ok = storage.root.is_dir()
    return {
        "status": "healthy" if database == "healthy" and storage_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.APP_NAME,
        "database": database,
        "storage": "healthy" if storage_ok else "missing storage root",
    }
