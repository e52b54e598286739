"""
Scheduled storage maintenance: nightly integrity validation and a weekly
unused file report.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from asset_admin.core.celery import celery_app
from asset_admin.core.config import settings
from asset_admin.services.integrity import IntegrityValidator, RepairOptions
from asset_admin.services.repository import AssetQuery
from asset_admin.services.storage import LocalStorage
from asset_admin.services.unused import GracePeriod, UnusedFileFinder

logger = logging.getLogger(__name__)


async def run_integrity_validation(
    session_factory: async_sessionmaker,
    storage: LocalStorage,
    auto_repair: bool = False
) -> Dict[str, Any]:
    """Validate every stored file and return the report summary."""
    async with session_factory() as session:
        validator = IntegrityValidator(session, storage)
        report = await validator.validate(
            AssetQuery(),
            repair=RepairOptions(auto_repair=auto_repair),
            batch_size=settings.MAX_BATCH_SIZE,
            max_processing_seconds=settings.MAX_PROCESSING_SECONDS,
        )
    logger.info(
        f"Integrity validation checked {report.summary['files_checked']} files, "
        f"{report.summary['problematic_files']} with issues"
    )
    return {
        **report.summary,
        "failed": report.failed,
        "warnings": report.warnings,
    }


async def run_unused_report(
    session_factory: async_sessionmaker,
    storage: LocalStorage,
    grace_period_days: Optional[int] = None
) -> Dict[str, Any]:
    """Summarize unused files without touching them."""
    async with session_factory() as session:
        finder = UnusedFileFinder(session, storage)
        result = await finder.report(GracePeriod(days=grace_period_days), limit=settings.UNUSED_WARNING_COUNT)
    logger.info(f"Unused file report: {result.total_candidates} files")
    for warning in result.warnings:
        logger.warning(warning)
    return {
        "total_unused": result.total_candidates,
        "analysis": result.analysis,
        "recommendations": result.recommendations,
        "warnings": result.warnings,
    }


async def _with_worker_session(job, **kwargs) -> Dict[str, Any]:
    # Each task runs in its own event loop, so it cannot share the app's pooled engine
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
        return await job(session_factory, LocalStorage(), **kwargs)
    finally:
        await engine.dispose()


@celery_app.task
def validate_storage_integrity(auto_repair: bool = False):
    """Nightly integrity validation over all stored files."""
    try:
        return asyncio.run(_with_worker_session(run_integrity_validation, auto_repair=auto_repair))
    except Exception as e:
        logger.error(f"Error validating storage integrity: {e}")
        raise


@celery_app.task
def report_unused_files(grace_period_days: Optional[int] = None):
    """Weekly report of files that nothing references."""
    try:
        return asyncio.run(_with_worker_session(run_unused_report, grace_period_days=grace_period_days))
    except Exception as e:
        logger.error(f"Error reporting unused files: {e}")
        raise
