"""
Integration tests for scheduled storage maintenance jobs.
"""
import pytest
from unittest.mock import AsyncMock, patch

from sqlalchemy import select

from asset_admin.models.file_asset import FileAsset
from asset_admin.tasks.maintenance import (
    report_unused_files,
    run_integrity_validation,
    run_unused_report,
    validate_storage_integrity,
)
from tests.conftest import ArticleFactory, FileAssetFactory, days_ago


@pytest.mark.integration
class TestMaintenanceJobs:
    """Test the async bodies of the maintenance tasks."""

    @pytest.mark.asyncio
    async def test_integrity_validation_summary(self, session_factory, test_db, storage):
        """Test nightly validation summarizes problems without repairing."""
        await FileAssetFactory.create_and_save_asset(test_db, storage, path="/a.png")
        drifted = await FileAssetFactory.create_and_save_asset(
            test_db, storage, path="/b.png", content=b"abc", size=10
        )
        await FileAssetFactory.create_and_save_asset(test_db, path="/gone.png")

        result = await run_integrity_validation(session_factory, storage)

        assert result["files_checked"] == 3
        assert result["problematic_files"] == 2
        assert result["critical_issues"] == 1
        assert result["failed"] == 0
        await test_db.refresh(drifted)
        assert drifted.size == 10

    @pytest.mark.asyncio
    async def test_integrity_validation_repairs(self, session_factory, test_db, storage):
        """Test validation can repair sizes when asked."""
        drifted = await FileAssetFactory.create_and_save_asset(
            test_db, storage, path="/b.png", content=b"abc", size=10
        )

        result = await run_integrity_validation(session_factory, storage, auto_repair=True)

        assert result["repairs_successful"] == 1
        await test_db.refresh(drifted)
        assert drifted.size == 3

    @pytest.mark.asyncio
    async def test_unused_report(self, session_factory, test_db, storage):
        """Test the weekly report counts unused files and never deletes."""
        unused = await FileAssetFactory.create_and_save_asset(test_db, created_at=days_ago(10))
        used = await FileAssetFactory.create_and_save_asset(test_db, created_at=days_ago(10))
        await ArticleFactory.create_and_save_article(test_db, featured_image=used)

        result = await run_unused_report(session_factory, storage, grace_period_days=7)

        assert result["total_unused"] == 1
        assert result["analysis"]["total_size"] == unused.size
        remaining = await test_db.execute(select(FileAsset.id))
        assert len(remaining.all()) == 2


@pytest.mark.unit
class TestMaintenanceTasks:
    """Test the Celery task wrappers."""

    def test_validate_task_runs_job(self):
        """Test the task runs the validation job in a worker session."""
        worker = AsyncMock(return_value={"files_checked": 0})
        with patch("asset_admin.tasks.maintenance._with_worker_session", worker):
            result = validate_storage_integrity(auto_repair=True)

        assert result == {"files_checked": 0}
        worker.assert_awaited_once_with(run_integrity_validation, auto_repair=True)

    def test_unused_task_propagates_errors(self):
        """Test job errors are logged and re-raised."""
        worker = AsyncMock(side_effect=RuntimeError("db down"))
        with patch("asset_admin.tasks.maintenance._with_worker_session", worker):
            with pytest.raises(RuntimeError):
                report_unused_files(grace_period_days=3)
