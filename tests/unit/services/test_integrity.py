"""
Unit tests for the integrity validator.
"""
from pathlib import Path
from unittest.mock import patch

import pytest

from asset_admin.models.file_asset import FileAsset
from asset_admin.services.integrity import (
    METADATA_INCOMPLETE,
    MISSING_PHYSICAL_FILE,
    PATH_MALFORMED,
    PERMISSION_DENIED,
    SIZE_MISMATCH,
    IntegrityValidator,
    RepairOptions,
    ValidationChecks,
    path_problems,
)
from asset_admin.services.repository import AssetQuery, AssetQueryBuilder
from tests.conftest import FileAssetFactory


@pytest.mark.unit
class TestPathProblems:
    """Test cases for stored path validation."""

    def test_valid_path(self):
        """Test normal paths have no problems."""
        assert path_problems("/images/2024/a_b-c.png") == []

    @pytest.mark.parametrize("path", ["images/a.png", "/a/../b.png", "/a//b.png", "/a b.png"])
    def test_malformed_paths(self, path):
        """Test relative, traversal, doubled and unsafe paths are reported."""
        assert path_problems(path)


@pytest.mark.unit
class TestIntegrityValidator:
    """Test cases for IntegrityValidator."""

    @pytest.mark.asyncio
    async def test_healthy_file(self, test_db, storage):
        """Test a consistent file produces no issues."""
        await FileAssetFactory.create_and_save_asset(test_db, storage, path="/images/a.png")

        report = await IntegrityValidator(test_db, storage).validate(AssetQuery())

        assert report.processed == 1
        assert report.issues == {}
        assert report.summary["health_percentage"] == 100.0
        assert report.summary["healthy_files"] == 1

    @pytest.mark.asyncio
    async def test_missing_file_is_critical(self, test_db, storage):
        """Test a record without a blob is a critical issue."""
        asset = await FileAssetFactory.create_and_save_asset(test_db, path="/images/gone.png")

        report = await IntegrityValidator(test_db, storage).validate(AssetQuery())

        issue = report.issues[MISSING_PHYSICAL_FILE][0]
        assert issue["file_id"] == str(asset.id)
        assert issue["severity"] == "critical"
        assert report.summary["critical_issues"] == 1
        assert report.summary["health_percentage"] == 0.0
        assert report.summary["recommendations"]

    @pytest.mark.asyncio
    async def test_size_mismatch_reported_without_repair(self, test_db, storage):
        """Test a wrong stored size is reported and left alone by default."""
        asset = await FileAssetFactory.create_and_save_asset(
            test_db, storage, path="/images/a.png", content=b"12345", size=99
        )

        report = await IntegrityValidator(test_db, storage).validate(AssetQuery())

        issue = report.issues[SIZE_MISMATCH][0]
        assert issue["expected_size"] == 99
        assert issue["actual_size"] == 5
        assert issue["repaired"] is False
        await test_db.refresh(asset)
        assert asset.size == 99

    @pytest.mark.asyncio
    async def test_size_repair(self, test_db, storage):
        """Test auto repair corrects the stored size."""
        asset = await FileAssetFactory.create_and_save_asset(
            test_db, storage, path="/images/a.png", content=b"12345", size=99
        )

        report = await IntegrityValidator(test_db, storage).validate(
            AssetQuery(), repair=RepairOptions(auto_repair=True)
        )

        await test_db.refresh(asset)
        assert asset.size == 5
        assert report.issues[SIZE_MISMATCH][0]["repaired"] is True
        assert report.summary["repairs_successful"] == 1
        assert report.summary["repair_effectiveness"] == 100.0

    @pytest.mark.asyncio
    async def test_repair_respects_dry_run(self, test_db, storage):
        """Test dry run only predicts the repair."""
        asset = await FileAssetFactory.create_and_save_asset(
            test_db, storage, path="/images/a.png", content=b"12345", size=99
        )

        report = await IntegrityValidator(test_db, storage).validate(
            AssetQuery(), repair=RepairOptions(auto_repair=True), dry_run=True
        )

        assert report.issues[SIZE_MISMATCH][0]["would_repair"] is True
        await test_db.refresh(asset)
        assert asset.size == 99

    @pytest.mark.asyncio
    async def test_update_file_sizes_disabled(self, test_db, storage):
        """Test auto repair without size updates changes nothing."""
        asset = await FileAssetFactory.create_and_save_asset(
            test_db, storage, path="/images/a.png", content=b"12345", size=99
        )

        await IntegrityValidator(test_db, storage).validate(
            AssetQuery(), repair=RepairOptions(auto_repair=True, update_file_sizes=False)
        )

        await test_db.refresh(asset)
        assert asset.size == 99

    @pytest.mark.asyncio
    async def test_path_outside_root_is_not_statted(self, test_db, storage):
        """Test traversal paths are reported as malformed, never as missing."""
        await FileAssetFactory.create_and_save_asset(test_db, path="/../../etc/passwd")

        report = await IntegrityValidator(test_db, storage).validate(AssetQuery())

        assert PATH_MALFORMED in report.issues
        assert MISSING_PHYSICAL_FILE not in report.issues

    @pytest.mark.asyncio
    async def test_incomplete_metadata(self, test_db, storage):
        """Test empty required metadata is reported."""
        await FileAssetFactory.create_and_save_asset(
            test_db, storage, path="/images/a.png", mime_type=""
        )

        report = await IntegrityValidator(test_db, storage).validate(AssetQuery())

        assert report.issues[METADATA_INCOMPLETE][0]["fields"] == ["mime_type"]

    @pytest.mark.asyncio
    async def test_unreadable_file_is_permission_denied(self, test_db, storage):
        """Test a stat permission error is an issue and the other checks still run."""
        asset = await FileAssetFactory.create_and_save_asset(
            test_db, storage, path="/images/locked.png", mime_type=""
        )
        real_stat = Path.stat

        def locked_stat(self, *args, **kwargs):
            if self.name == "locked.png":
                raise PermissionError(13, "Permission denied", str(self))
            return real_stat(self, *args, **kwargs)

        with patch.object(Path, "stat", locked_stat):
            report = await IntegrityValidator(test_db, storage).validate(AssetQuery())

        assert report.processed == 1
        assert report.failed == 0
        assert report.issues[PERMISSION_DENIED][0]["file_id"] == str(asset.id)
        assert report.issues[METADATA_INCOMPLETE][0]["fields"] == ["mime_type"]
        assert MISSING_PHYSICAL_FILE not in report.issues
        assert SIZE_MISMATCH not in report.issues

    @pytest.mark.asyncio
    async def test_disabled_checks_are_skipped(self, test_db, storage):
        """Test switching a check off suppresses its issues."""
        await FileAssetFactory.create_and_save_asset(test_db, path="/images/gone.png")

        report = await IntegrityValidator(test_db, storage).validate(
            AssetQuery(), checks=ValidationChecks(physical_existence=False)
        )

        assert report.issues == {}

    @pytest.mark.asyncio
    async def test_query_scopes_validation(self, test_db, storage):
        """Test only matching files are checked."""
        await FileAssetFactory.create_and_save_asset(test_db, storage, path="/a.png", category="news")
        await FileAssetFactory.create_and_save_asset(test_db, path="/b.png", category="other")

        report = await IntegrityValidator(test_db, storage).validate(
            AssetQueryBuilder().category("news").build()
        )

        assert report.total == 1
        assert report.issues == {}

    @pytest.mark.asyncio
    async def test_validation_never_deletes(self, test_db, storage):
        """Test even critical issues leave every record in place."""
        asset = await FileAssetFactory.create_and_save_asset(test_db, path="/images/gone.png")

        await IntegrityValidator(test_db, storage).validate(
            AssetQuery(), repair=RepairOptions(auto_repair=True)
        )

        assert await test_db.get(FileAsset, asset.id) is not None
