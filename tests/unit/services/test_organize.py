"""
Unit tests for metadata organization.
"""
import pytest
from datetime import datetime, timezone

from asset_admin.core.exceptions import ValidationError
from asset_admin.models.file_asset import PermissionLevel
from asset_admin.services.batch import ItemStatus
from asset_admin.services.organize import (
    DateGranularity,
    NamingRule,
    OrganizePlan,
    OrganizeStrategy,
    Organizer,
    normalize_tags,
)
from tests.conftest import ArticleFactory, FileAssetFactory


@pytest.mark.unit
class TestOrganizePlan:
    """Test cases for plan validation."""

    def test_by_category_requires_target(self):
        """Test by_category needs a target category."""
        with pytest.raises(ValidationError):
            OrganizePlan(strategy=OrganizeStrategy.BY_CATEGORY).validate()

    def test_empty_plan_rejected(self):
        """Test a plan that changes nothing is invalid."""
        with pytest.raises(ValidationError):
            OrganizePlan().validate()

    def test_bad_naming_template_rejected(self):
        """Test naming templates are validated up front."""
        with pytest.raises(ValidationError):
            OrganizePlan(naming=NamingRule("{bogus}")).validate()

    def test_naming_with_preserved_names_rejected(self):
        """Test a naming-only plan that keeps original names changes nothing."""
        with pytest.raises(ValidationError):
            OrganizePlan(naming=NamingRule("doc_{original}"), preserve_original_names=True).validate()
        OrganizePlan(naming=NamingRule("doc_{original}")).validate()

    def test_normalize_tags(self):
        """Test tags are trimmed, lowercased and de-duplicated in order."""
        assert normalize_tags([" News", "news", "", "Sport "]) == ["news", "sport"]


@pytest.mark.unit
class TestOrganizer:
    """Test cases for Organizer."""

    @pytest.mark.asyncio
    async def test_by_type(self, test_db):
        """Test files are categorized by MIME family."""
        asset = await FileAssetFactory.create_and_save_asset(test_db, mime_type="video/mp4")

        outcome = await Organizer(test_db).apply(asset, OrganizePlan(strategy=OrganizeStrategy.BY_TYPE))

        assert outcome.changes["category"] == {"from": None, "to": "videos"}
        await test_db.refresh(asset)
        assert asset.category == "videos"

    @pytest.mark.asyncio
    async def test_by_type_mapping(self, test_db):
        """Test a type mapping overrides the default family name."""
        asset = await FileAssetFactory.create_and_save_asset(test_db, mime_type="image/jpeg")
        plan = OrganizePlan(strategy=OrganizeStrategy.BY_TYPE, type_mapping={"images": "photos"})

        await Organizer(test_db).apply(asset, plan)

        await test_db.refresh(asset)
        assert asset.category == "photos"

    @pytest.mark.asyncio
    async def test_by_date(self, test_db):
        """Test date categories follow the requested granularity."""
        created = datetime(2023, 4, 9, tzinfo=timezone.utc)
        asset = await FileAssetFactory.create_and_save_asset(test_db, created_at=created)

        outcome = await Organizer(test_db).apply(
            asset, OrganizePlan(strategy=OrganizeStrategy.BY_DATE, date_granularity=DateGranularity.DAY)
        )

        assert outcome.after["category"] == "2023/04/09"

    @pytest.mark.asyncio
    async def test_by_uploader(self, test_db):
        """Test uploader categories."""
        asset = await FileAssetFactory.create_and_save_asset(test_db)

        outcome = await Organizer(test_db).apply(asset, OrganizePlan(strategy=OrganizeStrategy.BY_UPLOADER))

        assert outcome.after["category"] == "uploader_unknown"

    @pytest.mark.asyncio
    async def test_by_usage(self, test_db):
        """Test usage strategy splits referenced from unreferenced files."""
        used = await FileAssetFactory.create_and_save_asset(test_db)
        unused = await FileAssetFactory.create_and_save_asset(test_db)
        await ArticleFactory.create_and_save_article(test_db, gallery=[used])
        organizer = Organizer(test_db)
        plan = OrganizePlan(strategy=OrganizeStrategy.BY_USAGE)

        assert (await organizer.apply(used, plan)).after["category"] == "in-use"
        assert (await organizer.apply(unused, plan)).after["category"] == "unused"

    @pytest.mark.asyncio
    async def test_tags_and_permission(self, test_db):
        """Test tag edits and permission changes."""
        asset = await FileAssetFactory.create_and_save_asset(test_db, tags=["old", "keep"])
        plan = OrganizePlan(
            apply_tags=("New", "keep"), remove_tags=("old",), set_permission=PermissionLevel.PRIVATE
        )

        await Organizer(test_db).apply(asset, plan)

        await test_db.refresh(asset)
        assert asset.tags == ["keep", "new"]
        assert asset.permission == PermissionLevel.PRIVATE

    @pytest.mark.asyncio
    async def test_naming_convention(self, test_db):
        """Test display names follow the naming convention unless originals are preserved."""
        created = datetime(2023, 4, 9, tzinfo=timezone.utc)
        asset = await FileAssetFactory.create_and_save_asset(test_db, name="Photo 1.png", created_at=created)
        rule = NamingRule("{date}_{original}")

        preserved = await Organizer(test_db).apply(asset, OrganizePlan(
            strategy=OrganizeStrategy.BY_TYPE, naming=rule, preserve_original_names=True, dry_run=True
        ))
        assert preserved.after["name"] == "Photo 1.png"

        outcome = await Organizer(test_db).apply(asset, OrganizePlan(naming=rule))
        assert outcome.after["name"] == "2023-04-09_Photo_1.png"

    @pytest.mark.asyncio
    async def test_already_organized_is_skipped(self, test_db):
        """Test a file already matching the plan is skipped."""
        asset = await FileAssetFactory.create_and_save_asset(test_db, category="news")

        outcome = await Organizer(test_db).apply(
            asset, OrganizePlan(strategy=OrganizeStrategy.BY_CATEGORY, target_category="news")
        )

        assert outcome.status == ItemStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_dry_run_and_backup(self, test_db):
        """Test dry run changes nothing and backup keeps the previous values."""
        asset = await FileAssetFactory.create_and_save_asset(test_db, category="old")
        plan = OrganizePlan(strategy=OrganizeStrategy.BY_CATEGORY, target_category="new")

        await Organizer(test_db).apply(asset, OrganizePlan(
            strategy=plan.strategy, target_category="new", dry_run=True
        ))
        await test_db.refresh(asset)
        assert asset.category == "old"

        await Organizer(test_db).apply(asset, OrganizePlan(
            strategy=plan.strategy, target_category="new", backup_metadata=True
        ))
        await test_db.refresh(asset)
        assert asset.category == "new"
        assert asset.custom_metadata["organize_backup"]["category"] == "old"
