"""
Metadata reorganization of file assets (category, tags, permission, name).

Organizing never touches the filesystem; physical relocation is a move.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.exceptions import InternalError, ValidationError
from asset_admin.models.file_asset import FileAsset, PermissionLevel
from asset_admin.services.batch import ItemOutcome
from asset_admin.services.naming import mime_family, render_name_template, validate_template
from asset_admin.services.references import ReferenceScanner

logger = logging.getLogger(__name__)


class OrganizeStrategy(str, enum.Enum):
    BY_CATEGORY = "by_category"
    BY_TYPE = "by_type"
    BY_DATE = "by_date"
    BY_UPLOADER = "by_uploader"
    BY_USAGE = "by_usage"


class DateGranularity(str, enum.Enum):
    YEAR = "year"
    MONTH = "month"
    DAY = "day"


@dataclass(frozen=True)
class NamingRule:
    pattern: str
    date_format: str = "YYYY-MM-DD"
    sanitize: bool = True


@dataclass(frozen=True)
class OrganizePlan:
    """Everything an organize call changes on each file."""
    strategy: Optional[OrganizeStrategy] = None
    target_category: Optional[str] = None
    type_mapping: Dict[str, str] = field(default_factory=dict)
    separate_by_type: bool = True
    date_granularity: DateGranularity = DateGranularity.MONTH
    unused_category: str = "unused"
    used_category: str = "in-use"
    apply_tags: Tuple[str, ...] = ()
    remove_tags: Tuple[str, ...] = ()
    set_permission: Optional[PermissionLevel] = None
    naming: Optional[NamingRule] = None
    preserve_original_names: bool = False
    backup_metadata: bool = False
    dry_run: bool = False

    def validate(self) -> None:
        if self.strategy == OrganizeStrategy.BY_CATEGORY and not (self.target_category or "").strip():
            raise ValidationError("target_category is required for the by_category strategy")
        if self.naming is not None:
            validate_template(self.naming.pattern)
        renames = self.naming is not None and not self.preserve_original_names
        if self.strategy is None and not (
            self.apply_tags or self.remove_tags or self.set_permission or renames
        ):
            raise ValidationError("Organize request does not change anything")


def normalize_tags(tags) -> List[str]:
    """Trim, lowercase and de-duplicate tags, keeping first-seen order."""
    seen: Dict[str, None] = {}
    for tag in tags or []:
        cleaned = str(tag).strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


def _as_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _snapshot(asset: FileAsset) -> Dict[str, Any]:
    return {
        "name": asset.name,
        "category": asset.category,
        "tags": list(asset.tags or []),
        "permission": asset.permission.value if asset.permission else None,
    }


class Organizer:
    """Compute and apply the organize plan for one asset at a time."""

    def __init__(self, db: AsyncSession, scanner: Optional[ReferenceScanner] = None):
        self.db = db
        self.scanner = scanner or ReferenceScanner(db)
        self._strategies: Dict[OrganizeStrategy, Callable[[FileAsset, OrganizePlan], Awaitable[Optional[str]]]] = {
            OrganizeStrategy.BY_CATEGORY: self._by_category,
            OrganizeStrategy.BY_TYPE: self._by_type,
            OrganizeStrategy.BY_DATE: self._by_date,
            OrganizeStrategy.BY_UPLOADER: self._by_uploader,
            OrganizeStrategy.BY_USAGE: self._by_usage,
        }

    async def _by_category(self, asset: FileAsset, plan: OrganizePlan) -> Optional[str]:
        return plan.target_category.strip()

    async def _by_type(self, asset: FileAsset, plan: OrganizePlan) -> Optional[str]:
        mime_type = (asset.mime_type or "").lower()
        family = mime_family(mime_type)
        if plan.type_mapping:
            for key in (mime_type, mime_type.split("/")[0], family):
                if key in plan.type_mapping:
                    return plan.type_mapping[key]
        if plan.separate_by_type:
            return family
        return None

    async def _by_date(self, asset: FileAsset, plan: OrganizePlan) -> Optional[str]:
        created = _as_utc(asset.created_at)
        parts = [f"{created.year:04d}"]
        if plan.date_granularity in (DateGranularity.MONTH, DateGranularity.DAY):
            parts.append(f"{created.month:02d}")
        if plan.date_granularity == DateGranularity.DAY:
            parts.append(f"{created.day:02d}")
        return "/".join(parts)

    async def _by_uploader(self, asset: FileAsset, plan: OrganizePlan) -> Optional[str]:
        return f"uploader_{asset.uploaded_by}" if asset.uploaded_by else "uploader_unknown"

    async def _by_usage(self, asset: FileAsset, plan: OrganizePlan) -> Optional[str]:
        info = await self.scanner.scan(asset.id)
        return plan.used_category if info.has_references else plan.unused_category

    async def apply(self, asset: FileAsset, plan: OrganizePlan) -> ItemOutcome:
        item_id = str(asset.id)
        before = _snapshot(asset)
        after = dict(before, tags=list(before["tags"]))

        if plan.strategy is not None:
            category = await self._strategies[plan.strategy](asset, plan)
            if category is not None:
                after["category"] = category

        if plan.apply_tags or plan.remove_tags:
            removed = set(normalize_tags(plan.remove_tags))
            tags = normalize_tags(after["tags"] + list(plan.apply_tags))
            after["tags"] = [tag for tag in tags if tag not in removed]

        if plan.set_permission is not None:
            after["permission"] = plan.set_permission.value

        if plan.naming is not None and not plan.preserve_original_names:
            after["name"] = render_name_template(
                plan.naming.pattern,
                asset.name,
                mime_type=asset.mime_type,
                category=after["category"],
                uploader=str(asset.uploaded_by) if asset.uploaded_by else None,
                when=_as_utc(asset.created_at),
                date_format=plan.naming.date_format,
                sanitize=plan.naming.sanitize,
            )

        changes = {
            key: {"from": before[key], "to": after[key]}
            for key in after
            if before[key] != after[key]
        }
        if not changes:
            return ItemOutcome.skipped(item_id, "Already organized", before=before, after=after)

        if plan.dry_run:
            return ItemOutcome(item_id=item_id, before=before, after=after, changes=changes)

        try:
            if plan.backup_metadata:
                custom = dict(asset.custom_metadata or {})
                custom["organize_backup"] = dict(before, saved_at=datetime.now(timezone.utc).isoformat())
                asset.custom_metadata = custom
            asset.name = after["name"]
            asset.category = after["category"]
            asset.tags = after["tags"]
            asset.permission = PermissionLevel(after["permission"])
            await self.db.commit()
        except Exception as e:
            logger.error(f"Error organizing file {item_id}: {e}")
            await self.db.rollback()
            raise InternalError(f"Failed to organize file {item_id}: {e}")

        return ItemOutcome(item_id=item_id, before=before, after=after, changes=changes)
