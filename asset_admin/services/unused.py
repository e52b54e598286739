"""
Detection of file assets that nothing references.
"""
import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.config import settings
from asset_admin.core.exceptions import ValidationError
from asset_admin.models.file_asset import FileAsset
from asset_admin.services.naming import mime_family
from asset_admin.services.references import ReferenceScanner
from asset_admin.services.repository import AssetQuery, FileAssetRepository
from asset_admin.services.storage import LocalStorage

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} GB"


@dataclass(frozen=True)
class GracePeriod:
    """Files younger than the grace period are never reported as unused."""
    days: Optional[int] = None
    hours: Optional[int] = None
    ignore_recent: bool = True

    def __post_init__(self):
        if (self.days is not None and self.days < 0) or (self.hours is not None and self.hours < 0):
            raise ValidationError("Grace period must not be negative")

    @property
    def delta(self) -> timedelta:
        if self.days is None and self.hours is None:
            return timedelta(hours=settings.UNUSED_GRACE_PERIOD_HOURS)
        return timedelta(days=self.days or 0, hours=self.hours or 0)

    def cutoff(self, now: datetime) -> Optional[datetime]:
        if not self.ignore_recent:
            return None
        return now - self.delta


class SortOrder(str, enum.Enum):
    SIZE_DESC = "size_desc"
    SIZE_ASC = "size_asc"
    DATE_DESC = "date_desc"
    DATE_ASC = "date_asc"
    NAME = "name"
    TYPE = "type"


SORT_KEYS = {
    SortOrder.SIZE_DESC: (lambda a: a.size or 0, True),
    SortOrder.SIZE_ASC: (lambda a: a.size or 0, False),
    SortOrder.DATE_DESC: (lambda a: _as_utc(a.created_at), True),
    SortOrder.DATE_ASC: (lambda a: _as_utc(a.created_at), False),
    SortOrder.NAME: (lambda a: (a.name or "").lower(), False),
    SortOrder.TYPE: (lambda a: ((a.mime_type or "").lower(), (a.name or "").lower()), False),
}


@dataclass
class UnusedFilesResult:
    files: List[FileAsset]
    total_candidates: int
    grace_cutoff: Optional[datetime]
    analysis: Dict[str, Any] = field(default_factory=dict)
    details: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        files = []
        for asset in self.files:
            entry = asset.to_dict()
            if str(asset.id) in self.details:
                entry["details"] = self.details[str(asset.id)]
            files.append(entry)
        return {
            "total_candidates": self.total_candidates,
            "returned": len(self.files),
            "grace_cutoff": self.grace_cutoff.isoformat() if self.grace_cutoff else None,
            "files": files,
            "analysis": self.analysis,
            "recommendations": self.recommendations,
            "warnings": self.warnings,
        }


class UnusedFileFinder:
    """Read-only search for unreferenced files older than a grace period."""

    def __init__(
        self,
        db: AsyncSession,
        storage: Optional[LocalStorage] = None,
        scanner: Optional[ReferenceScanner] = None
    ):
        self.db = db
        self.storage = storage
        self.scanner = scanner or ReferenceScanner(db)
        self.repository = FileAssetRepository(db)

    async def find(
        self,
        grace_period: GracePeriod = GracePeriod(),
        query: Optional[AssetQuery] = None,
        now: Optional[datetime] = None
    ) -> List[FileAsset]:
        """Unreferenced assets matching ``query`` created before the grace cutoff."""
        query = query or AssetQuery()
        cutoff = grace_period.cutoff(now or datetime.now(timezone.utc))
        if cutoff is not None:
            before = query.uploaded_before
            query = replace(query, uploaded_before=min(_as_utc(before), cutoff) if before else cutoff)

        candidates = await self.repository.find(query)
        unused = []
        async with self.scanner.batch_cache():
            for asset in candidates:
                info = await self.scanner.scan(asset.id)
                if not info.has_references:
                    unused.append(asset)
        logger.info(f"Found {len(unused)} unused files among {len(candidates)} candidates")
        return unused

    async def report(
        self,
        grace_period: GracePeriod = GracePeriod(),
        query: Optional[AssetQuery] = None,
        sort_by: SortOrder = SortOrder.SIZE_DESC,
        limit: int = 100,
        offset: int = 0,
        include_file_details: bool = False,
        include_analysis: bool = True,
        now: Optional[datetime] = None
    ) -> UnusedFilesResult:
        now = now or datetime.now(timezone.utc)
        unused = await self.find(grace_period, query, now)

        key, reverse = SORT_KEYS[sort_by]
        ordered = sorted(unused, key=key, reverse=reverse)
        page = ordered[offset:offset + limit]

        result = UnusedFilesResult(
            files=page,
            total_candidates=len(unused),
            grace_cutoff=grace_period.cutoff(now),
        )
        if include_analysis:
            result.analysis = self.analyze(unused, now)
            result.recommendations = self.recommend(result.analysis)
        result.warnings = self.threshold_warnings(unused)
        if include_file_details:
            result.details = {str(asset.id): self._details(asset, now) for asset in page}
        return result

    def _details(self, asset: FileAsset, now: datetime) -> Dict[str, Any]:
        details: Dict[str, Any] = {
            "age_days": (now - _as_utc(asset.created_at)).days,
            "type_family": mime_family(asset.mime_type),
        }
        if self.storage is not None:
            details["physical_exists"] = (
                self.storage.is_within_root(asset.path) and self.storage.exists(asset.path)
            )
        return details

    @staticmethod
    def analyze(assets: List[FileAsset], now: datetime) -> Dict[str, Any]:
        """Wasted space broken down by category, type family and uploader."""
        def bucket(groups: Dict[str, Dict[str, int]], key: str, size: int) -> None:
            entry = groups.setdefault(key, {"count": 0, "size": 0})
            entry["count"] += 1
            entry["size"] += size

        by_category: Dict[str, Dict[str, int]] = {}
        by_type: Dict[str, Dict[str, int]] = {}
        by_uploader: Dict[str, Dict[str, int]] = {}
        total_size = 0
        for asset in assets:
            size = asset.size or 0
            total_size += size
            bucket(by_category, asset.category or "uncategorized", size)
            bucket(by_type, mime_family(asset.mime_type), size)
            bucket(by_uploader, str(asset.uploaded_by) if asset.uploaded_by else "unknown", size)

        def brief(asset: Optional[FileAsset]) -> Optional[Dict[str, Any]]:
            if asset is None:
                return None
            return {
                "id": str(asset.id),
                "name": asset.name,
                "size": asset.size,
                "created_at": _as_utc(asset.created_at).isoformat(),
                "age_days": (now - _as_utc(asset.created_at)).days,
            }

        by_date = sorted(assets, key=lambda a: _as_utc(a.created_at))
        return {
            "total_files": len(assets),
            "total_size": total_size,
            "total_size_human": format_bytes(total_size),
            "by_category": by_category,
            "by_type": by_type,
            "by_uploader": by_uploader,
            "oldest": brief(by_date[0] if by_date else None),
            "newest": brief(by_date[-1] if by_date else None),
            "largest": brief(max(assets, key=lambda a: a.size or 0) if assets else None),
        }

    @staticmethod
    def recommend(analysis: Dict[str, Any]) -> List[str]:
        if not analysis.get("total_files"):
            return []
        recommendations = [
            f"Review {analysis['total_files']} unused files "
            f"({analysis['total_size_human']}) for deletion"
        ]
        if analysis["by_category"]:
            category, stats = max(analysis["by_category"].items(), key=lambda item: item[1]["size"])
            recommendations.append(
                f"Category '{category}' holds the most unused space ({format_bytes(stats['size'])})"
            )
        oldest = analysis.get("oldest")
        if oldest and oldest["age_days"] > 365:
            recommendations.append("Some unused files are older than a year; consider archiving them")
        return recommendations

    @staticmethod
    def threshold_warnings(assets: List[FileAsset]) -> List[str]:
        warnings = []
        total_size = sum(asset.size or 0 for asset in assets)
        if len(assets) > settings.UNUSED_WARNING_COUNT:
            warnings.append(f"{len(assets)} unused files exceed the warning threshold of {settings.UNUSED_WARNING_COUNT}")
        if total_size > settings.UNUSED_WARNING_BYTES:
            warnings.append(f"Unused files occupy {format_bytes(total_size)}, above {format_bytes(settings.UNUSED_WARNING_BYTES)}")
        return warnings
