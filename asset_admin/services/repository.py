"""
File asset persistence and target queries.
"""
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.exceptions import ValidationError
from asset_admin.models.file_asset import FileAsset, PermissionLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetQuery:
    """Immutable filter over file assets. Build it with ``AssetQueryBuilder``."""
    ids: Optional[Tuple[uuid.UUID, ...]] = None
    categories: Optional[Tuple[str, ...]] = None
    file_type: Optional[str] = None
    mime_types: Optional[Tuple[str, ...]] = None
    size_min: Optional[int] = None
    size_max: Optional[int] = None
    uploaded_after: Optional[datetime] = None
    uploaded_before: Optional[datetime] = None
    uploader_ids: Optional[Tuple[uuid.UUID, ...]] = None
    permissions: Optional[Tuple[PermissionLevel, ...]] = None
    has_category: Optional[bool] = None
    has_tags: Optional[bool] = None
    tags_include: Optional[Tuple[str, ...]] = None
    unused_only: bool = False

    def statement(self):
        stmt = select(FileAsset)
        if self.ids is not None:
            stmt = stmt.where(FileAsset.id.in_(self.ids))
        if self.categories:
            stmt = stmt.where(FileAsset.category.in_(self.categories))
        if self.file_type:
            stmt = stmt.where(FileAsset.mime_type.contains(self.file_type))
        if self.mime_types:
            stmt = stmt.where(FileAsset.mime_type.in_(self.mime_types))
        if self.size_min is not None:
            stmt = stmt.where(FileAsset.size >= self.size_min)
        if self.size_max is not None:
            stmt = stmt.where(FileAsset.size <= self.size_max)
        if self.uploaded_after is not None:
            stmt = stmt.where(FileAsset.created_at >= self.uploaded_after)
        if self.uploaded_before is not None:
            stmt = stmt.where(FileAsset.created_at <= self.uploaded_before)
        if self.uploader_ids:
            stmt = stmt.where(FileAsset.uploaded_by.in_(self.uploader_ids))
        if self.permissions:
            stmt = stmt.where(FileAsset.permission.in_(self.permissions))
        if self.has_category is True:
            stmt = stmt.where(FileAsset.category.is_not(None), FileAsset.category != "")
        elif self.has_category is False:
            stmt = stmt.where((FileAsset.category.is_(None)) | (FileAsset.category == ""))
        return stmt.order_by(FileAsset.created_at, FileAsset.id)

    def matches_tags(self, asset: FileAsset) -> bool:
        """Tag filters run in Python; JSON containment differs across databases."""
        tags = set(asset.tags or [])
        if self.has_tags is True and not tags:
            return False
        if self.has_tags is False and tags:
            return False
        if self.tags_include and not tags.intersection(self.tags_include):
            return False
        return True


class AssetQueryBuilder:
    """Validating builder for ``AssetQuery``."""

    def __init__(self):
        self._query = AssetQuery()

    def _set(self, **changes) -> "AssetQueryBuilder":
        self._query = replace(self._query, **changes)
        return self

    def ids(self, ids: Optional[Iterable[uuid.UUID]]) -> "AssetQueryBuilder":
        if ids is None:
            return self
        unique = tuple(dict.fromkeys(ids))
        if not unique:
            raise ValidationError("File id list must not be empty")
        return self._set(ids=unique)

    def category(self, category: Optional[str]) -> "AssetQueryBuilder":
        return self.categories([category] if category else None)

    def categories(self, categories: Optional[Iterable[str]]) -> "AssetQueryBuilder":
        if not categories:
            return self
        return self._set(categories=tuple(c.strip() for c in categories if c and c.strip()))

    def file_type(self, file_type: Optional[str]) -> "AssetQueryBuilder":
        return self._set(file_type=file_type.strip().lower()) if file_type else self

    def mime_types(self, mime_types: Optional[Iterable[str]]) -> "AssetQueryBuilder":
        if not mime_types:
            return self
        return self._set(mime_types=tuple(m.lower() for m in mime_types))

    def size_range(self, size_min: Optional[int] = None, size_max: Optional[int] = None) -> "AssetQueryBuilder":
        if size_min is not None and size_min < 0:
            raise ValidationError("Minimum size must not be negative")
        if size_max is not None and size_max < 0:
            raise ValidationError("Maximum size must not be negative")
        if size_min is not None and size_max is not None and size_min > size_max:
            raise ValidationError("Minimum size is larger than maximum size")
        return self._set(size_min=size_min, size_max=size_max)

    def uploaded_between(self, after: Optional[datetime] = None, before: Optional[datetime] = None) -> "AssetQueryBuilder":
        if after and before and after > before:
            raise ValidationError("Upload date range is inverted")
        return self._set(uploaded_after=after, uploaded_before=before)

    def uploaders(self, uploader_ids: Optional[Iterable[uuid.UUID]]) -> "AssetQueryBuilder":
        if not uploader_ids:
            return self
        return self._set(uploader_ids=tuple(uploader_ids))

    def permissions(self, permissions: Optional[Iterable]) -> "AssetQueryBuilder":
        if not permissions:
            return self
        try:
            levels = tuple(PermissionLevel(p) for p in permissions)
        except ValueError as e:
            raise ValidationError(f"Invalid permission: {e}")
        return self._set(permissions=levels)

    def has_category(self, value: Optional[bool]) -> "AssetQueryBuilder":
        return self._set(has_category=value)

    def has_tags(self, value: Optional[bool]) -> "AssetQueryBuilder":
        return self._set(has_tags=value)

    def tags_include(self, tags: Optional[Iterable[str]]) -> "AssetQueryBuilder":
        if not tags:
            return self
        return self._set(tags_include=tuple(t.strip().lower() for t in tags if t.strip()))

    def unused_only(self, value: bool = True) -> "AssetQueryBuilder":
        return self._set(unused_only=bool(value))

    def build(self) -> AssetQuery:
        return self._query


class FileAssetRepository:
    """Data access for file assets."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, file_id: uuid.UUID) -> Optional[FileAsset]:
        result = await self.db.execute(select(FileAsset).where(FileAsset.id == file_id))
        return result.scalar_one_or_none()

    async def get_many(self, ids: Sequence[uuid.UUID]) -> Tuple[List[FileAsset], List[uuid.UUID]]:
        """
        Load assets in the order of ``ids``.

        Returns:
            Tuple of the found assets and the ids that do not exist
        """
        if not ids:
            return [], []
        result = await self.db.execute(select(FileAsset).where(FileAsset.id.in_(ids)))
        by_id = {asset.id: asset for asset in result.scalars().all()}
        found = [by_id[i] for i in ids if i in by_id]
        missing = [i for i in ids if i not in by_id]
        return found, missing

    async def find(self, query: AssetQuery) -> List[FileAsset]:
        """Resolve a query to assets. ``unused_only`` is left to the caller."""
        result = await self.db.execute(query.statement())
        assets = [asset for asset in result.scalars().all() if query.matches_tags(asset)]
        if query.ids is not None:
            order = {file_id: index for index, file_id in enumerate(query.ids)}
            assets.sort(key=lambda a: order.get(a.id, len(order)))
        return assets

    async def get_by_path(self, path: str) -> Optional[FileAsset]:
        result = await self.db.execute(select(FileAsset).where(FileAsset.path == path))
        return result.scalar_one_or_none()

    async def path_taken(self, path: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        stmt = select(FileAsset.id).where(FileAsset.path == path)
        if exclude_id is not None:
            stmt = stmt.where(FileAsset.id != exclude_id)
        result = await self.db.execute(stmt)
        return result.first() is not None

    def add(self, asset: FileAsset) -> None:
        self.db.add(asset)

    async def delete(self, asset: FileAsset) -> None:
        await self.db.delete(asset)
