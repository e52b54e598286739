"""
Destination resolution and two-phase moves for file assets.
"""
import enum
import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Dict, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.config import settings
from asset_admin.core.dispatch import BackgroundDispatcher
from asset_admin.core.exceptions import (
    ConflictError,
    InternalError,
    PhysicalIOError,
    ValidationError,
)
from asset_admin.core.logging import FileOperationLogHandler
from asset_admin.models.file_asset import FileAsset
from asset_admin.services.batch import ItemOutcome, ItemStatus
from asset_admin.services.naming import render_name_template, sanitize_name
from asset_admin.services.references import ReferenceScanner
from asset_admin.services.repository import FileAssetRepository
from asset_admin.services.storage import LocalStorage, join_path, normalize_path, split_path

logger = logging.getLogger(__name__)
file_log = FileOperationLogHandler()


class ConflictStrategy(str, enum.Enum):
    SKIP = "skip"
    OVERWRITE = "overwrite"
    RENAME = "rename"
    MERGE = "merge"


class MoveStrategy(str, enum.Enum):
    CATEGORY_ONLY = "category_only"
    PHYSICAL_ONLY = "physical_only"
    BOTH = "both"


@dataclass(frozen=True)
class Resolution:
    final_path: str
    renamed: bool = False
    overwrite: bool = False
    noop: bool = False


class ConflictResolver:
    """
    Pick a free destination path for an asset.

    Paths handed out earlier in the same invocation are treated as
    occupied, so a dry run arrives at the same names a live run would.
    """

    def __init__(
        self,
        storage: LocalStorage,
        repository: FileAssetRepository,
        max_attempts: Optional[int] = None
    ):
        self.storage = storage
        self.repository = repository
        self.max_attempts = max_attempts or settings.MAX_RENAME_ATTEMPTS
        self._reserved: Set[str] = set()
        self._handlers: Dict[ConflictStrategy, Callable[..., Awaitable[Resolution]]] = {
            ConflictStrategy.SKIP: self._skip,
            ConflictStrategy.OVERWRITE: self._overwrite,
            ConflictStrategy.MERGE: self._overwrite,
            ConflictStrategy.RENAME: self._rename,
        }

    def reserve(self, path: str) -> None:
        self._reserved.add(path)

    def release(self, path: str) -> None:
        self._reserved.discard(path)

    async def _occupied(self, path: str, asset: FileAsset) -> bool:
        if path in self._reserved:
            return True
        if self.storage.exists(path):
            return True
        return await self.repository.path_taken(path, exclude_id=asset.id)

    async def resolve(
        self,
        asset: FileAsset,
        destination_dir: str,
        file_name: str,
        strategy: ConflictStrategy
    ) -> Resolution:
        """
        Decide the final path for moving ``asset`` to ``destination_dir/file_name``.

        Raises:
            ConflictError: ``NAME_COLLISION`` under ``skip``, when no free
                name is found, or when another asset record owns the path
        """
        candidate = join_path(destination_dir, file_name)
        if candidate == asset.path:
            return Resolution(final_path=candidate, noop=True)
        if not await self._occupied(candidate, asset):
            resolution = Resolution(final_path=candidate)
        else:
            resolution = await self._handlers[strategy](asset, candidate)
        self.reserve(resolution.final_path)
        return resolution

    async def _skip(self, asset: FileAsset, candidate: str) -> Resolution:
        raise ConflictError(
            f"Destination {candidate} already exists",
            code="NAME_COLLISION",
            details={"destination": candidate},
        )

    async def _overwrite(self, asset: FileAsset, candidate: str) -> Resolution:
        if candidate in self._reserved:
            raise ConflictError(
                f"Destination {candidate} is already claimed by another file in this operation",
                code="NAME_COLLISION",
                details={"destination": candidate},
            )
        owner = await self.repository.get_by_path(candidate)
        if owner is not None and owner.id != asset.id:
            raise ConflictError(
                f"Destination {candidate} belongs to file {owner.id}",
                code="NAME_COLLISION",
                details={"destination": candidate, "owner_id": str(owner.id)},
            )
        return Resolution(final_path=candidate, overwrite=True)

    async def _rename(self, asset: FileAsset, candidate: str) -> Resolution:
        directory, name = split_path(candidate)
        stem, suffix = PurePosixPath(name).stem, PurePosixPath(name).suffix
        for attempt in range(1, self.max_attempts + 1):
            option = join_path(directory, f"{stem}_{attempt}{suffix}")
            if option == asset.path:
                return Resolution(final_path=option, noop=True)
            if not await self._occupied(option, asset):
                return Resolution(final_path=option, renamed=True)
        raise ConflictError(
            f"No free name for {candidate} after {self.max_attempts} attempts",
            code="NAME_COLLISION",
            details={"destination": candidate, "attempts": self.max_attempts},
        )


@dataclass(frozen=True)
class MoveOptions:
    destination_path: Optional[str] = None
    destination_category: Optional[str] = None
    move_strategy: MoveStrategy = MoveStrategy.BOTH
    conflict_strategy: ConflictStrategy = ConflictStrategy.RENAME
    preserve_names: bool = True
    rename_pattern: Optional[str] = None
    create_directories: bool = True
    backup_before_move: bool = False
    verify_after_move: bool = True
    update_references: bool = True
    dry_run: bool = False

    @property
    def destination_dir(self) -> str:
        if self.destination_path:
            return normalize_path(self.destination_path)
        if self.destination_category:
            return normalize_path(self.destination_category)
        raise ValidationError("Either destination_path or destination_category is required")


def _snapshot(asset: FileAsset) -> Dict[str, Optional[str]]:
    return {"path": asset.path, "url": asset.url, "name": asset.name, "category": asset.category}


class MoveExecutor:
    """Move one asset: resolve, back up, move, verify, then update metadata."""

    def __init__(
        self,
        db: AsyncSession,
        storage: LocalStorage,
        resolver: ConflictResolver,
        dispatcher: Optional[BackgroundDispatcher] = None,
        user_id: Optional[str] = None
    ):
        self.db = db
        self.storage = storage
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.user_id = user_id

    def _target_name(self, asset: FileAsset, options: MoveOptions) -> str:
        _, current = split_path(asset.path)
        if options.rename_pattern:
            return render_name_template(
                options.rename_pattern,
                current,
                mime_type=asset.mime_type,
                category=options.destination_category or asset.category,
                uploader=str(asset.uploaded_by) if asset.uploaded_by else None,
            )
        if not options.preserve_names:
            # Fall back to the display name when the stored name is not kept
            return sanitize_name(PurePosixPath(asset.name).name) if asset.name else current
        return current

    async def execute(self, asset: FileAsset, options: MoveOptions) -> ItemOutcome:
        item_id = str(asset.id)
        before = _snapshot(asset)

        if options.move_strategy == MoveStrategy.CATEGORY_ONLY:
            return await self._recategorize(asset, options, before)

        resolution = await self.resolver.resolve(
            asset, options.destination_dir, self._target_name(asset, options), options.conflict_strategy
        )
        if resolution.noop or resolution.final_path == asset.path:
            return ItemOutcome.skipped(item_id, "File is already at the destination", before=before, after=before)

        source_stat = self.storage.stat(asset.path)
        if source_stat is None:
            self.resolver.release(resolution.final_path)
            raise PhysicalIOError(f"Source file is missing: {asset.path}", path=asset.path)

        final_path = resolution.final_path
        _, final_name = split_path(final_path)
        after = {
            "path": final_path,
            "url": self.storage.url_for(final_path),
            "name": final_name if (resolution.renamed or options.rename_pattern or not options.preserve_names) else asset.name,
            "category": self._new_category(asset, options),
        }
        changes = {key: {"from": before[key], "to": after[key]} for key in after if before[key] != after[key]}
        if resolution.renamed:
            changes["renamed"] = True

        if options.dry_run:
            return ItemOutcome(item_id=item_id, before=before, after=after, changes=changes)

        if options.backup_before_move:
            backup_path = self.storage.backup(asset.path, "move")
            changes["backup_path"] = str(backup_path)

        destination_dir, _ = split_path(final_path)
        if options.create_directories:
            self.storage.ensure_dir(destination_dir)
        elif not self.storage.exists(destination_dir):
            raise ValidationError(f"Destination directory does not exist: {destination_dir}")

        old_path = asset.path
        self.storage.move(old_path, final_path, overwrite=resolution.overwrite)

        if options.verify_after_move:
            self._verify(old_path, final_path, source_stat.size)

        try:
            asset.path = after["path"]
            asset.url = after["url"]
            asset.name = after["name"]
            asset.category = after["category"]
            await self.db.commit()
        except Exception as e:
            logger.error(f"Metadata update failed after moving {old_path} to {final_path}: {e}")
            await self.db.rollback()
            self._compensate(old_path, final_path)
            raise InternalError(f"Failed to update metadata for file {item_id}: {e}")

        if options.update_references:
            self._schedule_relink(asset.id, after["url"])

        await file_log.log_file_move(
            file_name=after["name"],
            user_id=self.user_id,
            old_path=old_path,
            new_path=final_path,
            file_id=item_id,
        )
        return ItemOutcome(
            item_id=item_id,
            status=ItemStatus.PROCESSED,
            before=before,
            after=after,
            changes=changes,
        )

    def _new_category(self, asset: FileAsset, options: MoveOptions) -> Optional[str]:
        if options.move_strategy == MoveStrategy.PHYSICAL_ONLY:
            return asset.category
        return options.destination_category or asset.category

    async def _recategorize(self, asset: FileAsset, options: MoveOptions, before) -> ItemOutcome:
        if not options.destination_category:
            raise ValidationError("destination_category is required for category_only moves")
        after = dict(before, category=options.destination_category)
        if before["category"] == after["category"]:
            return ItemOutcome.skipped(str(asset.id), "File is already in the category", before=before, after=after)
        changes = {"category": {"from": before["category"], "to": after["category"]}}
        if not options.dry_run:
            asset.category = options.destination_category
            await self.db.commit()
        return ItemOutcome(item_id=str(asset.id), before=before, after=after, changes=changes)

    def _verify(self, old_path: str, final_path: str, expected_size: int) -> None:
        landed = self.storage.stat(final_path)
        if landed is not None and landed.size == expected_size:
            return
        logger.error(f"Verification failed for move {old_path} -> {final_path}")
        if landed is not None:
            self._compensate(old_path, final_path)
        raise PhysicalIOError(f"Moved file failed verification: {final_path}", path=final_path)

    def _compensate(self, old_path: str, final_path: str) -> None:
        try:
            self.storage.move(final_path, old_path)
        except PhysicalIOError as e:
            logger.error(f"Could not move {final_path} back to {old_path}: {e.message}")

    def _schedule_relink(self, file_id, url: str) -> None:
        if self.dispatcher is None:
            return

        async def relink(session: AsyncSession) -> None:
            updated = await ReferenceScanner(session).relink(file_id, url)
            logger.info(f"Relinked {updated} references to file {file_id}")

        self.dispatcher.submit_with_session(f"relink:{file_id}", relink)
