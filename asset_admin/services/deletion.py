"""
Deletion of a single file asset after the policy has ruled on it.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.exceptions import ConflictError, InternalError, PhysicalIOError
from asset_admin.core.logging import FileOperationLogHandler
from asset_admin.models.file_asset import FileAsset
from asset_admin.services.batch import ItemOutcome
from asset_admin.services.policy import Decision, PolicyAction
from asset_admin.services.references import ReferenceInfo, ReferenceScanner
from asset_admin.services.repository import FileAssetRepository
from asset_admin.services.storage import LocalStorage

logger = logging.getLogger(__name__)
file_log = FileOperationLogHandler()


@dataclass(frozen=True)
class DeleteOptions:
    delete_physical_files: bool = True
    backup_before_delete: bool = False
    dry_run: bool = False


def reference_conflict(asset: FileAsset, info: ReferenceInfo, decision: Decision) -> ConflictError:
    """Build the error listing every entity that still points at ``asset``."""
    return ConflictError(
        f"File {asset.id} cannot be deleted: {decision.reason}",
        code="REFERENCED",
        details={
            "file_id": str(asset.id),
            "references": [ref.to_dict() for ref in info.refs()],
            "scan_failed": info.scan_failed,
            "require_confirmation": decision.require_confirmation,
        },
    )


class AssetDeleter:
    """
    Remove one asset.

    Order per item: detach references, back up, delete and commit the
    metadata row, then remove the blob. A failed blob removal leaves an
    orphan file that the integrity validator can report, never a record
    pointing at nothing.
    """

    def __init__(
        self,
        db: AsyncSession,
        storage: LocalStorage,
        scanner: ReferenceScanner,
        user_id: Optional[str] = None
    ):
        self.db = db
        self.storage = storage
        self.scanner = scanner
        self.repository = FileAssetRepository(db)
        self.user_id = user_id

    async def delete(
        self,
        asset: FileAsset,
        info: ReferenceInfo,
        decision: Decision,
        options: DeleteOptions
    ) -> ItemOutcome:
        item_id = str(asset.id)
        before = {"path": asset.path, "name": asset.name, "size": asset.size}

        if decision.action == PolicyAction.SKIP:
            return ItemOutcome.skipped(
                item_id, decision.reason, before=before,
                changes={"references": [ref.to_dict() for ref in info.refs()]}
            )
        if decision.action == PolicyAction.REJECT:
            raise reference_conflict(asset, info, decision)

        on_disk = self.storage.stat(asset.path) if options.delete_physical_files else None
        freed = on_disk.size if on_disk is not None else 0

        if options.dry_run:
            cleared = info.total if decision.clean_references else 0
            return ItemOutcome(
                item_id=item_id,
                before=before,
                changes={"physical_removed": on_disk is not None, "references_cleared": cleared},
                metrics={"freed_bytes": freed, "references_cleared": cleared},
            )

        warnings = []
        cleared = 0
        if decision.clean_references:
            cleared = await self.scanner.clean(asset.id, info)

        if options.backup_before_delete:
            backup = self._backup(asset, info)
            if isinstance(backup, str):
                warnings.append(backup)

        path = asset.path
        try:
            await self.repository.delete(asset)
            await self.db.commit()
        except Exception as e:
            logger.error(f"Error deleting metadata for file {item_id}: {e}")
            await self.db.rollback()
            raise InternalError(f"Failed to delete file {item_id}: {e}")

        physical_removed = False
        if options.delete_physical_files:
            try:
                physical_removed = self.storage.remove(path)
            except PhysicalIOError as e:
                logger.warning(f"Metadata for {item_id} deleted but blob removal failed: {e.message}")
                warnings.append(f"File {item_id}: physical removal failed: {e.message}")
        if not physical_removed:
            freed = 0

        await file_log.log_file_deletion(
            file_name=before["name"],
            user_id=self.user_id,
            file_path=path,
            file_size=before["size"],
            file_id=item_id,
            references_cleared=cleared,
        )
        return ItemOutcome(
            item_id=item_id,
            before=before,
            changes={"physical_removed": physical_removed, "references_cleared": cleared},
            metrics={"freed_bytes": freed, "references_cleared": cleared},
            warnings=warnings,
        )

    def _backup(self, asset: FileAsset, info: ReferenceInfo):
        """Back up blob and metadata; returns a warning string on failure."""
        sidecar: Dict[str, Any] = {
            "asset": asset.to_dict(),
            "references": info.to_dict(),
        }
        try:
            if self.storage.exists(asset.path):
                target = self.storage.backup(asset.path, "delete")
            else:
                target = self.storage.backup_target(asset.path, "delete")
            return self.storage.write_backup_sidecar(target, json.dumps(sidecar, indent=2, default=str))
        except PhysicalIOError as e:
            logger.warning(f"Backup before delete failed for {asset.id}: {e.message}")
            return f"File {asset.id}: backup failed: {e.message}"
