"""
Bulk upload, delete, move and organize.

Every operation on existing files follows the same outline: resolve targets
once, apply the batch-level safety rules to the resolved count, then hand the
targets to a ``BatchExecutor`` with a per-item handler.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.config import settings
from asset_admin.core.dispatch import BackgroundDispatcher
from asset_admin.core.exceptions import ConflictError, NotFoundError, ValidationError
from asset_admin.core.logging import FileOperationLogHandler
from asset_admin.models.file_asset import FileAsset
from asset_admin.schemas.assets import (
    AssetFilter,
    BulkDeleteRequest,
    BulkUploadRequest,
    MoveRequest,
    OrganizeRequest,
)
from asset_admin.services.assets import FileAssetService
from asset_admin.services.batch import BatchExecutor, ItemOutcome, OperationReport
from asset_admin.services.conflicts import ConflictResolver, MoveExecutor, MoveOptions, MoveStrategy
from asset_admin.services.deletion import AssetDeleter, DeleteOptions
from asset_admin.services.naming import validate_template
from asset_admin.services.organize import NamingRule, OrganizePlan, Organizer
from asset_admin.services.policy import (
    Decision,
    OperationKind,
    PolicyAction,
    SafetyFlags,
    check_batch,
    check_destination,
    evaluate_item,
)
from asset_admin.services.references import ReferenceInfo, ReferenceScanner
from asset_admin.services.repository import FileAssetRepository
from asset_admin.services.storage import LocalStorage

logger = logging.getLogger(__name__)
file_log = FileOperationLogHandler()


@dataclass(frozen=True)
class UploadItem:
    filename: str
    content: bytes
    content_type: Optional[str] = None


class BulkOperationService:
    """Service for multi-file operations."""

    def __init__(
        self,
        db: AsyncSession,
        storage: LocalStorage,
        dispatcher: Optional[BackgroundDispatcher] = None,
        user_id: Optional[str] = None
    ):
        self.db = db
        self.storage = storage
        self.dispatcher = dispatcher
        self.user_id = user_id
        self.repository = FileAssetRepository(db)
        self.scanner = ReferenceScanner(db)

    async def resolve_targets(
        self,
        file_ids: Optional[List[uuid.UUID]],
        asset_filter: Optional[AssetFilter]
    ) -> List[FileAsset]:
        """
        Resolve explicit ids and/or a filter to assets, once.

        Raises:
            ValidationError: If neither ids nor a filter is given
            NotFoundError: If any explicit id does not exist
        """
        if not file_ids and asset_filter is None:
            raise ValidationError("Either file_ids or filter is required")

        if file_ids:
            _, missing = await self.repository.get_many(list(dict.fromkeys(file_ids)))
            if missing:
                raise NotFoundError(f"Files not found: {', '.join(str(m) for m in missing)}")

        query = (asset_filter or AssetFilter()).to_query(ids=file_ids or None)
        assets = await self.repository.find(query)

        if query.unused_only:
            unused = []
            for asset in assets:
                if not (await self.scanner.scan(asset.id)).has_references:
                    unused.append(asset)
            assets = unused
        return assets

    def _executor(self, operation: str, request) -> BatchExecutor:
        return BatchExecutor(
            operation,
            batch_size=request.batch_size,
            continue_on_error=request.continue_on_error,
            dry_run=request.dry_run,
            max_processing_seconds=request.max_processing_time,
        )

    async def _load(self, file_id: uuid.UUID) -> FileAsset:
        # Re-load per item: a rollback on an earlier item expires loaded instances
        asset = await self.repository.get(file_id)
        if asset is None:
            raise NotFoundError(f"File {file_id} no longer exists")
        return asset

    async def _finish(self, report: OperationReport) -> OperationReport:
        await file_log.log_bulk_operation(report, user_id=self.user_id)
        return report

    async def bulk_delete(self, request: BulkDeleteRequest) -> OperationReport:
        """
        Delete many files under the reference policy.

        Raises:
            ValidationError: If no targets were specified
            NotFoundError: If an explicit id does not exist
            ConflictError: When the batch rules refuse the call, or a target
                is rejected and ``abort_on_reference_conflict`` is set
        """
        flags = SafetyFlags(
            force=request.force,
            confirm=request.confirm,
            confirm_bulk=request.confirm_bulk_delete,
            reference_handling=request.reference_handling,
        )
        options = DeleteOptions(
            delete_physical_files=request.delete_physical_files,
            backup_before_delete=request.backup_before_delete,
            dry_run=request.dry_run,
        )
        executor = self._executor("bulk_delete", request)

        async with self.scanner.batch_cache():
            targets = await self.resolve_targets(request.file_ids, request.filter)
            if not targets:
                report = executor.new_report()
                report.warnings.append("No files matched the request")
                return await self._finish(report)

            check_batch(OperationKind.DELETE, len(targets), flags, request.max_files_limit)

            plan: Dict[uuid.UUID, Tuple[ReferenceInfo, Decision]] = {}
            for asset in targets:
                info = await self.scanner.scan(asset.id)
                plan[asset.id] = (info, evaluate_item(info, flags))

            rejected = [
                (asset, info, decision)
                for asset in targets
                for info, decision in [plan[asset.id]]
                if decision.action == PolicyAction.REJECT
            ]
            if rejected and request.abort_on_reference_conflict:
                raise ConflictError(
                    f"{len(rejected)} of {len(targets)} files are referenced; nothing was deleted",
                    code="REFERENCED",
                    details={
                        "files": [
                            {
                                "file_id": str(asset.id),
                                "name": asset.name,
                                "reason": decision.reason,
                                "require_confirmation": decision.require_confirmation,
                                "references": [ref.to_dict() for ref in info.refs()],
                            }
                            for asset, info, decision in rejected
                        ]
                    },
                )

            deleter = AssetDeleter(self.db, self.storage, self.scanner, user_id=self.user_id)

            async def handle(file_id: uuid.UUID) -> ItemOutcome:
                asset = await self._load(file_id)
                info, decision = plan[file_id]
                return await deleter.delete(asset, info, decision, options)

            report = await executor.run([asset.id for asset in targets], handle)

        report.summary.update({
            "freed_bytes": report.totals.get("freed_bytes", 0),
            "references_cleared": report.totals.get("references_cleared", 0),
            "reference_handling": request.reference_handling.value,
            "physical_files_deleted": request.delete_physical_files,
        })
        return await self._finish(report)

    async def bulk_move(self, request: MoveRequest) -> OperationReport:
        """
        Move files to a new directory and/or category.

        Raises:
            ValidationError: If no destination is given
            NotFoundError: If a file id does not exist
            ConflictError: When the batch rules refuse the call or the
                destination is protected
        """
        options = MoveOptions(
            destination_path=request.destination_path,
            destination_category=request.destination_category,
            move_strategy=request.move_strategy,
            conflict_strategy=request.handle_conflicts,
            preserve_names=request.preserve_names,
            rename_pattern=request.rename_pattern,
            create_directories=request.create_directories,
            backup_before_move=request.backup_before_move,
            verify_after_move=request.verify_after_move,
            update_references=request.update_references,
            dry_run=request.dry_run,
        )
        flags = SafetyFlags(force=request.force, confirm_bulk=request.confirm_move)

        if options.move_strategy == MoveStrategy.CATEGORY_ONLY:
            if not request.destination_category:
                raise ValidationError("destination_category is required for category_only moves")
        else:
            check_destination(options.destination_dir, flags)
        if options.rename_pattern:
            validate_template(options.rename_pattern)

        targets = await self.resolve_targets(request.file_ids, None)
        check_batch(OperationKind.MOVE, len(targets), flags)

        resolver = ConflictResolver(self.storage, self.repository)
        mover = MoveExecutor(self.db, self.storage, resolver, self.dispatcher, user_id=self.user_id)

        async def handle(file_id: uuid.UUID) -> ItemOutcome:
            return await mover.execute(await self._load(file_id), options)

        report = await self._executor("bulk_move", request).run([asset.id for asset in targets], handle)
        report.summary.update({
            "destination_path": None if options.move_strategy == MoveStrategy.CATEGORY_ONLY else options.destination_dir,
            "destination_category": request.destination_category,
            "move_strategy": options.move_strategy.value,
            "conflict_strategy": options.conflict_strategy.value,
            "renamed": sum(1 for item in report.items if item.changes.get("renamed")),
        })
        return await self._finish(report)

    async def bulk_organize(self, request: OrganizeRequest) -> OperationReport:
        """
        Reorganize file metadata by strategy, tags, permission and naming.

        Raises:
            ValidationError: If the request is incomplete or changes nothing
            NotFoundError: If an explicit id does not exist
            ConflictError: When the batch rules refuse the call
        """
        naming = None
        if request.naming_convention is not None:
            naming = NamingRule(
                pattern=request.naming_convention.pattern,
                date_format=request.naming_convention.date_format,
                sanitize=request.naming_convention.sanitize,
            )
        plan = OrganizePlan(
            strategy=request.strategy,
            target_category=request.target_category,
            type_mapping={k.lower(): v for k, v in request.type_mapping.items()},
            separate_by_type=request.separate_by_type,
            date_granularity=request.date_granularity,
            unused_category=request.unused_category,
            used_category=request.used_category,
            apply_tags=tuple(request.apply_tags),
            remove_tags=tuple(request.remove_tags),
            set_permission=request.set_permission,
            naming=naming,
            preserve_original_names=request.preserve_original_names,
            backup_metadata=request.backup_metadata,
            dry_run=request.dry_run,
        )
        plan.validate()

        async with self.scanner.batch_cache():
            targets = await self.resolve_targets(request.file_ids, request.filter)
            check_batch(OperationKind.ORGANIZE, len(targets), SafetyFlags(force=request.force))

            organizer = Organizer(self.db, self.scanner)

            async def handle(file_id: uuid.UUID) -> ItemOutcome:
                return await organizer.apply(await self._load(file_id), plan)

            report = await self._executor("bulk_organize", request).run([asset.id for asset in targets], handle)

        if not targets:
            report.warnings.append("No files matched the request")
        report.summary.update({
            "strategy": request.strategy.value if request.strategy else None,
            "changed_fields": sorted({key for item in report.items for key in item.changes}),
        })
        return await self._finish(report)

    async def bulk_upload(self, uploads: List[UploadItem], request: BulkUploadRequest) -> OperationReport:
        """
        Store many uploads with one record each and a result per file.

        Under dry run every upload is validated and previewed, nothing is
        written.

        Raises:
            ValidationError: If no files were sent or too many were sent
        """
        if not uploads:
            raise ValidationError("No files provided for upload")
        if len(uploads) > settings.BULK_UPLOAD_MAX_FILES:
            raise ValidationError(
                f"Too many files: {len(uploads)} sent, at most {settings.BULK_UPLOAD_MAX_FILES} allowed"
            )

        assets = FileAssetService(self.db, self.storage)
        uploaded_by = uuid.UUID(self.user_id) if self.user_id else None

        async def handle(upload: UploadItem) -> ItemOutcome:
            if request.dry_run:
                preview = assets.preview_upload(
                    upload.content, upload.filename, upload.content_type, category=request.category
                )
                return ItemOutcome(item_id=upload.filename, after=preview)
            asset = await assets.create_asset(
                content=upload.content,
                filename=upload.filename,
                content_type=upload.content_type,
                uploaded_by=uploaded_by,
                category=request.category,
                tags=request.tags,
                permission=request.permission,
            )
            return ItemOutcome(
                item_id=upload.filename,
                after={
                    "id": str(asset.id),
                    "name": asset.name,
                    "path": asset.path,
                    "url": asset.url,
                    "size": asset.size,
                    "mime_type": asset.mime_type,
                    "category": asset.category,
                },
            )

        report = await self._executor("bulk_upload", request).run(
            uploads, handle, item_id=lambda upload: upload.filename or "unnamed"
        )
        report.summary.update({
            "category": request.category,
            "uploaded_bytes": sum(item.after["size"] for item in report.items if item.after),
        })
        return await self._finish(report)
