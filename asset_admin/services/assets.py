"""
Single file asset lifecycle: upload, details, metadata updates and delete.
"""
import logging
import mimetypes
import uuid
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.config import settings
from asset_admin.core.dispatch import BackgroundDispatcher
from asset_admin.core.exceptions import (
    ConflictError,
    InternalError,
    NotFoundError,
    PhysicalIOError,
    ServiceException,
    ValidationError,
)
from asset_admin.core.logging import FileOperationLogHandler
from asset_admin.models.file_asset import FileAsset, PermissionLevel
from asset_admin.services.batch import ItemOutcome
from asset_admin.services.deletion import AssetDeleter, DeleteOptions
from asset_admin.services.naming import sanitize_name
from asset_admin.services.organize import normalize_tags
from asset_admin.services.policy import PolicyAction, SafetyFlags, evaluate_item
from asset_admin.services.references import ReferenceInfo, ReferenceScanner
from asset_admin.services.repository import FileAssetRepository
from asset_admin.services.storage import LocalStorage, join_path

logger = logging.getLogger(__name__)
file_log = FileOperationLogHandler()

DESCRIPTIVE_FIELDS = ("description", "alt_text", "name_fa", "description_fa", "alt_text_fa")


class FileAssetService:
    """Service for managing individual file assets."""

    def __init__(
        self,
        db: AsyncSession,
        storage: LocalStorage,
        dispatcher: Optional[BackgroundDispatcher] = None
    ):
        self.db = db
        self.storage = storage
        self.dispatcher = dispatcher
        self.repository = FileAssetRepository(db)
        self.scanner = ReferenceScanner(db)

    async def create_asset(
        self,
        content: bytes,
        filename: str,
        content_type: Optional[str] = None,
        uploaded_by: Optional[uuid.UUID] = None,
        category: Optional[str] = None,
        tags=None,
        permission: PermissionLevel = PermissionLevel.PUBLIC,
        **descriptive: Optional[str]
    ) -> FileAsset:
        """
        Store an uploaded file and create its metadata record.

        The blob is written first; if the record cannot be saved the blob
        is removed again so no orphan is left behind.

        Raises:
            ValidationError: If the upload is empty, too large or unnamed
            InternalError: If the metadata record cannot be saved
        """
        _check_upload(content, filename, descriptive)

        file_id = uuid.uuid4()
        extension = PurePosixPath(filename).suffix.lower()
        category = _clean_category(category)
        path = join_path(_upload_dir(category), f"{file_id}{extension}")
        mime_type = _mime_type(filename, content_type)

        self.storage.write(path, content)

        try:
            asset = FileAsset(
                id=file_id,
                name=PurePosixPath(filename).name,
                mime_type=mime_type,
                size=len(content),
                path=path,
                url=self.storage.url_for(path),
                category=category,
                tags=normalize_tags(tags),
                permission=PermissionLevel(permission),
                custom_metadata={},
                uploaded_by=uploaded_by,
                **descriptive,
            )
            self.repository.add(asset)
            await self.db.commit()
        except Exception as e:
            logger.error(f"Error saving metadata for upload {filename}: {e}")
            await self.db.rollback()
            try:
                self.storage.remove(path)
            except PhysicalIOError as cleanup_error:
                logger.error(f"Could not remove orphaned upload {path}: {cleanup_error.message}")
            raise InternalError(f"Failed to upload file: {e}")

        await file_log.log_file_upload(
            file_name=asset.name,
            file_size=asset.size,
            mime_type=mime_type,
            user_id=str(uploaded_by) if uploaded_by else None,
            file_path=path,
            file_id=str(file_id),
        )
        logger.info(f"File uploaded successfully: {asset.name} -> {path}")
        return asset

    def preview_upload(
        self,
        content: bytes,
        filename: str,
        content_type: Optional[str] = None,
        category: Optional[str] = None,
        **descriptive: Optional[str]
    ) -> Dict[str, Any]:
        """Validate an upload like ``create_asset`` and describe the record without writing."""
        _check_upload(content, filename, descriptive)
        category = _clean_category(category)
        return {
            "name": PurePosixPath(filename).name,
            "size": len(content),
            "mime_type": _mime_type(filename, content_type),
            "category": category,
            "directory": _upload_dir(category),
        }

    async def get_asset(self, file_id: uuid.UUID) -> FileAsset:
        asset = await self.repository.get(file_id)
        if not asset:
            raise NotFoundError(f"File {file_id} not found")
        return asset

    async def get_references(self, file_id: uuid.UUID) -> ReferenceInfo:
        await self.get_asset(file_id)
        return await self.scanner.scan(file_id)

    async def get_details(self, file_id: uuid.UUID) -> Tuple[FileAsset, ReferenceInfo]:
        """Asset with its references; bumps the access counter in the background."""
        asset = await self.get_asset(file_id)
        info = await self.scanner.scan(file_id)
        if self.dispatcher is not None:
            self.dispatcher.submit_with_session(f"access:{file_id}", _access_recorder(file_id))
        return asset, info

    async def open_content(self, file_id: uuid.UUID, track: bool = True) -> Tuple[FileAsset, Path]:
        """
        Locate the stored blob of a file for serving.

        Raises:
            NotFoundError: If the record or its blob does not exist
            PhysicalIOError: If the blob cannot be inspected
        """
        asset = await self.get_asset(file_id)
        stat = self.storage.stat(asset.path) if self.storage.is_within_root(asset.path) else None
        if stat is None or not stat.is_file:
            raise NotFoundError(f"File {file_id} not found on disk")
        if track and self.dispatcher is not None:
            self.dispatcher.submit_with_session(f"access:{file_id}", _access_recorder(file_id))
        return asset, self.storage.resolve(asset.path)

    async def update_metadata(self, file_id: uuid.UUID, changes: Dict[str, Any]) -> FileAsset:
        """
        Apply a partial metadata update.

        Raises:
            NotFoundError: If the file does not exist
            ValidationError: If a field value is invalid
        """
        asset = await self.get_asset(file_id)
        try:
            if "name" in changes:
                name = (changes["name"] or "").strip()
                if not name:
                    raise ValidationError("File name cannot be empty")
                asset.name = name
            if "category" in changes:
                category = changes["category"]
                asset.category = category.strip() if category and category.strip() else None
            if "tags" in changes:
                asset.tags = normalize_tags(changes["tags"])
            if "permission" in changes:
                try:
                    asset.permission = PermissionLevel(changes["permission"])
                except ValueError:
                    raise ValidationError(f"Invalid permission: {changes['permission']}")
            for field_name in DESCRIPTIVE_FIELDS:
                if field_name in changes:
                    setattr(asset, field_name, changes[field_name])
            if "custom_metadata" in changes:
                asset.custom_metadata = dict(changes["custom_metadata"] or {})

            await self.db.commit()
            logger.info(f"Metadata updated for file {file_id}: {sorted(changes)}")
            return asset

        except ServiceException:
            await self.db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error updating file {file_id}: {e}")
            await self.db.rollback()
            raise InternalError(f"Failed to update file: {e}")

    async def delete_asset(
        self,
        file_id: uuid.UUID,
        flags: SafetyFlags = SafetyFlags(),
        options: DeleteOptions = DeleteOptions(),
        user_id: Optional[str] = None
    ) -> ItemOutcome:
        """
        Delete one file under the same reference policy as bulk delete.

        Raises:
            NotFoundError: If the file does not exist
            ConflictError: If the policy rejects or skips the file
        """
        asset = await self.get_asset(file_id)
        info = await self.scanner.scan(file_id)
        decision = evaluate_item(info, flags)
        if decision.action == PolicyAction.SKIP:
            raise ConflictError(
                f"File {file_id} is referenced and was not deleted: {decision.reason}",
                code="REFERENCED",
                details={"file_id": str(file_id), "references": [ref.to_dict() for ref in info.refs()]},
            )
        deleter = AssetDeleter(self.db, self.storage, self.scanner, user_id=user_id)
        return await deleter.delete(asset, info, decision, options)


def _check_upload(content: bytes, filename: str, descriptive: Dict[str, Any]) -> None:
    if not filename or not filename.strip():
        raise ValidationError("Filename is required")
    if not content:
        raise ValidationError("Uploaded file is empty")
    if len(content) > settings.MAX_FILE_SIZE:
        raise ValidationError(f"File size {len(content)} exceeds maximum allowed size")
    unknown = set(descriptive) - set(DESCRIPTIVE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown metadata fields: {', '.join(sorted(unknown))}")


def _clean_category(category: Optional[str]) -> Optional[str]:
    return category.strip() if category and category.strip() else None


def _upload_dir(category: Optional[str]) -> str:
    return "/" + sanitize_name(category) if category else "/uploads"


def _mime_type(filename: str, content_type: Optional[str]) -> str:
    return content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"


def _access_recorder(file_id: uuid.UUID):
    async def record(session: AsyncSession) -> None:
        await session.execute(
            update(FileAsset)
            .where(FileAsset.id == file_id)
            .values(
                access_count=FileAsset.access_count + 1,
                last_accessed_at=datetime.now(timezone.utc),
            )
        )
    return record
