"""
File asset schemas for API request/response models.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, validator

from asset_admin.core.config import settings
from asset_admin.models.file_asset import PermissionLevel
from asset_admin.services.conflicts import ConflictStrategy, MoveStrategy
from asset_admin.services.organize import DateGranularity, OrganizeStrategy
from asset_admin.services.policy import ReferenceHandling
from asset_admin.services.repository import AssetQuery, AssetQueryBuilder
from asset_admin.services.unused import SortOrder


class AssetFilter(BaseModel):
    """Filter selecting target files when explicit ids are not given."""
    category: Optional[str] = Field(None, description="Exact category")
    categories: Optional[List[str]] = Field(None, description="Any of these categories")
    file_type: Optional[str] = Field(None, description="Substring of the MIME type, e.g. 'image'")
    mime_types: Optional[List[str]] = None
    size_min: Optional[int] = Field(None, ge=0)
    size_max: Optional[int] = Field(None, ge=0)
    uploaded_after: Optional[datetime] = None
    uploaded_before: Optional[datetime] = None
    older_than_days: Optional[int] = Field(None, ge=0, description="Only files uploaded at least this many days ago")
    uploader_ids: Optional[List[uuid.UUID]] = None
    permissions: Optional[List[PermissionLevel]] = None
    has_category: Optional[bool] = None
    has_tags: Optional[bool] = None
    tags_include: Optional[List[str]] = None
    unused_only: bool = False

    def to_query(self, ids: Optional[List[uuid.UUID]] = None, now: Optional[datetime] = None) -> AssetQuery:
        before = self.uploaded_before
        if self.older_than_days is not None:
            age_cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=self.older_than_days)
            if before is None or _aware(before) > age_cutoff:
                before = age_cutoff
        return (
            AssetQueryBuilder()
            .ids(ids)
            .categories(([self.category] if self.category else []) + (self.categories or []))
            .file_type(self.file_type)
            .mime_types(self.mime_types)
            .size_range(self.size_min, self.size_max)
            .uploaded_between(self.uploaded_after, before)
            .uploaders(self.uploader_ids)
            .permissions(self.permissions)
            .has_category(self.has_category)
            .has_tags(self.has_tags)
            .tags_include(self.tags_include)
            .unused_only(self.unused_only)
            .build()
        )


def _aware(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class BatchOptions(BaseModel):
    """Processing options shared by every bulk operation."""
    dry_run: bool = Field(default=False, description="Report what would happen without changing anything")
    batch_size: int = Field(default=settings.DEFAULT_BATCH_SIZE, ge=1, le=settings.MAX_BATCH_SIZE)
    continue_on_error: bool = Field(default=False)
    max_processing_time: Optional[float] = Field(None, gt=0, description="Soft deadline in seconds")


class BulkUploadRequest(BatchOptions):
    """Options applied to every file of a bulk upload."""
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    permission: PermissionLevel = PermissionLevel.PUBLIC


class BulkDeleteRequest(BatchOptions):
    """Schema for bulk file deletion."""
    file_ids: Optional[List[uuid.UUID]] = None
    filter: Optional[AssetFilter] = None
    force: bool = False
    confirm: bool = False
    confirm_bulk_delete: bool = False
    max_files_limit: Optional[int] = Field(None, ge=1)
    reference_handling: ReferenceHandling = ReferenceHandling.CHECK_AND_FAIL
    delete_physical_files: bool = True
    backup_before_delete: bool = False
    abort_on_reference_conflict: bool = True

    @validator('file_ids')
    def validate_file_ids(cls, v):
        if v is not None and len(v) == 0:
            raise ValueError('file_ids must not be empty')
        return v


class MoveRequest(BatchOptions):
    """Schema for moving files to another directory or category."""
    file_ids: List[uuid.UUID] = Field(..., min_length=1)
    destination_path: Optional[str] = None
    destination_category: Optional[str] = None
    move_strategy: MoveStrategy = MoveStrategy.BOTH
    handle_conflicts: ConflictStrategy = ConflictStrategy.RENAME
    preserve_names: bool = True
    rename_pattern: Optional[str] = None
    create_directories: bool = True
    backup_before_move: bool = False
    verify_after_move: bool = True
    update_references: bool = True
    force: bool = False
    confirm_move: bool = False

    @validator('destination_path')
    def validate_destination_path(cls, v):
        if v is None:
            return v
        v = v.strip()
        if '..' in v or '//' in v:
            raise ValueError('Destination path must not contain .. or //')
        return v if v.startswith('/') else '/' + v


class NamingConventionSchema(BaseModel):
    pattern: str = Field(..., min_length=1, description="e.g. '{date}_{original}'")
    date_format: str = "YYYY-MM-DD"
    sanitize: bool = True


class OrganizeRequest(BatchOptions):
    """Schema for bulk metadata organization."""
    file_ids: Optional[List[uuid.UUID]] = None
    filter: Optional[AssetFilter] = None
    strategy: Optional[OrganizeStrategy] = None
    target_category: Optional[str] = None
    type_mapping: Dict[str, str] = Field(default_factory=dict)
    separate_by_type: bool = True
    date_granularity: DateGranularity = DateGranularity.MONTH
    unused_category: str = "unused"
    used_category: str = "in-use"
    apply_tags: List[str] = Field(default_factory=list)
    remove_tags: List[str] = Field(default_factory=list)
    set_permission: Optional[PermissionLevel] = None
    naming_convention: Optional[NamingConventionSchema] = None
    preserve_original_names: bool = False
    backup_metadata: bool = False
    force: bool = False


class ValidateRequest(BatchOptions):
    """Schema for storage integrity validation."""
    file_ids: Optional[List[uuid.UUID]] = None
    filter: Optional[AssetFilter] = None
    check_physical_existence: bool = True
    check_file_sizes: bool = True
    check_paths: bool = True
    check_permissions: bool = True
    check_metadata: bool = True
    auto_repair: bool = False
    update_file_sizes: bool = True
    continue_on_error: bool = True


class UnusedFilesRequest(BaseModel):
    """Schema for the unused file search."""
    grace_period_days: Optional[int] = Field(None, ge=0)
    grace_period_hours: Optional[int] = Field(None, ge=0)
    ignore_recent: bool = True
    filter: Optional[AssetFilter] = None
    sort_by: SortOrder = SortOrder.SIZE_DESC
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    include_file_details: bool = False
    include_analysis: bool = True


class FileAssetUpdate(BaseModel):
    """Schema for partial metadata updates."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[str] = Field(None, max_length=100)
    tags: Optional[List[str]] = None
    permission: Optional[PermissionLevel] = None
    description: Optional[str] = None
    alt_text: Optional[str] = Field(None, max_length=500)
    name_fa: Optional[str] = Field(None, max_length=255)
    description_fa: Optional[str] = None
    alt_text_fa: Optional[str] = Field(None, max_length=500)
    custom_metadata: Optional[Dict[str, Any]] = None

    @validator('name')
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError('Name cannot be empty')
        return v.strip() if v else v

    @validator('tags')
    def validate_tags(cls, v):
        if v is None:
            return v
        return [tag for tag in v if isinstance(tag, str) and len(tag.strip()) <= 50]


class FileAssetResponse(BaseModel):
    """File asset response model."""
    id: uuid.UUID
    name: str
    mime_type: str
    size: int
    path: str
    url: str
    category: Optional[str] = None
    tags: List[str] = []
    permission: PermissionLevel
    description: Optional[str] = None
    alt_text: Optional[str] = None
    name_fa: Optional[str] = None
    description_fa: Optional[str] = None
    alt_text_fa: Optional[str] = None
    custom_metadata: Dict[str, Any] = {}
    uploaded_by: Optional[uuid.UUID] = None
    access_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FileDetailsResponse(FileAssetResponse):
    references: Dict[str, Any]
