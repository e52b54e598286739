"""
Admin file asset API endpoints: upload, details, content, bulk lifecycle
operations and storage maintenance.
"""
import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from asset_admin.core.auth import get_current_admin_user
from asset_admin.core.config import settings
from asset_admin.core.database import get_db
from asset_admin.core.dispatch import BackgroundDispatcher, get_dispatcher
from asset_admin.core.exceptions import (
    ConflictError,
    InternalError,
    NotFoundError,
    PartialBatchFailure,
    PhysicalIOError,
    ValidationError,
)
from asset_admin.models.file_asset import PermissionLevel
from asset_admin.models.user import User
from asset_admin.schemas.assets import (
    AssetFilter,
    BulkDeleteRequest,
    BulkUploadRequest,
    FileAssetResponse,
    FileAssetUpdate,
    FileDetailsResponse,
    MoveRequest,
    OrganizeRequest,
    UnusedFilesRequest,
    ValidateRequest,
)
from asset_admin.services.assets import FileAssetService
from asset_admin.services.batch import OperationReport
from asset_admin.services.bulk import BulkOperationService, UploadItem
from asset_admin.services.deletion import DeleteOptions
from asset_admin.services.integrity import IntegrityValidator, RepairOptions, ValidationChecks
from asset_admin.services.policy import ReferenceHandling, SafetyFlags
from asset_admin.services.storage import LocalStorage, get_storage
from asset_admin.services.unused import GracePeriod, UnusedFileFinder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin/files", tags=["files"])

# Refusals that a caller can lift by adding force or a confirmation flag
FORBIDDEN_CODES = {"COUNT_EXCEEDED", "CONFIRMATION_REQUIRED", "PROTECTED_DESTINATION"}


def _conflict(e: ConflictError) -> HTTPException:
    status_code = status.HTTP_403_FORBIDDEN if e.code in FORBIDDEN_CODES else status.HTTP_409_CONFLICT
    return HTTPException(
        status_code=status_code,
        detail=jsonable_encoder({"message": e.message, "code": e.code, "details": e.details}),
    )


def _report_response(report: OperationReport, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder(report.to_dict()))


def _split_tags(tags: Optional[str]):
    if not tags:
        return []
    return [tag for tag in tags.split(",") if tag.strip()]


@router.post("", response_model=FileAssetResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    category: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma-separated tags"),
    permission: PermissionLevel = Form(PermissionLevel.PUBLIC),
    description: Optional[str] = Form(None),
    alt_text: Optional[str] = Form(None),
    name_fa: Optional[str] = Form(None),
    description_fa: Optional[str] = Form(None),
    alt_text_fa: Optional[str] = Form(None),
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """
    Upload a file and create its metadata record.

    - **category**: Optional category; also used as the storage directory
    - **tags**: Comma-separated tags
    - **permission**: public, private or restricted
    """
    try:
        service = FileAssetService(db, storage)
        asset = await service.create_asset(
            content=await file.read(),
            filename=file.filename,
            content_type=file.content_type,
            uploaded_by=current_user.id,
            category=category,
            tags=_split_tags(tags),
            permission=permission,
            description=description,
            alt_text=alt_text,
            name_fa=name_fa,
            description_fa=description_fa,
            alt_text_fa=alt_text_fa,
        )
        return asset
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except (PhysicalIOError, InternalError) as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.post("/bulk-upload")
async def bulk_upload_files(
    files: List[UploadFile] = File(...),
    category: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma-separated tags"),
    permission: PermissionLevel = Form(PermissionLevel.PUBLIC),
    dry_run: bool = Form(False),
    batch_size: int = Form(settings.DEFAULT_BATCH_SIZE, ge=1, le=settings.MAX_BATCH_SIZE),
    continue_on_error: bool = Form(False),
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """
    Upload many files in batches with a result per file.

    The same category, tags and permission apply to every file. With
    **dry_run** each file is validated and previewed without being stored.
    """
    try:
        uploads = [UploadItem(f.filename, await f.read(), f.content_type) for f in files]
        request = BulkUploadRequest(
            category=category,
            tags=_split_tags(tags),
            permission=permission,
            dry_run=dry_run,
            batch_size=batch_size,
            continue_on_error=continue_on_error,
        )
        service = BulkOperationService(db, storage, user_id=str(current_user.id))
        report = await service.bulk_upload(uploads, request)
        return _report_response(report.raise_for_partial_failure())
    except PartialBatchFailure as e:
        return _report_response(e.report, status.HTTP_207_MULTI_STATUS)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except InternalError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.post("/bulk-delete")
async def bulk_delete_files(
    request: BulkDeleteRequest,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """
    Delete many files by id or filter.

    References are handled per **reference_handling**: check_and_fail
    (default), skip_referenced, clean_references or ignore_references.
    """
    try:
        service = BulkOperationService(db, storage, user_id=str(current_user.id))
        report = await service.bulk_delete(request)
        return _report_response(report.raise_for_partial_failure())
    except PartialBatchFailure as e:
        return _report_response(e.report, status.HTTP_207_MULTI_STATUS)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ConflictError as e:
        raise _conflict(e)
    except InternalError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.post("/move")
async def move_files(
    request: MoveRequest,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    dispatcher: BackgroundDispatcher = Depends(get_dispatcher)
):
    """
    Move files to another directory and/or category.

    Name collisions are handled per **handle_conflicts**: skip, overwrite,
    rename (default) or merge.
    """
    try:
        service = BulkOperationService(db, storage, dispatcher, user_id=str(current_user.id))
        report = await service.bulk_move(request)
        return _report_response(report.raise_for_partial_failure())
    except PartialBatchFailure as e:
        return _report_response(e.report, status.HTTP_207_MULTI_STATUS)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ConflictError as e:
        raise _conflict(e)
    except InternalError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.post("/organize")
async def organize_files(
    request: OrganizeRequest,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """Recategorize, retag and rename files by strategy."""
    try:
        service = BulkOperationService(db, storage, user_id=str(current_user.id))
        report = await service.bulk_organize(request)
        return _report_response(report.raise_for_partial_failure())
    except PartialBatchFailure as e:
        return _report_response(e.report, status.HTTP_207_MULTI_STATUS)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ConflictError as e:
        raise _conflict(e)
    except InternalError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.post("/validate")
async def validate_files(
    request: ValidateRequest,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """
    Check stored files against their metadata.

    With no ids and no filter every file is checked. Stored sizes are
    corrected only with **auto_repair**.
    """
    try:
        query = (request.filter or AssetFilter()).to_query(ids=request.file_ids)
        validator = IntegrityValidator(db, storage)
        report = await validator.validate(
            query,
            checks=ValidationChecks(
                physical_existence=request.check_physical_existence,
                file_sizes=request.check_file_sizes,
                paths=request.check_paths,
                permissions=request.check_permissions,
                metadata=request.check_metadata,
            ),
            repair=RepairOptions(
                auto_repair=request.auto_repair,
                update_file_sizes=request.update_file_sizes,
            ),
            dry_run=request.dry_run,
            batch_size=request.batch_size,
            continue_on_error=request.continue_on_error,
            max_processing_seconds=request.max_processing_time,
        )
        return _report_response(report.raise_for_partial_failure())
    except PartialBatchFailure as e:
        return _report_response(e.report, status.HTTP_207_MULTI_STATUS)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except InternalError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.post("/unused")
async def find_unused_files(
    request: UnusedFilesRequest,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """List unreferenced files older than the grace period. Read-only."""
    try:
        finder = UnusedFileFinder(db, storage)
        result = await finder.report(
            grace_period=GracePeriod(
                days=request.grace_period_days,
                hours=request.grace_period_hours,
                ignore_recent=request.ignore_recent,
            ),
            query=request.filter.to_query() if request.filter else None,
            sort_by=request.sort_by,
            limit=request.limit,
            offset=request.offset,
            include_file_details=request.include_file_details,
            include_analysis=request.include_analysis,
        )
        return result.to_dict()
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


@router.get("/{file_id}", response_model=FileDetailsResponse)
async def get_file(
    file_id: uuid.UUID,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    dispatcher: BackgroundDispatcher = Depends(get_dispatcher)
):
    """Get file metadata together with everything that references it."""
    try:
        service = FileAssetService(db, storage, dispatcher)
        asset, info = await service.get_details(file_id)
        response = FileDetailsResponse.model_validate(
            {**FileAssetResponse.model_validate(asset).model_dump(), "references": info.to_dict()}
        )
        return response
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.get("/{file_id}/content", response_class=FileResponse)
async def get_file_content(
    file_id: uuid.UUID,
    download: bool = Query(False, description="Send as an attachment instead of inline"),
    track: bool = Query(True, description="Count this access"),
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
    dispatcher: BackgroundDispatcher = Depends(get_dispatcher)
):
    """Serve the stored bytes of a file. Returns 404 when the blob is gone."""
    try:
        service = FileAssetService(db, storage, dispatcher)
        asset, location = await service.open_content(file_id, track=track)
        return FileResponse(
            location,
            media_type=asset.mime_type or None,
            filename=asset.name,
            content_disposition_type="attachment" if download else "inline",
            headers={"Cache-Control": f"private, max-age={settings.CONTENT_CACHE_SECONDS}"},
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except PhysicalIOError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.get("/{file_id}/references")
async def get_file_references(
    file_id: uuid.UUID,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """List the entities that reference a file."""
    try:
        service = FileAssetService(db, storage)
        info = await service.get_references(file_id)
        return info.to_dict()
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.patch("/{file_id}", response_model=FileAssetResponse)
async def update_file(
    file_id: uuid.UUID,
    update: FileAssetUpdate,
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """Update descriptive metadata. Only fields present in the body change."""
    try:
        service = FileAssetService(db, storage)
        return await service.update_metadata(file_id, update.model_dump(exclude_unset=True))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except InternalError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


@router.delete("/{file_id}")
async def delete_file(
    file_id: uuid.UUID,
    force: bool = Query(False),
    confirm: bool = Query(False),
    reference_handling: ReferenceHandling = Query(ReferenceHandling.CHECK_AND_FAIL),
    delete_physical_files: bool = Query(True),
    backup_before_delete: bool = Query(False),
    dry_run: bool = Query(False),
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage)
):
    """
    Delete one file under the same reference rules as bulk delete.

    Returns 409 with the referencing entities when the file is in use.
    """
    try:
        service = FileAssetService(db, storage)
        outcome = await service.delete_asset(
            file_id,
            flags=SafetyFlags(force=force, confirm=confirm, reference_handling=reference_handling),
            options=DeleteOptions(
                delete_physical_files=delete_physical_files,
                backup_before_delete=backup_before_delete,
                dry_run=dry_run,
            ),
            user_id=str(current_user.id),
        )
        return {"dry_run": dry_run, **outcome.to_dict()}
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ConflictError as e:
        raise _conflict(e)
    except InternalError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
