"""Machine snapshot (backup) API endpoints."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status

from flexo_api.api.deps import get_snapshot_service
from flexo_api.schemas.snapshot import (
    ArchivedProgram,
    ExportFormat,
    RestoreRequest,
    RestoreResult,
    SnapshotFilter,
    SnapshotInfo,
    SnapshotResult,
    SnapshotStats,
    SnapshotVerifyResponse,
)
from flexo_api.services.snapshot_service import (
    InvalidArchiveError,
    SnapshotNotFoundError,
    SnapshotRestoreError,
    SnapshotService,
    SnapshotServiceError,
    UnsupportedFormatError,
)
from flexo_api.storage import StorageError

logger = logging.getLogger(__name__)

router = APIRouter()

# Upload limit for imported archives
MAX_IMPORT_SIZE_MB = 50


def _http_error(e: Exception) -> HTTPException:
    """Translate a snapshot service error into an HTTP error."""
    if isinstance(e, SnapshotNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, (InvalidArchiveError, UnsupportedFormatError)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, StorageError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(e))


@router.post("", response_model=SnapshotResult, status_code=status.HTTP_201_CREATED)
async def create_snapshot(
    snapshot_filter: Optional[SnapshotFilter] = None,
    service: SnapshotService = Depends(get_snapshot_service),
):
    """
    Create a snapshot of the machine programs.

    - **start_date** / **end_date**: Program start time window (inclusive)
    - **machine_numbers**: Machines to include (default: all)
    - **statuses**: Statuses to include (default: all)
    - **description**: Free text description
    """
    try:
        return await service.create(snapshot_filter)
    except (SnapshotServiceError, StorageError) as e:
        raise _http_error(e)


@router.post("/daily", response_model=SnapshotResult, status_code=status.HTTP_201_CREATED)
async def create_daily_snapshot(service: SnapshotService = Depends(get_snapshot_service)):
    """Run the automatic daily snapshot now (yesterday's programs)."""
    try:
        return await service.create_daily()
    except (SnapshotServiceError, StorageError) as e:
        raise _http_error(e)


@router.get("", response_model=List[SnapshotInfo])
async def list_snapshots(service: SnapshotService = Depends(get_snapshot_service)):
    """List stored snapshots, newest first. Legacy archives are flagged invalid."""
    try:
        return await service.list_snapshots()
    except StorageError as e:
        raise _http_error(e)


@router.post("/import", response_model=SnapshotResult, status_code=status.HTTP_201_CREATED)
async def import_snapshot(
    file: UploadFile = File(..., description="Snapshot zip archive"),
    service: SnapshotService = Depends(get_snapshot_service),
):
    """
    Import a snapshot archive.

    The archive is stored under a new id and verified; invalid archives are
    rejected and not kept.
    """
    if not (file.filename or "").lower().endswith(".zip"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only .zip snapshot archives are allowed",
        )

    content = await file.read()
    file_size_mb = len(content) / (1024 * 1024)
    if file_size_mb > MAX_IMPORT_SIZE_MB:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large: {file_size_mb:.2f}MB (max {MAX_IMPORT_SIZE_MB}MB)",
        )

    try:
        return await service.import_archive(content, file.filename)
    except (SnapshotServiceError, StorageError) as e:
        raise _http_error(e)


@router.post("/{snapshot_id}/restore", response_model=RestoreResult)
async def restore_snapshot(
    snapshot_id: str,
    request: Optional[RestoreRequest] = None,
    service: SnapshotService = Depends(get_snapshot_service),
):
    """
    Restore machine programs from a snapshot.

    Existing programs with the same id are overwritten, missing ones are
    recreated. All or nothing.

    - **create_snapshot_first**: Snapshot the current ledger before
      restoring (default: true)
    """
    request = request or RestoreRequest()

    try:
        if not await service.verify_integrity(snapshot_id):
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} not found or corrupt")

        pre_restore_snapshot_id = None
        if request.create_snapshot_first:
            description = f"Before restoring {snapshot_id} - {datetime.utcnow():%Y-%m-%d %H:%M:%S}"
            result = await service.create(SnapshotFilter(description=description))
            pre_restore_snapshot_id = result.snapshot_id

        restored = await service.restore(snapshot_id)
    except SnapshotRestoreError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except (SnapshotServiceError, StorageError) as e:
        raise _http_error(e)

    return RestoreResult(
        snapshot_id=snapshot_id,
        restored_records=restored,
        restored_at=datetime.utcnow(),
        pre_restore_snapshot_id=pre_restore_snapshot_id,
    )


@router.get("/{snapshot_id}/verify", response_model=SnapshotVerifyResponse)
async def verify_snapshot(
    snapshot_id: str,
    service: SnapshotService = Depends(get_snapshot_service),
):
    """Check that a snapshot archive is complete and readable."""
    try:
        is_valid = await service.verify_integrity(snapshot_id)
    except StorageError as e:
        raise _http_error(e)
    return SnapshotVerifyResponse(snapshot_id=snapshot_id, is_valid=is_valid)


@router.get("/{snapshot_id}/export")
async def export_snapshot(
    snapshot_id: str,
    export_format: str = Query(ExportFormat.ZIP.value, alias="format", description="zip or json"),
    service: SnapshotService = Depends(get_snapshot_service),
):
    """
    Download a snapshot.

    - **format**: 'zip' for the archive as stored, 'json' for the program list
    """
    try:
        content = await service.export(snapshot_id, export_format)
    except (SnapshotServiceError, StorageError) as e:
        raise _http_error(e)

    if export_format == ExportFormat.JSON.value:
        media_type, filename = "application/json", f"{snapshot_id}.json"
    else:
        media_type, filename = "application/zip", f"{snapshot_id}.zip"

    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{snapshot_id}/stats", response_model=SnapshotStats)
async def get_snapshot_stats(
    snapshot_id: str,
    service: SnapshotService = Depends(get_snapshot_service),
):
    """Aggregates recomputed from the archived programs."""
    try:
        return await service.stats(snapshot_id)
    except (SnapshotServiceError, StorageError) as e:
        raise _http_error(e)


@router.get("/{snapshot_id}/data", response_model=List[ArchivedProgram])
async def get_snapshot_data(
    snapshot_id: str,
    service: SnapshotService = Depends(get_snapshot_service),
):
    """Archived program records, for reports."""
    try:
        return await service.load_programs(snapshot_id)
    except (SnapshotServiceError, StorageError) as e:
        raise _http_error(e)


@router.delete("/{snapshot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_snapshot(
    snapshot_id: str,
    service: SnapshotService = Depends(get_snapshot_service),
):
    """Delete a snapshot archive."""
    try:
        deleted = await service.delete(snapshot_id)
    except StorageError as e:
        raise _http_error(e)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Snapshot {snapshot_id} not found",
        )
