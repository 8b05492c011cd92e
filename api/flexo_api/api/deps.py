"""API dependencies."""

from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from flexo_api.database import SessionLocal
from flexo_api.notifications import ProgramNotifier, get_notifier
from flexo_api.services.program_service import MachineProgramService
from flexo_api.services.snapshot_service import SnapshotService
from flexo_api.storage import BaseStorageDriver, StorageError, get_storage_driver


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> Optional[int]:
    """Get the acting user ID from header (optional)."""
    if not x_actor_id:
        return None
    try:
        return int(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Actor-ID header must be an integer",
        )


def get_program_notifier() -> ProgramNotifier:
    """Get the process-wide change notifier."""
    return get_notifier()


def get_program_service(
    db: Session = Depends(get_db),
    notifier: ProgramNotifier = Depends(get_program_notifier),
) -> MachineProgramService:
    """Get the program lifecycle service for this request."""
    return MachineProgramService(db, notifier)


def get_archive_storage() -> BaseStorageDriver:
    """Get the snapshot archive storage driver."""
    try:
        return get_storage_driver()
    except StorageError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Snapshot storage unavailable: {str(e)}",
        )


def get_snapshot_service(
    db: Session = Depends(get_db),
    storage: BaseStorageDriver = Depends(get_archive_storage),
) -> SnapshotService:
    """Get the snapshot service for this request."""
    return SnapshotService(db, storage)
