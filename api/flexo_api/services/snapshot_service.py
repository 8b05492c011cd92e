"""Machine program snapshot service.

Snapshots are immutable zip archives of the program ledger, kept in the
configured archive storage under ``<snapshot_id>.zip``. This service
creates, lists, verifies, exports, imports, restores and deletes them.
"""

import json
import logging
import re
import uuid
from collections import Counter
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterator, List, Optional, Union

from sqlalchemy.orm import Session

from flexo_api.config import Settings, settings
from flexo_api.database import SessionLocal
from flexo_api.models.machine_program import MachineProgram
from flexo_api.schemas.snapshot import (
    ArchivedProgram,
    ExportFormat,
    SnapshotData,
    SnapshotFilter,
    SnapshotInfo,
    SnapshotMetadata,
    SnapshotResult,
    SnapshotStats,
)
from flexo_api.services import program_store
from flexo_api.services.snapshot_archive import (
    ArchiveFormatError,
    build_archive,
    is_complete,
    load_data,
    load_metadata,
    summarize_programs,
)
from flexo_api.storage.base import BaseStorageDriver
from flexo_api.storage.factory import get_storage_driver

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = ".zip"
LEGACY_DESCRIPTION = "Legacy snapshot without metadata"

_SNAPSHOT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

# Fields copied from an archived record onto a stored program during restore
_RESTORED_FIELDS = [
    field for field in ArchivedProgram.model_fields if field not in ("id", "status")
]


class SnapshotServiceError(Exception):
    """Base exception for snapshot service errors."""
    pass


class SnapshotNotFoundError(SnapshotServiceError):
    """Snapshot archive not found or its data is unreadable."""
    pass


class InvalidArchiveError(SnapshotServiceError):
    """Archive is corrupt or incomplete."""
    pass


class UnsupportedFormatError(SnapshotServiceError):
    """Export format is not supported."""
    pass


class SnapshotRestoreError(SnapshotServiceError):
    """Restore failed and was rolled back."""
    pass


def generate_snapshot_id(prefix: str = "snapshot", now: Optional[datetime] = None) -> str:
    """Build a unique id like ``snapshot_20240131_235959_1a2b3c4d``."""
    now = now or datetime.utcnow()
    return f"{prefix}_{now:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}"


def archive_name(snapshot_id: str) -> str:
    return f"{snapshot_id}{ARCHIVE_EXTENSION}"


class SnapshotService:
    """
    Snapshot lifecycle over the program ledger and the archive storage.

    Attributes:
        db: Database session (read for create, written by restore)
        storage: Archive storage driver
        config: Settings providing format and application versions
    """

    def __init__(self, db: Session, storage: BaseStorageDriver, config: Settings = settings):
        self.db = db
        self.storage = storage
        self.config = config

    async def create(self, snapshot_filter: Optional[SnapshotFilter] = None) -> SnapshotResult:
        """
        Create a snapshot of the programs matching ``snapshot_filter``.

        The archive is packaged once in memory with its final size recorded
        in the metadata, then written to storage in a single call.

        Args:
            snapshot_filter: Date range, machines and statuses to include
                (everything when omitted)

        Returns:
            Snapshot id, record count and archive size
        """
        snapshot_filter = snapshot_filter or SnapshotFilter()
        now = datetime.utcnow()
        snapshot_id = generate_snapshot_id(now=now)
        description = snapshot_filter.description or f"Manual snapshot - {now:%Y-%m-%d %H:%M:%S}"

        rows = program_store.query_programs_for_snapshot(
            self.db,
            start_date=snapshot_filter.start_date,
            end_date=snapshot_filter.end_date,
            machine_numbers=snapshot_filter.machine_numbers,
            statuses=snapshot_filter.statuses,
        )
        programs = [ArchivedProgram.model_validate(row) for row in rows]
        machine_numbers, date_range, status_breakdown = summarize_programs(programs)

        data = SnapshotData(
            snapshot_id=snapshot_id,
            created_at=now,
            description=description,
            machine_programs=programs,
            total_records=len(programs),
        )
        metadata = SnapshotMetadata(
            snapshot_id=snapshot_id,
            created_at=now,
            description=description,
            total_records=len(programs),
            machine_numbers=machine_numbers,
            date_range=date_range,
            status_breakdown=status_breakdown,
            format_version=self.config.snapshot_format_version,
            application_version=self.config.application_version,
        )

        try:
            content, metadata = build_archive(data, metadata)
        except ArchiveFormatError as e:
            raise SnapshotServiceError(str(e))

        await self.storage.upload_file(archive_name(snapshot_id), content)

        logger.info(
            f"Created snapshot {snapshot_id}: {len(programs)} programs, {metadata.size_bytes} bytes"
        )
        return SnapshotResult(
            snapshot_id=snapshot_id,
            total_records=len(programs),
            size_bytes=metadata.size_bytes,
            created_at=now,
            message="Snapshot created successfully",
        )

    async def create_daily(self) -> SnapshotResult:
        """Snapshot the programs started between yesterday 00:00 and today 00:00."""
        today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
        yesterday = today - timedelta(days=1)

        return await self.create(
            SnapshotFilter(
                description=f"Automatic daily snapshot - {today:%Y-%m-%d}",
                start_date=yesterday,
                end_date=today,
            )
        )

    async def list_snapshots(self) -> List[SnapshotInfo]:
        """
        List every archive in storage, newest first.

        Archives without a readable metadata entry are listed as legacy
        snapshots with ``is_valid`` False.
        """
        snapshots = []

        for file_info in await self.storage.list_files(f"*{ARCHIVE_EXTENSION}"):
            snapshot_id = file_info.name[: -len(ARCHIVE_EXTENSION)]

            try:
                content = await self.storage.download_file(file_info.path)
            except FileNotFoundError:
                continue

            try:
                metadata = load_metadata(content)
            except ArchiveFormatError as e:
                logger.warning(f"Unreadable metadata in {file_info.name}: {e}")
                metadata = None

            if metadata is None:
                snapshots.append(
                    SnapshotInfo(
                        snapshot_id=snapshot_id,
                        description=LEGACY_DESCRIPTION,
                        created_at=file_info.modified_at,
                        total_records=0,
                        size_bytes=file_info.size_bytes,
                        machine_count=0,
                        is_valid=False,
                    )
                )
                continue

            snapshots.append(
                SnapshotInfo(
                    snapshot_id=snapshot_id,
                    description=metadata.description,
                    created_at=metadata.created_at,
                    total_records=metadata.total_records,
                    size_bytes=metadata.size_bytes or file_info.size_bytes,
                    machine_count=len(metadata.machine_numbers),
                    date_range=metadata.date_range,
                    status_breakdown=metadata.status_breakdown,
                    is_valid=True,
                )
            )

        snapshots.sort(key=lambda info: info.created_at, reverse=True)
        return snapshots

    async def restore(self, snapshot_id: str) -> int:
        """
        Write the archived programs back into the ledger.

        Records whose id exists are overwritten, the rest are inserted with
        their archived id. All records are applied in one transaction.

        Returns:
            Number of restored records

        Raises:
            SnapshotNotFoundError: If the archive or its data is missing
            SnapshotRestoreError: If applying the records failed (nothing
                was changed)
        """
        content = await self._read_archive(snapshot_id)
        try:
            data = load_data(content)
        except ArchiveFormatError as e:
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} has no readable data: {e}")

        now = datetime.utcnow()
        try:
            for record in data.machine_programs:
                self._apply_record(record, now)
            self.db.flush()
            program_store.sync_id_sequence(self.db)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Restore of snapshot {snapshot_id} failed, rolled back: {e}", exc_info=True)
            raise SnapshotRestoreError(f"Failed to restore snapshot {snapshot_id}: {e}") from e

        self.db.expire_all()
        logger.info(f"Restored {len(data.machine_programs)} programs from snapshot {snapshot_id}")
        return len(data.machine_programs)

    async def verify_integrity(self, snapshot_id: str) -> bool:
        """
        Check that both archive documents are present and parseable.

        Returns False for missing or corrupt archives. Storage I/O errors
        propagate.
        """
        if not _SNAPSHOT_ID_PATTERN.match(snapshot_id):
            return False

        try:
            content = await self.storage.download_file(archive_name(snapshot_id))
        except FileNotFoundError:
            return False

        return is_complete(content)

    async def export(
        self,
        snapshot_id: str,
        export_format: Union[ExportFormat, str] = ExportFormat.ZIP,
    ) -> bytes:
        """
        Export a snapshot.

        ``zip`` returns the archive bytes unchanged. ``json`` returns the
        archived program records as a flat JSON list.

        Raises:
            UnsupportedFormatError: If the format is unknown
            SnapshotNotFoundError: If the archive does not exist
            InvalidArchiveError: If a json export hits a corrupt archive
        """
        try:
            export_format = ExportFormat(export_format)
        except ValueError:
            raise UnsupportedFormatError(f"Unsupported export format: {export_format}")

        content = await self._read_archive(snapshot_id)
        if export_format is ExportFormat.ZIP:
            return content

        data = self._load_data(snapshot_id, content)
        records = [record.model_dump(mode="json") for record in data.machine_programs]
        return json.dumps(records, indent=2, ensure_ascii=False).encode("utf-8")

    async def import_archive(self, content: bytes, filename: str) -> SnapshotResult:
        """
        Store an uploaded archive under a new id and verify it.

        Raises:
            InvalidArchiveError: If the archive fails verification (the
                stored copy is removed again)
        """
        now = datetime.utcnow()
        snapshot_id = generate_snapshot_id(prefix="imported", now=now)

        await self.storage.upload_file(archive_name(snapshot_id), content)

        if not await self.verify_integrity(snapshot_id):
            await self.storage.delete_file(archive_name(snapshot_id))
            logger.warning(f"Rejected invalid snapshot archive {filename}")
            raise InvalidArchiveError(f"{filename} is not a valid snapshot archive")

        metadata = load_metadata(content)
        logger.info(f"Imported snapshot archive {filename} as {snapshot_id}")
        return SnapshotResult(
            snapshot_id=snapshot_id,
            total_records=metadata.total_records,
            size_bytes=len(content),
            created_at=now,
            message=f"Imported from {filename}",
        )

    async def delete(self, snapshot_id: str) -> bool:
        """Delete a snapshot archive. Returns False if it did not exist."""
        if not _SNAPSHOT_ID_PATTERN.match(snapshot_id):
            return False

        deleted = await self.storage.delete_file(archive_name(snapshot_id))
        if deleted:
            logger.info(f"Deleted snapshot {snapshot_id}")
        return deleted

    async def stats(self, snapshot_id: str) -> SnapshotStats:
        """Recompute aggregates from the archived records."""
        programs = await self.load_programs(snapshot_id)
        machine_numbers, date_range, status_breakdown = summarize_programs(programs)

        return SnapshotStats(
            snapshot_id=snapshot_id,
            total_programs=len(programs),
            machine_count=len(machine_numbers),
            status_breakdown=status_breakdown,
            client_breakdown=dict(Counter(program.client for program in programs)),
            total_weight_kg=sum((program.weight_kg for program in programs), Decimal("0")),
            date_range=date_range,
        )

    async def load_programs(self, snapshot_id: str) -> List[ArchivedProgram]:
        """
        Get the archived program records.

        Raises:
            SnapshotNotFoundError: If the archive does not exist
            InvalidArchiveError: If the data document is unreadable
        """
        content = await self._read_archive(snapshot_id)
        return self._load_data(snapshot_id, content).machine_programs

    # Helpers

    async def _read_archive(self, snapshot_id: str) -> bytes:
        if not _SNAPSHOT_ID_PATTERN.match(snapshot_id):
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} not found")

        try:
            return await self.storage.download_file(archive_name(snapshot_id))
        except FileNotFoundError:
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} not found")

    @staticmethod
    def _load_data(snapshot_id: str, content: bytes) -> SnapshotData:
        try:
            return load_data(content)
        except ArchiveFormatError as e:
            raise InvalidArchiveError(f"Snapshot {snapshot_id} is corrupt: {e}")

    def _apply_record(self, record: ArchivedProgram, now: datetime) -> MachineProgram:
        """Upsert one archived record by id. Caller commits."""
        program = program_store.get_program(self.db, record.id)

        if program is None:
            program = MachineProgram(id=record.id)
            for field in _RESTORED_FIELDS:
                setattr(program, field, getattr(record, field))
            program.status = record.status.value
            self.db.add(program)
            return program

        for field in _RESTORED_FIELDS:
            setattr(program, field, getattr(record, field))
        program.status = record.status.value
        program.updated_at = now
        return program


@contextmanager
def open_snapshot_service(config: Settings = settings) -> Iterator[SnapshotService]:
    """Snapshot service with its own session, for work outside a request."""
    db = SessionLocal()
    try:
        yield SnapshotService(db, get_storage_driver(config), config)
    finally:
        db.close()
