"""Snapshot archive packaging and parsing.

An archive is a zip file holding exactly two JSON documents:

    <snapshot_id>/machine_programs.json   data document (SnapshotData)
    <snapshot_id>/metadata.json           metadata document (SnapshotMetadata)

The metadata records the byte size of the archive that contains it. The
size is settled in memory before anything is written: the archive is
packed with a candidate size until the packed length equals the size it
declares. The metadata entry is stored uncompressed, so only the number
of digits in the size can move the length and this settles in a couple
of passes.
"""

import io
import zipfile
import zlib
from collections import Counter
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError

from flexo_api.schemas.snapshot import (
    ArchivedProgram,
    SnapshotData,
    SnapshotDateRange,
    SnapshotMetadata,
)

DATA_ENTRY = "machine_programs.json"
METADATA_ENTRY = "metadata.json"
MAX_SIZE_PASSES = 5

# Zip timestamps cannot predate 1980
_MIN_ZIP_DATE = (1980, 1, 1, 0, 0, 0)


class ArchiveFormatError(Exception):
    """Archive is corrupt or does not have the expected structure."""
    pass


def summarize_programs(
    programs: Iterable[ArchivedProgram],
) -> Tuple[List[int], Optional[SnapshotDateRange], dict]:
    """
    Compute the machine list, start time range and status counts.

    Returns:
        Tuple of (sorted distinct machine numbers, date range or None,
        status breakdown)
    """
    programs = list(programs)
    machine_numbers = sorted({program.machine_number for program in programs})
    status_breakdown = dict(Counter(program.status.value for program in programs))

    date_range = None
    if programs:
        start_times = [program.start_time for program in programs]
        date_range = SnapshotDateRange(start_date=min(start_times), end_date=max(start_times))

    return machine_numbers, date_range, status_breakdown


def build_archive(data: SnapshotData, metadata: SnapshotMetadata) -> Tuple[bytes, SnapshotMetadata]:
    """
    Package data and metadata into one archive.

    Args:
        data: Data document
        metadata: Metadata document (its size_bytes is recomputed)

    Returns:
        Tuple of (archive bytes, metadata as stored in the archive)
    """
    data_bytes = data.model_dump_json(indent=2).encode("utf-8")

    size = 0
    for _ in range(MAX_SIZE_PASSES):
        final = metadata.model_copy(update={"size_bytes": size})
        content = _pack(
            data.snapshot_id,
            data_bytes,
            final.model_dump_json(indent=2).encode("utf-8"),
            data.created_at,
        )
        if len(content) == size:
            return content, final
        size = len(content)

    raise ArchiveFormatError(f"Archive size for {data.snapshot_id} did not settle")


def _pack(snapshot_id: str, data_bytes: bytes, metadata_bytes: bytes, timestamp: datetime) -> bytes:
    date_time = max(timestamp.timetuple()[:6], _MIN_ZIP_DATE)
    buffer = io.BytesIO()

    with zipfile.ZipFile(buffer, "w") as archive:
        data_info = zipfile.ZipInfo(f"{snapshot_id}/{DATA_ENTRY}", date_time=date_time)
        data_info.compress_type = zipfile.ZIP_DEFLATED
        archive.writestr(data_info, data_bytes)

        metadata_info = zipfile.ZipInfo(f"{snapshot_id}/{METADATA_ENTRY}", date_time=date_time)
        metadata_info.compress_type = zipfile.ZIP_STORED
        archive.writestr(metadata_info, metadata_bytes)

    return buffer.getvalue()


def read_entry(content: bytes, filename: str) -> Optional[bytes]:
    """
    Read one document from an archive.

    Entries are matched by base name, whatever folder they sit in, so an
    archive imported under a new id is still readable.

    Returns:
        Entry bytes, or None if the archive has no such entry

    Raises:
        ArchiveFormatError: If the archive itself is unreadable
    """
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            for name in archive.namelist():
                if name == filename or name.endswith(f"/{filename}"):
                    return archive.read(name)
    except (zipfile.BadZipFile, zlib.error, EOFError, ValueError) as e:
        raise ArchiveFormatError(f"Unreadable archive: {e}")

    return None


def load_metadata(content: bytes) -> Optional[SnapshotMetadata]:
    """
    Parse the metadata document.

    Returns:
        Metadata, or None for archives without a metadata entry

    Raises:
        ArchiveFormatError: If the archive or the document is corrupt
    """
    raw = read_entry(content, METADATA_ENTRY)
    if raw is None:
        return None
    if not raw.strip():
        raise ArchiveFormatError("Metadata entry is empty")

    try:
        return SnapshotMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise ArchiveFormatError(f"Invalid metadata document: {e}")


def load_data(content: bytes) -> SnapshotData:
    """
    Parse the data document.

    Raises:
        ArchiveFormatError: If the data entry is missing or corrupt
    """
    raw = read_entry(content, DATA_ENTRY)
    if raw is None:
        raise ArchiveFormatError("Archive has no data entry")
    if not raw.strip():
        raise ArchiveFormatError("Data entry is empty")

    try:
        return SnapshotData.model_validate_json(raw)
    except ValidationError as e:
        raise ArchiveFormatError(f"Invalid data document: {e}")


def is_complete(content: bytes) -> bool:
    """True when both documents are present, non-empty and parseable."""
    try:
        return load_metadata(content) is not None and load_data(content) is not None
    except ArchiveFormatError:
        return False
