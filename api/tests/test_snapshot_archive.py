"""Snapshot archive format tests."""

import io
import zipfile
from datetime import datetime
from decimal import Decimal

import pytest

from flexo_api.schemas.machine_program import ProgramStatus
from flexo_api.schemas.snapshot import ArchivedProgram, SnapshotData, SnapshotMetadata
from flexo_api.services.snapshot_archive import (
    ArchiveFormatError,
    build_archive,
    is_complete,
    load_data,
    load_metadata,
    read_entry,
    summarize_programs,
)


def _program(program_id, machine_number, status, start_time):
    now = datetime(2026, 3, 1, 12, 0)
    return ArchivedProgram(
        id=program_id,
        machine_number=machine_number,
        name=f"Job {program_id}",
        article_code=f"ART-{program_id}",
        work_order=f"OT-{program_id}",
        client="Acme Foods",
        color_count=2,
        colors=["Cyan", "Black"],
        weight_kg=Decimal("42.00"),
        status=status,
        start_time=start_time,
        created_at=now,
        updated_at=now,
    )


def _documents(snapshot_id, programs):
    created_at = datetime(2026, 3, 2, 6, 0)
    machine_numbers, date_range, status_breakdown = summarize_programs(programs)
    data = SnapshotData(
        snapshot_id=snapshot_id,
        created_at=created_at,
        description="Test",
        machine_programs=programs,
        total_records=len(programs),
    )
    metadata = SnapshotMetadata(
        snapshot_id=snapshot_id,
        created_at=created_at,
        description="Test",
        total_records=len(programs),
        machine_numbers=machine_numbers,
        date_range=date_range,
        status_breakdown=status_breakdown,
        format_version="1.0",
        application_version="flexo-programs test",
    )
    return data, metadata


def test_summarize_programs():
    programs = [
        _program(1, 14, ProgramStatus.RUNNING, datetime(2026, 3, 1, 8)),
        _program(2, 11, ProgramStatus.READY, datetime(2026, 2, 27, 8)),
        _program(3, 14, ProgramStatus.READY, datetime(2026, 3, 1, 20)),
    ]

    machine_numbers, date_range, status_breakdown = summarize_programs(programs)

    assert machine_numbers == [11, 14]
    assert date_range.start_date == datetime(2026, 2, 27, 8)
    assert date_range.end_date == datetime(2026, 3, 1, 20)
    assert status_breakdown == {"running": 1, "ready": 2}


def test_summarize_no_programs():
    assert summarize_programs([]) == ([], None, {})


@pytest.mark.parametrize("count", [0, 1, 40])
def test_recorded_size_matches_archive(count):
    programs = [
        _program(i, 11 + i % 11, ProgramStatus.READY, datetime(2026, 3, 1, 8)) for i in range(1, count + 1)
    ]
    data, metadata = _documents("snapshot_20260302_060000_abcdef12", programs)

    content, stored = build_archive(data, metadata)

    assert stored.size_bytes == len(content)
    assert load_metadata(content).size_bytes == len(content)
    assert load_data(content).total_records == count


def test_packaging_is_deterministic():
    programs = [_program(1, 12, ProgramStatus.READY, datetime(2026, 3, 1, 8))]
    data, metadata = _documents("snapshot_20260302_060000_abcdef12", programs)

    assert build_archive(data, metadata)[0] == build_archive(data, metadata)[0]


def test_entries_found_by_base_name():
    programs = [_program(1, 12, ProgramStatus.READY, datetime(2026, 3, 1, 8))]
    content, _ = build_archive(*_documents("snapshot_20260302_060000_abcdef12", programs))

    # Same documents under another folder name, as after an import
    source = zipfile.ZipFile(io.BytesIO(content))
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as target:
        for name in source.namelist():
            target.writestr(name.replace("snapshot_", "renamed_"), source.read(name))

    assert is_complete(buffer.getvalue())
    assert load_data(buffer.getvalue()).machine_programs[0].work_order == "OT-1"


def test_corrupt_documents():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("x/metadata.json", "{not json")
        archive.writestr("x/machine_programs.json", "")
    content = buffer.getvalue()

    with pytest.raises(ArchiveFormatError):
        load_metadata(content)
    with pytest.raises(ArchiveFormatError):
        load_data(content)
    assert is_complete(content) is False


def test_unreadable_archive():
    with pytest.raises(ArchiveFormatError):
        read_entry(b"not a zip at all", "metadata.json")
    assert is_complete(b"") is False
