"""Snapshot (machine backup) schemas."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from flexo_api.schemas.machine_program import ProgramStatus


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert aware datetimes to naive UTC, the form every stored timestamp uses."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ExportFormat(str, Enum):
    """Snapshot export formats."""

    ZIP = "zip"
    JSON = "json"


class SnapshotFilter(BaseModel):
    """Which programs a snapshot contains. Empty filter means everything."""

    description: Optional[str] = Field(None, max_length=500)
    start_date: Optional[datetime] = Field(None, description="Earliest program start time (inclusive)")
    end_date: Optional[datetime] = Field(None, description="Latest program start time (inclusive)")
    machine_numbers: List[int] = Field(default_factory=list)
    statuses: List[ProgramStatus] = Field(default_factory=list)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(value)


class SnapshotDateRange(BaseModel):
    """Range of program start times covered by a snapshot."""

    start_date: datetime
    end_date: datetime

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value: datetime) -> datetime:
        return _naive_utc(value)


class ArchivedProgram(BaseModel):
    """Full, denormalized copy of a machine program inside an archive."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    machine_number: int
    name: str
    article_code: str
    work_order: str
    client: str
    reference: str = ""
    short_code: str = ""
    color_count: int
    colors: List[str]
    substrate: str = ""
    weight_kg: Decimal
    status: ProgramStatus
    start_time: datetime
    ink_on_machine_at: Optional[datetime] = None
    end_time: Optional[datetime] = None
    progress: int = 0
    notes: Optional[str] = None
    last_action: Optional[str] = None
    last_action_by: Optional[str] = None
    last_action_at: Optional[datetime] = None
    operator_name: Optional[str] = None
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    @field_validator(
        "start_time",
        "ink_on_machine_at",
        "end_time",
        "last_action_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(value)

    @model_validator(mode="after")
    def check_completion(self) -> "ArchivedProgram":
        """A completed program has an end time and full progress; no other does."""
        completed = self.status is ProgramStatus.COMPLETED
        if completed != (self.end_time is not None):
            raise ValueError(f"Program {self.id}: end_time must be set exactly when status is completed")
        if completed and self.progress != 100:
            raise ValueError(f"Program {self.id}: completed program must have progress 100")
        return self


class SnapshotData(BaseModel):
    """Data document of an archive."""

    snapshot_id: str
    created_at: datetime
    description: str
    machine_programs: List[ArchivedProgram]
    total_records: int

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return _naive_utc(value)


class SnapshotMetadata(BaseModel):
    """Metadata document of an archive."""

    snapshot_id: str
    created_at: datetime
    description: str
    total_records: int
    size_bytes: int = 0
    machine_numbers: List[int] = Field(default_factory=list)
    date_range: Optional[SnapshotDateRange] = None
    status_breakdown: Dict[str, int] = Field(default_factory=dict)
    format_version: str
    application_version: str

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return _naive_utc(value)


class SnapshotResult(BaseModel):
    """Result of creating or importing a snapshot."""

    snapshot_id: str
    total_records: int
    size_bytes: int
    created_at: datetime
    message: str = ""


class SnapshotInfo(BaseModel):
    """Summary of one stored snapshot."""

    snapshot_id: str
    description: str
    created_at: datetime
    total_records: int
    size_bytes: int
    machine_count: int
    date_range: Optional[SnapshotDateRange] = None
    status_breakdown: Dict[str, int] = Field(default_factory=dict)
    is_valid: bool = True


class SnapshotStats(BaseModel):
    """Aggregates recomputed from an archive's records."""

    snapshot_id: str
    total_programs: int
    machine_count: int
    status_breakdown: Dict[str, int]
    client_breakdown: Dict[str, int]
    total_weight_kg: Decimal
    date_range: Optional[SnapshotDateRange] = None


class RestoreRequest(BaseModel):
    """Options for restoring a snapshot."""

    create_snapshot_first: bool = Field(
        True, description="Take a full snapshot of the current ledger before restoring"
    )


class RestoreResult(BaseModel):
    """Result of a restore."""

    snapshot_id: str
    restored_records: int
    restored_at: datetime
    pre_restore_snapshot_id: Optional[str] = None


class SnapshotVerifyResponse(BaseModel):
    """Integrity check result."""

    snapshot_id: str
    is_valid: bool
