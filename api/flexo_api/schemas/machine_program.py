"""Machine program schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProgramStatus(str, Enum):
    """Machine program status values."""

    PREPARING = "preparing"
    READY = "ready"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"


# Programs still holding a machine
ACTIVE_STATUSES = (ProgramStatus.READY, ProgramStatus.RUNNING, ProgramStatus.SUSPENDED)

# Statuses a program may be created in
INITIAL_STATUSES = (ProgramStatus.PREPARING, ProgramStatus.READY)


class MachineProgramBase(BaseModel):
    """Base machine program schema."""

    machine_number: int = Field(..., description="Physical machine number")
    name: Optional[str] = Field(None, max_length=200, description="Display name (defaults to article code)")
    article_code: str = Field(..., min_length=1, max_length=50)
    work_order: str = Field(..., min_length=1, max_length=50, description="Externally issued work order code")
    client: str = Field(..., min_length=1, max_length=200)
    reference: str = Field("", max_length=500)
    short_code: str = Field("", max_length=3)
    colors: List[str] = Field(..., min_length=1, description="Ordered color names/codes")
    substrate: str = Field("", max_length=200)
    weight_kg: Decimal = Field(..., gt=0, description="Weight to produce in kilograms")
    start_time: Optional[datetime] = None
    ink_on_machine_at: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=1000)
    operator_name: Optional[str] = Field(None, max_length=100)


class MachineProgramCreate(MachineProgramBase):
    """Schema for creating a machine program."""

    status: ProgramStatus = Field(
        ProgramStatus.READY,
        description="Initial status: 'ready' (default) or 'preparing'",
    )


class MachineProgramUpdate(BaseModel):
    """Schema for updating a machine program.

    Status and end time are not part of this schema: status changes go
    through the status endpoint only.
    """

    machine_number: Optional[int] = None
    name: Optional[str] = Field(None, max_length=200)
    article_code: Optional[str] = Field(None, min_length=1, max_length=50)
    work_order: Optional[str] = Field(None, min_length=1, max_length=50)
    client: Optional[str] = Field(None, min_length=1, max_length=200)
    reference: Optional[str] = Field(None, max_length=500)
    short_code: Optional[str] = Field(None, max_length=3)
    colors: Optional[List[str]] = Field(None, min_length=1)
    substrate: Optional[str] = Field(None, max_length=200)
    weight_kg: Optional[Decimal] = Field(None, gt=0)
    start_time: Optional[datetime] = None
    ink_on_machine_at: Optional[datetime] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    notes: Optional[str] = Field(None, max_length=1000)
    operator_name: Optional[str] = Field(None, max_length=100)
    expected_version: Optional[int] = Field(
        None, description="Reject the update if the stored version differs"
    )


class ProgramStatusChange(BaseModel):
    """Request to change a program status."""

    status: ProgramStatus
    notes: Optional[str] = Field(None, max_length=1000, description="Required by policy when suspending")
    expected_version: Optional[int] = None


class MachineProgramResponse(BaseModel):
    """Schema for machine program response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    machine_number: int
    name: str
    article_code: str
    work_order: str
    client: str
    reference: str
    short_code: str
    color_count: int
    colors: List[str]
    substrate: str
    weight_kg: Decimal
    status: ProgramStatus
    start_time: datetime
    ink_on_machine_at: Optional[datetime] = None
    end_time: Optional[datetime] = None
    progress: int
    notes: Optional[str] = None
    last_action: Optional[str] = None
    last_action_by: Optional[str] = None
    last_action_at: Optional[datetime] = None
    operator_name: Optional[str] = None
    created_by: Optional[int] = None
    updated_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    version: int


class StatusChangeEvent(BaseModel):
    """Payload broadcast when a program changes status."""

    program_id: int
    status: ProgramStatus
    machine_number: int
    notes: Optional[str] = None
    changed_at: datetime


class ProgramStatistics(BaseModel):
    """Aggregate statistics over the program ledger."""

    status_counts: Dict[str, int]
    total_programs: int
    active_machines: int
    total_machines: int
    preparing_programs: int
    ready_programs: int
    running_programs: int
    suspended_programs: int
    completed_programs: int


class ClearProgrammingResponse(BaseModel):
    """Response after clearing every program."""

    deleted_count: int
    cleared_at: datetime
    snapshot_id: Optional[str] = None


class WorkOrderValidationResponse(BaseModel):
    """Work order availability check."""

    work_order: str
    available: bool
