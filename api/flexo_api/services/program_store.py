"""Query and persistence helpers for the machine program ledger."""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from flexo_api.models.machine_program import MachineProgram
from flexo_api.schemas.machine_program import ACTIVE_STATUSES, ProgramStatus

ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_STATUSES]


def get_program(db: Session, program_id: int) -> Optional[MachineProgram]:
    """Get a program by ID, or None."""
    return db.query(MachineProgram).filter(MachineProgram.id == program_id).first()


def list_programs(
    db: Session,
    machine_number: Optional[int] = None,
    status: Optional[ProgramStatus] = None,
) -> List[MachineProgram]:
    """
    List programs, optionally restricted to one machine and/or one status.

    Args:
        db: Database session
        machine_number: Optional machine number filter
        status: Optional status filter

    Returns:
        Programs ordered by machine number and start time
    """
    query = db.query(MachineProgram)

    if machine_number is not None:
        query = query.filter(MachineProgram.machine_number == machine_number)
    if status is not None:
        query = query.filter(MachineProgram.status == ProgramStatus(status).value)

    return query.order_by(MachineProgram.machine_number, MachineProgram.start_time, MachineProgram.id).all()


def list_active_programs(db: Session) -> List[MachineProgram]:
    """List programs that still hold a machine (ready, running or suspended)."""
    return (
        db.query(MachineProgram)
        .filter(MachineProgram.status.in_(ACTIVE_STATUS_VALUES))
        .order_by(MachineProgram.machine_number, MachineProgram.start_time, MachineProgram.id)
        .all()
    )


def list_active_machine_numbers(db: Session) -> List[int]:
    """Distinct machine numbers currently holding active work, ascending."""
    rows = (
        db.query(MachineProgram.machine_number)
        .filter(MachineProgram.status.in_(ACTIVE_STATUS_VALUES))
        .distinct()
        .order_by(MachineProgram.machine_number)
        .all()
    )
    return [row[0] for row in rows]


def list_programs_updated_since(db: Session, since: datetime) -> List[MachineProgram]:
    """Programs touched at or after ``since`` (used by reconnecting clients)."""
    return (
        db.query(MachineProgram)
        .filter(MachineProgram.updated_at >= since)
        .order_by(MachineProgram.updated_at)
        .all()
    )


def work_order_exists(db: Session, work_order: str, exclude_id: Optional[int] = None) -> bool:
    """
    Check whether a work order code is already used.

    Args:
        db: Database session
        work_order: Work order code
        exclude_id: Program ID to ignore (the program being updated)

    Returns:
        True if another program holds the code
    """
    query = db.query(MachineProgram.id).filter(MachineProgram.work_order == work_order)
    if exclude_id is not None:
        query = query.filter(MachineProgram.id != exclude_id)
    return query.first() is not None


def program_statistics(db: Session) -> Dict[str, object]:
    """
    Aggregate counts over the whole ledger.

    Returns:
        Dict with status_counts, total_programs, active_machines and
        total_machines
    """
    status_rows = (
        db.query(MachineProgram.status, func.count(MachineProgram.id))
        .group_by(MachineProgram.status)
        .all()
    )
    status_counts = {status: count for status, count in status_rows}

    total_machines = db.query(func.count(func.distinct(MachineProgram.machine_number))).scalar() or 0
    active_machines = (
        db.query(func.count(func.distinct(MachineProgram.machine_number)))
        .filter(MachineProgram.status.in_(ACTIVE_STATUS_VALUES))
        .scalar()
        or 0
    )

    return {
        "status_counts": status_counts,
        "total_programs": sum(status_counts.values()),
        "active_machines": active_machines,
        "total_machines": total_machines,
    }


def query_programs_for_snapshot(
    db: Session,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    machine_numbers: Optional[Iterable[int]] = None,
    statuses: Optional[Iterable[str]] = None,
) -> List[MachineProgram]:
    """
    Select the programs a snapshot should contain.

    Date bounds apply to the program start time and are inclusive. Empty
    machine or status collections mean "no restriction".
    """
    query = db.query(MachineProgram)

    if start_date is not None:
        query = query.filter(MachineProgram.start_time >= start_date)
    if end_date is not None:
        query = query.filter(MachineProgram.start_time <= end_date)

    machine_numbers = list(machine_numbers or [])
    if machine_numbers:
        query = query.filter(MachineProgram.machine_number.in_(machine_numbers))

    statuses = [ProgramStatus(s).value for s in statuses or []]
    if statuses:
        query = query.filter(MachineProgram.status.in_(statuses))

    return query.order_by(MachineProgram.id).all()


def delete_all_programs(db: Session) -> int:
    """Delete every program row and evict them from the session. Caller commits."""
    return db.query(MachineProgram).delete(synchronize_session="fetch")


def sync_id_sequence(db: Session) -> None:
    """
    Move the PostgreSQL id sequence past the highest stored id.

    Needed after inserting rows with explicit ids (snapshot restore).
    Other dialects derive the next id from the table itself.
    """
    if db.get_bind().dialect.name != "postgresql":
        return

    db.execute(
        text(
            "SELECT setval(pg_get_serial_sequence('machine_programs', 'id'), "
            "COALESCE((SELECT MAX(id) FROM machine_programs), 1))"
        )
    )
