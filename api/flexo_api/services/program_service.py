"""Machine program lifecycle engine.

Every mutation of a machine program goes through ``MachineProgramService``:
- Creation with work order uniqueness and fleet range validation
- Partial updates of descriptive fields
- Status changes driven by an explicit transition table
- Single and bulk deletion

Each successful mutation writes an audit entry in the same transaction
and is then broadcast through the injected notifier. Broadcasting is
best effort: a notifier failure is logged and never undoes the mutation.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from flexo_api.config import settings
from flexo_api.models.machine_program import MachineProgram
from flexo_api.notifications.base import (
    PROGRAM_CREATED,
    PROGRAM_DELETED,
    PROGRAM_UPDATED,
    PROGRAMMING_CLEARED,
    STATUS_CHANGED,
    ProgramNotifier,
)
from flexo_api.schemas.machine_program import (
    INITIAL_STATUSES,
    MachineProgramCreate,
    MachineProgramResponse,
    MachineProgramUpdate,
    ProgramStatistics,
    ProgramStatus,
    StatusChangeEvent,
)
from flexo_api.services import program_store
from flexo_api.services.audit import AuditTrail, DatabaseAuditTrail

logger = logging.getLogger(__name__)

# Progress shown once a program starts running, before real progress is reported
RUNNING_PROGRESS_FLOOR = 5

ALLOWED_TRANSITIONS: Dict[ProgramStatus, FrozenSet[ProgramStatus]] = {
    ProgramStatus.PREPARING: frozenset({ProgramStatus.READY}),
    ProgramStatus.READY: frozenset({ProgramStatus.RUNNING, ProgramStatus.SUSPENDED}),
    ProgramStatus.RUNNING: frozenset({ProgramStatus.SUSPENDED, ProgramStatus.COMPLETED}),
    ProgramStatus.SUSPENDED: frozenset({ProgramStatus.RUNNING, ProgramStatus.COMPLETED}),
    ProgramStatus.COMPLETED: frozenset(),
}

# Optional fields an update may clear by sending null
CLEARABLE_FIELDS = frozenset({"ink_on_machine_at", "notes", "operator_name"})


class ProgramServiceError(Exception):
    """Base exception for program service errors."""
    pass


class ProgramNotFoundError(ProgramServiceError):
    """Program not found."""
    pass


class DuplicateWorkOrderError(ProgramServiceError):
    """Work order code already used by another program."""
    pass


class InvalidStatusTransitionError(ProgramServiceError):
    """Requested status is not reachable from the current one."""
    pass


class ProgramValidationError(ProgramServiceError):
    """Program data is invalid."""
    pass


class ProgramConflictError(ProgramServiceError):
    """Program was modified by someone else."""
    pass


def check_transition(current: ProgramStatus, target: ProgramStatus) -> None:
    """
    Validate a status transition against the transition table.

    Raises:
        InvalidStatusTransitionError: If the transition is not allowed
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(
            f"Cannot change status from '{current.value}' to '{target.value}'"
        )


def apply_status(
    program: MachineProgram,
    target: ProgramStatus,
    notes: Optional[str],
    now: datetime,
) -> None:
    """Write the new status and its derived fields onto ``program``."""
    program.status = target.value

    if target is ProgramStatus.COMPLETED:
        program.end_time = now
        program.progress = 100
    elif target is ProgramStatus.RUNNING:
        if program.progress == 0:
            program.progress = RUNNING_PROGRESS_FLOOR
    elif target is ProgramStatus.SUSPENDED:
        if notes:
            program.notes = notes


class MachineProgramService:
    """
    Single point of mutation for machine programs.

    Attributes:
        db: Database session used for reads and writes
        notifier: Outbound port for change events
        audit: Audit trail collaborator (defaults to the database trail)
    """

    def __init__(
        self,
        db: Session,
        notifier: ProgramNotifier,
        audit: Optional[AuditTrail] = None,
        machine_number_min: int = settings.machine_number_min,
        machine_number_max: int = settings.machine_number_max,
    ):
        self.db = db
        self.notifier = notifier
        self.audit = audit if audit is not None else DatabaseAuditTrail(db)
        self.machine_number_min = machine_number_min
        self.machine_number_max = machine_number_max

    # Queries

    def get(self, program_id: int) -> MachineProgram:
        """
        Get program by ID.

        Raises:
            ProgramNotFoundError: If program not found
        """
        program = program_store.get_program(self.db, program_id)
        if not program:
            raise ProgramNotFoundError(f"Program {program_id} not found")
        return program

    def list_programs(
        self,
        machine_number: Optional[int] = None,
        status: Optional[ProgramStatus] = None,
    ) -> List[MachineProgram]:
        return program_store.list_programs(self.db, machine_number=machine_number, status=status)

    def list_active(self) -> List[MachineProgram]:
        return program_store.list_active_programs(self.db)

    def active_machine_numbers(self) -> List[int]:
        return program_store.list_active_machine_numbers(self.db)

    def updated_since(self, since: datetime) -> List[MachineProgram]:
        return program_store.list_programs_updated_since(self.db, since)

    def is_work_order_available(self, work_order: str, exclude_id: Optional[int] = None) -> bool:
        return not program_store.work_order_exists(self.db, work_order.strip(), exclude_id)

    def statistics(self) -> ProgramStatistics:
        stats = program_store.program_statistics(self.db)
        counts = stats["status_counts"]
        return ProgramStatistics(
            status_counts=counts,
            total_programs=stats["total_programs"],
            active_machines=stats["active_machines"],
            total_machines=stats["total_machines"],
            preparing_programs=counts.get(ProgramStatus.PREPARING.value, 0),
            ready_programs=counts.get(ProgramStatus.READY.value, 0),
            running_programs=counts.get(ProgramStatus.RUNNING.value, 0),
            suspended_programs=counts.get(ProgramStatus.SUSPENDED.value, 0),
            completed_programs=counts.get(ProgramStatus.COMPLETED.value, 0),
        )

    # Mutations

    def create(self, data: MachineProgramCreate, actor_id: Optional[int] = None) -> MachineProgram:
        """
        Create a new program.

        Args:
            data: Program data
            actor_id: Optional acting user ID

        Returns:
            Created program

        Raises:
            ProgramValidationError: If the data is invalid
            DuplicateWorkOrderError: If the work order already exists
        """
        self._validate_machine_number(data.machine_number)
        work_order = self._clean_work_order(data.work_order)
        colors = self._clean_colors(data.colors)
        if data.weight_kg is None or data.weight_kg <= 0:
            raise ProgramValidationError("Weight to produce must be greater than zero")

        status = ProgramStatus(data.status)
        if status not in INITIAL_STATUSES:
            raise ProgramValidationError(
                f"Programs must be created as 'ready' or 'preparing', not '{status.value}'"
            )

        if program_store.work_order_exists(self.db, work_order):
            raise DuplicateWorkOrderError(f"A program with work order {work_order} already exists")

        now = datetime.utcnow()
        program = MachineProgram(
            machine_number=data.machine_number,
            name=data.name or data.article_code,
            article_code=data.article_code,
            work_order=work_order,
            client=data.client,
            reference=data.reference,
            short_code=data.short_code,
            color_count=len(colors),
            colors=colors,
            substrate=data.substrate,
            weight_kg=data.weight_kg,
            status=status.value,
            start_time=data.start_time or now,
            ink_on_machine_at=data.ink_on_machine_at or now,
            end_time=None,
            progress=0,
            notes=data.notes,
            operator_name=data.operator_name,
            created_by=actor_id,
            created_at=now,
        )
        self._touch(program, actor_id, "Created", now)

        with self._transaction(work_order=work_order):
            self.db.add(program)
            self.db.flush()
            self.audit.record(actor_id, "CREATE", program.id, None, self._payload(program))

        self.db.refresh(program)
        logger.info(
            f"Created program {program.id} ({program.work_order}) on machine {program.machine_number}"
        )
        self._notify(PROGRAM_CREATED, self._payload(program))
        return program

    def update(
        self,
        program_id: int,
        data: MachineProgramUpdate,
        actor_id: Optional[int] = None,
    ) -> MachineProgram:
        """
        Update descriptive fields of a program.

        Only the fields set on ``data`` change. Status and end time are
        never touched here.

        Raises:
            ProgramNotFoundError: If program not found
            DuplicateWorkOrderError: If the new work order is taken
            ProgramValidationError: If progress would move backwards while
                running, or change on a completed program
            ProgramConflictError: If ``expected_version`` is stale
        """
        program = self.get(program_id)

        changes: Dict[str, Any] = data.model_dump(exclude_unset=True)
        self._check_version(program, changes.pop("expected_version", None))
        changes = {
            field: value
            for field, value in changes.items()
            if value is not None or field in CLEARABLE_FIELDS
        }

        if "machine_number" in changes:
            self._validate_machine_number(changes["machine_number"])

        if "work_order" in changes:
            changes["work_order"] = self._clean_work_order(changes["work_order"])
            if changes["work_order"] != program.work_order and program_store.work_order_exists(
                self.db, changes["work_order"], exclude_id=program.id
            ):
                raise DuplicateWorkOrderError(
                    f"A program with work order {changes['work_order']} already exists"
                )

        if "colors" in changes:
            changes["colors"] = self._clean_colors(changes["colors"])
            changes["color_count"] = len(changes["colors"])

        if "progress" in changes:
            self._validate_progress(program, changes["progress"])

        old_values = self._payload(program)
        for field, value in changes.items():
            setattr(program, field, value)
        self._touch(program, actor_id, "Updated")

        with self._transaction(program_id=program.id, work_order=changes.get("work_order")):
            self.db.flush()
            self.audit.record(actor_id, "UPDATE", program.id, old_values, self._payload(program))

        self.db.refresh(program)
        logger.info(f"Updated program {program.id}: {sorted(changes)}")
        self._notify(PROGRAM_UPDATED, self._payload(program))
        return program

    def change_status(
        self,
        program_id: int,
        status: ProgramStatus,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> MachineProgram:
        """
        Move a program to a new status.

        Side effects by target status:
        - completed: end time set to now, progress forced to 100
        - running: progress raised to the running floor if it was 0
        - suspended: non-empty notes overwrite the program notes

        Raises:
            ProgramNotFoundError: If program not found
            InvalidStatusTransitionError: If the transition is not allowed
            ProgramConflictError: If ``expected_version`` is stale or a
                concurrent write won the race
        """
        program = self.get(program_id)
        self._check_version(program, expected_version)

        current = ProgramStatus(program.status)
        target = ProgramStatus(status)
        check_transition(current, target)

        now = datetime.utcnow()
        apply_status(program, target, notes, now)
        self._touch(program, actor_id, f"Status changed to {target.value}", now)

        with self._transaction(program_id=program.id):
            self.db.flush()
            self.audit.record(
                actor_id,
                "STATUS_CHANGE",
                program.id,
                {"status": current.value},
                {"status": target.value, "notes": notes},
            )

        self.db.refresh(program)
        logger.info(f"Program {program.id} status changed: {current.value} -> {target.value}")

        event = StatusChangeEvent(
            program_id=program.id,
            status=target,
            machine_number=program.machine_number,
            notes=notes,
            changed_at=now,
        )
        self._notify(STATUS_CHANGED, event.model_dump(mode="json"))
        return program

    def delete(self, program_id: int, actor_id: Optional[int] = None) -> None:
        """
        Hard delete a program.

        Raises:
            ProgramNotFoundError: If program not found
        """
        program = self.get(program_id)
        machine_number = program.machine_number
        old_values = self._payload(program)

        with self._transaction(program_id=program_id):
            self.db.delete(program)
            self.audit.record(actor_id, "DELETE", program_id, old_values, None)

        logger.info(f"Deleted program {program_id} from machine {machine_number}")
        self._notify(PROGRAM_DELETED, {"program_id": program_id, "machine_number": machine_number})

    def bulk_clear(self, actor_id: Optional[int] = None) -> int:
        """
        Delete every program on every machine.

        Irreversible. Callers are expected to take a snapshot first.

        Returns:
            Number of deleted programs
        """
        logger.warning(f"Clearing all machine programming (actor={actor_id})")

        with self._transaction():
            deleted_count = program_store.delete_all_programs(self.db)
            self.audit.record(actor_id, "BULK_CLEAR", None, None, {"deleted_count": deleted_count})

        self.db.expire_all()
        logger.info(f"Programming cleared: {deleted_count} programs deleted")
        self._notify(
            PROGRAMMING_CLEARED,
            {"deleted_count": deleted_count, "cleared_at": datetime.utcnow().isoformat()},
        )
        return deleted_count

    # Helpers

    @contextmanager
    def _transaction(
        self,
        program_id: Optional[int] = None,
        work_order: Optional[str] = None,
    ) -> Iterator[None]:
        """Commit the enclosed writes, translating store-level conflicts."""
        try:
            yield
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateWorkOrderError(
                f"A program with work order {work_order} already exists"
            ) from e
        except StaleDataError as e:
            self.db.rollback()
            raise ProgramConflictError(f"Program {program_id} was modified concurrently") from e
        except Exception:
            self.db.rollback()
            raise

    def _notify(self, event_type: str, payload: Dict[str, Any]) -> None:
        try:
            self.notifier.publish(event_type, payload)
        except Exception as e:
            logger.warning(f"Failed to broadcast {event_type}: {e}")

    @staticmethod
    def _payload(program: MachineProgram) -> Dict[str, Any]:
        return MachineProgramResponse.model_validate(program).model_dump(mode="json")

    @staticmethod
    def _touch(
        program: MachineProgram,
        actor_id: Optional[int],
        action: str,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or datetime.utcnow()
        program.updated_by = actor_id
        program.updated_at = now
        program.last_action = action
        program.last_action_by = str(actor_id) if actor_id is not None else None
        program.last_action_at = now

    @staticmethod
    def _check_version(program: MachineProgram, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != program.version:
            raise ProgramConflictError(
                f"Program {program.id} is at version {program.version}, expected {expected_version}"
            )

    def _validate_machine_number(self, machine_number: int) -> None:
        if not self.machine_number_min <= machine_number <= self.machine_number_max:
            raise ProgramValidationError(
                f"Machine number must be between {self.machine_number_min} "
                f"and {self.machine_number_max}"
            )

    @staticmethod
    def _clean_work_order(work_order: str) -> str:
        work_order = (work_order or "").strip()
        if not work_order:
            raise ProgramValidationError("Work order code is required")
        return work_order

    @staticmethod
    def _clean_colors(colors: List[str]) -> List[str]:
        cleaned = [color.strip() for color in colors or [] if color and color.strip()]
        if not cleaned:
            raise ProgramValidationError("At least one color is required")
        return cleaned

    @staticmethod
    def _validate_progress(program: MachineProgram, progress: int) -> None:
        status = ProgramStatus(program.status)
        if status is ProgramStatus.COMPLETED and progress != 100:
            raise ProgramValidationError("Progress of a completed program is fixed at 100")
        if status is ProgramStatus.RUNNING and progress < program.progress:
            raise ProgramValidationError(
                f"Progress cannot decrease while running ({program.progress} -> {progress})"
            )
