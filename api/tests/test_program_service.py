"""Machine program lifecycle tests."""

from datetime import datetime, timedelta

import pytest

from flexo_api.models.machine_program import MachineProgram, ProgramAuditEntry
from flexo_api.notifications.base import NotificationError, ProgramNotifier
from flexo_api.schemas.machine_program import (
    MachineProgramCreate,
    MachineProgramUpdate,
    ProgramStatus,
)
from flexo_api.services.program_service import (
    RUNNING_PROGRESS_FLOOR,
    DuplicateWorkOrderError,
    InvalidStatusTransitionError,
    MachineProgramService,
    ProgramConflictError,
    ProgramNotFoundError,
    ProgramValidationError,
    check_transition,
)


class FailingNotifier(ProgramNotifier):
    def publish(self, event_type, payload):
        raise NotificationError("transport down")


def test_work_order_scenario(program_service):
    """Create, run and complete OT-1 on machine 12."""
    program = program_service.create(
        MachineProgramCreate(
            machine_number=12,
            article_code="ART-1",
            work_order="OT-1",
            client="Acme Foods",
            colors=["Cyan", "Black"],
            weight_kg=100,
        )
    )
    assert program.status == ProgramStatus.READY.value
    assert program.progress == 0
    assert program.color_count == 2
    assert program.name == "ART-1"

    program = program_service.change_status(program.id, ProgramStatus.RUNNING)
    assert program.progress == RUNNING_PROGRESS_FLOOR == 5
    assert program.end_time is None

    program = program_service.change_status(program.id, ProgramStatus.COMPLETED)
    assert program.status == ProgramStatus.COMPLETED.value
    assert program.progress == 100
    assert program.end_time is not None


def test_create_emits_event_and_audit(program_service, notifier, test_db):
    program = program_service.create(
        MachineProgramCreate(
            machine_number=11,
            article_code="ART-2",
            work_order="  OT-2  ",
            client="Acme Foods",
            colors=["Cyan"],
            weight_kg=10,
        ),
        actor_id=3,
    )

    assert program.work_order == "OT-2"
    assert program.created_by == 3
    assert program.last_action_by == "3"
    assert program.version == 1
    assert notifier.types() == ["program:created"]
    assert notifier.events[0][1]["id"] == program.id

    entries = test_db.query(ProgramAuditEntry).all()
    assert [(entry.action, entry.entity_id, entry.actor_id) for entry in entries] == [
        ("CREATE", program.id, 3)
    ]


def test_create_rejects_duplicate_work_order(make_program):
    make_program(work_order="OT-7")
    with pytest.raises(DuplicateWorkOrderError):
        make_program(work_order="OT-7")


def test_create_rejects_machine_outside_fleet(make_program):
    with pytest.raises(ProgramValidationError):
        make_program(machine_number=10)
    with pytest.raises(ProgramValidationError):
        make_program(machine_number=22)


def test_create_rejects_blank_colors(make_program):
    with pytest.raises(ProgramValidationError):
        make_program(colors=["  "])


@pytest.mark.parametrize("initial", [ProgramStatus.RUNNING, ProgramStatus.COMPLETED, ProgramStatus.SUSPENDED])
def test_create_rejects_non_initial_status(make_program, initial):
    with pytest.raises(ProgramValidationError):
        make_program(status=initial)


def test_create_in_preparing(make_program, program_service):
    program = make_program(status=ProgramStatus.PREPARING)
    assert program.status == "preparing"

    with pytest.raises(InvalidStatusTransitionError):
        program_service.change_status(program.id, ProgramStatus.RUNNING)

    program = program_service.change_status(program.id, ProgramStatus.READY)
    assert program.status == "ready"


@pytest.mark.parametrize(
    "current,target",
    [
        (ProgramStatus.READY, ProgramStatus.COMPLETED),
        (ProgramStatus.READY, ProgramStatus.PREPARING),
        (ProgramStatus.RUNNING, ProgramStatus.READY),
        (ProgramStatus.SUSPENDED, ProgramStatus.READY),
        (ProgramStatus.COMPLETED, ProgramStatus.RUNNING),
        (ProgramStatus.COMPLETED, ProgramStatus.COMPLETED),
    ],
)
def test_illegal_transitions(current, target):
    with pytest.raises(InvalidStatusTransitionError):
        check_transition(current, target)


def test_illegal_transition_leaves_program_untouched(make_program, program_service, notifier):
    program = make_program()
    version = program.version

    with pytest.raises(InvalidStatusTransitionError):
        program_service.change_status(program.id, ProgramStatus.COMPLETED)

    program = program_service.get(program.id)
    assert program.status == "ready"
    assert program.end_time is None
    assert program.version == version
    assert notifier.types() == ["program:created"]


def test_suspend_overwrites_notes_only_when_given(make_program, program_service):
    program = make_program(notes="Initial note")

    program = program_service.change_status(program.id, ProgramStatus.SUSPENDED)
    assert program.notes == "Initial note"

    program = program_service.change_status(program.id, ProgramStatus.RUNNING)
    program = program_service.change_status(program.id, ProgramStatus.SUSPENDED, notes="Anilox change")
    assert program.notes == "Anilox change"


def test_running_keeps_existing_progress(make_program, program_service):
    program = make_program()
    program_service.change_status(program.id, ProgramStatus.RUNNING)
    program_service.update(program.id, MachineProgramUpdate(progress=40))
    program_service.change_status(program.id, ProgramStatus.SUSPENDED)

    program = program_service.change_status(program.id, ProgramStatus.RUNNING)
    assert program.progress == 40


def test_status_change_event_payload(make_program, program_service, notifier):
    program = make_program(machine_number=15)
    program_service.change_status(program.id, ProgramStatus.SUSPENDED, notes="No ink", actor_id=9)

    event_type, payload = notifier.events[-1]
    assert event_type == "status:changed"
    assert payload["program_id"] == program.id
    assert payload["status"] == "suspended"
    assert payload["machine_number"] == 15
    assert payload["notes"] == "No ink"
    assert "changed_at" in payload


def test_completed_iff_end_time(make_program, program_service, test_db):
    first = make_program()
    second = make_program()
    make_program()
    program_service.change_status(first.id, ProgramStatus.RUNNING)
    program_service.change_status(first.id, ProgramStatus.COMPLETED)
    program_service.change_status(second.id, ProgramStatus.SUSPENDED)

    for program in test_db.query(MachineProgram).all():
        assert (program.status == "completed") == (program.end_time is not None)


def test_update_changes_only_given_fields(make_program, program_service, notifier):
    program = make_program(client="Old client")

    updated = program_service.update(program.id, MachineProgramUpdate(client="New client"), actor_id=4)

    assert updated.client == "New client"
    assert updated.article_code == program.article_code
    assert updated.status == "ready"
    assert updated.updated_by == 4
    assert updated.version == 2
    assert notifier.types()[-1] == "program:updated"


def test_update_rejects_duplicate_work_order(make_program, program_service):
    make_program(work_order="OT-A")
    other = make_program(work_order="OT-B")

    with pytest.raises(DuplicateWorkOrderError):
        program_service.update(other.id, MachineProgramUpdate(work_order="OT-A"))

    # Keeping its own code is not a conflict
    updated = program_service.update(other.id, MachineProgramUpdate(work_order="OT-B", client="X"))
    assert updated.client == "X"


def test_update_clears_optional_fields(make_program, program_service):
    program = make_program()
    program_service.update(
        program.id,
        MachineProgramUpdate(notes="Check registration", ink_on_machine_at=datetime.utcnow()),
    )

    updated = program_service.update(
        program.id,
        MachineProgramUpdate(notes=None, ink_on_machine_at=None, operator_name=None),
    )

    assert updated.notes is None
    assert updated.ink_on_machine_at is None
    assert updated.operator_name is None


def test_update_ignores_null_required_fields(make_program, program_service):
    program = make_program(client="Acme Foods")

    updated = program_service.update(program.id, MachineProgramUpdate(client=None, notes="Kept client"))

    assert updated.client == "Acme Foods"
    assert updated.notes == "Kept client"


def test_update_colors_recounts(make_program, program_service):
    program = make_program(colors=["Cyan", "Magenta", "Black"])

    updated = program_service.update(program.id, MachineProgramUpdate(colors=["Pantone 485"]))

    assert updated.colors == ["Pantone 485"]
    assert updated.color_count == 1


def test_progress_cannot_decrease_while_running(make_program, program_service):
    program = make_program()
    program_service.change_status(program.id, ProgramStatus.RUNNING)
    program_service.update(program.id, MachineProgramUpdate(progress=60))

    with pytest.raises(ProgramValidationError):
        program_service.update(program.id, MachineProgramUpdate(progress=30))

    assert program_service.get(program.id).progress == 60


def test_progress_fixed_once_completed(make_program, program_service):
    program = make_program()
    program_service.change_status(program.id, ProgramStatus.RUNNING)
    program_service.change_status(program.id, ProgramStatus.COMPLETED)

    with pytest.raises(ProgramValidationError):
        program_service.update(program.id, MachineProgramUpdate(progress=50))


def test_stale_expected_version_conflicts(make_program, program_service):
    program = make_program()

    program_service.update(program.id, MachineProgramUpdate(client="First"))

    with pytest.raises(ProgramConflictError):
        program_service.update(program.id, MachineProgramUpdate(client="Second", expected_version=1))
    with pytest.raises(ProgramConflictError):
        program_service.change_status(program.id, ProgramStatus.RUNNING, expected_version=1)

    program = program_service.change_status(program.id, ProgramStatus.RUNNING, expected_version=2)
    assert program.version == 3


def test_not_found(program_service):
    with pytest.raises(ProgramNotFoundError):
        program_service.get(999)
    with pytest.raises(ProgramNotFoundError):
        program_service.change_status(999, ProgramStatus.RUNNING)
    with pytest.raises(ProgramNotFoundError):
        program_service.delete(999)


def test_delete(make_program, program_service, notifier, test_db):
    program = make_program(machine_number=14)

    program_service.delete(program.id, actor_id=2)

    assert test_db.query(MachineProgram).count() == 0
    assert notifier.events[-1] == ("program:deleted", {"program_id": program.id, "machine_number": 14})
    assert test_db.query(ProgramAuditEntry).filter_by(action="DELETE").count() == 1


def test_active_machine_numbers(make_program, program_service):
    for _ in range(3):
        make_program(machine_number=11)
    only_on_12 = make_program(machine_number=12)

    assert program_service.active_machine_numbers() == [11, 12]

    program_service.change_status(only_on_12.id, ProgramStatus.RUNNING)
    program_service.change_status(only_on_12.id, ProgramStatus.COMPLETED)

    assert program_service.active_machine_numbers() == [11]


def test_list_filters_and_ordering(make_program, program_service):
    now = datetime.utcnow()
    late = make_program(machine_number=13, start_time=now)
    early = make_program(machine_number=13, start_time=now - timedelta(hours=2))
    other = make_program(machine_number=11)
    program_service.change_status(other.id, ProgramStatus.SUSPENDED)

    assert [p.id for p in program_service.list_programs(machine_number=13)] == [early.id, late.id]
    assert [p.id for p in program_service.list_programs(status=ProgramStatus.SUSPENDED)] == [other.id]
    assert [p.id for p in program_service.list_programs()] == [other.id, early.id, late.id]


def test_statistics(make_program, program_service):
    running = make_program(machine_number=11)
    done = make_program(machine_number=12)
    make_program(machine_number=11, status=ProgramStatus.PREPARING)
    program_service.change_status(running.id, ProgramStatus.RUNNING)
    program_service.change_status(done.id, ProgramStatus.RUNNING)
    program_service.change_status(done.id, ProgramStatus.COMPLETED)

    stats = program_service.statistics()

    assert stats.total_programs == 3
    assert stats.running_programs == 1
    assert stats.completed_programs == 1
    assert stats.preparing_programs == 1
    assert stats.active_machines == 1
    assert stats.total_machines == 2


def test_updated_since(make_program, program_service):
    first = make_program()
    checkpoint = datetime.utcnow()
    second = make_program()

    assert [p.id for p in program_service.updated_since(checkpoint)] == [second.id]

    program_service.change_status(first.id, ProgramStatus.RUNNING)
    assert {p.id for p in program_service.updated_since(checkpoint)} == {first.id, second.id}


def test_work_order_availability(make_program, program_service):
    program = make_program(work_order="OT-55")

    assert not program_service.is_work_order_available("OT-55")
    assert program_service.is_work_order_available("OT-55", exclude_id=program.id)
    assert program_service.is_work_order_available("OT-56")


def test_bulk_clear(make_program, program_service, notifier, test_db):
    make_program()
    make_program(machine_number=12)

    assert program_service.bulk_clear(actor_id=1) == 2
    assert test_db.query(MachineProgram).count() == 0
    assert notifier.types()[-1] == "programming:cleared"
    assert notifier.events[-1][1]["deleted_count"] == 2


def test_notifier_failure_never_fails_mutation(test_db):
    service = MachineProgramService(test_db, FailingNotifier())

    program = service.create(
        MachineProgramCreate(
            machine_number=11,
            article_code="ART-3",
            work_order="OT-3",
            client="Acme Foods",
            colors=["Black"],
            weight_kg=5,
        )
    )
    program = service.change_status(program.id, ProgramStatus.RUNNING)

    assert program.status == "running"
    assert test_db.query(MachineProgram).count() == 1
