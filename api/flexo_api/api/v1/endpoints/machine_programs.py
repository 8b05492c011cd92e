"""Machine programs API endpoints."""

import asyncio
import logging
from contextlib import suppress
from datetime import datetime
from typing import List, Optional

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
    status,
)

from flexo_api.api.deps import (
    get_actor_id,
    get_program_notifier,
    get_program_service,
    get_snapshot_service,
)
from flexo_api.notifications import ProgramNotifier
from flexo_api.notifications.broadcast_hub import BroadcastHub, Subscriber
from flexo_api.schemas.machine_program import (
    ClearProgrammingResponse,
    MachineProgramCreate,
    MachineProgramResponse,
    MachineProgramUpdate,
    ProgramStatistics,
    ProgramStatus,
    ProgramStatusChange,
    WorkOrderValidationResponse,
)
from flexo_api.schemas.snapshot import SnapshotFilter
from flexo_api.services.program_service import (
    DuplicateWorkOrderError,
    InvalidStatusTransitionError,
    MachineProgramService,
    ProgramConflictError,
    ProgramNotFoundError,
    ProgramServiceError,
    ProgramValidationError,
)
from flexo_api.services.snapshot_service import SnapshotService

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(e: ProgramServiceError) -> HTTPException:
    """Translate a program service error into an HTTP error."""
    if isinstance(e, ProgramNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, (DuplicateWorkOrderError, ProgramConflictError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, (InvalidStatusTransitionError, ProgramValidationError)):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(e))


@router.get("", response_model=List[MachineProgramResponse])
def list_programs(
    machine_number: Optional[int] = Query(None, description="Filter by machine number"),
    status_filter: Optional[ProgramStatus] = Query(None, alias="status", description="Filter by status"),
    service: MachineProgramService = Depends(get_program_service),
):
    """
    List machine programs ordered by machine and start time.

    - **machine_number**: Optional machine filter
    - **status**: Optional status filter (preparing, ready, running, suspended, completed)
    """
    return service.list_programs(machine_number=machine_number, status=status_filter)


@router.get("/active", response_model=List[MachineProgramResponse])
def list_active_programs(service: MachineProgramService = Depends(get_program_service)):
    """List programs that are ready, running or suspended."""
    return service.list_active()


@router.get("/active-machines", response_model=List[int])
def list_active_machines(service: MachineProgramService = Depends(get_program_service)):
    """Machine numbers currently holding active programs."""
    return service.active_machine_numbers()


@router.get("/statistics", response_model=ProgramStatistics)
def get_statistics(service: MachineProgramService = Depends(get_program_service)):
    """Per-status counts and machine usage."""
    return service.statistics()


@router.get("/sync", response_model=List[MachineProgramResponse])
def sync_programs(
    since: datetime = Query(..., description="Return programs updated at or after this time"),
    service: MachineProgramService = Depends(get_program_service),
):
    """
    Programs changed since a timestamp.

    Used by clients to catch up after a dropped realtime connection.
    """
    return service.updated_since(since)


@router.get("/validate-work-order", response_model=WorkOrderValidationResponse)
def validate_work_order(
    work_order: str = Query(..., min_length=1),
    exclude_id: Optional[int] = Query(None, description="Program being edited"),
    service: MachineProgramService = Depends(get_program_service),
):
    """Check whether a work order code is still available."""
    return WorkOrderValidationResponse(
        work_order=work_order,
        available=service.is_work_order_available(work_order, exclude_id),
    )


@router.delete("/clear", response_model=ClearProgrammingResponse)
async def clear_programming(
    snapshot_first: bool = Query(True, description="Take a full snapshot before clearing"),
    service: MachineProgramService = Depends(get_program_service),
    snapshot_service: SnapshotService = Depends(get_snapshot_service),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """
    Delete every program on every machine.

    - **snapshot_first**: Snapshot the whole ledger first (default: true).
      If the snapshot fails nothing is deleted.
    """
    snapshot_id = None
    if snapshot_first:
        try:
            description = f"Before clearing programming - {datetime.utcnow():%Y-%m-%d %H:%M:%S}"
            result = await snapshot_service.create(SnapshotFilter(description=description))
            snapshot_id = result.snapshot_id
        except Exception as e:
            logger.error(f"Snapshot before clearing programming failed: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Snapshot before clearing failed, nothing was deleted: {str(e)}",
            )

    try:
        deleted_count = service.bulk_clear(actor_id)
    except ProgramServiceError as e:
        raise _http_error(e)

    return ClearProgrammingResponse(
        deleted_count=deleted_count,
        cleared_at=datetime.utcnow(),
        snapshot_id=snapshot_id,
    )


@router.websocket("/ws")
async def program_events(
    websocket: WebSocket,
    machine: Optional[int] = Query(None, description="Only receive events for this machine"),
    notifier: ProgramNotifier = Depends(get_program_notifier),
):
    """
    Realtime program events.

    Each message is a JSON object ``{"type", "data", "sent_at"}``. Client
    messages are read only to detect disconnects.
    """
    if not isinstance(notifier, BroadcastHub):
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    # Registered before accepting so no event published after the handshake is missed
    subscriber = notifier.subscribe(machine_number=machine)
    await websocket.accept()
    sender = asyncio.create_task(_forward_events(websocket, subscriber))

    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        with suppress(asyncio.CancelledError):
            await sender
        notifier.unsubscribe(subscriber.client_id)


async def _forward_events(websocket: WebSocket, subscriber: Subscriber) -> None:
    while True:
        event = await subscriber.queue.get()
        try:
            await websocket.send_json(event)
        except Exception as e:
            logger.info(f"Stopped feed for subscriber {subscriber.client_id}: {e}")
            return


@router.get("/{program_id}", response_model=MachineProgramResponse)
def get_program(
    program_id: int,
    service: MachineProgramService = Depends(get_program_service),
):
    """
    Get a machine program.

    - **program_id**: Program ID
    """
    try:
        return service.get(program_id)
    except ProgramServiceError as e:
        raise _http_error(e)


@router.post("", response_model=MachineProgramResponse, status_code=status.HTTP_201_CREATED)
def create_program(
    data: MachineProgramCreate,
    service: MachineProgramService = Depends(get_program_service),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """
    Create a machine program.

    - **work_order**: Must be unique across all programs
    - **machine_number**: Must belong to the fleet
    - **status**: 'ready' (default) or 'preparing'
    """
    try:
        return service.create(data, actor_id)
    except ProgramServiceError as e:
        raise _http_error(e)


@router.put("/{program_id}", response_model=MachineProgramResponse)
def update_program(
    program_id: int,
    data: MachineProgramUpdate,
    service: MachineProgramService = Depends(get_program_service),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """
    Update descriptive fields and progress of a program.

    Status changes go through ``PATCH /{program_id}/status``.
    """
    try:
        return service.update(program_id, data, actor_id)
    except ProgramServiceError as e:
        raise _http_error(e)


@router.patch("/{program_id}/status", response_model=MachineProgramResponse)
def change_program_status(
    program_id: int,
    request: ProgramStatusChange,
    service: MachineProgramService = Depends(get_program_service),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """
    Change the status of a program.

    Allowed: preparing→ready, ready→running|suspended,
    running→suspended|completed, suspended→running|completed.
    """
    try:
        return service.change_status(
            program_id,
            request.status,
            notes=request.notes,
            actor_id=actor_id,
            expected_version=request.expected_version,
        )
    except ProgramServiceError as e:
        raise _http_error(e)


@router.delete("/{program_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_program(
    program_id: int,
    service: MachineProgramService = Depends(get_program_service),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    """
    Delete a machine program.

    - **program_id**: Program ID
    """
    try:
        service.delete(program_id, actor_id)
    except ProgramServiceError as e:
        raise _http_error(e)
