"""In-process fan-out of program events to WebSocket subscribers."""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

from flexo_api.notifications.base import NotificationError, ProgramNotifier, build_event

logger = logging.getLogger(__name__)


@dataclass
class Subscriber:
    """One connected observer.

    Events are pushed onto ``queue`` from any thread through ``loop``; a
    subscriber may restrict itself to one machine number.
    """

    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue
    machine_number: Optional[int] = None
    client_id: str = field(default_factory=lambda: uuid4().hex)
    dropped: int = 0

    def wants(self, payload: Dict[str, Any]) -> bool:
        if self.machine_number is None:
            return True
        event_machine = payload.get("machine_number")
        return event_machine is None or event_machine == self.machine_number

    def offer(self, event: Dict[str, Any]) -> None:
        """Enqueue an event, dropping it when the subscriber lags behind."""
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug(f"Dropped event {event['type']} for slow subscriber {self.client_id}")


class BroadcastHub(ProgramNotifier):
    """Registry of connected subscribers with thread-safe publish.

    ``publish`` is called from request threads; each subscriber lives on
    the event loop that created it, so events are handed over with
    ``call_soon_threadsafe`` and never awaited.

    Example:
        >>> hub = BroadcastHub()
        >>> subscriber = hub.subscribe(machine_number=12)  # inside a running loop
        >>> hub.publish("status:changed", {"program_id": 1, "machine_number": 12})
    """

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = threading.Lock()

    def subscribe(self, machine_number: Optional[int] = None) -> Subscriber:
        """Register a subscriber bound to the running event loop."""
        subscriber = Subscriber(
            loop=asyncio.get_running_loop(),
            queue=asyncio.Queue(maxsize=self.max_queue_size),
            machine_number=machine_number,
        )
        with self._lock:
            self._subscribers[subscriber.client_id] = subscriber
        logger.info(
            f"Subscriber {subscriber.client_id} connected "
            f"(machine={machine_number if machine_number is not None else 'all'})"
        )
        return subscriber

    def unsubscribe(self, client_id: str) -> None:
        with self._lock:
            removed = self._subscribers.pop(client_id, None)
        if removed is not None:
            logger.info(f"Subscriber {client_id} disconnected")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        event = build_event(event_type, payload)

        with self._lock:
            targets: List[Subscriber] = list(self._subscribers.values())

        failed: List[str] = []
        for subscriber in targets:
            if not subscriber.wants(payload):
                continue
            try:
                subscriber.loop.call_soon_threadsafe(subscriber.offer, event)
            except RuntimeError:
                # Loop already closed: the connection is gone
                failed.append(subscriber.client_id)

        for client_id in failed:
            self.unsubscribe(client_id)

        if failed and len(failed) == len(targets):
            raise NotificationError(f"No reachable subscriber for {event_type}")

    def close(self) -> None:
        with self._lock:
            self._subscribers.clear()
