"""Base notifier interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict


# Event types broadcast to subscribers
PROGRAM_CREATED = "program:created"
PROGRAM_UPDATED = "program:updated"
PROGRAM_DELETED = "program:deleted"
STATUS_CHANGED = "status:changed"
PROGRAMMING_CLEARED = "programming:cleared"


def build_event(event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap a payload in the envelope sent to subscribers."""
    return {
        "type": event_type,
        "data": payload,
        "sent_at": datetime.utcnow().isoformat(),
    }


class ProgramNotifier(ABC):
    """Outbound port for machine program change events.

    Delivery is best effort and at most once: there is no retry, no
    persistence of missed events and no ordering guarantee. Clients
    reconcile by re-querying after a reconnect.
    """

    @abstractmethod
    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        """Broadcast an event to every current subscriber.

        Args:
            event_type: Event name (e.g. "status:changed")
            payload: JSON-serializable event data

        Raises:
            NotificationError: If the transport fails
        """
        pass

    def close(self) -> None:
        """Release transport resources."""
        return None


class NullNotifier(ProgramNotifier):
    """Notifier that discards every event."""

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        return None


class NotificationError(Exception):
    """Raised when an event cannot be handed to the transport."""

    pass
