"""Change notifications for machine programs."""

from flexo_api.notifications.base import NotificationError, ProgramNotifier
from flexo_api.notifications.factory import get_notifier

__all__ = ["NotificationError", "ProgramNotifier", "get_notifier"]
