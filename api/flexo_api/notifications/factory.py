"""Notifier factory."""

from functools import lru_cache

from flexo_api.config import Settings, settings
from flexo_api.notifications.base import NullNotifier, ProgramNotifier
from flexo_api.notifications.broadcast_hub import BroadcastHub
from flexo_api.notifications.redis_notifier import RedisNotifier


def create_notifier(config: Settings) -> ProgramNotifier:
    """Create the notifier selected by ``notifier_backend``.

    Args:
        config: Application settings

    Returns:
        Configured notifier instance

    Raises:
        ValueError: If the backend is not supported
    """
    backend = config.notifier_backend.lower()

    if backend == "memory":
        return BroadcastHub(max_queue_size=config.notifier_queue_size)
    elif backend == "redis":
        return RedisNotifier(config.redis_url, config.redis_channel)
    elif backend == "none":
        return NullNotifier()
    else:
        raise ValueError(f"Unsupported notifier backend: {config.notifier_backend}")


@lru_cache(maxsize=1)
def get_notifier() -> ProgramNotifier:
    """Process-wide notifier built from application settings."""
    return create_notifier(settings)
