"""Business logic services."""

from flexo_api.services.program_service import MachineProgramService
from flexo_api.services.snapshot_service import SnapshotService

__all__ = ["MachineProgramService", "SnapshotService"]
