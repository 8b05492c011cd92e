"""SQLAlchemy models."""

from flexo_api.database import Base
from flexo_api.models.machine_program import MachineProgram, ProgramAuditEntry

__all__ = [
    "Base",
    "MachineProgram",
    "ProgramAuditEntry",
]
