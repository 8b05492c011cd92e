"""Audit trail for machine program mutations."""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from flexo_api.models.machine_program import ProgramAuditEntry


class AuditTrail(ABC):
    """Records who changed what on the program ledger."""

    @abstractmethod
    def record(
        self,
        actor_id: Optional[int],
        action: str,
        entity_id: Optional[int],
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass


class DatabaseAuditTrail(AuditTrail):
    """Audit trail stored in ``program_audit_entries``.

    Entries are added to the caller's session so they commit (or roll
    back) together with the mutation they describe.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        actor_id: Optional[int],
        action: str,
        entity_id: Optional[int],
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.db.add(
            ProgramAuditEntry(
                actor_id=actor_id,
                action=action,
                entity="MachineProgram",
                entity_id=entity_id,
                old_values=_dump(old_values),
                new_values=_dump(new_values),
            )
        )


def _dump(values: Optional[Dict[str, Any]]) -> Optional[str]:
    if values is None:
        return None
    return json.dumps(values, default=str)
