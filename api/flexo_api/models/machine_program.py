"""Machine program model."""

from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text

from flexo_api.database import Base


class MachineProgram(Base):
    """One production job scheduled on one flexographic machine."""

    __tablename__ = "machine_programs"

    id = Column(Integer, primary_key=True, index=True)
    machine_number = Column(Integer, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    article_code = Column(String(50), nullable=False)
    work_order = Column(String(50), nullable=False, unique=True, index=True)
    client = Column(String(200), nullable=False)
    reference = Column(String(500), nullable=False, default="")
    short_code = Column(String(3), nullable=False, default="")
    color_count = Column(Integer, nullable=False)
    colors = Column(JSON, nullable=False, default=list)
    substrate = Column(String(200), nullable=False, default="")
    weight_kg = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default="ready", index=True)
    # Status: preparing, ready, running, suspended, completed
    start_time = Column(DateTime, nullable=False, default=datetime.utcnow)
    ink_on_machine_at = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)  # Only set once completed
    progress = Column(Integer, nullable=False, default=0)
    notes = Column(String(1000), nullable=True)

    # Last operator action
    last_action = Column(String(200), nullable=True)
    last_action_by = Column(String(100), nullable=True)
    last_action_at = Column(DateTime, nullable=True)
    operator_name = Column(String(100), nullable=True)

    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_machine_programs_progress"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return (
            f"<MachineProgram(id={self.id}, work_order={self.work_order}, "
            f"machine={self.machine_number}, status={self.status})>"
        )


class ProgramAuditEntry(Base):
    """Audit trail entry for a machine program mutation."""

    __tablename__ = "program_audit_entries"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(Integer, nullable=True, index=True)
    action = Column(String(50), nullable=False)
    # Action: CREATE, UPDATE, STATUS_CHANGE, DELETE, BULK_CLEAR
    entity = Column(String(50), nullable=False, default="MachineProgram")
    entity_id = Column(Integer, nullable=True, index=True)
    old_values = Column(Text, nullable=True)
    new_values = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<ProgramAuditEntry(id={self.id}, action={self.action}, entity_id={self.entity_id})>"
