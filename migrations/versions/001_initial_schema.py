"""Initial schema: machine programs and their audit trail

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create machine_programs table
    op.create_table(
        'machine_programs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('machine_number', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('article_code', sa.String(length=50), nullable=False),
        sa.Column('work_order', sa.String(length=50), nullable=False),
        sa.Column('client', sa.String(length=200), nullable=False),
        sa.Column('reference', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('short_code', sa.String(length=3), nullable=False, server_default=''),
        sa.Column('color_count', sa.Integer(), nullable=False),
        sa.Column('colors', sa.JSON(), nullable=False),
        sa.Column('substrate', sa.String(length=200), nullable=False, server_default=''),
        sa.Column('weight_kg', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='ready'),
        sa.Column('start_time', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('ink_on_machine_at', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.String(length=1000), nullable=True),
        sa.Column('last_action', sa.String(length=200), nullable=True),
        sa.Column('last_action_by', sa.String(length=100), nullable=True),
        sa.Column('last_action_at', sa.DateTime(), nullable=True),
        sa.Column('operator_name', sa.String(length=100), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('progress >= 0 AND progress <= 100', name='ck_machine_programs_progress'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_machine_programs_id'), 'machine_programs', ['id'], unique=False)
    op.create_index(op.f('ix_machine_programs_machine_number'), 'machine_programs', ['machine_number'], unique=False)
    op.create_index(op.f('ix_machine_programs_work_order'), 'machine_programs', ['work_order'], unique=True)
    op.create_index(op.f('ix_machine_programs_status'), 'machine_programs', ['status'], unique=False)
    op.create_index(op.f('ix_machine_programs_created_at'), 'machine_programs', ['created_at'], unique=False)

    # Create program_audit_entries table
    op.create_table(
        'program_audit_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('entity', sa.String(length=50), nullable=False, server_default='MachineProgram'),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('old_values', sa.Text(), nullable=True),
        sa.Column('new_values', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_program_audit_entries_id'), 'program_audit_entries', ['id'], unique=False)
    op.create_index(op.f('ix_program_audit_entries_actor_id'), 'program_audit_entries', ['actor_id'], unique=False)
    op.create_index(op.f('ix_program_audit_entries_entity_id'), 'program_audit_entries', ['entity_id'], unique=False)
    op.create_index(op.f('ix_program_audit_entries_created_at'), 'program_audit_entries', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_program_audit_entries_created_at'), table_name='program_audit_entries')
    op.drop_index(op.f('ix_program_audit_entries_entity_id'), table_name='program_audit_entries')
    op.drop_index(op.f('ix_program_audit_entries_actor_id'), table_name='program_audit_entries')
    op.drop_index(op.f('ix_program_audit_entries_id'), table_name='program_audit_entries')
    op.drop_table('program_audit_entries')

    op.drop_index(op.f('ix_machine_programs_created_at'), table_name='machine_programs')
    op.drop_index(op.f('ix_machine_programs_status'), table_name='machine_programs')
    op.drop_index(op.f('ix_machine_programs_work_order'), table_name='machine_programs')
    op.drop_index(op.f('ix_machine_programs_machine_number'), table_name='machine_programs')
    op.drop_index(op.f('ix_machine_programs_id'), table_name='machine_programs')
    op.drop_table('machine_programs')
