"""Baseline migration - pipeline entities and automation tables

Revision ID: 0001_automation_baseline
Revises:
Create Date: 2026-10-19

Creates caregivers, clients, automation rules, the execution log, action
item rules, sequences, enrollments and the per-step sequence log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_automation_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps(with_updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]
    if with_updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return columns


def upgrade() -> None:
    """Create entity and automation tables."""

    # ==========================================================================
    # Pipeline entities
    # ==========================================================================
    op.create_table(
        'caregivers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phase_override', sa.String(50), nullable=True),
        sa.Column('tasks', JSONType, nullable=False),
        sa.Column('notes', JSONType, nullable=False),
        sa.Column('phase_timestamps', JSONType, nullable=False),
        sa.Column('application_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('hca_expiration', sa.String(20), nullable=True),
        sa.Column('documents', JSONType, nullable=False),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('archive_reason', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_caregivers_archived', 'caregivers', ['archived'])

    op.create_table(
        'clients',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('contact_name', sa.String(200), nullable=True),
        sa.Column('care_recipient_name', sa.String(200), nullable=True),
        sa.Column('referral_source', sa.String(100), nullable=True),
        sa.Column('phase', sa.String(50), nullable=False, server_default='new_lead'),
        sa.Column('tasks', JSONType, nullable=False),
        sa.Column('notes', JSONType, nullable=False),
        sa.Column('phase_timestamps', JSONType, nullable=False),
        sa.Column('lost_reason', sa.Text(), nullable=True),
        sa.Column('archived', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('idx_clients_phase', 'clients', ['phase'])
    op.create_index('idx_clients_archived', 'clients', ['archived'])

    # ==========================================================================
    # Rules and execution log
    # ==========================================================================
    op.create_table(
        'automation_rules',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False, server_default='caregiver'),
        sa.Column('trigger_type', sa.String(50), nullable=False),
        sa.Column('conditions', JSONType, nullable=False),
        sa.Column('action_type', sa.String(50), nullable=False),
        sa.Column('action_config', JSONType, nullable=False),
        sa.Column('message_template', sa.Text(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('idx_rules_matching', 'automation_rules', ['trigger_type', 'entity_type', 'enabled'])

    op.create_table(
        'automation_log',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('rule_id', sa.String(36), nullable=True),
        sa.Column('sequence_id', sa.String(36), nullable=True),
        sa.Column('step_index', sa.Integer(), nullable=True),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('trigger_type', sa.String(50), nullable=True),
        sa.Column('action_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('error_detail', sa.Text(), nullable=True),
        sa.Column('dedupe_key', sa.String(200), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index('idx_autolog_entity', 'automation_log', ['entity_type', 'entity_id', 'executed_at'])
    op.create_index('idx_autolog_rule', 'automation_log', ['rule_id', 'executed_at'])
    op.create_index('idx_autolog_dedupe', 'automation_log', ['dedupe_key'])

    op.create_table(
        'action_item_rules',
        sa.Column('id', sa.String(100), primary_key=True),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('condition_type', sa.String(50), nullable=False),
        sa.Column('condition_config', JSONType, nullable=False),
        sa.Column('urgency', sa.String(20), nullable=False, server_default='warning'),
        sa.Column('urgency_escalation', JSONType, nullable=True),
        sa.Column('title_template', sa.Text(), nullable=True),
        sa.Column('detail_template', sa.Text(), nullable=True),
        sa.Column('action_template', sa.Text(), nullable=True),
        sa.Column('suppressible', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(with_updated=False),
    )
    op.create_index(
        'idx_action_item_rules_entity', 'action_item_rules', ['entity_type', 'enabled', 'sort_order']
    )

    # ==========================================================================
    # Sequences
    # ==========================================================================
    op.create_table(
        'automation_sequences',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('entity_type', sa.String(20), nullable=False, server_default='client'),
        sa.Column('trigger_phase', sa.String(50), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('stop_on_response', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('steps', JSONType, nullable=False),
        *_timestamps(),
    )
    op.create_index(
        'idx_sequences_trigger', 'automation_sequences', ['entity_type', 'trigger_phase', 'enabled']
    )

    op.create_table(
        'sequence_enrollments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'sequence_id',
            sa.String(36),
            sa.ForeignKey('automation_sequences.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False, server_default='client'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('current_step', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('start_from_step', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_by', sa.String(100), nullable=False, server_default='system'),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('last_step_executed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(30), nullable=True),
        sa.Column('cancelled_by', sa.String(100), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
    )
    # At most one active enrollment per (sequence, entity)
    op.create_index(
        'uq_enrollment_active',
        'sequence_enrollments',
        ['sequence_id', 'entity_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index('idx_enrollments_entity', 'sequence_enrollments', ['entity_id', 'status'])

    op.create_table(
        'sequence_log',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('sequence_id', sa.String(36), nullable=False),
        sa.Column(
            'enrollment_id',
            sa.String(36),
            sa.ForeignKey('sequence_enrollments.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('step_index', sa.Integer(), nullable=False),
        sa.Column('action_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('error_detail', sa.Text(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index(
        'idx_seqlog_due',
        'sequence_log',
        ['scheduled_at'],
        postgresql_where=sa.text("status = 'pending'"),
    )
    op.create_index('idx_seqlog_enrollment', 'sequence_log', ['enrollment_id', 'step_index'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in (
        'sequence_log',
        'sequence_enrollments',
        'automation_sequences',
        'action_item_rules',
        'automation_log',
        'automation_rules',
        'clients',
        'caregivers',
    ):
        op.drop_table(table)
