"""Keep-in-touch tables.

Revision ID: 0001_kit_tables
Revises:
Create Date: 2026-10-19

Creates:
- kit_presets
- kit_subscriptions
- kit_touches
- kit_activity_log
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_kit_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # kit_presets
    # ==========================================================================
    op.create_table(
        'kit_presets',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('touch_sequence', sa.JSON(), nullable=False),
        sa.Column('default_cycle_behavior', sa.String(20), server_default=sa.text("'auto_repeat'"), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_kit_presets_active_name', 'kit_presets', ['is_active', 'name'])

    # ==========================================================================
    # kit_subscriptions
    # ==========================================================================
    op.create_table(
        'kit_subscriptions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('preset_id', sa.Uuid(), nullable=True),
        sa.Column('touch_sequence', sa.JSON(), nullable=False),
        sa.Column('cycle_behavior', sa.String(20), nullable=False),
        sa.Column('assigned_to', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('cycle_count', sa.Integer(), nullable=False),
        sa.Column('max_cycles', sa.Integer(), nullable=True),
        sa.Column('current_step', sa.Integer(), nullable=False),
        sa.Column('skip_weekends', sa.Boolean(), nullable=False),
        sa.Column('pause_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pause_reason', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('cycle_count >= 1', name='ck_kit_subscriptions_cycle_count'),
        sa.CheckConstraint('current_step >= 0', name='ck_kit_subscriptions_current_step'),
    )
    op.create_index(
        'idx_kit_subscriptions_entity', 'kit_subscriptions',
        ['entity_type', 'entity_id', 'status'],
    )
    op.create_index('idx_kit_subscriptions_status', 'kit_subscriptions', ['status'])

    # ==========================================================================
    # kit_touches
    # ==========================================================================
    op.create_table(
        'kit_touches',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('subscription_id', sa.Uuid(), nullable=False),
        sa.Column('cycle_number', sa.Integer(), nullable=False),
        sa.Column('sequence_index', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(20), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('scheduled_time', sa.Time(), nullable=True),
        sa.Column('original_scheduled_date', sa.Date(), nullable=True),
        sa.Column('snoozed_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reschedule_count', sa.Integer(), nullable=False),
        sa.Column('assigned_to', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('outcome', sa.String(50), nullable=True),
        sa.Column('outcome_notes', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('linked_task_id', sa.String(255), nullable=True),
        sa.Column('linked_reminder_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['subscription_id'], ['kit_subscriptions.id'], ondelete='CASCADE'),
        sa.UniqueConstraint(
            'subscription_id', 'cycle_number', 'sequence_index',
            name='uq_kit_touches_cycle_index',
        ),
    )
    op.create_index(
        'idx_kit_touches_subscription_cycle', 'kit_touches',
        ['subscription_id', 'cycle_number'],
    )
    op.create_index('idx_kit_touches_status_date', 'kit_touches', ['status', 'scheduled_date'])
    op.create_index('idx_kit_touches_assignee', 'kit_touches', ['assigned_to', 'status'])

    # ==========================================================================
    # kit_activity_log
    # ==========================================================================
    op.create_table(
        'kit_activity_log',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('subscription_id', sa.Uuid(), nullable=False),
        sa.Column('touch_id', sa.Uuid(), nullable=True),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('activity_type', sa.String(50), nullable=False),
        sa.Column('actor', sa.String(255), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_kit_activity_subscription_time', 'kit_activity_log',
        ['subscription_id', 'created_at'],
    )
    op.create_index(
        'idx_kit_activity_entity_time', 'kit_activity_log',
        ['entity_type', 'entity_id', 'created_at'],
    )


def downgrade() -> None:
    op.drop_table('kit_activity_log')
    op.drop_table('kit_touches')
    op.drop_table('kit_subscriptions')
    op.drop_table('kit_presets')
