"""Recurrence engine: task instances and recurrence rules

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None  # This is the first migration
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'task',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.String(1000), nullable=True),
        sa.Column('priority', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('board_id', sa.String(100), nullable=True),
        sa.Column('list_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='todo'),
        sa.Column('completed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('is_new', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('due_date', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        # Set only on instances materialized from a recurrence rule
        sa.Column('recurrence_rule_id', sa.Integer, nullable=True),
        sa.Column('occurrence_due_at', sa.DateTime, nullable=True),
        sa.UniqueConstraint('recurrence_rule_id', 'occurrence_due_at', name='uq_task_rule_occurrence'),
    )
    op.create_index('ix_task_user_id', 'task', ['user_id'])
    op.create_index('ix_task_recurrence_rule_id', 'task', ['recurrence_rule_id'])

    op.create_table(
        'recurrence_rule',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('task_id', sa.Integer, sa.ForeignKey('task.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('period_type', sa.String(20), nullable=False),
        sa.Column('period_value', sa.Integer, nullable=False, server_default='1'),
        sa.Column('repeat_days', sa.JSON, nullable=False),
        sa.Column('end_date', sa.DateTime, nullable=True),
        sa.Column('infinite_repeat', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('anchor_date', sa.DateTime, nullable=False),
        sa.Column('last_materialized_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
        sa.CheckConstraint('period_value >= 1', name='ck_recurrence_rule_period_value'),
        sa.CheckConstraint(
            "period_type IN ('daily', 'weekly', 'monthly', 'yearly')",
            name='ck_recurrence_rule_period_type'
        ),
    )
    # The processor loads active rules on every tick
    op.create_index('idx_recurrence_rule_active', 'recurrence_rule', ['infinite_repeat', 'end_date'])


def downgrade():
    op.drop_index('idx_recurrence_rule_active', table_name='recurrence_rule')
    op.drop_table('recurrence_rule')
    op.drop_index('ix_task_recurrence_rule_id', table_name='task')
    op.drop_index('ix_task_user_id', table_name='task')
    op.drop_table('task')
