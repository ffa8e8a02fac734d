# alembic/versions/001_initial.py

"""Initial schema

Revision ID: 001
Revises: 
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

execution_status = sa.Enum('DRAFT', 'EXECUTING', 'CLOSED', name='executionstatusenum')


def upgrade():
    # Catalog
    op.create_table('goal',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('target_amount', sa.Float(), nullable=False),
        sa.Column('deadline', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('asset',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('currency', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Ledgers
    op.create_table('asset_allocation',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('asset_id', sa.String(length=36), nullable=False),
        sa.Column('goal_id', sa.String(length=36), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['asset_id'], ['asset.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['goal_id'], ['goal.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('asset_id', 'goal_id', name='uq_asset_allocation_pair')
    )
    op.create_index('ix_asset_allocation_goal', 'asset_allocation', ['goal_id'])

    op.create_table('asset_transaction',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('asset_id', sa.String(length=36), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['asset_id'], ['asset.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_asset_transaction_asset_ts', 'asset_transaction', ['asset_id', 'timestamp'])

    op.create_table('allocation_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('asset_id', sa.String(length=36), nullable=True),
        sa.Column('goal_id', sa.String(length=36), nullable=True),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('month_label', sa.String(length=7), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['asset_id'], ['asset.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['goal_id'], ['goal.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_allocation_history_month_label'), 'allocation_history', ['month_label'])
    op.create_index('ix_allocation_history_pair_ts', 'allocation_history', ['asset_id', 'goal_id', 'timestamp'])
    op.create_index('ix_allocation_history_month_ts', 'allocation_history', ['month_label', 'timestamp'])

    # Execution tracking
    op.create_table('monthly_execution_record',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('month_label', sa.String(length=7), nullable=False),
        sa.Column('status', execution_status, nullable=False),
        sa.Column('tracked_goal_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('can_undo_until', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        op.f('ix_monthly_execution_record_month_label'),
        'monthly_execution_record', ['month_label'], unique=True
    )

    op.create_table('execution_snapshot',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('record_id', sa.String(length=36), nullable=False),
        sa.Column('captured_at', sa.DateTime(), nullable=False),
        sa.Column('total_planned', sa.Float(), nullable=False),
        sa.Column('goal_snapshots', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['record_id'], ['monthly_execution_record.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('record_id')
    )

    op.create_table('completed_execution',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('record_id', sa.String(length=36), nullable=False),
        sa.Column('month_label', sa.String(length=7), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=False),
        sa.Column('exchange_rates', sa.JSON(), nullable=False),
        sa.Column('goal_snapshots', sa.JSON(), nullable=False),
        sa.Column('contribution_snapshots', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['record_id'], ['monthly_execution_record.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('record_id')
    )


def downgrade():
    op.drop_table('completed_execution')
    op.drop_table('execution_snapshot')
    op.drop_index(op.f('ix_monthly_execution_record_month_label'), table_name='monthly_execution_record')
    op.drop_table('monthly_execution_record')
    op.drop_index('ix_allocation_history_month_ts', table_name='allocation_history')
    op.drop_index('ix_allocation_history_pair_ts', table_name='allocation_history')
    op.drop_index(op.f('ix_allocation_history_month_label'), table_name='allocation_history')
    op.drop_table('allocation_history')
    op.drop_index('ix_asset_transaction_asset_ts', table_name='asset_transaction')
    op.drop_table('asset_transaction')
    op.drop_index('ix_asset_allocation_goal', table_name='asset_allocation')
    op.drop_table('asset_allocation')
    op.drop_table('asset')
    op.drop_table('goal')
    execution_status.drop(op.get_bind(), checkfirst=True)
