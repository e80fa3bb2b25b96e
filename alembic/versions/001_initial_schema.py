"""initial schema: users, payments, credit ledger
Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('users',
        sa.Column('id', sa.String(length=128), primary_key=True),
        sa.Column('plan', sa.String(length=16), nullable=False, server_default='free'),
        sa.Column('credits_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('monthly_credits_allowance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subscription_status', sa.String(length=32)),
        sa.Column('current_period_end', sa.DateTime(timezone=True)),
        sa.Column('last_granted_period_end', sa.DateTime(timezone=True)),
        sa.Column('daily_credits_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_daily_reset_date', sa.String(length=10)),
        sa.Column('tron_deposit_address', sa.String(length=64), unique=True),
        sa.Column('tron_deposit_priv_enc', sa.Text()),
        sa.Column('tron_deposit_created_at', sa.DateTime(timezone=True)),
        sa.Column('tron_last_checked_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.CheckConstraint('credits_balance >= 0', name='ck_users_credits_balance_non_negative'),
        sa.CheckConstraint('daily_credits_used >= 0', name='ck_users_daily_credits_used_non_negative'),
    )

    # Primary key doubles as the idempotency guard for settlement
    op.create_table('payments',
        sa.Column('id', sa.String(length=160), primary_key=True),
        sa.Column('user_id', sa.String(length=128), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('chain', sa.String(length=16), nullable=False),
        sa.Column('token', sa.String(length=16), nullable=False, server_default='USDT'),
        sa.Column('amount_usdt', sa.String(length=32), nullable=False),
        sa.Column('amount_base_units', sa.String(length=80), nullable=False),
        sa.Column('to_address', sa.String(length=64), nullable=False),
        sa.Column('from_address', sa.String(length=64)),
        sa.Column('txid', sa.String(length=128), nullable=False),
        sa.Column('block_number', sa.Integer()),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='confirmed'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_chain_created', 'payments', ['chain', 'created_at'])

    op.create_table('credit_ledger',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(length=128), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('amount > 0', name='ck_credit_ledger_amount_positive'),
    )
    op.create_index('ix_credit_ledger_user_id', 'credit_ledger', ['user_id'])

def downgrade():
    op.drop_index('ix_credit_ledger_user_id', table_name='credit_ledger')
    op.drop_table('credit_ledger')
    op.drop_index('ix_payments_chain_created', table_name='payments')
    op.drop_index('ix_payments_user_id', table_name='payments')
    op.drop_table('payments')
    op.drop_table('users')
