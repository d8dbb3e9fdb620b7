"""create users, admins, plans, payments, subscription ledger and refresh tokens

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a0b1c2d3e4f5'
down_revision = None
branch_labels = None
depends_on = None

PLAN_TIER = sa.Enum('Regular', 'Premium', 'International', 'None', name='plan_tier')
PLAN_TIER_DEF = sa.Enum('Regular', 'Premium', 'International', name='plan_tier_def')


def upgrade() -> None:
    # users (購読スナップショット込み)
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('display_id', sa.String(8), nullable=False, comment='表示用ID (8桁16進)'),
        sa.Column('mobile', sa.String(20), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('fcm_token', sa.String(512), nullable=True, comment='プッシュ通知チャネル'),
        sa.Column('sub_tier', PLAN_TIER, nullable=False),
        sa.Column('sub_start_date', sa.DateTime(), nullable=True),
        sa.Column('sub_end_date', sa.DateTime(), nullable=True),
        sa.Column('sub_is_active', sa.Boolean(), nullable=False),
        sa.Column('sub_max_visible_targets', sa.Integer(), nullable=False),
        sa.Column('sub_reminder_lead_hours', sa.Integer(), nullable=False),
        sa.Column('sub_reminder_sent', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_display_id', 'users', ['display_id'], unique=True)
    op.create_index('ix_users_mobile', 'users', ['mobile'], unique=True)

    op.create_table(
        'admins',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_admins_email', 'admins', ['email'], unique=True)

    op.create_table(
        'subscription_plans',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False, comment='プラン名'),
        sa.Column('tier', PLAN_TIER_DEF, nullable=False),
        sa.Column('duration_days', sa.Integer(), nullable=False, comment='有効日数'),
        sa.Column('duration_label', sa.String(50), nullable=False, comment='表示用 (例: 7 Days)'),
        sa.Column('price', sa.Integer(), nullable=False, comment='料金 (最小通貨単位ではなく主単位)'),
        sa.Column('currency', sa.Enum('INR', 'USD', name='plan_currency'), nullable=False),
        sa.Column('max_visible_targets', sa.Integer(), nullable=False, comment='閲覧可能ターゲット数'),
        sa.Column('reminder_lead_hours', sa.Integer(), nullable=False, comment='期限切れ何時間前に通知するか'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', sa.Enum('pending', 'completed', 'failed', name='payment_status'), nullable=False),
        sa.Column('transaction_id', sa.String(64), nullable=False, comment='冪等キー (自社採番)'),
        sa.Column('gateway_transaction_id', sa.String(255), nullable=True, comment='決済成功時のゲートウェイ側ID'),
        sa.Column('is_new_user', sa.Boolean(), nullable=False, comment='登録同時決済フロー'),
        sa.Column('temp_password_enc', sa.Text(), nullable=True, comment='仮パスワード (AES-GCM)'),
        sa.Column('granted_by_admin_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['plan_id'], ['subscription_plans.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['granted_by_admin_id'], ['admins.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id'),
    )
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    # subscription_ledger (購読キュー)
    op.create_table(
        'subscription_ledger',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('pending', 'active', 'completed', name='ledger_status'), nullable=False),
        sa.Column('queue_position', sa.Integer(), nullable=False, comment='ユーザー内で1始まりの連番'),
        sa.Column('activation_date', sa.DateTime(), nullable=True),
        sa.Column('expiry_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['plan_id'], ['subscription_plans.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'queue_position', name='uq_ledger_user_position'),
        sa.UniqueConstraint('payment_id', name='uq_ledger_payment'),
    )
    op.create_index('ix_subscription_ledger_user_id', 'subscription_ledger', ['user_id'])
    op.create_index('ix_ledger_user_status', 'subscription_ledger', ['user_id', 'status'])
    op.create_index('ix_ledger_status_expiry', 'subscription_ledger', ['status', 'expiry_date'])

    op.create_table(
        'refresh_tokens',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('token_id', sa.String(64), nullable=False, comment='JWT内のjti'),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('owner_type', sa.Enum('user', 'admin', name='token_owner_type'), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('replaced_by', sa.Integer(), nullable=True),
        sa.Column('issued_from_ip', sa.String(64), nullable=True),
        sa.Column('issued_from_agent', sa.String(512), nullable=True),
        sa.ForeignKeyConstraint(['replaced_by'], ['refresh_tokens.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refresh_tokens_token_id', 'refresh_tokens', ['token_id'], unique=True)
    op.create_index('ix_refresh_tokens_owner', 'refresh_tokens', ['owner_type', 'owner_id'])


def downgrade() -> None:
    op.drop_table('refresh_tokens')
    op.drop_table('subscription_ledger')
    op.drop_table('payments')
    op.drop_table('subscription_plans')
    op.drop_index('ix_admins_email', table_name='admins')
    op.drop_table('admins')
    op.drop_index('ix_users_mobile', table_name='users')
    op.drop_index('ix_users_display_id', table_name='users')
    op.drop_table('users')
