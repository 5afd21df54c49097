"""initial_schema

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b9d2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    ]


def _token_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('label', sa.String(100), nullable=False, server_default=''),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Users
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(100), nullable=False, comment='Login name'),
        sa.Column('password_hash', sa.String(255), nullable=False, comment='bcrypt hash'),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_account_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('plan_type', sa.String(20), nullable=False, server_default='free'),
        sa.Column('plan_status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('plan_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('plan_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('daily_video_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('daily_video_limit', sa.Integer(), nullable=True),
        sa.Column('daily_reset_date', sa.Date(), nullable=True),
        sa.Column('voice_characters_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('voice_characters_reset_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('bulk_max_batch', sa.Integer(), nullable=True),
        sa.Column('bulk_delay_seconds', sa.Integer(), nullable=True),
        sa.Column('bulk_max_prompts', sa.Integer(), nullable=True),
        sa.Column('uid', sa.String(20), nullable=False, comment='Referral code VEO-XXXXXX'),
        sa.Column('referred_by', sa.String(20), nullable=True),
        sa.Column('affiliate_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('two_factor_secret', sa.String(64), nullable=True),
        sa.Column('two_factor_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_uid', 'users', ['uid'], unique=True)
    op.create_index('ix_users_plan_type', 'users', ['plan_type'])
    op.create_index('ix_users_plan_expiry', 'users', ['plan_expiry'])
    op.create_index('ix_users_referred_by', 'users', ['referred_by'])

    # Token pools
    op.create_table(
        'api_tokens',
        sa.Column('token', sa.Text(), nullable=False),
        sa.Column('request_count', sa.Integer(), nullable=False, server_default='0'),
        *_token_columns(),
    )
    op.create_table(
        'cartesia_tokens',
        sa.Column('api_key', sa.Text(), nullable=False),
        sa.Column('characters_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('characters_limit', sa.Integer(), nullable=False, server_default='20000'),
        *_token_columns(),
    )
    op.create_table(
        'zyphra_tokens',
        sa.Column('api_key', sa.Text(), nullable=False),
        sa.Column('characters_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('characters_limit', sa.Integer(), nullable=False, server_default='20000'),
        sa.Column('minutes_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('minutes_limit', sa.Integer(), nullable=False, server_default='100'),
        *_token_columns(),
    )
    op.create_table(
        'flow_cookies',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('cookie_data', sa.Text(), nullable=False),
        sa.Column('label', sa.String(100), nullable=False, server_default=''),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('request_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('fail_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expired_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    for table in ('api_tokens', 'cartesia_tokens', 'zyphra_tokens', 'flow_cookies'):
        op.create_index(f'ix_{table}_is_active', table, ['is_active'])

    # Settings singletons
    op.create_table(
        'token_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('rotation_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('max_requests_per_token', sa.Integer(), nullable=False, server_default='1000'),
        sa.Column('max_error_count', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('videos_per_batch', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('batch_delay_seconds', sa.Integer(), nullable=False, server_default='20'),
        sa.Column('next_rotation_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        'auto_retry_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('enable_auto_retry', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('max_retry_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('retry_delay_minutes', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        'tool_maintenance',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('veo_generator_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('bulk_generator_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('text_to_image_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('image_to_video_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('script_creator_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('character_consistency_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('text_to_voice_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('community_voices_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('script_to_frames_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        'affiliate_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('empire_earning', sa.Integer(), nullable=False, server_default='300'),
        sa.Column('scale_earning', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('empire_renewal_earning', sa.Integer(), nullable=False, server_default='150'),
        sa.Column('scale_renewal_earning', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('min_withdrawal', sa.Integer(), nullable=False, server_default='1000'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )

    # History
    op.create_table(
        'video_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('aspect_ratio', sa.String(20), nullable=False, server_default='landscape'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('video_url', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('operation_name', sa.String(255), nullable=True),
        sa.Column('scene_id', sa.String(64), nullable=True),
        sa.Column('token_id', sa.Integer(), sa.ForeignKey('api_tokens.id', ondelete='SET NULL'), nullable=True),
        sa.Column('poll_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('policy_error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('batch_id', sa.String(64), nullable=True),
        sa.Column('scene_number', sa.Integer(), nullable=True),
        sa.Column('reference_image_url', sa.Text(), nullable=True),
        sa.Column('end_image_url', sa.Text(), nullable=True),
        sa.Column('deleted_by_user', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_video_history_user_id', 'video_history', ['user_id'])
    op.create_index('ix_video_history_batch_id', 'video_history', ['batch_id'])
    op.create_index('ix_video_history_user_created', 'video_history', ['user_id', 'created_at'])
    op.create_index('ix_video_history_status', 'video_history', ['status'])

    op.create_table(
        'image_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('aspect_ratio', sa.String(20), nullable=False, server_default='landscape'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('batch_id', sa.String(64), nullable=True),
        sa.Column('scene_number', sa.Integer(), nullable=True),
        sa.Column('deleted_by_user', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_image_history_user_id', 'image_history', ['user_id'])
    op.create_index('ix_image_history_batch_id', 'image_history', ['batch_id'])

    # Affiliate ledger
    op.create_table(
        'affiliate_earnings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('referrer_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('referred_user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('plan_type', sa.String(20), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('is_first_time', sa.Boolean(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='credited'),
        sa.Column('transaction_id', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('referred_user_id', 'transaction_id', name='uq_affiliate_earning_event'),
    )
    op.create_index('ix_affiliate_earnings_referrer_id', 'affiliate_earnings', ['referrer_id'])
    op.create_index('ix_affiliate_earnings_referred_user_id', 'affiliate_earnings', ['referred_user_id'])

    op.create_table(
        'affiliate_withdrawals',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('bank_name', sa.String(100), nullable=False),
        sa.Column('account_number', sa.String(64), nullable=False),
        sa.Column('account_holder_name', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column('processed_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_affiliate_withdrawals_user_id', 'affiliate_withdrawals', ['user_id'])
    op.create_index('ix_affiliate_withdrawals_status', 'affiliate_withdrawals', ['status'])

    # Resellers
    op.create_table(
        'resellers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('credit_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_resellers_username', 'resellers', ['username'], unique=True)

    op.create_table(
        'reseller_credit_ledger',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('reseller_id', sa.Integer(), sa.ForeignKey('resellers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('credit_change', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_reseller_credit_ledger_reseller_id', 'reseller_credit_ledger', ['reseller_id'])

    op.create_table(
        'reseller_users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('reseller_id', sa.Integer(), sa.ForeignKey('resellers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('plan_type', sa.String(20), nullable=False),
        sa.Column('credit_cost', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('user_id'),
    )
    op.create_index('ix_reseller_users_reseller_id', 'reseller_users', ['reseller_id'])

    # Voices
    op.create_table(
        'community_voices',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('voice_id', sa.String(100), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False, server_default='cartesia'),
        sa.Column('language', sa.String(10), nullable=False, server_default='en'),
        sa.Column('demo_audio_url', sa.Text(), nullable=True),
        sa.Column('creator_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('creator_name', sa.String(100), nullable=False),
        sa.Column('likes_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_community_voices_creator_id', 'community_voices', ['creator_id'])

    op.create_table(
        'community_voice_likes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('voice_id', sa.Integer(), sa.ForeignKey('community_voices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('voice_id', 'user_id', name='uq_voice_like'),
    )
    op.create_index('ix_community_voice_likes_voice_id', 'community_voice_likes', ['voice_id'])

    op.create_table(
        'top_voices',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('voice_id', sa.String(100), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False, server_default='cartesia'),
        sa.Column('language', sa.String(10), nullable=False, server_default='en'),
        sa.Column('demo_audio_url', sa.Text(), nullable=True),
        sa.Column('likes_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        'top_voices',
        'community_voice_likes',
        'community_voices',
        'reseller_users',
        'reseller_credit_ledger',
        'resellers',
        'affiliate_withdrawals',
        'affiliate_earnings',
        'image_history',
        'video_history',
        'affiliate_settings',
        'tool_maintenance',
        'auto_retry_settings',
        'token_settings',
        'flow_cookies',
        'zyphra_tokens',
        'cartesia_tokens',
        'api_tokens',
        'users',
    ):
        op.drop_table(table)
