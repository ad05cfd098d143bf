"""initial lending schema

Revision ID: 3f2a9c1d7b10
Revises:
Create Date: 2026-10-19 09:12:44.201573

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f2a9c1d7b10'
down_revision = None
branch_labels = None
depends_on = None


def timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=150)),
        sa.Column('email', sa.String(length=320), unique=True),
        sa.Column('phone_number', sa.String(length=20), unique=True),
        sa.Column('password_hash', sa.String(length=255)),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='user'),
        sa.Column('login_method', sa.String(length=20)),
        sa.Column('email_verified', sa.Boolean()),
        sa.Column('phone_verified', sa.Boolean()),
        sa.Column('street', sa.String(length=255)),
        sa.Column('city', sa.String(length=100)),
        sa.Column('state', sa.String(length=2)),
        sa.Column('zip_code', sa.String(length=10)),
        sa.Column('date_of_birth', sa.String(length=10)),
        sa.Column('ssn', sa.String(length=11)),
        sa.Column('referral_code', sa.String(length=20), unique=True),
        sa.Column('last_signed_in', sa.DateTime()),
        *timestamps(),
    )
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])
    op.create_index('idx_user_referral_code', 'users', ['referral_code'])

    op.create_table(
        'loan_applications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('reference_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('full_name', sa.String(length=150), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=False),
        sa.Column('date_of_birth', sa.String(length=10), nullable=False),
        sa.Column('ssn', sa.String(length=11), nullable=False),
        sa.Column('street', sa.String(length=255), nullable=False),
        sa.Column('city', sa.String(length=100), nullable=False),
        sa.Column('state', sa.String(length=2), nullable=False),
        sa.Column('zip_code', sa.String(length=10), nullable=False),
        sa.Column('employment_status', sa.String(length=20), nullable=False),
        sa.Column('employer', sa.String(length=150)),
        sa.Column('monthly_income', sa.Integer(), nullable=False),
        sa.Column('loan_type', sa.String(length=20), nullable=False),
        sa.Column('requested_amount', sa.Integer(), nullable=False),
        sa.Column('loan_purpose', sa.Text(), nullable=False),
        sa.Column('approved_amount', sa.Integer()),
        sa.Column('processing_fee_amount', sa.Integer()),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('admin_notes', sa.Text()),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('id_front_image', sa.Text()),
        sa.Column('id_back_image', sa.Text()),
        sa.Column('selfie_image', sa.Text()),
        sa.Column('id_verification_status', sa.String(length=20)),
        sa.Column('id_verification_notes', sa.Text()),
        sa.Column('processing_fee_paid', sa.Boolean(), server_default=sa.text('0')),
        sa.Column('processing_fee_payment_id', sa.Integer()),
        sa.Column('payment_verified', sa.Boolean(), server_default=sa.text('0')),
        sa.Column('payment_verified_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('payment_verified_at', sa.DateTime()),
        sa.Column('payment_verification_notes', sa.Text()),
        sa.Column('ip_address', sa.String(length=64)),
        sa.Column('approved_at', sa.DateTime()),
        sa.Column('disbursed_at', sa.DateTime()),
        *timestamps(),
    )
    op.create_index('ix_loan_applications_user_id', 'loan_applications', ['user_id'])
    op.create_index('ix_loan_applications_reference_number', 'loan_applications', ['reference_number'])
    op.create_index('ix_loan_applications_status', 'loan_applications', ['status'])
    op.create_index('ix_loan_applications_created_at', 'loan_applications', ['created_at'])

    op.create_table(
        'draft_applications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=320), nullable=False, unique=True),
        sa.Column('draft_data', sa.JSON(), nullable=False),
        sa.Column('current_step', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        *timestamps(),
    )
    op.create_index('ix_draft_applications_email', 'draft_applications', ['email'])

    op.create_table(
        'fee_configurations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('calculation_mode', sa.String(length=20), nullable=False, server_default='percentage'),
        sa.Column('percentage_rate', sa.Integer(), nullable=False, server_default='200'),
        sa.Column('fixed_fee_amount', sa.Integer(), nullable=False, server_default='200'),
        sa.Column('is_active', sa.Boolean()),
        sa.Column('updated_by', sa.Integer(), sa.ForeignKey('users.id')),
        *timestamps(),
    )
    op.create_index('ix_fee_configurations_is_active', 'fee_configurations', ['is_active'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('loan_application_id', sa.Integer(), sa.ForeignKey('loan_applications.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False, server_default='USD'),
        sa.Column('payment_provider', sa.String(length=20), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('provider_payment_id', sa.String(length=128)),
        sa.Column('payment_intent_id', sa.String(length=128)),
        sa.Column('transaction_id', sa.String(length=128)),
        sa.Column('card_last4', sa.String(length=4)),
        sa.Column('card_brand', sa.String(length=30)),
        sa.Column('crypto_currency', sa.String(length=10)),
        sa.Column('crypto_address', sa.String(length=128)),
        sa.Column('crypto_amount', sa.String(length=40)),
        sa.Column('crypto_tx_hash', sa.String(length=128), unique=True),
        sa.Column('failure_reason', sa.Text()),
        sa.Column('raw_response', sa.Text()),
        sa.Column('expires_at', sa.DateTime()),
        sa.Column('completed_at', sa.DateTime()),
        *timestamps(),
    )
    op.create_index('ix_payments_loan_application_id', 'payments', ['loan_application_id'])
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_provider_payment_id', 'payments', ['provider_payment_id'])
    op.create_index('ix_payments_transaction_id', 'payments', ['transaction_id'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])

    op.create_table(
        'disbursements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('loan_application_id', sa.Integer(), sa.ForeignKey('loan_applications.id'),
                  nullable=False, unique=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('account_holder_name', sa.String(length=150), nullable=False),
        sa.Column('account_number', sa.String(length=34), nullable=False),
        sa.Column('routing_number', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('transaction_id', sa.String(length=128)),
        sa.Column('failure_reason', sa.Text()),
        sa.Column('admin_notes', sa.Text()),
        sa.Column('initiated_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('completed_at', sa.DateTime()),
        *timestamps(),
    )
    op.create_index('ix_disbursements_user_id', 'disbursements', ['user_id'])
    op.create_index('ix_disbursements_status', 'disbursements', ['status'])

    op.create_table(
        'referrals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('referrer_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('referred_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, unique=True),
        sa.Column('referral_code', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('reward_amount', sa.Integer()),
        sa.Column('qualified_at', sa.DateTime()),
        sa.Column('rewarded_at', sa.DateTime()),
        *timestamps(),
    )
    op.create_index('ix_referrals_referrer_id', 'referrals', ['referrer_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('loan_application_id', sa.Integer(), sa.ForeignKey('loan_applications.id')),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('channel', sa.String(length=10), nullable=False),
        sa.Column('recipient', sa.String(length=320), nullable=False),
        sa.Column('subject', sa.String(length=255)),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('sent_at', sa.DateTime()),
        sa.Column('error_message', sa.Text()),
        *timestamps(),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'user_notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('link', sa.String(length=255)),
        sa.Column('is_read', sa.Boolean()),
        sa.Column('read_at', sa.DateTime()),
        *timestamps(),
    )
    op.create_index('ix_user_notifications_user_id', 'user_notifications', ['user_id'])
    op.create_index('ix_user_notifications_is_read', 'user_notifications', ['is_read'])

    op.create_table(
        'support_messages',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('sender_name', sa.String(length=150), nullable=False),
        sa.Column('sender_email', sa.String(length=320), nullable=False),
        sa.Column('sender_phone', sa.String(length=20)),
        sa.Column('subject', sa.String(length=500), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=False),
        sa.Column('admin_response', sa.Text()),
        sa.Column('responded_by', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('responded_at', sa.DateTime()),
        *timestamps(),
    )
    op.create_index('ix_support_messages_status', 'support_messages', ['status'])

    op.create_table(
        'live_chat_conversations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.String(length=64), nullable=False, unique=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('guest_name', sa.String(length=150)),
        sa.Column('guest_email', sa.String(length=320)),
        sa.Column('subject', sa.String(length=255)),
        sa.Column('category', sa.String(length=30)),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=False),
        sa.Column('assigned_agent_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('assigned_at', sa.DateTime()),
        sa.Column('resolved_at', sa.DateTime()),
        sa.Column('closed_at', sa.DateTime()),
        sa.Column('rating', sa.Integer()),
        sa.Column('feedback', sa.Text()),
        *timestamps(),
    )
    op.create_index('ix_live_chat_conversations_session_id', 'live_chat_conversations', ['session_id'])
    op.create_index('ix_live_chat_conversations_user_id', 'live_chat_conversations', ['user_id'])
    op.create_index('ix_live_chat_conversations_status', 'live_chat_conversations', ['status'])

    op.create_table(
        'live_chat_messages',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('conversation_id', sa.Integer(),
                  sa.ForeignKey('live_chat_conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.Integer(), sa.ForeignKey('users.id')),
        sa.Column('sender_type', sa.String(length=10), nullable=False),
        sa.Column('sender_name', sa.String(length=150)),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('message_type', sa.String(length=10), nullable=False),
        sa.Column('is_read', sa.Boolean()),
        *timestamps(),
    )
    op.create_index('ix_live_chat_messages_conversation_id', 'live_chat_messages', ['conversation_id'])

    op.create_table(
        'system_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('setting_key', sa.String(length=100), nullable=False, unique=True),
        sa.Column('setting_value', sa.Text(), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('setting_type', sa.String(length=10), nullable=False),
        sa.Column('updated_by', sa.Integer(), sa.ForeignKey('users.id')),
        *timestamps(),
    )
    op.create_index('ix_system_settings_setting_key', 'system_settings', ['setting_key'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=50)),
        sa.Column('entity_id', sa.Integer()),
        sa.Column('old_value', sa.Text()),
        sa.Column('new_value', sa.Text()),
        sa.Column('ip_address', sa.String(length=64)),
        sa.Column('user_agent', sa.String(length=255)),
        sa.Column('details', sa.JSON()),
        *timestamps(),
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])

    op.create_table(
        'password_reset_tokens',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token', sa.String(length=128), nullable=False, unique=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime()),
        *timestamps(),
    )
    op.create_index('ix_password_reset_tokens_token', 'password_reset_tokens', ['token'])

    op.create_table(
        'otp_codes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=320)),
        sa.Column('phone', sa.String(length=20)),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('purpose', sa.String(length=20), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('invalidated', sa.Boolean()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('verified_at', sa.DateTime()),
        *timestamps(),
    )
    op.create_index('ix_otp_codes_email', 'otp_codes', ['email'])
    op.create_index('ix_otp_codes_phone', 'otp_codes', ['phone'])

    op.create_table(
        'legal_acceptances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('loan_application_id', sa.Integer(), sa.ForeignKey('loan_applications.id')),
        sa.Column('document_type', sa.String(length=30), nullable=False),
        sa.Column('document_version', sa.String(length=20), nullable=False),
        sa.Column('ip_address', sa.String(length=64)),
        sa.Column('user_agent', sa.String(length=255)),
        *timestamps(),
    )
    op.create_index('ix_legal_acceptances_user_id', 'legal_acceptances', ['user_id'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(length=30), nullable=False),
        sa.Column('event_id', sa.String(length=128), nullable=False, unique=True),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('payload', sa.JSON()),
        sa.Column('processed', sa.Boolean()),
        sa.Column('processed_at', sa.DateTime()),
        sa.Column('success', sa.Boolean()),
        sa.Column('remarks', sa.Text()),
        *timestamps(),
    )
    op.create_index('ix_webhook_events_event_id', 'webhook_events', ['event_id'])


def downgrade():
    for table in ('webhook_events', 'legal_acceptances', 'otp_codes', 'password_reset_tokens',
                  'audit_logs', 'system_settings', 'live_chat_messages', 'live_chat_conversations',
                  'support_messages', 'user_notifications', 'notifications', 'referrals',
                  'disbursements', 'payments', 'fee_configurations', 'draft_applications',
                  'loan_applications', 'users'):
        op.drop_table(table)
