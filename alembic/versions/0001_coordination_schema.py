"""Initial coordination schema.

Revision ID: 0001_coordination_schema
Revises:
Create Date: 2026-10-19

Users and service areas (mirrored from the identity store), conversations,
contracts, referrals, marketplace leads and notifications. Types are
portable between SQLite and PostgreSQL.
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '0001_coordination_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*names: str) -> list:
    return [
        sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.current_timestamp())
        for name in names
    ]


def upgrade() -> None:
    """Create all coordination tables."""

    # =========================================================================
    # Identity mirror
    # =========================================================================
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='owner'),
        sa.Column('primary_area_code', sa.String(20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps('created_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_email', 'user', ['email'], unique=True)
    op.create_index('ix_user_primary_area_code', 'user', ['primary_area_code'])

    op.create_table(
        'agent_service_area',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('area_code', sa.String(20), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'area_code', name='uq_agent_service_area'),
    )
    op.create_index('ix_agent_service_area_user_id', 'agent_service_area', ['user_id'])
    op.create_index('ix_agent_service_area_area_code', 'agent_service_area', ['area_code'])

    # =========================================================================
    # Conversations
    # =========================================================================
    op.create_table(
        'conversation',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        *_timestamps('created_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_conversation_created_by_user_id', 'conversation', ['created_by_user_id'])

    op.create_table(
        'conversation_participant',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversation.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='member'),
        sa.Column('last_read_message_id', sa.Integer(), nullable=True),
        *_timestamps('joined_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('conversation_id', 'user_id', name='uq_conversation_participant'),
    )
    op.create_index('ix_conversation_participant_user_id', 'conversation_participant', ['user_id'])

    op.create_table(
        'message',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversation.id'), nullable=False),
        sa.Column('sender_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('attachment_key', sa.String(512), nullable=True),
        *_timestamps('created_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_message_conversation_id_id', 'message', ['conversation_id', 'id'])

    op.create_table(
        'conversation_link',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('purpose', sa.String(32), nullable=False),
        sa.Column('party_key', sa.String(128), nullable=False),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversation.id'), nullable=False),
        *_timestamps('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('purpose', 'party_key', name='uq_conversation_link'),
    )
    op.create_index('ix_conversation_link_conversation_id', 'conversation_link', ['conversation_id'])

    # =========================================================================
    # Contracts
    # =========================================================================
    op.create_table(
        'contract',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('type', sa.String(50), nullable=False, server_default='custom'),
        sa.Column('created_by_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('file_key', sa.String(512), nullable=False),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversation.id'), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('signed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('created_at', 'updated_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_contract_created_by_user_id', 'contract', ['created_by_user_id'])
    op.create_index('ix_contract_conversation_id', 'contract', ['conversation_id'])
    op.create_index('ix_contract_status', 'contract', ['status'])

    op.create_table(
        'contract_signer',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('contract_id', sa.Integer(), sa.ForeignKey('contract.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='signer'),
        sa.Column('signed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('contract_id', 'user_id', name='uq_contract_signer'),
    )
    op.create_index('ix_contract_signer_user_id', 'contract_signer', ['user_id'])

    # =========================================================================
    # Referrals
    # =========================================================================
    op.create_table(
        'referral',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('from_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('to_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('conversation_id', sa.Integer(), sa.ForeignKey('conversation.id'), nullable=False),
        sa.Column('fee_percent', sa.Float(), nullable=False),
        sa.Column('context', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='offered'),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('created_at', 'updated_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_referral_from_user_id', 'referral', ['from_user_id'])
    op.create_index('ix_referral_to_user_id', 'referral', ['to_user_id'])
    op.create_index('ix_referral_status', 'referral', ['status'])

    # =========================================================================
    # Marketplace
    # =========================================================================
    op.create_table(
        'marketplace_listing',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('owner_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('address', sa.String(255), nullable=True),
        sa.Column('area_code', sa.String(20), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        *_timestamps('created_at', 'updated_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_marketplace_listing_owner_user_id', 'marketplace_listing', ['owner_user_id'])
    op.create_index('ix_marketplace_listing_area_code', 'marketplace_listing', ['area_code'])
    op.create_index('ix_marketplace_listing_status', 'marketplace_listing', ['status'])
    op.create_index('ix_marketplace_listing_area_status', 'marketplace_listing', ['area_code', 'status'])

    op.create_table(
        'lead',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source', sa.String(32), nullable=False, server_default='marketplace'),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('related_id', sa.Integer(), sa.ForeignKey('marketplace_listing.id'), nullable=False),
        sa.Column('owner_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('assignee_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='new'),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('created_at'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('related_id'),
    )
    op.create_index('ix_lead_owner_user_id', 'lead', ['owner_user_id'])
    op.create_index('ix_lead_assignee_user_id', 'lead', ['assignee_user_id'])
    op.create_index('ix_lead_status', 'lead', ['status'])

    op.create_table(
        'lead_match',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('lead_id', sa.Integer(), sa.ForeignKey('lead.id'), nullable=False),
        sa.Column('agent_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('lead_id', 'agent_user_id', name='uq_lead_match'),
    )
    op.create_index('ix_lead_match_agent_user_id', 'lead_match', ['agent_user_id'])

    # =========================================================================
    # Notifications
    # =========================================================================
    op.create_table(
        'notification',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('channel', sa.String(16), nullable=False, server_default='inapp'),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('seen_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('created_at'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notification_user_id_id', 'notification', ['user_id', 'id'])


def downgrade() -> None:
    """Drop all coordination tables, children first."""
    for table in (
        'notification',
        'lead_match',
        'lead',
        'marketplace_listing',
        'referral',
        'contract_signer',
        'contract',
        'conversation_link',
        'message',
        'conversation_participant',
        'conversation',
        'agent_service_area',
        'user',
    ):
        op.drop_table(table)
