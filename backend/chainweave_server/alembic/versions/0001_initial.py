"""Initial schema: users, requests, reporting, reconciliation tables

Matches the ORM models in `chainweave_server.models`.
"""
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:  # noqa: D401
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('wallet_address', sa.String(length=42), nullable=False, unique=True),
        sa.Column('email', sa.String(length=254), nullable=True, unique=True),
        sa.Column('username', sa.String(length=30), nullable=True, unique=True),
        sa.Column('avatar', sa.String(length=500), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.text('1')),
        sa.Column('preferences', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_users_is_active', 'users', ['is_active'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    # nft_requests: request_id is the on/off-chain correlation key
    op.create_table(
        'nft_requests',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('request_id', sa.String(length=80), nullable=False),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('wallet_address', sa.String(length=42), nullable=False),
        sa.Column('prompt', sa.Text, nullable=False),
        sa.Column('destination_chain_id', sa.BigInteger, nullable=False),
        sa.Column('recipient', sa.String(length=200), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='pending'),
        sa.Column('fee', sa.String(length=78), nullable=False, server_default='0'),
        sa.Column('ai_generation_data', sa.JSON, nullable=True),
        sa.Column('blockchain_data', sa.JSON, nullable=True),
        sa.Column('metadata', sa.JSON, nullable=True),
        sa.Column('error_message', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime, nullable=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.UniqueConstraint('request_id', name='uq_nft_requests_request_id'),
    )
    op.create_index('ix_nft_requests_wallet_address', 'nft_requests', ['wallet_address'])
    op.create_index('ix_nft_requests_user_status', 'nft_requests', ['user_id', 'status'])
    op.create_index('ix_nft_requests_wallet_created', 'nft_requests', ['wallet_address', 'created_at'])
    op.create_index('ix_nft_requests_chain_status', 'nft_requests', ['destination_chain_id', 'status'])
    op.create_index('ix_nft_requests_status_created', 'nft_requests', ['status', 'created_at'])
    op.create_index('ix_nft_requests_request_status', 'nft_requests', ['request_id', 'status'])

    op.create_table(
        'collections',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.String(length=1000), nullable=False, server_default=''),
        sa.Column('chain_id', sa.BigInteger, nullable=False),
        sa.Column('contract_address', sa.String(length=42), nullable=False),
        sa.Column('creator_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('total_supply', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_minted', sa.Integer, nullable=False, server_default='0'),
        sa.Column('royalty_bps', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.text('1')),
        sa.Column('metadata', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('chain_id', 'contract_address', name='uq_collections_chain_contract'),
    )
    op.create_index('ix_collections_creator_id', 'collections', ['creator_id'])

    op.create_table(
        'platform_stats',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('date', sa.Date, nullable=False, unique=True),
        sa.Column('total_users', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_requests', sa.Integer, nullable=False, server_default='0'),
        sa.Column('completed_requests', sa.Integer, nullable=False, server_default='0'),
        sa.Column('failed_requests', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_volume', sa.String(length=78), nullable=False, server_default='0'),
        sa.Column('active_chains', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_table(
        'user_analytics',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('requests_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('completed_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_spent', sa.String(length=78), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('user_id', 'date', name='uq_user_analytics_user_date'),
    )

    # events parked until their request shows up in nft_requests
    op.create_table(
        'unresolved_chain_events',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('event_name', sa.String(length=50), nullable=False),
        sa.Column('request_id', sa.String(length=80), nullable=False),
        sa.Column('tx_hash', sa.String(length=66), nullable=False, server_default=''),
        sa.Column('log_index', sa.Integer, nullable=False, server_default='0'),
        sa.Column('block_number', sa.BigInteger, nullable=True),
        sa.Column('args', sa.JSON, nullable=False),
        sa.Column('state', sa.String(length=20), nullable=False, server_default='parked'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('tx_hash', 'log_index', 'event_name', 'request_id', name='uq_unresolved_event_log'),
    )
    op.create_index('ix_unresolved_chain_events_request_id', 'unresolved_chain_events', ['request_id'])
    op.create_index('ix_unresolved_state_created', 'unresolved_chain_events', ['state', 'created_at'])

    op.create_table(
        'chain_cursors',
        sa.Column('name', sa.String(length=100), primary_key=True),
        sa.Column('last_block', sa.BigInteger, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )


def downgrade() -> None:  # noqa: D401
    op.drop_table('chain_cursors')
    op.drop_index('ix_unresolved_state_created', table_name='unresolved_chain_events')
    op.drop_index('ix_unresolved_chain_events_request_id', table_name='unresolved_chain_events')
    op.drop_table('unresolved_chain_events')
    op.drop_table('user_analytics')
    op.drop_table('platform_stats')
    op.drop_index('ix_collections_creator_id', table_name='collections')
    op.drop_table('collections')
    for name in (
        'ix_nft_requests_request_status',
        'ix_nft_requests_status_created',
        'ix_nft_requests_chain_status',
        'ix_nft_requests_wallet_created',
        'ix_nft_requests_user_status',
        'ix_nft_requests_wallet_address',
    ):
        op.drop_index(name, table_name='nft_requests')
    op.drop_table('nft_requests')
    op.drop_index('ix_users_created_at', table_name='users')
    op.drop_index('ix_users_is_active', table_name='users')
    op.drop_table('users')
