from __future__ import annotations

import datetime as dt
import enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from chainweave_server.db.session import Base


class RequestStatus(str, enum.Enum):
    pending = 'pending'
    processing = 'processing'
    ai_completed = 'ai_completed'
    cross_chain_pending = 'cross_chain_pending'
    completed = 'completed'
    failed = 'failed'
    cancelled = 'cancelled'


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class NFTRequest(Base):
    """One mint request, correlated on and off chain by ``request_id``.

    ``version`` is bumped by every write from the request store and is the
    optimistic-concurrency token for JSON sub-record merges. Status changes
    are guarded by a status precondition instead (see requests.lifecycle).
    """
    __tablename__ = 'nft_requests'

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(sa.String(80), nullable=False)
    user_id: Mapped[int | None] = mapped_column(sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    wallet_address: Mapped[str] = mapped_column(sa.String(42), nullable=False, index=True)
    prompt: Mapped[str] = mapped_column(sa.Text, nullable=False)
    destination_chain_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    recipient: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    status: Mapped[str] = mapped_column(sa.String(30), nullable=False, default=RequestStatus.pending.value)
    # wei amounts overflow 64-bit integers, keep them as decimal strings
    fee: Mapped[str] = mapped_column(sa.String(78), nullable=False, default='0')
    ai_generation_data: Mapped[dict | None] = mapped_column(sa.JSON(none_as_null=True), nullable=True)
    blockchain_data: Mapped[dict | None] = mapped_column(sa.JSON(none_as_null=True), nullable=True)
    nft_metadata: Mapped[dict | None] = mapped_column('metadata', sa.JSON(none_as_null=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
    completed_at: Mapped[dt.datetime | None] = mapped_column(sa.DateTime, nullable=True)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    __table_args__ = (
        sa.UniqueConstraint('request_id', name='uq_nft_requests_request_id'),
        sa.Index('ix_nft_requests_user_status', 'user_id', 'status'),
        sa.Index('ix_nft_requests_wallet_created', 'wallet_address', 'created_at'),
        sa.Index('ix_nft_requests_chain_status', 'destination_chain_id', 'status'),
        sa.Index('ix_nft_requests_status_created', 'status', 'created_at'),
        sa.Index('ix_nft_requests_request_status', 'request_id', 'status'),
    )

    @property
    def processing_time_ms(self) -> int | None:
        if self.completed_at and self.created_at:
            return int((self.completed_at - self.created_at).total_seconds() * 1000)
        return None

    def as_dict(self) -> dict:
        return {
            'request_id': self.request_id,
            'user_id': self.user_id,
            'wallet_address': self.wallet_address,
            'prompt': self.prompt,
            'destination_chain_id': self.destination_chain_id,
            'recipient': self.recipient,
            'status': self.status,
            'fee': self.fee,
            'ai_generation_data': self.ai_generation_data,
            'blockchain_data': self.blockchain_data,
            'metadata': self.nft_metadata,
            'error_message': self.error_message,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'completed_at': self.completed_at,
            'processing_time_ms': self.processing_time_ms,
        }


__all__ = ["RequestStatus", "NFTRequest"]
