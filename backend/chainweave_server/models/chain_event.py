from __future__ import annotations

import datetime as dt
import enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from chainweave_server.db.session import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class UnresolvedState(str, enum.Enum):
    parked = 'parked'
    resolved = 'resolved'
    abandoned = 'abandoned'


class UnresolvedChainEvent(Base):
    """Contract event that referenced a request the store did not have yet.

    Parked rows are replayed by the reconciliation sweep until the request
    shows up or the attempt budget runs out.
    """
    __tablename__ = 'unresolved_chain_events'

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    event_name: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    request_id: Mapped[str] = mapped_column(sa.String(80), nullable=False, index=True)
    tx_hash: Mapped[str] = mapped_column(sa.String(66), nullable=False, default='')
    log_index: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    block_number: Mapped[int | None] = mapped_column(sa.BigInteger, nullable=True)
    args: Mapped[dict] = mapped_column(sa.JSON, nullable=False)
    state: Mapped[str] = mapped_column(sa.String(20), nullable=False, default=UnresolvedState.parked.value)
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        sa.UniqueConstraint('tx_hash', 'log_index', 'event_name', 'request_id', name='uq_unresolved_event_log'),
        sa.Index('ix_unresolved_state_created', 'state', 'created_at'),
    )

    def as_dict(self) -> dict:
        return {
            'id': self.id,
            'event_name': self.event_name,
            'request_id': self.request_id,
            'tx_hash': self.tx_hash,
            'log_index': self.log_index,
            'block_number': self.block_number,
            'args': self.args,
            'state': self.state,
            'attempts': self.attempts,
            'last_error': self.last_error,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


class ChainCursor(Base):
    __tablename__ = 'chain_cursors'

    name: Mapped[str] = mapped_column(sa.String(100), primary_key=True)
    last_block: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


__all__ = ["UnresolvedState", "UnresolvedChainEvent", "ChainCursor"]
