from __future__ import annotations

import datetime as dt

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from chainweave_server.db.session import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class Collection(Base):
    __tablename__ = 'collections'

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[str] = mapped_column(sa.String(1000), nullable=False, default='')
    chain_id: Mapped[int] = mapped_column(sa.BigInteger, nullable=False)
    contract_address: Mapped[str] = mapped_column(sa.String(42), nullable=False)
    creator_id: Mapped[int] = mapped_column(sa.ForeignKey('users.id'), nullable=False, index=True)
    total_supply: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_minted: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    royalty_bps: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)  # basis points
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    collection_metadata: Mapped[dict | None] = mapped_column('metadata', sa.JSON(none_as_null=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        sa.UniqueConstraint('chain_id', 'contract_address', name='uq_collections_chain_contract'),
    )

    def as_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'chain_id': self.chain_id,
            'contract_address': self.contract_address,
            'creator_id': self.creator_id,
            'total_supply': self.total_supply,
            'total_minted': self.total_minted,
            'royalty_bps': self.royalty_bps,
            'is_active': self.is_active,
            'metadata': self.collection_metadata,
            'created_at': self.created_at,
        }


class PlatformStats(Base):
    """Daily platform snapshot; one row per UTC date."""
    __tablename__ = 'platform_stats'

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    date: Mapped[dt.date] = mapped_column(sa.Date, unique=True, nullable=False)
    total_users: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_requests: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    completed_requests: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    failed_requests: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_volume: Mapped[str] = mapped_column(sa.String(78), nullable=False, default='0')
    active_chains: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow)

    def as_dict(self) -> dict:
        return {
            'date': self.date.isoformat(),
            'total_users': self.total_users,
            'total_requests': self.total_requests,
            'completed_requests': self.completed_requests,
            'failed_requests': self.failed_requests,
            'total_volume': self.total_volume,
            'active_chains': self.active_chains,
        }


class UserAnalytics(Base):
    __tablename__ = 'user_analytics'

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(sa.ForeignKey('users.id'), nullable=False)
    date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    requests_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    completed_count: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    total_spent: Mapped[str] = mapped_column(sa.String(78), nullable=False, default='0')
    created_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        sa.UniqueConstraint('user_id', 'date', name='uq_user_analytics_user_date'),
    )


__all__ = ["Collection", "PlatformStats", "UserAnalytics"]
