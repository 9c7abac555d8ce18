from __future__ import annotations

import datetime as dt

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from chainweave_server.db.session import Base

AI_STYLES = ('realistic', 'artistic', 'abstract', 'cartoon', 'anime')

DEFAULT_PREFERENCES: dict = {
    'default_chain': 11155111,  # Ethereum Sepolia
    'ai_style': 'realistic',
    'notifications': True,
    'public_profile': False,
}


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class User(Base):
    """Wallet-keyed account. Rows are deactivated, never deleted."""
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(sa.String(42), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(sa.String(254), unique=True, nullable=True)
    username: Mapped[str | None] = mapped_column(sa.String(30), unique=True, nullable=True)
    avatar: Mapped[str | None] = mapped_column(sa.String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    preferences: Mapped[dict] = mapped_column(sa.JSON, nullable=False, default=lambda: dict(DEFAULT_PREFERENCES))
    created_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(sa.DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        sa.Index('ix_users_is_active', 'is_active'),
        sa.Index('ix_users_created_at', 'created_at'),
    )

    def as_dict(self) -> dict:
        return {
            'id': self.id,
            'wallet_address': self.wallet_address,
            'email': self.email,
            'username': self.username,
            'avatar': self.avatar,
            'is_active': self.is_active,
            'preferences': self.preferences,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
