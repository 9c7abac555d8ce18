from __future__ import annotations

import logging

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from chainweave_server.models.user import DEFAULT_PREFERENCES, User
from chainweave_server.schemas.nft_request import ServiceResult
from chainweave_server.utils.hex_utils import normalize_wallet

_log = logging.getLogger(__name__)


class UserService:
    """Wallet-keyed accounts. Users are deactivated, never removed."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_by_wallet(self, wallet_address: str) -> User | None:
        wallet = normalize_wallet(wallet_address)
        with self._session_factory() as db:
            return db.execute(
                select(User).where(User.wallet_address == wallet, User.is_active.is_(True))
            ).scalar_one_or_none()

    def register(self, wallet_address: str, *, email: str | None = None, username: str | None = None) -> ServiceResult:
        """Find-or-create by wallet; a deactivated wallet is reactivated."""
        try:
            wallet = normalize_wallet(wallet_address)
        except ValueError as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        with self._session_factory() as db:
            user = db.execute(select(User).where(User.wallet_address == wallet)).scalar_one_or_none()
            if user is not None:
                if not user.is_active:
                    user.is_active = True
                    db.commit()
                    _log.info("user reactivated wallet=%s", wallet)
                return ServiceResult.ok(user.as_dict())
            user = User(
                wallet_address=wallet,
                email=email.lower() if email else None,
                username=username.lower() if username else None,
                preferences=dict(DEFAULT_PREFERENCES),
            )
            db.add(user)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = db.execute(select(User).where(User.wallet_address == wallet)).scalar_one_or_none()
                if existing is None:
                    return ServiceResult.fail('email or username already taken', 'conflict')
                return ServiceResult.ok(existing.as_dict())
            db.refresh(user)
            _log.info("user created wallet=%s id=%s", wallet, user.id)
            return ServiceResult.ok(user.as_dict())

    def get_by_wallet(self, wallet_address: str) -> ServiceResult:
        try:
            user = self.find_by_wallet(wallet_address)
        except ValueError as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        if user is None:
            return ServiceResult.fail('User not found', 'not_found')
        return ServiceResult.ok(user.as_dict())

    def update_profile(self, wallet_address: str, changes: dict) -> ServiceResult:
        try:
            wallet = normalize_wallet(wallet_address)
        except ValueError as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        with self._session_factory() as db:
            user = db.execute(
                select(User).where(User.wallet_address == wallet, User.is_active.is_(True))
            ).scalar_one_or_none()
            if user is None:
                return ServiceResult.fail('User not found', 'not_found')
            email = changes.get('email')
            username = changes.get('username')
            taken = []
            if email:
                taken.append(User.email == email.lower())
            if username:
                taken.append(User.username == username.lower())
            if taken:
                clash = db.execute(select(User.id).where(User.id != user.id, or_(*taken))).first()
                if clash is not None:
                    return ServiceResult.fail('email or username already taken', 'conflict')
            if email:
                user.email = email.lower()
            if username:
                user.username = username.lower()
            if changes.get('avatar') is not None:
                user.avatar = changes['avatar']
            db.commit()
            return ServiceResult.ok(user.as_dict())

    def update_preferences(self, wallet_address: str, preferences: dict) -> ServiceResult:
        try:
            wallet = normalize_wallet(wallet_address)
        except ValueError as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        with self._session_factory() as db:
            user = db.execute(
                select(User).where(User.wallet_address == wallet, User.is_active.is_(True))
            ).scalar_one_or_none()
            if user is None:
                return ServiceResult.fail('User not found', 'not_found')
            merged = dict(DEFAULT_PREFERENCES)
            merged.update(user.preferences or {})
            merged.update({k: v for k, v in preferences.items() if v is not None})
            # JSON columns are not mutation-tracked; assign a new dict
            user.preferences = merged
            db.commit()
            return ServiceResult.ok(user.as_dict())

    def deactivate(self, wallet_address: str) -> ServiceResult:
        try:
            wallet = normalize_wallet(wallet_address)
        except ValueError as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        with self._session_factory() as db:
            user = db.execute(select(User).where(User.wallet_address == wallet)).scalar_one_or_none()
            if user is None or not user.is_active:
                return ServiceResult.fail('User not found', 'not_found')
            user.is_active = False
            db.commit()
        _log.info("user deactivated wallet=%s", wallet)
        return ServiceResult.ok()

    def active_count(self) -> int:
        with self._session_factory() as db:
            return int(db.execute(select(func.count(User.id)).where(User.is_active.is_(True))).scalar_one())
