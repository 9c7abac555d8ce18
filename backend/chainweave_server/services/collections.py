from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from chainweave_server.models.reporting import Collection
from chainweave_server.models.user import User
from chainweave_server.schemas.nft_request import ServiceResult
from chainweave_server.utils.hex_utils import normalize_wallet

_log = logging.getLogger(__name__)


class CollectionService:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _creator_id(self, db, wallet: str) -> int | None:
        return db.execute(
            select(User.id).where(User.wallet_address == wallet, User.is_active.is_(True))
        ).scalar_one_or_none()

    def create(
        self,
        *,
        name: str,
        chain_id: int,
        contract_address: str,
        creator_wallet: str,
        description: str = '',
        total_supply: int = 0,
        royalty_bps: int = 0,
        metadata: dict | None = None,
    ) -> ServiceResult:
        if not 0 <= int(royalty_bps) <= 10000:
            return ServiceResult.fail('royalty must be between 0 and 10000 basis points', 'invalid')
        try:
            creator = normalize_wallet(creator_wallet)
            contract = normalize_wallet(contract_address)
        except ValueError as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        with self._session_factory() as db:
            creator_id = self._creator_id(db, creator)
            if creator_id is None:
                return ServiceResult.fail('Creator not found', 'not_found')
            row = Collection(
                name=name,
                description=description or '',
                chain_id=int(chain_id),
                contract_address=contract,
                creator_id=creator_id,
                total_supply=int(total_supply),
                royalty_bps=int(royalty_bps),
                collection_metadata=metadata,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return ServiceResult.fail('collection already registered for this contract', 'conflict')
            db.refresh(row)
        _log.info("collection %s created chain=%s contract=%s", row.id, chain_id, contract)
        return ServiceResult.ok(row.as_dict())

    def get(self, collection_id: int) -> ServiceResult:
        with self._session_factory() as db:
            row = db.get(Collection, collection_id)
        if row is None or not row.is_active:
            return ServiceResult.fail('Collection not found', 'not_found')
        return ServiceResult.ok(row.as_dict())

    def list_by_creator(self, creator_wallet: str, *, page: int = 1, limit: int = 20) -> ServiceResult:
        try:
            creator = normalize_wallet(creator_wallet)
        except ValueError as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        page = max(1, page)
        limit = max(1, min(50, limit))
        with self._session_factory() as db:
            creator_id = self._creator_id(db, creator)
            if creator_id is None:
                return ServiceResult.fail('Creator not found', 'not_found')
            rows = db.execute(
                select(Collection)
                .where(Collection.creator_id == creator_id, Collection.is_active.is_(True))
                .order_by(Collection.created_at.desc(), Collection.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()
        return ServiceResult.ok([r.as_dict() for r in rows])

    def deactivate(self, collection_id: int, creator_wallet: str) -> ServiceResult:
        try:
            creator = normalize_wallet(creator_wallet)
        except ValueError as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        with self._session_factory() as db:
            row = db.get(Collection, collection_id)
            if row is None or not row.is_active:
                return ServiceResult.fail('Collection not found', 'not_found')
            if row.creator_id != self._creator_id(db, creator):
                return ServiceResult.fail('Only the creator can deactivate a collection', 'forbidden')
            row.is_active = False
            db.commit()
        _log.info("collection %s deactivated", collection_id)
        return ServiceResult.ok()
