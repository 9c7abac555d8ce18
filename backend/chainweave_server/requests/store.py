from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, List, Tuple

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from chainweave_server.core.errors import (
    ConcurrentUpdateError,
    InvalidTransition,
    RequestNotFound,
    RetryLimitExceeded,
    ValidationFailed,
)
from chainweave_server.models.nft_request import NFTRequest, RequestStatus
from chainweave_server.requests.lifecycle import coerce_status, sources_for
from chainweave_server.schemas.nft_request import (
    MAX_RETRIES,
    AIGenerationData,
    BlockchainData,
    NFTMetadata,
)
from chainweave_server.utils.hex_utils import normalize_wallet

_log = logging.getLogger(__name__)

_MAX_ERROR_LEN = 500


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def _clamp(value: int | None, default: int, low: int, high: int) -> int:
    if value is None:
        return default
    return max(low, min(high, int(value)))


class RequestStore:
    """Typed access to the ``nft_requests`` table.

    Every method opens its own short session, so one store can be shared by
    the API, the event listener thread and the completion submitter.

    Status changes are a single conditional UPDATE whose WHERE clause holds
    the set of statuses allowed to reach the target; JSON sub-record merges
    are compare-and-swap on ``version`` and re-merge on conflict.
    """

    def __init__(self, session_factory: sessionmaker, *, max_merge_attempts: int = 5):
        self._session_factory = session_factory
        self._max_merge_attempts = max(1, max_merge_attempts)

    # --- reads --------------------------------------------------------
    def _load(self, db: Session, request_id: str) -> NFTRequest | None:
        return db.execute(select(NFTRequest).where(NFTRequest.request_id == request_id)).scalar_one_or_none()

    def find_by_request_id(self, request_id: str) -> NFTRequest | None:
        with self._session_factory() as db:
            return self._load(db, request_id)

    def get(self, request_id: str) -> NFTRequest:
        row = self.find_by_request_id(request_id)
        if row is None:
            raise RequestNotFound(request_id)
        return row

    def find_by_wallet(self, wallet_address: str, *, page: int = 1, limit: int | None = 20) -> Tuple[List[NFTRequest], int]:
        wallet = normalize_wallet(wallet_address)
        page = max(1, page)
        limit = _clamp(limit, 20, 1, 50)
        with self._session_factory() as db:
            total = db.execute(
                select(func.count(NFTRequest.id)).where(NFTRequest.wallet_address == wallet)
            ).scalar_one()
            rows = db.execute(
                select(NFTRequest)
                .where(NFTRequest.wallet_address == wallet)
                .order_by(NFTRequest.created_at.desc(), NFTRequest.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()
        return list(rows), int(total)

    def find_by_status(self, status: RequestStatus | str, *, page: int = 1, limit: int | None = 50) -> List[NFTRequest]:
        st = coerce_status(status)
        page = max(1, page)
        limit = _clamp(limit, 50, 1, 100)
        with self._session_factory() as db:
            rows = db.execute(
                select(NFTRequest)
                .where(NFTRequest.status == st.value)
                .order_by(NFTRequest.created_at.desc(), NFTRequest.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()
        return list(rows)

    def find_pending_requests(self, limit: int = 10) -> List[NFTRequest]:
        with self._session_factory() as db:
            rows = db.execute(
                select(NFTRequest)
                .where(NFTRequest.status == RequestStatus.pending.value)
                .order_by(NFTRequest.created_at.asc(), NFTRequest.id.asc())
                .limit(max(1, limit))
            ).scalars().all()
        return list(rows)

    def search(self, query: str, *, page: int = 1, limit: int | None = 20) -> List[NFTRequest]:
        text = (query or '').strip()
        if len(text) < 3:
            raise ValidationFailed('search query must be at least 3 characters')
        page = max(1, page)
        limit = _clamp(limit, 20, 1, 50)
        pattern = f"%{text.lower()}%"
        with self._session_factory() as db:
            rows = db.execute(
                select(NFTRequest)
                .where(func.lower(NFTRequest.prompt).like(pattern))
                .order_by(NFTRequest.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars().all()
        return list(rows)

    def stats(self) -> dict:
        since = _utcnow() - dt.timedelta(hours=24)
        with self._session_factory() as db:
            total = db.execute(select(func.count(NFTRequest.id))).scalar_one()
            by_status = db.execute(
                select(NFTRequest.status, func.count(NFTRequest.id)).group_by(NFTRequest.status)
            ).all()
            by_chain = db.execute(
                select(NFTRequest.destination_chain_id, func.count(NFTRequest.id).label('n'))
                .group_by(NFTRequest.destination_chain_id)
                .order_by(func.count(NFTRequest.id).desc())
            ).all()
            recent = db.execute(
                select(func.count(NFTRequest.id)).where(NFTRequest.created_at >= since)
            ).scalar_one()
        return {
            'total_requests': int(total),
            'by_status': [{'status': s, 'count': int(n)} for s, n in by_status],
            'by_chain': [{'chain_id': int(c), 'count': int(n)} for c, n in by_chain],
            'recent_requests': int(recent),
        }

    # --- writes -------------------------------------------------------
    def create(
        self,
        *,
        request_id: str,
        wallet_address: str,
        prompt: str,
        destination_chain_id: int,
        recipient: str | None = None,
        user_id: int | None = None,
        fee: str | int = '0',
        blockchain_data: dict | None = None,
    ) -> Tuple[NFTRequest, bool]:
        """Insert a pending request. Returns ``(row, created)``.

        A unique-constraint violation means another writer inserted the same
        id first; the existing row is returned with ``created=False``.
        """
        wallet = normalize_wallet(wallet_address)
        bc = None
        if blockchain_data:
            bc = self._validated(BlockchainData, blockchain_data)
        row = NFTRequest(
            request_id=request_id,
            user_id=user_id,
            wallet_address=wallet,
            prompt=prompt,
            destination_chain_id=int(destination_chain_id),
            recipient=recipient or wallet,
            status=RequestStatus.pending.value,
            fee=str(fee),
            blockchain_data=bc,
            version=1,
        )
        with self._session_factory() as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self._load(db, request_id)
                if existing is None:
                    raise
                _log.info("request %s already stored; insert skipped", request_id)
                return existing, False
            db.refresh(row)
        _log.info("request %s created wallet=%s chain=%s", request_id, wallet, destination_chain_id)
        return row, True

    def update_status(
        self,
        request_id: str,
        status: RequestStatus | str,
        error_message: str | None = None,
    ) -> NFTRequest:
        target = coerce_status(status)
        now = _utcnow()
        values: dict[str, Any] = {
            'status': target.value,
            'updated_at': now,
            'version': NFTRequest.version + 1,
        }
        if error_message:
            values['error_message'] = error_message[:_MAX_ERROR_LEN]
        elif target in (RequestStatus.pending, RequestStatus.completed):
            # a requeue or a late mint confirmation supersedes the old failure
            values['error_message'] = None
        if target is RequestStatus.completed:
            values['completed_at'] = now
        allowed = [s.value for s in sources_for(target)]

        with self._session_factory() as db:
            current = db.execute(
                select(NFTRequest.status).where(NFTRequest.request_id == request_id)
            ).scalar_one_or_none()
            if current is None:
                raise RequestNotFound(request_id)
            if current == target.value:
                return self._load(db, request_id)
            result = db.execute(
                update(NFTRequest)
                .where(NFTRequest.request_id == request_id, NFTRequest.status.in_(allowed))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                latest = db.execute(
                    select(NFTRequest.status).where(NFTRequest.request_id == request_id)
                ).scalar_one_or_none()
                if latest is None:
                    raise RequestNotFound(request_id)
                if latest == target.value:
                    # a concurrent writer made the same move first
                    return self._load(db, request_id)
                raise InvalidTransition(request_id, latest, target.value)
            db.commit()
            row = self._load(db, request_id)
        _log.info("request %s status %s -> %s", request_id, current, target.value)
        return row

    def claim(self, request_id: str) -> NFTRequest:
        """Move a pending request to processing for exactly one caller.

        Unlike :meth:`update_status` a request that is already processing is
        not treated as success: the loser of the race gets InvalidTransition.
        """
        with self._session_factory() as db:
            result = db.execute(
                update(NFTRequest)
                .where(NFTRequest.request_id == request_id, NFTRequest.status == RequestStatus.pending.value)
                .values(status=RequestStatus.processing.value, updated_at=_utcnow(), version=NFTRequest.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                current = db.execute(
                    select(NFTRequest.status).where(NFTRequest.request_id == request_id)
                ).scalar_one_or_none()
                if current is None:
                    raise RequestNotFound(request_id)
                raise InvalidTransition(request_id, current, RequestStatus.processing.value)
            db.commit()
            row = self._load(db, request_id)
        _log.info("request %s claimed for processing", request_id)
        return row

    def requeue_failed(self, request_id: str) -> NFTRequest:
        """Send a failed request back to pending and bump its retry count.

        The retry count, the status and the cleared error are written in one
        UPDATE guarded by both ``version`` and ``status = 'failed'``.
        """
        for attempt in range(1, self._max_merge_attempts + 1):
            with self._session_factory() as db:
                current = db.execute(
                    select(NFTRequest.version, NFTRequest.status, NFTRequest.ai_generation_data)
                    .where(NFTRequest.request_id == request_id)
                ).one_or_none()
                if current is None:
                    raise RequestNotFound(request_id)
                version, status, existing = current
                if status != RequestStatus.failed.value:
                    raise InvalidTransition(request_id, status, RequestStatus.pending.value)
                merged = dict(existing or {})
                merged['retry_count'] = int(merged.get('retry_count') or 0) + 1
                if merged['retry_count'] > MAX_RETRIES:
                    raise RetryLimitExceeded(f"request {request_id}: retry_count exceeds {MAX_RETRIES}")
                merged = self._validated(AIGenerationData, merged)
                result = db.execute(
                    update(NFTRequest)
                    .where(
                        NFTRequest.request_id == request_id,
                        NFTRequest.version == version,
                        NFTRequest.status == RequestStatus.failed.value,
                    )
                    .values(
                        status=RequestStatus.pending.value,
                        ai_generation_data=merged,
                        error_message=None,
                        updated_at=_utcnow(),
                        version=version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    db.commit()
                    row = self._load(db, request_id)
                    _log.info("request %s requeued (retry %d)", request_id, merged['retry_count'])
                    return row
                db.rollback()
            _log.debug("request %s requeue lost race (attempt %d)", request_id, attempt)
        raise ConcurrentUpdateError(f"request {request_id}: requeue kept conflicting")

    def set_ai_generation_data(self, request_id: str, data: dict | AIGenerationData) -> NFTRequest:
        partial = self._as_partial(data)

        def _merge(existing: dict | None) -> dict:
            merged = dict(existing or {})
            merged.update(partial)
            if int(merged.get('retry_count') or 0) > MAX_RETRIES:
                raise RetryLimitExceeded(f"request {request_id}: retry_count exceeds {MAX_RETRIES}")
            return self._validated(AIGenerationData, merged)

        return self._compare_and_swap(request_id, 'ai_generation_data', _merge)

    def set_blockchain_data(self, request_id: str, data: dict | BlockchainData) -> NFTRequest:
        partial = self._as_partial(data)

        def _merge(existing: dict | None) -> dict:
            merged = dict(existing or {})
            merged.update(partial)
            return self._validated(BlockchainData, merged)

        return self._compare_and_swap(request_id, 'blockchain_data', _merge)

    def set_metadata(self, request_id: str, metadata: dict | NFTMetadata) -> NFTRequest:
        replacement = self._validated(NFTMetadata, self._as_partial(metadata))
        return self._compare_and_swap(request_id, 'nft_metadata', lambda _existing: replacement)

    # --- helpers ------------------------------------------------------
    @staticmethod
    def _as_partial(data: Any) -> dict:
        if hasattr(data, 'model_dump'):
            return data.model_dump(exclude_unset=True, mode='json')
        return {k: v for k, v in dict(data).items() if v is not None}

    @staticmethod
    def _validated(model, payload: dict) -> dict:
        try:
            return model.model_validate(payload).model_dump(exclude_none=True, mode='json')
        except ValidationError as exc:
            raise ValidationFailed(str(exc)) from exc

    def _compare_and_swap(self, request_id: str, attr: str, merge: Callable[[dict | None], dict]) -> NFTRequest:
        column = getattr(NFTRequest, attr)
        for attempt in range(1, self._max_merge_attempts + 1):
            with self._session_factory() as db:
                current = db.execute(
                    select(NFTRequest.version, column).where(NFTRequest.request_id == request_id)
                ).one_or_none()
                if current is None:
                    raise RequestNotFound(request_id)
                version, existing = current
                merged = merge(existing)
                result = db.execute(
                    update(NFTRequest)
                    .where(NFTRequest.request_id == request_id, NFTRequest.version == version)
                    .values({column: merged, NFTRequest.version: version + 1, NFTRequest.updated_at: _utcnow()})
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    db.commit()
                    return self._load(db, request_id)
                db.rollback()
            _log.debug("request %s %s merge lost race (attempt %d)", request_id, attr, attempt)
        raise ConcurrentUpdateError(f"request {request_id}: {attr} update kept conflicting")

