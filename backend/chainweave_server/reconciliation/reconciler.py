from __future__ import annotations

import enum
import logging
import re
from typing import Callable, Dict, List

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from chainweave_server.chain.abi import (
    EVENT_AI_COMPLETED,
    EVENT_MINT_REQUESTED,
    EVENT_MINT_REVERTED,
    EVENT_MINTED,
)
from chainweave_server.chain.events import ChainEvent
from chainweave_server.core.errors import InvalidTransition, RequestNotFound
from chainweave_server.models.chain_event import UnresolvedChainEvent, UnresolvedState
from chainweave_server.models.nft_request import NFTRequest, RequestStatus
from chainweave_server.models.user import User
from chainweave_server.requests.lifecycle import is_terminal
from chainweave_server.requests.store import RequestStore

_log = logging.getLogger(__name__)

_TX_HASH_RE = re.compile(r'^0x[a-fA-F0-9]{64}$')


class Outcome(str, enum.Enum):
    applied = 'applied'
    duplicate = 'duplicate'
    parked = 'parked'
    ignored = 'ignored'
    rejected = 'rejected'
    error = 'error'


class EventReconciler:
    """Applies contract events to the request store.

    Events naming a request the store does not know yet are parked in
    ``unresolved_chain_events`` and replayed either as soon as the matching
    ``NFTMintRequested`` arrives or by ``sweep_unresolved``.
    """

    def __init__(self, store: RequestStore, session_factory: sessionmaker, *, max_attempts: int = 10):
        self._store = store
        self._session_factory = session_factory
        self._max_attempts = max(1, max_attempts)
        self._appliers: Dict[str, Callable[[ChainEvent, NFTRequest], Outcome]] = {
            EVENT_AI_COMPLETED: self._apply_ai_generation_completed,
            EVENT_MINTED: self._apply_minted,
            EVENT_MINT_REVERTED: self._apply_mint_reverted,
        }

    # --- entry points -------------------------------------------------
    def dispatch(self, event: ChainEvent) -> Outcome:
        """Route one event by name; never raises."""
        if event.name == EVENT_MINT_REQUESTED:
            return self.handle_mint_requested(event)
        applier = self._appliers.get(event.name)
        if applier is None:
            _log.debug("ignoring unhandled event %s", event.name)
            return Outcome.ignored
        return self._guarded(self._apply_or_park, event, applier)

    def handle_mint_requested(self, event: ChainEvent) -> Outcome:
        return self._guarded(self._create_from_event, event)

    def handle_ai_generation_completed(self, event: ChainEvent) -> Outcome:
        return self._guarded(self._apply_or_park, event, self._apply_ai_generation_completed)

    def handle_minted(self, event: ChainEvent) -> Outcome:
        return self._guarded(self._apply_or_park, event, self._apply_minted)

    def handle_mint_reverted(self, event: ChainEvent) -> Outcome:
        return self._guarded(self._apply_or_park, event, self._apply_mint_reverted)

    def _guarded(self, fn: Callable[..., Outcome], event: ChainEvent, *args) -> Outcome:
        try:
            return fn(event, *args)
        except Exception:
            _log.exception("failed to handle %s for request %s tx=%s", event.name, event.request_id, event.tx_hash)
            return Outcome.error

    def _create_from_event(self, event: ChainEvent) -> Outcome:
        args = event.args
        sender = str(args.get('sender') or '')
        _log.info(
            "mint request detected request=%s sender=%s chain=%s tx=%s",
            event.request_id, sender, args.get('destinationChainId'), event.tx_hash,
        )
        blockchain_data = None
        if _TX_HASH_RE.match(event.tx_hash or ''):
            blockchain_data = {'transaction_hash': event.tx_hash}
        _row, created = self._store.create(
            request_id=event.request_id,
            wallet_address=sender,
            prompt=str(args.get('prompt') or ''),
            destination_chain_id=int(args.get('destinationChainId') or 0),
            recipient=str(args.get('recipient') or '') or None,
            user_id=self._user_id_for(sender),
            fee=str(args.get('fee') or 0),
            blockchain_data=blockchain_data,
        )
        if not created:
            _log.warning("request %s already exists; mint request event ignored", event.request_id)
            return Outcome.duplicate
        self._replay_parked(event.request_id)
        return Outcome.applied

    # --- appliers -----------------------------------------------------
    def _apply_or_park(self, event: ChainEvent, applier: Callable[[ChainEvent, NFTRequest], Outcome]) -> Outcome:
        row = self._store.find_by_request_id(event.request_id)
        if row is None:
            _log.warning("request %s not found for %s; parking event", event.request_id, event.name)
            self._park(event)
            return Outcome.parked
        return applier(event, row)


    def _apply_ai_generation_completed(self, event: ChainEvent, row: NFTRequest) -> Outcome:
        token_uri = event.args.get('tokenURI')
        if token_uri:
            self._store.set_ai_generation_data(event.request_id, {'token_uri': token_uri})
        if row.status != RequestStatus.ai_completed.value:
            _log.info("request %s in %s; token URI recorded without status change", event.request_id, row.status)
            return Outcome.applied
        try:
            self._store.update_status(event.request_id, RequestStatus.cross_chain_pending)
        except InvalidTransition as exc:
            _log.info("request %s moved on before AI completion event: %s", event.request_id, exc)
            return Outcome.ignored
        return Outcome.applied

    def _apply_minted(self, event: ChainEvent, row: NFTRequest) -> Outcome:
        try:
            self._store.update_status(event.request_id, RequestStatus.completed)
        except InvalidTransition as exc:
            _log.warning("mint event rejected for request %s: %s", event.request_id, exc)
            return Outcome.rejected
        patch: dict = {}
        token_id = event.args.get('tokenId')
        if token_id is not None:
            patch['token_id'] = int(token_id)
        if _TX_HASH_RE.match(event.tx_hash or ''):
            patch['transaction_hash'] = event.tx_hash
        if event.block_number is not None:
            patch['block_number'] = int(event.block_number)
        if patch:
            self._store.set_blockchain_data(event.request_id, patch)
        _log.info("request %s completed token=%s", event.request_id, token_id)
        return Outcome.applied

    def _apply_mint_reverted(self, event: ChainEvent, row: NFTRequest) -> Outcome:
        reason = str(event.args.get('reason') or 'mint reverted')
        if is_terminal(row.status):
            _log.warning("revert for request %s ignored; already %s", event.request_id, row.status)
            return Outcome.ignored
        try:
            self._store.update_status(event.request_id, RequestStatus.failed, error_message=reason)
        except InvalidTransition as exc:
            _log.warning("revert for request %s rejected: %s", event.request_id, exc)
            return Outcome.rejected
        _log.info("request %s marked failed: %s", event.request_id, reason)
        return Outcome.applied

    # --- parking ------------------------------------------------------
    def _park(self, event: ChainEvent) -> None:
        rec = UnresolvedChainEvent(
            event_name=event.name,
            request_id=event.request_id,
            tx_hash=event.tx_hash or '',
            log_index=event.log_index,
            block_number=event.block_number,
            args=dict(event.args),
            state=UnresolvedState.parked.value,
            attempts=0,
        )
        with self._session_factory() as db:
            db.add(rec)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                _log.debug(
                    "event %s for request %s tx=%s log=%s already parked",
                    event.name, event.request_id, event.tx_hash, event.log_index,
                )

    def _replay_parked(self, request_id: str) -> int:
        with self._session_factory() as db:
            parked = db.execute(
                select(UnresolvedChainEvent)
                .where(
                    UnresolvedChainEvent.request_id == request_id,
                    UnresolvedChainEvent.state == UnresolvedState.parked.value,
                )
                .order_by(UnresolvedChainEvent.block_number, UnresolvedChainEvent.log_index, UnresolvedChainEvent.id)
            ).scalars().all()
        replayed = 0
        for rec in parked:
            try:
                if self._retry_parked(rec) is UnresolvedState.resolved:
                    replayed += 1
            except Exception:
                # stays parked for the sweep; the creation itself already succeeded
                _log.exception("replay failed for parked event id=%s request=%s", rec.id, request_id)
        if replayed:
            _log.info("replayed %d parked event(s) for request %s", replayed, request_id)
        return replayed

    def _retry_parked(self, rec: UnresolvedChainEvent) -> UnresolvedState:
        event = ChainEvent(
            name=rec.event_name,
            request_id=rec.request_id,
            args=dict(rec.args or {}),
            tx_hash=rec.tx_hash,
            log_index=rec.log_index,
            block_number=rec.block_number,
        )
        attempts = rec.attempts + 1
        row = self._store.find_by_request_id(rec.request_id)
        if row is None:
            if attempts >= self._max_attempts:
                _log.error(
                    "abandoning %s for request %s after %d attempts; request never appeared",
                    rec.event_name, rec.request_id, attempts,
                )
                self._mark(rec.id, UnresolvedState.abandoned, attempts, 'request not found')
                return UnresolvedState.abandoned
            self._mark(rec.id, UnresolvedState.parked, attempts, 'request not found')
            return UnresolvedState.parked
        try:
            outcome = self._appliers[rec.event_name](event, row)
        except RequestNotFound as exc:
            self._mark(rec.id, UnresolvedState.parked, attempts, str(exc))
            return UnresolvedState.parked
        note = None if outcome is Outcome.applied else outcome.value
        self._mark(rec.id, UnresolvedState.resolved, attempts, note)
        return UnresolvedState.resolved

    def _mark(self, rec_id: int, state: UnresolvedState, attempts: int, note: str | None) -> None:
        with self._session_factory() as db:
            db.execute(
                update(UnresolvedChainEvent)
                .where(UnresolvedChainEvent.id == rec_id)
                .values(state=state.value, attempts=attempts, last_error=note)
                .execution_options(synchronize_session=False)
            )
            db.commit()

    def sweep_unresolved(self, limit: int = 500) -> dict:
        """Retry parked events against the store; returns counts per resulting state."""
        with self._session_factory() as db:
            parked = db.execute(
                select(UnresolvedChainEvent)
                .where(UnresolvedChainEvent.state == UnresolvedState.parked.value)
                .order_by(UnresolvedChainEvent.id)
                .limit(limit)
            ).scalars().all()
        counts = {'resolved': 0, 'parked': 0, 'abandoned': 0, 'errors': 0}
        for rec in parked:
            try:
                counts[self._retry_parked(rec).value] += 1
            except Exception:
                counts['errors'] += 1
                _log.exception("sweep failed for parked event id=%s request=%s", rec.id, rec.request_id)
        if parked:
            _log.info("reconciliation sweep %s", counts)
        return counts


    def list_unresolved(self, state: UnresolvedState | str = UnresolvedState.parked, limit: int = 100) -> List[dict]:
        value = state.value if isinstance(state, UnresolvedState) else UnresolvedState(state).value
        with self._session_factory() as db:
            rows = db.execute(
                select(UnresolvedChainEvent)
                .where(UnresolvedChainEvent.state == value)
                .order_by(UnresolvedChainEvent.created_at.desc(), UnresolvedChainEvent.id.desc())
                .limit(max(1, min(limit, 500)))
            ).scalars().all()
        return [r.as_dict() for r in rows]

    def _user_id_for(self, wallet: str) -> int | None:
        if not wallet:
            return None
        with self._session_factory() as db:
            return db.execute(
                select(User.id).where(User.wallet_address == wallet.lower(), User.is_active.is_(True))
            ).scalar_one_or_none()
