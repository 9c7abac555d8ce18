from __future__ import annotations

import asyncio
import logging
import time
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from chainweave_server.chain.events import ChainEvent
from chainweave_server.models.chain_event import ChainCursor
from chainweave_server.reconciliation.reconciler import EventReconciler, Outcome

_log = logging.getLogger(__name__)

DEFAULT_CURSOR_NAME = 'chainweave-contract'


class EventListener:
    """Polls contract logs and feeds them to the reconciler in chain order.

    The last fully processed block is persisted in ``chain_cursors`` so a
    restart resumes where the previous run stopped. The cursor only moves
    after every event of a window has been dispatched; an RPC failure leaves
    it in place and the window is fetched again on the next tick.
    """

    def __init__(
        self,
        gateway,
        reconciler: EventReconciler,
        session_factory: sessionmaker,
        *,
        poll_interval: float = 5.0,
        confirmations: int = 1,
        start_block: int | None = None,
        max_block_range: int = 2000,
        sweep_interval: float = 60.0,
        cursor_name: str = DEFAULT_CURSOR_NAME,
    ):
        self._gateway = gateway
        self._reconciler = reconciler
        self._session_factory = session_factory
        self._poll_interval = max(0.01, float(poll_interval))
        self._confirmations = max(0, int(confirmations))
        self._start_block = start_block
        self._max_block_range = max(1, int(max_block_range))
        self._sweep_interval = float(sweep_interval)
        self._cursor_name = cursor_name
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self._last_sweep = time.monotonic()
        self.last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._main_loop(), name='chainweave-event-listener')
        _log.info("event listener started poll_interval=%.1fs confirmations=%d", self._poll_interval, self._confirmations)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        _log.info("event listener stopped")

    async def _main_loop(self) -> None:
        while not self._stopping.is_set():
            await self.poll_once()
            await self.maybe_sweep()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    # --- cursor -------------------------------------------------------
    def load_cursor(self) -> int | None:
        with self._session_factory() as db:
            return db.execute(
                select(ChainCursor.last_block).where(ChainCursor.name == self._cursor_name)
            ).scalar_one_or_none()

    def save_cursor(self, block: int) -> None:
        with self._session_factory() as db:
            row = db.get(ChainCursor, self._cursor_name)
            if row is None:
                db.add(ChainCursor(name=self._cursor_name, last_block=int(block)))
            else:
                row.last_block = int(block)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                row = db.get(ChainCursor, self._cursor_name)
                row.last_block = int(block)
                db.commit()

    # --- polling ------------------------------------------------------
    async def poll_once(self) -> int:
        """Process every confirmed block past the cursor. Returns events dispatched."""
        try:
            head = await self._gateway.block_number()
        except Exception as exc:
            self.last_error = str(exc) or exc.__class__.__name__
            _log.warning("could not read chain head: %s", self.last_error)
            return 0
        safe_head = head - self._confirmations
        if safe_head < 0:
            return 0

        cursor = await asyncio.to_thread(self.load_cursor)
        if cursor is None:
            # first run: start at the configured block, or at the current head
            first = self._start_block if self._start_block is not None else safe_head
            cursor = max(0, first - 1)
            await asyncio.to_thread(self.save_cursor, cursor)
            _log.info("event listener cursor initialised at block %d", cursor)

        dispatched = 0
        while cursor < safe_head and not self._stopping.is_set():
            from_block = cursor + 1
            to_block = min(safe_head, cursor + self._max_block_range)
            try:
                events = await self._gateway.fetch_events(from_block, to_block)
            except Exception as exc:
                self.last_error = str(exc) or exc.__class__.__name__
                _log.warning("log fetch failed blocks=%d-%d: %s", from_block, to_block, self.last_error)
                return dispatched
            dispatched += await self.dispatch_all(events)
            cursor = to_block
            await asyncio.to_thread(self.save_cursor, cursor)
        self.last_error = None
        return dispatched

    async def dispatch_all(self, events: List[ChainEvent]) -> int:
        count = 0
        for event in sorted(events, key=lambda e: e.sort_key):
            outcome = await asyncio.to_thread(self._reconciler.dispatch, event)
            if outcome is Outcome.error:
                _log.error("event %s for request %s failed; continuing", event.name, event.request_id)
            count += 1
        return count

    async def maybe_sweep(self, *, force: bool = False) -> dict | None:
        now = time.monotonic()
        if not force and now - self._last_sweep < self._sweep_interval:
            return None
        self._last_sweep = now
        try:
            return await asyncio.to_thread(self._reconciler.sweep_unresolved)
        except Exception:
            _log.exception("reconciliation sweep failed")
            return None
