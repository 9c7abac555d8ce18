"""Request status state machine.

``TRANSITIONS`` maps each status to the statuses it may move to. The store
turns this table into a ``status IN (...)`` precondition on every status
update, so an illegal move is rejected by the database write itself and two
racing writers cannot both win.
"""
from __future__ import annotations

from typing import Dict, FrozenSet

from chainweave_server.models.nft_request import RequestStatus

S = RequestStatus

TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    S.pending: frozenset({S.processing, S.completed, S.failed, S.cancelled}),
    S.processing: frozenset({S.ai_completed, S.completed, S.failed, S.cancelled}),
    S.ai_completed: frozenset({S.cross_chain_pending, S.completed, S.failed}),
    S.cross_chain_pending: frozenset({S.completed, S.failed}),
    S.failed: frozenset({S.pending, S.completed}),
    S.completed: frozenset(),
    S.cancelled: frozenset(),
}

TERMINAL: FrozenSet[RequestStatus] = frozenset({S.completed, S.cancelled})
CANCELLABLE: FrozenSet[RequestStatus] = frozenset({S.pending, S.processing})


def coerce_status(value: RequestStatus | str) -> RequestStatus:
    if isinstance(value, RequestStatus):
        return value
    return RequestStatus(value)


def can_transition(current: RequestStatus | str, target: RequestStatus | str) -> bool:
    cur = coerce_status(current)
    tgt = coerce_status(target)
    return tgt in TRANSITIONS[cur]


def sources_for(target: RequestStatus | str) -> FrozenSet[RequestStatus]:
    """Statuses from which ``target`` is reachable in one step."""
    tgt = coerce_status(target)
    return frozenset(src for src, dests in TRANSITIONS.items() if tgt in dests)


def is_terminal(status: RequestStatus | str) -> bool:
    return coerce_status(status) in TERMINAL
