from __future__ import annotations

import asyncio
import time

import sqlalchemy as sa
from fastapi import APIRouter

from chainweave_server.core.dependencies import ComponentsDep
from chainweave_server.core.components import Components
from chainweave_server.models.chain_event import UnresolvedChainEvent, UnresolvedState
from chainweave_server.schemas.health import HealthComponent, HealthStatus, SystemHealthSnapshot

router = APIRouter(prefix="/system", tags=["system"])

_STATUS_ORDER = {
    HealthStatus.OK: 0,
    HealthStatus.WARN: 1,
    HealthStatus.ERROR: 2,
}


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


async def _check_database(components: Components) -> tuple[HealthComponent, str | None, int]:
    start = time.perf_counter()

    def _attempt() -> tuple[str | None, str | None, int]:
        try:
            with components.session_factory() as session:
                session.execute(sa.text("SELECT 1"))
                head = None
                try:
                    head = session.execute(sa.text("SELECT version_num FROM alembic_version")).scalar()
                except Exception:
                    # tables created without alembic (tests, first boot)
                    session.rollback()
                parked = session.execute(
                    sa.select(sa.func.count(UnresolvedChainEvent.id)).where(
                        UnresolvedChainEvent.state == UnresolvedState.parked.value
                    )
                ).scalar_one()
            return None, head, int(parked)
        except Exception as exc:  # pragma: no cover
            return str(exc) or exc.__class__.__name__, None, 0

    error, head, parked = await asyncio.to_thread(_attempt)
    latency = _elapsed_ms(start)
    if error:
        component = HealthComponent(
            status=HealthStatus.ERROR,
            message="Failed to query database",
            details={"last_error": error},
            latency_ms=latency,
        )
    else:
        component = HealthComponent(status=HealthStatus.OK, message="Database reachable", latency_ms=latency)
    return component, head, parked


async def _check_chain(components: Components) -> HealthComponent:
    start = time.perf_counter()
    if components.blockchain is None:
        return HealthComponent(status=HealthStatus.WARN, message="Chain connection disabled")
    result = await components.blockchain.health_check()
    latency = _elapsed_ms(start)
    if result.get("status") != "connected":
        return HealthComponent(
            status=HealthStatus.ERROR,
            message="Failed to reach RPC endpoint",
            details=result,
            latency_ms=latency,
        )
    details = dict(result)
    expected = components.settings.chain_id
    if expected and result.get("chain_id") != expected:
        details["expected_chain_id"] = expected
        return HealthComponent(
            status=HealthStatus.WARN,
            message="Connected to an unexpected chain",
            details=details,
            latency_ms=latency,
        )
    return HealthComponent(status=HealthStatus.OK, message="Connected to RPC endpoint", details=details, latency_ms=latency)


def _check_listener(components: Components) -> HealthComponent:
    listener = components.listener
    if listener is None:
        return HealthComponent(status=HealthStatus.WARN, message="Event listener not configured")
    details = {"running": listener.running, "last_error": listener.last_error}
    if not listener.running:
        return HealthComponent(status=HealthStatus.ERROR, message="Event listener stopped", details=details)
    if listener.last_error:
        return HealthComponent(status=HealthStatus.WARN, message="Event listener retrying", details=details)
    return HealthComponent(status=HealthStatus.OK, message="Event listener running", details=details)


@router.get("/health", response_model=SystemHealthSnapshot)
async def get_system_health(components: ComponentsDep) -> SystemHealthSnapshot:
    (db_component, head, parked), chain_component = await asyncio.gather(
        _check_database(components), _check_chain(components)
    )
    listener_component = _check_listener(components)

    overall = db_component.status
    for status in (chain_component.status, listener_component.status):
        if _STATUS_ORDER[status] > _STATUS_ORDER[overall]:
            overall = status

    return SystemHealthSnapshot(
        status=overall,
        database=db_component,
        chain=chain_component,
        listener=listener_component,
        backend_version=components.settings.version,
        db_alembic_head=head,
        parked_events=parked,
    )
