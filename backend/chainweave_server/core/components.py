"""Wiring of the long-lived backend objects.

Everything is constructed explicitly here and hung on ``app.state`` by the
lifespan handler; nothing connects to the chain at import time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from chainweave_server.chain.gateway import ContractGateway
from chainweave_server.chain.listener import EventListener
from chainweave_server.core.config import Settings
from chainweave_server.pipeline.base import ArtworkPipeline
from chainweave_server.reconciliation.reconciler import EventReconciler
from chainweave_server.requests.store import RequestStore
from chainweave_server.services.analytics import AnalyticsService
from chainweave_server.services.blockchain import BlockchainService
from chainweave_server.services.collections import CollectionService
from chainweave_server.services.requests import RequestService
from chainweave_server.services.users import UserService

_log = logging.getLogger(__name__)


@dataclass
class Components:
    settings: Settings
    session_factory: sessionmaker
    store: RequestStore
    reconciler: EventReconciler
    users: UserService
    collections: CollectionService
    analytics: AnalyticsService
    requests: RequestService
    gateway: object | None = None
    blockchain: BlockchainService | None = None
    listener: EventListener | None = None

    async def start(self) -> None:
        if self.listener is not None:
            await self.listener.start()

    async def stop(self) -> None:
        if self.listener is not None:
            await self.listener.stop()
        if self.gateway is not None:
            close = getattr(self.gateway, 'close', None)
            if close is not None:
                try:
                    await close()
                except Exception as exc:
                    _log.warning("gateway close failed: %s", exc)


def build_components(
    cfg: Settings,
    session_factory: sessionmaker,
    *,
    gateway=None,
    pipeline: ArtworkPipeline | None = None,
    with_listener: bool = True,
) -> Components:
    """Build the object graph. Raises ConfigError when the chain is enabled but misconfigured."""
    cfg.validate_chain()
    store = RequestStore(session_factory)
    reconciler = EventReconciler(store, session_factory, max_attempts=cfg.reconcile_max_attempts)
    users = UserService(session_factory)

    blockchain = None
    listener = None
    if gateway is None and cfg.chain_enabled:
        gateway = ContractGateway.from_settings(cfg)
    if gateway is not None:
        blockchain = BlockchainService(gateway, store, gas_margin_percent=cfg.gas_margin_percent)
        if with_listener:
            listener = EventListener(
                gateway,
                reconciler,
                session_factory,
                poll_interval=cfg.poll_interval,
                confirmations=cfg.confirmations,
                start_block=cfg.start_block,
                max_block_range=cfg.max_block_range,
                sweep_interval=cfg.sweep_interval,
            )
    else:
        _log.warning("chain disabled; listener and completion submitter not started")

    requests = RequestService(
        store,
        users,
        blockchain=blockchain,
        pipeline=pipeline,
        min_prompt_length=cfg.min_prompt_length,
        max_prompt_length=cfg.max_prompt_length,
        max_concurrency=cfg.process_concurrency,
    )
    return Components(
        settings=cfg,
        session_factory=session_factory,
        store=store,
        reconciler=reconciler,
        users=users,
        collections=CollectionService(session_factory),
        analytics=AnalyticsService(session_factory),
        requests=requests,
        gateway=gateway,
        blockchain=blockchain,
        listener=listener,
    )
