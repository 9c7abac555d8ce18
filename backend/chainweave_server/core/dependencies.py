"""
FastAPI dependencies resolving the services built in the lifespan.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from chainweave_server.core.components import Components
from chainweave_server.reconciliation.reconciler import EventReconciler
from chainweave_server.services.analytics import AnalyticsService
from chainweave_server.services.blockchain import BlockchainService
from chainweave_server.services.collections import CollectionService
from chainweave_server.services.requests import RequestService
from chainweave_server.services.users import UserService


def get_components(request: Request) -> Components:
    components = getattr(request.app.state, 'components', None)
    if components is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail='Backend is starting up')
    return components


def get_request_service(components: Components = Depends(get_components)) -> RequestService:
    return components.requests


def get_user_service(components: Components = Depends(get_components)) -> UserService:
    return components.users


def get_collection_service(components: Components = Depends(get_components)) -> CollectionService:
    return components.collections


def get_analytics_service(components: Components = Depends(get_components)) -> AnalyticsService:
    return components.analytics


def get_reconciler(components: Components = Depends(get_components)) -> EventReconciler:
    return components.reconciler


def get_blockchain_service(components: Components = Depends(get_components)) -> BlockchainService:
    if components.blockchain is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail='Chain connection disabled')
    return components.blockchain


# FastAPI dependency type annotations
ComponentsDep = Annotated[Components, Depends(get_components)]
RequestServiceDep = Annotated[RequestService, Depends(get_request_service)]
UserServiceDep = Annotated[UserService, Depends(get_user_service)]
CollectionServiceDep = Annotated[CollectionService, Depends(get_collection_service)]
AnalyticsServiceDep = Annotated[AnalyticsService, Depends(get_analytics_service)]
ReconcilerDep = Annotated[EventReconciler, Depends(get_reconciler)]
BlockchainServiceDep = Annotated[BlockchainService, Depends(get_blockchain_service)]
