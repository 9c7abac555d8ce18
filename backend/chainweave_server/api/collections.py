from fastapi import APIRouter, Query

from chainweave_server.api.common import unwrap
from chainweave_server.core.dependencies import CollectionServiceDep
from chainweave_server.schemas.nft_request import WalletActionIn
from chainweave_server.schemas.user import CollectionCreateIn

router = APIRouter(prefix='/collections', tags=['collections'])


@router.post('', status_code=201)
def create_collection(body: CollectionCreateIn, svc: CollectionServiceDep):
    return unwrap(svc.create(**body.model_dump()))


@router.get('/creator/{wallet_address}')
def collections_by_creator(
    wallet_address: str,
    svc: CollectionServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
):
    return unwrap(svc.list_by_creator(wallet_address, page=page, limit=limit))


@router.get('/{collection_id}')
def get_collection(collection_id: int, svc: CollectionServiceDep):
    return unwrap(svc.get(collection_id))


@router.delete('/{collection_id}', status_code=204)
def deactivate_collection(collection_id: int, body: WalletActionIn, svc: CollectionServiceDep):
    unwrap(svc.deactivate(collection_id, body.wallet_address))
