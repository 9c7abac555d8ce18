from fastapi import APIRouter, Depends, Query

from chainweave_server.api.common import unwrap
from chainweave_server.core.api_key import require_admin_key
from chainweave_server.core.dependencies import RequestServiceDep
from chainweave_server.schemas.nft_request import CreateRequestIn, WalletActionIn

router = APIRouter(prefix='/requests', tags=['requests'])


@router.post('', status_code=201)
async def create_request(body: CreateRequestIn, svc: RequestServiceDep):
    return unwrap(await svc.create_request(body.wallet_address, body.prompt, body.destination_chain_id, body.recipient))


# literal paths are registered before /{request_id}/... so they are never captured by it
@router.get('/stats')
async def request_stats(svc: RequestServiceDep):
    return unwrap(await svc.get_statistics())


@router.get('/search')
async def search_requests(
    svc: RequestServiceDep,
    q: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
):
    return unwrap(await svc.search_requests(q, page, limit))


@router.post('/process', dependencies=[Depends(require_admin_key)])
async def process_pending(svc: RequestServiceDep, batch_size: int = Query(5, ge=1, le=50)):
    return unwrap(await svc.process_pending_requests(batch_size))


@router.get('/id/{request_id}')
async def get_request(request_id: str, svc: RequestServiceDep):
    return unwrap(await svc.get_request(request_id))


@router.get('/wallet/{wallet_address}')
async def requests_by_wallet(
    wallet_address: str,
    svc: RequestServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=50),
):
    return unwrap(await svc.get_requests_by_wallet(wallet_address, page, limit))


@router.get('/status/{status}')
async def requests_by_status(
    status: str,
    svc: RequestServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
):
    return unwrap(await svc.get_requests_by_status(status, page, limit))


@router.patch('/{request_id}/cancel')
async def cancel_request(request_id: str, body: WalletActionIn, svc: RequestServiceDep):
    unwrap(await svc.cancel_request(request_id, body.wallet_address))
    return {'request_id': request_id, 'status': 'cancelled'}


@router.patch('/{request_id}/retry')
async def retry_request(request_id: str, body: WalletActionIn, svc: RequestServiceDep):
    data = unwrap(await svc.retry_request(request_id, body.wallet_address))
    return {'request_id': request_id, 'status': 'pending', **(data or {})}
