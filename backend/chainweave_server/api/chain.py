from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from chainweave_server.api.common import unwrap
from chainweave_server.core.api_key import require_admin_key
from chainweave_server.core.dependencies import BlockchainServiceDep

router = APIRouter(prefix='/chain', tags=['chain'])


class CompleteGenerationIn(BaseModel):
    request_id: str = Field(..., min_length=3, max_length=80)
    token_uri: str = Field(..., min_length=1, max_length=2000)


@router.get('/fee')
async def request_fee(svc: BlockchainServiceDep):
    return {'fee': await svc.get_request_fee()}


@router.get('/supported/{chain_id}')
async def chain_supported(chain_id: int, svc: BlockchainServiceDep):
    return {'chain_id': chain_id, 'supported': await svc.is_chain_supported(chain_id)}


@router.get('/requests/{request_id}')
async def onchain_request(request_id: str, svc: BlockchainServiceDep):
    return unwrap(await svc.get_request_details(request_id))


@router.post('/complete', dependencies=[Depends(require_admin_key)])
async def complete_generation(body: CompleteGenerationIn, svc: BlockchainServiceDep):
    result = await svc.complete_ai_generation(body.request_id, body.token_uri)
    if not result.success:
        result.code = result.code or 'unavailable'
    return unwrap(result)
