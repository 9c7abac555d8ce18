import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query

from chainweave_server.core.api_key import require_admin_key
from chainweave_server.core.dependencies import ReconcilerDep
from chainweave_server.models.chain_event import UnresolvedState

router = APIRouter(prefix='/reconciliation', tags=['reconciliation'])


@router.get('/unresolved')
def list_unresolved(reconciler: ReconcilerDep, state: str = 'parked', limit: int = Query(100, ge=1, le=500)):
    try:
        st = UnresolvedState(state)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"unknown state {state!r}")
    return {'state': st.value, 'events': reconciler.list_unresolved(st, limit)}


@router.post('/sweep', dependencies=[Depends(require_admin_key)])
async def sweep(reconciler: ReconcilerDep):
    return await asyncio.to_thread(reconciler.sweep_unresolved)
