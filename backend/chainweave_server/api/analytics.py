import datetime as dt

from fastapi import APIRouter, Depends, Query

from chainweave_server.api.common import unwrap
from chainweave_server.core.api_key import require_admin_key
from chainweave_server.core.dependencies import AnalyticsServiceDep

router = APIRouter(prefix='/analytics', tags=['analytics'])


@router.get('/platform')
def platform_history(svc: AnalyticsServiceDep, days: int = Query(30, ge=1, le=365)):
    return unwrap(svc.platform_history(days))


@router.post('/platform/snapshot', dependencies=[Depends(require_admin_key)])
def snapshot_platform(svc: AnalyticsServiceDep, day: dt.date | None = None):
    return unwrap(svc.snapshot_platform_stats(day))


@router.get('/users/{wallet_address}')
def user_summary(wallet_address: str, svc: AnalyticsServiceDep):
    return unwrap(svc.user_summary(wallet_address))
