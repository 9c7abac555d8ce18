from fastapi import APIRouter

from chainweave_server.api.common import unwrap
from chainweave_server.core.dependencies import UserServiceDep
from chainweave_server.schemas.user import PreferencesIn, ProfileUpdateIn, UserCreateIn, UserOut

router = APIRouter(prefix='/users', tags=['users'])


@router.post('', response_model=UserOut)
def register_user(body: UserCreateIn, svc: UserServiceDep):
    return unwrap(svc.register(body.wallet_address, email=body.email, username=body.username))


@router.get('/{wallet_address}', response_model=UserOut)
def get_user(wallet_address: str, svc: UserServiceDep):
    return unwrap(svc.get_by_wallet(wallet_address))


@router.patch('/{wallet_address}', response_model=UserOut)
def update_profile(wallet_address: str, body: ProfileUpdateIn, svc: UserServiceDep):
    return unwrap(svc.update_profile(wallet_address, body.model_dump(exclude_none=True)))


@router.patch('/{wallet_address}/preferences', response_model=UserOut)
def update_preferences(wallet_address: str, body: PreferencesIn, svc: UserServiceDep):
    return unwrap(svc.update_preferences(wallet_address, body.model_dump(exclude_none=True)))


@router.delete('/{wallet_address}', status_code=204)
def deactivate_user(wallet_address: str, svc: UserServiceDep):
    unwrap(svc.deactivate(wallet_address))
