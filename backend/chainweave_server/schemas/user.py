from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal

from pydantic import BaseModel, Field

from chainweave_server.schemas.nft_request import WALLET_PATTERN

USERNAME_PATTERN = r'^[a-zA-Z0-9_-]{3,30}$'
EMAIL_PATTERN = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'

AIStyle = Literal['realistic', 'artistic', 'abstract', 'cartoon', 'anime']


class UserCreateIn(BaseModel):
    wallet_address: str = Field(..., pattern=WALLET_PATTERN)
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN, max_length=254)
    username: str | None = Field(default=None, pattern=USERNAME_PATTERN)


class ProfileUpdateIn(BaseModel):
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN, max_length=254)
    username: str | None = Field(default=None, pattern=USERNAME_PATTERN)
    avatar: str | None = Field(default=None, max_length=500)


class PreferencesIn(BaseModel):
    default_chain: int | None = Field(default=None, ge=1)
    ai_style: AIStyle | None = None
    notifications: bool | None = None
    public_profile: bool | None = None


class UserOut(BaseModel):
    id: int
    wallet_address: str
    email: str | None = None
    username: str | None = None
    avatar: str | None = None
    is_active: bool
    preferences: Dict[str, Any]
    created_at: datetime
    updated_at: datetime


class CollectionCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default='', max_length=1000)
    chain_id: int = Field(..., ge=1)
    contract_address: str = Field(..., pattern=WALLET_PATTERN)
    creator_wallet: str = Field(..., pattern=WALLET_PATTERN)
    total_supply: int = Field(default=0, ge=0)
    royalty_bps: int = Field(default=0, ge=0, le=10000)
    metadata: Dict[str, Any] | None = None
