from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, Field, field_validator

WALLET_PATTERN = r'^0x[a-fA-F0-9]{40}$'
TX_HASH_PATTERN = r'^0x[a-fA-F0-9]{64}$'

MAX_RETRIES = 3

T = TypeVar('T')


class AIGenerationData(BaseModel):
    model: str = 'gemini-pro'
    generated_image_url: str | None = None
    ipfs_hash: str | None = None
    token_uri: str | None = None
    processing_time: float | None = Field(default=None, ge=0)
    retry_count: int = Field(default=0, ge=0, le=MAX_RETRIES)


class BlockchainData(BaseModel):
    transaction_hash: str | None = Field(default=None, pattern=TX_HASH_PATTERN)
    token_id: int | None = Field(default=None, ge=0)
    contract_address: str | None = Field(default=None, pattern=WALLET_PATTERN)
    gas_used: int | None = Field(default=None, ge=0)
    block_number: int | None = Field(default=None, ge=0)
    confirmations: int | None = Field(default=None, ge=0)

    @field_validator('contract_address')
    @classmethod
    def _lower(cls, v: str | None) -> str | None:
        return v.lower() if v else v


class NFTAttribute(BaseModel):
    trait_type: str
    value: Union[str, int, float]


class NFTMetadata(BaseModel):
    name: str = Field(..., max_length=100)
    description: str = Field(..., max_length=1000)
    image: str
    attributes: List[NFTAttribute] = []
    external_url: str | None = None
    animation_url: str | None = None


class ServiceResult(BaseModel, Generic[T]):
    """Outcome envelope for service calls that report failures as values."""
    success: bool
    data: Optional[T] = None
    error: str | None = None
    # machine-readable failure kind: not_found, forbidden, conflict, invalid, unavailable
    code: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> 'ServiceResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str | None = None) -> 'ServiceResult':
        return cls(success=False, error=error, code=code)


class CreateRequestIn(BaseModel):
    wallet_address: str = Field(..., pattern=WALLET_PATTERN)
    prompt: str = Field(..., min_length=1, max_length=1000)
    destination_chain_id: int = Field(..., ge=1)
    recipient: str | None = Field(default=None, pattern=WALLET_PATTERN)


class WalletActionIn(BaseModel):
    wallet_address: str = Field(..., pattern=WALLET_PATTERN)


class NFTRequestOut(BaseModel):
    request_id: str
    user_id: int | None = None
    wallet_address: str
    prompt: str
    destination_chain_id: int
    recipient: str
    status: str
    fee: str
    ai_generation_data: dict | None = None
    blockchain_data: dict | None = None
    metadata: dict | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    processing_time_ms: int | None = None


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> 'Pagination':
        total_pages = (total + limit - 1) // limit if limit else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_items=total,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class PagedRequests(BaseModel):
    requests: List[NFTRequestOut]
    pagination: Pagination
