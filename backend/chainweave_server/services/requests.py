from __future__ import annotations

import asyncio
import hashlib
import logging
import time

from chainweave_server.core.errors import (
    ChainWeaveError,
    ConcurrentUpdateError,
    InvalidTransition,
    PipelineError,
    RequestNotFound,
    RetryLimitExceeded,
    ValidationFailed,
)
from chainweave_server.models.nft_request import NFTRequest, RequestStatus
from chainweave_server.models.user import DEFAULT_PREFERENCES
from chainweave_server.pipeline.base import ArtworkPipeline
from chainweave_server.requests.lifecycle import CANCELLABLE, coerce_status
from chainweave_server.requests.store import RequestStore
from chainweave_server.schemas.nft_request import MAX_RETRIES, Pagination, ServiceResult
from chainweave_server.services.blockchain import BlockchainService
from chainweave_server.services.users import UserService
from chainweave_server.utils.hex_utils import is_wallet_address

_log = logging.getLogger(__name__)


def generate_request_id(wallet_address: str, prompt: str, timestamp_ms: int | None = None) -> str:
    """0x-prefixed sha256 of ``wallet-prompt-timestamp``; fits a bytes32 argument."""
    ts = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    digest = hashlib.sha256(f"{wallet_address}-{prompt}-{ts}".encode('utf-8')).hexdigest()
    return '0x' + digest


class RequestService:
    """User-facing request operations and the off-chain processing batch.

    Store access is synchronous and runs in worker threads; the pipeline and
    the contract calls are awaited directly.
    """

    def __init__(
        self,
        store: RequestStore,
        users: UserService,
        *,
        blockchain: BlockchainService | None = None,
        pipeline: ArtworkPipeline | None = None,
        min_prompt_length: int = 10,
        max_prompt_length: int = 500,
        max_concurrency: int = 3,
    ):
        self._store = store
        self._users = users
        self._blockchain = blockchain
        self._pipeline = pipeline
        self._min_prompt = min_prompt_length
        self._max_prompt = max_prompt_length
        self._max_concurrency = max(1, max_concurrency)

    @property
    def store(self) -> RequestStore:
        return self._store

    # --- create / read ------------------------------------------------
    async def create_request(
        self,
        wallet_address: str,
        prompt: str,
        destination_chain_id: int,
        recipient: str | None = None,
    ) -> ServiceResult:
        text = (prompt or '').strip()
        if not self._min_prompt <= len(text) <= self._max_prompt:
            return ServiceResult.fail(
                f"prompt must be between {self._min_prompt} and {self._max_prompt} characters", 'invalid'
            )
        if not is_wallet_address(wallet_address):
            return ServiceResult.fail('invalid wallet address', 'invalid')
        if recipient is not None and not is_wallet_address(recipient):
            return ServiceResult.fail('invalid recipient address', 'invalid')

        user = await asyncio.to_thread(self._users.find_by_wallet, wallet_address)
        if user is None:
            return ServiceResult.fail('User not found', 'not_found')
        if self._blockchain is not None and not await self._blockchain.is_chain_supported(destination_chain_id):
            return ServiceResult.fail('Destination chain is not supported', 'invalid')

        request_id = generate_request_id(wallet_address.lower(), text)
        _log.info(
            "creating request wallet=%s chain=%s prompt_len=%d",
            wallet_address.lower(), destination_chain_id, len(text),
        )
        try:
            row, _created = await asyncio.to_thread(
                lambda: self._store.create(
                    request_id=request_id,
                    wallet_address=wallet_address,
                    prompt=text,
                    destination_chain_id=destination_chain_id,
                    recipient=recipient.lower() if recipient else None,
                    user_id=user.id,
                )
            )
        except ChainWeaveError as exc:
            _log.error("failed to create request for %s: %s", wallet_address, exc)
            return ServiceResult.fail(str(exc), 'invalid')
        return ServiceResult.ok(row.as_dict())

    async def get_request(self, request_id: str) -> ServiceResult:
        row = await asyncio.to_thread(self._store.find_by_request_id, request_id)
        if row is None:
            return ServiceResult.fail('Request not found', 'not_found')
        return ServiceResult.ok(row.as_dict())

    async def get_requests_by_wallet(self, wallet_address: str, page: int = 1, limit: int = 20) -> ServiceResult:
        if not is_wallet_address(wallet_address):
            return ServiceResult.fail('invalid wallet address', 'invalid')
        page = max(1, page)
        limit = max(1, min(50, limit))
        rows, total = await asyncio.to_thread(
            lambda: self._store.find_by_wallet(wallet_address, page=page, limit=limit)
        )
        return ServiceResult.ok({
            'requests': [r.as_dict() for r in rows],
            'pagination': Pagination.build(page, limit, total).model_dump(),
        })

    async def get_requests_by_status(self, status: str, page: int = 1, limit: int = 50) -> ServiceResult:
        try:
            st = coerce_status(status)
        except ValueError:
            return ServiceResult.fail(f"unknown status {status!r}", 'invalid')
        rows = await asyncio.to_thread(lambda: self._store.find_by_status(st, page=page, limit=limit))
        return ServiceResult.ok([r.as_dict() for r in rows])

    async def search_requests(self, query: str, page: int = 1, limit: int = 20) -> ServiceResult:
        try:
            rows = await asyncio.to_thread(lambda: self._store.search(query, page=page, limit=limit))
        except ValidationFailed as exc:
            return ServiceResult.fail(str(exc), 'invalid')
        return ServiceResult.ok([r.as_dict() for r in rows])

    async def get_statistics(self) -> ServiceResult:
        return ServiceResult.ok(await asyncio.to_thread(self._store.stats))

    # --- owner actions ------------------------------------------------
    def _owned(self, request_id: str, wallet_address: str, verb: str) -> NFTRequest | ServiceResult:
        row = self._store.find_by_request_id(request_id)
        if row is None:
            return ServiceResult.fail('Request not found', 'not_found')
        if row.wallet_address != (wallet_address or '').lower():
            return ServiceResult.fail(f"Unauthorized: You can only {verb} your own requests", 'forbidden')
        return row

    def _cancel(self, request_id: str, wallet_address: str) -> ServiceResult:
        row = self._owned(request_id, wallet_address, 'cancel')
        if isinstance(row, ServiceResult):
            return row
        if coerce_status(row.status) not in CANCELLABLE:
            return ServiceResult.fail('Request cannot be cancelled in current status', 'conflict')
        try:
            self._store.update_status(request_id, RequestStatus.cancelled)
        except InvalidTransition:
            # moved on between the read and the conditional update
            return ServiceResult.fail('Request cannot be cancelled in current status', 'conflict')
        _log.info("request %s cancelled by %s", request_id, wallet_address.lower())
        return ServiceResult.ok()

    async def cancel_request(self, request_id: str, wallet_address: str) -> ServiceResult:
        return await asyncio.to_thread(self._cancel, request_id, wallet_address)

    def _retry(self, request_id: str, wallet_address: str) -> ServiceResult:
        row = self._owned(request_id, wallet_address, 'retry')
        if isinstance(row, ServiceResult):
            return row
        if row.status != RequestStatus.failed.value:
            return ServiceResult.fail('Only failed requests can be retried', 'conflict')
        retries = int((row.ai_generation_data or {}).get('retry_count') or 0)
        if retries >= MAX_RETRIES:
            return ServiceResult.fail('Maximum retry attempts reached', 'conflict')
        try:
            row = self._store.requeue_failed(request_id)
        except (InvalidTransition, RetryLimitExceeded, ConcurrentUpdateError) as exc:
            return ServiceResult.fail(str(exc), 'conflict')
        retries = int(row.ai_generation_data['retry_count'])
        _log.info("request %s queued for retry %d/%d", request_id, retries, MAX_RETRIES)
        return ServiceResult.ok({'retry_count': retries})

    async def retry_request(self, request_id: str, wallet_address: str) -> ServiceResult:
        return await asyncio.to_thread(self._retry, request_id, wallet_address)

    # --- processing ---------------------------------------------------
    async def process_pending_requests(self, batch_size: int = 5) -> ServiceResult:
        if self._pipeline is None:
            return ServiceResult.fail('artwork pipeline is not configured', 'unavailable')
        batch_size = max(1, batch_size)
        pending = await asyncio.to_thread(self._store.find_pending_requests, batch_size)
        if not pending:
            return ServiceResult.ok({'processed': 0, 'failed': 0})
        _log.info("processing %d pending request(s)", len(pending))
        gate = asyncio.Semaphore(self._max_concurrency)
        counts = {'processed': 0, 'failed': 0}

        async def _one(row: NFTRequest) -> None:
            async with gate:
                try:
                    await asyncio.to_thread(self._store.claim, row.request_id)
                except (InvalidTransition, RequestNotFound) as exc:
                    _log.info("skipping request %s: %s", row.request_id, exc)
                    return
                try:
                    await self._process_one(row)
                    counts['processed'] += 1
                except Exception as exc:
                    counts['failed'] += 1
                    _log.error("request %s processing failed: %s", row.request_id, exc)
                    await asyncio.to_thread(self._mark_failed, row.request_id, str(exc) or 'AI generation failed')

        await asyncio.gather(*(_one(r) for r in pending))
        _log.info("batch complete processed=%d failed=%d", counts['processed'], counts['failed'])
        return ServiceResult.ok(counts)

    def _mark_failed(self, request_id: str, message: str) -> None:
        try:
            self._store.update_status(request_id, RequestStatus.failed, error_message=message)
        except (InvalidTransition, RequestNotFound) as exc:
            _log.warning("could not mark request %s failed: %s", request_id, exc)

    def _style_for(self, row: NFTRequest) -> str:
        if row.user_id is None:
            return DEFAULT_PREFERENCES['ai_style']
        user = self._users.find_by_wallet(row.wallet_address)
        prefs = (user.preferences if user is not None else None) or {}
        return prefs.get('ai_style') or DEFAULT_PREFERENCES['ai_style']

    async def _process_one(self, row: NFTRequest) -> None:
        request_id = row.request_id
        style = await asyncio.to_thread(self._style_for, row)
        try:
            art = await self._pipeline.generate_nft_artwork(row.prompt, style)
        except PipelineError:
            raise
        except Exception as exc:
            raise PipelineError(str(exc) or 'AI generation failed') from exc

        retries = int((row.ai_generation_data or {}).get('retry_count') or 0)
        await asyncio.to_thread(
            self._store.set_ai_generation_data,
            request_id,
            {
                'model': art.model,
                'generated_image_url': art.image_url,
                'ipfs_hash': art.ipfs_hash,
                'token_uri': art.token_uri,
                'processing_time': art.processing_time,
                'retry_count': retries,
            },
        )
        if art.metadata:
            await asyncio.to_thread(self._store.set_metadata, request_id, art.metadata)
        await asyncio.to_thread(self._store.update_status, request_id, RequestStatus.ai_completed)

        if self._blockchain is None:
            _log.warning("no chain connection; request %s left in ai_completed", request_id)
            return
        result = await self._blockchain.complete_ai_generation(request_id, art.token_uri)
        if not result.success:
            raise ChainWeaveError(result.error or 'Blockchain completion failed')
        _log.info("request %s AI generation completed token_uri=%s", request_id, art.token_uri)
