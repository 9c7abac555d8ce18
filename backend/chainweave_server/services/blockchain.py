from __future__ import annotations

import asyncio
import logging
from typing import Any

from chainweave_server.core.errors import TransactionFailed
from chainweave_server.requests.store import RequestStore
from chainweave_server.schemas.nft_request import ServiceResult

_log = logging.getLogger(__name__)


class BlockchainService:
    """Outgoing contract calls on behalf of the backend signer.

    Built once in the application lifespan around a ContractGateway and the
    request store. ``complete_ai_generation`` never touches the request's
    status: a failed submission is reported to the caller, who decides.
    """

    def __init__(self, gateway, store: RequestStore, *, gas_margin_percent: int = 20, receipt_timeout: float = 180.0):
        self._gateway = gateway
        self._store = store
        self._gas_margin_percent = max(0, int(gas_margin_percent))
        self._receipt_timeout = receipt_timeout
        # one signer, one nonce sequence
        self._tx_lock = asyncio.Lock()

    @property
    def gateway(self):
        return self._gateway

    def gas_limit_for(self, estimated: int) -> int:
        return int(estimated) * (100 + self._gas_margin_percent) // 100

    async def complete_ai_generation(self, request_id: str, token_uri: str) -> ServiceResult:
        _log.info("completing AI generation on-chain request=%s token_uri=%s", request_id, token_uri)
        try:
            async with self._tx_lock:
                estimated = await self._gateway.estimate_complete_ai_generation(request_id, token_uri)
                gas_limit = self.gas_limit_for(estimated)
                tx_hash = await self._gateway.send_complete_ai_generation(request_id, token_uri, gas_limit)
                _log.info("completion tx sent request=%s tx=%s gas_limit=%d", request_id, tx_hash, gas_limit)
                receipt = await self._gateway.wait_for_receipt(tx_hash, timeout=self._receipt_timeout)
            if int(receipt.get('status', 0)) != 1:
                raise TransactionFailed(receipt.get('transaction_hash') or tx_hash, receipt.get('status'))
            confirmed_hash = receipt.get('transaction_hash') or tx_hash
            _log.info(
                "completion confirmed request=%s tx=%s block=%s gas_used=%s",
                request_id, confirmed_hash, receipt.get('block_number'), receipt.get('gas_used'),
            )
            await asyncio.to_thread(
                self._store.set_blockchain_data,
                request_id,
                {
                    'transaction_hash': confirmed_hash,
                    'block_number': receipt.get('block_number'),
                    'gas_used': receipt.get('gas_used'),
                    'confirmations': 1,
                },
            )
            return ServiceResult.ok({'transaction_hash': confirmed_hash})
        except Exception as exc:
            _log.error("failed to complete AI generation on-chain request=%s: %s", request_id, exc)
            return ServiceResult.fail(str(exc) or exc.__class__.__name__)

    async def get_request_details(self, request_id: str) -> ServiceResult:
        try:
            data = await self._gateway.get_mint_request(request_id)
        except Exception as exc:
            _log.error("failed to read mint request %s: %s", request_id, exc)
            return ServiceResult.fail(str(exc) or 'failed to fetch request details')
        return ServiceResult.ok({
            'request_id': data.get('requestId'),
            'sender': data.get('sender'),
            'source_chain_id': int(data.get('sourceChainId') or 0),
            'destination_chain_id': int(data.get('destinationChainId') or 0),
            'prompt': data.get('prompt'),
            'recipient': data.get('recipient'),
            'timestamp': int(data.get('timestamp') or 0),
            'processed': bool(data.get('processed')),
            'token_id': int(data.get('tokenId') or 0),
            'token_uri': data.get('tokenURI'),
            'fee': str(data.get('fee') or '0'),
            'status': int(data.get('status') or 0),
        })

    async def is_chain_supported(self, chain_id: int) -> bool:
        try:
            return bool(await self._gateway.is_chain_supported(chain_id))
        except Exception as exc:
            _log.error("failed to check chain support chain=%s: %s", chain_id, exc)
            return False

    async def get_request_fee(self) -> str:
        try:
            return str(await self._gateway.get_request_fee())
        except Exception as exc:
            _log.error("failed to read request fee: %s", exc)
            return '0'

    async def health_check(self) -> dict[str, Any]:
        try:
            block_number, chain_id = await asyncio.gather(self._gateway.block_number(), self._gateway.chain_id())
        except Exception as exc:
            return {'status': 'error', 'error': str(exc) or exc.__class__.__name__}
        return {'status': 'connected', 'block_number': int(block_number), 'chain_id': int(chain_id)}
