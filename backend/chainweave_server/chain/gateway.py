from __future__ import annotations

import logging
from typing import Any, List

from eth_account import Account
from web3 import AsyncWeb3

from chainweave_server.chain.abi import CHAINWEAVE_ABI, WATCHED_EVENTS
from chainweave_server.chain.events import ChainEvent, event_from_log
from chainweave_server.core.config import Settings
from chainweave_server.utils.hex_utils import to_bytes32, to_hex

_log = logging.getLogger(__name__)

_MINT_REQUEST_FIELDS = (
    'requestId', 'sender', 'sourceChainId', 'destinationChainId', 'prompt', 'recipient',
    'timestamp', 'processed', 'tokenId', 'tokenURI', 'fee', 'status',
)


class ContractGateway:
    """Async web3 access to the ChainWeave contract.

    Only speaks the contract ABI; deciding what a receipt or an event means
    for a stored request is the caller's job.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        *,
        timeout: float = 30.0,
        w3: AsyncWeb3 | None = None,
    ) -> None:
        self._w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))
        self._account = Account.from_key(private_key)
        self._contract_address = AsyncWeb3.to_checksum_address(contract_address)
        self._contract = self._w3.eth.contract(address=self._contract_address, abi=CHAINWEAVE_ABI)
        self._chain_id: int | None = None

    @classmethod
    def from_settings(cls, cfg: Settings) -> 'ContractGateway':
        cfg.validate_chain()
        return cls(cfg.rpc_url, cfg.contract_address, cfg.backend_private_key, timeout=cfg.rpc_timeout)

    @property
    def sender_address(self) -> str:
        return self._account.address

    @property
    def contract_address(self) -> str:
        return self._contract_address

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await self._w3.eth.chain_id)
        return self._chain_id

    async def block_number(self) -> int:
        return int(await self._w3.eth.block_number)

    # --- transactions -------------------------------------------------
    def _complete_fn(self, request_id: str, token_uri: str):
        return self._contract.functions.completeAIGeneration(to_bytes32(request_id), token_uri)

    async def estimate_complete_ai_generation(self, request_id: str, token_uri: str) -> int:
        fn = self._complete_fn(request_id, token_uri)
        return int(await fn.estimate_gas({'from': self._account.address}))

    async def send_complete_ai_generation(self, request_id: str, token_uri: str, gas_limit: int) -> str:
        fn = self._complete_fn(request_id, token_uri)
        nonce = await self._w3.eth.get_transaction_count(self._account.address, 'pending')
        tx = await fn.build_transaction({
            'from': self._account.address,
            'nonce': nonce,
            'gas': int(gas_limit),
            'chainId': await self.chain_id(),
        })
        signed = self._account.sign_transaction(tx)
        raw = getattr(signed, 'raw_transaction', None) or signed.rawTransaction
        tx_hash = await self._w3.eth.send_raw_transaction(raw)
        return to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, *, timeout: float = 180.0) -> dict[str, Any]:
        receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        return {
            'status': int(receipt['status']),
            'transaction_hash': to_hex(receipt['transactionHash']),
            'block_number': int(receipt['blockNumber']),
            'gas_used': int(receipt['gasUsed']),
        }

    # --- views --------------------------------------------------------
    async def get_mint_request(self, request_id: str) -> dict[str, Any]:
        raw = await self._contract.functions.getMintRequest(to_bytes32(request_id)).call()
        data = dict(zip(_MINT_REQUEST_FIELDS, raw))
        data['requestId'] = to_hex(data['requestId'])
        data['recipient'] = to_hex(data['recipient'])
        data['sender'] = str(data['sender']).lower()
        data['fee'] = str(data['fee'])
        return data

    async def get_request_fee(self) -> int:
        return int(await self._contract.functions.getRequestFee().call())

    async def is_chain_supported(self, chain_id: int) -> bool:
        return bool(await self._contract.functions.supportedChains(int(chain_id)).call())

    # --- events -------------------------------------------------------
    async def fetch_events(self, from_block: int, to_block: int) -> List[ChainEvent]:
        events: List[ChainEvent] = []
        for name in WATCHED_EVENTS:
            event_type = getattr(self._contract.events, name)
            logs = await event_type.get_logs(from_block=from_block, to_block=to_block)
            events.extend(event_from_log(log) for log in logs)
        events.sort(key=lambda e: e.sort_key)
        return events

    async def close(self) -> None:
        provider = self._w3.provider
        disconnect = getattr(provider, 'disconnect', None)
        if disconnect is not None:
            await disconnect()
