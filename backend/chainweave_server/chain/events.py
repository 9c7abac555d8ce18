from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from chainweave_server.utils.hex_utils import to_hex


@dataclass(slots=True)
class ChainEvent:
    """Decoded contract log in plain Python types.

    ``args`` keeps the ABI argument names (camelCase) with bytes rendered as
    0x-hex strings and uint256 values as ints.
    """
    name: str
    request_id: str
    args: dict[str, Any] = field(default_factory=dict)
    tx_hash: str = ''
    log_index: int = 0
    block_number: int | None = None

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number or 0, self.log_index)


def _plain(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return to_hex(value)
    if isinstance(value, str) and value.startswith('0x') and len(value) == 42:
        return value.lower()
    return value


def event_from_log(log: Mapping[str, Any]) -> ChainEvent:
    """Convert a web3 decoded event (``AttributeDict``) into a ChainEvent."""
    args = {k: _plain(v) for k, v in dict(log['args']).items()}
    return ChainEvent(
        name=log['event'],
        request_id=args.get('requestId', ''),
        args=args,
        tx_hash=to_hex(log.get('transactionHash')),
        log_index=int(log.get('logIndex') or 0),
        block_number=log.get('blockNumber'),
    )
