"""ABI fragments of the ChainWeave contract used by the backend."""
from __future__ import annotations

EVENT_MINT_REQUESTED = 'NFTMintRequested'
EVENT_AI_COMPLETED = 'AIGenerationCompleted'
EVENT_MINTED = 'NFTMinted'
EVENT_MINT_REVERTED = 'NFTMintReverted'

WATCHED_EVENTS: tuple[str, ...] = (
    EVENT_MINT_REQUESTED,
    EVENT_AI_COMPLETED,
    EVENT_MINTED,
    EVENT_MINT_REVERTED,
)


def _arg(name: str, type_: str, *, indexed: bool | None = None, internal: str | None = None) -> dict:
    entry = {'name': name, 'type': type_, 'internalType': internal or type_}
    if indexed is not None:
        entry['indexed'] = indexed
    return entry


_MINT_REQUEST_COMPONENTS = [
    _arg('requestId', 'bytes32'),
    _arg('sender', 'address'),
    _arg('sourceChainId', 'uint256'),
    _arg('destinationChainId', 'uint256'),
    _arg('prompt', 'string'),
    _arg('recipient', 'bytes'),
    _arg('timestamp', 'uint256'),
    _arg('processed', 'bool'),
    _arg('tokenId', 'uint256'),
    _arg('tokenURI', 'string'),
    _arg('fee', 'uint256'),
    _arg('status', 'uint8'),
]

CHAINWEAVE_ABI: list[dict] = [
    {
        'type': 'function',
        'name': 'completeAIGeneration',
        'stateMutability': 'nonpayable',
        'inputs': [_arg('requestId', 'bytes32'), _arg('tokenURI', 'string')],
        'outputs': [],
    },
    {
        'type': 'function',
        'name': 'getMintRequest',
        'stateMutability': 'view',
        'inputs': [_arg('requestId', 'bytes32')],
        'outputs': [{
            'name': '',
            'type': 'tuple',
            'internalType': 'struct ChainWeave.MintRequest',
            'components': _MINT_REQUEST_COMPONENTS,
        }],
    },
    {
        'type': 'function',
        'name': 'getRequestFee',
        'stateMutability': 'view',
        'inputs': [],
        'outputs': [_arg('', 'uint256')],
    },
    {
        'type': 'function',
        'name': 'supportedChains',
        'stateMutability': 'view',
        'inputs': [_arg('chainId', 'uint256')],
        'outputs': [_arg('', 'bool')],
    },
    {
        'type': 'event',
        'name': EVENT_MINT_REQUESTED,
        'anonymous': False,
        'inputs': [
            _arg('requestId', 'bytes32', indexed=True),
            _arg('sender', 'address', indexed=True),
            _arg('sourceChainId', 'uint256', indexed=True),
            _arg('destinationChainId', 'uint256', indexed=False),
            _arg('prompt', 'string', indexed=False),
            _arg('recipient', 'bytes', indexed=False),
            _arg('fee', 'uint256', indexed=False),
        ],
    },
    {
        'type': 'event',
        'name': EVENT_AI_COMPLETED,
        'anonymous': False,
        'inputs': [
            _arg('requestId', 'bytes32', indexed=True),
            _arg('tokenURI', 'string', indexed=False),
        ],
    },
    {
        'type': 'event',
        'name': EVENT_MINTED,
        'anonymous': False,
        'inputs': [
            _arg('requestId', 'bytes32', indexed=True),
            _arg('tokenId', 'uint256', indexed=True),
            _arg('tokenURI', 'string', indexed=False),
            _arg('destinationChainId', 'uint256', indexed=False),
        ],
    },
    {
        'type': 'event',
        'name': EVENT_MINT_REVERTED,
        'anonymous': False,
        'inputs': [
            _arg('requestId', 'bytes32', indexed=True),
            _arg('reason', 'string', indexed=False),
        ],
    },
]
