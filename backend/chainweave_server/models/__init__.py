# Importing the model modules registers every table on Base.metadata.
from chainweave_server.models.user import User
from chainweave_server.models.nft_request import NFTRequest, RequestStatus
from chainweave_server.models.reporting import Collection, PlatformStats, UserAnalytics
from chainweave_server.models.chain_event import ChainCursor, UnresolvedChainEvent, UnresolvedState

__all__ = [
    "User",
    "NFTRequest",
    "RequestStatus",
    "Collection",
    "PlatformStats",
    "UserAnalytics",
    "ChainCursor",
    "UnresolvedChainEvent",
    "UnresolvedState",
]
