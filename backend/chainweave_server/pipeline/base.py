from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable

from pydantic import BaseModel, Field


class ArtworkResult(BaseModel):
    """What the off-chain pipeline hands back for one prompt."""
    image_url: str
    ipfs_hash: str
    token_uri: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    processing_time: float = 0.0
    model: str = 'gemini-pro'


@runtime_checkable
class ArtworkPipeline(Protocol):
    """Generates the image, pins image and metadata, returns the token URI.

    Implementations raise ``PipelineError`` when generation or upload fails.
    """

    async def generate_nft_artwork(self, prompt: str, style: str = 'realistic') -> ArtworkResult:
        ...
