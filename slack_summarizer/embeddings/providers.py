"""
Embedding providers for conversation similarity.
"""

import asyncio
import logging
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)

OPENAI_MAX_CHARS = 32000


class EmbeddingProvider:
    """Minimal async embedder interface."""

    model_name: str = ""

    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        raise NotImplementedError

    async def embed(self, text: str) -> np.ndarray:
        return (await self.embed_batch([text]))[0]


class SentenceTransformerProvider(EmbeddingProvider):
    """Local embeddings; encoding runs in a worker thread."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        from sentence_transformers import SentenceTransformer  # lazy import

        self.model_name = model_name
        self._model = SentenceTransformer(model_name)

    def _encode(self, texts: List[str]) -> np.ndarray:
        return np.asarray(self._model.encode(texts, normalize_embeddings=True), dtype=np.float32)

    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        if not texts:
            return []
        arr = await asyncio.to_thread(self._encode, texts)
        return [row for row in arr]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings API (``text-embedding-3-small`` by default)."""

    def __init__(self, api_key: Optional[str] = None, model_name: str = "text-embedding-3-small"):
        from openai import AsyncOpenAI  # lazy import

        self.model_name = model_name
        self.client = AsyncOpenAI(api_key=api_key)

    async def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        if not texts:
            return []
        response = await self.client.embeddings.create(
            model=self.model_name,
            input=[t[:OPENAI_MAX_CHARS] for t in texts],
        )
        data = sorted(response.data, key=lambda d: d.index)
        return [np.asarray(d.embedding, dtype=np.float32) for d in data]


def create_embedding_provider(name: str, api_key: Optional[str] = None) -> EmbeddingProvider:
    """
    Build a provider by name.

    Raises
    ------
    ValueError
        If ``name`` is unknown or OpenAI is requested without a key.
    """
    if name == "sentence-transformers":
        return SentenceTransformerProvider()
    if name == "openai":
        if not api_key:
            raise ValueError("OPENAI_API_KEY required for the openai embedding provider")
        return OpenAIEmbeddingProvider(api_key=api_key)
    raise ValueError(f"Unknown embedding provider: {name}")
