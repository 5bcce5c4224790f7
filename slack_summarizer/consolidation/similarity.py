"""
Similarity scoring between conversations.

Combines reference overlap (Jaccard over non-mention references) with
optional embedding cosine similarity.
"""

import hashlib
import logging
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

import numpy as np

from slack_summarizer.core.models import CachedEmbedding, Conversation

if TYPE_CHECKING:
    from slack_summarizer.cache.database import CacheDatabase
    from slack_summarizer.embeddings.providers import EmbeddingProvider

logger = logging.getLogger(__name__)


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """
    Jaccard index of two sets.

    Returns 0 when either set is empty; the absence of references is not
    evidence of similarity.
    """
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def reference_similarity(refs_a: Iterable[str], refs_b: Iterable[str]) -> float:
    """Jaccard similarity of two non-mention reference sets."""
    return jaccard(refs_a, refs_b)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine similarity of two vectors.

    Raises
    ------
    ValueError
        If the vectors have different dimensions.
    """
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    if a.shape != b.shape:
        raise ValueError(f"Embedding dimension mismatch: {a.shape} vs {b.shape}")
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0:
        return 0.0
    sim = float(np.dot(a, b) / denom)
    return max(-1.0, min(1.0, sim))


def embedding_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity clamped at 0; only positive relatedness counts."""
    return max(0.0, cosine_similarity(a, b))


class SimilarityScorer:
    """
    Hybrid reference/embedding similarity.

    Parameters
    ----------
    ref_weight : float
        Weight of reference similarity in the hybrid score.
    emb_weight : float
        Weight of embedding similarity in the hybrid score.
    use_embeddings : bool
        When False, scores are reference similarity only.

    The weights are expected to sum to 1.0; this is not enforced, but each
    must lie in [0, 1].
    """

    def __init__(self, ref_weight: float = 0.6, emb_weight: float = 0.4, use_embeddings: bool = False):
        for name, weight in (("ref_weight", ref_weight), ("emb_weight", emb_weight)):
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {weight}")
        self.ref_weight = ref_weight
        self.emb_weight = emb_weight
        self.use_embeddings = use_embeddings

    def score(
        self,
        refs_a: Iterable[str],
        refs_b: Iterable[str],
        emb_a: Optional[np.ndarray] = None,
        emb_b: Optional[np.ndarray] = None,
    ) -> float:
        ref_sim = reference_similarity(refs_a, refs_b)
        if not self.use_embeddings or emb_a is None or emb_b is None:
            return ref_sim
        return self.ref_weight * ref_sim + self.emb_weight * embedding_similarity(emb_a, emb_b)


# ============================================================
# Conversation embeddings
# ============================================================


def prepare_conversation_text(conversation: Conversation) -> str:
    """Text used to embed a conversation: non-empty message texts joined."""
    return " ".join(m.text.strip() for m in conversation.messages if m.text and m.text.strip())


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


async def prepare_conversation_embeddings(
    conversations: List[Conversation],
    provider: "EmbeddingProvider",
    cache: Optional["CacheDatabase"] = None,
) -> Dict[str, Optional[np.ndarray]]:
    """
    Embed conversations, reusing cached vectors whose text hash still matches.

    Parameters
    ----------
    conversations : list of Conversation
        Conversations to embed.
    provider : EmbeddingProvider
        Provider used for cache misses, called once with all misses.
    cache : CacheDatabase, optional
        Embedding cache. New vectors are written back in one transaction.

    Returns
    -------
    dict
        Conversation ID to vector, or None when the conversation has no
        text or the provider failed.
    """
    result: Dict[str, Optional[np.ndarray]] = {}
    texts: Dict[str, str] = {}
    hashes: Dict[str, str] = {}

    for conv in conversations:
        text = prepare_conversation_text(conv)
        if not text:
            result[conv.id] = None
            continue
        texts[conv.id] = text
        hashes[conv.id] = text_hash(text)

    if cache is not None and hashes:
        cached = cache.get_cached_embeddings(hashes)
        for conv_id, vector in cached.items():
            result[conv_id] = vector

    misses = [conv_id for conv_id in texts if conv_id not in result]
    if not misses:
        return result

    try:
        vectors = await provider.embed_batch([texts[conv_id] for conv_id in misses])
    except Exception as e:
        logger.warning("Embedding %d conversations failed: %s", len(misses), e)
        for conv_id in misses:
            result[conv_id] = None
        return result

    new_entries: List[CachedEmbedding] = []
    for conv_id, vector in zip(misses, vectors):
        vector = np.asarray(vector, dtype=np.float32)
        result[conv_id] = vector
        new_entries.append(
            CachedEmbedding(
                conversation_id=conv_id,
                vector=vector,
                text_hash=hashes[conv_id],
                model=provider.model_name,
            )
        )

    if cache is not None and new_entries:
        cache.set_cached_embeddings(new_entries)

    logger.debug("Embedded %d conversations (%d cached)", len(misses), len(texts) - len(misses))
    return result
