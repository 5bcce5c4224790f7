"""
Conversation embedding repository.

Vectors are stored as float32 BLOBs next to the hash of the text they were
computed from; a lookup with a different hash is a miss.
"""

from typing import Dict, List, Optional

import numpy as np

from slack_summarizer.core.models import CachedEmbedding

from .base import BaseRepository, now_iso

_LOOKUP_CHUNK = 500


def _to_blob(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).copy()


class EmbeddingRepository(BaseRepository):
    """Repository for cached conversation embeddings."""

    def get(self, conversation_id: str, text_hash: str) -> Optional[np.ndarray]:
        cursor = self.cursor()
        cursor.execute(
            "SELECT embedding, text_hash FROM conversation_embeddings WHERE conversation_id = ?",
            (conversation_id,),
        )
        row = cursor.fetchone()
        if not row or row["text_hash"] != text_hash:
            return None
        return _from_blob(row["embedding"])

    def get_many(self, hashes: Dict[str, str]) -> Dict[str, np.ndarray]:
        """
        Batch lookup.

        Parameters
        ----------
        hashes : Dict[str, str]
            Conversation ID to current text hash.

        Returns
        -------
        Dict[str, np.ndarray]
            Vectors for conversations whose stored hash matches.
        """
        ids = list(hashes)
        found: Dict[str, np.ndarray] = {}
        cursor = self.cursor()
        for start in range(0, len(ids), _LOOKUP_CHUNK):
            chunk = ids[start : start + _LOOKUP_CHUNK]
            placeholders = ",".join("?" for _ in chunk)
            cursor.execute(
                f"SELECT conversation_id, embedding, text_hash FROM conversation_embeddings "
                f"WHERE conversation_id IN ({placeholders})",
                chunk,
            )
            for row in cursor.fetchall():
                if row["text_hash"] == hashes[row["conversation_id"]]:
                    found[row["conversation_id"]] = _from_blob(row["embedding"])
        return found

    def save_many(self, entries: List[CachedEmbedding]) -> int:
        if not entries:
            return 0
        created_at = now_iso()
        with self.transaction() as cursor:
            cursor.executemany(
                """
                INSERT OR REPLACE INTO conversation_embeddings
                    (conversation_id, embedding, text_hash, embedding_model, dimensions, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (e.conversation_id, _to_blob(e.vector), e.text_hash, e.model, e.dimensions, created_at)
                    for e in entries
                ],
            )
        return len(entries)
