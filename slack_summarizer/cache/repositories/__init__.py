"""Cache repositories."""

from .activity import ChannelRepository, MentionRepository, ReactionRepository
from .embeddings import EmbeddingRepository
from .fetch_status import FetchStatusRepository
from .messages import MessageRepository

__all__ = [
    "ChannelRepository",
    "EmbeddingRepository",
    "FetchStatusRepository",
    "MentionRepository",
    "MessageRepository",
    "ReactionRepository",
]
