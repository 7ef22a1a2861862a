"""
Vector overlay types - advisory layer over the canonical SQLite message store.
"""

import uuid
from dataclasses import dataclass

import numpy as np

from ..core.schema import Message

# A 1-D float64 array
Vector = np.ndarray


@dataclass(frozen=True)
class QueryKey:
    """Cache key for a transient query text, distinct from any message id."""

    text: str


@dataclass
class ScoredResult:
    """Represents a search result from the similarity engine."""

    message: Message
    """The matching message"""

    score: float
    """Cosine similarity of the match, in [-1, 1]"""

    @property
    def message_id(self) -> uuid.UUID:
        return self.message.id

    @property
    def content(self) -> str:
        return self.message.content
