"""
Caller-facing retrieval API and its composition root.

``build_service`` wires one instance of every component from a
``RecallConfig``; consumers receive the service explicitly instead of
looking up process-wide singletons.
"""

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import numpy as np

from .backfill import BackfillCoordinator, BackfillReport
from .config import RecallConfig, validate_config
from .dao import MessageDAO
from .db import health_check
from .errors import MessageNotFound, NoEmbeddingAvailable
from .schema import Message
from ..util.logging import logger
from ..vector.cache import EmbeddingCache
from ..vector.embeddings import (
    EmbeddingComputer,
    HashWordVectors,
    IWordVectorProvider,
    SentenceTransformerWordVectors,
    TextFileWordVectors,
)
from ..vector.search import SimilaritySearchEngine
from ..vector.store import VectorStoreAdapter
from ..vector.types import ScoredResult


@dataclass
class SearchHit:
    """One ranked search result as returned to callers."""
    message_id: uuid.UUID
    content: str
    score: float
    is_user: bool
    created_at: datetime

    @classmethod
    def from_result(cls, result: ScoredResult) -> "SearchHit":
        return cls(
            message_id=result.message.id,
            content=result.message.content,
            score=result.score,
            is_user=result.message.is_user,
            created_at=result.message.created_at,
        )

    @classmethod
    def from_message(cls, message: Message, score: float = 0.0) -> "SearchHit":
        return cls(
            message_id=message.id,
            content=message.content,
            score=score,
            is_user=message.is_user,
            created_at=message.created_at,
        )


class RetrievalService:
    """Save messages, search them semantically, and keep their vectors filled in.

    ``save``, ``search`` and ``backfill`` may block briefly on store I/O; call
    them off any latency-sensitive thread.
    """

    def __init__(self, dao: MessageDAO, store: VectorStoreAdapter, cache: EmbeddingCache,
                 computer: EmbeddingComputer, engine: SimilaritySearchEngine,
                 backfiller: BackfillCoordinator):
        self.dao = dao
        self.store = store
        self.cache = cache
        self.computer = computer
        self.engine = engine
        self.backfiller = backfiller

    def save(self, text: str, is_user: bool = True) -> uuid.UUID:
        """Store a message and its embedding. Returns the new message id.

        If the vector write fails, ``StoreIOError`` is raised; the message
        itself is kept and a later backfill computes its vector.
        """
        message = self.dao.create_message(text, is_user)
        vector = self.computer.compute_embedding(text)
        if vector is None:
            logger.log_vector_operation("embed", message.id, {"reason": "no known tokens"}, status="skipped")
        self.computer.persist(message.id, vector)
        return message.id

    def search(self, query_text: str, k: int = 5,
               cancel_event: Optional[threading.Event] = None) -> List[SearchHit]:
        """Messages most similar to ``query_text``, best first.

        A query with no usable tokens returns an empty list; callers wanting a
        fallback can use ``search_or_recent``.
        """
        if k <= 0:
            return []
        query_vector = self.computer.embed_query(query_text)
        if query_vector is None:
            logger.log_operation("search", "skipped", {"reason": "no query embedding"})
            return []
        return self.search_by_vector(query_vector, k, cancel_event)

    def search_or_recent(self, query_text: str, k: int = 5) -> List[SearchHit]:
        """Semantic search, falling back to the k newest messages when the query has no usable tokens.

        Fallback hits carry a score of 0.0.
        """
        if k <= 0:
            return []
        try:
            query_vector = self.computer.require_query_embedding(query_text)
        except NoEmbeddingAvailable:
            logger.log_operation("search", "degraded", {"fallback": "recent", "k": k})
            return [SearchHit.from_message(message) for message in self.recent_messages(k)]
        return self.search_by_vector(query_vector, k)

    def similar_messages(self, message_id: uuid.UUID, k: int = 5) -> List[SearchHit]:
        """Messages most similar to a stored message, excluding the message itself.

        The message's vector is read through the cache and the store, and
        computed and persisted if neither has it.
        """
        if k <= 0:
            return []
        message = self.get_message(message_id)
        vector = self.computer.embed_message(message)
        if vector is None:
            logger.log_operation("search.similar", "skipped", {"message_id": str(message_id)})
            return []
        results = self.engine.search(vector, k + 1)
        return [SearchHit.from_result(r) for r in results if r.message_id != message_id][:k]

    def search_by_vector(self, vector: Union[np.ndarray, List[float]], k: int = 5,
                         cancel_event: Optional[threading.Event] = None) -> List[SearchHit]:
        results = self.engine.search(vector, k, cancel_event)
        return [SearchHit.from_result(result) for result in results]

    def trigger_backfill(self, batch_size: Optional[int] = None) -> None:
        """Queue a background backfill and return immediately."""
        self.backfiller.trigger(batch_size)

    def backfill(self, batch_size: Optional[int] = None) -> BackfillReport:
        """Run a backfill on the calling thread."""
        return self.backfiller.backfill(batch_size)

    def replace_content(self, message_id: uuid.UUID, text: str) -> Message:
        """Replace a message's text; its old vector is discarded and recomputed."""
        message = self.dao.replace_content(message_id, text)
        if message is None:
            raise MessageNotFound(str(message_id))
        self.computer.invalidate(message_id)
        self.computer.persist(message_id, self.computer.compute_embedding(text))
        return message

    def delete_message(self, message_id: uuid.UUID) -> None:
        """Delete a message together with its vector."""
        deleted = self.dao.delete_message(message_id)
        self.computer.invalidate(message_id)
        if not deleted:
            raise MessageNotFound(str(message_id))

    def get_message(self, message_id: uuid.UUID) -> Message:
        message = self.dao.get_message(message_id)
        if message is None:
            raise MessageNotFound(str(message_id))
        return message

    def recent_messages(self, limit: int = 20) -> List[Message]:
        """Newest messages first, for non-semantic fallbacks."""
        return self.dao.list_recent(limit)

    def purge_vectors(self, before: Optional[Union[datetime, float]] = None) -> int:
        """Delete vectors computed before ``before``, or all vectors. Clears the cache."""
        removed = self.store.purge_all() if before is None else self.store.delete_vectors_older_than(before)
        self.cache.clear()
        return removed

    def health(self) -> Dict[str, Any]:
        """Return retrieval system health information."""
        db_health = health_check(self.dao.db_path)
        info = {
            "status": "healthy" if db_health else "unhealthy",
            "db_health": db_health,
            "dimension": self.computer.dimension,
            "cache": self.cache.stats(),
        }
        if db_health:
            info["message_count"] = self.dao.count_messages()
            info["vector_count"] = self.store.count_vectors()
        if self.backfiller.last_report is not None:
            info["last_backfill"] = self.backfiller.last_report.to_dict()
        return info

    def close(self) -> None:
        self.backfiller.stop()


def build_provider(config: RecallConfig) -> IWordVectorProvider:
    """Get the configured word-vector provider."""
    if config.word_vector_provider == "file":
        return TextFileWordVectors(config.word_vector_path)
    elif config.word_vector_provider == "sentence-transformers":
        return SentenceTransformerWordVectors(config.embed_model_name)
    else:
        return HashWordVectors(config.embed_dim)


def build_service(config: Optional[RecallConfig] = None,
                  provider: Optional[IWordVectorProvider] = None) -> RetrievalService:
    """Composition root: construct and wire every retrieval component."""
    config = config or RecallConfig.from_env()
    issues = validate_config(config)
    if issues:
        raise ValueError(f"Recall configuration invalid: {issues}")

    logger.set_debug(config.debug)

    dao = MessageDAO(config.db_path)
    store = VectorStoreAdapter(dao)
    cache = EmbeddingCache(config.embed_cache_size)
    computer = EmbeddingComputer(provider or build_provider(config), cache, store)
    engine = SimilaritySearchEngine(store, workers=config.search_workers, batch_size=config.search_batch_size)
    backfiller = BackfillCoordinator(computer, store, batch_size=config.backfill_batch_size)

    service = RetrievalService(dao, store, cache, computer, engine, backfiller)
    if config.backfill_on_start:
        service.trigger_backfill()

    logger.log_operation("service.build", "success", {
        "db_path": config.db_path,
        "provider": type(computer.provider).__name__,
        "search_workers": config.search_workers,
    })
    return service
