"""
Exact similarity search over every stored message vector.

Pages read from the store are scored as independent shards on a thread
pool. Each shard keeps only its local top-k; the final merge re-ranks the
union of those and truncates to k, so no shared best-k structure is locked.
"""

import heapq
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import List, Optional, Set, Tuple

import numpy as np

from ..core.errors import InvalidDimension, SearchCancelled
from ..core.schema import Message
from ..util.logging import logger
from .similarity import batch_cosine_similarity, is_zero
from .store import VectorStoreAdapter
from .types import ScoredResult

# Scores equal after rounding to this many places are ties
TIE_DECIMALS = 12

DEFAULT_WORKERS = 4
DEFAULT_BATCH_SIZE = 512


def rank_key(result: ScoredResult):
    """Sort key: score descending, then newest first, then message id."""
    return (-round(result.score, TIE_DECIMALS), -result.message.timestamp, result.message.id)


def score_shard(query: np.ndarray, pairs: List[Tuple[Message, np.ndarray]], k: int,
                cancel_event: Optional[threading.Event] = None) -> Tuple[int, List[ScoredResult]]:
    """Score one shard of candidates against the query.

    Zero vectors are not candidates. Returns the number of candidates scored
    and the shard's local top-k.
    """
    if cancel_event is not None and cancel_event.is_set():
        return 0, []

    candidates = [(message, vector) for message, vector in pairs if not is_zero(vector)]
    if not candidates:
        return 0, []

    for _, vector in candidates:
        if len(vector) != len(query):
            raise InvalidDimension(len(query), len(vector))

    matrix = np.vstack([vector for _, vector in candidates])
    scores = batch_cosine_similarity(query, matrix)

    results = [ScoredResult(message=message, score=float(score))
               for (message, _), score in zip(candidates, scores)]
    return len(candidates), heapq.nsmallest(k, results, key=rank_key)


def merge_top_k(partials: List[List[ScoredResult]], k: int) -> List[ScoredResult]:
    """Merge shard-local top-k lists into the global top-k."""
    return heapq.nsmallest(k, (result for partial in partials for result in partial), key=rank_key)


class SimilaritySearchEngine:
    """Ranks stored messages by cosine similarity to a query vector."""

    def __init__(self, store: VectorStoreAdapter, workers: int = DEFAULT_WORKERS,
                 batch_size: int = DEFAULT_BATCH_SIZE):
        if workers < 1:
            raise ValueError(f"workers must be >= 1: {workers}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1: {batch_size}")

        self.store = store
        self.workers = workers
        self.batch_size = batch_size

    def search(self, query_vector, k: int,
               cancel_event: Optional[threading.Event] = None) -> List[ScoredResult]:
        """Return at most k results, best first.

        Args:
            query_vector: 1-D vector; need not be normalized
            k: number of results; k <= 0 returns an empty list
            cancel_event: when set, the search is abandoned and SearchCancelled raised

        Raises:
            InvalidDimension: a stored vector's length differs from the query's
            StoreIOError: the store could not be read
            SearchCancelled: cancel_event was set before scoring completed
        """
        if k <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1:
            raise ValueError(f"Expected a 1-D query vector, got shape {query.shape}")
        if is_zero(query):
            return []

        start_time = time.monotonic()
        partials: List[List[ScoredResult]] = []
        pending: Set[Future] = set()
        seen = set()
        candidates = 0
        shards = 0
        max_in_flight = self.workers * 2

        def collect(done):
            nonlocal candidates
            for future in done:
                count, top = future.result()
                candidates += count
                partials.append(top)

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="recall-search") as executor:
            try:
                for page in self.store.iter_pages(self.batch_size):
                    self._check_cancelled(cancel_event)

                    # Concurrent writes can shift offsets; never score a message twice
                    shard = []
                    for message, vector in page:
                        if message.id not in seen:
                            seen.add(message.id)
                            shard.append((message, vector))
                    if not shard:
                        continue

                    pending.add(executor.submit(score_shard, query, shard, k, cancel_event))
                    shards += 1

                    if len(pending) >= max_in_flight:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        collect(done)

                while pending:
                    self._check_cancelled(cancel_event)
                    done, pending = wait(pending, timeout=0.05, return_when=FIRST_COMPLETED)
                    collect(done)

                self._check_cancelled(cancel_event)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

        results = merge_top_k(partials, k)
        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        logger.log_search(k, candidates, len(results), shards, duration_ms)
        return results

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            logger.log_operation("search", "cancelled")
            raise SearchCancelled("Search abandoned by caller")
