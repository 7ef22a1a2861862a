"""
Text embeddings built from a pre-trained word-vector source.

A text's embedding is the L2-normalized mean of the word vectors of its
tokens. Word-vector providers are black boxes: the core never trains or
adjusts them.
"""

import hashlib
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import numpy as np

from ..core.config import MAX_TOKENS
from ..core.errors import InvalidDimension, NoEmbeddingAvailable
from ..core.schema import Message
from ..util.logging import logger
from .cache import EmbeddingCache
from .similarity import is_zero, normalize
from .store import VectorStoreAdapter
from .types import QueryKey


class IWordVectorProvider(ABC):
    """Abstract interface for word-vector lookup."""

    @abstractmethod
    def vector_for(self, token: str) -> Optional[np.ndarray]:
        """Return the vector for a single token, or None if the token is unknown."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the word vectors."""
        pass


class InMemoryWordVectors(IWordVectorProvider):
    """Word vectors held in a dict, optionally matched case-insensitively."""

    def __init__(self, vectors: Dict[str, Iterable[float]], lowercase: bool = False):
        self.lowercase = lowercase
        self._vectors = {}
        dimension = None
        for word, values in vectors.items():
            array = np.asarray(values, dtype=np.float64)
            if dimension is None:
                dimension = len(array)
            elif len(array) != dimension:
                raise InvalidDimension(dimension, len(array))
            self._vectors[word.lower() if lowercase else word] = array
        self._dimension = dimension or 0

    def vector_for(self, token: str) -> Optional[np.ndarray]:
        return self._vectors.get(token.lower() if self.lowercase else token)

    def get_dimension(self) -> int:
        return self._dimension

    def __len__(self) -> int:
        return len(self._vectors)


class TextFileWordVectors(InMemoryWordVectors):
    """Word vectors loaded from a GloVe or word2vec text file.

    Each line is ``word v1 v2 ... vn``. A leading word2vec ``count dim``
    header line is recognized and skipped.
    """

    def __init__(self, path: Union[str, Path], lowercase: bool = True):
        self.path = Path(path)
        super().__init__(self._read(self.path), lowercase=lowercase)
        logger.info(f"Loaded {len(self)} word vectors ({self.get_dimension()}d) from {self.path}")

    @staticmethod
    def _read(path: Path) -> Dict[str, np.ndarray]:
        vectors = {}
        with open(path, encoding="utf-8") as handle:
            for line_number, line in enumerate(handle):
                parts = line.rstrip().split(" ")
                if len(parts) < 2:
                    continue
                if line_number == 0 and len(parts) == 2 and all(p.isdigit() for p in parts):
                    continue
                vectors[parts[0]] = np.asarray(parts[1:], dtype=np.float64)
        return vectors


class HashWordVectors(IWordVectorProvider):
    """Deterministic hash-based word vectors for testing and development.

    Every non-empty token gets a reproducible pseudo-random vector seeded from
    its SHA-256 digest, so no model download is required.
    """

    def __init__(self, dimension: int = 300):
        self.dimension = dimension

    def vector_for(self, token: str) -> Optional[np.ndarray]:
        if not token:
            return None
        seed = int.from_bytes(hashlib.sha256(token.encode("utf-8")).digest()[:8], "little")
        return np.random.default_rng(seed).standard_normal(self.dimension)

    def get_dimension(self) -> int:
        return self.dimension


class SentenceTransformerWordVectors(IWordVectorProvider):
    """Word vectors from a sentence-transformers model, one token at a time.

    The model is loaded on first use. Token vectors are memoized since the
    model is deterministic for a session.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None
        self._memo: Dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def vector_for(self, token: str) -> Optional[np.ndarray]:
        if not token:
            return None
        with self._lock:
            vector = self._memo.get(token)
            if vector is None:
                embedding = self.model.encode(token, convert_to_tensor=False)
                vector = np.asarray(embedding, dtype=np.float64)
                self._memo[token] = vector
        return vector

    def get_dimension(self) -> int:
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


def tokenize(text: str, max_tokens: int = MAX_TOKENS) -> List[str]:
    """Whitespace tokens, empty ones dropped, capped at ``max_tokens``."""
    return text.split()[:max_tokens]


class EmbeddingComputer:
    """Turns text into a fixed-length unit vector.

    ``compute_embedding`` is a pure function of the text and the provider.
    ``embed_message`` and ``embed_query`` add the read-through cache, and
    ``embed_message`` also persists what it computes.
    """

    def __init__(self, provider: IWordVectorProvider, cache: EmbeddingCache,
                 store: Optional[VectorStoreAdapter] = None, max_tokens: int = MAX_TOKENS):
        self.provider = provider
        self.cache = cache
        self.store = store
        self.max_tokens = max_tokens

    @property
    def dimension(self) -> int:
        return self.provider.get_dimension()

    def compute_embedding(self, text: str) -> Optional[np.ndarray]:
        """Mean of the known token vectors, L2-normalized.

        Returns None when no token has a known vector. A mean with norm
        exactly zero is returned as the all-zero vector.
        """
        vectors = []
        for token in tokenize(text, self.max_tokens):
            vector = self.provider.vector_for(token)
            if vector is None:
                continue
            vector = np.asarray(vector, dtype=np.float64)
            if vectors and len(vector) != len(vectors[0]):
                raise InvalidDimension(len(vectors[0]), len(vector))
            vectors.append(vector)

        if not vectors:
            return None

        mean = np.mean(np.vstack(vectors), axis=0)
        return normalize(mean)

    def embed_query(self, text: str) -> Optional[np.ndarray]:
        """Embedding for a search query, cached but never persisted."""
        key = QueryKey(text)
        vector = self.cache.get(key)
        if vector is None:
            vector = self.compute_embedding(text)
            if vector is None:
                return None
            self.cache.put(key, vector)
        return None if is_zero(vector) else vector

    def require_query_embedding(self, text: str) -> np.ndarray:
        """Like ``embed_query``, but raises ``NoEmbeddingAvailable`` instead of returning None."""
        vector = self.embed_query(text)
        if vector is None:
            raise NoEmbeddingAvailable(f"No known tokens in query: {text[:50]!r}")
        return vector

    def embed_message(self, message: Message) -> Optional[np.ndarray]:
        """Embedding for a stored message: cache, then store, then compute and persist.

        Returns None when the message has no usable embedding. Store failures
        propagate as ``StoreIOError``.
        """
        vector = self.cache.get(message.id)
        if vector is None and self.store is not None:
            vector = self.store.load(message.id)
            if vector is not None:
                self.cache.put(message.id, vector)
        if vector is None:
            vector = self.compute_embedding(message.content)
            self.persist(message.id, vector)
            if vector is None:
                return None
        return None if is_zero(vector) else vector

    def persist(self, message_id: uuid.UUID, vector: Optional[np.ndarray], only_if_missing: bool = False) -> bool:
        """Write a computed vector to the store and the cache.

        An absent embedding is stored as the all-zero vector so the message
        is not picked up again by a backfill. Returns True if the store was
        written.
        """
        if vector is None:
            vector = np.zeros(self.dimension)

        written = True
        if self.store is not None:
            if only_if_missing:
                written = self.store.save_if_missing(message_id, vector)
            else:
                self.store.save(message_id, vector)

        if written:
            self.cache.put(message_id, vector)
        return written

    def invalidate(self, message_id: uuid.UUID) -> None:
        self.cache.invalidate(message_id)
