"""
Vector overlay - non-canonical, advisory layer over the SQLite message store.
"""

# Package initialization for vector module
from .cache import EmbeddingCache
from .codec import encode_vector, decode_vector
from .embeddings import (
    IWordVectorProvider,
    InMemoryWordVectors,
    TextFileWordVectors,
    HashWordVectors,
    SentenceTransformerWordVectors,
    EmbeddingComputer,
)
from .search import SimilaritySearchEngine
from .store import VectorStoreAdapter
from .types import QueryKey, ScoredResult

__all__ = [
    'EmbeddingCache',
    'encode_vector',
    'decode_vector',
    'IWordVectorProvider',
    'InMemoryWordVectors',
    'TextFileWordVectors',
    'HashWordVectors',
    'SentenceTransformerWordVectors',
    'EmbeddingComputer',
    'SimilaritySearchEngine',
    'VectorStoreAdapter',
    'QueryKey',
    'ScoredResult'
]
