"""
Embedding computation: tokenization, mean pooling, normalization and the
read-through cache paths.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import MagicMock

import numpy as np
import pytest

from recall.core.errors import InvalidDimension, NoEmbeddingAvailable
from recall.core.schema import Message
from recall.vector.cache import EmbeddingCache
from recall.vector.embeddings import (
    EmbeddingComputer,
    HashWordVectors,
    InMemoryWordVectors,
    IWordVectorProvider,
    SentenceTransformerWordVectors,
    TextFileWordVectors,
    tokenize,
)
from recall.vector.types import QueryKey


@pytest.fixture
def computer(scenario_provider):
    return EmbeddingComputer(scenario_provider, EmbeddingCache(10))


def make_message(content: str) -> Message:
    return Message(id=uuid.uuid4(), content=content, is_user=True, created_at=datetime.now(timezone.utc))


def test_provider_interface():
    """Test that the providers implement the interface correctly."""
    assert isinstance(HashWordVectors(dimension=16), IWordVectorProvider)
    assert isinstance(InMemoryWordVectors({"a": [1.0]}), IWordVectorProvider)
    assert HashWordVectors(dimension=16).get_dimension() == 16


def test_tokenize_drops_empty_tokens_and_caps():
    assert tokenize("  hello \t world\n ") == ["hello", "world"]
    assert len(tokenize("x " * 250)) == 100
    assert tokenize("a b c", max_tokens=2) == ["a", "b"]


def test_empty_text_is_absent(computer):
    """Empty and whitespace-only text yield no embedding."""
    assert computer.compute_embedding("") is None
    assert computer.compute_embedding("   \n\t ") is None


def test_unknown_tokens_only_is_absent(computer):
    assert computer.compute_embedding("zebra quokka") is None


def test_unknown_tokens_are_skipped(computer):
    """Unknown tokens do not contribute to the mean."""
    np.testing.assert_array_equal(
        computer.compute_embedding("hello zebra"),
        computer.compute_embedding("hello"),
    )


def test_mean_then_normalize(computer):
    vector = computer.compute_embedding("hello world")
    expected = np.array([1.0, 1.0]) / np.sqrt(2.0)
    np.testing.assert_allclose(vector, expected, atol=1e-12)


def test_output_is_unit_norm():
    """Embeddings have norm 1 within 1e-9 whenever some token is known."""
    computer = EmbeddingComputer(HashWordVectors(dimension=64), EmbeddingCache(10))
    for text in ["a", "hello world", "the quick brown fox jumps over the lazy dog", "x " * 300]:
        vector = computer.compute_embedding(text)
        assert abs(np.linalg.norm(vector) - 1.0) < 1e-9


def test_zero_mean_is_returned_unnormalized():
    """Opposite tokens cancel out to the all-zero vector instead of dividing by zero."""
    provider = InMemoryWordVectors({"up": [1.0, 0.0], "down": [-1.0, 0.0]})
    computer = EmbeddingComputer(provider, EmbeddingCache(10))

    vector = computer.compute_embedding("up down")

    assert vector is not None
    np.testing.assert_array_equal(vector, np.zeros(2))
    assert not np.any(np.isnan(vector))


def test_tokens_beyond_limit_are_ignored():
    provider = InMemoryWordVectors({"a": [1.0, 0.0], "b": [0.0, 1.0]})
    computer = EmbeddingComputer(provider, EmbeddingCache(10))

    vector = computer.compute_embedding("a " * 100 + "b")

    np.testing.assert_array_equal(vector, np.array([1.0, 0.0]))


def test_deterministic_embedding(computer):
    """The same input always produces bit-identical output."""
    first = computer.compute_embedding("hello there world")
    second = computer.compute_embedding("hello there world")
    assert first.tobytes() == second.tobytes()


def test_mixed_provider_dimensions_fail_loudly():
    provider = MagicMock()
    provider.vector_for.side_effect = lambda token: np.ones(2) if token == "a" else np.ones(3)
    computer = EmbeddingComputer(provider, EmbeddingCache(10))

    with pytest.raises(InvalidDimension):
        computer.compute_embedding("a b")


def test_in_memory_vectors_reject_mixed_dimensions():
    with pytest.raises(InvalidDimension):
        InMemoryWordVectors({"a": [1.0, 0.0], "b": [1.0]})


def test_in_memory_vectors_lowercase_lookup():
    provider = InMemoryWordVectors({"Hello": [1.0, 0.0]}, lowercase=True)
    np.testing.assert_array_equal(provider.vector_for("HELLO"), [1.0, 0.0])


class TestHashWordVectors:
    """Deterministic hash-based word vectors."""

    def test_deterministic_across_instances(self):
        first = HashWordVectors(dimension=32).vector_for("hello")
        second = HashWordVectors(dimension=32).vector_for("hello")
        assert first.tobytes() == second.tobytes()

    def test_different_tokens_differ(self):
        provider = HashWordVectors(dimension=32)
        assert not np.array_equal(provider.vector_for("hello"), provider.vector_for("goodbye"))

    def test_dimension(self):
        assert len(HashWordVectors(dimension=7).vector_for("x")) == 7

    def test_empty_token_unknown(self):
        assert HashWordVectors().vector_for("") is None


def test_text_file_word_vectors(tmp_path):
    """word2vec text files with a header line load and match case-insensitively."""
    path = tmp_path / "vectors.txt"
    path.write_text("2 3\nhello 1.0 0.0 0.0\nworld 0 1 0.5\n", encoding="utf-8")

    provider = TextFileWordVectors(path)

    assert provider.get_dimension() == 3
    assert len(provider) == 2
    np.testing.assert_array_equal(provider.vector_for("Hello"), [1.0, 0.0, 0.0])
    np.testing.assert_array_equal(provider.vector_for("world"), [0.0, 1.0, 0.5])
    assert provider.vector_for("moon") is None


def test_sentence_transformer_word_vectors_memoize_tokens():
    provider = SentenceTransformerWordVectors("test-model")
    model = MagicMock()
    model.encode.return_value = np.array([0.5, 0.25, 0.0], dtype=np.float32)
    model.get_sentence_embedding_dimension.return_value = 3
    provider._model = model

    first = provider.vector_for("hello")
    second = provider.vector_for("hello")

    assert first.dtype == np.float64
    np.testing.assert_array_equal(first, [0.5, 0.25, 0.0])
    assert second is first
    model.encode.assert_called_once_with("hello", convert_to_tensor=False)
    assert provider.get_dimension() == 3
    assert provider.vector_for("") is None


class TestCachedPaths:
    """Query and message embedding through the cache and store."""

    def test_embed_query_is_cached_by_query_key(self, scenario_provider):
        cache = EmbeddingCache(10)
        computer = EmbeddingComputer(scenario_provider, cache)

        vector = computer.embed_query("hello")

        assert QueryKey("hello") in cache
        np.testing.assert_array_equal(cache.get(QueryKey("hello")), vector)

    def test_embed_query_absent_is_not_cached(self, scenario_provider):
        cache = EmbeddingCache(10)
        computer = EmbeddingComputer(scenario_provider, cache)

        assert computer.embed_query("zebra") is None
        assert len(cache) == 0

    def test_embed_message_reads_through_store(self, scenario_provider):
        store = MagicMock()
        store.load.return_value = np.array([0.0, 1.0])
        provider = MagicMock(wraps=scenario_provider)
        computer = EmbeddingComputer(provider, EmbeddingCache(10), store)
        message = make_message("hello")

        vector = computer.embed_message(message)

        np.testing.assert_array_equal(vector, [0.0, 1.0])
        provider.vector_for.assert_not_called()
        store.save.assert_not_called()
        assert message.id in computer.cache

    def test_embed_message_computes_and_persists_on_miss(self, scenario_provider):
        store = MagicMock()
        store.load.return_value = None
        computer = EmbeddingComputer(scenario_provider, EmbeddingCache(10), store)
        message = make_message("hello")

        vector = computer.embed_message(message)

        np.testing.assert_array_equal(vector, [1.0, 0.0])
        store.save.assert_called_once()
        saved_id, saved_vector = store.save.call_args[0]
        assert saved_id == message.id
        np.testing.assert_array_equal(saved_vector, [1.0, 0.0])

    def test_embed_message_without_tokens_persists_zero_sentinel(self, scenario_provider):
        store = MagicMock()
        store.load.return_value = None
        computer = EmbeddingComputer(scenario_provider, EmbeddingCache(10), store)
        message = make_message("zebra")

        assert computer.embed_message(message) is None

        saved_vector = store.save.call_args[0][1]
        np.testing.assert_array_equal(saved_vector, np.zeros(2))

    def test_persist_if_missing_skips_cache_when_not_written(self, scenario_provider):
        store = MagicMock()
        store.save_if_missing.return_value = False
        computer = EmbeddingComputer(scenario_provider, EmbeddingCache(10), store)
        message_id = uuid.uuid4()

        written = computer.persist(message_id, np.array([1.0, 0.0]), only_if_missing=True)

        assert written is False
        assert message_id not in computer.cache

    def test_invalidate(self, scenario_provider):
        computer = EmbeddingComputer(scenario_provider, EmbeddingCache(10))
        message_id = uuid.uuid4()
        computer.persist(message_id, np.array([1.0, 0.0]))

        computer.invalidate(message_id)

        assert message_id not in computer.cache


def test_require_query_embedding_raises_when_absent(computer):
    with pytest.raises(NoEmbeddingAvailable):
        computer.require_query_embedding("zebra")
    np.testing.assert_array_equal(computer.require_query_embedding("hello"), [1.0, 0.0])
