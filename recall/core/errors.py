"""
Error taxonomy for the retrieval core.

Only the store boundary and dimension mismatches are hard errors. Missing or
degenerate vectors are normal outcomes and are reported as ``None`` results.
"""


class RecallError(Exception):
    """Base class for retrieval core errors."""
    pass


class NoEmbeddingAvailable(RecallError):
    """Text yielded zero usable tokens.

    The embedding path returns ``None`` instead of raising this; it exists for
    callers that want to turn the absent result into an exception.
    """
    pass


class StoreIOError(RecallError):
    """The underlying structured store failed. The operation did not happen."""
    pass


class CorruptVectorData(RecallError, ValueError):
    """A stored vector blob could not be decoded."""
    pass


class InvalidDimension(RecallError, ValueError):
    """Two vectors of different length were combined or compared."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension {actual} does not match expected dimension {expected}")


class SearchCancelled(RecallError):
    """A search was abandoned by its caller before scoring completed."""
    pass


class MessageNotFound(RecallError, LookupError):
    """No message with the given identifier exists."""
    pass
