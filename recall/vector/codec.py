"""
Vector blob encoding for the message store.

Vectors are stored as raw little-endian IEEE-754 float64 values, so
``decode(encode(v))`` reproduces ``v`` bit for bit with no precision loss.
"""

import numpy as np

from ..core.errors import CorruptVectorData

BLOB_DTYPE = np.dtype("<f8")


def encode_vector(vector) -> bytes:
    """Encode a 1-D vector as float64 bytes."""
    array = np.asarray(vector, dtype=np.float64)
    if array.ndim != 1:
        raise ValueError(f"Expected a 1-D vector, got shape {array.shape}")
    return array.astype(BLOB_DTYPE, copy=False).tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """Decode a stored blob into a float64 vector.

    Raises:
        CorruptVectorData: empty blob, truncated value, or non-finite values
    """
    if blob is None or len(blob) == 0:
        raise CorruptVectorData("Empty vector blob")

    if len(blob) % BLOB_DTYPE.itemsize != 0:
        raise CorruptVectorData(f"Vector blob length {len(blob)} is not a multiple of {BLOB_DTYPE.itemsize}")

    vector = np.frombuffer(blob, dtype=BLOB_DTYPE).astype(np.float64)
    if not np.all(np.isfinite(vector)):
        raise CorruptVectorData("Vector blob contains non-finite values")

    return vector
