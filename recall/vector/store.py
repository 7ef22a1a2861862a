"""
Vector store adapter - persistence of (message, vector) pairs on top of the
canonical SQLite message store. The adapter owns blob encoding; durability
and write serialization are the store's job.
"""

import uuid
from datetime import datetime
from typing import Iterator, List, Optional, Tuple, Union

import numpy as np

from ..core.dao import MessageDAO
from ..core.errors import CorruptVectorData
from ..core.schema import Message
from ..util.logging import logger
from .codec import decode_vector, encode_vector


class VectorStoreAdapter:
    """Saves, loads and pages message vectors.

    Store failures surface as ``StoreIOError`` from every method. Corrupt blobs
    are logged and treated as if the message had no vector.
    """

    def __init__(self, dao: MessageDAO):
        self.dao = dao

    def save(self, message_id: uuid.UUID, vector: np.ndarray) -> None:
        """Store the vector for a message, replacing any previous one."""
        blob = encode_vector(vector)
        self.dao.upsert_vector(message_id, blob, len(vector))
        logger.log_vector_operation("saved", message_id, {"dimension": len(vector)})

    def save_if_missing(self, message_id: uuid.UUID, vector: np.ndarray) -> bool:
        """Store the vector only if the message exists and has none yet. Returns True if written."""
        blob = encode_vector(vector)
        written = self.dao.insert_vector_if_absent(message_id, blob, len(vector))
        if written:
            logger.log_vector_operation("saved", message_id, {"dimension": len(vector), "mode": "if_missing"})
        return written

    def load(self, message_id: uuid.UUID) -> Optional[np.ndarray]:
        """Return the stored vector, or None if missing or undecodable."""
        blob = self.dao.get_vector_blob(message_id)
        if blob is None:
            return None
        return self._decode(message_id, blob)

    def all_with_vectors(self, limit: int, offset: int = 0) -> List[Tuple[Message, np.ndarray]]:
        """One page of messages that have a decodable stored vector."""
        pairs = []
        for message, blob in self.dao.page_messages_with_vectors(limit, offset):
            vector = self._decode(message.id, blob)
            if vector is not None:
                pairs.append((message, vector))
        return pairs

    def iter_pages(self, batch_size: int) -> Iterator[List[Tuple[Message, np.ndarray]]]:
        """Walk every stored (message, vector) pair one page at a time.

        Paging advances by rows read, so skipped corrupt rows do not end the
        scan early. Pages may be empty if every row in them was corrupt.
        """
        offset = 0
        while True:
            rows = self.dao.page_messages_with_vectors(batch_size, offset)
            if not rows:
                return
            offset += len(rows)
            page = []
            for message, blob in rows:
                vector = self._decode(message.id, blob)
                if vector is not None:
                    page.append((message, vector))
            yield page
            if len(rows) < batch_size:
                return

    def all_missing_vectors(self, limit: int, after: Optional[Message] = None) -> List[Message]:
        """Messages lacking a vector, oldest first, strictly after ``after`` if given."""
        return self.dao.messages_missing_vectors(limit, after)

    def delete_vector(self, message_id: uuid.UUID) -> bool:
        deleted = self.dao.delete_vector(message_id)
        if deleted:
            logger.log_vector_operation("deleted", message_id)
        return deleted

    def delete_vectors_older_than(self, timestamp: Union[datetime, float]) -> int:
        """Delete vectors computed before ``timestamp``. Returns the number removed."""
        if isinstance(timestamp, datetime):
            timestamp = timestamp.timestamp()
        removed = self.dao.delete_vectors_older_than(timestamp)
        logger.log_operation("vector.purged", "success", {"before": timestamp, "removed": removed})
        return removed

    def purge_all(self) -> int:
        removed = self.dao.delete_all_vectors()
        logger.log_operation("vector.purged", "success", {"before": "all", "removed": removed})
        return removed

    def count_vectors(self) -> int:
        return self.dao.count_vectors()

    def _decode(self, message_id: uuid.UUID, blob: bytes) -> Optional[np.ndarray]:
        try:
            return decode_vector(blob)
        except CorruptVectorData as e:
            logger.log_vector_operation("decode", message_id, {"error": str(e)}, status="degraded")
            return None
