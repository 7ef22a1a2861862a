"""
Message store over SQLite, the canonical record for messages and their
vector blobs. Vector blobs are opaque bytes here; encoding lives in
``recall.vector.codec``.
"""

import sqlite3
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .db import get_db, init_db
from .errors import StoreIOError
from .schema import Message
from ..util.logging import logger

_MESSAGE_COLUMNS = "m.id, m.content, m.is_user, m.created_at"


class MessageDAO:
    """Data access for messages and the vector associated with each one.

    Every method opens its own connection, so one instance can be shared by
    interactive callers and the backfill worker. Any ``sqlite3.Error`` is
    re-raised as ``StoreIOError``.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        with self._store_call("init"):
            init_db(db_path)

    @contextmanager
    def _store_call(self, operation: str):
        try:
            yield
        except sqlite3.Error as e:
            logger.error(f"Store operation '{operation}' failed on {self.db_path}: {e}")
            raise StoreIOError(f"{operation} failed: {e}") from e

    # Messages

    def create_message(self, content: str, is_user: bool, created_at: Optional[datetime] = None) -> Message:
        """Insert a new message and return it."""
        message = Message(
            id=uuid.uuid4(),
            content=content,
            is_user=is_user,
            created_at=created_at or datetime.now(timezone.utc),
        )
        with self._store_call("create_message"), get_db(self.db_path) as conn:
            with conn:
                conn.execute(
                    "INSERT INTO messages (id, content, is_user, created_at) VALUES (?, ?, ?, ?)",
                    (str(message.id), message.content, message.is_user, message.timestamp)
                )
        logger.log_message_operation("created", message.id, content)
        return message

    def get_message(self, message_id: uuid.UUID) -> Optional[Message]:
        with self._store_call("get_message"), get_db(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages m WHERE m.id = ?",
                (str(message_id),)
            ).fetchone()
        return Message.from_row(row) if row else None

    def list_recent(self, limit: int) -> List[Message]:
        """Most recent messages first."""
        with self._store_call("list_recent"), get_db(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages m ORDER BY m.created_at DESC, m.id DESC LIMIT ?",
                (limit,)
            ).fetchall()
        return [Message.from_row(row) for row in rows]

    def replace_content(self, message_id: uuid.UUID, content: str) -> Optional[Message]:
        """Replace a message's content and drop its vector in the same transaction.

        Returns the updated message, or None when the message does not exist.
        """
        with self._store_call("replace_content"), get_db(self.db_path) as conn:
            with conn:
                cursor = conn.execute(
                    "UPDATE messages SET content = ? WHERE id = ?",
                    (content, str(message_id))
                )
                if cursor.rowcount == 0:
                    return None
                conn.execute("DELETE FROM message_vectors WHERE message_id = ?", (str(message_id),))
        logger.log_message_operation("content_replaced", message_id, content)
        return self.get_message(message_id)

    def delete_message(self, message_id: uuid.UUID) -> bool:
        """Delete a message; its vector goes with it."""
        with self._store_call("delete_message"), get_db(self.db_path) as conn:
            with conn:
                cursor = conn.execute("DELETE FROM messages WHERE id = ?", (str(message_id),))
                deleted = cursor.rowcount > 0
        if deleted:
            logger.log_message_operation("deleted", message_id)
        return deleted

    def count_messages(self) -> int:
        with self._store_call("count_messages"), get_db(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]

    # Vectors

    def upsert_vector(self, message_id: uuid.UUID, blob: bytes, dimension: int):
        """Store a vector blob, replacing any existing one for the message."""
        with self._store_call("upsert_vector"), get_db(self.db_path) as conn:
            with conn:
                conn.execute(
                    '''
                    INSERT INTO message_vectors (message_id, vector, dimension, created_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(message_id) DO UPDATE SET
                        vector = excluded.vector,
                        dimension = excluded.dimension,
                        created_at = excluded.created_at
                    ''',
                    (str(message_id), blob, dimension, time.time())
                )

    def insert_vector_if_absent(self, message_id: uuid.UUID, blob: bytes, dimension: int) -> bool:
        """Store a vector blob only if the message still exists and has none. Returns True if written."""
        with self._store_call("insert_vector_if_absent"), get_db(self.db_path) as conn:
            with conn:
                # A message deleted since it was listed is skipped, not a constraint failure
                cursor = conn.execute(
                    '''
                    INSERT INTO message_vectors (message_id, vector, dimension, created_at)
                    SELECT ?, ?, ?, ?
                    WHERE EXISTS (SELECT 1 FROM messages WHERE id = ?)
                    ON CONFLICT(message_id) DO NOTHING
                    ''',
                    (str(message_id), blob, dimension, time.time(), str(message_id))
                )
                return cursor.rowcount > 0

    def get_vector_blob(self, message_id: uuid.UUID) -> Optional[bytes]:
        with self._store_call("get_vector_blob"), get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT vector FROM message_vectors WHERE message_id = ?",
                (str(message_id),)
            ).fetchone()
        return row[0] if row else None

    def page_messages_with_vectors(self, limit: int, offset: int) -> List[Tuple[Message, bytes]]:
        """One page of (message, vector blob) pairs in creation order."""
        with self._store_call("page_messages_with_vectors"), get_db(self.db_path) as conn:
            rows = conn.execute(
                f'''
                SELECT {_MESSAGE_COLUMNS}, v.vector
                FROM messages m JOIN message_vectors v ON v.message_id = m.id
                ORDER BY m.created_at, m.id
                LIMIT ? OFFSET ?
                ''',
                (limit, offset)
            ).fetchall()
        return [(Message.from_row(row[:4]), row[4]) for row in rows]

    def messages_missing_vectors(self, limit: int, after: Optional[Message] = None) -> List[Message]:
        """Messages without a vector in creation order, optionally strictly after ``after``."""
        query = f'''
            SELECT {_MESSAGE_COLUMNS}
            FROM messages m LEFT JOIN message_vectors v ON v.message_id = m.id
            WHERE v.message_id IS NULL
        '''
        params: list = []
        if after is not None:
            query += " AND (m.created_at > ? OR (m.created_at = ? AND m.id > ?))"
            params.extend([after.timestamp, after.timestamp, str(after.id)])
        query += " ORDER BY m.created_at, m.id LIMIT ?"
        params.append(limit)

        with self._store_call("messages_missing_vectors"), get_db(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [Message.from_row(row) for row in rows]

    def delete_vector(self, message_id: uuid.UUID) -> bool:
        with self._store_call("delete_vector"), get_db(self.db_path) as conn:
            with conn:
                cursor = conn.execute("DELETE FROM message_vectors WHERE message_id = ?", (str(message_id),))
                return cursor.rowcount > 0

    def delete_vectors_older_than(self, timestamp: float) -> int:
        """Delete vectors computed before ``timestamp`` (epoch seconds)."""
        with self._store_call("delete_vectors_older_than"), get_db(self.db_path) as conn:
            with conn:
                cursor = conn.execute("DELETE FROM message_vectors WHERE created_at < ?", (timestamp,))
                return cursor.rowcount

    def delete_all_vectors(self) -> int:
        with self._store_call("delete_all_vectors"), get_db(self.db_path) as conn:
            with conn:
                cursor = conn.execute("DELETE FROM message_vectors")
                return cursor.rowcount

    def count_vectors(self) -> int:
        with self._store_call("count_vectors"), get_db(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM message_vectors").fetchone()[0]
