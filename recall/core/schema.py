"""
Record types shared by the message store and the retrieval core.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class Message:
    id: uuid.UUID
    content: str
    is_user: bool
    created_at: datetime

    @property
    def timestamp(self) -> float:
        """Creation time as epoch seconds, the stored sort key."""
        return self.created_at.timestamp()

    @classmethod
    def from_row(cls, row) -> "Message":
        message_id, content, is_user, created_at = row
        return cls(
            id=uuid.UUID(message_id),
            content=content,
            is_user=bool(is_user),
            created_at=datetime.fromtimestamp(created_at, tz=timezone.utc),
        )
