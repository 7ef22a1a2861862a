"""
Request and response models for the retrieval HTTP API.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class MessageCreateRequest(BaseModel):
    content: str
    is_user: bool = True

    @field_validator('content')
    @classmethod
    def content_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('content cannot be empty')
        return v


class MessageUpdateRequest(BaseModel):
    content: str

    @field_validator('content')
    @classmethod
    def content_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('content cannot be empty')
        return v


class MessageCreateResponse(BaseModel):
    message_id: uuid.UUID


class MessageResponse(BaseModel):
    message_id: uuid.UUID
    content: str
    is_user: bool
    created_at: datetime


class MessageListResponse(BaseModel):
    messages: List[MessageResponse]


class SearchRequest(BaseModel):
    query: str
    k: int = Field(5, le=100)
    fallback_to_recent: bool = False


class VectorSearchRequest(BaseModel):
    vector: List[float]
    k: int = Field(5, le=100)

    @field_validator('vector')
    @classmethod
    def vector_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('vector cannot be empty')
        return v


class SearchHitResponse(BaseModel):
    message_id: uuid.UUID
    content: str
    score: float
    is_user: bool
    created_at: datetime


class SearchResponse(BaseModel):
    results: List[SearchHitResponse]
    count: int


class BackfillRequest(BaseModel):
    batch_size: Optional[int] = Field(None, ge=1, le=10000)


class BackfillResponse(BaseModel):
    queued: bool
    batch_size: Optional[int] = None


class PurgeResponse(BaseModel):
    removed: int


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    dimension: int
    message_count: int = 0
    vector_count: int = 0
    cache: Dict[str, Any]
    last_backfill: Optional[Dict[str, Any]] = None
