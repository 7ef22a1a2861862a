"""
HTTP surface for the retrieval service.

Endpoints are plain ``def`` functions, so FastAPI runs them on its worker
threadpool and store I/O never blocks the event loop.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from .schemas import (
    BackfillRequest,
    BackfillResponse,
    HealthResponse,
    MessageCreateRequest,
    MessageCreateResponse,
    MessageListResponse,
    MessageResponse,
    MessageUpdateRequest,
    PurgeResponse,
    SearchHitResponse,
    SearchRequest,
    SearchResponse,
    VectorSearchRequest,
)
from ..core.config import VERSION
from ..core.errors import InvalidDimension, MessageNotFound, StoreIOError
from ..core.schema import Message
from ..core.service import RetrievalService, build_service
from ..util.logging import logger


def get_service(request: Request) -> RetrievalService:
    return request.app.state.service


def _message_response(message: Message) -> MessageResponse:
    return MessageResponse(
        message_id=message.id,
        content=message.content,
        is_user=message.is_user,
        created_at=message.created_at,
    )


def _search_response(hits) -> SearchResponse:
    results = [
        SearchHitResponse(
            message_id=hit.message_id,
            content=hit.content,
            score=hit.score,
            is_user=hit.is_user,
            created_at=hit.created_at,
        )
        for hit in hits
    ]
    return SearchResponse(results=results, count=len(results))


def create_app(service: Optional[RetrievalService] = None) -> FastAPI:
    """Build the FastAPI application around a service instance.

    Without a service, one is built from the environment at startup and
    closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "service", None) is None
        if owned:
            app.state.service = build_service()
        yield
        if owned:
            app.state.service.close()
            app.state.service = None

    app = FastAPI(
        title="Chat Recall API",
        version=VERSION,
        description="On-device semantic retrieval over chat messages",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.service = service

    @app.exception_handler(StoreIOError)
    async def store_error_handler(request: Request, exc: StoreIOError):
        logger.log_operation("api.store_error", "error", {"path": request.url.path, "error": str(exc)})
        return JSONResponse(status_code=503, content={"detail": f"Store unavailable: {exc}"})

    @app.exception_handler(InvalidDimension)
    async def dimension_error_handler(request: Request, exc: InvalidDimension):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(MessageNotFound)
    async def not_found_handler(request: Request, exc: MessageNotFound):
        return JSONResponse(status_code=404, content={"detail": f"Message not found: {exc}"})

    @app.get("/health", response_model=HealthResponse)
    def health_endpoint(svc: RetrievalService = Depends(get_service)):
        """Check system health."""
        return HealthResponse(version=VERSION, **svc.health())

    @app.post("/messages", response_model=MessageCreateResponse, status_code=201)
    def create_message(req: MessageCreateRequest, svc: RetrievalService = Depends(get_service)):
        message_id = svc.save(req.content, req.is_user)
        return MessageCreateResponse(message_id=message_id)

    # Defined before /messages/{message_id} to avoid path parameter conflict
    @app.get("/messages/recent", response_model=MessageListResponse)
    def recent_messages(
        limit: int = Query(20, description="Maximum number of messages to return", ge=1, le=200),
        svc: RetrievalService = Depends(get_service),
    ):
        return MessageListResponse(messages=[_message_response(m) for m in svc.recent_messages(limit)])

    @app.get("/messages/{message_id}", response_model=MessageResponse)
    def get_message(message_id: uuid.UUID, svc: RetrievalService = Depends(get_service)):
        return _message_response(svc.get_message(message_id))

    @app.get("/messages/{message_id}/similar", response_model=SearchResponse)
    def similar_messages(
        message_id: uuid.UUID,
        k: int = Query(5, description="Maximum number of similar messages", ge=1, le=100),
        svc: RetrievalService = Depends(get_service),
    ):
        return _search_response(svc.similar_messages(message_id, k))

    @app.put("/messages/{message_id}", response_model=MessageResponse)
    def replace_message(message_id: uuid.UUID, req: MessageUpdateRequest,
                        svc: RetrievalService = Depends(get_service)):
        return _message_response(svc.replace_content(message_id, req.content))

    @app.delete("/messages/{message_id}", status_code=204)
    def delete_message(message_id: uuid.UUID, svc: RetrievalService = Depends(get_service)):
        svc.delete_message(message_id)

    @app.post("/search", response_model=SearchResponse)
    def search(req: SearchRequest, svc: RetrievalService = Depends(get_service)):
        if req.fallback_to_recent:
            return _search_response(svc.search_or_recent(req.query, req.k))
        return _search_response(svc.search(req.query, req.k))

    @app.post("/search/vector", response_model=SearchResponse)
    def search_by_vector(req: VectorSearchRequest, svc: RetrievalService = Depends(get_service)):
        return _search_response(svc.search_by_vector(req.vector, req.k))

    @app.post("/backfill", response_model=BackfillResponse, status_code=202)
    def trigger_backfill(req: Optional[BackfillRequest] = None, svc: RetrievalService = Depends(get_service)):
        batch_size = req.batch_size if req else None
        svc.trigger_backfill(batch_size)
        return BackfillResponse(queued=True, batch_size=batch_size)

    @app.delete("/vectors", response_model=PurgeResponse)
    def purge_vectors(
        before: Optional[datetime] = Query(None, description="Delete vectors computed before this time; all if omitted"),
        svc: RetrievalService = Depends(get_service),
    ):
        return PurgeResponse(removed=svc.purge_vectors(before))

    return app


# Service is built from the environment at startup
app = create_app()
