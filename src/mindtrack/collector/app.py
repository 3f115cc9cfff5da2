"""
Module: app.py
Description: FastAPI application for the reference collector.

Routes:
- POST /api/events   batched events {"batch": [...]}
- POST /api/track    legacy single event
- POST /api/results  quiz result
- GET  /api/events   stored events, newest first
- GET  /api/results  stored results, newest first
- GET  /health

The batch and results routes can be left out to emulate an older
collector, which makes the agent fall back to /api/track.
"""

from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi import status as status_codes

from mindtrack.collector.schemas import (
    BatchRequest,
    EventListResponse,
    IngestResponse,
    ResultListResponse,
    ResultRequest,
    TrackRequest,
)
from mindtrack.collector.store import CollectorStore
from mindtrack.utils.logger import get_logger

logger = get_logger(__name__)

MAX_PAGE_SIZE = 1000

batch_router = APIRouter(prefix="/api", tags=["events"])
legacy_router = APIRouter(prefix="/api", tags=["events"])
results_router = APIRouter(prefix="/api", tags=["results"])


def get_store(request: Request) -> CollectorStore:
    """Dependency to get the application's store."""
    return request.app.state.store


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _validate_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise HTTPException(
            status_code=status_codes.HTTP_400_BAD_REQUEST,
            detail=f"limit must be between 1 and {MAX_PAGE_SIZE}"
        )
    if offset < 0:
        raise HTTPException(
            status_code=status_codes.HTTP_400_BAD_REQUEST,
            detail="offset must be non-negative"
        )


@batch_router.post("/events", response_model=IngestResponse)
async def ingest_batch(
    body: BatchRequest,
    request: Request,
    store: CollectorStore = Depends(get_store),
) -> IngestResponse:
    """Store every record of a batch."""
    ip = _client_ip(request)
    for item in body.batch:
        store.insert_event(
            item.event,
            item.model_dump(),
            ts=item.ts,
            session_id=item.sessionId,
            ip=ip,
            page=item.page,
        )

    logger.info("Batch ingested", count=len(body.batch))
    return IngestResponse(count=len(body.batch))


@legacy_router.post("/track", response_model=IngestResponse)
async def ingest_single(
    body: TrackRequest,
    request: Request,
    store: CollectorStore = Depends(get_store),
) -> IngestResponse:
    """Store one legacy-shaped event."""
    properties = body.properties
    store.insert_event(
        body.event,
        {"event": body.event, "properties": properties},
        ts=properties.get("timestamp"),
        session_id=properties.get("sessionId"),
        ip=_client_ip(request),
        page=properties.get("page"),
    )

    logger.info("Event ingested", event_type=body.event)
    return IngestResponse(count=1)


@legacy_router.get("/events", response_model=EventListResponse)
async def list_events(
    type: str = "all",
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    store: CollectorStore = Depends(get_store),
) -> EventListResponse:
    """List stored events, newest first."""
    _validate_page(limit, offset)
    return EventListResponse(
        items=store.query_events(type, start, end, limit, offset),
        total=store.count_events(type, start, end),
    )


@results_router.post("/results", response_model=IngestResponse)
async def save_result(
    body: ResultRequest,
    request: Request,
    store: CollectorStore = Depends(get_store),
) -> IngestResponse:
    """Store a quiz result."""
    store.insert_result(
        body.result_name,
        body.scores,
        session_id=request.headers.get("x-session-id"),
    )

    logger.info("Result stored", result_name=body.result_name)
    return IngestResponse(count=1)


@results_router.get("/results", response_model=ResultListResponse)
async def list_results(
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    store: CollectorStore = Depends(get_store),
) -> ResultListResponse:
    """List stored results, newest first."""
    _validate_page(limit, offset)
    return ResultListResponse(
        items=store.query_results(start, end, limit, offset),
        total=store.count_results(start, end),
    )


def create_app(
    store: Optional[CollectorStore] = None,
    enable_batch: bool = True,
    enable_results: bool = True,
) -> FastAPI:
    """
    Build the collector application.

    Args:
        store: Backing store, a fresh in-memory store by default
        enable_batch: Serve POST /api/events
        enable_results: Serve the results routes

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="mindtrack collector",
        description="Reference collector for the mindtrack agent",
        version="0.3.0",
    )
    app.state.store = store or CollectorStore()

    if enable_batch:
        app.include_router(batch_router)
    app.include_router(legacy_router)
    if enable_results:
        app.include_router(results_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "ok", "message": "Collector is healthy"}

    return app


app = create_app()
