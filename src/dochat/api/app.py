"""FastAPI application exposing dochat services."""

from __future__ import annotations

from uuid import uuid4

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from dochat.api.schemas import (
    AnswerResponse,
    IndexChunksRequest,
    IndexingResponse,
    MemoryListResponse,
    MemoryRecordModel,
    MemoryStatsResponse,
    QueryRequest,
)
from dochat.config import Settings, get_settings
from dochat.dependencies import AppDependencies, build_dependencies
from dochat.embeddings.service import EmbeddingUnavailable
from dochat.embeddings.store import VectorIndexUnavailable
from dochat.memory.store import MemoryStore
from dochat.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from dochat.services.indexing import ChunkIndexer
from dochat.services.query import QueryService


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")
    app = FastAPI(title="dochat API", version="0.1.0")
    app.state.dependencies = deps

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    @app.exception_handler(EmbeddingUnavailable)
    @app.exception_handler(VectorIndexUnavailable)
    async def handle_backend_unavailable(request: Request, exc: RuntimeError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("backend.unavailable", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc), "correlation_id": correlation_id},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error", "correlation_id": correlation_id},
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_query_service(dep: AppDependencies = Depends(get_dependencies)) -> QueryService:
        return dep.query_service

    def get_indexer(dep: AppDependencies = Depends(get_dependencies)) -> ChunkIndexer:
        return dep.indexer

    def get_memory(dep: AppDependencies = Depends(get_dependencies)) -> MemoryStore:
        return dep.memory

    @app.post("/query", response_model=AnswerResponse)
    async def query_documents(
        payload: QueryRequest,
        service: QueryService = Depends(get_query_service),
        _auth: None = Depends(require_api_key),
    ) -> AnswerResponse:
        if payload.top_k is not None and payload.top_k > settings.max_top_k:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"top_k must be at most {settings.max_top_k}",
            )
        result = await service.answer(payload.user_id, payload.question, top_k=payload.top_k)
        return AnswerResponse.from_result(result)

    @app.post("/index/chunks", response_model=IndexingResponse, status_code=status.HTTP_201_CREATED)
    async def index_chunks(
        payload: IndexChunksRequest,
        indexer: ChunkIndexer = Depends(get_indexer),
        _auth: None = Depends(require_api_key),
    ) -> IndexingResponse:
        user_id = payload.user_id.strip()
        chunks = [item.to_chunk(user_id) for item in payload.chunks]
        report = await indexer.index_chunks(user_id, chunks, payload.metadata)
        if not report.indexed:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No non-empty chunks provided")
        return IndexingResponse(**report.to_dict())

    @app.get("/memory/recent-documents", response_model=MemoryListResponse)
    async def recent_documents(
        user_id: str = Query(..., min_length=1),
        hours: float = Query(default=settings.recent_documents_hours, gt=0),
        memory: MemoryStore = Depends(get_memory),
        _auth: None = Depends(require_api_key),
    ) -> MemoryListResponse:
        records = await memory.recent_documents(user_id, hours)
        return MemoryListResponse(user_id=user_id, records=[MemoryRecordModel.from_record(r) for r in records])

    @app.get("/memory/conversation", response_model=MemoryListResponse)
    async def conversation(
        user_id: str = Query(..., min_length=1),
        limit: int = Query(default=settings.conversation_limit, ge=1, le=100),
        memory: MemoryStore = Depends(get_memory),
        _auth: None = Depends(require_api_key),
    ) -> MemoryListResponse:
        records = await memory.conversation_context(user_id, limit)
        return MemoryListResponse(user_id=user_id, records=[MemoryRecordModel.from_record(r) for r in records])

    @app.get("/memory/stats", response_model=MemoryStatsResponse)
    async def memory_stats(
        user_id: str = Query(..., min_length=1),
        memory: MemoryStore = Depends(get_memory),
        _auth: None = Depends(require_api_key),
    ) -> MemoryStatsResponse:
        counts = await memory.stats(user_id)
        return MemoryStatsResponse(user_id=user_id, total=sum(counts.values()), **counts)

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from dochat import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/healthz/ready")
    async def readiness(dep: AppDependencies = Depends(get_dependencies)) -> dict[str, str]:
        try:
            await dep.index.heartbeat()
            return {"status": "ready"}
        except VectorIndexUnavailable as exc:
            return {"status": "error", "detail": str(exc)}

    return app


def main() -> None:
    """Serve the API with uvicorn."""

    settings = get_settings()
    uvicorn.run(
        "dochat.api.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )
