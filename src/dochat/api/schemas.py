"""Pydantic models for the dochat API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from dochat.models import AnswerResult, Chunk, ChunkMetadata, MemoryRecord, ScoredChunk


class QueryRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="Owner of the namespace to search")
    question: str = Field(..., min_length=1, description="End-user question to answer")
    top_k: Optional[int] = Field(
        default=None,
        ge=1,
        description="Override the number of chunks passed to generation",
    )

    @field_validator("user_id", "question")
    @classmethod
    def reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class ChunkMetadataModel(BaseModel):
    source_id: str
    user_id: str
    page_number: Optional[int] = None
    url: Optional[str] = None
    crawl_depth: Optional[int] = None
    inserted_at: str

    @classmethod
    def from_metadata(cls, metadata: ChunkMetadata) -> "ChunkMetadataModel":
        return cls(
            source_id=metadata.source_id,
            user_id=metadata.user_id,
            page_number=metadata.page_number,
            url=metadata.url,
            crawl_depth=metadata.crawl_depth,
            inserted_at=metadata.inserted_at.isoformat(),
        )


class ContextChunkModel(BaseModel):
    text: str
    metadata: ChunkMetadataModel
    similarity: float = Field(..., ge=0.0, le=1.0)
    relevance: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @classmethod
    def from_scored(cls, item: ScoredChunk) -> "ContextChunkModel":
        return cls(
            text=item.text,
            metadata=ChunkMetadataModel.from_metadata(item.chunk.metadata),
            similarity=item.similarity,
            relevance=item.relevance,
        )


class AnswerResponse(BaseModel):
    answer: str
    context: List[ContextChunkModel]
    sources: List[str]
    persona: str
    diagnostics: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, result: AnswerResult) -> "AnswerResponse":
        return cls(
            answer=result.answer,
            context=[ContextChunkModel.from_scored(item) for item in result.context],
            sources=list(result.sources),
            persona=result.persona,
            diagnostics=dict(result.diagnostics),
        )


class ChunkPayload(BaseModel):
    text: str = Field(..., min_length=1)
    source_id: str = Field(..., min_length=1, description="Document the chunk was cut from")
    page_number: Optional[int] = Field(default=None, ge=0)
    url: Optional[str] = None
    crawl_depth: Optional[int] = Field(default=None, ge=0)

    def to_chunk(self, user_id: str) -> Chunk:
        return Chunk(
            text=self.text,
            metadata=ChunkMetadata(
                source_id=self.source_id,
                user_id=user_id,
                page_number=self.page_number,
                url=self.url,
                crawl_depth=self.crawl_depth,
            ),
        )


class IndexChunksRequest(BaseModel):
    """Pre-chunked document text to add to a user's namespace."""

    user_id: str = Field(..., min_length=1)
    chunks: List[ChunkPayload] = Field(..., min_length=1)
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Extra metadata recorded in memory")

    @field_validator("user_id")
    @classmethod
    def reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class IndexingResponse(BaseModel):
    user_id: str
    namespace: str
    received: int = Field(..., ge=0)
    indexed: int = Field(..., ge=0)
    memory_records: int = Field(..., ge=0)
    record_ids: List[str]
    latency_ms: float


class MemoryRecordModel(BaseModel):
    record_id: str
    user_id: str
    content: str
    kind: str
    timestamp: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: MemoryRecord) -> "MemoryRecordModel":
        return cls(**record.to_dict())


class MemoryListResponse(BaseModel):
    user_id: str
    records: List[MemoryRecordModel]


class MemoryStatsResponse(BaseModel):
    user_id: str
    document_chunk: int = 0
    user_interaction: int = 0
    total: int = 0
