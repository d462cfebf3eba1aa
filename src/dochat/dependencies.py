"""Wiring of dochat components from settings."""

from __future__ import annotations

from dataclasses import dataclass

import chromadb
from chromadb.api import ClientAPI

from dochat.config import Settings, get_settings
from dochat.embeddings import ChromaVectorIndex, EmbeddingConfig, LangChainEmbeddingGateway
from dochat.memory import MemoryStore, build_memory_backend
from dochat.personas import get_persona
from dochat.retrieval import DualChannelRetriever, FusionReranker, RetrievalConfig, build_scorer
from dochat.services import (
    ChunkIndexer,
    ContextAssembler,
    ContextBudget,
    GenerationConfig,
    HypotheticalDocumentExpander,
    PromptBuilder,
    QueryConfig,
    QueryService,
    TemplateGenerator,
    TransformersGenerator,
)


@dataclass(frozen=True)
class AppDependencies:
    index: ChromaVectorIndex
    memory: MemoryStore
    query_service: QueryService
    indexer: ChunkIndexer


def _chroma_client(settings: Settings) -> ClientAPI:
    if settings.chroma_host:
        return chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    if settings.is_test:
        return chromadb.EphemeralClient()
    return chromadb.PersistentClient(path=str(settings.chroma_persist_dir))


def build_dependencies(settings: Settings | None = None) -> AppDependencies:
    settings = settings or get_settings()
    client = _chroma_client(settings)

    embedder = LangChainEmbeddingGateway(
        EmbeddingConfig(
            model=settings.embedding_model,
            dim=settings.embedding_dim,
            use_model=settings.use_model_embeddings,
            normalize=True,
        ),
    )
    index = ChromaVectorIndex(client=client, namespace_prefix=settings.namespace_prefix)
    retriever = DualChannelRetriever(
        index,
        RetrievalConfig(
            top_k=settings.top_k,
            min_similarity=settings.min_similarity,
            oversample_factor=settings.oversample_factor,
            min_oversample=settings.min_oversample,
        ),
    )
    reranker = FusionReranker(
        build_scorer(
            settings.reranker,
            cross_encoder_model=settings.cross_encoder_model,
            classifier_model=settings.classifier_model,
            device=settings.reranker_device,
        ),
        prefix_chars=settings.rerank_prefix_chars,
        timeout_seconds=settings.classifier_timeout_seconds,
    )
    generator = TransformersGenerator(
        GenerationConfig(model=settings.generator_model, use_model=settings.use_model_generator),
        fallback=TemplateGenerator(),
    )
    hyde = None
    if settings.hyde_enabled:
        hyde = HypotheticalDocumentExpander(
            generator,
            embedder,
            max_tokens=settings.hyde_max_tokens,
            temperature=settings.hyde_temperature,
            timeout_seconds=settings.hyde_timeout_seconds,
        )
    memory = MemoryStore(
        build_memory_backend(
            settings.memory_backend,
            embedder=embedder,
            client=client,
            namespace_prefix=settings.memory_namespace_prefix,
        ),
        timeout_seconds=settings.memory_timeout_seconds,
    )
    query_service = QueryService(
        embedder=embedder,
        retriever=retriever,
        reranker=reranker,
        generator=generator,
        hyde=hyde,
        memory=memory,
        assembler=ContextAssembler(
            ContextBudget(total=settings.memory_context_budget),
            retrieval_budget=settings.retrieval_context_budget,
        ),
        prompt_builder=PromptBuilder(),
        persona=get_persona(settings.persona),
        config=QueryConfig(
            top_k=settings.top_k,
            max_top_k=settings.max_top_k,
            rerank_pool_factor=settings.rerank_pool_factor,
            min_rerank_pool=settings.min_rerank_pool,
            generation_max_tokens=settings.generation_max_tokens,
            generation_temperature=settings.generation_temperature,
            embedding_timeout_seconds=settings.embedding_timeout_seconds,
            generation_timeout_seconds=settings.generation_timeout_seconds,
            vector_timeout_seconds=settings.vector_timeout_seconds,
            use_hyde=settings.hyde_enabled,
            use_memory=settings.memory_enabled,
            conversation_limit=settings.conversation_limit,
            recent_documents_hours=settings.recent_documents_hours,
            relevant_memories_limit=settings.relevant_memories_limit,
        ),
    )
    indexer = ChunkIndexer(embedder, index, memory=memory if settings.memory_enabled else None)
    return AppDependencies(index=index, memory=memory, query_service=query_service, indexer=indexer)
