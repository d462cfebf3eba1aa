"""Service layer orchestrations for dochat."""

from .context import AssembledContext, ContextAssembler, ContextBudget
from .generation import GenerationConfig, GenerationGateway, GenerationUnavailable, TemplateGenerator, TransformersGenerator
from .hyde import HypotheticalDocument, HypotheticalDocumentExpander
from .indexing import ChunkIndexer, IndexingReport, chunks_from_documents
from .query import PromptBuilder, QueryConfig, QueryService

__all__ = [
    "AssembledContext",
    "ChunkIndexer",
    "ContextAssembler",
    "ContextBudget",
    "GenerationConfig",
    "GenerationGateway",
    "GenerationUnavailable",
    "HypotheticalDocument",
    "HypotheticalDocumentExpander",
    "IndexingReport",
    "PromptBuilder",
    "QueryConfig",
    "QueryService",
    "TemplateGenerator",
    "TransformersGenerator",
    "chunks_from_documents",
]
