"""Conversational and document memory."""

from .backends import ChromaMemoryBackend, InMemoryMemoryBackend, build_memory_backend
from .store import MemoryBackend, MemoryStore, MemoryUnavailable

__all__ = [
    "ChromaMemoryBackend",
    "InMemoryMemoryBackend",
    "MemoryBackend",
    "MemoryStore",
    "MemoryUnavailable",
    "build_memory_backend",
]
