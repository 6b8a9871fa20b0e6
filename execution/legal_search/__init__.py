"""
Legal Search - document processing and hybrid retrieval for legal documents

This module provides:
- Text extraction from uploaded PDF, DOCX, text and markdown files
- Recursive character chunking with overlap
- 1536-dimension embeddings (Gemini, Cohere or OpenAI) with validation
- Atomic chunk persistence with a document processing lifecycle
- Tenant-scoped hybrid search fused with Reciprocal Rank Fusion
"""

from .errors import (
    LegalSearchError,
    ExtractionError,
    UploadRejectedError,
    ChunkingConfigError,
    EmbeddingProviderError,
    EmbeddingDimensionMismatch,
    AlignmentError,
    InvalidStatusTransition,
    TenantScopeViolation,
    EmptyQueryError,
    DocumentNotFoundError,
    RepositoryError,
    StorageError,
)
from .models import ProcessingStatus, Document, ChunkRecord, SearchResult
from .chunker import TextChunker, ChunkConfig
from .embeddings import EmbeddingConfig, get_embedding_service
from .assembler import ChunkAssembler
from .vector_store import VectorStore, VectorStoreConfig
from .retriever import HybridSearchEngine, RetrievalConfig, reciprocal_rank_fusion
from .document_parser import TextExtractor
from .storage import LocalObjectStore
from .pipeline import DocumentProcessor

__all__ = [
    "LegalSearchError",
    "ExtractionError",
    "UploadRejectedError",
    "ChunkingConfigError",
    "EmbeddingProviderError",
    "EmbeddingDimensionMismatch",
    "AlignmentError",
    "InvalidStatusTransition",
    "TenantScopeViolation",
    "EmptyQueryError",
    "DocumentNotFoundError",
    "RepositoryError",
    "StorageError",
    "ProcessingStatus",
    "Document",
    "ChunkRecord",
    "SearchResult",
    "TextChunker",
    "ChunkConfig",
    "EmbeddingConfig",
    "get_embedding_service",
    "ChunkAssembler",
    "VectorStore",
    "VectorStoreConfig",
    "HybridSearchEngine",
    "RetrievalConfig",
    "reciprocal_rank_fusion",
    "TextExtractor",
    "LocalObjectStore",
    "DocumentProcessor",
]

__version__ = "0.1.0"
