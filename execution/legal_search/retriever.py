"""
Hybrid Search Engine for Legal Documents

Combines semantic (vector) ranking with keyword (full-text) ranking using
Reciprocal Rank Fusion:

    score(d) = sum over rankings L containing d of 1 / (k_rrf + rank_L(d))

with 1-based ranks and k_rrf = 60 by default. Rank-based fusion ignores the
raw score scales of the two signals, so a chunk with no lexical match still
surfaces on its vector rank alone.

Final order: combined score desc, then similarity desc, then id asc.
"""

import time
import logging
from typing import Optional
from dataclasses import dataclass, replace

from .embeddings import BaseEmbeddingService
from .errors import EmbeddingProviderError, EmptyQueryError
from .models import SearchResult
from .vector_store import DocumentRepository, require_tenant

logger = logging.getLogger(__name__)


@dataclass
class RetrievalConfig:
    """Configuration for hybrid retrieval."""
    # Results returned to the caller
    match_count: int = 10

    # RRF smoothing constant (damps the weight of the very top ranks)
    rrf_k: int = 60

    # Depth of each ranking before fusion
    candidate_pool: int = 40

    # Degrade to keyword-only ranking when the embedding provider fails.
    # Off by default: provider failures surface as EmbeddingProviderError.
    keyword_fallback: bool = False


def normalize_query(query: Optional[str]) -> str:
    """Collapse whitespace; returns "" for None or blank input."""
    return " ".join((query or "").split())


def rank_results(results: list[SearchResult]) -> list[SearchResult]:
    """Deterministic order: score desc, similarity desc, id asc."""
    return sorted(results, key=lambda r: (-r.score, -r.similarity_score, r.id))


def reciprocal_rank_fusion(
    vector_results: list[SearchResult],
    keyword_results: list[SearchResult],
    k_rrf: int = 60,
    match_count: Optional[int] = None,
) -> list[SearchResult]:
    """
    Combine two already-ranked candidate lists using Reciprocal Rank Fusion.

    Args:
        vector_results: Candidates ordered by vector similarity (best first)
        keyword_results: Candidates ordered by lexical relevance (best first)
        k_rrf: Smoothing constant, must be positive
        match_count: Optional truncation of the fused list

    Returns:
        New SearchResult objects with ``score`` set to the fused score and
        ``similarity_score`` / ``keyword_score`` carried over from the list
        each signal came from (0.0 when absent).
    """
    if k_rrf <= 0:
        raise ValueError(f"k_rrf must be positive, got {k_rrf}")

    scores: dict[str, float] = {}
    similarity: dict[str, float] = {}
    keyword: dict[str, float] = {}
    result_map: dict[str, SearchResult] = {}

    for rank, result in enumerate(vector_results, start=1):
        if result.id in similarity:
            continue
        scores[result.id] = scores.get(result.id, 0.0) + 1.0 / (k_rrf + rank)
        similarity[result.id] = result.similarity_score
        result_map.setdefault(result.id, result)

    for rank, result in enumerate(keyword_results, start=1):
        if result.id in keyword:
            continue
        scores[result.id] = scores.get(result.id, 0.0) + 1.0 / (k_rrf + rank)
        keyword[result.id] = result.keyword_score
        result_map.setdefault(result.id, result)

    # Copies, so callers' ranking lists are never mutated
    fused = [
        replace(
            result_map[result_id],
            score=score,
            similarity_score=similarity.get(result_id, 0.0),
            keyword_score=keyword.get(result_id, 0.0),
        )
        for result_id, score in scores.items()
    ]

    ranked = rank_results(fused)
    if match_count is not None:
        ranked = ranked[:match_count]
    return ranked


class HybridSearchEngine:
    """
    Tenant-scoped hybrid retrieval over processed document chunks.

    Pipeline:
    1. Validate tenant and query (no I/O on failure)
    2. Embed the query with the query task hint
    3. Repository runs vector + keyword rankings and fuses them (RRF)
    4. Deterministic ordering and truncation
    """

    def __init__(
        self,
        repository: DocumentRepository,
        embedding_service: BaseEmbeddingService,
        config: Optional[RetrievalConfig] = None,
    ):
        """
        Initialize the engine.

        Args:
            repository: Document repository (VectorStore or compatible)
            embedding_service: Embedding service used for the query vector
            config: Optional retrieval configuration
        """
        self.repository = repository
        self.embeddings = embedding_service
        self.config = config or RetrievalConfig()
        if self.config.rrf_k <= 0:
            raise ValueError(f"rrf_k must be positive, got {self.config.rrf_k}")

    def search(
        self,
        query: str,
        client_id: Optional[str],
        jurisdiction: Optional[str] = None,
        document_type: Optional[str] = None,
        match_count: Optional[int] = None,
    ) -> list[SearchResult]:
        """
        Retrieve the most relevant chunks for a query.

        Args:
            query: Search query string
            client_id: Tenant id (mandatory)
            jurisdiction: Optional jurisdiction filter
            document_type: Optional document type filter
            match_count: Number of results (defaults to config)

        Returns:
            List of SearchResult objects, ranked by combined relevance

        Raises:
            TenantScopeViolation: client_id missing or blank
            EmptyQueryError: query empty after normalisation
            EmbeddingProviderError: query embedding failed and keyword
                fallback is disabled
        """
        start_time = time.time()
        client_id = require_tenant(client_id)

        normalized = normalize_query(query)
        if not normalized:
            raise EmptyQueryError("Search query is empty")

        if match_count is None:
            match_count = self.config.match_count
        if match_count <= 0:
            raise ValueError(f"match_count must be positive, got {match_count}")

        logger.info(f"Searching for client {client_id}: {normalized[:50]}...")

        try:
            query_embedding = self.embeddings.embed_query(normalized)
        except EmbeddingProviderError as e:
            if not self.config.keyword_fallback:
                raise
            logger.warning(f"Query embedding failed, using keyword-only ranking: {e}")
            return self._keyword_only(
                normalized, client_id, jurisdiction, document_type, match_count
            )

        results = self.repository.search(
            query_text=normalized,
            query_embedding=query_embedding,
            client_id=client_id,
            jurisdiction=jurisdiction,
            document_type=document_type,
            match_count=match_count,
            k_rrf=self.config.rrf_k,
            candidate_count=max(self.config.candidate_pool, match_count),
        )
        final_results = rank_results(results)[:match_count]

        elapsed = (time.time() - start_time) * 1000
        logger.info(f"Returning {len(final_results)} results in {elapsed:.0f}ms")
        return final_results

    def _keyword_only(
        self,
        query: str,
        client_id: str,
        jurisdiction: Optional[str],
        document_type: Optional[str],
        match_count: int,
    ) -> list[SearchResult]:
        keyword_results = self.repository.keyword_search(
            query_text=query,
            client_id=client_id,
            jurisdiction=jurisdiction,
            document_type=document_type,
            match_count=max(self.config.candidate_pool, match_count),
        )
        return reciprocal_rank_fusion(
            [], keyword_results, k_rrf=self.config.rrf_k, match_count=match_count
        )
