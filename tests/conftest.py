"""
Shared fixtures and test utilities for Legal Search tests.

Provides a mock embedding service, an in-memory document repository and
sample data so that all tests run without API keys, databases or network
access.
"""

import re
import sys
import uuid
import hashlib
from pathlib import Path

import numpy as np
import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

TENANT_A = "00000000-0000-0000-0000-000000000001"
TENANT_B = "00000000-0000-0000-0000-000000000002"

# ---------------------------------------------------------------------------
# Sample legal document text
# ---------------------------------------------------------------------------
SAMPLE_DOCUMENT = """SOFTWARE LICENSE AGREEMENT

This Software License Agreement ("Agreement") is entered into as of January 1, 2024
by and between TechCorp Inc., a Delaware corporation ("Licensor"), and ClientCo LLC,
a California limited liability company ("Licensee").

ARTICLE I - DEFINITIONS

Section 1.1 "Software" means the proprietary software application known as "LegalAI Pro"
including all updates, modifications, and enhancements.

Section 1.2 "Documentation" means user manuals, technical specifications, and other
materials describing the Software's functionality.

ARTICLE II - LICENSE GRANT

Section 2.1 Grant of License. Subject to the terms of this Agreement, Licensor hereby
grants to Licensee a non-exclusive, non-transferable license to use the Software.

Section 2.2 Restrictions. Licensee shall not copy, modify, or distribute the Software;
reverse engineer or decompile the Software; or sublicense the Software to third parties.

ARTICLE III - FEES AND PAYMENT

Section 3.1 License Fees. Licensee shall pay Licensor an annual license fee of
$50,000 USD, payable in advance.

Section 3.2 Payment Terms. All payments are due within thirty (30) days of invoice date.

Section 3.3 Late Payments. Overdue amounts shall accrue interest at 1.5% per month.

ARTICLE IV - TERM AND TERMINATION

Section 4.1 Term. This Agreement shall commence on the Effective Date and continue
for a period of one (1) year, unless earlier terminated.

Section 4.2 Termination for Convenience. Either party may terminate this Agreement
upon sixty (60) days written notice.

Section 4.3 Termination for Breach. Either party may terminate immediately if the
other party materially breaches this Agreement and fails to cure within thirty (30) days.

ARTICLE V - CONFIDENTIALITY

Section 5.1 Confidential Information. Each party agrees to maintain the confidentiality
of the other party's proprietary information.

ARTICLE VI - GENERAL PROVISIONS

Section 6.1 Governing Law. This Agreement shall be governed by the laws of the
State of Delaware.
"""


@pytest.fixture
def sample_document_text():
    """Return the sample legal document text."""
    return SAMPLE_DOCUMENT


# ---------------------------------------------------------------------------
# Mock embedding service
# ---------------------------------------------------------------------------

_WORD_RE = re.compile(r"[a-z0-9]+")


def tokenize(text):
    return _WORD_RE.findall(text.lower())


class MockEmbeddingService:
    """
    Deterministic bag-of-words embeddings -- never calls external APIs.

    Texts sharing words get similar vectors, so cosine ranking behaves
    sensibly in search tests.

    Args:
        dimensions: Reported (expected) dimensions
        output_dimensions: Length of the vectors actually returned
        fail_on: Substring; embedding any text containing it raises
        fail_queries: Every embed_query call raises
    """

    provider_name = "Mock"

    def __init__(self, dimensions=1536, output_dimensions=None, fail_on=None, fail_queries=False):
        self._dimensions = dimensions
        self._output_dimensions = output_dimensions or dimensions
        self._fail_on = fail_on
        self._fail_queries = fail_queries
        self.document_calls = 0
        self.query_calls = 0
        self.titles = []

    def _embedding(self, text):
        vector = np.zeros(self._output_dimensions)
        for word in tokenize(text):
            h = int(hashlib.sha256(word.encode()).hexdigest()[:8], 16)
            vector[h % self._output_dimensions] += 1.0
        if not vector.any():
            vector[0] = 1.0
        return (vector / np.linalg.norm(vector)).tolist()

    def embed_documents(self, texts, title=None):
        from execution.legal_search.errors import EmbeddingProviderError

        self.titles.append(title)
        vectors = []
        for text in texts:
            self.document_calls += 1
            if self._fail_on and self._fail_on in text:
                raise EmbeddingProviderError("Mock provider refused the request")
            vectors.append(self._embedding(text))
        return vectors

    def embed_query(self, query):
        from execution.legal_search.errors import EmbeddingProviderError

        self.query_calls += 1
        if self._fail_queries:
            raise EmbeddingProviderError("Mock provider timed out")
        return self._embedding(query)

    @property
    def dimensions(self):
        return self._dimensions


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService()


# ---------------------------------------------------------------------------
# In-memory repository (no database needed)
# ---------------------------------------------------------------------------

class InMemoryRepository:
    """
    In-memory stand-in for VectorStore.

    Mirrors the PostgreSQL repository's contract: tenant scope on every
    read, status transitions under the same rules, and an all-or-nothing
    commit of a processed document. Every public call is recorded in
    ``calls``.
    """

    def __init__(self, fail_commit=False):
        self.documents = {}
        self.chunks = []
        self.calls = []
        self.fail_commit = fail_commit

    def insert_document(self, title, client_id, content=None, document_type=None,
                        jurisdiction=None, metadata=None, document_id=None):
        from execution.legal_search.models import (
            Document, ProcessingStatus, QUEUED_PLACEHOLDER, STATUS_KEY, utc_now,
        )
        from execution.legal_search.vector_store import require_tenant

        self.calls.append("insert_document")
        metadata = dict(metadata or {})
        metadata.setdefault(STATUS_KEY, ProcessingStatus.QUEUED.value)
        document_id = document_id or str(uuid.uuid4())
        self.documents[document_id] = Document(
            id=document_id,
            title=title,
            client_id=require_tenant(client_id),
            content=content or QUEUED_PLACEHOLDER,
            document_type=document_type,
            jurisdiction=jurisdiction,
            metadata=metadata,
            created_at=utc_now(),
            updated_at=utc_now(),
        )
        return document_id

    def get_document(self, document_id, client_id=None):
        from execution.legal_search.errors import DocumentNotFoundError

        self.calls.append("get_document")
        document = self.documents.get(document_id)
        if document is None or (client_id is not None and document.client_id != client_id):
            raise DocumentNotFoundError(f"Document not found: {document_id}")
        return document

    def update_document(self, document_id, fields):
        from execution.legal_search.errors import DocumentNotFoundError

        self.calls.append("update_document")
        document = self.documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document not found: {document_id}")
        for name, value in fields.items():
            setattr(document, name, value)

    def transition_status(self, document_id, target, extra_metadata=None):
        from execution.legal_search.models import STATUS_KEY

        self.calls.append("transition_status")
        document = self.get_document(document_id)
        new_status = document.status.transition(target)
        document.metadata = {
            **document.metadata,
            **(extra_metadata or {}),
            STATUS_KEY: new_status.value,
        }
        return document

    def insert_chunks(self, chunks):
        self.calls.append("insert_chunks")
        self.chunks.extend(chunks)

    def commit_processed_document(self, assembled):
        from execution.legal_search.errors import RepositoryError
        from execution.legal_search.models import ProcessingStatus

        self.calls.append("commit_processed_document")
        update = assembled.status_update
        document = self.get_document(update.document_id)
        document.status.transition(ProcessingStatus.COMPLETED, chunk_count=len(assembled.chunks))
        if self.fail_commit:
            raise RepositoryError("commit_processed_document failed: connection lost")
        self.chunks.extend(assembled.chunks)
        for name, value in update.fields().items():
            setattr(document, name, value)

    def chunks_for(self, document_id):
        return [c for c in self.chunks if c.source_document_id == document_id]

    def _scoped(self, client_id, jurisdiction, document_type):
        return [
            c for c in self.chunks
            if c.client_id == client_id
            and (jurisdiction is None or c.jurisdiction == jurisdiction)
            and (document_type is None or c.document_type == document_type)
        ]

    @staticmethod
    def _to_result(chunk, similarity=0.0, keyword=0.0):
        from execution.legal_search.models import SearchResult

        return SearchResult(
            id=chunk.id,
            title=chunk.title,
            content=chunk.content,
            metadata=chunk.metadata,
            score=0.0,
            similarity_score=similarity,
            keyword_score=keyword,
        )

    def _keyword_ranking(self, query_text, scoped, limit):
        terms = set(tokenize(query_text))
        scored = []
        for chunk in scoped:
            words = tokenize(chunk.content)
            relevance = float(sum(words.count(t) for t in terms))
            if relevance > 0:
                scored.append((relevance, chunk))
        scored.sort(key=lambda item: (-item[0], item[1].id))
        return [self._to_result(c, keyword=r) for r, c in scored[:limit]]

    def search(self, query_text, query_embedding, client_id, jurisdiction=None,
               document_type=None, match_count=10, k_rrf=60, candidate_count=40):
        from execution.legal_search.retriever import reciprocal_rank_fusion
        from execution.legal_search.vector_store import require_tenant

        self.calls.append("search")
        scoped = self._scoped(require_tenant(client_id), jurisdiction, document_type)

        query = np.asarray(query_embedding)
        similarities = []
        for chunk in scoped:
            emb = np.asarray(chunk.embedding)
            sim = float(np.dot(query, emb) / (np.linalg.norm(query) * np.linalg.norm(emb)))
            similarities.append((sim, chunk))
        similarities.sort(key=lambda item: (-item[0], item[1].id))
        vector_results = [
            self._to_result(c, similarity=s) for s, c in similarities[:candidate_count]
        ]
        keyword_results = self._keyword_ranking(query_text, scoped, candidate_count)

        return reciprocal_rank_fusion(
            vector_results, keyword_results, k_rrf=k_rrf, match_count=match_count
        )

    def keyword_search(self, query_text, client_id, jurisdiction=None,
                       document_type=None, match_count=10):
        from execution.legal_search.vector_store import require_tenant

        self.calls.append("keyword_search")
        scoped = self._scoped(require_tenant(client_id), jurisdiction, document_type)
        return self._keyword_ranking(query_text, scoped, match_count)


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def object_store(tmp_path):
    from execution.legal_search.storage import LocalObjectStore
    return LocalObjectStore(root=str(tmp_path / "storage"))


@pytest.fixture
def processor(repository, mock_embedding_service, object_store):
    from execution.legal_search.pipeline import DocumentProcessor
    return DocumentProcessor(
        repository=repository,
        embedding_service=mock_embedding_service,
        object_store=object_store,
    )


@pytest.fixture
def ingest(processor):
    """Upload and process a text document; returns the document id."""
    def _ingest(text, client_id=TENANT_A, title="Sample", **kwargs):
        document_id = processor.enqueue(
            client_id=client_id,
            file_name=f"{title.lower().replace(' ', '_')}.txt",
            data=text.encode("utf-8"),
            mime_type="text/plain",
            title=title,
            **kwargs,
        )
        processor.process(document_id)
        return document_id
    return _ingest
