"""
Data model for documents, chunks and search results.

Documents and chunks share the ``legal_documents`` table: a chunk is a
document row whose metadata points back at its source document. The
processing lifecycle of a source document is tracked in
``metadata["processingStatus"]`` and guarded by ``ProcessingStatus``.
"""

import uuid
from enum import Enum
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Optional

from .errors import InvalidStatusTransition

QUEUED_PLACEHOLDER = "Document queued for processing..."
STATUS_KEY = "processingStatus"


class ProcessingStatus(str, Enum):
    """Lifecycle of a source document."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_metadata(cls, metadata: Optional[dict]) -> "ProcessingStatus":
        raw = (metadata or {}).get(STATUS_KEY, cls.QUEUED.value)
        try:
            return cls(raw)
        except ValueError:
            raise InvalidStatusTransition(f"Unknown processing status: {raw!r}")

    def can_transition_to(self, target: "ProcessingStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]

    def transition(
        self,
        target: "ProcessingStatus",
        chunk_count: Optional[int] = None,
    ) -> "ProcessingStatus":
        """
        Return ``target`` if the move is legal, otherwise raise.

        Moving to COMPLETED requires at least one chunk: a reader must never
        observe a completed document with nothing searchable behind it.
        """
        if not self.can_transition_to(target):
            raise InvalidStatusTransition(
                f"Cannot move document from {self.value} to {target.value}"
            )
        if target is ProcessingStatus.COMPLETED and not chunk_count:
            raise InvalidStatusTransition(
                "Cannot mark a document completed with zero chunks"
            )
        return target


_ALLOWED_TRANSITIONS = {
    ProcessingStatus.QUEUED: {ProcessingStatus.PROCESSING, ProcessingStatus.FAILED},
    ProcessingStatus.PROCESSING: {ProcessingStatus.COMPLETED, ProcessingStatus.FAILED},
    ProcessingStatus.FAILED: {ProcessingStatus.PROCESSING},
    ProcessingStatus.COMPLETED: set(),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Document:
    """A source document row as stored in the repository."""
    id: str
    title: str
    client_id: str
    content: str = QUEUED_PLACEHOLDER
    document_type: Optional[str] = None
    jurisdiction: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def status(self) -> ProcessingStatus:
        return ProcessingStatus.from_metadata(self.metadata)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "client_id": self.client_id,
            "content": self.content,
            "document_type": self.document_type,
            "jurisdiction": self.jurisdiction,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class ChunkRecord:
    """A persistable chunk: one segment of a source document plus its embedding."""
    title: str
    content: str
    embedding: list[float]
    chunk_index: int
    total_chunks: int
    source_document_id: str
    client_id: str
    document_type: Optional[str] = None
    jurisdiction: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if not 0 <= self.chunk_index < self.total_chunks:
            raise ValueError(
                f"chunk_index {self.chunk_index} outside [0, {self.total_chunks})"
            )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "embedding": self.embedding,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "source_document_id": self.source_document_id,
            "client_id": self.client_id,
            "document_type": self.document_type,
            "jurisdiction": self.jurisdiction,
            "metadata": self.metadata,
        }


@dataclass
class DocumentUpdate:
    """Field changes for an existing document row."""
    document_id: str
    content: Optional[str] = None
    metadata: Optional[dict] = None

    @property
    def status(self) -> Optional[ProcessingStatus]:
        if self.metadata is None or STATUS_KEY not in self.metadata:
            return None
        return ProcessingStatus.from_metadata(self.metadata)

    def fields(self) -> dict:
        changed = {}
        if self.content is not None:
            changed["content"] = self.content
        if self.metadata is not None:
            changed["metadata"] = self.metadata
        return changed


@dataclass
class SearchResult:
    """A single hybrid search hit."""
    id: str
    title: str
    content: str
    metadata: dict
    score: float
    similarity_score: float = 0.0
    keyword_score: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "metadata": self.metadata,
            "score": self.score,
            "similarity_score": self.similarity_score,
            "keyword_score": self.keyword_score,
        }
