"""
Chunk Assembler

Turns chunker output plus embeddings into persistable chunk rows, and
prepares the "completed" update for the source document. The update is
only ever applied together with (or after) the chunk inserts; see
``VectorStore.commit_processed_document``.
"""

import logging
from datetime import datetime
from dataclasses import dataclass
from typing import Optional, Union

from .chunker import TextSegment
from .embeddings import EMBEDDING_DIMENSIONS, validate_embedding
from .errors import AlignmentError
from .models import (
    ChunkRecord,
    Document,
    DocumentUpdate,
    ProcessingStatus,
    STATUS_KEY,
    utc_now,
)

logger = logging.getLogger(__name__)

# Keys describing the source document's lifecycle, not its content
LIFECYCLE_KEYS = (STATUS_KEY, "processing_error", "processing_failed_at")


def _content_metadata(metadata: dict) -> dict:
    return {k: v for k, v in metadata.items() if k not in LIFECYCLE_KEYS}


@dataclass
class AssembledDocument:
    """Everything that must be committed for one processed document."""
    chunks: list[ChunkRecord]
    status_update: DocumentUpdate

    @property
    def document_id(self) -> str:
        return self.status_update.document_id


class ChunkAssembler:
    """Builds chunk records and the source document's status update."""

    def __init__(self, dimensions: int = EMBEDDING_DIMENSIONS):
        self.dimensions = dimensions

    def build_chunks(
        self,
        document: Document,
        segments: list[Union[TextSegment, str]],
        embeddings: list[list[float]],
        processed_at: Optional[datetime] = None,
    ) -> list[ChunkRecord]:
        """
        Create one ChunkRecord per segment.

        Args:
            document: Source document (provides tenant, type, jurisdiction, metadata)
            segments: Ordered segments from the chunker
            embeddings: Vectors index-aligned with ``segments``
            processed_at: Timestamp stamped on every chunk (defaults to now)

        Raises:
            AlignmentError: segment and embedding counts differ
            EmbeddingDimensionMismatch: an embedding has the wrong size
        """
        if len(segments) != len(embeddings):
            raise AlignmentError(
                f"Mismatch: {len(segments)} segments, {len(embeddings)} embeddings "
                f"for document {document.id}",
                segments=len(segments),
                embeddings=len(embeddings),
            )

        processed_at = processed_at or utc_now()
        total = len(segments)
        title = document.title or "Document"

        chunks = []
        for index, (segment, embedding) in enumerate(zip(segments, embeddings)):
            content = segment.content if isinstance(segment, TextSegment) else segment
            vector = validate_embedding(
                embedding, self.dimensions, label=f"embedding for chunk {index + 1}"
            )
            metadata = {
                **_content_metadata(document.metadata),
                "chunk_index": index,
                "total_chunks": total,
                "source_document_id": document.id,
                "processed_at": processed_at.isoformat(),
            }

            chunks.append(ChunkRecord(
                title=f"{title} - Part {index + 1}",
                content=content,
                embedding=vector,
                chunk_index=index,
                total_chunks=total,
                source_document_id=document.id,
                client_id=document.client_id,
                document_type=document.document_type,
                jurisdiction=document.jurisdiction,
                metadata=metadata,
            ))

        return chunks

    def build_status_update(
        self,
        document: Document,
        chunk_count: int,
        completed_at: Optional[datetime] = None,
    ) -> DocumentUpdate:
        """
        Prepare the PROCESSING -> COMPLETED update for the source document.

        Raises:
            InvalidStatusTransition: chunk_count is zero
        """
        status = ProcessingStatus.PROCESSING.transition(
            ProcessingStatus.COMPLETED, chunk_count=chunk_count
        )
        completed_at = completed_at or utc_now()
        return DocumentUpdate(
            document_id=document.id,
            content=(
                f"Document processed successfully. "
                f"Contains {chunk_count} searchable chunks."
            ),
            metadata={
                **_content_metadata(document.metadata),
                STATUS_KEY: status.value,
                "chunks_count": chunk_count,
                "processing_completed_at": completed_at.isoformat(),
            },
        )

    def assemble(
        self,
        document: Document,
        segments: list[Union[TextSegment, str]],
        embeddings: list[list[float]],
    ) -> AssembledDocument:
        processed_at = utc_now()
        chunks = self.build_chunks(document, segments, embeddings, processed_at)
        update = self.build_status_update(document, len(chunks), processed_at)
        logger.info(f"Assembled {len(chunks)} chunks for document {document.id}")
        return AssembledDocument(chunks=chunks, status_update=update)
