"""
Document Processing Pipeline

Upload:   file bytes -> object store -> queued document row
Process:  download -> extract -> chunk -> embed (all segments) -> assemble
          -> one transaction: insert chunks + mark source completed

A document is marked failed on any error or cancellation; nothing is
committed for it unless every segment was embedded successfully.
"""

import time
import logging
from dataclasses import dataclass
from typing import Optional
from concurrent.futures import ThreadPoolExecutor, as_completed

from .assembler import ChunkAssembler
from .chunker import TextChunker
from .document_parser import SUPPORTED_MIME_TYPES, TextExtractor
from .embeddings import BaseEmbeddingService
from .errors import LegalSearchError, UploadRejectedError
from .models import (
    Document,
    ProcessingStatus,
    QUEUED_PLACEHOLDER,
    STATUS_KEY,
    utc_now,
)
from .storage import ObjectStore
from .vector_store import DocumentRepository, require_tenant

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10MB


@dataclass
class ProcessingResult:
    """Outcome of processing one document."""
    document_id: str
    status: ProcessingStatus
    chunk_count: int = 0
    error: Optional[dict] = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "status": self.status.value,
            "chunk_count": self.chunk_count,
            "error": self.error,
            "elapsed_ms": self.elapsed_ms,
        }


def _error_dict(error: BaseException) -> dict:
    if isinstance(error, LegalSearchError):
        return error.to_dict()
    return {"kind": type(error).__name__, "message": str(error) or type(error).__name__}


class DocumentProcessor:
    """
    Runs the ingestion pipeline for uploaded documents.

    All collaborators are injected so the pipeline can run against the
    PostgreSQL repository in production and in-memory doubles in tests.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        embedding_service: BaseEmbeddingService,
        object_store: ObjectStore,
        extractor: Optional[TextExtractor] = None,
        chunker: Optional[TextChunker] = None,
        assembler: Optional[ChunkAssembler] = None,
    ):
        self.repository = repository
        self.embeddings = embedding_service
        self.object_store = object_store
        self.extractor = extractor or TextExtractor()
        self.chunker = chunker or TextChunker()
        self.assembler = assembler or ChunkAssembler(embedding_service.dimensions)

    def enqueue(
        self,
        client_id: str,
        file_name: str,
        data: bytes,
        mime_type: str,
        title: Optional[str] = None,
        document_type: Optional[str] = None,
        jurisdiction: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        """
        Store an uploaded file and create its queued document row.

        Returns:
            The new document id

        Raises:
            TenantScopeViolation: client_id missing
            UploadRejectedError: unsupported MIME type or file over 10MB
        """
        client_id = require_tenant(client_id)
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise UploadRejectedError(f"Unsupported file type: {mime_type}", mime_type=mime_type)
        if len(data) > MAX_UPLOAD_BYTES:
            raise UploadRejectedError(
                f"File too large ({len(data)} bytes, max {MAX_UPLOAD_BYTES})",
                size=len(data),
            )

        file_path = f"{client_id}/{int(time.time() * 1000)}-{file_name}"
        self.object_store.upload(file_path, data)

        metadata = {
            "fileName": file_name,
            "fileType": mime_type,
            "fileSize": len(data),
            "filePath": file_path,
            "description": description,
        }
        document_id = self.repository.insert_document(
            title=title or file_name,
            client_id=client_id,
            content=QUEUED_PLACEHOLDER,
            document_type=document_type,
            jurisdiction=jurisdiction,
            metadata=metadata,
        )
        logger.info(f"Queued document {document_id} ({file_name}) for processing")
        return document_id

    def process(
        self,
        document_id: str,
        file_path: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> ProcessingResult:
        """
        Process one queued (or previously failed) document.

        Args:
            document_id: Source document id
            file_path: Object store path (defaults to metadata["filePath"])
            metadata: Extra metadata from the upload trigger, merged into the
                document's metadata and inherited by every chunk

        Raises:
            Whatever stage failed (ExtractionError, EmbeddingProviderError,
            EmbeddingDimensionMismatch, ...). The document is marked failed
            before the error propagates.
        """
        start_time = time.time()
        document = self.repository.transition_status(document_id, ProcessingStatus.PROCESSING)

        try:
            document = self._with_trigger_metadata(document, metadata)
            path = file_path or document.metadata.get("filePath")
            if not path:
                raise UploadRejectedError(f"Document {document_id} has no file path")
            mime_type = document.metadata.get("fileType", "application/octet-stream")

            logger.info(f"Processing document {document_id} from {path}")
            data = self.object_store.download(path)
            text = self.extractor.extract_text(data, mime_type)

            segments = self.chunker.split_segments(text)
            logger.info(f"Split into {len(segments)} chunks")

            embeddings = self.embeddings.embed_documents(
                [s.content for s in segments], title=document.title
            )
            logger.info(f"Generated {len(embeddings)} embeddings")

            assembled = self.assembler.assemble(document, segments, embeddings)
            self.repository.commit_processed_document(assembled)
        except BaseException as e:
            logger.error(f"Error processing document {document_id}: {e}")
            self._mark_failed(document_id, e)
            raise

        elapsed = (time.time() - start_time) * 1000
        logger.info(f"Successfully processed document {document_id} in {elapsed:.0f}ms")
        return ProcessingResult(
            document_id=document_id,
            status=ProcessingStatus.COMPLETED,
            chunk_count=len(assembled.chunks),
            elapsed_ms=elapsed,
        )

    def process_many(self, document_ids: list[str], max_workers: int = 4) -> list[ProcessingResult]:
        """
        Process independent documents in parallel.

        One document failing does not affect the others; its error is
        reported in the returned ProcessingResult.
        """
        results = {}
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            futures = {executor.submit(self.process, doc_id): doc_id for doc_id in document_ids}
            for future in as_completed(futures):
                doc_id = futures[future]
                try:
                    results[doc_id] = future.result()
                except Exception as e:
                    results[doc_id] = ProcessingResult(
                        document_id=doc_id,
                        status=ProcessingStatus.FAILED,
                        error=_error_dict(e),
                    )
        return [results[doc_id] for doc_id in document_ids]

    def _with_trigger_metadata(self, document: Document, metadata: Optional[dict]) -> Document:
        if not metadata:
            return document
        merged = {**document.metadata, **metadata}
        # Status is owned by the repository, never by trigger payloads
        merged[STATUS_KEY] = document.metadata.get(STATUS_KEY)
        return Document(
            id=document.id,
            title=document.title,
            client_id=document.client_id,
            content=document.content,
            document_type=document.document_type,
            jurisdiction=document.jurisdiction,
            metadata=merged,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )

    def _mark_failed(self, document_id: str, error: BaseException) -> None:
        try:
            self.repository.transition_status(
                document_id,
                ProcessingStatus.FAILED,
                extra_metadata={
                    "processing_error": _error_dict(error),
                    "processing_failed_at": utc_now().isoformat(),
                },
            )
        except Exception as e:
            # The processing error still propagates; this one is only logged
            logger.error(f"Could not mark document {document_id} as failed: {e}")
