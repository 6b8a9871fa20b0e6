"""
Batch ingestion of legal documents into the search index.

Uploads every supported file in a directory (PDF, DOCX, TXT, MD) to the
object store, creates a queued document row for it, then runs the
processing pipeline:
- Extractor: PyMuPDF / python-docx / UTF-8 text
- Chunker: 1000-char recursive character splitter, 200-char overlap
- Embeddings: gemini-embedding-001 (or EMBEDDING_PROVIDER), 1536 dims
- Storage: PostgreSQL + pgvector, chunks and "completed" status in one transaction

Usage:
    python ingest_documents.py --dir ~/contracts/ --client-id 00000000-0000-0000-0000-000000000001
    python ingest_documents.py --dir ~/statutes/ --client-id ... --document-type statute --jurisdiction CY
"""

import sys
import time
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    arg_parser = argparse.ArgumentParser(description="Ingest legal documents into the search index")
    arg_parser.add_argument(
        "--dir",
        type=str,
        required=True,
        help="Directory containing PDF, DOCX, TXT and/or MD files",
    )
    arg_parser.add_argument(
        "--client-id",
        type=str,
        required=True,
        help="Tenant client ID that will own the documents",
    )
    arg_parser.add_argument("--document-type", type=str, default=None, help="e.g. contract, statute")
    arg_parser.add_argument("--jurisdiction", type=str, default=None, help="e.g. US-DE, CY")
    arg_parser.add_argument(
        "--provider",
        type=str,
        default=None,
        help="Embedding provider: gemini, cohere or openai (default: EMBEDDING_PROVIDER or gemini)",
    )
    arg_parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create the table, indexes and search function before ingesting",
    )
    args = arg_parser.parse_args()

    input_dir = Path(args.dir).expanduser()
    if not input_dir.exists():
        logger.error(f"Directory not found: {input_dir}")
        sys.exit(1)

    from execution.legal_search.document_parser import SUPPORTED_MIME_TYPES, guess_mime_type
    from execution.legal_search.embeddings import get_embedding_service
    from execution.legal_search.errors import LegalSearchError
    from execution.legal_search.pipeline import DocumentProcessor
    from execution.legal_search.storage import LocalObjectStore
    from execution.legal_search.vector_store import VectorStore

    files = sorted(
        p for p in input_dir.iterdir()
        if p.is_file() and guess_mime_type(p.name) in SUPPORTED_MIME_TYPES
    )
    if not files:
        logger.error(f"No supported files found in {input_dir}")
        sys.exit(1)

    logger.info(f"Found {len(files)} files in {input_dir}")

    store = VectorStore()
    store.connect()
    try:
        if args.init_schema:
            store.initialize_schema()

        embedding_service = get_embedding_service(provider=args.provider)
        processor = DocumentProcessor(
            repository=store,
            embedding_service=embedding_service,
            object_store=LocalObjectStore(),
        )

        logger.info(f"  Embedding provider: {embedding_service.provider_name}")
        logger.info(f"  Client ID: {args.client_id}")

        start_time = time.time()
        total_chunks = 0
        success_count = 0
        fail_count = 0

        for i, path in enumerate(files):
            logger.info(f"[{i+1}/{len(files)}] Processing: {path.name}")
            try:
                document_id = processor.enqueue(
                    client_id=args.client_id,
                    file_name=path.name,
                    data=path.read_bytes(),
                    mime_type=guess_mime_type(path.name),
                    document_type=args.document_type,
                    jurisdiction=args.jurisdiction,
                )
                result = processor.process(document_id)
                total_chunks += result.chunk_count
                success_count += 1
                logger.info(f"  -> {result.chunk_count} chunks")
            except LegalSearchError as e:
                fail_count += 1
                logger.error(f"  FAILED [{e.kind}]: {e.message}")

        elapsed = time.time() - start_time
    finally:
        store.close()

    # Summary
    print("\n" + "=" * 60)
    print("INGESTION COMPLETE")
    print("=" * 60)
    print(f"Files processed: {success_count}/{len(files)} ({fail_count} failed)")
    print(f"Total chunks:    {total_chunks}")
    print(f"Time elapsed:    {elapsed:.1f}s")
    print(f"Client ID:       {args.client_id}")
    print("=" * 60)


if __name__ == "__main__":
    main()
