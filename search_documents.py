"""
Run a hybrid search against one tenant's documents.

Usage:
    python search_documents.py --client-id 00000000-0000-0000-0000-000000000001 "termination for convenience"
    python search_documents.py --client-id ... --jurisdiction CY --top-k 5 --json "notice period"
"""

import sys
import json
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
    arg_parser = argparse.ArgumentParser(description="Hybrid search over legal documents")
    arg_parser.add_argument("query", nargs="+", help="Search query")
    arg_parser.add_argument("--client-id", type=str, required=True, help="Tenant client ID")
    arg_parser.add_argument("--jurisdiction", type=str, default=None)
    arg_parser.add_argument("--document-type", type=str, default=None)
    arg_parser.add_argument("--top-k", type=int, default=10, help="Number of results")
    arg_parser.add_argument("--provider", type=str, default=None, help="Embedding provider")
    arg_parser.add_argument(
        "--keyword-fallback",
        action="store_true",
        help="Rank by full-text relevance alone if the query cannot be embedded",
    )
    arg_parser.add_argument("--json", action="store_true", help="Print results as JSON")
    args = arg_parser.parse_args()

    from execution.legal_search.embeddings import get_embedding_service
    from execution.legal_search.errors import LegalSearchError
    from execution.legal_search.retriever import HybridSearchEngine, RetrievalConfig
    from execution.legal_search.vector_store import VectorStore

    store = VectorStore()
    store.connect()
    engine = HybridSearchEngine(
        store,
        get_embedding_service(provider=args.provider),
        RetrievalConfig(keyword_fallback=args.keyword_fallback),
    )

    try:
        results = engine.search(
            " ".join(args.query),
            client_id=args.client_id,
            jurisdiction=args.jurisdiction,
            document_type=args.document_type,
            match_count=args.top_k,
        )
    except LegalSearchError as e:
        logger.error(f"Search failed [{e.kind}]: {e.message}")
        sys.exit(1)
    finally:
        store.close()

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2, default=str))
        return

    print("\n" + "=" * 60)
    print(f"{len(results)} RESULTS")
    print("=" * 60)
    for i, result in enumerate(results, start=1):
        print(f"[{i}] {result.title}")
        print(
            f"    score={result.score:.5f}  similarity={result.similarity_score:.3f}"
            f"  keyword={result.keyword_score:.3f}"
        )
        snippet = " ".join(result.content.split())[:200]
        print(f"    {snippet}")


if __name__ == "__main__":
    main()
