"""
Document Repository with PostgreSQL + pgvector

Source documents and their chunks live in one ``legal_documents`` table.
Chunk rows carry an embedding; source rows do not, so only chunks are ever
returned by search. Every read takes a mandatory tenant id.

Hybrid search runs inside the database as the ``search_legal_documents``
SQL function: cosine-distance ranking and full-text ranking over the
tenant/filter-scoped chunks, fused with Reciprocal Rank Fusion.
"""

import os
import json
import logging
from typing import Optional, Protocol
from dataclasses import dataclass
from contextlib import contextmanager

from .assembler import AssembledDocument
from .embeddings import EMBEDDING_DIMENSIONS
from .errors import (
    DocumentNotFoundError,
    EmbeddingDimensionMismatch,
    RepositoryError,
    TenantScopeViolation,
)
from .models import (
    ChunkRecord,
    Document,
    ProcessingStatus,
    QUEUED_PLACEHOLDER,
    STATUS_KEY,
    SearchResult,
)

try:
    import psycopg2
    import psycopg2.extras
    import psycopg2.pool
except ImportError:
    psycopg2 = None  # Will be caught at connect() time

logger = logging.getLogger(__name__)

# Whitelist of PostgreSQL text search configs (interpolated into DDL)
VALID_FTS_CONFIGS = frozenset({"english", "simple", "greek", "german", "french", "spanish"})

UPDATABLE_FIELDS = ("title", "content", "document_type", "jurisdiction", "metadata")


@dataclass
class VectorStoreConfig:
    """Configuration for the document repository."""
    connection_string: Optional[str] = None
    table_name: str = "legal_documents"
    embedding_dimensions: int = EMBEDDING_DIMENSIONS
    fts_language: str = "english"
    # Connection pooling settings
    pool_min_connections: int = 2
    pool_max_connections: int = 20
    use_pooling: bool = True  # Set to False for simple single-connection mode
    insert_page_size: int = 500


class DocumentRepository(Protocol):
    """Operations the processing pipeline and search engine rely on."""

    def insert_document(
        self,
        title: str,
        client_id: str,
        content: str = QUEUED_PLACEHOLDER,
        document_type: Optional[str] = None,
        jurisdiction: Optional[str] = None,
        metadata: Optional[dict] = None,
        document_id: Optional[str] = None,
    ) -> str: ...

    def get_document(self, document_id: str, client_id: Optional[str] = None) -> Document: ...

    def insert_chunks(self, chunks: list[ChunkRecord]) -> None: ...

    def update_document(self, document_id: str, fields: dict) -> None: ...

    def transition_status(
        self,
        document_id: str,
        target: ProcessingStatus,
        extra_metadata: Optional[dict] = None,
    ) -> Document: ...

    def commit_processed_document(self, assembled: AssembledDocument) -> None: ...

    def search(
        self,
        query_text: str,
        query_embedding: list[float],
        client_id: str,
        jurisdiction: Optional[str] = None,
        document_type: Optional[str] = None,
        match_count: int = 10,
        k_rrf: int = 60,
        candidate_count: int = 40,
    ) -> list[SearchResult]: ...

    def keyword_search(
        self,
        query_text: str,
        client_id: str,
        jurisdiction: Optional[str] = None,
        document_type: Optional[str] = None,
        match_count: int = 10,
    ) -> list[SearchResult]: ...


def require_tenant(client_id: Optional[str]) -> str:
    """Return the tenant id or raise if it is missing or blank."""
    if client_id is None or not str(client_id).strip():
        raise TenantScopeViolation("A tenant id (client_id) is required")
    return str(client_id).strip()


class VectorStore:
    """
    PostgreSQL document repository with pgvector.

    Features:
    - Cosine similarity + full-text hybrid search (RRF, in SQL)
    - Mandatory tenant filter on every read
    - Batch chunk insert with execute_values
    - Atomic commit of a document's chunk set and its "completed" status
    """

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        """
        Initialize the repository.

        Args:
            config: Optional configuration. Uses env vars if not provided.
        """
        self.config = config or VectorStoreConfig()
        if self.config.fts_language not in VALID_FTS_CONFIGS:
            raise ValueError(f"Unsupported FTS language: {self.config.fts_language}")
        self._conn = None
        self._pool = None
        self._connection_string = (
            self.config.connection_string or
            os.getenv("POSTGRES_URL") or
            os.getenv("DATABASE_URL") or
            "postgresql://localhost:5432/legal_search"
        )

    # =========================================================================
    # Connection management
    # =========================================================================

    def connect(self) -> None:
        """Establish database connection (with optional pooling)."""
        if psycopg2 is None:
            raise ImportError(
                "psycopg2 not installed. Run: pip install psycopg2-binary"
            )
        from psycopg2.extras import RealDictCursor

        try:
            if self.config.use_pooling:
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self.config.pool_min_connections,
                    maxconn=self.config.pool_max_connections,
                    dsn=self._connection_string,
                    cursor_factory=RealDictCursor,
                )
                logger.info(
                    f"Connection pool initialized (min={self.config.pool_min_connections}, "
                    f"max={self.config.pool_max_connections})"
                )
            else:
                self._conn = psycopg2.connect(
                    self._connection_string,
                    cursor_factory=RealDictCursor
                )
                self._conn.autocommit = False
                logger.info("Connected to PostgreSQL with pgvector (single connection)")
        except psycopg2.Error as e:
            logger.error(f"Database connection failed: {e}")
            raise RepositoryError(f"Database connection failed: {e}") from e

    def _get_connection(self):
        """Get a database connection (from pool or single connection)."""
        if self._pool:
            return self._pool.getconn()

        if self._conn is None or self._conn.closed:
            if self._conn is not None:
                logger.warning("Connection closed, reconnecting...")
            self.connect()
        return self._conn

    def _release_connection(self, conn):
        """Release a connection back to the pool (if pooling is enabled)."""
        if self._pool and conn:
            self._pool.putconn(conn)

    def _ensure_connection(self):
        """Ensure we have a connection (pool or single) and return it."""
        if not self._conn and not self._pool:
            self.connect()
        return self._get_connection()

    @contextmanager
    def get_connection(self):
        """
        Context manager for getting a database connection.

        Usage:
            with store.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")

        Automatically releases connection back to pool when done.
        """
        conn = self._ensure_connection()
        try:
            yield conn
        finally:
            self._release_connection(conn)

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def _execute_with_retry(self, operation, label="db_operation"):
        """Execute a DB operation with one retry on stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.

        Raises:
            RepositoryError: the database rejected the operation
        """
        for attempt in range(2):
            conn = self._ensure_connection()
            try:
                result = operation(conn)
                self._release_connection(conn)
                return result
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                self._release_connection(conn)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, reconnecting: {e}")
                    self.close()
                    self.connect()
                    continue
                raise RepositoryError(f"{label} failed: {e}") from e
            except psycopg2.Error as e:
                self._safe_rollback(conn)
                self._release_connection(conn)
                logger.error(f"{label} failed: {e}")
                raise RepositoryError(f"{label} failed: {e}") from e
            except BaseException:
                self._safe_rollback(conn)
                self._release_connection(conn)
                raise

    def close(self) -> None:
        """Close database connection(s)."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")
        if self._conn:
            self._conn.close()
            self._conn = None

    # =========================================================================
    # Schema
    # =========================================================================

    def initialize_schema(self) -> None:
        """Create the table, indexes and hybrid search function if missing."""
        table = self.config.table_name
        dims = self.config.embedding_dimensions
        fts = self.config.fts_language

        schema_sql = f"""
        CREATE EXTENSION IF NOT EXISTS vector;

        CREATE TABLE IF NOT EXISTS {table} (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            client_id UUID NOT NULL,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            document_type TEXT,
            jurisdiction TEXT,
            metadata JSONB NOT NULL DEFAULT '{{}}',
            embedding VECTOR({dims}),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_{table}_client
            ON {table}(client_id);
        CREATE INDEX IF NOT EXISTS idx_{table}_client_filters
            ON {table}(client_id, jurisdiction, document_type);
        CREATE INDEX IF NOT EXISTS idx_{table}_source_document
            ON {table}((metadata->>'source_document_id'));
        CREATE INDEX IF NOT EXISTS idx_{table}_content_fts
            ON {table} USING GIN (to_tsvector('{fts}', content));
        CREATE INDEX IF NOT EXISTS idx_{table}_embedding_hnsw
            ON {table} USING hnsw (embedding vector_cosine_ops);

        CREATE OR REPLACE FUNCTION search_legal_documents(
            query_text TEXT,
            query_embedding VECTOR({dims}),
            client_id UUID,
            jurisdiction TEXT DEFAULT NULL,
            document_type TEXT DEFAULT NULL,
            match_count INT DEFAULT 10,
            k_rrf INT DEFAULT 60,
            candidate_count INT DEFAULT 40
        )
        RETURNS TABLE (
            id UUID,
            title TEXT,
            content TEXT,
            metadata JSONB,
            score DOUBLE PRECISION,
            similarity_score DOUBLE PRECISION,
            keyword_score DOUBLE PRECISION
        )
        LANGUAGE sql STABLE
        AS $$
        WITH scoped AS (
            SELECT d.id, d.content, d.embedding
            FROM {table} d
            WHERE d.client_id = search_legal_documents.client_id
              AND d.embedding IS NOT NULL
              AND (search_legal_documents.jurisdiction IS NULL
                   OR d.jurisdiction = search_legal_documents.jurisdiction)
              AND (search_legal_documents.document_type IS NULL
                   OR d.document_type = search_legal_documents.document_type)
        ),
        semantic AS (
            SELECT s.id,
                   (1 - (s.embedding <=> search_legal_documents.query_embedding))::DOUBLE PRECISION AS similarity,
                   ROW_NUMBER() OVER (
                       ORDER BY s.embedding <=> search_legal_documents.query_embedding, s.id
                   ) AS rank
            FROM scoped s
            ORDER BY rank
            LIMIT search_legal_documents.candidate_count
        ),
        lexical AS (
            SELECT s.id,
                   ts_rank_cd(to_tsvector('{fts}', s.content),
                              websearch_to_tsquery('{fts}', search_legal_documents.query_text))::DOUBLE PRECISION AS relevance,
                   ROW_NUMBER() OVER (
                       ORDER BY ts_rank_cd(to_tsvector('{fts}', s.content),
                                           websearch_to_tsquery('{fts}', search_legal_documents.query_text)) DESC,
                                s.id
                   ) AS rank
            FROM scoped s
            WHERE to_tsvector('{fts}', s.content)
                  @@ websearch_to_tsquery('{fts}', search_legal_documents.query_text)
            ORDER BY rank
            LIMIT search_legal_documents.candidate_count
        ),
        fused AS (
            SELECT COALESCE(sem.id, lex.id) AS id,
                   (COALESCE(1.0 / (search_legal_documents.k_rrf + sem.rank), 0.0)
                    + COALESCE(1.0 / (search_legal_documents.k_rrf + lex.rank), 0.0))::DOUBLE PRECISION AS score,
                   COALESCE(sem.similarity, 0.0)::DOUBLE PRECISION AS similarity_score,
                   COALESCE(lex.relevance, 0.0)::DOUBLE PRECISION AS keyword_score
            FROM semantic sem
            FULL OUTER JOIN lexical lex ON sem.id = lex.id
        )
        SELECT d.id, d.title, d.content, d.metadata,
               f.score, f.similarity_score, f.keyword_score
        FROM fused f
        JOIN {table} d ON d.id = f.id
        ORDER BY f.score DESC, f.similarity_score DESC, f.id
        LIMIT search_legal_documents.match_count
        $$;
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)
                conn.commit()
            logger.info("Schema initialized successfully")

        self._execute_with_retry(_op, "initialize_schema")

    # =========================================================================
    # Documents
    # =========================================================================

    def insert_document(
        self,
        title: str,
        client_id: str,
        content: str = QUEUED_PLACEHOLDER,
        document_type: Optional[str] = None,
        jurisdiction: Optional[str] = None,
        metadata: Optional[dict] = None,
        document_id: Optional[str] = None,
    ) -> str:
        """Insert a source document row and return its id."""
        client_id = require_tenant(client_id)
        metadata = dict(metadata or {})
        metadata.setdefault(STATUS_KEY, ProcessingStatus.QUEUED.value)

        sql = f"""
        INSERT INTO {self.config.table_name}
            (id, client_id, title, content, document_type, jurisdiction, metadata)
        VALUES
            (COALESCE(%s::uuid, gen_random_uuid()), %s::uuid, %s, %s, %s, %s, %s)
        RETURNING id
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (
                    document_id,
                    client_id,
                    title,
                    content,
                    document_type,
                    jurisdiction,
                    json.dumps(metadata),
                ))
                row = cur.fetchone()
                conn.commit()
            return str(row["id"])

        new_id = self._execute_with_retry(_op, "insert_document")
        logger.info(f"Inserted document {new_id} for client {client_id}")
        return new_id

    def get_document(self, document_id: str, client_id: Optional[str] = None) -> Document:
        """
        Fetch a document row.

        ``client_id`` restricts the lookup to one tenant; the pipeline (a
        trusted service) may omit it.
        """
        sql = f"""
        SELECT id, client_id, title, content, document_type, jurisdiction,
               metadata, created_at, updated_at
        FROM {self.config.table_name}
        WHERE id = %s::uuid
        """
        params = [document_id]
        if client_id is not None:
            sql += " AND client_id = %s::uuid"
            params.append(require_tenant(client_id))

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()

        row = self._execute_with_retry(_op, "get_document")
        if row is None:
            raise DocumentNotFoundError(f"Document not found: {document_id}")
        return self._row_to_document(row)

    def update_document(self, document_id: str, fields: dict) -> None:
        """Update whitelisted columns of a document row in its own transaction."""
        def _op(conn):
            self._update_document_with_conn(conn, document_id, fields)
            conn.commit()

        self._execute_with_retry(_op, "update_document")

    def _update_document_with_conn(self, conn, document_id: str, fields: dict) -> None:
        """Update a document using an existing connection (no commit/rollback)."""
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if not fields:
            return

        assignments = []
        params = []
        for name in UPDATABLE_FIELDS:
            if name in fields:
                assignments.append(f"{name} = %s")
                value = fields[name]
                params.append(json.dumps(value) if name == "metadata" else value)
        assignments.append("updated_at = NOW()")
        params.append(document_id)

        sql = f"""
        UPDATE {self.config.table_name}
        SET {", ".join(assignments)}
        WHERE id = %s::uuid
        """
        with conn.cursor() as cur:
            cur.execute(sql, params)
            if cur.rowcount == 0:
                raise DocumentNotFoundError(f"Document not found: {document_id}")

    def _lock_status(self, conn, document_id: str) -> tuple[ProcessingStatus, dict]:
        """Lock the document row and return its current status and metadata."""
        with conn.cursor() as cur:
            cur.execute(
                f"SELECT metadata FROM {self.config.table_name} WHERE id = %s::uuid FOR UPDATE",
                (document_id,),
            )
            row = cur.fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document not found: {document_id}")
        metadata = row["metadata"] or {}
        return ProcessingStatus.from_metadata(metadata), metadata

    def transition_status(
        self,
        document_id: str,
        target: ProcessingStatus,
        extra_metadata: Optional[dict] = None,
    ) -> Document:
        """
        Move a document to ``target`` status under a row lock.

        COMPLETED is not reachable here; use commit_processed_document so the
        chunks land in the same transaction.

        Raises:
            InvalidStatusTransition: move not allowed from the current status
        """
        def _op(conn):
            current, metadata = self._lock_status(conn, document_id)
            new_status = current.transition(target)
            new_metadata = {
                **metadata,
                **(extra_metadata or {}),
                STATUS_KEY: new_status.value,
            }
            self._update_document_with_conn(conn, document_id, {"metadata": new_metadata})
            conn.commit()

        self._execute_with_retry(_op, f"transition_status:{target.value}")
        logger.info(f"Document {document_id} -> {target.value}")
        return self.get_document(document_id)

    # =========================================================================
    # Chunks
    # =========================================================================

    def insert_chunks(self, chunks: list[ChunkRecord]) -> None:
        """Batch insert chunk rows in their own transaction."""
        if not chunks:
            return

        def _op(conn):
            self._insert_chunks_with_conn(conn, chunks)
            conn.commit()

        self._execute_with_retry(_op, "insert_chunks")

    def _insert_chunks_with_conn(self, conn, chunks: list[ChunkRecord]) -> None:
        """
        Insert chunks using an existing connection (no commit/rollback).

        The caller is responsible for calling conn.commit() or conn.rollback().
        """
        from psycopg2.extras import execute_values

        sql = f"""
        INSERT INTO {self.config.table_name}
            (id, client_id, title, content, document_type, jurisdiction, metadata, embedding)
        VALUES %s
        """

        values = []
        for chunk in chunks:
            if len(chunk.embedding) != self.config.embedding_dimensions:
                raise EmbeddingDimensionMismatch(
                    f"Chunk {chunk.chunk_index} embedding has {len(chunk.embedding)} "
                    f"dimensions, expected {self.config.embedding_dimensions}",
                    expected=self.config.embedding_dimensions,
                    actual=len(chunk.embedding),
                )
            values.append((
                chunk.id,
                require_tenant(chunk.client_id),
                chunk.title,
                chunk.content,
                chunk.document_type,
                chunk.jurisdiction,
                json.dumps(chunk.metadata),
                chunk.embedding,
            ))

        with conn.cursor() as cur:
            execute_values(
                cur,
                sql,
                values,
                template="(%s::uuid, %s::uuid, %s, %s, %s, %s, %s, %s::vector)",
                page_size=self.config.insert_page_size,
            )
        logger.info(f"Batch inserted {len(chunks)} chunks")

    def commit_processed_document(self, assembled: AssembledDocument) -> None:
        """
        Insert a document's chunk set and mark it completed, atomically.

        Both writes share one transaction: readers see either the queued or
        processing document with no chunks, or the completed document with
        all of them.
        """
        update = assembled.status_update
        if update.status is not ProcessingStatus.COMPLETED:
            raise ValueError("Status update must move the document to completed")

        def _op(conn):
            current, _ = self._lock_status(conn, update.document_id)
            current.transition(ProcessingStatus.COMPLETED, chunk_count=len(assembled.chunks))
            self._insert_chunks_with_conn(conn, assembled.chunks)
            self._update_document_with_conn(conn, update.document_id, update.fields())
            conn.commit()

        self._execute_with_retry(_op, "commit_processed_document")
        logger.info(
            f"Committed {len(assembled.chunks)} chunks and completed document "
            f"{update.document_id}"
        )

    def get_document_chunks(self, document_id: str, client_id: str) -> list[dict]:
        """Return a document's chunk rows ordered by chunk_index."""
        client_id = require_tenant(client_id)
        sql = f"""
        SELECT id, title, content, metadata
        FROM {self.config.table_name}
        WHERE client_id = %s::uuid
          AND metadata->>'source_document_id' = %s
        ORDER BY (metadata->>'chunk_index')::int
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (client_id, str(document_id)))
                return [dict(row) for row in cur.fetchall()]

        return self._execute_with_retry(_op, "get_document_chunks")

    # =========================================================================
    # Search
    # =========================================================================

    def search(
        self,
        query_text: str,
        query_embedding: list[float],
        client_id: str,
        jurisdiction: Optional[str] = None,
        document_type: Optional[str] = None,
        match_count: int = 10,
        k_rrf: int = 60,
        candidate_count: int = 40,
    ) -> list[SearchResult]:
        """
        Hybrid search via the ``search_legal_documents`` SQL function.

        Args:
            query_text: Raw query for full-text ranking
            query_embedding: Query vector for cosine ranking
            client_id: Tenant id (mandatory)
            jurisdiction: Optional exact-match filter
            document_type: Optional exact-match filter
            match_count: Number of results to return
            k_rrf: RRF smoothing constant
            candidate_count: Depth of each ranking before fusion

        Returns:
            SearchResult list ordered by combined score
        """
        client_id = require_tenant(client_id)
        sql = """
        SELECT id, title, content, metadata, score, similarity_score, keyword_score
        FROM search_legal_documents(%s, %s::vector, %s::uuid, %s, %s, %s, %s, %s)
        """
        params = (
            query_text,
            query_embedding,
            client_id,
            jurisdiction,
            document_type,
            match_count,
            k_rrf,
            max(candidate_count, match_count),
        )

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return [self._row_to_result(row) for row in cur.fetchall()]

        return self._execute_with_retry(_op, "search")

    def keyword_search(
        self,
        query_text: str,
        client_id: str,
        jurisdiction: Optional[str] = None,
        document_type: Optional[str] = None,
        match_count: int = 10,
    ) -> list[SearchResult]:
        """Full-text ranking only (ts_rank_cd), ordered by relevance then id."""
        client_id = require_tenant(client_id)
        fts = self.config.fts_language
        sql = f"""
        SELECT id, title, content, metadata,
               ts_rank_cd(to_tsvector('{fts}', content),
                          websearch_to_tsquery('{fts}', %s))::DOUBLE PRECISION AS keyword_score
        FROM {self.config.table_name}
        WHERE client_id = %s::uuid
          AND embedding IS NOT NULL
          AND (%s::text IS NULL OR jurisdiction = %s)
          AND (%s::text IS NULL OR document_type = %s)
          AND to_tsvector('{fts}', content) @@ websearch_to_tsquery('{fts}', %s)
        ORDER BY keyword_score DESC, id
        LIMIT %s
        """
        params = (
            query_text,
            client_id,
            jurisdiction, jurisdiction,
            document_type, document_type,
            query_text,
            match_count,
        )

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
            return [
                SearchResult(
                    id=str(row["id"]),
                    title=row["title"],
                    content=row["content"],
                    metadata=row["metadata"] or {},
                    score=0.0,
                    keyword_score=float(row["keyword_score"]),
                )
                for row in rows
            ]

        return self._execute_with_retry(_op, "keyword_search")

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _row_to_document(row) -> Document:
        return Document(
            id=str(row["id"]),
            title=row["title"],
            client_id=str(row["client_id"]),
            content=row["content"],
            document_type=row["document_type"],
            jurisdiction=row["jurisdiction"],
            metadata=row["metadata"] or {},
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @staticmethod
    def _row_to_result(row) -> SearchResult:
        return SearchResult(
            id=str(row["id"]),
            title=row["title"],
            content=row["content"],
            metadata=row["metadata"] or {},
            score=float(row["score"]),
            similarity_score=float(row["similarity_score"] or 0.0),
            keyword_score=float(row["keyword_score"] or 0.0),
        )


def get_vector_store(config: Optional[VectorStoreConfig] = None) -> VectorStore:
    """Create and connect a repository from config / environment."""
    store = VectorStore(config)
    store.connect()
    return store
