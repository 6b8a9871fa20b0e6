"""
Embedding Service for Legal Search

Turns a text segment into a fixed-dimension vector via Gemini
(gemini-embedding-001), Cohere (embed-v4.0) or OpenAI
(text-embedding-3-small). Every provider is asked for 1536 dimensions and
every returned vector is checked against that before it leaves this module.

Architecture:
    BaseEmbeddingService  -- task hints, validation, timeout + bounded retry,
                             concurrent embed_documents, embed_query
        GeminiEmbeddingService  -- Google Generative AI provider (default)
        CohereEmbeddingService  -- Cohere ClientV2 provider
        OpenAIEmbeddingService  -- OpenAI provider

The service keeps no state between calls: no embedding cache and no
session beyond the provider SDK client.
"""

import os
import logging
from enum import Enum
from typing import Optional, Union
from dataclasses import dataclass, replace
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from .errors import EmbeddingDimensionMismatch, EmbeddingProviderError

logger = logging.getLogger(__name__)

# Every vector in the corpus must have exactly this many components
EMBEDDING_DIMENSIONS = 1536

DEFAULT_MODELS = {
    "gemini": "gemini-embedding-001",
    "cohere": "embed-v4.0",
    "openai": "text-embedding-3-small",
}


class TaskType(str, Enum):
    """What the embedding will be used for."""
    DOCUMENT = "document"  # index this content
    QUERY = "query"        # find matches for this query


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "gemini"  # "gemini", "cohere" or "openai"
    # Defaults to the provider's model from DEFAULT_MODELS
    model: Optional[str] = None
    dimensions: int = EMBEDDING_DIMENSIONS
    timeout_seconds: float = 30.0
    # Retries after the first attempt; provider errors only
    max_retries: int = 3
    retry_initial_wait: float = 1.0
    retry_max_wait: float = 10.0
    retry_jitter: float = 1.0
    # Parallel per-segment calls in embed_documents (provider rate limits)
    max_concurrency: int = 4

    def __post_init__(self):
        self.provider = self.provider.lower()
        if self.model is None:
            self.model = DEFAULT_MODELS.get(self.provider)

    @classmethod
    def from_env(cls, provider: Optional[str] = None) -> "EmbeddingConfig":
        """Build a config from EMBEDDING_* environment variables."""
        name = (provider or os.getenv("EMBEDDING_PROVIDER") or "gemini").lower()
        if name not in DEFAULT_MODELS:
            raise ValueError(
                f"Unsupported embedding provider: {name}. "
                f"Choose one of {sorted(DEFAULT_MODELS)}"
            )
        return cls(
            provider=name,
            model=os.getenv("EMBEDDING_MODEL") or DEFAULT_MODELS[name],
            timeout_seconds=float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30")),
            max_retries=int(os.getenv("EMBEDDING_MAX_RETRIES", "3")),
            max_concurrency=int(os.getenv("EMBEDDING_MAX_CONCURRENCY", "4")),
        )


def validate_embedding(
    vector,
    expected_dimensions: int = EMBEDDING_DIMENSIONS,
    label: str = "embedding",
) -> list[float]:
    """
    Check a provider vector and return it as a plain list of floats.

    Raises:
        EmbeddingDimensionMismatch: vector is absent, not a flat numeric
            array, has the wrong length, or contains NaN/inf values.
    """
    if vector is None:
        raise EmbeddingDimensionMismatch(
            f"Missing {label}: provider returned no vector",
            expected=expected_dimensions,
            actual=None,
        )

    try:
        array = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError):
        raise EmbeddingDimensionMismatch(
            f"Invalid {label}: vector is not numeric",
            expected=expected_dimensions,
            actual=None,
        )

    if array.ndim != 1:
        raise EmbeddingDimensionMismatch(
            f"Invalid {label}: expected a flat vector, got shape {array.shape}",
            expected=expected_dimensions,
            actual=None,
        )

    if array.shape[0] != expected_dimensions:
        raise EmbeddingDimensionMismatch(
            f"Invalid {label} dimensions: expected {expected_dimensions}, "
            f"got {array.shape[0]}",
            expected=expected_dimensions,
            actual=int(array.shape[0]),
        )

    if not np.all(np.isfinite(array)):
        raise EmbeddingDimensionMismatch(
            f"Invalid {label}: vector contains non-finite values",
            expected=expected_dimensions,
            actual=int(array.shape[0]),
        )

    return array.tolist()


class BaseEmbeddingService:
    """
    Base class for API-based embedding services.

    Provides shared functionality:
    - Task hint mapping (document vs query)
    - Dimension validation of every returned vector
    - Bounded retry with exponential backoff on provider failures
    - Concurrent, all-or-nothing embedding of a document's segments

    Subclasses only need to implement:
    - _init_client(): Initialize the provider-specific API client
    - _call_provider(text, input_type, title): One embedding request

    And set these class attributes:
    - _provider_name: Human-readable provider name for error messages
    - _env_var_name: Environment variable name for the API key
    - _task_input_types: Provider-specific strings for each TaskType
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""
    _task_input_types: dict = {
        TaskType.DOCUMENT: "document",
        TaskType.QUERY: "query",
    }

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
        """
        self.config = config or EmbeddingConfig()
        self._client = None
        self._init_client()

    def _init_client(self):
        """Initialize the provider-specific API client. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _init_client()")

    def _call_provider(self, text: str, input_type: str, title: Optional[str] = None):
        """Send one embedding request. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _call_provider()")

    def _api_key(self) -> Optional[str]:
        api_key = os.getenv(self._env_var_name)
        if not api_key:
            logger.warning(
                f"{self._env_var_name} not found. Embeddings will fail. "
                "Set the environment variable or use a different provider."
            )
        return api_key

    def embed(
        self,
        text: str,
        task: TaskType = TaskType.DOCUMENT,
        title: Optional[str] = None,
    ) -> list[float]:
        """
        Embed a single text segment.

        Args:
            text: Segment or query text
            task: TaskType.DOCUMENT for indexing, TaskType.QUERY for search
            title: Source document title, sent with document-task calls
                where the provider accepts one

        Returns:
            Vector of exactly ``config.dimensions`` floats

        Raises:
            EmbeddingProviderError: provider unreachable, timed out or failed
                after the retry budget
            EmbeddingDimensionMismatch: provider returned a malformed vector
        """
        if not self._client:
            raise EmbeddingProviderError(
                f"{self._provider_name} client not initialized. "
                f"Check {self._env_var_name}."
            )

        input_type = self._task_input_types[TaskType(task)]
        if task != TaskType.DOCUMENT:
            title = None
        vector = self._call_with_retry(text, input_type, title)
        return validate_embedding(vector, self.config.dimensions)

    def embed_query(self, query: str) -> list[float]:
        """
        Generate embedding for a search query.

        Uses the query task hint for better query-document matching.
        """
        return self.embed(query, TaskType.QUERY)

    def embed_documents(
        self,
        texts: list[str],
        title: Optional[str] = None,
    ) -> list[list[float]]:
        """
        Generate embeddings for a document's segments.

        Segments are embedded concurrently (at most ``max_concurrency``
        requests in flight). Results are index-aligned with ``texts``. The
        first failure cancels pending requests and is re-raised, so callers
        either get every vector or none.
        """
        if not texts:
            return []

        workers = max(1, min(self.config.max_concurrency, len(texts)))
        logger.info(
            f"Embedding {len(texts)} segments with {self._provider_name}"
            f" ({workers} concurrent)"
        )

        embeddings: list[Optional[list[float]]] = [None] * len(texts)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.embed, text, TaskType.DOCUMENT, title): idx
                for idx, text in enumerate(texts)
            }
            try:
                for future in as_completed(futures):
                    embeddings[futures[future]] = future.result()
            except BaseException:
                executor.shutdown(wait=False, cancel_futures=True)
                raise

        return embeddings

    def _call_with_retry(self, text: str, input_type: str, title: Optional[str] = None):
        retryer = Retrying(
            stop=stop_after_attempt(self.config.max_retries + 1),
            wait=wait_exponential_jitter(
                initial=self.config.retry_initial_wait,
                max=self.config.retry_max_wait,
                jitter=self.config.retry_jitter,
            ),
            retry=retry_if_exception_type(EmbeddingProviderError),
            before_sleep=lambda retry_state: logger.warning(
                f"{self._provider_name} embedding retry "
                f"{retry_state.attempt_number}/{self.config.max_retries}: "
                f"{retry_state.outcome.exception()}"
            ),
            reraise=True,
        )
        return retryer(self._call_once, text, input_type, title)

    def _call_once(self, text: str, input_type: str, title: Optional[str] = None):
        try:
            return self._call_provider(text, input_type, title)
        except EmbeddingDimensionMismatch:
            raise
        except Exception as e:
            raise EmbeddingProviderError(
                f"{self._provider_name} embedding failed: {e}",
                provider=self._provider_name,
            ) from e

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions

    @property
    def provider_name(self) -> str:
        return self._provider_name


class GeminiEmbeddingService(BaseEmbeddingService):
    """
    Generates embeddings using Google's gemini-embedding-001 model.

    The model natively produces 3072 dimensions; ``output_dimensionality``
    truncates to the configured size.
    """

    _provider_name = "Gemini"
    _env_var_name = "GEMINI_API_KEY"
    _task_input_types = {
        TaskType.DOCUMENT: "retrieval_document",
        TaskType.QUERY: "retrieval_query",
    }

    def _init_client(self):
        """Configure the google-generativeai module."""
        api_key = self._api_key()
        if not api_key:
            return

        try:
            import google.generativeai as genai
        except ImportError:
            logger.error("google-generativeai not installed. Run: pip install google-generativeai")
            raise

        genai.configure(api_key=api_key)
        self._client = genai
        logger.info(f"Gemini client initialized with model {self.config.model}")

    def _call_provider(self, text: str, input_type: str, title: Optional[str] = None):
        options = {}
        # The API only accepts a title with retrieval_document
        if title and input_type == "retrieval_document":
            options["title"] = title
        result = self._client.embed_content(
            model=f"models/{self.config.model}",
            content=text,
            task_type=input_type,
            output_dimensionality=self.config.dimensions,
            request_options={"timeout": self.config.timeout_seconds},
            **options,
        )
        return result.get("embedding") if result else None


class CohereEmbeddingService(BaseEmbeddingService):
    """
    Generates embeddings using Cohere's embed-v4.0 model.

    embed-v4.0 supports Matryoshka output sizes (256-1536) and distinct
    input types for documents vs queries.
    """

    _provider_name = "Cohere"
    _env_var_name = "COHERE_API_KEY"
    _task_input_types = {
        TaskType.DOCUMENT: "search_document",
        TaskType.QUERY: "search_query",
    }

    def _init_client(self):
        """Initialize the Cohere client."""
        api_key = self._api_key()
        if not api_key:
            return

        try:
            import cohere
        except ImportError:
            logger.error("Cohere package not installed. Run: pip install cohere")
            raise

        self._client = cohere.ClientV2(api_key=api_key, timeout=self.config.timeout_seconds)
        logger.info(f"Cohere client initialized with model {self.config.model}")

    def _call_provider(self, text: str, input_type: str, title: Optional[str] = None):
        response = self._client.embed(
            texts=[text],
            model=self.config.model,
            input_type=input_type,
            embedding_types=["float"],
            output_dimension=self.config.dimensions,
        )
        vectors = response.embeddings.float_ if response.embeddings else None
        return vectors[0] if vectors else None


class OpenAIEmbeddingService(BaseEmbeddingService):
    """
    Generates embeddings using OpenAI's text-embedding-3-small model.

    OpenAI has no task distinction, so both task hints map to the same call.
    """

    _provider_name = "OpenAI"
    _env_var_name = "OPENAI_API_KEY"
    _task_input_types = {
        TaskType.DOCUMENT: "document",
        TaskType.QUERY: "query",
    }

    def _init_client(self):
        """Initialize the OpenAI client (SDK retries off; tenacity owns the budget)."""
        api_key = self._api_key()
        if not api_key:
            return

        try:
            from openai import OpenAI
        except ImportError:
            logger.error("openai package not installed. Run: pip install openai")
            raise

        self._client = OpenAI(
            api_key=api_key,
            timeout=self.config.timeout_seconds,
            max_retries=0,
        )
        logger.info(f"OpenAI client initialized with model {self.config.model}")

    def _call_provider(self, text: str, input_type: str, title: Optional[str] = None):
        response = self._client.embeddings.create(
            model=self.config.model,
            input=text,
            dimensions=self.config.dimensions,
        )
        return response.data[0].embedding if response.data else None


_PROVIDERS = {
    "gemini": GeminiEmbeddingService,
    "cohere": CohereEmbeddingService,
    "openai": OpenAIEmbeddingService,
}


def get_embedding_service(
    provider: Optional[str] = None,
    config: Optional[EmbeddingConfig] = None,
) -> Union[GeminiEmbeddingService, CohereEmbeddingService, OpenAIEmbeddingService]:
    """
    Factory function to get appropriate embedding service.

    Args:
        provider: "gemini" (default), "cohere" or "openai". Falls back to the
            EMBEDDING_PROVIDER environment variable.
        config: Optional explicit configuration. ``provider`` overrides
            ``config.provider`` when both are given.

    Returns:
        Configured embedding service
    """
    if config is None:
        config = EmbeddingConfig.from_env(provider)
    elif provider and provider.lower() != config.provider:
        name = provider.lower()
        model = config.model
        # A default model only makes sense for its own provider
        if model == DEFAULT_MODELS.get(config.provider):
            model = DEFAULT_MODELS.get(name, model)
        config = replace(config, provider=name, model=model)

    service_cls = _PROVIDERS.get(config.provider)
    if service_cls is None:
        raise ValueError(f"Unsupported embedding provider: {config.provider}")
    return service_cls(config)


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    service = get_embedding_service()
    print(f"Using embedding provider: {service.provider_name}")

    if len(sys.argv) > 1:
        query = " ".join(sys.argv[1:])
    else:
        query = "What are the termination clauses in this contract?"

    print(f"Query: {query}")
    embedding = service.embed_query(query)
    print(f"Embedding dimensions: {len(embedding)}")
    print(f"First 10 values: {embedding[:10]}")
