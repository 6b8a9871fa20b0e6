"""
Error taxonomy for the legal search core.

Every error surfaced to a caller carries a stable ``kind`` and a
human-readable message so it can be reported as structured data.
"""

from typing import Optional


class LegalSearchError(Exception):
    """Base class for all errors raised by the processing and search core."""

    kind: str = "legal_search_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        data = {"kind": self.kind, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ExtractionError(LegalSearchError):
    """Source file format is unsupported or unreadable."""

    kind = "extraction_error"


class UploadRejectedError(LegalSearchError):
    """Upload failed validation (MIME type, size)."""

    kind = "upload_rejected"


class ChunkingConfigError(LegalSearchError):
    """Invalid chunk size / overlap combination."""

    kind = "chunking_config_error"


class EmbeddingProviderError(LegalSearchError):
    """Embedding provider timed out, refused, or returned an error."""

    kind = "embedding_provider_error"


class EmbeddingDimensionMismatch(LegalSearchError):
    """Provider returned a vector that is missing or has the wrong length."""

    kind = "embedding_dimension_mismatch"

    def __init__(self, message: str, expected: int, actual: Optional[int]):
        super().__init__(message, expected=expected, actual=actual)
        self.expected = expected
        self.actual = actual


class AlignmentError(LegalSearchError):
    """Segment and embedding counts differ. Indicates a pipeline bug."""

    kind = "alignment_error"


class InvalidStatusTransition(LegalSearchError):
    """Document lifecycle transition not permitted."""

    kind = "invalid_status_transition"


class TenantScopeViolation(LegalSearchError):
    """Operation attempted without a tenant id."""

    kind = "tenant_scope_violation"


class EmptyQueryError(LegalSearchError):
    """Search query is empty after normalisation."""

    kind = "empty_query"


class DocumentNotFoundError(LegalSearchError):
    """Document id does not exist (or is outside the caller's tenant)."""

    kind = "document_not_found"


class RepositoryError(LegalSearchError):
    """Database operation failed."""

    kind = "repository_error"


class StorageError(LegalSearchError):
    """Object store could not return the requested file."""

    kind = "storage_error"
