"""
Typed errors raised by the ingestion and query pipelines.
Each carries the HTTP status the routes translate it to.
"""


class ManualQAError(Exception):
    """Base class for all pipeline errors."""

    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ExtractionFailure(ManualQAError):
    """No usable text could be extracted from a supported file."""

    http_status = 422


class UnsupportedFormatError(ManualQAError):
    """Raised at the HTTP boundary when the extractor reports an unsupported format."""

    http_status = 415


class EmbeddingServiceError(ManualQAError):
    """The embedding service failed or returned a malformed response."""

    http_status = 502


class GenerationError(ManualQAError):
    """The generation provider failed or returned nothing usable."""

    http_status = 502


class DocumentNotFoundError(ManualQAError):
    http_status = 404


class StorageError(ManualQAError):
    """Reading or writing the blob storage failed."""


class StoreError(ManualQAError):
    """The corpus store (database) rejected an operation."""
