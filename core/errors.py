"""
Journal Recall Error Types

Provides:
- A single base exception with structured details
- Input validation errors (also ValueErrors)
- Wrappers for embedding and storage failures that keep the original error

Usage:
    from core.errors import InvalidInputError, VectorStoreError

    if not text.strip():
        raise InvalidInputError("Cannot embed empty text", index=3)
"""

from typing import Optional


# =============================================================================
# Base Exception
# =============================================================================

class RecallError(Exception):
    """Base exception for Journal Recall errors."""

    error_type = 'internal_error'
    message = 'An unexpected error occurred'

    def __init__(self, message=None, **kwargs):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = kwargs

    def to_dict(self):
        return {
            'error': self.error_type,
            'message': self.message,
            'details': self.details
        }


# =============================================================================
# Input Errors
# =============================================================================

class InvalidInputError(RecallError, ValueError):
    """Invalid input data."""
    error_type = 'invalid_input'
    message = 'Invalid input'


class DimensionMismatchError(InvalidInputError):
    """Embedding length does not match the configured dimension."""
    error_type = 'dimension_mismatch'
    message = 'Embedding dimension mismatch'


class ConfigurationError(RecallError):
    """Configuration issue."""
    error_type = 'configuration_error'
    message = 'Invalid configuration'


# =============================================================================
# Dependency Failures
# =============================================================================

class DependencyError(RecallError):
    """A failure raised by an external capability (model, database)."""

    def __init__(
        self,
        message=None,
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.original_error = original_error


class EmbeddingError(DependencyError):
    """Embedding generation failed."""
    error_type = 'embedding_error'
    message = 'Embedding generation failed'


class VectorStoreError(DependencyError):
    """Vector store operation failed."""
    error_type = 'vector_store_error'
    message = 'Vector store operation failed'


# =============================================================================
# Search State
# =============================================================================

class IndexNotReadyError(RecallError):
    """Keyword index queried before it was built."""
    error_type = 'index_not_ready'
    message = 'Keyword index has not been built'


class SearchError(RecallError):
    """Search operation failed."""
    error_type = 'search_error'
    message = 'Search operation failed'
