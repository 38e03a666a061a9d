"""
Core utilities for Journal Recall: configuration, logging and error types.
"""

from .config import SearchConfig, load_config
from .errors import (
    RecallError, InvalidInputError, DimensionMismatchError, ConfigurationError,
    DependencyError, EmbeddingError, VectorStoreError, IndexNotReadyError, SearchError,
)
from .logging_config import setup_logging, get_logger, log_performance

__all__ = [
    'SearchConfig',
    'load_config',
    'RecallError',
    'InvalidInputError',
    'DimensionMismatchError',
    'ConfigurationError',
    'DependencyError',
    'EmbeddingError',
    'VectorStoreError',
    'IndexNotReadyError',
    'SearchError',
    'setup_logging',
    'get_logger',
    'log_performance',
]
