"""
Error Handling for the Search Core

Provides:
- Custom exception classes
- Graceful degradation for read paths

Usage:
    from stocksearch.core.errors import InvalidVectorError, safe_operation

    if not is_valid_vector(vector):
        raise InvalidVectorError("Vector contains NaN or Inf", item_id=item_id)

    @safe_operation(default_value=[])
    def fetch_rows():
        ...
"""

import logging
import sqlite3
from functools import wraps

logger = logging.getLogger('stocksearch.errors')


# =============================================================================
# Custom Exceptions
# =============================================================================

class StockSearchError(Exception):
    """Base exception for search core errors."""

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


class ConfigurationError(StockSearchError):
    """Configuration issue."""
    error_type = 'configuration_error'
    message = 'Invalid search configuration'


class DatabaseError(StockSearchError):
    """Database operation failed."""
    error_type = 'database_error'
    message = 'Database operation failed'


class SetupFailedError(StockSearchError):
    """Index structures could not be created or backfilled."""
    error_type = 'setup_failed'
    message = 'Search index setup failed'


class InvalidVectorError(StockSearchError):
    """Vector is empty or contains NaN/Inf. Do not retry with the same vector."""
    error_type = 'invalid_vector'
    message = 'Invalid vector'


class SearchError(StockSearchError):
    """Search operation failed."""
    error_type = 'search_error'
    message = 'Search operation failed'


# =============================================================================
# Error Recovery Utilities
# =============================================================================

def safe_operation(default_value=None, exceptions=(sqlite3.Error, DatabaseError)):
    """
    Decorator for read operations that degrade to a default when the store
    is unreachable.

    Only the listed exceptions are absorbed; anything else propagates.

    Usage:
        @safe_operation(default_value=[])
        def search(self, query):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except exceptions as e:
                logger.warning(
                    f'Store unavailable in {func.__name__}: {e}',
                    extra={'function': func.__name__, 'error': str(e)}
                )
                return default_value() if callable(default_value) else default_value
        return wrapper
    return decorator
