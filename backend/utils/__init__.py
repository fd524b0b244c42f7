"""
Utils Package

Provides utility modules for:
- errors: Classified error taxonomy shared by every module
- error_handlers: HTTP rendering of classified errors
"""

from .errors import (
    ResilienceError,
    ValidationError,
    RateLimitError,
    IntegrationError,
    CircuitOpenError,
    is_retryable,
)
