"""
Error types raised by the discovery response engine.

Each error is scoped to the smallest unit of data it affects; none of them
is fatal to the process.
"""
from typing import Any, Dict, Optional


class DiscoveryError(Exception):
    """Base error with a structured payload for API responses."""

    http_status = 500

    def __init__(self, message: str, error_code: str, retryable: bool = False, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.retryable = retryable
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': self.message,
            'error_code': self.error_code,
            'retryable': self.retryable,
            'details': self.details
        }


class ExtractionError(DiscoveryError):
    """A discovery document could not be extracted. Prior data is untouched."""

    http_status = 502

    def __init__(self, message: str, retryable: bool = True, details: Optional[Dict] = None):
        super().__init__(message, 'EXTRACTION_FAILED', retryable, details)


class GenerationError(DiscoveryError):
    """A generation call failed; the targeted slot is left unchanged."""

    http_status = 502

    def __init__(self, message: str, retryable: bool = True, details: Optional[Dict] = None):
        super().__init__(message, 'GENERATION_FAILED', retryable, details)


class NotificationError(DiscoveryError):
    """An SMS could not be delivered. Never rolls back workflow state."""

    http_status = 502

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, 'NOTIFICATION_FAILED', True, details)


class ValidationError(DiscoveryError):
    """A required input or selection is missing; the transition is blocked."""

    http_status = 400

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, 'VALIDATION_FAILED', False, details)


class NotFoundError(DiscoveryError):
    http_status = 404

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, 'NOT_FOUND', False, details)


class BusyError(DiscoveryError):
    """The same operation is already running for this case."""

    http_status = 409

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, 'OPERATION_IN_PROGRESS', True, details)


class StoreError(DiscoveryError):
    """The durable store rejected or failed a request."""

    http_status = 503

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, 'STORE_ERROR', True, details)
