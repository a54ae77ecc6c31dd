RETRYABLE_HTTP_STATUSES = frozenset({404, 408, 410, 425, 429, 500, 502, 503, 504})


class GenerationError(Exception):
    """Base exception for all generation-related errors."""


class ConfigurationError(GenerationError):
    """Raised when a run cannot start because configuration is missing or invalid."""


class GenerationValidationError(GenerationError):
    """Raised when an input image or request value fails validation."""


class ProviderRequestError(GenerationError):
    """Raised when a provider call fails at the HTTP or transport level."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientProviderError(ProviderRequestError):
    """Raised for HTTP statuses that may succeed on a later attempt."""


class TerminalProviderError(GenerationError):
    """Raised when a job fails or never yields a usable output."""


class PollTimeoutError(GenerationError):
    """Raised when job polling exceeds its time budget."""


class GenerationAbortedError(GenerationError):
    """Raised when a run observes its cancel signal."""


def error_for_status(status: int, message: str) -> ProviderRequestError:
    """Classify an HTTP failure status into the retryable or fatal error type."""
    if status in RETRYABLE_HTTP_STATUSES:
        return TransientProviderError(message, status=status)
    return ProviderRequestError(message, status=status)
