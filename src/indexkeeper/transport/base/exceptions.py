"""Transport-level exceptions.

Every transport translates its client library's errors into these so the
migration core can decide what to retry without knowing the backend.
"""


class TransportError(Exception):
    """Base exception for transport errors. Retryable unless a subclass says otherwise."""


class TransportTimeout(TransportError):
    """Raised when an outbound call exceeds the configured request timeout."""


class NotFoundError(TransportError):
    """Raised when the addressed index, alias or document does not exist."""


class ConflictError(TransportError):
    """Raised on version conflicts and on creating a resource that already exists."""


class ConfigurationError(TransportError):
    """Raised when transport configuration is invalid."""


NON_RETRYABLE: tuple[type[TransportError], ...] = (NotFoundError, ConflictError, ConfigurationError)


def is_retryable(error: BaseException) -> bool:
    """Return True for transient transport failures."""
    return isinstance(error, TransportError) and not isinstance(error, NON_RETRYABLE)
