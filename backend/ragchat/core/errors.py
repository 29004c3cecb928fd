"""
Archive error kinds.

NotFound and InvalidInput are surfaced to callers untranslated. StorageFailure
wraps a transaction that could not commit. Throttling is not an error: it is the
False result of RateLimiter.try_consume.
"""


class ArchiveError(Exception):
    """Base class for errors raised by the chat archive."""
    pass


class NotFound(ArchiveError):
    """Raised when an id does not resolve within the caller's tenant scope."""
    pass


class InvalidInput(ArchiveError):
    """Raised when an argument fails validation."""
    pass


class StorageFailure(ArchiveError):
    """Raised when the underlying transaction cannot be committed."""
    pass


SESSION_NOT_FOUND = "Chat session not found"
MESSAGE_NOT_FOUND = "Message not found"
