"""Shared exceptions for service layer operations."""


class BookmarkError(Exception):
    """Base class for errors raised by the bookmark sync core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(BookmarkError):
    """
    Raised when user input (url, title, category, tags) is invalid.

    Always raised before any optimistic state change or remote call.
    """


class PersistenceError(BookmarkError):
    """
    Raised when a remote store call fails.

    Optimistic operations roll back their local change before this propagates;
    non-optimistic operations (add, import) leave the collection untouched.
    """

    def __init__(self, operation: str, message: str, status_code: int | None = None) -> None:
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{operation} failed: {message}")


class ClassificationError(BookmarkError):
    """
    Raised by the classifier gateway when categorization fails or times out.

    Never reaches engine callers: the engine falls back to the domain guess.
    """


class FeedError(BookmarkError):
    """Raised for change-feed transport problems and malformed events."""
