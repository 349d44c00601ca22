"""Errors raised by URL readers.

Every reader surfaces failures immediately; nothing is retried or swallowed.
"""


class UrlReaderError(Exception):
    """Base class for all URL reader errors."""


class NotFoundError(UrlReaderError):
    """The requested file, tree or repository does not exist (HTTP 404)."""


class NotModifiedError(UrlReaderError):
    """The caller's cached copy identified by its etag is still valid."""

    def __init__(self, message: str = "Content has not been modified") -> None:
        super().__init__(message)


class TransportFailureError(UrlReaderError):
    """The remote host could not be reached."""


class UnexpectedResponseError(UrlReaderError):
    """The remote host answered with an unexpected status or body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotAllowedError(UrlReaderError):
    """No registered reader accepts the URL."""


class ResponseConsumedError(UrlReaderError):
    """A tree response body was read more than once."""

    def __init__(self, message: str = "Response has already been read") -> None:
        super().__init__(message)
