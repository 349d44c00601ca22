"""Protocols for URL readers.

Defines the interface every source control backend implements, so callers can
read a URL from any configured git host without host-specific logic.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from url_reader.models import (
    ReadTreeFilter,
    ReadTreeResponse,
    ReadUrlResponse,
    SearchResponse,
)


class UrlReaderProtocol(Protocol):
    """Protocol for URL readers (Bitbucket Server, etc.)."""

    async def read(self, url: str) -> bytes:
        """Read the file at `url` into memory.

        Raises:
            NotFoundError: If the file does not exist
        """
        ...

    async def read_url(self, url: str, etag: str | None = None) -> ReadUrlResponse:
        """Read the file at `url`.

        Args:
            url: File URL
            etag: ETag of a previous read; unchanged content raises NotModifiedError

        Returns:
            Response with a deferred body and the current ETag
        """
        ...

    async def read_tree(
        self,
        url: str,
        etag: str | None = None,
        filter: ReadTreeFilter | None = None,  # noqa: A002
    ) -> ReadTreeResponse:
        """Read the tree (repository or directory) at `url`.

        Args:
            url: Repository or directory URL
            etag: Fingerprint of a previous read; an unchanged tree raises
                NotModifiedError without downloading anything
            filter: Optional predicate on file paths relative to the tree

        Returns:
            Tree response annotated with the current fingerprint
        """
        ...

    async def search(self, url: str, etag: str | None = None) -> SearchResponse:
        """Find files matching the glob pattern in the path of `url`.

        Args:
            url: URL whose file path is a glob pattern
            etag: Fingerprint of a previous search

        Returns:
            Matched files addressed by fully-qualified URLs
        """
        ...


@dataclass(frozen=True)
class ReaderRegistration:
    """A reader and the predicate selecting the URLs it handles."""

    reader: UrlReaderProtocol
    predicate: Callable[[str], bool]
