"""Result types shared by all URL readers."""

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import IO, Protocol, TypeAlias

ReadTreeFilter: TypeAlias = Callable[[str], bool]
"""Predicate on a file path relative to the requested tree."""


@dataclass(frozen=True)
class ReadUrlResponse:
    """Response of a single file read.

    The body is not read until :meth:`buffer` (or :meth:`stream`) is awaited,
    both release the connection once done. A caller that does not read the
    body must await :meth:`aclose`.

    Attributes:
        buffer: Coroutine function returning the whole body
        stream: Async iterator factory over the body chunks
        aclose: Coroutine function releasing the unread body
        etag: ETag response header, if the server sent one
    """

    buffer: Callable[[], Awaitable[bytes]] = field(repr=False)
    stream: Callable[[], AsyncIterator[bytes]] = field(repr=False)
    aclose: Callable[[], Awaitable[None]] = field(repr=False)
    etag: str | None = None


@dataclass(frozen=True)
class ReadTreeFile:
    """A file of a tree, with its path relative to the requested sub-path."""

    path: str
    content: bytes = field(repr=False)


class ReadTreeResponse(Protocol):
    """Files of a repository tree at a given revision.

    The body can be consumed once, through exactly one of
    :meth:`files`, :meth:`archive` or :meth:`dir`.
    """

    etag: str
    """Revision fingerprint of the fetched tree"""

    async def files(self) -> list[ReadTreeFile]:
        """Return the (filtered) files of the tree."""
        ...

    async def archive(self) -> IO[bytes]:
        """Return the (filtered) files repacked as an uncompressed tar stream."""
        ...

    async def dir(self, target_dir: str | None = None) -> str:
        """Extract the (filtered) files and return the directory holding them."""
        ...


@dataclass(frozen=True)
class SearchResponseFile:
    """A file matched by a search, addressed by its fully-qualified URL."""

    url: str
    content: bytes = field(repr=False)


@dataclass(frozen=True)
class SearchResponse:
    """Files matched by a search at a given revision."""

    etag: str
    files: list[SearchResponseFile] = field(default_factory=list)
