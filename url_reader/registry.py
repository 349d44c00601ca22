"""URL reader registry for dispatching URLs to the reader of their host.

Implements registry pattern for extensible source control host support.
"""

import httpx

from url_reader.config import Settings
from url_reader.errors import NotAllowedError
from url_reader.models import (
    ReadTreeFilter,
    ReadTreeResponse,
    ReadUrlResponse,
    SearchResponse,
)
from url_reader.reader_protocol import ReaderRegistration, UrlReaderProtocol
from url_reader.readers import BitbucketServerUrlReader
from url_reader.tree import ReadTreeResponseFactory


class UrlReaderRegistry:
    """Registry for URL readers.

    Holds reader registrations and forwards every operation to the first
    reader whose predicate accepts the URL. The registry itself implements
    UrlReaderProtocol.

    Example:
        >>> registry = UrlReaderRegistry()
        >>> for registration in BitbucketServerUrlReader.factory(settings):
        ...     registry.register(registration)
        >>> content = await registry.read(
        ...     "https://bitbucket.example.com/projects/PROJ/repos/repo/browse/README.md"
        ... )
    """

    def __init__(self) -> None:
        """Initialize empty reader registry."""
        self._registrations: list[ReaderRegistration] = []

    def register(self, registration: ReaderRegistration) -> None:
        """Register a reader with the predicate selecting its URLs."""
        self._registrations.append(registration)

    def detect_reader(self, url: str) -> UrlReaderProtocol:
        """Find the reader handling `url`.

        Raises:
            NotAllowedError: If no registered reader accepts the URL
        """
        for registration in self._registrations:
            if registration.predicate(url):
                return registration.reader

        msg = (
            f"Reading from '{url}' is not allowed. You may need to configure an "
            "integration for the target host"
        )
        raise NotAllowedError(msg)

    def list_readers(self) -> list[UrlReaderProtocol]:
        return [registration.reader for registration in self._registrations]

    async def read(self, url: str) -> bytes:
        return await self.detect_reader(url).read(url)

    async def read_url(self, url: str, etag: str | None = None) -> ReadUrlResponse:
        return await self.detect_reader(url).read_url(url, etag=etag)

    async def read_tree(
        self,
        url: str,
        etag: str | None = None,
        filter: ReadTreeFilter | None = None,  # noqa: A002
    ) -> ReadTreeResponse:
        return await self.detect_reader(url).read_tree(url, etag=etag, filter=filter)

    async def search(self, url: str, etag: str | None = None) -> SearchResponse:
        return await self.detect_reader(url).search(url, etag=etag)

    async def aclose(self) -> None:
        """Close the HTTP clients of all registered readers."""
        for reader in self.list_readers():
            if aclose := getattr(reader, "aclose", None):
                await aclose()

    def __str__(self) -> str:
        readers = ",".join(str(reader) for reader in self.list_readers())
        return f"predicateMux{{readers={readers}}}"


def create_default_registry(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> UrlReaderRegistry:
    """Create URL reader registry with readers for all configured integrations.

    Args:
        settings: Settings to read integrations from (default: environment)
        transport: Optional httpx transport shared by all readers

    Returns:
        UrlReaderRegistry with one reader per configured host
    """
    settings = settings or Settings()
    tree_response_factory = ReadTreeResponseFactory(
        spool_max_size=settings.spool_max_size
    )
    registry = UrlReaderRegistry()
    for registration in BitbucketServerUrlReader.factory(
        settings, tree_response_factory, transport=transport
    ):
        registry.register(registration)
    return registry
