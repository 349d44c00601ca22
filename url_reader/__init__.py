"""URL readers for source control hosts.

Reads files, trees and glob searches from git hosting REST APIs and returns
them in host-independent shapes, with etag-based change detection.

Example:
    >>> from url_reader import create_default_registry
    >>> registry = create_default_registry()
    >>> tree = await registry.read_tree(
    ...     "https://bitbucket.example.com/projects/PROJ/repos/repo/browse/docs"
    ... )
    >>> files = await tree.files()
"""

from url_reader.errors import (
    NotAllowedError,
    NotFoundError,
    NotModifiedError,
    ResponseConsumedError,
    TransportFailureError,
    UnexpectedResponseError,
    UrlReaderError,
)
from url_reader.models import (
    ReadTreeFile,
    ReadTreeResponse,
    ReadUrlResponse,
    SearchResponse,
    SearchResponseFile,
)
from url_reader.reader_protocol import ReaderRegistration, UrlReaderProtocol
from url_reader.readers import BitbucketServerUrlReader
from url_reader.registry import UrlReaderRegistry, create_default_registry
from url_reader.tree import ReadTreeResponseFactory

__all__ = [
    "BitbucketServerUrlReader",
    "NotAllowedError",
    "NotFoundError",
    "NotModifiedError",
    "ReadTreeFile",
    "ReadTreeResponse",
    "ReadTreeResponseFactory",
    "ReadUrlResponse",
    "ReaderRegistration",
    "ResponseConsumedError",
    "SearchResponse",
    "SearchResponseFile",
    "TransportFailureError",
    "UnexpectedResponseError",
    "UrlReaderError",
    "UrlReaderProtocol",
    "UrlReaderRegistry",
    "create_default_registry",
]
