"""URL reader implementations for the reader registry."""

from url_reader.readers.bitbucket_server import (
    BitbucketServerApiCallContext,
    BitbucketServerUrlReader,
)

__all__ = [
    "BitbucketServerApiCallContext",
    "BitbucketServerUrlReader",
]
