"""Bitbucket Server URL reader with hook system for metrics and logging.

Reads single files, repository trees and glob searches through the Bitbucket
Server REST API. Tree reads are gated on the latest commit hash: when it
matches the caller's etag nothing is downloaded.
"""

import contextvars
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Self

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from url_reader.config import Settings
from url_reader.errors import (
    NotFoundError,
    NotModifiedError,
    TransportFailureError,
    UnexpectedResponseError,
)
from url_reader.hooks import Hooks, invoke_with_hooks, with_hooks
from url_reader.integrations.bitbucket_server import (
    BitbucketServerIntegration,
    get_bitbucket_server_commits_url,
    get_bitbucket_server_download_url,
    get_bitbucket_server_file_fetch_url,
    get_bitbucket_server_request_options,
    read_bitbucket_server_integration_configs,
)
from url_reader.integrations.git_url import parse_git_url
from url_reader.metrics import (
    bitbucket_server_request,
    bitbucket_server_request_duration,
    bitbucket_server_request_errors,
)
from url_reader.models import (
    ReadTreeFilter,
    ReadTreeResponse,
    ReadUrlResponse,
    SearchResponse,
    SearchResponseFile,
)
from url_reader.reader_protocol import ReaderRegistration
from url_reader.tree import ReadTreeResponseFactory, glob_matcher

logger = structlog.get_logger(__name__)

# Local storage for latency tracking (tuple stack to support nested calls)
_latency_tracker: contextvars.ContextVar[tuple[float, ...]] = contextvars.ContextVar(
    f"{__name__}.latency_tracker", default=()
)

TIMEOUT = 30.0
SHORT_HASH_LENGTH = 12


@dataclass(frozen=True)
class BitbucketServerApiCallContext:
    """Context information passed to API call hooks.

    Attributes:
        method: API method name (e.g., "commits.list")
        verb: HTTP verb (e.g., "GET")
        id: Bitbucket Server host
    """

    method: str
    verb: str
    id: str


def _metrics_hook(context: BitbucketServerApiCallContext) -> None:
    """Built-in Prometheus metrics hook."""
    bitbucket_server_request.labels(context.method, context.verb).inc()


def _error_metrics_hook(context: BitbucketServerApiCallContext) -> None:
    bitbucket_server_request_errors.labels(context.method, context.verb).inc()


def _latency_start_hook(_context: BitbucketServerApiCallContext) -> None:
    """Built-in hook to start latency measurement."""
    _latency_tracker.set((*_latency_tracker.get(), time.perf_counter()))


def _latency_end_hook(context: BitbucketServerApiCallContext) -> None:
    """Built-in hook to record latency measurement."""
    stack = _latency_tracker.get()
    start_time = stack[-1]
    _latency_tracker.set(stack[:-1])
    duration = time.perf_counter() - start_time
    bitbucket_server_request_duration.labels(context.method, context.verb).observe(
        duration
    )


def _request_log_hook(context: BitbucketServerApiCallContext) -> None:
    """Built-in hook for logging API requests."""
    logger.debug("API request", method=context.method, verb=context.verb, id=context.id)


def _context(method: str) -> Any:
    return lambda self: BitbucketServerApiCallContext(
        method=method, verb="GET", id=self.integration.config.host
    )


class Commit(BaseModel):
    id: str = Field(..., min_length=1)


class CommitPage(BaseModel):
    """First page of the commit history, most recent commit first."""

    values: list[Commit] = Field(..., min_length=1)


def _status(response: httpx.Response) -> str:
    return f"{response.status_code} {response.reason_phrase}"


@with_hooks(
    hooks=Hooks(
        pre_hooks=[
            _metrics_hook,
            _request_log_hook,
            _latency_start_hook,
        ],
        post_hooks=[_latency_end_hook],
        error_hooks=[_error_metrics_hook],
    )
)
class BitbucketServerUrlReader:
    """URL reader for files hosted on a Bitbucket Server instance.

    Hook System:
    - Always includes built-in hooks (metrics, logging, latency)
    - Supports additional custom hooks via the hooks keyword argument
    - Hooks receive BitbucketServerApiCallContext with method, verb, id

    Example:
        >>> integration = BitbucketServerIntegration(config)
        >>> async with BitbucketServerUrlReader(integration, ReadTreeResponseFactory()) as reader:
        ...     content = await reader.read(
        ...         "https://bitbucket.example.com/projects/PROJ/repos/repo/browse/catalog-info.yaml"
        ...     )
    """

    # Set by @with_hooks decorator
    _hooks: Hooks

    def __init__(
        self,
        integration: BitbucketServerIntegration,
        tree_response_factory: ReadTreeResponseFactory,
        *,
        timeout: float = TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        hooks: Hooks | None = None,  # noqa: ARG002 - Handled by @with_hooks decorator
    ) -> None:
        """Initialize the reader.

        Args:
            integration: Bitbucket Server instance to read from
            tree_response_factory: Materializes tree responses from archives
            timeout: Request timeout in seconds (default: 30)
            transport: Optional httpx transport (e.g. a mock transport in tests)
            hooks: Optional custom hooks to merge with built-in hooks.
        """
        self.integration = integration
        self._tree_response_factory = tree_response_factory
        self._headers = get_bitbucket_server_request_options(integration.config)[
            "headers"
        ]
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def factory(
        cls,
        settings: Settings,
        tree_response_factory: ReadTreeResponseFactory | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> list[ReaderRegistration]:
        """Create one reader per configured Bitbucket Server instance.

        Each reader is paired with a predicate accepting URLs of its host.
        """
        tree_response_factory = tree_response_factory or ReadTreeResponseFactory(
            spool_max_size=settings.spool_max_size
        )
        registrations = []
        for config in read_bitbucket_server_integration_configs(settings):
            integration = BitbucketServerIntegration(config)
            reader = cls(
                integration,
                tree_response_factory,
                timeout=settings.http_timeout,
                transport=transport,
            )
            registrations.append(
                ReaderRegistration(reader=reader, predicate=integration.matches)
            )
        return registrations

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _send(
        self, url: str, endpoint: str, headers: dict[str, str] | None = None
    ) -> httpx.Response:
        request = self._client.build_request(
            "GET", endpoint, headers=headers or self._headers
        )
        try:
            return await self._client.send(request, stream=True)
        except httpx.TransportError as e:
            msg = f"Unable to read {url}, {e!r}"
            raise TransportFailureError(msg) from e

    async def read(self, url: str) -> bytes:
        response = await self.read_url(url)
        return await response.buffer()

    async def read_url(self, url: str, etag: str | None = None) -> ReadUrlResponse:
        bitbucket_url = get_bitbucket_server_file_fetch_url(url, self.integration.config)
        headers = dict(self._headers)
        if etag:
            headers["If-None-Match"] = etag

        response = await self._fetch_file(url, bitbucket_url, headers)
        if response.status_code == httpx.codes.NOT_MODIFIED:
            await response.aclose()
            raise NotModifiedError()
        return self._read_url_response(url, response)

    @invoke_with_hooks(_context("files.read"))
    async def _fetch_file(
        self, url: str, bitbucket_url: str, headers: dict[str, str]
    ) -> httpx.Response:
        response = await self._send(url, bitbucket_url, headers)
        if response.is_success or response.status_code == httpx.codes.NOT_MODIFIED:
            return response

        await response.aclose()
        message = f"{url} could not be read as {bitbucket_url}, {_status(response)}"
        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(message)
        raise UnexpectedResponseError(message, status_code=response.status_code)

    @staticmethod
    def _read_url_response(url: str, response: httpx.Response) -> ReadUrlResponse:
        async def buffer() -> bytes:
            try:
                return await response.aread()
            except httpx.TransportError as e:
                msg = f"Unable to read {url}, {e!r}"
                raise TransportFailureError(msg) from e
            finally:
                await response.aclose()

        async def stream() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_bytes():
                    yield chunk
            except httpx.TransportError as e:
                msg = f"Unable to read {url}, {e!r}"
                raise TransportFailureError(msg) from e
            finally:
                await response.aclose()

        return ReadUrlResponse(
            buffer=buffer,
            stream=stream,
            aclose=response.aclose,
            etag=response.headers.get("ETag"),
        )

    async def read_tree(
        self,
        url: str,
        etag: str | None = None,
        filter: ReadTreeFilter | None = None,  # noqa: A002
    ) -> ReadTreeResponse:
        git_url = parse_git_url(url)

        last_commit_short_hash = await self.get_last_commit_short_hash(url)
        if etag and etag == last_commit_short_hash:
            logger.debug("Tree not modified", url=url, etag=etag)
            raise NotModifiedError()

        download_url = get_bitbucket_server_download_url(url, self.integration.config)
        archive_response = await self._fetch_archive(url, download_url)
        try:
            return await self._tree_response_factory.from_tar_archive(
                archive_response.aiter_bytes(),
                subpath=git_url.decoded_filepath,
                etag=last_commit_short_hash,
                filter=filter,
            )
        except httpx.TransportError as e:
            msg = f"Unable to read {url}, {e!r}"
            raise TransportFailureError(msg) from e
        finally:
            await archive_response.aclose()

    @invoke_with_hooks(_context("archive.get"))
    async def _fetch_archive(self, url: str, download_url: str) -> httpx.Response:
        response = await self._send(url, download_url)
        if response.is_success:
            return response

        await response.aclose()
        message = f"Failed to read tree from {url}, {_status(response)}"
        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(message)
        raise UnexpectedResponseError(message, status_code=response.status_code)

    @invoke_with_hooks(_context("commits.list"))
    async def get_last_commit_short_hash(self, url: str) -> str:
        """Fingerprint of the repository: the latest commit hash, shortened.

        Args:
            url: Any URL inside the repository; its ref (if any) is honored

        Returns:
            First 12 characters of the most recent commit id

        Raises:
            NotFoundError: If the repository does not exist
            UnexpectedResponseError: On other error statuses or a malformed body
        """
        commits_url = get_bitbucket_server_commits_url(url, self.integration.config)
        try:
            response = await self._client.get(commits_url, headers=self._headers)
        except httpx.TransportError as e:
            msg = f"Unable to read {commits_url}, {e!r}"
            raise TransportFailureError(msg) from e

        if not response.is_success:
            message = f"Failed to retrieve commits from {commits_url}, {_status(response)}"
            if response.status_code == httpx.codes.NOT_FOUND:
                raise NotFoundError(message)
            raise UnexpectedResponseError(message, status_code=response.status_code)

        try:
            commits = CommitPage.model_validate_json(response.content)
        except ValidationError as e:
            msg = f"Failed to read response from {commits_url}"
            raise UnexpectedResponseError(msg, status_code=response.status_code) from e

        return commits.values[0].id[:SHORT_HASH_LENGTH]

    async def search(self, url: str, etag: str | None = None) -> SearchResponse:
        git_url = parse_git_url(url)
        matcher = glob_matcher(git_url.decoded_filepath)

        # The whole repository tree is read and filtered, even when the
        # pattern starts with a literal directory prefix.
        tree_url = git_url.with_filepath("")

        tree = await self.read_tree(tree_url, etag=etag, filter=matcher)
        files = await tree.files()

        return SearchResponse(
            etag=tree.etag,
            files=[
                SearchResponseFile(
                    url=self.integration.resolve_url(f"/{file.path}", base=url),
                    content=file.content,
                )
                for file in files
            ],
        )

    def __str__(self) -> str:
        host = self.integration.config.host
        authed = str(bool(self.integration.config.token)).lower()
        return f"bitbucketServer{{host={host},authed={authed}}}"
