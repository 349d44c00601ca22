"""Tests for the Bitbucket Server URL reader."""

from collections.abc import AsyncIterator, Callable
from unittest.mock import MagicMock

import httpx
import pytest

from url_reader.config import BitbucketServerIntegrationSettings, Settings
from url_reader.errors import (
    NotFoundError,
    NotModifiedError,
    TransportFailureError,
    UnexpectedResponseError,
)
from url_reader.hooks import Hooks
from url_reader.integrations.bitbucket_server import (
    BitbucketServerIntegration,
    BitbucketServerIntegrationConfig,
)
from url_reader.readers.bitbucket_server import (
    BitbucketServerApiCallContext,
    BitbucketServerUrlReader,
)
from url_reader.tree import ReadTreeResponseFactory

REPO_API = "/rest/api/1.0/projects/PROJ/repos/repo"
FILE_URL = (
    "https://bitbucket.example.com/projects/PROJ/repos/repo/browse/catalog-info.yaml"
)
TREE_URL = "https://bitbucket.example.com/projects/PROJ/repos/repo/browse/docs"
COMMITS = {"values": [{"id": "abc123def456789"}, {"id": "0000000000000000"}]}
RAW = "/raw/catalog-info.yaml"


class Recorder:
    """Mock transport handler recording requests and routing by path."""

    def __init__(self, routes: dict[str, Callable[[httpx.Request], httpx.Response]]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, route in self.routes.items():
            if request.url.path.endswith(suffix):
                return route(request)
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


def _reader(
    integration: BitbucketServerIntegration,
    handler: Callable[[httpx.Request], httpx.Response],
    hooks: Hooks | None = None,
) -> BitbucketServerUrlReader:
    return BitbucketServerUrlReader(
        integration,
        ReadTreeResponseFactory(),
        transport=httpx.MockTransport(handler),
        hooks=hooks,
    )


def _commits(body: object = COMMITS) -> Callable[[httpx.Request], httpx.Response]:
    return lambda _: httpx.Response(200, json=body)


def _file(content: bytes) -> Callable[[httpx.Request], httpx.Response]:
    return lambda _: httpx.Response(200, content=content)


def _archive(content: bytes) -> Callable[[httpx.Request], httpx.Response]:
    return lambda _: httpx.Response(200, content=content)


# --- read / read_url ---


@pytest.mark.asyncio
async def test_read_returns_file_content(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder({RAW: _file(b"kind: Component")})
    reader = _reader(integration, recorder)

    assert await reader.read(FILE_URL) == b"kind: Component"
    assert recorder.paths() == [f"{REPO_API}/raw/catalog-info.yaml"]


@pytest.mark.asyncio
async def test_read_url_sends_auth_and_ref(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder({RAW: _file(b"x")})
    reader = _reader(integration, recorder)

    response = await reader.read_url(f"{FILE_URL}?at=refs/heads/main")
    await response.buffer()

    request = recorder.requests[0]
    assert request.headers["Authorization"] == "Bearer test-token"
    assert request.url.params["at"] == "refs/heads/main"
    assert "If-None-Match" not in request.headers


@pytest.mark.asyncio
async def test_read_url_returns_etag(integration: BitbucketServerIntegration) -> None:
    recorder = Recorder(
        {
            RAW: lambda _: httpx.Response(
                200, content=b"content", headers={"ETag": '"etag-1"'}
            )
        }
    )
    reader = _reader(integration, recorder)

    response = await reader.read_url(FILE_URL)

    assert response.etag == '"etag-1"'
    assert await response.buffer() == b"content"


@pytest.mark.asyncio
async def test_read_url_without_etag_header(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder({RAW: _file(b"")})
    reader = _reader(integration, recorder)

    response = await reader.read_url(FILE_URL)

    assert response.etag is None


@pytest.mark.asyncio
async def test_read_url_stream(integration: BitbucketServerIntegration) -> None:
    recorder = Recorder({RAW: _file(b"streamed")})
    reader = _reader(integration, recorder)

    response = await reader.read_url(FILE_URL)

    assert b"".join([chunk async for chunk in response.stream()]) == b"streamed"


class TrackedStream(httpx.AsyncByteStream):
    def __init__(self, content: bytes) -> None:
        self.content = content
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        yield self.content

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_read_url_aclose_releases_unread_body(
    integration: BitbucketServerIntegration,
) -> None:
    stream = TrackedStream(b"unread")
    recorder = Recorder(
        {RAW: lambda _: httpx.Response(200, headers={"ETag": '"e"'}, stream=stream)}
    )
    reader = _reader(integration, recorder)

    response = await reader.read_url(FILE_URL)
    assert response.etag == '"e"'
    assert not stream.closed

    await response.aclose()

    assert stream.closed


@pytest.mark.asyncio
async def test_read_url_sends_if_none_match(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder({RAW: lambda _: httpx.Response(304)})
    reader = _reader(integration, recorder)

    with pytest.raises(NotModifiedError):
        await reader.read_url(FILE_URL, etag='"etag-1"')

    assert recorder.requests[0].headers["If-None-Match"] == '"etag-1"'


@pytest.mark.asyncio
async def test_read_url_not_found(integration: BitbucketServerIntegration) -> None:
    reader = _reader(integration, Recorder({}))

    with pytest.raises(NotFoundError) as exc_info:
        await reader.read_url(FILE_URL)

    message = str(exc_info.value)
    assert FILE_URL in message
    assert f"https://bitbucket.example.com{REPO_API}/raw/catalog-info.yaml" in message
    assert "404 Not Found" in message


@pytest.mark.asyncio
async def test_read_url_unexpected_status(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder({RAW: lambda _: httpx.Response(500)})
    reader = _reader(integration, recorder)

    with pytest.raises(UnexpectedResponseError) as exc_info:
        await reader.read_url(FILE_URL)

    assert exc_info.value.status_code == 500
    assert "500 Internal Server Error" in str(exc_info.value)
    assert FILE_URL in str(exc_info.value)


@pytest.mark.asyncio
async def test_read_url_transport_failure(
    integration: BitbucketServerIntegration,
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    reader = _reader(integration, handler)

    with pytest.raises(TransportFailureError, match="Unable to read") as exc_info:
        await reader.read_url(FILE_URL)

    assert FILE_URL in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_read_url_rejects_repository_url(
    integration: BitbucketServerIntegration,
) -> None:
    reader = _reader(integration, Recorder({}))

    with pytest.raises(ValueError, match="Invalid Bitbucket Server URL"):
        await reader.read_url("https://bitbucket.example.com/projects/PROJ/repos/repo")


# --- get_last_commit_short_hash ---


@pytest.mark.asyncio
async def test_last_commit_short_hash(integration: BitbucketServerIntegration) -> None:
    recorder = Recorder({"/commits": _commits()})
    reader = _reader(integration, recorder)

    assert await reader.get_last_commit_short_hash(TREE_URL) == "abc123def456"
    assert recorder.paths() == [f"{REPO_API}/commits"]


@pytest.mark.asyncio
async def test_last_commit_short_hash_uses_ref(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder({"/commits": _commits()})
    reader = _reader(integration, recorder)

    await reader.get_last_commit_short_hash(f"{TREE_URL}?at=release")

    assert recorder.requests[0].url.params["until"] == "release"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        pytest.param({"values": []}, id="empty-values"),
        pytest.param({}, id="missing-values"),
        pytest.param({"values": [{}]}, id="missing-id"),
        pytest.param({"values": [{"id": ""}]}, id="empty-id"),
        pytest.param([], id="not-an-object"),
    ],
)
async def test_last_commit_short_hash_malformed_body(
    integration: BitbucketServerIntegration, body: object
) -> None:
    reader = _reader(integration, Recorder({"/commits": _commits(body)}))

    with pytest.raises(UnexpectedResponseError, match="Failed to read response from"):
        await reader.get_last_commit_short_hash(TREE_URL)


@pytest.mark.asyncio
async def test_last_commit_short_hash_invalid_json(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder({"/commits": lambda _: httpx.Response(200, content=b"<html>")})
    reader = _reader(integration, recorder)

    with pytest.raises(UnexpectedResponseError, match="Failed to read response from"):
        await reader.get_last_commit_short_hash(TREE_URL)


@pytest.mark.asyncio
async def test_last_commit_short_hash_not_found(
    integration: BitbucketServerIntegration,
) -> None:
    reader = _reader(integration, Recorder({}))

    with pytest.raises(NotFoundError, match="Failed to retrieve commits from"):
        await reader.get_last_commit_short_hash(TREE_URL)


@pytest.mark.asyncio
async def test_last_commit_short_hash_unexpected_status(
    integration: BitbucketServerIntegration,
) -> None:
    reader = _reader(
        integration, Recorder({"/commits": lambda _: httpx.Response(401)})
    )

    with pytest.raises(UnexpectedResponseError, match="401 Unauthorized"):
        await reader.get_last_commit_short_hash(TREE_URL)


# --- read_tree ---


@pytest.mark.asyncio
async def test_read_tree(
    integration: BitbucketServerIntegration, tar_gz: Callable[..., bytes]
) -> None:
    archive = tar_gz(
        {"docs/index.md": b"# Docs", "docs/api/a.md": b"A", "README.md": b"R"}
    )
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(archive)})
    reader = _reader(integration, recorder)

    tree = await reader.read_tree(TREE_URL)
    files = await tree.files()

    assert tree.etag == "abc123def456"
    assert sorted((f.path, f.content) for f in files) == [
        ("api/a.md", b"A"),
        ("index.md", b"# Docs"),
    ]
    assert recorder.paths() == [f"{REPO_API}/commits", f"{REPO_API}/archive"]
    params = recorder.requests[1].url.params
    assert params["format"] == "tgz"
    assert params["prefix"] == "PROJ-repo"
    assert params["path"] == "docs"
    assert recorder.requests[1].headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
@pytest.mark.parametrize("truncate", [False, True], ids=["html-page", "truncated"])
async def test_read_tree_archive_not_a_tarball(
    integration: BitbucketServerIntegration,
    tar_gz: Callable[..., bytes],
    truncate: bool,
) -> None:
    body = b"<html>login</html>"
    if truncate:
        body = tar_gz({"docs/index.md": b"# Docs" * 100})[:40]
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(body)})
    reader = _reader(integration, recorder)

    tree = await reader.read_tree(TREE_URL)

    with pytest.raises(UnexpectedResponseError, match="Failed to read tree archive"):
        await tree.files()


@pytest.mark.asyncio
async def test_read_tree_repository_root(
    integration: BitbucketServerIntegration, tar_gz: Callable[..., bytes]
) -> None:
    archive = tar_gz({"docs/index.md": b"# Docs", "README.md": b"R"})
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(archive)})
    reader = _reader(integration, recorder)

    tree = await reader.read_tree(
        "https://bitbucket.example.com/projects/PROJ/repos/repo"
    )

    assert sorted(f.path for f in await tree.files()) == ["README.md", "docs/index.md"]
    assert "path" not in recorder.requests[1].url.params


@pytest.mark.asyncio
async def test_read_tree_with_filter(
    integration: BitbucketServerIntegration, tar_gz: Callable[..., bytes]
) -> None:
    archive = tar_gz({"docs/index.md": b"# Docs", "docs/logo.png": b"PNG"})
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(archive)})
    reader = _reader(integration, recorder)

    tree = await reader.read_tree(TREE_URL, filter=lambda path: path.endswith(".md"))

    assert [f.path for f in await tree.files()] == ["index.md"]


@pytest.mark.asyncio
async def test_read_tree_not_modified_skips_archive(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(b"")})
    reader = _reader(integration, recorder)

    with pytest.raises(NotModifiedError):
        await reader.read_tree(TREE_URL, etag="abc123def456")

    assert recorder.paths() == [f"{REPO_API}/commits"]


@pytest.mark.asyncio
async def test_read_tree_etag_round_trip(
    integration: BitbucketServerIntegration, tar_gz: Callable[..., bytes]
) -> None:
    archive = tar_gz({"docs/index.md": b"# Docs"})
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(archive)})
    reader = _reader(integration, recorder)

    tree = await reader.read_tree(TREE_URL)
    with pytest.raises(NotModifiedError):
        await reader.read_tree(TREE_URL, etag=tree.etag)

    assert recorder.paths().count(f"{REPO_API}/archive") == 1
    assert recorder.paths().count(f"{REPO_API}/commits") == 2


@pytest.mark.asyncio
async def test_read_tree_stale_etag_is_not_echoed(
    integration: BitbucketServerIntegration, tar_gz: Callable[..., bytes]
) -> None:
    archive = tar_gz({"docs/index.md": b"# Docs"})
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(archive)})
    reader = _reader(integration, recorder)

    tree = await reader.read_tree(TREE_URL, etag="000000000000")

    assert tree.etag == "abc123def456"


@pytest.mark.asyncio
async def test_read_tree_archive_not_found(
    integration: BitbucketServerIntegration,
) -> None:
    reader = _reader(integration, Recorder({"/commits": _commits()}))

    with pytest.raises(NotFoundError, match="Failed to read tree from"):
        await reader.read_tree(TREE_URL)


@pytest.mark.asyncio
async def test_read_tree_archive_unexpected_status(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder(
        {"/commits": _commits(), "/archive": lambda _: httpx.Response(503)}
    )
    reader = _reader(integration, recorder)

    with pytest.raises(UnexpectedResponseError, match="503 Service Unavailable"):
        await reader.read_tree(TREE_URL)


@pytest.mark.asyncio
async def test_read_tree_repository_not_found(
    integration: BitbucketServerIntegration,
) -> None:
    recorder = Recorder({})
    reader = _reader(integration, recorder)

    with pytest.raises(NotFoundError):
        await reader.read_tree(TREE_URL)

    assert recorder.paths() == [f"{REPO_API}/commits"]


# --- search ---


@pytest.mark.asyncio
async def test_search(
    integration: BitbucketServerIntegration, tar_gz: Callable[..., bytes]
) -> None:
    archive = tar_gz(
        {"a/b.yaml": b"b", "c.yaml": b"c", "d.json": b"d", "a/e.txt": b"e"}
    )
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(archive)})
    reader = _reader(integration, recorder)
    url = "https://bitbucket.example.com/PROJ/repo/src/**/*.yaml"

    result = await reader.search(url)

    assert result.etag == "abc123def456"
    assert sorted((f.url, f.content) for f in result.files) == [
        ("https://bitbucket.example.com/PROJ/repo/src/a/b.yaml", b"b"),
        ("https://bitbucket.example.com/PROJ/repo/src/c.yaml", b"c"),
    ]
    # The whole repository is downloaded and filtered locally
    assert "path" not in recorder.requests[1].url.params


@pytest.mark.asyncio
async def test_search_keeps_ref(
    integration: BitbucketServerIntegration, tar_gz: Callable[..., bytes]
) -> None:
    archive = tar_gz({"catalog/a.yaml": b"a", "catalog/b.json": b"b"})
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(archive)})
    reader = _reader(integration, recorder)
    url = (
        "https://bitbucket.example.com/projects/PROJ/repos/repo/browse/"
        "catalog/*.yaml?at=main"
    )

    result = await reader.search(url)

    assert [f.url for f in result.files] == [
        "https://bitbucket.example.com/projects/PROJ/repos/repo/browse/"
        "catalog/a.yaml?at=main"
    ]
    assert recorder.requests[0].url.params["until"] == "main"
    assert recorder.requests[1].url.params["at"] == "main"


@pytest.mark.asyncio
async def test_search_not_modified(integration: BitbucketServerIntegration) -> None:
    recorder = Recorder({"/commits": _commits()})
    reader = _reader(integration, recorder)

    with pytest.raises(NotModifiedError):
        await reader.search(
            "https://bitbucket.example.com/PROJ/repo/src/**/*.yaml",
            etag="abc123def456",
        )

    assert recorder.paths() == [f"{REPO_API}/commits"]


@pytest.mark.asyncio
async def test_search_no_matches(
    integration: BitbucketServerIntegration, tar_gz: Callable[..., bytes]
) -> None:
    archive = tar_gz({"README.md": b"R"})
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(archive)})
    reader = _reader(integration, recorder)

    result = await reader.search("https://bitbucket.example.com/PROJ/repo/src/*.yaml")

    assert result.files == []
    assert result.etag == "abc123def456"


# --- hooks ---


def test_pre_hooks_include_builtin_hooks(
    integration: BitbucketServerIntegration,
) -> None:
    reader = _reader(integration, Recorder({}))

    # metrics, request log and latency start
    assert len(reader._hooks.pre_hooks) == 3
    assert len(reader._hooks.post_hooks) == 1
    assert len(reader._hooks.error_hooks) == 1


def test_custom_hooks_are_appended(integration: BitbucketServerIntegration) -> None:
    custom_hook = MagicMock()
    reader = _reader(integration, Recorder({}), hooks=Hooks(pre_hooks=[custom_hook]))

    assert len(reader._hooks.pre_hooks) == 4
    assert reader._hooks.pre_hooks[-1] is custom_hook


@pytest.mark.asyncio
async def test_hooks_receive_call_context(
    integration: BitbucketServerIntegration, tar_gz: Callable[..., bytes]
) -> None:
    pre_hook = MagicMock()
    archive = tar_gz({"docs/index.md": b"# Docs"})
    recorder = Recorder({"/commits": _commits(), "/archive": _archive(archive)})
    reader = _reader(integration, recorder, hooks=Hooks(pre_hooks=[pre_hook]))

    await reader.read_tree(TREE_URL)

    contexts = [call.args[0] for call in pre_hook.call_args_list]
    assert contexts == [
        BitbucketServerApiCallContext(
            method="commits.list", verb="GET", id="bitbucket.example.com"
        ),
        BitbucketServerApiCallContext(
            method="archive.get", verb="GET", id="bitbucket.example.com"
        ),
    ]


@pytest.mark.asyncio
async def test_error_hooks_on_failure(
    integration: BitbucketServerIntegration,
) -> None:
    error_hook = MagicMock()
    reader = _reader(
        integration, Recorder({}), hooks=Hooks(error_hooks=[error_hook])
    )

    with pytest.raises(NotFoundError):
        await reader.get_last_commit_short_hash(TREE_URL)

    error_hook.assert_called_once()
    assert error_hook.call_args.args[0].method == "commits.list"


@pytest.mark.asyncio
async def test_error_hooks_on_file_status(
    integration: BitbucketServerIntegration,
) -> None:
    error_hook = MagicMock()
    statuses = iter([404, 500, 304])
    recorder = Recorder({RAW: lambda _: httpx.Response(next(statuses))})
    reader = _reader(integration, recorder, hooks=Hooks(error_hooks=[error_hook]))

    with pytest.raises(NotFoundError):
        await reader.read_url(FILE_URL)
    with pytest.raises(UnexpectedResponseError):
        await reader.read_url(FILE_URL)
    with pytest.raises(NotModifiedError):
        await reader.read_url(FILE_URL, etag='"e"')

    assert [call.args[0].method for call in error_hook.call_args_list] == [
        "files.read",
        "files.read",
    ]


# --- misc ---


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("secret", "bitbucketServer{host=bitbucket.example.com,authed=true}"),
        (None, "bitbucketServer{host=bitbucket.example.com,authed=false}"),
    ],
)
def test_str(token: str | None, expected: str) -> None:
    config = BitbucketServerIntegrationConfig(
        host="bitbucket.example.com",
        api_base_url="https://bitbucket.example.com/rest/api/1.0",
        token=token,
    )
    reader = BitbucketServerUrlReader(
        BitbucketServerIntegration(config), ReadTreeResponseFactory()
    )

    assert str(reader) == expected


def test_factory_creates_reader_per_host() -> None:
    settings = Settings(
        integrations={
            "bitbucket_server": [
                BitbucketServerIntegrationSettings(host="bitbucket.example.com"),
                BitbucketServerIntegrationSettings(
                    host="git.example.org", token="token"
                ),
            ]
        }
    )

    registrations = BitbucketServerUrlReader.factory(settings)

    assert [str(r.reader) for r in registrations] == [
        "bitbucketServer{host=bitbucket.example.com,authed=false}",
        "bitbucketServer{host=git.example.org,authed=true}",
    ]
    assert registrations[0].predicate(FILE_URL)
    assert not registrations[1].predicate(FILE_URL)
    assert registrations[1].predicate("https://git.example.org/projects/A/repos/b")


@pytest.mark.asyncio
async def test_async_context_manager_closes_client(
    integration: BitbucketServerIntegration,
) -> None:
    async with _reader(integration, Recorder({})) as reader:
        pass

    assert reader._client.is_closed

