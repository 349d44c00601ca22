"""Bitbucket Server integration: configuration and REST API request building.

All functions here are pure: the same URL and config always map to the same
endpoint and headers.
"""

import base64
from urllib.parse import urlencode, urljoin, urlparse, urlunparse

from pydantic import BaseModel, Field

from url_reader.config import BitbucketServerIntegrationSettings, Settings
from url_reader.integrations.git_url import FILEPATH_TYPES, parse_git_url


class BitbucketServerIntegrationConfig(BaseModel, frozen=True):
    """Resolved configuration of one Bitbucket Server instance."""

    host: str
    api_base_url: str
    token: str | None = Field(default=None, repr=False)
    username: str | None = None
    password: str | None = Field(default=None, repr=False)


def read_bitbucket_server_integration_config(
    settings: BitbucketServerIntegrationSettings,
) -> BitbucketServerIntegrationConfig:
    """Resolve settings of one instance, defaulting the API base URL from the host."""
    api_base_url = settings.api_base_url or f"https://{settings.host}/rest/api/1.0"
    return BitbucketServerIntegrationConfig(
        host=settings.host,
        api_base_url=api_base_url.rstrip("/"),
        token=settings.token.get_secret_value() if settings.token else None,
        username=settings.username,
        password=settings.password.get_secret_value() if settings.password else None,
    )


def read_bitbucket_server_integration_configs(
    settings: Settings,
) -> list[BitbucketServerIntegrationConfig]:
    """Resolve all configured Bitbucket Server instances.

    Raises:
        ValueError: If a host is configured more than once
    """
    configs = [
        read_bitbucket_server_integration_config(s)
        for s in settings.integrations.bitbucket_server
    ]
    hosts = [c.host for c in configs]
    if duplicates := sorted({h for h in hosts if hosts.count(h) > 1}):
        msg = f"Duplicate Bitbucket Server integration hosts: {', '.join(duplicates)}"
        raise ValueError(msg)
    return configs


class BitbucketServerIntegration:
    """A configured Bitbucket Server instance."""

    type = "bitbucketServer"

    def __init__(self, config: BitbucketServerIntegrationConfig) -> None:
        self.config = config

    @property
    def title(self) -> str:
        return self.config.host

    def matches(self, url: str) -> bool:
        """Whether `url` points to this instance."""
        return urlparse(url).netloc == self.config.host

    @staticmethod
    def resolve_url(url: str, base: str) -> str:
        """Resolve `url` relative to `base`.

        Absolute URLs are returned unchanged. Decoded paths starting with "/" are
        relative to the repository root of `base`; other paths are relative
        to `base` itself. The query string (e.g. the ref) of `base` is kept.

        Examples:
            >>> BitbucketServerIntegration.resolve_url(
            ...     "/docs/a.md",
            ...     "https://host/projects/P/repos/r/browse/catalog.yaml?at=main",
            ... )
            'https://host/projects/P/repos/r/browse/docs/a.md?at=main'
        """
        if urlparse(url).scheme:
            return url
        if url.startswith("/"):
            return parse_git_url(base).with_filepath(url)

        parsed_base = urlparse(base)
        joined = urlparse(urljoin(base, url))
        return urlunparse(
            (joined.scheme, joined.netloc, joined.path, "", parsed_base.query, "")
        )


def get_bitbucket_server_request_options(
    config: BitbucketServerIntegrationConfig,
) -> dict[str, dict[str, str]]:
    """Request options (headers) applied to every outgoing request."""
    headers: dict[str, str] = {}
    if config.token:
        headers["Authorization"] = f"Bearer {config.token}"
    elif config.username and config.password:
        credentials = f"{config.username}:{config.password}".encode()
        headers["Authorization"] = f"Basic {base64.b64encode(credentials).decode()}"
    return {"headers": headers}


def _repo_api_url(url: str, config: BitbucketServerIntegrationConfig) -> str:
    git_url = parse_git_url(url)
    return f"{config.api_base_url}/projects/{git_url.owner}/repos/{git_url.name}"


def get_bitbucket_server_file_fetch_url(
    url: str, config: BitbucketServerIntegrationConfig
) -> str:
    """Raw file content endpoint for a file URL.

    Raises:
        ValueError: If the URL does not address a file
    """
    git_url = parse_git_url(url)
    if git_url.filepathtype not in FILEPATH_TYPES or not git_url.filepath:
        msg = f"Invalid Bitbucket Server URL or file path: {url}"
        raise ValueError(msg)

    fetch_url = f"{_repo_api_url(url, config)}/raw/{git_url.filepath.lstrip('/')}"
    if git_url.ref:
        fetch_url += "?" + urlencode({"at": git_url.ref}, safe="/")
    return fetch_url


def get_bitbucket_server_download_url(
    url: str, config: BitbucketServerIntegrationConfig
) -> str:
    """Archive (tgz) endpoint for a repository or sub-tree URL.

    Without a ref in the URL, Bitbucket Server streams the default branch.
    """
    git_url = parse_git_url(url)
    params = {"format": "tgz"}
    if git_url.ref:
        params["at"] = git_url.ref
    params["prefix"] = f"{git_url.owner}-{git_url.name}"
    if filepath := git_url.decoded_filepath.strip("/"):
        params["path"] = filepath
    return f"{_repo_api_url(url, config)}/archive?{urlencode(params, safe='/')}"


def get_bitbucket_server_commits_url(
    url: str, config: BitbucketServerIntegrationConfig
) -> str:
    """Commit history endpoint, most recent commit first."""
    # https://docs.atlassian.com/bitbucket-server/rest/7.9.0/bitbucket-rest.html#idp222
    git_url = parse_git_url(url)
    commits_url = f"{_repo_api_url(url, config)}/commits"
    if git_url.ref:
        commits_url += "?" + urlencode({"until": git_url.ref}, safe="/")
    return commits_url
