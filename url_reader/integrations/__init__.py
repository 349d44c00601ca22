"""Source control host integrations: configuration and URL translation."""

from url_reader.integrations.bitbucket_server import (
    BitbucketServerIntegration,
    BitbucketServerIntegrationConfig,
    get_bitbucket_server_commits_url,
    get_bitbucket_server_download_url,
    get_bitbucket_server_file_fetch_url,
    get_bitbucket_server_request_options,
    read_bitbucket_server_integration_config,
    read_bitbucket_server_integration_configs,
)
from url_reader.integrations.git_url import GitUrl, parse_git_url

__all__ = [
    "BitbucketServerIntegration",
    "BitbucketServerIntegrationConfig",
    "GitUrl",
    "get_bitbucket_server_commits_url",
    "get_bitbucket_server_download_url",
    "get_bitbucket_server_file_fetch_url",
    "get_bitbucket_server_request_options",
    "parse_git_url",
    "read_bitbucket_server_integration_config",
    "read_bitbucket_server_integration_configs",
]
