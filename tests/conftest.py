"""Global test configuration for url_reader tests."""

import io
import tarfile
from collections.abc import Callable

import pytest

from url_reader.integrations.bitbucket_server import (
    BitbucketServerIntegration,
    BitbucketServerIntegrationConfig,
)

HOST = "bitbucket.example.com"
API_BASE_URL = f"https://{HOST}/rest/api/1.0"


def make_tar_gz(files: dict[str, bytes], prefix: str = "PROJ-repo") -> bytes:
    """Build a gzipped tar archive with every file under `prefix/`."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        directory = tarfile.TarInfo(name=f"{prefix}/")
        directory.type = tarfile.DIRTYPE
        tar.addfile(directory)
        for path, content in files.items():
            info = tarfile.TarInfo(name=f"{prefix}/{path}")
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


@pytest.fixture
def tar_gz() -> Callable[..., bytes]:
    return make_tar_gz


@pytest.fixture
def config() -> BitbucketServerIntegrationConfig:
    return BitbucketServerIntegrationConfig(
        host=HOST, api_base_url=API_BASE_URL, token="test-token"
    )


@pytest.fixture
def integration(
    config: BitbucketServerIntegrationConfig,
) -> BitbucketServerIntegration:
    return BitbucketServerIntegration(config)
