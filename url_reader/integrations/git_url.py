"""Parsing of Bitbucket Server repository URLs."""

from urllib.parse import parse_qs, quote, unquote, urlparse, urlunparse

from pydantic import BaseModel

FILEPATH_TYPES = ("browse", "raw", "src")


class GitUrl(BaseModel, frozen=True):
    """Repository coordinates extracted from a Bitbucket Server URL.

    Attributes:
        scheme: URL scheme (e.g. "https")
        host: Host including an optional port
        owner: Project key
        name: Repository slug
        ref: Git reference from the "at" query parameter, empty if absent
        filepathtype: Path type segment ("browse", "raw", "src"), empty if absent
        filepath: Path inside the repository as written in the URL (URL-encoded)
        repo_root_path: URL path up to and including the path type segment
        query: Raw query string
    """

    scheme: str
    host: str
    owner: str
    name: str
    ref: str = ""
    filepathtype: str = ""
    filepath: str = ""
    repo_root_path: str
    query: str = ""

    @property
    def decoded_filepath(self) -> str:
        return unquote(self.filepath)

    def with_filepath(self, filepath: str) -> str:
        """Build the URL addressing `filepath` in the same repository and ref.

        `filepath` is a decoded path and is percent-encoded here. An empty
        `filepath` addresses the repository root, without trailing slash.
        """
        path = self.repo_root_path
        if filepath := filepath.strip("/"):
            path = f"{path}/{quote(filepath, safe='/')}"
        return urlunparse((self.scheme, self.host, path, "", self.query, ""))


def parse_git_url(url: str) -> GitUrl:
    """Parse a Bitbucket Server URL.

    Supported shapes:
        https://host[/context]/projects/PROJ/repos/repo[/browse|raw/path][?at=ref]
        https://host[/context]/scm/PROJ/repo.git
        https://host/PROJ/repo[/browse|raw|src/path][?at=ref]

    Args:
        url: Repository, file or tree URL

    Returns:
        GitUrl with the repository coordinates

    Raises:
        ValueError: If URL format is invalid

    Examples:
        >>> parse_git_url("https://bitbucket.example.com/projects/PROJ/repos/repo/browse/docs/index.md?at=main")
        GitUrl(owner='PROJ', name='repo', ref='main', filepath='docs/index.md', ...)
    """
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        msg = f"Invalid Bitbucket Server URL (expected absolute URL): {url}"
        raise ValueError(msg)

    parts = [p for p in parsed.path.split("/") if p]

    if "projects" in parts and _follows(parts, "projects", "repos"):
        index = parts.index("projects")
        owner, name = parts[index + 1], parts[index + 3]
        root, rest = parts[: index + 4], parts[index + 4 :]
    elif "scm" in parts and len(parts) >= parts.index("scm") + 3:
        index = parts.index("scm")
        owner, name = parts[index + 1], parts[index + 2].removesuffix(".git")
        root, rest = [*parts[:index + 1], owner, name], parts[index + 3 :]
    else:
        # Must have at least project and repo
        min_parts = 2
        if len(parts) < min_parts:
            msg = f"Invalid Bitbucket Server URL format (expected project/repo): {url}"
            raise ValueError(msg)
        owner, name = parts[0], parts[1].removesuffix(".git")
        root, rest = [owner, name], parts[2:]

    filepathtype = ""
    if rest:
        if rest[0] not in FILEPATH_TYPES:
            msg = f"Invalid Bitbucket Server URL path type {rest[0]!r}: {url}"
            raise ValueError(msg)
        filepathtype = rest[0]
        root.append(filepathtype)
        rest = rest[1:]

    ref = parse_qs(parsed.query).get("at", [""])[0]

    return GitUrl(
        scheme=parsed.scheme,
        host=parsed.netloc,
        owner=owner,
        name=name,
        ref=ref,
        filepathtype=filepathtype,
        filepath="/".join(rest),
        repo_root_path="/" + "/".join(root),
        query=parsed.query,
    )


def _follows(parts: list[str], first: str, second: str) -> bool:
    # PROJ/repos/repo after "projects"
    index = parts.index(first)
    return len(parts) >= index + 4 and parts[index + 2] == second
