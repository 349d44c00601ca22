"""Tree responses backed by (gzipped) tar archives."""

import asyncio
import contextlib
import gzip
import zlib
import tarfile
import tempfile
from collections.abc import AsyncIterable, Iterator
from pathlib import Path
from typing import IO

import structlog

from url_reader.errors import ResponseConsumedError, UnexpectedResponseError
from url_reader.models import ReadTreeFile, ReadTreeFilter, ReadTreeResponse

logger = structlog.get_logger(__name__)

DEFAULT_SPOOL_MAX_SIZE = 10 * 1024 * 1024

# Raised by tarfile and its decompressors on bodies that are not (complete) archives
ARCHIVE_ERRORS = (tarfile.TarError, EOFError, zlib.error, gzip.BadGzipFile)


@contextlib.contextmanager
def _archive_errors() -> Iterator[None]:
    try:
        yield
    except ARCHIVE_ERRORS as e:
        msg = f"Failed to read tree archive, {e!r}"
        raise UnexpectedResponseError(msg) from e


class TarArchiveResponse:
    """Files of a tar archive, optionally narrowed to a sub-path and filtered.

    Archive entries are expected as ``<prefix>/<path>``. The prefix directory
    is stripped, then the sub-path, and the remaining path is what the filter
    sees and what the files are reported as.

    Args:
        archive: Seekable file object holding the (optionally compressed) tar
        subpath: Directory inside the archive to narrow to, empty for all
        etag: Revision fingerprint of the archived tree
        filter: Optional predicate on the relative file path
        strip_first_directory: Whether entries carry a prefix directory
    """

    def __init__(
        self,
        archive: IO[bytes],
        subpath: str,
        etag: str,
        filter: ReadTreeFilter | None = None,  # noqa: A002
        *,
        strip_first_directory: bool = True,
    ) -> None:
        self.etag = etag
        self._archive = archive
        self._subpath = f"{subpath.strip('/')}/" if subpath.strip("/") else ""
        self._filter = filter
        self._strip_first_directory = strip_first_directory
        self._consumed = False

    def _consume(self) -> None:
        if self._consumed:
            raise ResponseConsumedError()
        self._consumed = True

    def _relative_path(self, name: str) -> str | None:
        path = name.removeprefix("./")
        if self._strip_first_directory:
            _, sep, path = path.partition("/")
            if not sep:
                return None
        if self._subpath:
            if not path.startswith(self._subpath):
                return None
            path = path.removeprefix(self._subpath)
        return path or None

    def _members(self, tar: tarfile.TarFile) -> Iterator[tuple[tarfile.TarInfo, str]]:
        for member in tar:
            if not member.isfile():
                continue
            path = self._relative_path(member.name)
            if path is None:
                continue
            if self._filter and not self._filter(path):
                continue
            yield member, path

    def _open(self) -> tarfile.TarFile:
        self._archive.seek(0)
        return tarfile.open(fileobj=self._archive, mode="r:*")

    def _read_files(self) -> list[ReadTreeFile]:
        files: list[ReadTreeFile] = []
        with _archive_errors(), self._archive, self._open() as tar:
            for member, path in self._members(tar):
                extracted = tar.extractfile(member)
                content = extracted.read() if extracted else b""
                files.append(ReadTreeFile(path=path, content=content))
        logger.debug("Read tree files", etag=self.etag, count=len(files))
        return files

    def _repack(self) -> IO[bytes]:
        # Caller owns the returned file object
        output = tempfile.TemporaryFile()  # noqa: SIM115
        try:
            with _archive_errors(), self._archive, self._open() as tar, tarfile.open(
                fileobj=output, mode="w"
            ) as out:
                for member, path in self._members(tar):
                    extracted = tar.extractfile(member)
                    info = tarfile.TarInfo(name=path)
                    info.size = member.size
                    info.mtime = member.mtime
                    info.mode = member.mode
                    out.addfile(info, extracted)
        except BaseException:
            output.close()
            raise
        output.seek(0)
        return output

    def _extract(self, target_dir: str | None) -> str:
        directory = Path(target_dir or tempfile.mkdtemp(prefix="url-reader-"))
        root = directory.resolve()
        with _archive_errors(), self._archive, self._open() as tar:
            for member, path in self._members(tar):
                destination = (root / path).resolve()
                if not destination.is_relative_to(root):
                    msg = f"Refusing to extract {member.name!r} outside of {root}"
                    raise ValueError(msg)
                destination.parent.mkdir(parents=True, exist_ok=True)
                extracted = tar.extractfile(member)
                destination.write_bytes(extracted.read() if extracted else b"")
        return str(directory)

    async def files(self) -> list[ReadTreeFile]:
        self._consume()
        return await asyncio.to_thread(self._read_files)

    async def archive(self) -> IO[bytes]:
        self._consume()
        return await asyncio.to_thread(self._repack)

    async def dir(self, target_dir: str | None = None) -> str:
        self._consume()
        return await asyncio.to_thread(self._extract, target_dir)


class ReadTreeResponseFactory:
    """Builds tree responses from archive byte streams.

    Archive bytes are spooled: kept in memory up to `spool_max_size`, then
    written to a temporary file.
    """

    def __init__(self, spool_max_size: int = DEFAULT_SPOOL_MAX_SIZE) -> None:
        self._spool_max_size = spool_max_size

    async def from_tar_archive(
        self,
        stream: AsyncIterable[bytes],
        subpath: str = "",
        etag: str = "",
        filter: ReadTreeFilter | None = None,  # noqa: A002
    ) -> ReadTreeResponse:
        """Materialize a tree response from a tar archive stream.

        Args:
            stream: Archive bytes
            subpath: Directory inside the repository to narrow to
            etag: Revision fingerprint to annotate the response with
            filter: Optional predicate on the path relative to `subpath`
        """
        spool = tempfile.SpooledTemporaryFile(max_size=self._spool_max_size)  # noqa: SIM115
        try:
            async for chunk in stream:
                spool.write(chunk)
        except BaseException:
            spool.close()
            raise
        return TarArchiveResponse(spool, subpath=subpath, etag=etag, filter=filter)
