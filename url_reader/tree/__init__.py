"""Materialization of repository trees from archive downloads."""

from url_reader.tree.glob import glob_matcher
from url_reader.tree.tar_archive import ReadTreeResponseFactory, TarArchiveResponse

__all__ = [
    "ReadTreeResponseFactory",
    "TarArchiveResponse",
    "glob_matcher",
]
