"""Glob matching of repository paths.

Patterns follow minimatch conventions: ``**`` spans any number of directories
(including none), ``{a,b}`` expands alternatives, a leading ``!`` matches every
path the rest of the pattern does not, and wildcards do not match
dotfiles.
"""

from collections.abc import Callable

from wcmatch import glob

GLOB_FLAGS = glob.GLOBSTAR | glob.BRACE | glob.EXTGLOB | glob.NEGATE | glob.NEGATEALL


def glob_matcher(pattern: str) -> Callable[[str], bool]:
    """Build a path predicate for `pattern`.

    Examples:
        >>> match = glob_matcher("**/*.yaml")
        >>> match("c.yaml"), match("a/b.yaml"), match("a/b.json")
        (True, True, False)
    """

    def match(path: str) -> bool:
        return glob.globmatch(path, pattern, flags=GLOB_FLAGS)

    return match
