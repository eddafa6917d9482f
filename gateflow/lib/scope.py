"""
File scope matching.

Scope entries are POSIX paths relative to the repository. An entry matches
the path itself, anything beneath it when it names a directory, and glob
patterns (fnmatch) when it contains wildcards.
"""

from fnmatch import fnmatchcase
from typing import Iterable

GLOB_CHARS = set("*?[")


def _norm(path: str) -> str:
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.rstrip("/")


def path_in_scope(path: str, scope: Iterable[str]) -> bool:
    """True if path is covered by any scope entry."""
    target = _norm(path)
    for entry in scope:
        norm = _norm(entry)
        if GLOB_CHARS & set(norm):
            if fnmatchcase(target, norm):
                return True
        elif target == norm or target.startswith(norm + "/"):
            return True
    return False


def _prefix(entry: str) -> str:
    """Literal text every path covered by a normalized entry starts with."""
    for i, ch in enumerate(entry):
        if ch in GLOB_CHARS:
            return entry[:i]
    return entry + "/"


def entries_overlap(a: str, b: str) -> bool:
    """True if some path could be covered by both scope entries.

    Literal entries overlap when one equals or contains the other. Once a
    glob is involved the entries overlap unless their literal prefixes
    diverge; fnmatch lets '*' cross directory separators.
    """
    a, b = _norm(a), _norm(b)
    if not (GLOB_CHARS & set(a)) and not (GLOB_CHARS & set(b)):
        return a == b or a.startswith(b + "/") or b.startswith(a + "/")
    pa, pb = _prefix(a), _prefix(b)
    return pa.startswith(pb) or pb.startswith(pa)


def paths_overlap(a: Iterable[str], b: Iterable[str]) -> bool:
    """True if any entry of a overlaps any entry of b."""
    b = list(b)
    return any(entries_overlap(x, y) for x in a for y in b)


def outside_scope(paths: Iterable[str], scope: list[str]) -> list[str]:
    """Paths not covered by a non-empty scope. An empty scope covers nothing."""
    return [p for p in paths if not path_in_scope(p, scope)]


def common_entries(scopes: list[list[str]]) -> list[str]:
    """Scope entries that overlap at least one entry of every scope.

    An entry that merely contains another common entry is dropped in favour
    of the narrower one, so `src/models` and `src/models/user.py` count as a
    single shared file.
    """
    candidates: list[str] = []
    for scope in scopes:
        for entry in scope:
            norm = _norm(entry)
            if norm in candidates:
                continue
            if all(paths_overlap([norm], other) for other in scopes):
                candidates.append(norm)
    return [
        c for c in candidates
        if not any(o != c and path_in_scope(o, [c]) for o in candidates)
    ]
