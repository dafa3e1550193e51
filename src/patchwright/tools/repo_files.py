"""Read and search helpers exposed to the decision dispatcher."""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Sequence

from ..config import DEFAULT_SEARCH_EXCLUDE, DEFAULT_SEARCH_INCLUDE
from ..errors import PatchError
from .filesystem import FileSystem

__all__ = ["SearchHit", "SearchResult", "iter_repo_files", "read_files", "search_repo"]

logger = logging.getLogger(__name__)

_SNIPPET_CHARS = 400


@dataclass(slots=True)
class SearchHit:
    file: str
    line: int
    snippet: str

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "line": self.line, "snippet": self.snippet}


@dataclass(slots=True)
class SearchResult:
    """Case-insensitive line matches for ``query``."""

    query: str
    hits: list[SearchHit] = field(default_factory=list)
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "hits": [hit.to_dict() for hit in self.hits],
            "truncated": self.truncated,
        }


def read_files(
    paths: Iterable[str],
    *,
    filesystem: FileSystem,
    max_chars: int | None = None,
) -> dict[str, str]:
    """Return the text of every readable path; unreadable paths are omitted."""
    results: dict[str, str] = {}
    for path in paths:
        try:
            text = filesystem.read_text(path)
        except (PatchError, OSError) as error:
            logger.debug("Skipping unreadable file %s: %s", path, error)
            continue
        if max_chars is not None and len(text) > max_chars:
            text = f"{text[:max_chars]}\n... [truncated {len(text) - max_chars} chars]"
        results[path] = text
    return results


def _matches(relative: str, patterns: Sequence[str]) -> bool:
    # A leading slash lets "**/" patterns match files at the root as well.
    anchored = f"/{relative}"
    return any(fnmatch.fnmatchcase(relative, pattern) or fnmatch.fnmatchcase(anchored, pattern) for pattern in patterns)


def iter_repo_files(
    filesystem: FileSystem,
    *,
    include: Sequence[str] = DEFAULT_SEARCH_INCLUDE,
    exclude: Sequence[str] = DEFAULT_SEARCH_EXCLUDE,
) -> Iterator[str]:
    """Yield workspace paths that match ``include`` but not ``exclude``."""
    for relative in filesystem.list_files():
        if ".git" in relative.split("/"):
            continue
        if exclude and _matches(relative, exclude):
            continue
        if _matches(relative, include):
            yield relative


def search_repo(
    query: str,
    *,
    filesystem: FileSystem,
    include: Sequence[str] = DEFAULT_SEARCH_INCLUDE,
    exclude: Sequence[str] = DEFAULT_SEARCH_EXCLUDE,
    max_hits: int = 60,
) -> SearchResult:
    """Search workspace files for lines containing ``query`` (case-insensitive)."""
    result = SearchResult(query=query)
    needle = query.lower()
    if not needle:
        return result

    for relative in iter_repo_files(filesystem, include=include, exclude=exclude):
        try:
            text = filesystem.read_text(relative)
        except (PatchError, OSError) as error:
            logger.debug("Skipping %s during search: %s", relative, error)
            continue
        for number, line in enumerate(text.splitlines(), start=1):
            if needle not in line.lower():
                continue
            if len(result.hits) >= max_hits:
                result.truncated = True
                return result
            result.hits.append(SearchHit(file=relative, line=number, snippet=line.strip()[:_SNIPPET_CHARS]))
    return result
