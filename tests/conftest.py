from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, Mapping

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class InMemoryFileSystem:
    """Dictionary-backed file system used to exercise the patch engine without disk I/O."""

    def __init__(self, files: Mapping[str, str] | None = None) -> None:
        self.files: Dict[str, str] = dict(files or {})
        self.directories: set[str] = set()
        self.writes: list[str] = []

    def read_text(self, path: str) -> str:
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(path) from None

    def write_text(self, path: str, text: str) -> None:
        self.files[path] = text
        self.writes.append(path)

    def make_dirs(self, path: str) -> None:
        self.directories.add(path)

    def exists(self, path: str) -> bool:
        return path in self.files

    def list_files(self) -> list[str]:
        return sorted(self.files)


@pytest.fixture()
def memory_fs() -> InMemoryFileSystem:
    """Empty in-memory workspace."""

    return InMemoryFileSystem()
