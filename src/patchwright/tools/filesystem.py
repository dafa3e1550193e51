"""File-system seam used by every side-effecting patch operation."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Protocol

from ..errors import PatchError

__all__ = ["FileSystem", "LocalFileSystem", "is_safe_relative_path"]


class FileSystem(Protocol):
    """Minimal read/write/mkdir surface the patch engine depends on."""

    def read_text(self, path: str) -> str:
        """Return the file's text.

        Raises ``FileNotFoundError`` for a missing file and ``PatchError`` when
        the content cannot be decoded.
        """

    def write_text(self, path: str, text: str) -> None:
        """Replace the file's content with ``text``."""

    def make_dirs(self, path: str) -> None:
        """Recursively create directory ``path``."""

    def exists(self, path: str) -> bool:
        """Return True when ``path`` names an existing file."""

    def list_files(self) -> list[str]:
        """Return every file as a sorted POSIX path relative to the root."""


def is_safe_relative_path(path: str) -> bool:
    """Return True when ``path`` stays inside the workspace root."""
    candidate = Path(path)
    if not path.strip() or candidate.is_absolute():
        return False
    parts = candidate.parts
    if any(part == ".." for part in parts):
        return False
    if parts and parts[0] == ".git":
        return False
    return True


class LocalFileSystem:
    """Disk-backed :class:`FileSystem` rooted at a workspace directory.

    Paths are resolved relative to ``root`` and may not escape it. Writes land
    in a temporary sibling first and are moved into place with ``os.replace``
    so a reader never observes a half-written file.
    """

    def __init__(self, root: Path | str = ".") -> None:
        self.root = Path(root).resolve()

    def resolve(self, path: str) -> Path:
        """Translate ``path`` into an absolute location under ``root``."""
        target = (self.root / path).resolve()
        try:
            target.relative_to(self.root)
        except ValueError:
            raise PatchError(f"Path escapes workspace root: {path}", details={"path": path}) from None
        return target

    def read_text(self, path: str) -> str:
        target = self.resolve(path)
        if not target.is_file():
            raise FileNotFoundError(path)
        try:
            with target.open("r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except UnicodeDecodeError as error:
            raise PatchError(
                f"File is not valid UTF-8: {path}",
                details={"path": path, "position": error.start},
            ) from error

    def write_text(self, path: str, text: str) -> None:
        target = self.resolve(path)
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="",
            dir=target.parent,
            prefix=f".{target.name}.",
            suffix=".tmp",
            delete=False,
        )
        temp_path = Path(handle.name)
        try:
            with handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            mode = target.stat().st_mode & 0o777 if target.exists() else 0o644
            temp_path.chmod(mode)
            os.replace(temp_path, target)
        finally:
            temp_path.unlink(missing_ok=True)

    def make_dirs(self, path: str) -> None:
        self.resolve(path).mkdir(parents=True, exist_ok=True)

    def exists(self, path: str) -> bool:
        try:
            return self.resolve(path).is_file()
        except PatchError:
            return False

    def list_files(self) -> list[str]:
        files: list[str] = []
        for path in sorted(self.root.rglob("*")):
            relative = path.relative_to(self.root)
            if ".git" in relative.parts or not path.is_file():
                continue
            files.append(relative.as_posix())
        return files
