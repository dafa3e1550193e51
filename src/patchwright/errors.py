"""Error taxonomy shared by the patch engine."""

from __future__ import annotations

from typing import Any, Mapping


class PatchError(RuntimeError):
    """Raised when a patch fails validation or application."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class EditResolutionError(PatchError):
    """Raised when token or range edits cannot be resolved against a file."""


class TokenNotFoundError(EditResolutionError):
    """The requested occurrence of a literal token does not exist."""


class InvalidRangeError(EditResolutionError):
    """A replace-range edit falls outside the file text."""


class OverlappingEditsError(EditResolutionError):
    """Two resolved edits touch the same span of text."""


class InstructionError(PatchError):
    """Raised when a line-oriented patch instruction cannot be compiled."""


class MissingFieldError(InstructionError):
    """A field required by the instruction's operation is absent."""


class InvalidLineNumberError(InstructionError):
    """The instruction's line index lies outside the target file."""


class TargetNotFoundError(InstructionError):
    """The content an instruction refers to could not be located."""


class FileAlreadyExistsError(InstructionError):
    """An ``add`` instruction targets a file that is already present."""


class FileMissingError(InstructionError):
    """A non-``add`` instruction targets a file that does not exist."""


class DiffVerificationError(PatchError):
    """A synthesized diff did not reproduce its target text when re-applied."""


class HunkApplicationError(PatchError):
    """Hunks could not be applied to the current file content."""


__all__ = [
    "DiffVerificationError",
    "EditResolutionError",
    "FileAlreadyExistsError",
    "FileMissingError",
    "HunkApplicationError",
    "InstructionError",
    "InvalidLineNumberError",
    "InvalidRangeError",
    "MissingFieldError",
    "OverlappingEditsError",
    "PatchError",
    "TargetNotFoundError",
    "TokenNotFoundError",
]
