"""Typed payloads that describe structured edits submitted to the patch engine."""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class EditModel(BaseModel):
    """Base model for edit payloads with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class ReplaceEdit(EditModel):
    """Replace the Nth occurrence of a literal token."""

    kind: Literal["replace"] = "replace"
    find: str = Field(min_length=1)
    replacement: str = Field(alias="replace")
    occurrence: int = Field(default=1, ge=1)


class InsertAfterEdit(EditModel):
    """Insert text immediately after the Nth occurrence of a literal token."""

    kind: Literal["insert_after", "insertAfter"] = "insert_after"
    find: str = Field(min_length=1)
    insertion: str = Field(alias="insert")
    occurrence: int = Field(default=1, ge=1)


class DeleteEdit(EditModel):
    """Remove the Nth occurrence of a literal token."""

    kind: Literal["delete"] = "delete"
    find: str = Field(min_length=1)
    occurrence: int = Field(default=1, ge=1)


class ReplaceRangeEdit(EditModel):
    """Replace the half-open character range ``[start, end)``."""

    kind: Literal["replace_range", "replaceRange"] = "replace_range"
    start: int
    end: int
    replacement: str = Field(alias="replace")


Edit = Annotated[
    Union[ReplaceEdit, InsertAfterEdit, DeleteEdit, ReplaceRangeEdit],
    Field(discriminator="kind"),
]


class FileChangePlan(EditModel):
    """Token/range edits targeting a single file."""

    file_path: str = Field(alias="filePath", min_length=1)
    edits: List[Edit] = Field(default_factory=list)


class Plan(EditModel):
    """Batch of per-file edit plans processed deterministically."""

    changes: List[FileChangePlan] = Field(default_factory=list)


class PatchInstruction(BaseModel):
    """Line-oriented edit request compiled into a unified diff hunk.

    ``line`` is a 0-based line index. Which of ``content`` and
    ``old_content`` are required depends on ``operation``; presence is
    checked by the compiler so the caller gets a descriptive error instead of
    a schema failure.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    file: str
    operation: Literal["add", "insert", "replace", "delete"]
    line: Optional[int] = None
    content: Optional[str] = None
    old_content: Optional[str] = Field(default=None, alias="oldContent")
    context: Optional[str] = None


__all__ = [
    "DeleteEdit",
    "Edit",
    "FileChangePlan",
    "InsertAfterEdit",
    "PatchInstruction",
    "Plan",
    "ReplaceEdit",
    "ReplaceRangeEdit",
]
