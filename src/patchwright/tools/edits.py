"""Resolve token/range edits into concrete, non-overlapping text splices."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..errors import InvalidRangeError, OverlappingEditsError, TokenNotFoundError
from ..structured import DeleteEdit, Edit, InsertAfterEdit, ReplaceEdit, ReplaceRangeEdit

__all__ = [
    "ConcreteEdit",
    "apply_concrete_edits",
    "apply_edits_to_text",
    "find_nth_index",
    "resolve_edits",
]


@dataclass(frozen=True, slots=True)
class ConcreteEdit:
    """Character range ``[start, end)`` replaced by ``text``."""

    start: int
    end: int
    text: str

    def overlaps(self, other: "ConcreteEdit") -> bool:
        return max(self.start, other.start) < min(self.end, other.end)


def find_nth_index(haystack: str, needle: str, occurrence: int) -> int:
    """Return the offset of the ``occurrence``-th match of ``needle`` or -1."""
    if occurrence <= 0 or not needle:
        return -1
    position = 0
    index = -1
    for _ in range(occurrence):
        index = haystack.find(needle, position)
        if index == -1:
            return -1
        position = index + len(needle)
    return index


def _locate_token(text: str, find: str, occurrence: int, action: str) -> int:
    start = find_nth_index(text, find, occurrence)
    if start == -1:
        raise TokenNotFoundError(
            f'Token not found for {action}: "{find}" (occurrence {occurrence})',
            details={"find": find, "occurrence": occurrence, "action": action},
        )
    return start


def resolve_edits(original_text: str, edits: Sequence[Edit]) -> list[ConcreteEdit]:
    """Resolve ``edits`` against ``original_text`` into concrete ranges.

    Every edit is resolved against the original text, never against the
    output of another edit. Overlapping results are rejected outright instead
    of being ordered heuristically.
    """
    concrete: list[ConcreteEdit] = []
    length = len(original_text)

    for edit in edits:
        if isinstance(edit, ReplaceRangeEdit):
            if edit.start < 0 or edit.end < edit.start or edit.end > length:
                raise InvalidRangeError(
                    f"Invalid replace_range: [{edit.start}, {edit.end}] for text of length {length}",
                    details={"start": edit.start, "end": edit.end, "length": length},
                )
            concrete.append(ConcreteEdit(edit.start, edit.end, edit.replacement))
        elif isinstance(edit, ReplaceEdit):
            start = _locate_token(original_text, edit.find, edit.occurrence, "replace")
            concrete.append(ConcreteEdit(start, start + len(edit.find), edit.replacement))
        elif isinstance(edit, InsertAfterEdit):
            start = _locate_token(original_text, edit.find, edit.occurrence, "insert_after")
            position = start + len(edit.find)
            concrete.append(ConcreteEdit(position, position, edit.insertion))
        elif isinstance(edit, DeleteEdit):
            start = _locate_token(original_text, edit.find, edit.occurrence, "delete")
            concrete.append(ConcreteEdit(start, start + len(edit.find), ""))
        else:
            raise TypeError(f"Unsupported edit type: {type(edit).__name__}")

    for index, left in enumerate(concrete):
        for right in concrete[index + 1 :]:
            if left.overlaps(right):
                raise OverlappingEditsError(
                    "Overlapping edits detected; refusing to apply ambiguous plan.",
                    details={
                        "first": [left.start, left.end],
                        "second": [right.start, right.end],
                    },
                )
    return concrete


def apply_concrete_edits(text: str, edits: Sequence[ConcreteEdit]) -> str:
    """Splice non-overlapping ``edits`` into ``text`` from right to left."""
    # Ties on start: wider ranges first, then later-listed edits first, so
    # insertions at a shared offset keep their listed order.
    ordered = sorted(
        enumerate(edits),
        key=lambda item: (item[1].start, item[1].end, item[0]),
        reverse=True,
    )
    result = text
    for _, edit in ordered:
        result = result[: edit.start] + edit.text + result[edit.end :]
    return result


def apply_edits_to_text(original_text: str, edits: Sequence[Edit]) -> str:
    """Resolve and apply ``edits`` to ``original_text``."""
    return apply_concrete_edits(original_text, resolve_edits(original_text, edits))
