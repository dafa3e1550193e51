"""Deterministic unified-diff synthesis with a mandatory self-check."""

from __future__ import annotations

import difflib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Mapping, Sequence

from ..errors import DiffVerificationError
from ..structured import FileChangePlan, Plan
from ..telemetry import emit_event, preview
from .diff_parser import NO_NEWLINE_MARKER, parse_unified_diff_strict
from .edits import apply_edits_to_text
from .hunk_apply import apply_hunks, split_lines

__all__ = ["FileDiff", "generate_unified_diff", "plan_to_unified_diffs", "verify_unified_diff"]

ReadFile = Callable[[str], str]


@dataclass(slots=True)
class FileDiff:
    """Verified unified diff for one file of a plan."""

    file_path: str
    diff: str

    def to_dict(self) -> dict[str, Any]:
        return {"file_path": self.file_path, "diff": self.diff}


def _format_range(index: int, count: int) -> str:
    start = index + 1 if count else index
    return f"{start},{count}"


def _emit_line(output: list[str], prefix: str, line: str) -> None:
    if line.endswith("\n"):
        output.append(f"{prefix}{line}")
        return
    output.append(f"{prefix}{line}\n")
    output.append(f"{NO_NEWLINE_MARKER}\n")


def verify_unified_diff(file_path: str, diff: str, old_text: str, new_text: str) -> None:
    """Re-parse ``diff`` and apply it to ``old_text``; raise unless it yields ``new_text``."""
    attempt = parse_unified_diff_strict(diff)
    if not attempt.ok or len(attempt.patches) != 1:
        raise DiffVerificationError(
            f"Generated diff for {file_path} could not be re-parsed",
            details={"file_path": file_path, "error": attempt.error, "diff": preview(diff)},
        )
    applied = apply_hunks(old_text, attempt.patches[0].hunks)
    if applied.text != new_text:
        raise DiffVerificationError(
            f"Generated diff for {file_path} does not reproduce the target text",
            details={"file_path": file_path, "error": applied.error, "diff": preview(diff)},
        )


def generate_unified_diff(file_path: str, old_text: str, new_text: str, *, context_lines: int = 3) -> str:
    """Return a verified unified diff turning ``old_text`` into ``new_text``.

    Identical inputs yield an empty string. Ranges are always written as
    ``start,count`` and lines without a trailing newline are followed by the
    ``\\ No newline at end of file`` marker.
    """
    if old_text == new_text:
        return ""

    old_lines = split_lines(old_text)
    new_lines = split_lines(new_text)
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)

    output = [f"--- a/{file_path}\n", f"+++ b/{file_path}\n"]
    for group in matcher.get_grouped_opcodes(context_lines):
        old_start, old_end = group[0][1], group[-1][2]
        new_start, new_end = group[0][3], group[-1][4]
        output.append(
            f"@@ -{_format_range(old_start, old_end - old_start)} "
            f"+{_format_range(new_start, new_end - new_start)} @@\n"
        )
        for tag, i1, i2, j1, j2 in group:
            if tag == "equal":
                for line in old_lines[i1:i2]:
                    _emit_line(output, " ", line)
                continue
            if tag in {"replace", "delete"}:
                for line in old_lines[i1:i2]:
                    _emit_line(output, "-", line)
            if tag in {"replace", "insert"}:
                for line in new_lines[j1:j2]:
                    _emit_line(output, "+", line)

    diff = "".join(output)
    verify_unified_diff(file_path, diff, old_text, new_text)
    return diff


def _diff_for_change(change: FileChangePlan, read_file: ReadFile, context_lines: int) -> FileDiff:
    original = read_file(change.file_path)
    updated = apply_edits_to_text(original, change.edits)
    diff = generate_unified_diff(change.file_path, original, updated, context_lines=context_lines)
    return FileDiff(file_path=change.file_path, diff=diff)


def plan_to_unified_diffs(
    plan: Plan | Mapping[str, Any],
    read_file: ReadFile,
    *,
    context_lines: int = 3,
    max_workers: int = 1,
) -> list[FileDiff]:
    """Resolve every change of ``plan`` into a verified diff.

    Results follow the plan's order. The first failing file aborts the whole
    call and no diffs are returned.
    """
    if not isinstance(plan, Plan):
        plan = Plan.model_validate(plan)
    changes: Sequence[FileChangePlan] = plan.changes
    worker = partial(_diff_for_change, read_file=read_file, context_lines=context_lines)

    if max_workers <= 1 or len(changes) <= 1:
        diffs = [worker(change) for change in changes]
    else:
        with ThreadPoolExecutor(max_workers=min(max_workers, len(changes))) as pool:
            diffs = list(pool.map(worker, changes))

    emit_event(
        "plan_diffs_generated",
        files=[item.file_path for item in diffs],
        unchanged=[item.file_path for item in diffs if not item.diff],
    )
    return diffs
