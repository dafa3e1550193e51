"""Compile line-oriented patch instructions into unified diff text."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from pydantic import TypeAdapter, ValidationError

from ..errors import (
    FileAlreadyExistsError,
    FileMissingError,
    InstructionError,
    InvalidLineNumberError,
    MissingFieldError,
    PatchError,
    TargetNotFoundError,
)
from ..structured import PatchInstruction
from ..telemetry import emit_event
from .diff_parser import NO_NEWLINE_MARKER, parse_unified_diff_strict
from .filesystem import FileSystem
from .hunk_apply import split_lines

__all__ = ["PatchGenerationResult", "compile_instruction", "generate_patch"]

logger = logging.getLogger(__name__)

_INSTRUCTION_ADAPTER = TypeAdapter(PatchInstruction)
_CONTENT_REQUIRED = ("add", "insert", "replace")


@dataclass(slots=True)
class PatchGenerationResult:
    """Outcome of compiling a batch of instructions."""

    success: bool
    patch: str | None = None
    error: str | None = None
    applied: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "applied": list(self.applied)}
        if self.patch is not None:
            payload["patch"] = self.patch
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class _FileState:
    lines: list[str]
    exists: bool

    @property
    def missing_final_newline(self) -> bool:
        return bool(self.lines) and not self.lines[-1].endswith("\n")


def _summarise_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "instruction"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return ", ".join(parts)


def _validate_instruction(instruction: PatchInstruction) -> None:
    """Raise when ``instruction`` lacks what its operation needs."""
    problems: list[str] = []
    missing: list[str] = []
    if not instruction.file.strip():
        problems.append("File path is required")
        missing.append("file")
    if instruction.operation in _CONTENT_REQUIRED and not instruction.content:
        problems.append(f"Content is required for '{instruction.operation}' operation")
        missing.append("content")
    if instruction.operation == "delete" and not instruction.old_content:
        problems.append("oldContent is required for 'delete' operation")
        missing.append("oldContent")
    if instruction.line is not None and instruction.line < 0:
        problems.append("Line number must be non-negative")
    if missing:
        raise MissingFieldError(
            ", ".join(problems),
            details={"operation": instruction.operation, "fields": missing},
        )
    if problems:
        raise InvalidLineNumberError(", ".join(problems), details={"line": instruction.line})


def _content_lines(content: str) -> list[str]:
    """Split instruction content into newline-terminated lines."""
    return [line if line.endswith("\n") else line + "\n" for line in split_lines(content)]


def _read_state(filesystem: FileSystem, path: str) -> _FileState:
    try:
        text = filesystem.read_text(path)
    except FileNotFoundError:
        return _FileState(lines=[], exists=False)
    return _FileState(lines=split_lines(text), exists=True)


def _render_line(prefix: str, line: str) -> list[str]:
    if line.endswith("\n"):
        return [f"{prefix}{line}"]
    return [f"{prefix}{line}\n", f"{NO_NEWLINE_MARKER}\n"]


def _verify_counts(path: str, header: tuple[int, int], body: Sequence[str]) -> None:
    """Recount a rendered hunk body and compare it with its header."""
    old_count, new_count = header
    seen_old = seen_new = removed = added = 0
    for line in body:
        if line.startswith("\\"):
            continue
        prefix = line[:1]
        if prefix == "+":
            added += 1
            seen_new += 1
        elif prefix == "-":
            removed += 1
            seen_old += 1
        else:
            seen_old += 1
            seen_new += 1
    if new_count != old_count - removed + added or (seen_old, seen_new) != (old_count, new_count):
        raise PatchError(
            f"Patch hunk line count mismatch for {path}: expected -{old_count}/+{new_count} "
            f"but saw -{seen_old}/+{seen_new}.",
            details={"path": path, "removed": removed, "added": added},
        )


def _build_hunk(
    path: str,
    state: _FileState,
    start: int,
    end: int,
    replacement: list[str],
    *,
    context_lines: int,
) -> str:
    """Render a hunk replacing ``lines[start:end]`` with ``replacement``.

    When the file has no final newline and the hunk reaches the end of the
    file, the new side keeps that state: the last emitted line loses its
    newline and, where needed, the old final line is re-emitted as a -/+ pair.
    """
    lines = state.lines
    total = len(lines)
    context_start = max(0, start - context_lines)
    context_end = min(total, end + context_lines)

    reaches_eof = state.missing_final_newline and context_end == total
    after = lines[end:context_end]
    # The line that must change its terminator has to be inside the hunk.
    if reaches_eof and not after and not replacement and start > 0:
        context_start = min(context_start, start - 1)
    if reaches_eof and not after and start == end == total:
        context_start = min(context_start, total - 1)

    before = lines[context_start:start]
    removed = lines[start:end]
    entries: list[tuple[str, str]] = [(" ", line) for line in before]
    entries.extend(("-", line) for line in removed)
    added = list(replacement)

    if reaches_eof and not after:
        if added:
            if not removed and before and not before[-1].endswith("\n"):
                tail = before[-1]
                entries[len(before) - 1] = ("-", tail)
                added.insert(0, tail + "\n")
            added[-1] = added[-1][:-1] if added[-1].endswith("\n") else added[-1]
        elif before:
            tail = before[-1]
            entries[len(before) - 1] = ("-", tail)
            added.append(tail[:-1] if tail.endswith("\n") else tail)

    entries.extend(("+", line) for line in added)
    entries.extend((" ", line) for line in after)

    old_count = sum(1 for tag, _ in entries if tag != "+")
    new_count = sum(1 for tag, _ in entries if tag != "-")
    old_start = context_start + 1 if old_count else context_start
    new_start = context_start + 1 if new_count else context_start

    body: list[str] = []
    for tag, line in entries:
        body.extend(_render_line(tag, line))
    _verify_counts(path, (old_count, new_count), body)

    header = [f"--- a/{path}\n", f"+++ b/{path}\n", f"@@ -{old_start},{old_count} +{new_start},{new_count} @@\n"]
    return "".join(header + body)


def _build_add(path: str, content: str) -> str:
    lines = split_lines(content)
    body: list[str] = []
    for line in lines:
        body.extend(_render_line("+", line))
    _verify_counts(path, (0, len(lines)), body)
    header = ["--- /dev/null\n", f"+++ b/{path}\n", f"@@ -0,0 +1,{len(lines)} @@\n"]
    return "".join(header + body)


def _locate_target(
    lines: Sequence[str],
    line: int,
    old_content: str,
    *,
    search_window: int,
) -> tuple[int, int] | None:
    """Find the line span matching ``old_content`` near ``line``.

    Tries the exact line first, then the nearest single-line match within
    ``search_window`` lines, then a block match anywhere in the file.
    """
    bare = [item[:-1] if item.endswith("\n") else item for item in lines]
    if line < len(bare) and bare[line] == old_content:
        return line, line + 1
    low = max(0, line - search_window)
    high = min(len(bare) - 1, line + search_window)
    for index in range(low, high + 1):
        if bare[index] == old_content:
            return index, index + 1

    block = old_content[:-1] if old_content.endswith("\n") else old_content
    if not block:
        return None
    text = "".join(lines)
    offset = text.find(block)
    if offset == -1:
        return None
    first = text.count("\n", 0, offset)
    return first, first + block.count("\n") + 1


def _check_line(line: int, state: _FileState) -> None:
    if line < 0 or line > len(state.lines):
        raise InvalidLineNumberError(
            f"Invalid line number {line}. File has {len(state.lines)} lines.",
            details={"line": line, "line_count": len(state.lines)},
        )


def _target_span(instruction: PatchInstruction, state: _FileState, *, search_window: int) -> tuple[int, int]:
    line = instruction.line or 0
    _check_line(line, state)
    if not instruction.old_content:
        if line >= len(state.lines):
            raise InvalidLineNumberError(
                f"Invalid line number {line}. File has {len(state.lines)} lines.",
                details={"line": line, "line_count": len(state.lines)},
            )
        return line, line + 1
    span = _locate_target(state.lines, line, instruction.old_content, search_window=search_window)
    if span is None:
        raise TargetNotFoundError(
            f'Could not find line matching "{instruction.old_content}" around line {line}',
            details={"line": line, "old_content": instruction.old_content},
        )
    return span


def _is_whole_file_replace(instruction: PatchInstruction, state: _FileState) -> bool:
    # Leading and trailing whitespace is ignored when comparing whole files.
    if (instruction.line or 0) == 0 and not instruction.old_content:
        return True
    text = "".join(state.lines)
    return bool(instruction.old_content) and instruction.old_content.strip() == text.strip()


def compile_instruction(
    instruction: PatchInstruction,
    *,
    filesystem: FileSystem,
    context_lines: int = 3,
    search_window: int = 5,
) -> str:
    """Return the unified diff text for a single instruction."""
    _validate_instruction(instruction)
    path = instruction.file
    state = _read_state(filesystem, path)
    operation = instruction.operation

    if operation == "add":
        if state.exists:
            raise FileAlreadyExistsError(
                f"File {path} already exists. Use 'replace' operation to modify existing files.",
                details={"path": path},
            )
        return _build_add(path, instruction.content or "")

    if not state.exists:
        raise FileMissingError(
            f"File {path} does not exist and operation is not 'add'",
            details={"path": path, "operation": operation},
        )

    content = _content_lines(instruction.content or "")
    if operation == "insert":
        line = instruction.line or 0
        _check_line(line, state)
        return _build_hunk(path, state, line, line, content, context_lines=context_lines)

    if operation == "replace":
        if _is_whole_file_replace(instruction, state):
            return _build_hunk(path, state, 0, len(state.lines), content, context_lines=0)
        start, end = _target_span(instruction, state, search_window=search_window)
        return _build_hunk(path, state, start, end, content, context_lines=context_lines)

    start, end = _target_span(instruction, state, search_window=search_window)
    return _build_hunk(path, state, start, end, [], context_lines=context_lines)


def _coerce_instructions(
    instructions: Iterable[PatchInstruction | Mapping[str, Any]],
) -> tuple[list[PatchInstruction], str | None]:
    coerced: list[PatchInstruction] = []
    for raw in instructions:
        if isinstance(raw, PatchInstruction):
            instruction = raw
        else:
            label = raw.get("file") if isinstance(raw, Mapping) else None
            try:
                instruction = _INSTRUCTION_ADAPTER.validate_python(raw)
            except ValidationError as error:
                return coerced, f"Invalid instruction for {label}: {_summarise_validation_error(error)}"
        try:
            _validate_instruction(instruction)
        except InstructionError as error:
            return coerced, f"Invalid instruction for {instruction.file}: {error}"
        coerced.append(instruction)
    return coerced, None


def generate_patch(
    instructions: Iterable[PatchInstruction | Mapping[str, Any]],
    *,
    filesystem: FileSystem,
    context_lines: int = 3,
    search_window: int = 5,
) -> PatchGenerationResult:
    """Compile ``instructions`` into one unified diff.

    Every instruction is validated before any file is read. The first
    instruction that cannot be compiled aborts the batch and no patch is
    returned.
    """
    applied: list[str] = []
    validated, problem = _coerce_instructions(instructions)
    if problem is not None:
        return PatchGenerationResult(success=False, error=problem, applied=applied)

    patches: list[str] = []
    for instruction in validated:
        try:
            patch = compile_instruction(
                instruction,
                filesystem=filesystem,
                context_lines=context_lines,
                search_window=search_window,
            )
        except PatchError as error:
            logger.error("Failed to generate patch for %s: %s", instruction.file, error)
            return PatchGenerationResult(
                success=False,
                error=f"Failed to generate patch for {instruction.file}: {error}",
                applied=applied,
            )
        patches.append(patch)
        applied.append(instruction.file)

    if not patches:
        return PatchGenerationResult(success=False, error="No patches were generated", applied=applied)

    unified = "".join(patches)
    attempt = parse_unified_diff_strict(unified)
    if not attempt.ok:
        return PatchGenerationResult(
            success=False,
            error=f"Generated patch is malformed: {attempt.error or 'no hunks parsed'}",
            applied=applied,
        )

    emit_event("patch_generated", files=applied, instructions=len(validated), bytes=len(unified))
    return PatchGenerationResult(success=True, patch=unified, applied=applied)
