"""Apply untrusted patch text (unified diffs or full-file blocks) to a workspace."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, Sequence

from ..config import PatchSettings
from ..errors import HunkApplicationError, PatchError
from ..telemetry import emit_event, preview
from .diff_parser import FullFileBlock, ParsedPatch, PatchMode, parse_submission
from .filesystem import FileSystem, is_safe_relative_path
from .hunk_apply import DEFAULT_STRATEGIES, HunkStrategy, apply_with_fallback

__all__ = ["PatchApplicationResult", "apply_full_file_blocks", "apply_parsed_patches", "write_patch"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PatchApplicationResult:
    """Outcome of :func:`write_patch`."""

    applied: list[str] = field(default_factory=list)
    mode: PatchMode = PatchMode.NONE
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.mode is not PatchMode.NONE

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"applied": list(self.applied), "mode": self.mode.value}
        if self.error is not None:
            payload["error"] = self.error
        return payload


def _ensure_parent(filesystem: FileSystem, path: str) -> None:
    parent = posixpath.dirname(path.replace("\\", "/"))
    if parent:
        filesystem.make_dirs(parent)


def _read_or_empty(filesystem: FileSystem, path: str) -> str:
    try:
        return filesystem.read_text(path)
    except FileNotFoundError:
        return ""


def _apply_one_patch(
    patch: ParsedPatch,
    *,
    filesystem: FileSystem,
    strategies: Sequence[HunkStrategy],
) -> str:
    target = patch.target_path
    if target is None:
        raise PatchError("Patch does not name a target file.")
    if not is_safe_relative_path(target):
        raise PatchError(f"Refusing unsafe patch path: {target}", details={"path": target})

    original = _read_or_empty(filesystem, target)
    attempt = apply_with_fallback(original, patch.hunks, strategies)
    if not attempt.ok:
        raise HunkApplicationError(
            f"Hunks did not apply to {target}: {attempt.error}",
            details={"path": target, "hunks": len(patch.hunks)},
        )
    _ensure_parent(filesystem, target)
    filesystem.write_text(target, attempt.text or "")
    emit_event(
        "patch_file_applied",
        path=target,
        strategy=attempt.strategy,
        hunks=len(patch.hunks),
        skipped_hunks=list(attempt.skipped),
    )
    return target


def apply_parsed_patches(
    patches: Sequence[ParsedPatch],
    *,
    filesystem: FileSystem,
    strategies: Sequence[HunkStrategy] = DEFAULT_STRATEGIES,
) -> list[str]:
    """Apply each patch independently and return the paths that were written.

    A failing file is logged and skipped; the remaining files still apply.
    """
    applied: list[str] = []
    for patch in patches:
        try:
            target = _apply_one_patch(patch, filesystem=filesystem, strategies=strategies)
        except (PatchError, OSError) as error:
            logger.warning("Skipping patch for %s: %s", patch.target_path, error)
            emit_event("patch_file_failed", path=patch.target_path, error=str(error), mode=PatchMode.DIFF.value)
            continue
        if target not in applied:
            applied.append(target)
    return applied


def apply_full_file_blocks(blocks: Sequence[FullFileBlock], *, filesystem: FileSystem) -> list[str]:
    """Write every block's content verbatim and return the written paths."""
    applied: list[str] = []
    for block in blocks:
        if not is_safe_relative_path(block.path):
            logger.warning("Skipping full-file block with unsafe path: %s", block.path)
            emit_event("patch_file_failed", path=block.path, error="unsafe path", mode=PatchMode.FULL_FILE.value)
            continue
        try:
            _ensure_parent(filesystem, block.path)
            filesystem.write_text(block.path, block.content)
        except (PatchError, OSError) as error:
            logger.warning("Failed to write %s: %s", block.path, error)
            emit_event("patch_file_failed", path=block.path, error=str(error), mode=PatchMode.FULL_FILE.value)
            continue
        emit_event("patch_file_applied", path=block.path, strategy="full-file", bytes=len(block.content))
        if block.path not in applied:
            applied.append(block.path)
    return applied


def _finish(result: PatchApplicationResult) -> PatchApplicationResult:
    emit_event("patch_apply_finished", **result.to_dict())
    return result


def write_patch(
    patch_text: str,
    *,
    filesystem: FileSystem,
    settings: PatchSettings | None = None,
    strategies: Sequence[HunkStrategy] = DEFAULT_STRATEGIES,
) -> PatchApplicationResult:
    """Parse ``patch_text`` and apply it through ``filesystem``.

    Never raises for malformed input: unparseable or inapplicable text comes
    back as ``mode="none"`` with an explanatory ``error``.
    """
    settings = settings or PatchSettings()
    text = patch_text or ""

    size = len(text.encode("utf-8"))
    if size > settings.max_patch_bytes:
        logger.warning("Rejecting patch of %s bytes (limit %s)", size, settings.max_patch_bytes)
        return _finish(
            PatchApplicationResult(
                error=f"Patch exceeds maximum size of {settings.max_patch_bytes} bytes ({size} bytes).",
            )
        )

    submission = parse_submission(text, unescape=settings.unescape)
    emit_event(
        "patch_parsed",
        kind=submission.kind.value,
        strategy=submission.strategy,
        files=[patch.target_path for patch in submission.patches] or [block.path for block in submission.blocks],
        hunks=sum(len(patch.hunks) for patch in submission.patches),
        preview=preview(text),
    )

    if submission.kind is PatchMode.DIFF:
        applied = apply_parsed_patches(submission.patches, filesystem=filesystem, strategies=strategies)
        if applied:
            return _finish(PatchApplicationResult(applied=applied, mode=PatchMode.DIFF))
        if submission.blocks:
            logger.info("No diff hunks applied; falling back to %s full-file block(s)", len(submission.blocks))
            applied = apply_full_file_blocks(submission.blocks, filesystem=filesystem)
            if applied:
                return _finish(PatchApplicationResult(applied=applied, mode=PatchMode.FULL_FILE))
        return _finish(PatchApplicationResult(error="No hunks could be applied"))

    if submission.kind is PatchMode.FULL_FILE:
        applied = apply_full_file_blocks(submission.blocks, filesystem=filesystem)
        if applied:
            return _finish(PatchApplicationResult(applied=applied, mode=PatchMode.FULL_FILE))
        return _finish(PatchApplicationResult(error="No full-file blocks could be written"))

    return _finish(PatchApplicationResult(error="No recognized patch blocks"))
