"""Patch engine tools exposed to callers and the decision dispatcher."""

from .diff_parser import (
    FullFileBlock,
    Hunk,
    ParsedPatch,
    PatchMode,
    PatchSubmission,
    normalise_patch_text,
    parse_full_file_blocks,
    parse_submission,
    parse_unified_diff,
    render_full_file_blocks,
)
from .commands import CommandResult, run_command
from .diffs import FileDiff, generate_unified_diff, plan_to_unified_diffs
from .edits import ConcreteEdit, apply_edits_to_text, resolve_edits
from .filesystem import FileSystem, LocalFileSystem
from .hunk_apply import ApplyAttempt, apply_hunks, apply_with_fallback, splice_hunks
from .instructions import PatchGenerationResult, generate_patch
from .patch import PatchApplicationResult, write_patch
from .repo_files import SearchResult, read_files, search_repo

planToUnifiedDiffs = plan_to_unified_diffs

__all__ = [
    "ApplyAttempt",
    "CommandResult",
    "ConcreteEdit",
    "FileDiff",
    "FileSystem",
    "FullFileBlock",
    "Hunk",
    "LocalFileSystem",
    "ParsedPatch",
    "PatchApplicationResult",
    "PatchGenerationResult",
    "PatchMode",
    "PatchSubmission",
    "SearchResult",
    "apply_edits_to_text",
    "apply_hunks",
    "apply_with_fallback",
    "generate_patch",
    "generate_unified_diff",
    "normalise_patch_text",
    "parse_full_file_blocks",
    "parse_submission",
    "parse_unified_diff",
    "planToUnifiedDiffs",
    "plan_to_unified_diffs",
    "read_files",
    "render_full_file_blocks",
    "resolve_edits",
    "run_command",
    "search_repo",
    "splice_hunks",
    "write_patch",
]
