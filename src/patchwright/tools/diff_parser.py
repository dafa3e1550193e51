"""Parse unified diffs and full-file blocks from untrusted patch text.

Model output is frequently *almost* a valid diff, so parsing runs as an
ordered chain of strategies. Each strategy reports a :class:`ParseAttempt`
instead of raising; the first one that yields hunks wins.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

__all__ = [
    "DEFAULT_PARSERS",
    "END_MARKER",
    "FILE_MARKER",
    "NO_NEWLINE_MARKER",
    "FullFileBlock",
    "Hunk",
    "ParseAttempt",
    "ParsedPatch",
    "PatchMode",
    "PatchSubmission",
    "normalise_patch_text",
    "parse_full_file_blocks",
    "parse_submission",
    "parse_unified_diff",
    "parse_unified_diff_strict",
    "parse_unified_diff_tolerant",
    "render_full_file_blocks",
    "strip_diff_prefix",
    "unescape_patch_text",
]

logger = logging.getLogger(__name__)

NO_NEWLINE_MARKER = "\\ No newline at end of file"
FILE_MARKER = "=== file:"
END_MARKER = "=== end ==="

_FILE_BLOCK_SPLIT = re.compile(r"(?:^|\n)=== file:")
_FILE_HEADER_SUFFIX = re.compile(r"\s*===\s*$")
_TOLERANT_HUNK_HEADER = re.compile(
    r"^@@+\s*-(?P<old_start>\d+)(?:,(?P<old_count>\d*))?\s*"
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d*))?\s*(?:@@+.*)?$"
)
_NULL_PATH = "/dev/null"


class PatchMode(str, Enum):
    """How a patch submission was interpreted (and applied)."""

    DIFF = "diff"
    FULL_FILE = "full-file"
    NONE = "none"


@dataclass(slots=True)
class Hunk:
    """One contiguous change region of a unified diff.

    ``lines`` keep their one-character prefix (``' '``, ``'+'``, ``'-'``) and
    may contain :data:`NO_NEWLINE_MARKER` entries that qualify the line
    before them.
    """

    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: list[str] = field(default_factory=list)

    @property
    def added_count(self) -> int:
        return sum(1 for line in self.lines if line.startswith("+"))

    @property
    def removed_count(self) -> int:
        return sum(1 for line in self.lines if line.startswith("-"))

    @property
    def has_changes(self) -> bool:
        return any(line[:1] in {"+", "-"} for line in self.lines)

    def old_side(self) -> list[str]:
        """Return the lines this hunk expects to find, newline-terminated."""
        return self._side(excluded="+")

    def new_side(self) -> list[str]:
        """Return the lines this hunk leaves behind, newline-terminated."""
        return self._side(excluded="-")

    def _side(self, *, excluded: str) -> list[str]:
        side: list[str] = []
        previous_kept = False
        for line in self.lines:
            if line.startswith("\\"):
                if previous_kept and side[-1].endswith("\n"):
                    side[-1] = side[-1][:-1]
                continue
            if line[:1] == excluded:
                previous_kept = False
                continue
            side.append(line[1:] + "\n")
            previous_kept = True
        return side

    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_lines} +{self.new_start},{self.new_lines} @@"


@dataclass(slots=True)
class ParsedPatch:
    """Canonical in-memory form of one file's unified diff."""

    old_file_name: str | None
    new_file_name: str | None
    hunks: list[Hunk] = field(default_factory=list)

    @property
    def target_path(self) -> str | None:
        """Repository-relative path the patch writes to."""
        for candidate in (self.new_file_name, self.old_file_name):
            if candidate and candidate != _NULL_PATH:
                stripped = strip_diff_prefix(candidate)
                if stripped:
                    return stripped
        return None


@dataclass(slots=True)
class FullFileBlock:
    """``=== file:<path> ===`` block carrying a file's complete content."""

    path: str
    content: str


@dataclass(slots=True)
class ParseAttempt:
    """Outcome of one parser strategy."""

    strategy: str
    patches: list[ParsedPatch] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.patches)


@dataclass(slots=True)
class PatchSubmission:
    """Interpretation of a raw patch submission."""

    kind: PatchMode
    patches: list[ParsedPatch] = field(default_factory=list)
    blocks: list[FullFileBlock] = field(default_factory=list)
    strategy: str | None = None
    errors: tuple[str, ...] = ()


ParserStrategy = Callable[[str], ParseAttempt]


def strip_diff_prefix(name: str) -> str:
    """Drop git-style ``a/``/``b/`` prefixes from a diff header path."""
    name = name.strip()
    if name.startswith(("a/", "b/")):
        name = name[2:]
    return name.strip()


def unescape_patch_text(text: str) -> str:
    """Undo ``\\n``, ``\\t``, ``\\"`` and ``\\\\`` escape sequences."""
    return text.replace("\\n", "\n").replace("\\t", "\t").replace('\\"', '"').replace("\\\\", "\\")


def normalise_patch_text(text: str, *, unescape: str = "auto") -> str:
    """Normalise raw patch text before parsing.

    ``always`` unescapes every submission unconditionally. The default,
    ``auto``, is narrower: it only unescapes text that contains no real
    newline, which is the shape of a diff that was serialised into a JSON
    string twice. Multi-line text passes through untouched, literal ``\\n``
    sequences included. ``never`` disables unescaping.
    """
    if unescape == "never":
        return text
    if unescape == "auto" and "\n" in text:
        return text
    return unescape_patch_text(text)


def _keep_hunk_bearing(patches: Sequence[ParsedPatch]) -> list[ParsedPatch]:
    kept: list[ParsedPatch] = []
    for patch in patches:
        patch.hunks = [hunk for hunk in patch.hunks if hunk.lines]
        if patch.hunks:
            kept.append(patch)
    return kept


def parse_unified_diff_strict(text: str) -> ParseAttempt:
    """Parse ``text`` with :mod:`unidiff`, which enforces hunk line counts."""
    try:
        patch_set = PatchSet.from_string(text)
    except (UnidiffParseError, ValueError) as error:
        return ParseAttempt(strategy="strict", error=str(error) or type(error).__name__)

    patches: list[ParsedPatch] = []
    for patched_file in patch_set:
        hunks: list[Hunk] = []
        for source_hunk in patched_file:
            lines: list[str] = []
            for line in source_hunk:
                # Blank separator lines trailing a complete hunk carry no type.
                if line.line_type == "":
                    continue
                if line.line_type == "\\":
                    lines.append(NO_NEWLINE_MARKER)
                    continue
                value = line.value
                if value.endswith("\n"):
                    value = value[:-1]
                prefix = line.line_type if line.line_type in {"+", "-"} else " "
                lines.append(f"{prefix}{value}")
            hunks.append(
                Hunk(
                    old_start=source_hunk.source_start,
                    old_lines=source_hunk.source_length,
                    new_start=source_hunk.target_start,
                    new_lines=source_hunk.target_length,
                    lines=lines,
                )
            )
        patches.append(
            ParsedPatch(
                old_file_name=patched_file.source_file,
                new_file_name=patched_file.target_file,
                hunks=hunks,
            )
        )
    return ParseAttempt(strategy="strict", patches=_keep_hunk_bearing(patches))


def _header_name(raw: str) -> str | None:
    """Extract the path operand of a ``---``/``+++`` header line."""
    name = raw.split("\t", 1)[0].strip()
    if len(name) >= 2 and name[0] == name[-1] == '"':
        name = name[1:-1]
    return name or None


def parse_unified_diff_tolerant(text: str) -> ParseAttempt:
    """Recover hunks from malformed or incomplete unified-diff text.

    Missing hunk counts read as 0, header spacing is irregular-tolerant, bare
    empty lines inside a hunk count as empty context lines (trailing ones are
    dropped), and any other unrecognised line closes the current hunk.
    """
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    patches: list[ParsedPatch] = []
    current: ParsedPatch | None = None
    hunk: Hunk | None = None
    pending_blank = 0

    def close_hunk() -> None:
        nonlocal hunk, pending_blank
        hunk = None
        pending_blank = 0

    index = 0
    while index < len(lines):
        line = lines[index]
        stripped = line.rstrip("\r")

        if stripped.startswith("--- ") and index + 1 < len(lines) and lines[index + 1].startswith("+++ "):
            close_hunk()
            current = ParsedPatch(
                old_file_name=_header_name(stripped[4:]),
                new_file_name=_header_name(lines[index + 1].rstrip("\r")[4:]),
            )
            patches.append(current)
            index += 2
            continue

        if stripped.startswith("+++ ") and hunk is None:
            current = ParsedPatch(old_file_name=None, new_file_name=_header_name(stripped[4:]))
            patches.append(current)
            index += 1
            continue

        if stripped.startswith("@@"):
            match = _TOLERANT_HUNK_HEADER.match(stripped.strip())
            if match:
                close_hunk()
                if current is None:
                    current = ParsedPatch(old_file_name=None, new_file_name=None)
                    patches.append(current)
                hunk = Hunk(
                    old_start=int(match.group("old_start")),
                    old_lines=int(match.group("old_count") or 0),
                    new_start=int(match.group("new_start")),
                    new_lines=int(match.group("new_count") or 0),
                )
                current.hunks.append(hunk)
                index += 1
                continue

        if hunk is not None:
            if line == "":
                pending_blank += 1
            elif line[0] in " +-":
                hunk.lines.extend([" "] * pending_blank)
                pending_blank = 0
                hunk.lines.append(line)
            elif line.startswith("\\"):
                pending_blank = 0
                hunk.lines.append(NO_NEWLINE_MARKER)
            else:
                close_hunk()
        index += 1

    return ParseAttempt(strategy="tolerant", patches=_keep_hunk_bearing(patches))


DEFAULT_PARSERS: tuple[ParserStrategy, ...] = (
    parse_unified_diff_strict,
    parse_unified_diff_tolerant,
)


def parse_unified_diff(
    text: str,
    parsers: Sequence[ParserStrategy] = DEFAULT_PARSERS,
) -> ParseAttempt:
    """Run ``parsers`` in order and return the first attempt that found hunks."""
    attempts: list[ParseAttempt] = []
    for parser in parsers:
        attempt = parser(text)
        if attempt.ok:
            return attempt
        attempts.append(attempt)
        if attempt.error:
            logger.debug("Parser %s rejected patch: %s", attempt.strategy, attempt.error)
    errors = "; ".join(f"{item.strategy}: {item.error}" for item in attempts if item.error)
    return ParseAttempt(strategy="none", error=errors or "No unified diff hunks found")


def parse_full_file_blocks(text: str) -> list[FullFileBlock]:
    """Split ``text`` into ``=== file:`` blocks, preserving bodies verbatim."""
    pieces = _FILE_BLOCK_SPLIT.split(text)
    blocks: list[FullFileBlock] = []
    for piece in pieces[1:]:
        header, _, remainder = piece.partition("\n")
        path = _FILE_HEADER_SUFFIX.sub("", header).strip()
        if not path:
            logger.warning("Skipping full-file block without a path")
            continue
        end_index = piece.find(END_MARKER, len(header))
        if end_index == -1:
            body = remainder
        else:
            body = piece[len(header) : end_index]
            if body.startswith("\n"):
                body = body[1:]
        blocks.append(FullFileBlock(path=path, content=body))
    return blocks


def render_full_file_blocks(blocks: Sequence[FullFileBlock]) -> str:
    """Serialise ``blocks`` so that :func:`parse_full_file_blocks` reads them back exactly."""
    rendered = [f"{FILE_MARKER}{block.path} ===\n{block.content}{END_MARKER}\n" for block in blocks]
    return "".join(rendered)


def parse_submission(text: str, *, unescape: str = "auto") -> PatchSubmission:
    """Classify ``text`` as a unified diff, full-file blocks, or neither.

    Only patches that name a target file count as a diff. Hunks without a
    file header (such as an example diff quoted inside a full-file block) are
    dropped. Any full-file blocks are returned alongside a diff so callers can
    fall back to them when no hunk applies.
    """
    normalised = normalise_patch_text(text or "", unescape=unescape)
    attempt = parse_unified_diff(normalised)
    blocks = parse_full_file_blocks(normalised)

    named = [patch for patch in attempt.patches if patch.target_path is not None]
    if len(named) < len(attempt.patches):
        logger.info("Ignoring %s hunk group(s) without a target file", len(attempt.patches) - len(named))
    if named:
        return PatchSubmission(kind=PatchMode.DIFF, patches=named, blocks=blocks, strategy=attempt.strategy)

    if blocks:
        return PatchSubmission(kind=PatchMode.FULL_FILE, blocks=blocks, strategy="full-file")

    if attempt.ok:
        errors: tuple[str, ...] = ("Unified diff hunks do not name a target file",)
    else:
        errors = (attempt.error,) if attempt.error else ()
    return PatchSubmission(kind=PatchMode.NONE, strategy=None, errors=errors)
