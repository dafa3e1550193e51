"""Hunk application strategies for parsed unified diffs.

Every strategy takes the current file text and a sequence of hunks and
returns an :class:`ApplyAttempt`; :func:`apply_with_fallback` walks them in
order until one produces text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from .diff_parser import Hunk

__all__ = [
    "DEFAULT_STRATEGIES",
    "ApplyAttempt",
    "HunkStrategy",
    "apply_hunks",
    "apply_with_fallback",
    "join_lines",
    "splice_hunks",
    "split_lines",
]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ApplyAttempt:
    """Result of running one strategy over a file's hunks."""

    strategy: str
    text: str | None = None
    error: str | None = None
    skipped: tuple[int, ...] = ()

    @property
    def ok(self) -> bool:
        return self.text is not None


HunkStrategy = Callable[[str, Sequence[Hunk]], ApplyAttempt]


def split_lines(text: str) -> list[str]:
    """Split ``text`` on ``\\n`` only, keeping terminators.

    A trailing newline does not produce an extra empty line, and a final
    line without a newline is kept as-is.
    """
    if not text:
        return []
    pieces = text.split("\n")
    lines = [piece + "\n" for piece in pieces[:-1]]
    if pieces[-1]:
        lines.append(pieces[-1])
    return lines


def join_lines(lines: Sequence[str]) -> str:
    """Join lines, terminating any non-final line that lost its newline."""
    parts: list[str] = []
    last = len(lines) - 1
    for index, line in enumerate(lines):
        if index < last and not line.endswith("\n"):
            line += "\n"
        parts.append(line)
    return "".join(parts)


def _origin_index(hunk: Hunk, old_side: Sequence[str]) -> int:
    # "-N,0" places the insertion after line N; otherwise N is 1-based.
    if not old_side:
        return hunk.old_start
    return hunk.old_start - 1


def _same_line(actual: str, expected: str) -> bool:
    return actual.rstrip("\n") == expected.rstrip("\n")


def _matches_at(lines: Sequence[str], old_side: Sequence[str], index: int) -> bool:
    if index < 0 or index + len(old_side) > len(lines):
        return False
    return all(_same_line(lines[index + offset], expected) for offset, expected in enumerate(old_side))


def _find_anchor(lines: Sequence[str], old_side: Sequence[str], expected: int, floor: int) -> int | None:
    """Locate ``old_side`` nearest to ``expected`` without going below ``floor``."""
    limit = len(lines) - len(old_side)
    if limit < floor:
        return None
    expected = min(max(expected, floor), limit)
    if _matches_at(lines, old_side, expected):
        return expected
    for distance in range(1, max(expected - floor, limit - expected) + 1):
        for candidate in (expected - distance, expected + distance):
            if floor <= candidate <= limit and _matches_at(lines, old_side, candidate):
                return candidate
    return None


def apply_hunks(text: str, hunks: Sequence[Hunk]) -> ApplyAttempt:
    """Apply hunks by matching their context and removed lines.

    Hunks are processed in ascending ``old_start`` order. Each one is tried at
    its header position (shifted by the drift of the previous match) and then
    searched outward in both directions, but never before the end of the
    previously applied hunk.
    """
    if not hunks:
        return ApplyAttempt(strategy="search", error="No hunks to apply")

    lines = split_lines(text)
    output: list[str] = []
    cursor = 0
    drift = 0
    for number, hunk in enumerate(sorted(hunks, key=lambda item: item.old_start), start=1):
        old_side = hunk.old_side()
        expected = _origin_index(hunk, old_side)
        anchor = _find_anchor(lines, old_side, expected + drift, cursor)
        if anchor is None:
            return ApplyAttempt(
                strategy="search",
                error=f"Hunk {number} ({hunk.header()}) does not match the file content",
            )
        output.extend(lines[cursor:anchor])
        output.extend(hunk.new_side())
        cursor = anchor + len(old_side)
        drift = anchor - expected
    output.extend(lines[cursor:])
    return ApplyAttempt(strategy="search", text=join_lines(output))


def splice_hunks(text: str, hunks: Sequence[Hunk]) -> ApplyAttempt:
    """Replace each hunk's old span at its header position with its new side.

    Context is not checked. Hunks must not overlap once sorted; an overlap
    rejects the whole attempt. A hunk positioned outside the file is skipped
    and logged, and the attempt only fails when every hunk was skipped.
    """
    if not hunks:
        return ApplyAttempt(strategy="splice", error="No hunks to apply")

    ordered = sorted(hunks, key=lambda item: item.old_start)
    sides = [(hunk.old_side(), hunk.new_side()) for hunk in ordered]

    previous_end: int | None = None
    for hunk, (old_side, _) in zip(ordered, sides):
        start = _origin_index(hunk, old_side)
        if previous_end is not None and start < previous_end:
            return ApplyAttempt(
                strategy="splice",
                error=f"Overlapping hunks near line {hunk.old_start}; refusing to splice",
            )
        previous_end = start + len(old_side)

    lines = split_lines(text)
    delta = 0
    skipped: list[int] = []
    for position, (hunk, (old_side, new_side)) in enumerate(zip(ordered, sides)):
        index = _origin_index(hunk, old_side) + delta
        in_bounds = 0 <= index < len(lines) or (not old_side and 0 <= index <= len(lines))
        if not in_bounds:
            logger.warning(
                "Skipping hunk %s: position %s outside file with %s lines",
                hunk.header(),
                index,
                len(lines),
            )
            skipped.append(position)
            continue
        span = len(old_side)
        lines[index : index + span] = new_side
        delta += len(new_side) - span

    if len(skipped) == len(ordered):
        return ApplyAttempt(strategy="splice", error="No hunks could be spliced", skipped=tuple(skipped))
    return ApplyAttempt(strategy="splice", text=join_lines(lines), skipped=tuple(skipped))


DEFAULT_STRATEGIES: tuple[HunkStrategy, ...] = (apply_hunks, splice_hunks)


def apply_with_fallback(
    text: str,
    hunks: Sequence[Hunk],
    strategies: Sequence[HunkStrategy] = DEFAULT_STRATEGIES,
) -> ApplyAttempt:
    """Return the first successful attempt from ``strategies``."""
    errors: list[str] = []
    for strategy in strategies:
        attempt = strategy(text, hunks)
        if attempt.ok:
            if errors:
                logger.info("Hunks applied by %s after: %s", attempt.strategy, "; ".join(errors))
            return attempt
        errors.append(f"{attempt.strategy}: {attempt.error}")
    return ApplyAttempt(strategy="none", error="; ".join(errors) or "No strategies configured")
