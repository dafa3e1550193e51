"""Dispatch table mapping agent decisions to patch-engine tools."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable

from .config import PatchSettings
from .decision import (
    ApplyPlanDecision,
    FinalAnswerDecision,
    GeneratePatchDecision,
    InvalidDecision,
    ReadFilesDecision,
    RunCmdDecision,
    SearchRepoDecision,
    WritePatchDecision,
    parse_decision,
)
from .errors import PatchError
from .structured import Plan
from .telemetry import emit_event
from .tools.commands import CommandRunner, run_command
from .tools.diffs import plan_to_unified_diffs
from .tools.filesystem import FileSystem
from .tools.instructions import generate_patch
from .tools.patch import write_patch
from .tools.repo_files import read_files, search_repo

__all__ = ["ToolDispatcher", "ToolEntry", "ToolOutcome", "ToolStats"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolStats:
    """Caller-owned accumulator for tool usage across dispatches."""

    calls: dict[str, int] = field(default_factory=dict)
    writes: int = 0
    cmds: int = 0
    bytes_read: int = 0

    def record_call(self, action: str) -> None:
        self.calls[action] = self.calls.get(action, 0) + 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "calls": dict(self.calls),
            "writes": self.writes,
            "cmds": self.cmds,
            "bytes_read": self.bytes_read,
        }


@dataclass(slots=True)
class ToolOutcome:
    """Result of dispatching one decision."""

    action: str
    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "ok": self.ok, "payload": dict(self.payload)}


ToolHandler = Callable[[Any], ToolOutcome]


@dataclass(slots=True)
class ToolEntry:
    """Metadata describing how to execute a single action."""

    decision_model: type[Any]
    handler: ToolHandler


class ToolDispatcher:
    """Execute validated decisions against a workspace.

    ``stats`` is owned by the caller so usage can be accumulated across
    dispatchers or reset between runs.
    """

    def __init__(
        self,
        *,
        filesystem: FileSystem,
        settings: PatchSettings | None = None,
        stats: ToolStats | None = None,
        command_runner: CommandRunner | None = None,
    ) -> None:
        self._filesystem = filesystem
        self._settings = settings or PatchSettings()
        self.stats = stats if stats is not None else ToolStats()
        self._command_runner = command_runner or run_command
        self._workdir = getattr(filesystem, "root", None)
        self._registry: Dict[str, ToolEntry] = {
            "read_files": ToolEntry(ReadFilesDecision, self._read_files),
            "search_repo": ToolEntry(SearchRepoDecision, self._search_repo),
            "write_patch": ToolEntry(WritePatchDecision, self._write_patch),
            "generate_patch": ToolEntry(GeneratePatchDecision, self._generate_patch),
            "apply_plan": ToolEntry(ApplyPlanDecision, self._apply_plan),
            "run_cmd": ToolEntry(RunCmdDecision, self._run_cmd),
            "final_answer": ToolEntry(FinalAnswerDecision, self._final_answer),
        }

    def available_actions(self) -> Iterable[str]:
        """Return the actions currently registered with the dispatcher."""
        return self._registry.keys()

    def dispatch(self, decision: Any) -> ToolOutcome:
        """Validate ``decision`` if needed and run the matching tool."""
        known = tuple(item.decision_model for item in self._registry.values())
        if not isinstance(decision, (*known, InvalidDecision)):
            decision = parse_decision(decision)

        if isinstance(decision, InvalidDecision):
            self.stats.record_call(decision.action)
            logger.warning("Rejected invalid decision: %s", decision.error)
            return self._finish(ToolOutcome(action=decision.action, ok=False, payload={"error": decision.error}))

        entry = self._registry[decision.action]
        self.stats.record_call(decision.action)
        if self._is_write(decision):
            if self.stats.writes >= self._settings.max_writes:
                message = f"Write limit of {self._settings.max_writes} reached; refusing further writes."
                return self._finish(ToolOutcome(action=decision.action, ok=False, payload={"error": message}))
            self.stats.writes += 1
        if isinstance(decision, RunCmdDecision):
            if self.stats.cmds >= self._settings.max_cmds:
                message = f"Command limit of {self._settings.max_cmds} reached; refusing further commands."
                return self._finish(ToolOutcome(action=decision.action, ok=False, payload={"error": message}))
            self.stats.cmds += 1
        return self._finish(entry.handler(decision))

    @staticmethod
    def _is_write(decision: Any) -> bool:
        if isinstance(decision, WritePatchDecision):
            return True
        tool_input = getattr(decision, "tool_input", None)
        return bool(getattr(tool_input, "write", False))

    def _verbatim_settings(self) -> PatchSettings:
        # Generated diffs are raw text and must not be unescaped.
        return replace(self._settings, unescape="never")

    @staticmethod
    def _finish(outcome: ToolOutcome) -> ToolOutcome:
        emit_event("tool_dispatched", action=outcome.action, ok=outcome.ok)
        return outcome

    def _read_files(self, decision: ReadFilesDecision) -> ToolOutcome:
        paths = decision.tool_input.paths
        contents = read_files(paths, filesystem=self._filesystem, max_chars=self._settings.max_read_chars)
        self.stats.bytes_read += sum(len(text.encode("utf-8")) for text in contents.values())
        missing = [path for path in paths if path not in contents]
        return ToolOutcome(
            action=decision.action,
            ok=bool(contents),
            payload={"files": contents, "missing": missing},
        )

    def _search_repo(self, decision: SearchRepoDecision) -> ToolOutcome:
        result = search_repo(
            decision.tool_input.query,
            filesystem=self._filesystem,
            include=self._settings.search_include,
            exclude=self._settings.search_exclude,
            max_hits=self._settings.search_max_hits,
        )
        return ToolOutcome(action=decision.action, ok=True, payload=result.to_dict())

    def _write_patch(self, decision: WritePatchDecision) -> ToolOutcome:
        result = write_patch(decision.tool_input.patch, filesystem=self._filesystem, settings=self._settings)
        return ToolOutcome(action=decision.action, ok=result.ok, payload=result.to_dict())

    def _generate_patch(self, decision: GeneratePatchDecision) -> ToolOutcome:
        generated = generate_patch(
            decision.tool_input.instructions,
            filesystem=self._filesystem,
            context_lines=self._settings.context_lines,
            search_window=self._settings.search_window,
        )
        payload = generated.to_dict()
        if not generated.success or not decision.tool_input.write:
            return ToolOutcome(action=decision.action, ok=generated.success, payload=payload)
        result = write_patch(generated.patch or "", filesystem=self._filesystem, settings=self._verbatim_settings())
        payload["write"] = result.to_dict()
        return ToolOutcome(action=decision.action, ok=result.ok, payload=payload)

    def _apply_plan(self, decision: ApplyPlanDecision) -> ToolOutcome:
        plan = Plan(changes=decision.tool_input.changes)
        try:
            diffs = plan_to_unified_diffs(
                plan,
                self._filesystem.read_text,
                context_lines=self._settings.context_lines,
                max_workers=self._settings.max_workers,
            )
        except (PatchError, OSError) as error:
            logger.warning("Plan could not be converted to diffs: %s", error)
            return ToolOutcome(action=decision.action, ok=False, payload={"error": str(error)})

        payload: dict[str, Any] = {"diffs": [item.to_dict() for item in diffs]}
        combined = "".join(item.diff for item in diffs)
        if not decision.tool_input.write:
            return ToolOutcome(action=decision.action, ok=True, payload=payload)
        if not combined:
            payload["write"] = {"applied": [], "mode": "none", "error": "Plan produced no changes"}
            return ToolOutcome(action=decision.action, ok=True, payload=payload)
        result = write_patch(combined, filesystem=self._filesystem, settings=self._verbatim_settings())
        payload["write"] = result.to_dict()
        return ToolOutcome(action=decision.action, ok=result.ok, payload=payload)

    def _run_cmd(self, decision: RunCmdDecision) -> ToolOutcome:
        tool_input = decision.tool_input
        timeout = tool_input.timeout_ms / 1000 if tool_input.timeout_ms else self._settings.cmd_timeout_seconds
        logger.info("Running command %s %s", tool_input.cmd, " ".join(tool_input.args))
        result = self._command_runner(tool_input.cmd, tool_input.args, cwd=self._workdir, timeout=timeout)
        return ToolOutcome(action=decision.action, ok=result.ok, payload=result.to_dict())

    def _final_answer(self, decision: FinalAnswerDecision) -> ToolOutcome:
        return ToolOutcome(
            action=decision.action,
            ok=True,
            payload={"done": True, "answer": decision.answer, "rationale": decision.rationale},
        )
