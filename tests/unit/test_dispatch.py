from __future__ import annotations

from pathlib import Path

from patchwright.config import PatchSettings
from patchwright.dispatch import ToolDispatcher, ToolStats
from patchwright.tools.commands import CommandResult
from patchwright.tools.filesystem import LocalFileSystem

PATCH = "--- a/test.txt\n+++ b/test.txt\n@@ -1,1 +1,1 @@\n-old\n+new\n"


def _dispatcher(tmp_path: Path, **settings: object) -> ToolDispatcher:
    (tmp_path / "test.txt").write_text("old\n", encoding="utf-8")
    return ToolDispatcher(filesystem=LocalFileSystem(tmp_path), settings=PatchSettings(**settings))


def test_registry_lists_every_action(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)

    assert set(dispatcher.available_actions()) == {
        "read_files",
        "search_repo",
        "write_patch",
        "generate_patch",
        "apply_plan",
        "run_cmd",
        "final_answer",
    }


def test_read_files_reports_contents_and_missing_paths(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)

    outcome = dispatcher.dispatch({"action": "read_files", "tool_input": {"paths": ["test.txt", "nope.txt"]}})

    assert outcome.ok
    assert outcome.payload == {"files": {"test.txt": "old\n"}, "missing": ["nope.txt"]}
    assert dispatcher.stats.bytes_read == 4
    assert dispatcher.stats.calls == {"read_files": 1}


def test_search_repo_uses_filesystem_root(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path, search_include=("*.txt",))

    outcome = dispatcher.dispatch({"action": "search_repo", "tool_input": {"query": "OLD"}})

    assert outcome.ok
    assert outcome.payload["hits"] == [{"file": "test.txt", "line": 1, "snippet": "old"}]


def test_write_patch_applies_and_counts_write(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)

    outcome = dispatcher.dispatch({"action": "write_patch", "tool_input": {"patch": PATCH}})

    assert outcome.ok
    assert outcome.payload == {"applied": ["test.txt"], "mode": "diff"}
    assert (tmp_path / "test.txt").read_text(encoding="utf-8") == "new\n"
    assert dispatcher.stats.writes == 1


def test_write_limit_refuses_further_writes(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path, max_writes=1)

    first = dispatcher.dispatch({"action": "write_patch", "tool_input": {"patch": "garbage"}})
    second = dispatcher.dispatch({"action": "write_patch", "tool_input": {"patch": PATCH}})

    assert not first.ok
    assert not second.ok
    assert second.payload["error"] == "Write limit of 1 reached; refusing further writes."
    assert (tmp_path / "test.txt").read_text(encoding="utf-8") == "old\n"
    assert dispatcher.stats.to_dict() == {
        "calls": {"write_patch": 2},
        "writes": 1,
        "cmds": 0,
        "bytes_read": 0,
    }


def test_generate_patch_without_write_leaves_files_untouched(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)
    decision = {
        "action": "generate_patch",
        "tool_input": {
            "instructions": [
                {"file": "test.txt", "operation": "replace", "line": 0, "oldContent": "old", "content": "new"}
            ],
            "write": False,
        },
    }

    outcome = dispatcher.dispatch(decision)

    assert outcome.ok
    assert outcome.payload["patch"].startswith("--- a/test.txt\n+++ b/test.txt\n")
    assert "write" not in outcome.payload
    assert dispatcher.stats.writes == 0
    assert (tmp_path / "test.txt").read_text(encoding="utf-8") == "old\n"


def test_generate_patch_writes_content_with_literal_backslashes(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)
    decision = {
        "action": "generate_patch",
        "tool_input": {"instructions": [{"file": "esc.py", "operation": "add", "content": 'print("a\\nb")\n'}]},
    }

    outcome = dispatcher.dispatch(decision)

    assert outcome.ok
    assert outcome.payload["write"]["applied"] == ["esc.py"]
    assert (tmp_path / "esc.py").read_text(encoding="utf-8") == 'print("a\\nb")\n'


def test_apply_plan_writes_verified_diffs(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)
    decision = {
        "action": "apply_plan",
        "tool_input": {
            "changes": [{"filePath": "test.txt", "edits": [{"kind": "replace", "find": "old", "replace": "new"}]}]
        },
    }

    outcome = dispatcher.dispatch(decision)

    assert outcome.ok
    assert outcome.payload["diffs"][0]["file_path"] == "test.txt"
    assert outcome.payload["write"] == {"applied": ["test.txt"], "mode": "diff"}
    assert (tmp_path / "test.txt").read_text(encoding="utf-8") == "new\n"


def test_apply_plan_with_missing_token_fails_without_writing(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)
    decision = {
        "action": "apply_plan",
        "tool_input": {"changes": [{"filePath": "test.txt", "edits": [{"kind": "delete", "find": "absent"}]}]},
    }

    outcome = dispatcher.dispatch(decision)

    assert not outcome.ok
    assert "Token not found" in outcome.payload["error"]
    assert (tmp_path / "test.txt").read_text(encoding="utf-8") == "old\n"


def test_apply_plan_without_changes_reports_no_changes(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)
    decision = {"action": "apply_plan", "tool_input": {"changes": [{"filePath": "test.txt", "edits": []}]}}

    outcome = dispatcher.dispatch(decision)

    assert outcome.ok
    assert outcome.payload["write"]["error"] == "Plan produced no changes"


def test_invalid_decision_is_counted_and_rejected(tmp_path: Path) -> None:
    stats = ToolStats()
    dispatcher = ToolDispatcher(filesystem=LocalFileSystem(tmp_path), stats=stats)

    outcome = dispatcher.dispatch('{"action": "format_disk"}')

    assert not outcome.ok
    assert outcome.action == "invalid"
    assert "Unknown action" in outcome.payload["error"]
    assert stats.calls == {"invalid": 1}


def test_final_answer_marks_completion(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)

    outcome = dispatcher.dispatch({"action": "final_answer", "answer": "All done", "rationale": "tests pass"})

    assert outcome.to_dict() == {
        "action": "final_answer",
        "ok": True,
        "payload": {"done": True, "answer": "All done", "rationale": "tests pass"},
    }


def test_apply_plan_on_undecodable_file_fails_without_raising(tmp_path: Path) -> None:
    dispatcher = _dispatcher(tmp_path)
    (tmp_path / "legacy.txt").write_bytes(b"caf\xe9\n")
    decision = {
        "action": "apply_plan",
        "tool_input": {"changes": [{"filePath": "legacy.txt", "edits": [{"kind": "delete", "find": "caf"}]}]},
    }

    outcome = dispatcher.dispatch(decision)

    assert not outcome.ok
    assert outcome.payload == {"error": "File is not valid UTF-8: legacy.txt"}
    assert (tmp_path / "legacy.txt").read_bytes() == b"caf\xe9\n"


class RecordingRunner:
    def __init__(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        self.calls: list[dict[str, object]] = []

    def __call__(self, cmd: str, args: list[str], *, cwd: object, timeout: float) -> CommandResult:
        self.calls.append({"cmd": cmd, "args": list(args), "cwd": cwd, "timeout": timeout})
        return CommandResult(command=(cmd, *args), exit_code=self.exit_code, stdout="3 passed\n", stderr="")


def test_run_cmd_runs_in_workspace_root_with_requested_timeout(tmp_path: Path) -> None:
    runner = RecordingRunner()
    dispatcher = ToolDispatcher(filesystem=LocalFileSystem(tmp_path), command_runner=runner)
    decision = {"action": "run_cmd", "tool_input": {"cmd": "pytest", "args": ["-q"], "timeoutMs": 5000}}

    outcome = dispatcher.dispatch(decision)

    assert outcome.ok
    assert outcome.payload["code"] == 0
    assert outcome.payload["stdout"] == "3 passed\n"
    assert runner.calls == [{"cmd": "pytest", "args": ["-q"], "cwd": tmp_path.resolve(), "timeout": 5.0}]
    assert dispatcher.stats.cmds == 1
    assert dispatcher.stats.writes == 0


def test_run_cmd_uses_configured_timeout_and_reports_failure(tmp_path: Path) -> None:
    runner = RecordingRunner(exit_code=2)
    dispatcher = ToolDispatcher(
        filesystem=LocalFileSystem(tmp_path),
        settings=PatchSettings(cmd_timeout_seconds=30.0),
        command_runner=runner,
    )

    outcome = dispatcher.dispatch({"action": "run_cmd", "tool_input": {"cmd": "make"}})

    assert not outcome.ok
    assert outcome.payload["code"] == 2
    assert runner.calls[0]["timeout"] == 30.0
    assert runner.calls[0]["args"] == []


def test_command_limit_refuses_further_commands(tmp_path: Path) -> None:
    runner = RecordingRunner()
    dispatcher = ToolDispatcher(
        filesystem=LocalFileSystem(tmp_path),
        settings=PatchSettings(max_cmds=1),
        command_runner=runner,
    )
    decision = {"action": "run_cmd", "tool_input": {"cmd": "ls"}}

    first = dispatcher.dispatch(decision)
    second = dispatcher.dispatch(decision)

    assert first.ok
    assert not second.ok
    assert second.payload["error"] == "Command limit of 1 reached; refusing further commands."
    assert len(runner.calls) == 1
    assert dispatcher.stats.calls == {"run_cmd": 2}


def test_search_repo_reads_through_the_filesystem(memory_fs) -> None:
    memory_fs.files["notes.md"] = "Remember the Needle\n"
    dispatcher = ToolDispatcher(filesystem=memory_fs)

    outcome = dispatcher.dispatch({"action": "search_repo", "tool_input": {"query": "needle"}})

    assert outcome.ok
    assert outcome.payload["hits"] == [{"file": "notes.md", "line": 1, "snippet": "Remember the Needle"}]
