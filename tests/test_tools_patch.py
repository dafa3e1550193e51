from __future__ import annotations

import json
import logging
import textwrap
from pathlib import Path

import pytest

from patchwright.config import PatchSettings
from patchwright.tools.diff_parser import PatchMode
from patchwright.tools.filesystem import LocalFileSystem
from patchwright.tools.patch import write_patch

BASE = "Line 1\nLine 2\nLine 3\n"


def _workspace(tmp_path: Path, files: dict[str, str]) -> LocalFileSystem:
    for name, text in files.items():
        target = tmp_path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8", newline="")
    return LocalFileSystem(tmp_path)


def _read(tmp_path: Path, name: str) -> str:
    return (tmp_path / name).read_bytes().decode("utf-8")


def test_full_file_block_is_written_verbatim(tmp_path: Path) -> None:
    filesystem = _workspace(tmp_path, {})

    result = write_patch("=== file:hello.txt ===\nHello\n=== end ===\n", filesystem=filesystem)

    assert result.mode is PatchMode.FULL_FILE
    assert result.applied == ["hello.txt"]
    assert _read(tmp_path, "hello.txt") == "Hello\n"


def test_full_file_block_creates_nested_directories(tmp_path: Path) -> None:
    filesystem = _workspace(tmp_path, {})

    result = write_patch("=== file:src/pkg/mod.py ===\nVALUE = 1\n=== end ===\n", filesystem=filesystem)

    assert result.ok
    assert _read(tmp_path, "src/pkg/mod.py") == "VALUE = 1\n"


def test_unified_diff_inserts_line(tmp_path: Path) -> None:
    filesystem = _workspace(tmp_path, {"test.txt": BASE})
    patch = textwrap.dedent(
        """\
        --- a/test.txt
        +++ b/test.txt
        @@ -1,3 +1,4 @@
         Line 1
         Line 2
        +Line 2.5
         Line 3
        """
    )

    result = write_patch(patch, filesystem=filesystem)

    assert result.mode is PatchMode.DIFF
    assert result.applied == ["test.txt"]
    assert result.to_dict() == {"applied": ["test.txt"], "mode": "diff"}
    assert _read(tmp_path, "test.txt") == "Line 1\nLine 2\nLine 2.5\nLine 3\n"


def test_unified_diff_deletes_line(memory_fs) -> None:
    memory_fs.files["test.txt"] = BASE
    patch = "--- a/test.txt\n+++ b/test.txt\n@@ -1,3 +1,2 @@\n Line 1\n-Line 2\n Line 3\n"

    result = write_patch(patch, filesystem=memory_fs)

    assert result.ok
    assert memory_fs.files["test.txt"] == "Line 1\nLine 3\n"


def test_unified_diff_modifies_line(memory_fs) -> None:
    memory_fs.files["test.txt"] = BASE
    patch = "--- a/test.txt\n+++ b/test.txt\n@@ -1,3 +1,3 @@\n Line 1\n-Line 2\n+Line Two\n Line 3\n"

    write_patch(patch, filesystem=memory_fs)

    assert memory_fs.files["test.txt"] == "Line 1\nLine Two\nLine 3\n"


def test_multiple_hunks_and_files(memory_fs) -> None:
    memory_fs.files["a.txt"] = "".join(f"a{index}\n" for index in range(1, 21))
    memory_fs.files["b.txt"] = "first\n"
    patch = textwrap.dedent(
        """\
        --- a/a.txt
        +++ b/a.txt
        @@ -1,2 +1,2 @@
        -a1
        +A1
         a2
        @@ -19,2 +19,3 @@
         a19
         a20
        +a21
        --- a/b.txt
        +++ b/b.txt
        @@ -1,1 +1,1 @@
        -first
        +second
        """
    )

    result = write_patch(patch, filesystem=memory_fs)

    assert result.applied == ["a.txt", "b.txt"]
    lines = memory_fs.files["a.txt"].splitlines()
    assert lines[0] == "A1"
    assert lines[-1] == "a21"
    assert memory_fs.files["b.txt"] == "second\n"


def test_invalid_patch_is_reported_without_writing(memory_fs) -> None:
    result = write_patch("This is not a valid patch", filesystem=memory_fs)

    assert result.mode is PatchMode.NONE
    assert not result.ok
    assert result.error == "No recognized patch blocks"
    assert memory_fs.writes == []


def test_wrong_line_numbers_are_tolerated(memory_fs) -> None:
    memory_fs.files["test.txt"] = BASE
    patch = "--- a/test.txt\n+++ b/test.txt\n@@ -10,3 +10,4 @@\n Line 1\n Line 2\n+Line 2.5\n Line 3\n"

    result = write_patch(patch, filesystem=memory_fs)

    assert result.ok
    assert memory_fs.files["test.txt"] == "Line 1\nLine 2\nLine 2.5\nLine 3\n"


def test_miscounted_header_on_large_file(memory_fs) -> None:
    memory_fs.files["big.txt"] = "".join(f"line {index}\n" for index in range(1, 1001))
    patch = (
        "--- a/big.txt\n+++ b/big.txt\n@@ -500,10 +500,10 @@\n"
        " line 500\n-line 501\n+LINE 501\n line 502\n"
    )

    result = write_patch(patch, filesystem=memory_fs)

    assert result.ok
    lines = memory_fs.files["big.txt"].splitlines()
    assert len(lines) == 1000
    assert lines[500] == "LINE 501"
    assert lines[499] == "line 500"


def test_css_file_without_trailing_newline(memory_fs) -> None:
    memory_fs.files["style.css"] = "body {\n  color: red;\n}"
    patch = (
        "--- a/style.css\n+++ b/style.css\n@@ -1,3 +1,4 @@\n"
        " body {\n   color: red;\n+  margin: 0;\n }\n\\ No newline at end of file\n"
    )

    result = write_patch(patch, filesystem=memory_fs)

    assert result.ok
    assert memory_fs.files["style.css"] == "body {\n  color: red;\n  margin: 0;\n}"


def test_typescript_file_without_trailing_newline_and_missing_marker(memory_fs) -> None:
    memory_fs.files["index.ts"] = "export const a = 1;"
    patch = "--- a/index.ts\n+++ b/index.ts\n@@ -1,1 +1,2 @@\n export const a = 1;\n+export const b = 2;\n"

    result = write_patch(patch, filesystem=memory_fs)

    assert result.ok
    assert memory_fs.files["index.ts"] == "export const a = 1;\nexport const b = 2;\n"


def test_new_file_from_dev_null_in_nested_directory(tmp_path: Path) -> None:
    filesystem = _workspace(tmp_path, {})
    patch = "--- /dev/null\n+++ b/src/pkg/new.py\n@@ -0,0 +1,2 @@\n+a = 1\n+b = 2\n"

    result = write_patch(patch, filesystem=filesystem)

    assert result.applied == ["src/pkg/new.py"]
    assert _read(tmp_path, "src/pkg/new.py") == "a = 1\nb = 2\n"


def test_escaped_patch_text_is_unescaped(memory_fs) -> None:
    memory_fs.files["test.txt"] = BASE
    patch = "--- a/test.txt\\n+++ b/test.txt\\n@@ -1,3 +1,3 @@\\n Line 1\\n-Line 2\\n+Line Two\\n Line 3\\n"

    result = write_patch(patch, filesystem=memory_fs)

    assert result.ok
    assert memory_fs.files["test.txt"] == "Line 1\nLine Two\nLine 3\n"


def test_escaped_patch_text_is_left_alone_when_unescape_disabled(memory_fs) -> None:
    memory_fs.files["test.txt"] = BASE
    patch = "--- a/test.txt\\n+++ b/test.txt\\n@@ -1,3 +1,3 @@\\n Line 1\\n-Line 2\\n+Line Two\\n Line 3\\n"

    result = write_patch(patch, filesystem=memory_fs, settings=PatchSettings(unescape="never"))

    assert result.mode is PatchMode.NONE
    assert memory_fs.files["test.txt"] == BASE


def test_oversized_patch_is_rejected(memory_fs) -> None:
    memory_fs.files["test.txt"] = BASE

    oversized = "=== file:test.txt ===\n" + "x" * 100

    result = write_patch(oversized, filesystem=memory_fs, settings=PatchSettings(max_patch_bytes=50))

    assert result.mode is PatchMode.NONE
    assert result.error is not None
    assert result.error.startswith("Patch exceeds maximum size of 50 bytes")
    assert memory_fs.files["test.txt"] == BASE


@pytest.mark.parametrize(
    "patch",
    [
        "--- a/../evil.txt\n+++ b/../evil.txt\n@@ -0,0 +1,1 @@\n+owned\n",
        "=== file:../evil.txt ===\nowned\n=== end ===\n",
        "=== file:/etc/evil.txt ===\nowned\n=== end ===\n",
    ],
)
def test_paths_outside_workspace_are_refused(tmp_path: Path, patch: str) -> None:
    workspace = tmp_path / "workspace"
    workspace.mkdir()

    result = write_patch(patch, filesystem=LocalFileSystem(workspace))

    assert not result.ok
    assert not (tmp_path / "evil.txt").exists()


def test_one_failing_file_does_not_block_the_others(memory_fs) -> None:
    memory_fs.files["good.txt"] = "keep\n"
    memory_fs.files["bad.txt"] = "one\n"
    patch = (
        "--- a/bad.txt\n+++ b/bad.txt\n@@ -7,1 +7,1 @@\n-nowhere\n+x\n"
        "--- a/good.txt\n+++ b/good.txt\n@@ -1,1 +1,1 @@\n-keep\n+kept\n"
    )

    result = write_patch(patch, filesystem=memory_fs)

    assert result.applied == ["good.txt"]
    assert memory_fs.files["good.txt"] == "kept\n"
    assert memory_fs.files["bad.txt"] == "one\n"


def test_diff_with_no_applicable_hunks_reports_none(memory_fs) -> None:
    memory_fs.files["bad.txt"] = "one\n"
    patch = "--- a/bad.txt\n+++ b/bad.txt\n@@ -7,1 +7,1 @@\n-nowhere\n+x\n"

    result = write_patch(patch, filesystem=memory_fs)

    assert result.mode is PatchMode.NONE
    assert result.error == "No hunks could be applied"


def test_write_patch_emits_telemetry(memory_fs, caplog: pytest.LogCaptureFixture) -> None:
    memory_fs.files["test.txt"] = BASE
    patch = "--- a/test.txt\n+++ b/test.txt\n@@ -1,3 +1,3 @@\n Line 1\n-Line 2\n+Line Two\n Line 3\n"

    with caplog.at_level(logging.INFO, logger="patchwright.telemetry"):
        write_patch(patch, filesystem=memory_fs)

    events = [json.loads(record.getMessage()) for record in caplog.records if record.name == "patchwright.telemetry"]
    names = [event["event"] for event in events]
    assert names == ["patch_parsed", "patch_file_applied", "patch_apply_finished"]
    assert events[0]["kind"] == "diff"
    assert events[1]["strategy"] == "search"
    assert events[2]["applied"] == ["test.txt"]


def test_undecodable_target_is_skipped_without_raising(tmp_path: Path) -> None:
    filesystem = _workspace(tmp_path, {"test.txt": BASE})
    (tmp_path / "legacy.txt").write_bytes(b"caf\xe9\nline 2\n")
    patch = (
        "--- a/legacy.txt\n+++ b/legacy.txt\n@@ -1,2 +1,2 @@\n-caf\n+cafe\n line 2\n"
        "--- a/test.txt\n+++ b/test.txt\n@@ -1,3 +1,3 @@\n Line 1\n-Line 2\n+Line Two\n Line 3\n"
    )

    result = write_patch(patch, filesystem=filesystem)

    assert result.mode is PatchMode.DIFF
    assert result.applied == ["test.txt"]
    assert (tmp_path / "legacy.txt").read_bytes() == b"caf\xe9\nline 2\n"
    assert _read(tmp_path, "test.txt") == "Line 1\nLine Two\nLine 3\n"


def test_undecodable_only_target_reports_none(tmp_path: Path) -> None:
    filesystem = _workspace(tmp_path, {})
    (tmp_path / "legacy.txt").write_bytes(b"caf\xe9\nline 2\n")

    result = write_patch(
        "--- a/legacy.txt\n+++ b/legacy.txt\n@@ -1,2 +1,2 @@\n-caf\n+cafe\n line 2\n",
        filesystem=filesystem,
    )

    assert result.to_dict() == {"applied": [], "mode": "none", "error": "No hunks could be applied"}


def test_full_file_block_quoting_a_hunk_is_written_verbatim(memory_fs) -> None:
    block = "=== file:docs/howto.md ===\nExample:\n@@ -1 +1 @@\n-old\n+new\n=== end ===\n"

    result = write_patch(block, filesystem=memory_fs)

    assert result.mode is PatchMode.FULL_FILE
    assert result.applied == ["docs/howto.md"]
    assert memory_fs.files["docs/howto.md"] == "Example:\n@@ -1 +1 @@\n-old\n+new\n"
    assert "docs" in memory_fs.directories


def test_blocks_are_written_when_no_diff_hunk_applies(memory_fs) -> None:
    memory_fs.files["bad.txt"] = "one\n"
    patch = (
        "--- a/bad.txt\n+++ b/bad.txt\n@@ -7,1 +7,1 @@\n-nowhere\n+x\n"
        "=== file:notes.md ===\nnotes\n=== end ===\n"
    )

    result = write_patch(patch, filesystem=memory_fs)

    assert result.mode is PatchMode.FULL_FILE
    assert result.applied == ["notes.md"]
    assert memory_fs.files["bad.txt"] == "one\n"
    assert memory_fs.files["notes.md"] == "notes\n"
