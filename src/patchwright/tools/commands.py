"""Command execution helper behind the ``run_cmd`` decision."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Sequence

__all__ = ["CommandResult", "CommandRunner", "run_command"]

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
MAX_STDOUT_CHARS = 100_000
MAX_STDERR_CHARS = 50_000


@dataclass(slots=True)
class CommandResult:
    """Structured summary of a command invocation."""

    command: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def to_dict(self) -> dict[str, Any]:
        return {
            "cmd": self.command[0] if self.command else "",
            "args": list(self.command[1:]),
            "ok": self.ok,
            "code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "timed_out": self.timed_out,
        }


CommandRunner = Callable[..., CommandResult]


def _merge_env(extra: Mapping[str, str] | None) -> Dict[str, str]:
    env: Dict[str, str] = os.environ.copy()
    if extra:
        env.update({str(key): str(value) for key, value in extra.items()})
    return env


def _as_text(value: str | bytes | None, limit: int) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return value[:limit]


def run_command(
    cmd: str,
    args: Sequence[str] = (),
    *,
    cwd: Path | str | None = None,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``cmd`` with ``args`` and capture its output.

    Never raises for a failing, missing or slow command: the failure is
    reported through ``exit_code``, ``stderr`` and ``timed_out``. Output is
    truncated to :data:`MAX_STDOUT_CHARS` / :data:`MAX_STDERR_CHARS`.
    """
    invocation = (cmd, *args)
    workdir = Path(cwd).resolve() if cwd is not None else None
    try:
        process = subprocess.run(
            invocation,
            cwd=workdir,
            env=_merge_env(env),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as error:
        logger.warning("Command %s timed out after %ss", cmd, timeout)
        return CommandResult(
            command=invocation,
            exit_code=1,
            stdout=_as_text(error.stdout, MAX_STDOUT_CHARS),
            stderr=_as_text(error.stderr, MAX_STDERR_CHARS) or f"Command timed out after {timeout}s",
            timed_out=True,
        )
    except OSError as error:
        logger.warning("Command %s could not be started: %s", cmd, error)
        return CommandResult(command=invocation, exit_code=127, stdout="", stderr=str(error))

    return CommandResult(
        command=invocation,
        exit_code=process.returncode,
        stdout=_as_text(process.stdout, MAX_STDOUT_CHARS),
        stderr=_as_text(process.stderr, MAX_STDERR_CHARS),
    )
