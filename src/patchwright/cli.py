"""CLI commands for applying, generating and planning patches."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from pydantic import ValidationError

from .config import DEFAULT_CONFIG_NAME, PatchSettings, load_settings
from .dispatch import ToolDispatcher, ToolStats
from .errors import PatchError
from .structured import Plan
from .tools.diff_parser import FullFileBlock, render_full_file_blocks
from .tools.diffs import plan_to_unified_diffs
from .tools.edits import apply_edits_to_text
from .tools.filesystem import LocalFileSystem
from .tools.instructions import generate_patch
from .tools.patch import write_patch

APP_HELP = "Apply, generate and verify patches against a workspace."

app = typer.Typer(help=APP_HELP)

_ROOT_HELP = "Workspace root that patch paths are relative to."
_CONFIG_HELP = "Path to the configuration file (relative to the root)."
_LOG_HELP = "Override the configured log level."


def _prepare(root: str, config: str, log_level: Optional[str]) -> tuple[LocalFileSystem, PatchSettings]:
    """Load settings, configure logging and open the workspace."""
    root_path = Path(root)
    if not root_path.is_dir():
        typer.echo(f"Workspace root does not exist: {root}", err=True)
        raise typer.Exit(code=1)
    settings = load_settings(root_path, config)
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)
    logging.getLogger("patchwright").setLevel(level)
    return LocalFileSystem(root_path), settings


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    try:
        return Path(source).read_text(encoding="utf-8")
    except OSError as error:
        typer.echo(f"Failed to read {source}: {error}", err=True)
        raise typer.Exit(code=1) from error


def _load_structured(source: str) -> Any:
    """Parse a JSON or YAML document from ``source``."""
    text = _read_source(source)
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse {source}: {error}", err=True)
        raise typer.Exit(code=1) from error


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@app.command()
def apply(
    patch_file: str = typer.Argument(..., help="Patch text to apply, or '-' for stdin."),
    root: str = typer.Option(".", "--root", "-r", help=_ROOT_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    log_level: Optional[str] = typer.Option(None, "--log-level", help=_LOG_HELP),
) -> None:
    """Apply a unified diff or full-file block submission."""
    filesystem, settings = _prepare(root, config, log_level)
    result = write_patch(_read_source(patch_file), filesystem=filesystem, settings=settings)
    _echo_json(result.to_dict())
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def generate(
    instructions_file: str = typer.Argument(..., help="JSON/YAML list of patch instructions, or '-'."),
    write: bool = typer.Option(False, "--write/--no-write", help="Apply the generated patch to the workspace."),
    root: str = typer.Option(".", "--root", "-r", help=_ROOT_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    log_level: Optional[str] = typer.Option(None, "--log-level", help=_LOG_HELP),
) -> None:
    """Compile line-oriented instructions into a unified diff."""
    filesystem, settings = _prepare(root, config, log_level)
    payload = _load_structured(instructions_file)
    if isinstance(payload, dict):
        payload = payload.get("instructions", [payload])
    if not isinstance(payload, list):
        typer.echo("Instructions must be a list of mappings.", err=True)
        raise typer.Exit(code=1)

    generated = generate_patch(
        payload,
        filesystem=filesystem,
        context_lines=settings.context_lines,
        search_window=settings.search_window,
    )
    if not generated.success:
        _echo_json(generated.to_dict())
        raise typer.Exit(code=1)
    if not write:
        typer.echo(generated.patch or "", nl=False)
        return

    result = write_patch(generated.patch or "", filesystem=filesystem, settings=replace(settings, unescape="never"))
    _echo_json({**generated.to_dict(), "write": result.to_dict()})
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def plan(
    plan_file: str = typer.Argument(..., help="JSON/YAML plan with token/range edits, or '-'."),
    write: bool = typer.Option(False, "--write/--no-write", help="Apply the verified diffs to the workspace."),
    blocks: bool = typer.Option(False, "--blocks", help="Print full-file blocks instead of diffs."),
    root: str = typer.Option(".", "--root", "-r", help=_ROOT_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    log_level: Optional[str] = typer.Option(None, "--log-level", help=_LOG_HELP),
) -> None:
    """Resolve a plan into verified unified diffs."""
    filesystem, settings = _prepare(root, config, log_level)
    try:
        parsed = Plan.model_validate(_load_structured(plan_file))
    except ValidationError as error:
        typer.echo(f"Invalid plan: {error}", err=True)
        raise typer.Exit(code=1) from error

    try:
        diffs = plan_to_unified_diffs(
            parsed,
            filesystem.read_text,
            context_lines=settings.context_lines,
            max_workers=settings.max_workers,
        )
    except (PatchError, OSError) as error:
        typer.echo(f"Plan failed: {error}", err=True)
        raise typer.Exit(code=1) from error

    combined = "".join(item.diff for item in diffs)
    if write:
        if not combined:
            _echo_json({"applied": [], "mode": "none", "error": "Plan produced no changes"})
            return
        result = write_patch(combined, filesystem=filesystem, settings=replace(settings, unescape="never"))
        _echo_json(result.to_dict())
        if not result.ok:
            raise typer.Exit(code=1)
        return

    if blocks:
        rendered = [
            FullFileBlock(
                path=change.file_path,
                content=apply_edits_to_text(filesystem.read_text(change.file_path), change.edits),
            )
            for change in parsed.changes
        ]
        typer.echo(render_full_file_blocks(rendered), nl=False)
        return
    typer.echo(combined, nl=False)


@app.command()
def dispatch(
    decision_file: str = typer.Argument(..., help="JSON decision emitted by an agent, or '-'."),
    root: str = typer.Option(".", "--root", "-r", help=_ROOT_HELP),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=_CONFIG_HELP),
    log_level: Optional[str] = typer.Option(None, "--log-level", help=_LOG_HELP),
) -> None:
    """Execute a single agent decision and print its outcome."""
    filesystem, settings = _prepare(root, config, log_level)
    stats = ToolStats()
    dispatcher = ToolDispatcher(filesystem=filesystem, settings=settings, stats=stats)
    outcome = dispatcher.dispatch(_read_source(decision_file))
    _echo_json({**outcome.to_dict(), "stats": stats.to_dict()})
    if not outcome.ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
