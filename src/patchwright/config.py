"""Runtime settings loaded from ``config.yaml`` and the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

DEFAULT_CONFIG_NAME = "config.yaml"
ENV_PREFIX = "PATCHWRIGHT_"

_DEFAULT_MAX_PATCH_BYTES = 200_000
_UNESCAPE_MODES = ("auto", "always", "never")

DEFAULT_SEARCH_INCLUDE: tuple[str, ...] = (
    "**/*.py",
    "**/*.md",
    "**/*.txt",
    "**/*.json",
    "**/*.toml",
    "**/*.yaml",
    "**/*.yml",
    "**/*.js",
    "**/*.ts",
    "**/*.tsx",
    "**/*.jsx",
    "**/*.html",
    "**/*.css",
)
DEFAULT_SEARCH_EXCLUDE: tuple[str, ...] = (
    "**/.git/**",
    "**/node_modules/**",
    "**/dist/**",
    "**/__pycache__/**",
    "**/.venv/**",
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PatchSettings:
    """Tunable limits for patch generation, parsing and application."""

    context_lines: int = 3
    search_window: int = 5
    max_patch_bytes: int = _DEFAULT_MAX_PATCH_BYTES
    max_workers: int = 1
    max_writes: int = 50
    max_cmds: int = 20
    cmd_timeout_seconds: float = 120.0
    unescape: str = "auto"
    max_read_chars: int | None = 40_000
    search_max_hits: int = 60
    search_include: tuple[str, ...] = DEFAULT_SEARCH_INCLUDE
    search_exclude: tuple[str, ...] = DEFAULT_SEARCH_EXCLUDE
    log_level: str = "INFO"
    source: Path | None = field(default=None, compare=False)


def _positive_int(value: Any) -> int | None:
    """Return ``value`` as a positive integer or ``None`` when unusable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None


def _non_negative_int(value: Any) -> int | None:
    if isinstance(value, str) and value.strip() == "0":
        return 0
    if value == 0 and not isinstance(value, bool):
        return 0
    return _positive_int(value)


def _string_tuple(value: Any) -> tuple[str, ...] | None:
    if isinstance(value, str):
        trimmed = value.strip()
        return (trimmed,) if trimmed else None
    if isinstance(value, (list, tuple)):
        entries = tuple(item.strip() for item in value if isinstance(item, str) and item.strip())
        return entries or None
    return None


def load_config(repo_root: Path | str, config_path: Path | str | None = None) -> Mapping[str, Any]:
    """Load the configuration mapping associated with ``repo_root``.

    Missing or unparsable files yield an empty mapping so callers always fall
    back to defaults.
    """
    root = Path(repo_root)
    if config_path is None:
        candidate = root / DEFAULT_CONFIG_NAME
    else:
        candidate = Path(config_path)
        if not candidate.is_absolute():
            candidate = (root / candidate).resolve()
    try:
        with candidate.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        return {}
    except (OSError, yaml.YAMLError) as error:
        logger.warning("Ignoring unreadable config %s: %s", candidate, error)
        return {}
    if isinstance(loaded, Mapping):
        return loaded
    logger.warning("Ignoring config %s: top level is not a mapping", candidate)
    return {}


def settings_from_mapping(
    config: Mapping[str, Any],
    *,
    env: Mapping[str, str] | None = None,
) -> PatchSettings:
    """Interpret a configuration mapping plus environment into settings."""
    env_mapping = os.environ if env is None else env
    settings = PatchSettings()

    env_context = _positive_int(env_mapping.get(f"{ENV_PREFIX}CONTEXT_LINES"))
    env_workers = _positive_int(env_mapping.get(f"{ENV_PREFIX}MAX_WORKERS"))
    env_bytes = _positive_int(env_mapping.get(f"{ENV_PREFIX}MAX_PATCH_BYTES"))
    env_level = env_mapping.get(f"{ENV_PREFIX}LOG_LEVEL")

    if env_bytes is not None:
        settings.max_patch_bytes = env_bytes

    patching = config.get("patching")
    if isinstance(patching, Mapping):
        context_lines = _non_negative_int(patching.get("context_lines"))
        if context_lines is not None:
            settings.context_lines = context_lines
        window = _non_negative_int(patching.get("search_window"))
        if window is not None:
            settings.search_window = window
        max_bytes = _positive_int(patching.get("max_patch_bytes"))
        if max_bytes is not None:
            settings.max_patch_bytes = max_bytes
        workers = _positive_int(patching.get("max_workers"))
        if workers is not None:
            settings.max_workers = workers
        writes = _positive_int(patching.get("max_writes"))
        if writes is not None:
            settings.max_writes = writes
        unescape = patching.get("unescape")
        if isinstance(unescape, str) and unescape.strip().lower() in _UNESCAPE_MODES:
            settings.unescape = unescape.strip().lower()

    files = config.get("files")
    if isinstance(files, Mapping) and "max_read_chars" in files:
        raw = files.get("max_read_chars")
        settings.max_read_chars = None if raw is None else _positive_int(raw) or settings.max_read_chars

    search = config.get("search")
    if isinstance(search, Mapping):
        hits = _positive_int(search.get("max_hits"))
        if hits is not None:
            settings.search_max_hits = hits
        include = _string_tuple(search.get("include"))
        if include is not None:
            settings.search_include = include
        exclude = _string_tuple(search.get("exclude"))
        if exclude is not None:
            settings.search_exclude = exclude

    commands = config.get("commands")
    if isinstance(commands, Mapping):
        cmds = _positive_int(commands.get("max_cmds"))
        if cmds is not None:
            settings.max_cmds = cmds
        timeout = _positive_int(commands.get("timeout_seconds"))
        if timeout is not None:
            settings.cmd_timeout_seconds = float(timeout)

    logging_section = config.get("logging")
    if isinstance(logging_section, Mapping):
        level = logging_section.get("level")
        if isinstance(level, str) and level.strip():
            settings.log_level = level.strip().upper()

    if env_context is not None:
        settings.context_lines = env_context
    if env_workers is not None:
        settings.max_workers = env_workers
    if isinstance(env_level, str) and env_level.strip():
        settings.log_level = env_level.strip().upper()

    return settings


def load_settings(
    repo_root: Path | str = ".",
    config_path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> PatchSettings:
    """Load :class:`PatchSettings` for ``repo_root``."""
    config = load_config(repo_root, config_path)
    settings = settings_from_mapping(config, env=env)
    settings.source = Path(config_path) if config_path is not None else Path(repo_root) / DEFAULT_CONFIG_NAME
    return settings


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "PatchSettings",
    "load_config",
    "load_settings",
    "settings_from_mapping",
]
