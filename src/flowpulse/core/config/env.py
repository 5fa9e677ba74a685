"""Layered .env support.

LINEAR_API_KEY and the scope variables (WHITELIST_TEAM_KEYS, LIMIT_SYNC, ...)
usually live in a .env file next to the project. flowpulse reads, in order:

1. ``$XDG_CONFIG_HOME/flowpulse/.env`` (per-user defaults)
2. ``<project>/.env`` then ``<project>/.env.local``

A later file replaces values that an earlier file supplied, but nothing read
from disk ever replaces a variable that was already exported in the shell.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from dotenv import dotenv_values

ENV_FILE_NAMES = (".env", ".env.local")


def default_user_env_path() -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(config_home) / "flowpulse" / ".env"


def read_env_file(path: Path) -> dict[str, str]:
    """Parse one .env file, skipping keys declared without a value."""
    if not path.is_file():
        return {}
    return {
        str(name): str(value)
        for name, value in dotenv_values(path).items()
        if name is not None and value is not None
    }


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """Export variables from the user and project .env files.

    Args:
        project_dir: Directory holding the project .env files (cwd when omitted)
        user_env_paths: Override for the per-user file list
        project_env_paths: Override for the project file list

    Returns:
        Names of the variables that were taken from a file.
    """
    base = project_dir if project_dir is not None else Path.cwd()
    user_files = [default_user_env_path()] if user_env_paths is None else list(user_env_paths)
    project_files = (
        [base / name for name in ENV_FILE_NAMES]
        if project_env_paths is None
        else list(project_env_paths)
    )

    from_files: set[str] = set()
    for env_file in [*user_files, *project_files]:
        for name, value in read_env_file(Path(env_file)).items():
            # Shell exports win; only values this loader set may be replaced
            if name in os.environ and name not in from_files:
                continue
            os.environ[name] = value
            from_files.add(name)

    return from_files
