"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars

Config files are YAML. Environment variables use the names the Linear sync
has always read (LINEAR_API_KEY, WHITELIST_TEAM_KEYS, ...), plus a few
FLOWPULSE_* settings.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .models import FlowPulseConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per session
_config_cache: FlowPulseConfig | None = None

TRUTHY = ("1", "true", "yes", "on")


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/flowpulse/config.yaml (or XDG equivalent)."""
    return get_xdg_config_home() / "flowpulse" / "config.yaml"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """Path to .flowpulse.yaml in the project root."""
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".flowpulse.yaml"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`. Nested dicts
    are merged, not replaced.

    Example:
        >>> deep_merge({"a": 1, "b": {"x": 10, "y": 20}}, {"b": {"y": 30}})
        {'a': 1, 'b': {'x': 10, 'y': 30}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_yaml_file(path: Path) -> dict[str, Any] | None:
    """
    Load a YAML file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to YAML file

    Returns:
        Parsed mapping, or None if the file is missing or not a mapping
    """
    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        logger.warning(f"Failed to parse config at {path}: {e}")
        return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Invalid config structure in {path}: expected mapping, got {type(data)}")
        return None
    return data


def parse_key_list(value: str) -> list[str]:
    """Split a comma separated list, dropping blanks."""
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_engineer_mapping(value: str) -> dict[str, str]:
    """
    Parse ``name:TEAM,name:TEAM`` into a mapping.

    Entries without a colon are skipped with a warning.
    """
    mapping: dict[str, str] = {}
    for entry in parse_key_list(value):
        name, sep, team = entry.rpartition(":")
        if not sep or not name.strip() or not team.strip():
            logger.warning(f"Ignoring malformed ENGINEER_TEAM_MAPPING entry '{entry}'")
            continue
        mapping[name.strip()] = team.strip().upper()
    return mapping


def _section(result: dict[str, Any], name: str) -> dict[str, Any]:
    existing = result.get(name)
    section = dict(existing) if isinstance(existing, dict) else {}
    result[name] = section
    return section


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        LINEAR_API_KEY - linear.api_key
        WHITELIST_TEAM_KEYS - scope.whitelist_team_keys (comma separated)
        IGNORED_TEAM_KEYS - scope.ignored_team_keys (comma separated)
        IGNORED_ASSIGNEE_NAMES - scope.ignored_assignee_names (comma separated)
        ENGINEER_TEAM_MAPPING - mapping.engineer_team_mapping (name:TEAM,...)
        TEAM_DOMAIN_MAPPINGS - mapping.team_domain_mapping (JSON object)
        LIMIT_SYNC - sync.limit_sync
        FLOWPULSE_DB_PATH - sync.db_path
        FLOWPULSE_SYNC_INTERVAL - sync.interval_minutes

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    if api_key := os.environ.get("LINEAR_API_KEY"):
        _section(result, "linear")["api_key"] = api_key

    for env_name, field in (
        ("WHITELIST_TEAM_KEYS", "whitelist_team_keys"),
        ("IGNORED_TEAM_KEYS", "ignored_team_keys"),
        ("IGNORED_ASSIGNEE_NAMES", "ignored_assignee_names"),
    ):
        if (value := os.environ.get(env_name)) is not None:
            _section(result, "scope")[field] = parse_key_list(value)

    if mapping_str := os.environ.get("ENGINEER_TEAM_MAPPING"):
        _section(result, "mapping")["engineer_team_mapping"] = parse_engineer_mapping(mapping_str)

    if domains_str := os.environ.get("TEAM_DOMAIN_MAPPINGS"):
        try:
            domains = json.loads(domains_str)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid TEAM_DOMAIN_MAPPINGS JSON, ignoring: {e}")
        else:
            if isinstance(domains, dict):
                _section(result, "mapping")["team_domain_mapping"] = domains
            else:
                logger.warning("TEAM_DOMAIN_MAPPINGS must be a JSON object, ignoring")

    if limit_str := os.environ.get("LIMIT_SYNC"):
        _section(result, "sync")["limit_sync"] = limit_str.strip().lower() in TRUTHY

    if db_path := os.environ.get("FLOWPULSE_DB_PATH"):
        _section(result, "sync")["db_path"] = db_path

    if interval_str := os.environ.get("FLOWPULSE_SYNC_INTERVAL"):
        try:
            interval = int(interval_str)
        except ValueError:
            logger.warning(f"Invalid FLOWPULSE_SYNC_INTERVAL value '{interval_str}', ignoring")
        else:
            if interval < 1:
                logger.warning(f"FLOWPULSE_SYNC_INTERVAL must be >= 1, got {interval}, ignoring")
            else:
                _section(result, "sync")["interval_minutes"] = interval

    return result


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> FlowPulseConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables
        2. Project config (.flowpulse.yaml)
        3. User config (~/.config/flowpulse/config.yaml)
        4. Model defaults

    Args:
        project_dir: Directory holding .flowpulse.yaml (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated FlowPulseConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged: dict[str, Any] = {}

    if user_config := load_yaml_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_yaml_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    config = FlowPulseConfig(**merged)
    _config_cache = config
    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None
