"""Configuration file loading for the platform and rewrite-rule tables.

The file is YAML (or JSON, by extension) with optional ``platforms`` and
``rules`` sections, optionally nested under a top-level ``unigate`` key::

    platforms:
      internal: https://artifacts.example.com
      arxiv: null            # remove a built-in platform
    rules:
      internal: {kind: api-namespace, namespace: /api/v2/packages}
      crates: identity       # drop a built-in rule

Errors are fatal: a proxy must not start with an inconsistent table.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict, Optional, Tuple

import yaml

from constants import Constants, ExitCodes
from proxy.platforms import PlatformConfigError
from proxy.rewrite import PathRewriter, build_rewriter

logger = logging.getLogger(__name__)


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load a YAML/JSON configuration file into a dict.

    Args:
        config_path: Path to a .yaml/.yml/.json file.

    Returns:
        The configuration mapping (the ``unigate`` section when present).

    Raises:
        OSError: If the file cannot be read.
        PlatformConfigError: If the content is not a mapping or fails to parse.
    """
    with open(config_path, "r", encoding="utf-8") as fh:
        try:
            if config_path.lower().endswith(".json"):
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise PlatformConfigError(f"Cannot parse {config_path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise PlatformConfigError(f"{config_path}: top level must be a mapping")
    section = data.get(Constants.CONFIG_SECTION, data)
    if not isinstance(section, dict):
        raise PlatformConfigError(f"{config_path}: '{Constants.CONFIG_SECTION}' must be a mapping")
    return section


def split_config(data: Dict[str, Any]) -> Tuple[Dict[str, Optional[str]], Dict[str, Any]]:
    """Return the ``(platforms, rules)`` sections, checking their shape."""
    platforms = data.get("platforms") or {}
    rules = data.get("rules") or {}
    if not isinstance(platforms, dict):
        raise PlatformConfigError("'platforms' must be a mapping of key to origin")
    if not isinstance(rules, dict):
        raise PlatformConfigError("'rules' must be a mapping of key to rule")
    for key, origin in platforms.items():
        if origin is not None and not isinstance(origin, str):
            raise PlatformConfigError(f"Platform {key!r}: origin must be a string or null")
    return dict(platforms), dict(rules)


def load_overrides(config_path: Optional[str]) -> Tuple[Dict[str, Optional[str]], Dict[str, Any]]:
    """Load platform and rule overrides, exiting the process on failure.

    Args:
        config_path: Optional path to the configuration file.

    Returns:
        ``(platforms, rules)`` overrides; both empty when no file is given.
    """
    if not config_path:
        return {}, {}
    if not os.path.isfile(config_path):
        logger.error("Config file not found: %s", config_path)
        sys.exit(ExitCodes.FILE_ERROR.value)
    try:
        overrides = split_config(load_config_file(config_path))
    except OSError as exc:
        logger.error("Cannot read config file %s: %s", config_path, exc)
        sys.exit(ExitCodes.FILE_ERROR.value)
    except PlatformConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(ExitCodes.CONFIG_ERROR.value)
    logger.info("Loaded platform config from: %s", config_path)
    return overrides


def rewriter_from_args(args: Any) -> PathRewriter:
    """Build the rewriter for CLI commands, exiting on invalid configuration."""
    platforms, rules = load_overrides(getattr(args, "CONFIG", None))
    try:
        return build_rewriter(platforms, rules)
    except PlatformConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(ExitCodes.CONFIG_ERROR.value)
