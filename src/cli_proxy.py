"""CLI entry point for the unigate proxy server.

This module provides the command-line interface for starting the proxy server
that maps ``/{platform}/...`` requests onto upstream registries.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import sys
from typing import Any

from constants import Constants, ExitCodes
from common.logging_utils import configure_logging
from cli_config import load_overrides
from proxy.platforms import PlatformConfigError

logger = logging.getLogger(__name__)


def _is_local_bind_host(host: str) -> bool:
    """Return True if host is a loopback/local bind target."""
    if not host:
        return False
    host_lower = host.strip().lower()
    if host_lower in ("localhost",):
        return True
    try:
        return ipaddress.ip_address(host_lower).is_loopback
    except ValueError:
        # Non-IP hostnames are treated as non-local unless explicitly allowed.
        return False


def _enforce_local_binding(host: str, allow_external: bool) -> None:
    """Enforce local-only binding unless explicitly allowed."""
    if _is_local_bind_host(host):
        return
    if not allow_external:
        sys.stderr.write(
            "ERROR: Non-local bindings require --allow-external.\n"
        )
        sys.exit(ExitCodes.CONNECTION_ERROR.value)
    logger.warning(
        "Binding proxy to non-local address (%s). Ensure network controls are in place.",
        host,
    )


def setup_logging(args: Any) -> None:
    """Configure logging based on CLI arguments.

    Args:
        args: Parsed CLI arguments.
    """
    # Honor CLI --loglevel
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()

    configure_logging()

    # Add file handler if --logfile specified
    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(Constants.LOG_FILE_FORMAT))
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def run_proxy_server(args: Any) -> None:
    """Entry point for the proxy server command.

    Args:
        args: Parsed CLI arguments namespace.
    """
    # Lazy import to avoid loading aiohttp for other commands
    try:
        from proxy.server import (  # pylint: disable=import-outside-toplevel
            ProxyConfig,
            run_proxy_server_sync,
        )
    except ImportError as e:
        sys.stderr.write(
            f"Proxy server not available: {e}\n"
            "Make sure 'aiohttp' is installed: pip install aiohttp\n"
        )
        sys.exit(ExitCodes.FILE_ERROR.value)

    config = ProxyConfig.from_args(args)
    config.platforms, config.rules = load_overrides(getattr(args, "CONFIG", None))
    _enforce_local_binding(config.host, config.allow_external)

    # Validate the tables before binding; the server builds the same ones.
    try:
        registry = config.build_rewriter().registry
    except PlatformConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(ExitCodes.CONFIG_ERROR.value)

    # Print startup banner
    print(
        f"\n"
        f"  unigate Proxy Server\n"
        f"  ====================\n"
        f"  Listening: http://{config.host}:{config.port}\n"
        f"  Platforms: {len(registry)}\n"
        f"\n"
        f"  Examples:\n"
        f"    http://{config.host}:{config.port}/gh/<owner>/<repo>/archive/main.zip\n"
        f"    pip config set global.index-url http://{config.host}:{config.port}/pypi/simple\n"
        f"\n"
        f"  Press Ctrl+C to stop\n"
    )

    try:
        run_proxy_server_sync(config)
    except OSError as exc:
        logger.error("Cannot listen on %s:%s: %s", config.host, config.port, exc)
        sys.exit(ExitCodes.CONNECTION_ERROR.value)
