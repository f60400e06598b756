"""Composition helpers for running the relay proxy.

Resolves the proxy configuration from arguments, environment and an optional
YAML file, and runs the server until it is stopped.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from thinkrelay.gateway.relay_proxy import RelayProxyConfig, RelayProxyServer

logger = logging.getLogger(__name__)

CONFIG_ENV_KEY = "THINKRELAY_CONFIG"

# Config field -> environment variables, first set one wins
ENV_KEYS: dict[str, tuple[str, ...]] = {
    "host": ("THINKRELAY_HOST",),
    "port": ("THINKRELAY_PORT", "PORT"),
    "local_base_url": ("THINKRELAY_LOCAL_URL",),
    "local_model": ("THINKRELAY_LOCAL_MODEL",),
    "upstream_url": ("THINKRELAY_UPSTREAM_URL",),
    "upstream_model": ("THINKRELAY_UPSTREAM_MODEL",),
    "heartbeat_interval": ("THINKRELAY_HEARTBEAT_INTERVAL",),
    "connect_timeout": ("THINKRELAY_CONNECT_TIMEOUT",),
    "cors_allow_origin": ("THINKRELAY_CORS_ORIGIN",),
    "debug_dir": ("THINKRELAY_DEBUG_DIR",),
}

_CONVERTERS: dict[str, Callable[[Any], Any]] = {
    "port": int,
    "heartbeat_interval": float,
    "connect_timeout": float,
    "max_body_size": int,
}


def _load_config_file(config_file: str | Path | None) -> dict[str, Any]:
    """Load the YAML config file named by argument or THINKRELAY_CONFIG.

    Raises:
        FileNotFoundError: If a config file was named but does not exist
        ValueError: If the file does not hold a mapping
    """
    config_path = config_file or os.environ.get(CONFIG_ENV_KEY)
    if not config_path:
        return {}

    content = Path(config_path).read_text()
    file_config = yaml.safe_load(content) or {}
    if not isinstance(file_config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")
    return file_config


def load_relay_config(config_file: str | Path | None = None, **overrides: Any) -> RelayProxyConfig:
    """Resolve a RelayProxyConfig.

    Priority: explicit override > environment > config file > default.
    Overrides set to None are treated as not given.

    Example:
        >>> config = load_relay_config(port=9100)
        >>> config = load_relay_config("relay.yaml", upstream_model="openai/gpt-4o")
    """
    file_config = _load_config_file(config_file)
    known = {f.name for f in fields(RelayProxyConfig)}

    unknown = set(file_config) - known
    if unknown:
        logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))

    values: dict[str, Any] = {}
    for name in known:
        value = overrides.get(name)
        if value is None:
            for env_key in ENV_KEYS.get(name, ()):
                env_val = os.environ.get(env_key)
                if env_val:
                    value = env_val
                    break
        if value is None:
            value = file_config.get(name)
        if value is None:
            continue

        convert = _CONVERTERS.get(name)
        try:
            values[name] = convert(value) if convert else value
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid value for {name}: {value!r}") from e

    return RelayProxyConfig(**values)


async def run_relay_proxy(config: RelayProxyConfig) -> None:
    """Run the relay proxy until cancelled or shut down.

    Unhandled failures in background tasks are logged and the server keeps
    running.
    """
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_log_unhandled)

    server = RelayProxyServer(config=config)
    await server.serve()


def _log_unhandled(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exception = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if exception is not None:
        logger.error("Unhandled error: %s", message, exc_info=exception)
    else:
        logger.error("Unhandled error: %s", message)
