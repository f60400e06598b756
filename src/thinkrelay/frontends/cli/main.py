"""CLI entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import asdict
from typing import Any

import rich_click as click
from rich.console import Console
from rich.table import Table

from thinkrelay.__version__ import __version__

# Configure rich-click styling
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.USE_MARKDOWN = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
click.rich_click.ERRORS_EPILOGUE = ""
click.rich_click.MAX_WIDTH = 100

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Shared by serve and config so both resolve the same way
_CONFIG_OPTIONS = [
    click.option("--config", "config_file", default=None, help="YAML config file"),
    click.option("--host", default=None, help="Host to bind"),
    click.option("--port", type=int, default=None, help="Port to listen on (default 9000)"),
    click.option("--local-url", "local_base_url", default=None, help="Local model base URL"),
    click.option("--local-model", default=None, help="Local reasoning model name"),
    click.option("--upstream-url", default=None, help="Upstream chat-completions URL"),
    click.option("--upstream-model", default=None, help="Upstream model name"),
    click.option(
        "--heartbeat-interval",
        type=float,
        default=None,
        help="Seconds between stream heartbeats",
    ),
    click.option(
        "--connect-timeout",
        type=float,
        default=None,
        help="Outbound connect timeout in seconds (default: none)",
    ),
    click.option("--cors-origin", "cors_allow_origin", default=None, help="CORS allowed origin"),
    click.option("--debug-dir", default=None, help="Directory for request debug dumps"),
]


def config_options(fn: Any) -> Any:
    for option in reversed(_CONFIG_OPTIONS):
        fn = option(fn)
    return fn


def _resolve_config(config_file: str | None, **overrides: Any) -> Any:
    from thinkrelay.compose import load_relay_config

    try:
        return load_relay_config(config_file, **overrides)
    except (OSError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(__version__, package_name="thinkrelay")
def cli() -> None:
    """thinkrelay - reasoning relay for chat-completion clients.

    A fast local model starts thinking about each request; its visible
    reasoning is handed to a remote model, whose answer is relayed back.

    **Commands:**

        thinkrelay serve     Run the relay proxy

        thinkrelay config    Show the resolved configuration
    """
    pass


@cli.command()
@config_options
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    help="Logging level",
)
def serve(config_file: str | None, log_level: str, **overrides: Any) -> None:
    """Run the relay proxy.

    Settings resolve as: option > environment (`THINKRELAY_*`, `PORT`) >
    config file > default.

    **Examples:**

        thinkrelay serve

        thinkrelay serve --port 9100 --local-model deepseek-r1:7b

        thinkrelay serve --config relay.yaml --debug-dir .thinkrelay
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if level > logging.DEBUG:
        # Quiet noisy loggers
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    config = _resolve_config(config_file, **overrides)

    from thinkrelay.compose import run_relay_proxy

    click.echo(f"Starting relay proxy on http://{config.host}:{config.port}")
    click.echo(f"Local model: {config.local_model} ({config.local_base_url})")
    click.echo(f"Upstream: {config.upstream_model} ({config.upstream_url})")

    try:
        asyncio.run(run_relay_proxy(config))
    except KeyboardInterrupt:
        click.echo("Stopped.")
    except OSError as e:
        click.echo(f"Error: could not start server: {e}", err=True)
        sys.exit(1)


@cli.command("config")
@config_options
def show_config(config_file: str | None, **overrides: Any) -> None:
    """Show the resolved configuration.

    **Examples:**

        thinkrelay config

        THINKRELAY_PORT=9100 thinkrelay config --config relay.yaml
    """
    config = _resolve_config(config_file, **overrides)

    table = Table(title="thinkrelay configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in asdict(config).items():
        table.add_row(name, "" if value is None else str(value))

    Console().print(table)


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
