"""CLI frontend for thinkrelay.

Commands:
    thinkrelay serve     Run the relay proxy
    thinkrelay config    Show the resolved configuration

Example:
    $ thinkrelay serve --port 9000 --upstream-model anthropic/claude-3.5-sonnet
"""

from thinkrelay.frontends.cli.main import main

__all__ = ["main"]
