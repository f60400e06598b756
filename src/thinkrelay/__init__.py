"""thinkrelay - reasoning relay for chat-completion clients.

Sits between an AI coding client and two model providers: a fast local model
starts reasoning about the conversation, and its visible thoughts are handed
to a more capable remote model, whose answer is relayed back to the client.

Layers:
    gateway/    Request pipeline (validation, clients, stream relay, errors)
    compose     Configuration resolution and server runner
    frontends/  Command-line interface

Quick Start:
    >>> from thinkrelay import RelayProxyConfig, RelayProxyServer
    >>> server = RelayProxyServer(config=RelayProxyConfig(port=9000))
    >>> await server.serve()

Then point the client at http://127.0.0.1:9000/v1 with the upstream API key
as its bearer token.
"""

from thinkrelay.__version__ import __version__
from thinkrelay.gateway.relay_proxy import RelayProxyConfig, RelayProxyServer

__all__ = [
    "__version__",
    "RelayProxyConfig",
    "RelayProxyServer",
]
