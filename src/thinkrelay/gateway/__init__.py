"""thinkrelay gateway - the request pipeline.

Components:
- Relay proxy server: accepts chat-completion requests and wires the pipeline
- Clients: local reasoning model and upstream completion endpoint
- Stream relay: event-stream pass-through with heartbeats
- Errors: error taxonomy and the single error-to-response mapping

Usage:
    from thinkrelay.gateway.relay_proxy import RelayProxyConfig, RelayProxyServer
    import asyncio

    async def main():
        server = RelayProxyServer(config=RelayProxyConfig())
        await server.serve()

    asyncio.run(main())
"""

from thinkrelay.gateway.errors import (
    LocalModelError,
    MissingCredentialError,
    ProxyError,
    StreamRelayError,
    UpstreamError,
    ValidationError,
    error_response,
)
from thinkrelay.gateway.tracing import RequestTracer

__all__ = [
    "LocalModelError",
    "MissingCredentialError",
    "ProxyError",
    "RequestTracer",
    "StreamRelayError",
    "UpstreamError",
    "ValidationError",
    "error_response",
]
