"""HTTP clients for the local reasoning model and the upstream endpoint."""

from .local_reasoning import LocalReasoningClient, LocalReasoningConfig
from .upstream import UpstreamRelayClient, UpstreamRelayConfig

__all__ = [
    "LocalReasoningClient",
    "LocalReasoningConfig",
    "UpstreamRelayClient",
    "UpstreamRelayConfig",
]
