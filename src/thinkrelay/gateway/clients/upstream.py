"""Client for the upstream completion endpoint.

Merges the local thought fragment into the caller's conversation and sends
it to the remote model with the caller's own bearer token. The response is
handed back open so the caller can either relay its byte stream or read the
whole JSON body.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import aiohttp

from thinkrelay.gateway.errors import MissingCredentialError, UpstreamError
from thinkrelay.gateway.transforms.validation import ChatRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpstreamRelayConfig:
    """Configuration for the upstream relay client."""

    url: str = "https://openrouter.ai/api/v1/chat/completions"
    model: str = "anthropic/claude-3.5-sonnet"

    # Identification headers sent with every upstream request
    referer: str = "https://github.com/cursor-ai"
    title: str = "Cursor AI"

    # None disables the timeout
    connect_timeout: float | None = None


def extract_bearer_token(headers: Mapping[str, str]) -> str:
    """Return the credential from an ``Authorization: Bearer <token>`` header.

    Raises:
        MissingCredentialError: If the header is absent or carries no token
    """
    authorization = headers.get("Authorization", "").strip()
    scheme, _, token = authorization.partition(" ")
    # A bare token without a scheme is accepted as-is
    if scheme.lower() != "bearer":
        token = authorization
    token = token.strip()
    if not token:
        raise MissingCredentialError("Missing upstream API key")
    return token


def build_upstream_request(
    chat_request: ChatRequest,
    thought: str,
    config: UpstreamRelayConfig,
) -> dict[str, Any]:
    """Build the request body sent upstream.

    Same fields as the caller's request with the model overridden. A
    non-empty thought is appended as a trailing assistant message.
    """
    payload = chat_request.to_payload()
    payload["model"] = config.model
    if thought:
        payload["messages"] = [*payload["messages"], {"role": "assistant", "content": thought}]
    return payload


@dataclass
class UpstreamRelayClient:
    """HTTP client for the upstream completion endpoint.

    The session carries no credential; each request is sent with the
    caller's token.

    Example:
        >>> client = UpstreamRelayClient(config=UpstreamRelayConfig())
        >>> await client.connect()
        >>> async with client.post(body, credential, trace_id) as response:
        ...     data = await response.read()
    """

    config: UpstreamRelayConfig
    _session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        """Initialize the HTTP session."""
        timeout = aiohttp.ClientTimeout(total=None, connect=self.config.connect_timeout)
        self._session = aiohttp.ClientSession(
            headers={
                "Content-Type": "application/json",
                "HTTP-Referer": self.config.referer,
                "X-Title": self.config.title,
            },
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    @asynccontextmanager
    async def post(
        self,
        request_body: dict[str, Any],
        credential: str,
        trace_id: str | None = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Send a request upstream and yield the open response.

        The response is released when the context exits, so a streamed body
        must be consumed inside it.

        Raises:
            UpstreamError: If upstream is unreachable or returns an error
        """
        if self._session is None:
            raise RuntimeError("Client not connected. Call connect() first.")

        logger.info(
            "[%s] Contacting upstream %s (%s), stream=%s",
            trace_id,
            self.config.url,
            self.config.model,
            bool(request_body.get("stream")),
        )
        try:
            async with self._session.post(
                self.config.url,
                json=request_body,
                headers={"Authorization": f"Bearer {credential}"},
            ) as response:
                if not 200 <= response.status < 300:
                    error_body = await response.text()
                    logger.error(
                        "[%s] Upstream error %d: %s",
                        trace_id,
                        response.status,
                        error_body[:500],
                    )
                    raise UpstreamError(
                        f"Upstream request failed: {response.status}",
                        response.status,
                        error_body,
                    )
                yield response
        except aiohttp.ClientConnectionError as e:
            raise UpstreamError(f"Upstream request failed: {e}") from e
