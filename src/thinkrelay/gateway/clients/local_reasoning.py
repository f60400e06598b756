"""Client for the local reasoning model.

Sends a trimmed-down copy of the chat request to a local Ollama-style
``/api/chat`` endpoint and turns its newline-delimited JSON output into a
thought fragment: the visible reasoning after the first ``<think>`` tag.

The local model:
1. Receives no tool schemas and no tool turns (tool messages become user turns)
2. Runs under a fixed model name
3. Stops at the closing ``</think>`` tag
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp

from thinkrelay.gateway.errors import LocalModelError
from thinkrelay.gateway.transforms.validation import ChatRequest

if TYPE_CHECKING:
    from thinkrelay.gateway.tracing import RequestTracer

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


@dataclass(frozen=True)
class LocalReasoningConfig:
    """Configuration for the local reasoning client."""

    base_url: str = "http://127.0.0.1:11434"
    model: str = "deepseek-r1:1.5b"
    stop: str = THINK_CLOSE

    # None disables the timeout
    connect_timeout: float | None = None

    @property
    def chat_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/api/chat"


def build_local_request(chat_request: ChatRequest, config: LocalReasoningConfig) -> dict[str, Any]:
    """Build the request body sent to the local model.

    Drops ``tools``, remaps ``tool`` messages to ``user`` (keeping only role
    and content), forces the model name and sets the stop sequence.
    """
    payload = chat_request.to_payload()
    payload.pop("tools", None)
    payload["messages"] = [
        {
            "role": "user" if m.get("role") == "tool" else m.get("role"),
            "content": m.get("content"),
        }
        for m in chat_request.messages
    ]
    payload["model"] = config.model
    payload["options"] = {"stop": [config.stop]}
    return payload


def accumulate_content(raw: str, trace_id: str | None = None) -> str:
    """Concatenate ``message.content`` deltas from NDJSON output.

    Stops at the first object with ``done: true``. Lines that are not JSON
    objects are skipped.
    """
    parts: list[str] = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            logger.debug("[%s] Skipping malformed local model line: %s", trace_id, e)
            continue
        if not isinstance(data, dict):
            continue

        message = data.get("message")
        if isinstance(message, dict) and message.get("content"):
            parts.append(str(message["content"]))
        if data.get("done"):
            break

    return "".join(parts)


def extract_thought(text: str) -> str:
    """Extract the thought fragment from accumulated local model output.

    Everything after the first ``<think>`` tag, trimmed, with ``</think>``
    appended. Empty when the tag is absent. Later tags are not interpreted.
    """
    _, tag, after = text.partition(THINK_OPEN)
    if not tag:
        return ""
    return f"{after.strip()}{THINK_CLOSE}"


@dataclass
class LocalReasoningClient:
    """HTTP client for the local reasoning endpoint.

    Example:
        >>> client = LocalReasoningClient(config=LocalReasoningConfig())
        >>> await client.connect()
        >>> thought = await client.think(chat_request, trace_id="00001")
        >>> await client.close()
    """

    config: LocalReasoningConfig
    _session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        """Initialize the HTTP session."""
        timeout = aiohttp.ClientTimeout(total=None, connect=self.config.connect_timeout)
        self._session = aiohttp.ClientSession(
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def think(
        self,
        chat_request: ChatRequest,
        trace_id: str | None = None,
        tracer: RequestTracer | None = None,
    ) -> str:
        """Ask the local model to start reasoning about the conversation.

        Args:
            chat_request: The validated inbound request
            trace_id: Optional trace ID for log correlation
            tracer: Optional RequestTracer receiving debug snapshots

        Returns:
            The thought fragment, possibly empty

        Raises:
            LocalModelError: If the endpoint is unreachable or returns an error
        """
        if self._session is None:
            raise RuntimeError("Client not connected. Call connect() first.")

        local_request = build_local_request(chat_request, self.config)
        if tracer and trace_id:
            tracer.save_debug(trace_id, "2_local_request.json", local_request)

        logger.info(
            "[%s] Contacting local model %s at %s",
            trace_id,
            self.config.model,
            self.config.chat_url,
        )
        try:
            async with self._session.post(self.config.chat_url, json=local_request) as response:
                if not 200 <= response.status < 300:
                    error_body = await response.text()
                    logger.error(
                        "[%s] Local model error %d: %s",
                        trace_id,
                        response.status,
                        error_body[:500],
                    )
                    raise LocalModelError(
                        f"Local model request failed: {response.status}",
                        response.status,
                    )
                raw = await response.text()
        except aiohttp.ClientError as e:
            raise LocalModelError(f"Local model request failed: {e}") from e

        accumulated = accumulate_content(raw, trace_id)
        thought = extract_thought(accumulated)
        if tracer and trace_id:
            tracer.save_debug(
                trace_id,
                "3_local_output.json",
                {"accumulated": accumulated, "thought": thought},
            )

        logger.info("[%s] Local model produced %d chars of thought", trace_id, len(thought))
        logger.debug("[%s] Thought: %s", trace_id, thought)
        return thought
