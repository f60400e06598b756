"""Reasoning relay proxy server.

Exposes an OpenAI-compatible /v1/chat/completions endpoint that:
1. Validates the chat request
2. Asks a local model to start reasoning (skipped for tool-result turns)
3. Appends that reasoning as an assistant message and forwards the
   conversation upstream with the caller's own bearer token
4. Relays the upstream response back, streamed or whole

Every failure is translated once, by ``error_response``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from aiohttp import web

from thinkrelay.gateway.clients.local_reasoning import (
    LocalReasoningClient,
    LocalReasoningConfig,
)
from thinkrelay.gateway.clients.upstream import (
    UpstreamRelayClient,
    UpstreamRelayConfig,
    build_upstream_request,
    extract_bearer_token,
)
from thinkrelay.gateway.errors import ValidationError, error_response
from thinkrelay.gateway.stream_relay import StreamRelay
from thinkrelay.gateway.tracing import RequestTracer
from thinkrelay.gateway.transforms.validation import validate_request

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = "GET, HEAD, PUT, PATCH, POST, DELETE"


@dataclass(frozen=True)
class RelayProxyConfig:
    """Configuration for the relay proxy server.

    Built once at startup and read-only afterwards.
    """

    host: str = "127.0.0.1"
    port: int = 9000

    # Local reasoning model (Ollama-style /api/chat)
    local_base_url: str = "http://127.0.0.1:11434"
    local_model: str = "deepseek-r1:1.5b"

    # Upstream completion endpoint
    upstream_url: str = "https://openrouter.ai/api/v1/chat/completions"
    upstream_model: str = "anthropic/claude-3.5-sonnet"
    upstream_referer: str = "https://github.com/cursor-ai"
    upstream_title: str = "Cursor AI"

    # Seconds between ": heartbeat" frames on relayed streams
    heartbeat_interval: float = 15.0

    # None disables the connect timeout; there is never a total timeout
    connect_timeout: float | None = None

    # Access-Control-Allow-Origin value, empty disables CORS headers
    cors_allow_origin: str = "*"

    # Request limits
    max_body_size: int = 100 * 1024 * 1024  # 100MB

    # Debug: save pipeline snapshots to files
    debug_dir: str | None = None  # e.g., "/tmp/thinkrelay-debug"

    def local_config(self) -> LocalReasoningConfig:
        return LocalReasoningConfig(
            base_url=self.local_base_url,
            model=self.local_model,
            connect_timeout=self.connect_timeout,
        )

    def upstream_config(self) -> UpstreamRelayConfig:
        return UpstreamRelayConfig(
            url=self.upstream_url,
            model=self.upstream_model,
            referer=self.upstream_referer,
            title=self.upstream_title,
            connect_timeout=self.connect_timeout,
        )


def _cors_middleware(allow_origin: str) -> Any:
    """Build a middleware answering CORS preflight requests."""
    from aiohttp import web

    @web.middleware
    async def cors_preflight(request: web.Request, handler: Any) -> web.StreamResponse:
        if request.method != "OPTIONS":
            return await handler(request)
        return web.Response(
            status=204,
            headers={
                "Access-Control-Allow-Origin": allow_origin,
                "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
                "Access-Control-Allow-Headers": request.headers.get(
                    "Access-Control-Request-Headers", "*"
                ),
            },
        )

    return cors_preflight


def _cors_headers(allow_origin: str) -> Any:
    """Build an on_response_prepare hook adding the allow-origin header.

    Runs for streamed responses too, before their headers are sent.
    """

    async def add_cors_headers(request: web.Request, response: web.StreamResponse) -> None:
        response.headers.setdefault("Access-Control-Allow-Origin", allow_origin)

    return add_cors_headers


@dataclass
class RelayProxyServer:
    """Server that enriches chat requests with local reasoning
    and relays them to the upstream model.

    Example:
        >>> config = RelayProxyConfig(port=9000)
        >>> server = RelayProxyServer(config=config)
        >>> await server.serve()
    """

    config: RelayProxyConfig
    _app: Any = None  # aiohttp.web.Application
    _runner: Any = None  # aiohttp.web.AppRunner
    _site: Any = None  # aiohttp.web.TCPSite
    _local: LocalReasoningClient | None = None
    _upstream: UpstreamRelayClient | None = None
    _relay: StreamRelay = field(init=False)
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    _tracer: RequestTracer = field(init=False)

    def __post_init__(self) -> None:
        """Initialize tracer and stream relay from config."""
        self._tracer = RequestTracer(debug_dir=self.config.debug_dir)
        self._relay = StreamRelay(heartbeat_interval=self.config.heartbeat_interval)

    @property
    def bound_port(self) -> int | None:
        """Port actually bound by the listening socket (useful with port=0)."""
        if self._site is None or self._site._server is None:
            return None
        return self._site._server.sockets[0].getsockname()[1]

    def build_app(self) -> web.Application:
        """Create the aiohttp application with all routes."""
        from aiohttp import web

        middlewares = []
        if self.config.cors_allow_origin:
            middlewares.append(_cors_middleware(self.config.cors_allow_origin))

        app = web.Application(
            client_max_size=self.config.max_body_size,
            middlewares=middlewares,
        )
        app.router.add_post("/v1/chat/completions", self._handle_chat_completions)
        app.router.add_get("/health", self._handle_health)
        if self.config.cors_allow_origin:
            app.on_response_prepare.append(_cors_headers(self.config.cors_allow_origin))
        return app

    async def start(self) -> None:
        """Open upstream sessions and start listening."""
        from aiohttp import web

        self._local = LocalReasoningClient(config=self.config.local_config())
        self._upstream = UpstreamRelayClient(config=self.config.upstream_config())
        await self._local.connect()
        await self._upstream.connect()

        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await self._site.start()

        logger.info(
            "Relay proxy listening on http://%s:%s",
            self.config.host,
            self.bound_port,
        )
        logger.info(
            "Local reasoning: %s (%s)",
            self.config.local_base_url,
            self.config.local_model,
        )
        logger.info(
            "Upstream: %s (%s)",
            self.config.upstream_url,
            self.config.upstream_model,
        )
        if self.config.debug_dir:
            logger.info("Debug files will be saved to: %s", self.config.debug_dir)

    async def serve(self) -> None:
        """Start the proxy server and run until shutdown is requested."""
        await self.start()
        try:
            await self._shutdown_event.wait()
            logger.info("Relay proxy shutdown requested")
        finally:
            await self.stop()

    def shutdown(self) -> None:
        """Request a graceful shutdown of a running ``serve()``."""
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Stop the proxy server and release its sessions."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        if self._local:
            await self._local.close()
            self._local = None
        if self._upstream:
            await self._upstream.close()
            self._upstream = None

    async def _handle_chat_completions(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /v1/chat/completions - main relay endpoint."""
        logger.info("Received chat completion request")
        trace_id: str | None = None
        try:
            try:
                body = await request.json()
            except ValueError as e:
                # JSONDecodeError or UnicodeDecodeError
                raise ValidationError(f"Invalid JSON: {e}") from e

            trace_id = self._tracer.generate_trace_id(body)
            return await self._relay_chat(request, body, trace_id)
        except Exception as e:
            return error_response(e, trace_id)

    async def _relay_chat(
        self,
        request: web.Request,
        body: Any,
        trace_id: str,
    ) -> web.StreamResponse:
        from aiohttp import web

        if self._local is None or self._upstream is None:
            raise RuntimeError("Relay clients not initialized. Call start() first.")

        self._save_debug(trace_id, "1_request.json", body)
        chat_request = validate_request(body)
        credential = extract_bearer_token(request.headers)

        logger.info(
            "[%s] Request: messages=%d, stream=%s, last_role=%s",
            trace_id,
            len(chat_request.messages),
            chat_request.is_streaming,
            chat_request.last_role,
        )

        # Tool-result turns go upstream without local reasoning
        if chat_request.last_role == "tool":
            logger.info("[%s] Tool result turn, skipping local reasoning", trace_id)
            thought = ""
        else:
            thought = await self._local.think(chat_request, trace_id, self._tracer)

        upstream_request = build_upstream_request(chat_request, thought, self._upstream.config)
        self._save_debug(trace_id, "4_upstream_request.json", upstream_request)

        async with self._upstream.post(upstream_request, credential, trace_id) as upstream_response:
            if chat_request.is_streaming:
                return await self._relay.relay(
                    request,
                    upstream_response.content.iter_any(),
                    trace_id,
                )

            payload = await upstream_response.read()

        self._save_debug(trace_id, "5_upstream_response.json", payload.decode("utf-8", "replace"))
        logger.info("[%s] Non-streaming response relayed (%d bytes)", trace_id, len(payload))
        return web.Response(
            body=payload,
            content_type="application/json",
            headers={"X-Trace-Id": trace_id},
        )

    def _save_debug(self, trace_id: str, filename: str, data: Any) -> None:
        """Save debug data to JSON file if debug_dir is configured."""
        self._tracer.save_debug(trace_id, filename, data)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health."""
        from aiohttp import web

        return web.json_response({"status": "ok"})
