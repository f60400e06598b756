"""Shared error definitions for the relay gateway.

Every failure in the request pipeline is raised as a ``ProxyError`` subclass
carrying the HTTP status it maps to. ``error_response`` is the single place
where those errors become HTTP responses.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from aiohttp import web

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Internal server error"


class ProxyError(Exception):
    """Base error for the relay pipeline."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ProxyError):
    """Raised when the inbound chat request is malformed."""

    status_code = 400


class MissingCredentialError(ProxyError):
    """Raised when the inbound request has no bearer token."""

    status_code = 401


class LocalModelError(ProxyError):
    """Raised when the local reasoning endpoint fails or is unreachable.

    Carries the endpoint status, or the default 500 when no reply arrived.
    """


class UpstreamError(ProxyError):
    """Raised when the upstream completion endpoint returns an error."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message, status_code)
        self.response_body = response_body


class StreamRelayError(ProxyError):
    """Raised when relaying an event stream fails after headers were sent.

    The response has already started, so no status or body can follow.
    """

    def __init__(self, message: str, response: web.StreamResponse | None = None):
        super().__init__(message)
        self.response = response


def error_response(error: BaseException, trace_id: str | None = None) -> web.StreamResponse:
    """Translate any pipeline failure into the response sent to the caller.

    ``ProxyError`` keeps its status code, anything else becomes a 500. The body
    is always ``{"error": <message>}`` unless the failure happened mid-stream,
    in which case the already-started response is returned as-is.
    """
    from aiohttp import web

    prefix = f"[{trace_id}] " if trace_id else ""

    if isinstance(error, StreamRelayError) and error.response is not None:
        logger.warning("%sStream relay aborted: %s", prefix, error.message)
        return error.response

    if isinstance(error, ProxyError):
        status = error.status_code
        message = error.message
        logger.error("%s%s (%d): %s", prefix, type(error).__name__, status, message)
    else:
        status = 500
        message = str(error)
        logger.exception("%sUnexpected error handling request", prefix, exc_info=error)

    headers: dict[str, Any] = {"X-Trace-Id": trace_id} if trace_id else {}
    return web.json_response(
        {"error": message or DEFAULT_ERROR_MESSAGE},
        status=status,
        headers=headers,
    )
