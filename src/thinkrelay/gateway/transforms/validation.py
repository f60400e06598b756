"""Pydantic models for chat-completion request validation.

Only ``messages`` is checked: it must be a non-empty list of message objects.
Every other field is caller-supplied model configuration and passes through
untouched (extra="allow").
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from thinkrelay.gateway.errors import ValidationError

INVALID_REQUEST = "Invalid request"
INVALID_MESSAGES = "Invalid request: messages array is required"


class ChatRequest(BaseModel):
    """Inbound chat-completion request body.

    Frozen once validated; the local and upstream requests are built from
    ``to_payload()`` copies and never mutate the original.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    messages: list[dict[str, Any]]
    stream: Any = False

    @field_validator("messages", mode="before")
    @classmethod
    def validate_messages(cls, v: Any) -> Any:
        """Validate messages is a non-empty list."""
        if not isinstance(v, list) or not v:
            raise ValueError("messages list cannot be empty")
        return v

    @property
    def is_streaming(self) -> bool:
        """Whether the caller asked for an event-stream response."""
        return bool(self.stream)

    @property
    def last_role(self) -> str | None:
        return self.messages[-1].get("role")

    def to_payload(self) -> dict[str, Any]:
        """Return a fresh dict of the request exactly as the caller sent it."""
        return self.model_dump(exclude_unset=True)


def validate_request(body: Any) -> ChatRequest:
    """Validate a raw inbound payload.

    Args:
        body: The decoded JSON request body

    Returns:
        The validated ChatRequest

    Raises:
        ValidationError: If ``messages`` is absent, not a list, empty, or
            holds entries that are not objects
    """
    if not isinstance(body, dict):
        raise ValidationError("Invalid request: body must be a JSON object")

    try:
        return ChatRequest.model_validate(body)
    except PydanticValidationError as e:
        errors = e.errors()
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in errors
        )
        # Element-level failures (messages.0, ...) are not a missing array
        missing = any(tuple(err["loc"]) == ("messages",) for err in errors)
        prefix = INVALID_MESSAGES if missing else INVALID_REQUEST
        raise ValidationError(f"{prefix} ({details})") from e
