"""Request validation for the relay gateway."""

from .validation import ChatRequest, validate_request

__all__ = [
    "ChatRequest",
    "validate_request",
]
