"""Pytest configuration and fixtures."""

import json

import pytest


def ndjson(*objects) -> str:
    """Encode objects as newline-delimited JSON."""
    return "".join(json.dumps(obj) + "\n" for obj in objects)


@pytest.fixture
def local_output_with_thought():
    """Local model output split across two deltas, closing with done."""
    return ndjson(
        {"message": {"role": "assistant", "content": "<think>ab"}, "done": False},
        {"message": {"role": "assistant", "content": "cd</think>xy"}, "done": True},
    )


@pytest.fixture
def local_output_without_thought():
    """Local model output with no <think> tag."""
    return ndjson(
        {"message": {"role": "assistant", "content": "Just an answer."}, "done": False},
        {"message": {"role": "assistant", "content": ""}, "done": True},
    )


@pytest.fixture
def chat_body():
    """A plain user turn with passthrough model parameters."""
    return {
        "model": "cursor-default",
        "messages": [
            {"role": "system", "content": "You are a coding assistant."},
            {"role": "user", "content": "Refactor the parser module"},
        ],
        "temperature": 0.2,
    }


@pytest.fixture
def tool_turn_body():
    """A conversation whose last message is a tool result."""
    return {
        "messages": [
            {"role": "user", "content": "List the files"},
            {"role": "assistant", "content": "Calling ls"},
            {"role": "tool", "content": "main.py\nparser.py", "tool_call_id": "call_1"},
        ],
        "tools": [{"type": "function", "function": {"name": "ls"}}],
    }


@pytest.fixture
def completion_payload():
    """A non-streaming upstream chat completion."""
    return {
        "id": "gen-123",
        "object": "chat.completion",
        "model": "anthropic/claude-3.5-sonnet",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": "Here is the refactor."},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 12, "completion_tokens": 5, "total_tokens": 17},
    }
