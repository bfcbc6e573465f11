"""Request context management using contextvars.

Async-safe storage for request-scoped values that log records and
background work need without threading them through every call.

Usage:
    token = set_request_id("abc123")
    get_request_id()  # "abc123"
    reset_request_id(token)
"""

from contextvars import ContextVar, Token

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


def set_request_id(request_id: str) -> Token[str]:
    """Set the request id for the current task; returns a token for reset."""
    return _request_id.set(request_id)


def reset_request_id(token: Token[str]) -> None:
    _request_id.reset(token)


def get_request_id() -> str:
    """Return the current request id, or "-" outside a request."""
    return _request_id.get()
