"""Request context management for rpctrace."""

from __future__ import annotations

import contextvars
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

T = TypeVar("T")

# Context variable for request context isolation
_current_request_context: contextvars.ContextVar[RequestContext | None] = contextvars.ContextVar(
    "rpctrace_request_context", default=None
)


@dataclass
class RequestContext:
    """
    Local attachments that travel with the calls made from this context.

    The RPC transport sends these alongside each call's own attachments;
    trace propagation headers are written here by the interceptor.
    """

    attachments: dict[str, str] = field(default_factory=dict)

    def get_attachment(self, key: str) -> str | None:
        """Get an attachment."""
        return self.attachments.get(key)

    def set_attachment(self, key: str, value: str) -> None:
        """Set an attachment."""
        self.attachments[key] = value

    def set_attachments(self, attachments: Mapping[str, str]) -> None:
        """Set multiple attachments."""
        self.attachments.update(attachments)

    def remove_attachment(self, key: str) -> str | None:
        """Remove an attachment, returning its value if present."""
        return self.attachments.pop(key, None)

    def clear(self) -> None:
        """Clear all attachments."""
        self.attachments = {}

    def merge_into(self, outbound: Mapping[str, str]) -> dict[str, str]:
        """Attachments actually transmitted with a call: local entries win."""
        return {**outbound, **self.attachments}

    def clone(self) -> RequestContext:
        """Clone context for isolation."""
        return RequestContext(attachments=dict(self.attachments))


def get_request_context() -> RequestContext:
    """Get the request context of the current execution context, creating it if needed."""
    context = _current_request_context.get()
    if context is None:
        context = RequestContext()
        _current_request_context.set(context)
    return context


def set_request_context(context: RequestContext | None) -> contextvars.Token[RequestContext | None]:
    """Set the current request context. Returns token for reset."""
    return _current_request_context.set(context)


def reset_request_context(token: contextvars.Token[RequestContext | None]) -> None:
    """Reset the current request context using token."""
    _current_request_context.reset(token)


def with_request_context(callback: Callable[[RequestContext], T]) -> T:
    """
    Run a function with an isolated request context.

    Args:
        callback: Function to run with the isolated context

    Returns:
        The return value of the callback

    Example:
        def call_user_service():
            return with_request_context(lambda ctx: (
                ctx.set_attachment("tenant", "acme"),
                interceptor.invoke(request, stub.get_user),
            )[1])
    """
    context = get_request_context().clone()

    token = _current_request_context.set(context)
    try:
        return callback(context)
    finally:
        _current_request_context.reset(token)


async def with_request_context_async(callback: Callable[[RequestContext], Any]) -> Any:
    """
    Run an async function with an isolated request context.

    Args:
        callback: Async function to run with the isolated context

    Returns:
        The return value of the callback
    """
    context = get_request_context().clone()

    token = _current_request_context.set(context)
    try:
        return await callback(context)
    finally:
        _current_request_context.reset(token)
