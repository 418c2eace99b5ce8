"""Active span context and its W3C ``traceparent`` form."""

from __future__ import annotations

import contextvars
import secrets
from dataclasses import dataclass

TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"
TRACEPARENT_VERSION = "00"

TRACE_FLAG_NONE = 0x00
TRACE_FLAG_SAMPLED = 0x01


@dataclass(frozen=True)
class SpanContext:
    """Identity of a span as seen by the spans started under it."""

    trace_id: str
    span_id: str
    trace_flags: int = TRACE_FLAG_SAMPLED
    trace_state: str | None = None

    @property
    def sampled(self) -> bool:
        return bool(self.trace_flags & TRACE_FLAG_SAMPLED)


_current_context: contextvars.ContextVar[SpanContext | None] = contextvars.ContextVar(
    "rpctrace_span_context", default=None
)


def generate_trace_id() -> str:
    """16 random bytes, hex encoded."""
    return secrets.token_hex(16)


def generate_span_id() -> str:
    """8 random bytes, hex encoded."""
    return secrets.token_hex(8)


def create_traceparent(context: SpanContext) -> str:
    """
    Format ``context`` as a W3C traceparent value.

    Example:
        >>> create_traceparent(SpanContext("4bf92f3577b34da6a3ce929d0e0e4736", "00f067aa0ba902b7"))
        '00-4bf92f3577b34da6a3ce929d0e0e4736-00f067aa0ba902b7-01'
    """
    return "-".join(
        (TRACEPARENT_VERSION, context.trace_id, context.span_id, f"{context.trace_flags:02x}")
    )


def get_current_context() -> SpanContext | None:
    return _current_context.get()


def set_current_context(context: SpanContext | None) -> contextvars.Token[SpanContext | None]:
    """Make ``context`` the active one. Returns the token that undoes it."""
    return _current_context.set(context)


def reset_current_context(token: contextvars.Token[SpanContext | None]) -> None:
    _current_context.reset(token)
