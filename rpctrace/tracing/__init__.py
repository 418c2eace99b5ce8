"""Tracing module for rpctrace."""

from rpctrace.tracing.base import ContextCarrier, ContextSnapshot, TracerBackend
from rpctrace.tracing.context import (
    TRACEPARENT_HEADER,
    TRACESTATE_HEADER,
    SpanContext,
    create_traceparent,
    generate_span_id,
    generate_trace_id,
    get_current_context,
    set_current_context,
)
from rpctrace.tracing.span import NoopSpan, Span, SpanImpl
from rpctrace.tracing.tracer import Tracer, get_active_span, get_tracer, set_tracer

__all__ = [
    # Context
    "TRACEPARENT_HEADER",
    "TRACESTATE_HEADER",
    "SpanContext",
    "create_traceparent",
    "generate_span_id",
    "generate_trace_id",
    "get_current_context",
    "set_current_context",
    # Tracer API
    "ContextCarrier",
    "ContextSnapshot",
    "TracerBackend",
    # Span
    "Span",
    "SpanImpl",
    "NoopSpan",
    # Tracer
    "Tracer",
    "get_tracer",
    "set_tracer",
    "get_active_span",
]
