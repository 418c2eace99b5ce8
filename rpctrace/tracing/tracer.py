"""In-process tracer for rpctrace."""

from __future__ import annotations

import contextvars
import logging
import random
import threading
from collections import deque
from typing import Callable

from rpctrace.tracing.base import ContextCarrier, ContextSnapshot, TracerBackend
from rpctrace.tracing.context import (
    TRACE_FLAG_SAMPLED,
    TRACEPARENT_HEADER,
    TRACESTATE_HEADER,
    SpanContext,
    create_traceparent,
    get_current_context,
    reset_current_context,
    set_current_context,
)
from rpctrace.tracing.span import NoopSpan, Span, SpanImpl, describe
from rpctrace.types import SpanKind, TelemetrySpan

logger = logging.getLogger(__name__)

_Token = contextvars.Token[SpanContext | None]

# Global tracer instance
_tracer: TracerBackend | None = None


class Tracer(TracerBackend):
    """Tracer manages span creation and context propagation within one process."""

    def __init__(
        self,
        service_id: str = "",
        sample_rate: float = 1.0,
        max_finished_spans: int = 1000,
        reporter: Callable[[TelemetrySpan], None] | None = None,
    ) -> None:
        self.service_id = service_id
        self.sample_rate = sample_rate
        self.reporter = reporter

        self._lock = threading.Lock()
        self._active_spans: dict[str, Span] = {}
        self._parent_contexts: dict[str, SpanContext | None] = {}
        self._tokens: dict[str, list[_Token]] = {}
        self._finished_spans: deque[TelemetrySpan] = deque(maxlen=max(1, max_finished_spans))

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        parent_context: SpanContext | None = None,
        peer: str | None = None,
    ) -> Span:
        """Start a new span and make it the active one."""
        parent = parent_context or get_current_context()

        span: Span
        if self._should_sample(parent):
            span = SpanImpl(
                name=name,
                kind=kind,
                trace_id=parent.trace_id if parent else None,
                parent_span_id=parent.span_id if parent else None,
                trace_flags=TRACE_FLAG_SAMPLED,
                trace_state=parent.trace_state if parent else None,
                peer=peer,
            )
        else:
            span = NoopSpan(parent, name=name)

        token = set_current_context(span.span_context())
        with self._lock:
            self._active_spans[span.span_id] = span
            self._parent_contexts[span.span_id] = parent
            self._tokens[span.span_id] = [token]

        return span

    def create_exit_span(self, operation_name: str, carrier: ContextCarrier, peer: str) -> Span:
        span = self.start_span(operation_name, kind=SpanKind.CLIENT, peer=peer)

        context = span.span_context()
        carrier.set(TRACEPARENT_HEADER, create_traceparent(context))
        if context.trace_state:
            carrier.set(TRACESTATE_HEADER, context.trace_state)

        return span

    def active_span(self) -> Span | None:
        context = get_current_context()
        if not context:
            return None
        with self._lock:
            return self._active_spans.get(context.span_id)

    def stop_span(self, span: Span) -> None:
        with self._lock:
            registered = self._active_spans.pop(span.span_id, None)
        if registered is None:
            logger.debug("Ignoring stop of span that is not active: %s", describe(span))
            return

        span.end()
        self._release(span)

        with self._lock:
            self._parent_contexts.pop(span.span_id, None)
            self._tokens.pop(span.span_id, None)

        if isinstance(span, SpanImpl):
            self._on_span_finished(span.to_telemetry_span(self.service_id))

    def capture(self, span: Span | None = None) -> ContextSnapshot:
        context = span.span_context() if span is not None else get_current_context()
        if context is None:
            return ContextSnapshot(trace_id="", span_id="")
        return ContextSnapshot(trace_id=context.trace_id, span_id=context.span_id, native=context)

    def continued(self, snapshot: ContextSnapshot) -> None:
        if not snapshot.is_valid():
            return
        context = snapshot.native or SpanContext(
            trace_id=snapshot.trace_id, span_id=snapshot.span_id
        )
        token = set_current_context(context)
        with self._lock:
            tokens = self._tokens.get(snapshot.span_id)
            if tokens is not None:
                tokens.append(token)

    def deactivate(self, span: Span) -> None:
        self._release(span)

    def finished_spans(self) -> list[TelemetrySpan]:
        """Finished spans still held in memory, oldest first."""
        with self._lock:
            return list(self._finished_spans)

    def clear(self) -> None:
        """Drop every finished span held in memory."""
        with self._lock:
            self._finished_spans.clear()

    def close(self) -> None:
        """Close the tracer."""
        with self._lock:
            if self._active_spans:
                logger.warning("Closing tracer with %d span(s) still open", len(self._active_spans))
            self._active_spans.clear()
            self._parent_contexts.clear()
            self._tokens.clear()

    def _release(self, span: Span) -> None:
        """Restore whatever was active before ``span`` on this execution context."""
        current = get_current_context()
        if current is None or current.span_id != span.span_id:
            return

        with self._lock:
            tokens = self._tokens.get(span.span_id)
            token = tokens.pop() if tokens else None
            parent = self._parent_contexts.get(span.span_id)

        if token is not None:
            try:
                reset_current_context(token)
                return
            except ValueError:
                # Token belongs to another execution context.
                pass
        set_current_context(parent)

    def _on_span_finished(self, telemetry_span: TelemetrySpan) -> None:
        with self._lock:
            self._finished_spans.append(telemetry_span)

        if self.reporter is None:
            return
        try:
            self.reporter(telemetry_span)
        except Exception:
            logger.exception("Span reporter failed for %s", telemetry_span.operation_name)

    def _should_sample(self, parent: SpanContext | None) -> bool:
        """Check if this span should be sampled."""
        if self.sample_rate >= 1:
            return True
        if self.sample_rate <= 0:
            return False

        # Follow the parent's decision when there is one
        if parent is not None:
            return parent.sampled

        return random.random() < self.sample_rate


def set_tracer(tracer: TracerBackend | None) -> None:
    """Set the global tracer instance."""
    global _tracer
    _tracer = tracer


def get_tracer() -> TracerBackend | None:
    """Get the global tracer instance."""
    return _tracer


def get_active_span() -> Span | None:
    """Get the currently active span."""
    tracer = get_tracer()
    if not tracer:
        return None
    return tracer.active_span()
