"""OpenTelemetry-backed tracer for rpctrace.

Lets the interceptor run on top of an application's existing OpenTelemetry
setup: exit spans are ``SpanKind.CLIENT`` spans of the configured tracer
provider, and the carrier is whatever the text map propagator injects
(W3C ``traceparent``/``tracestate`` and ``baggage`` by default).
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from opentelemetry import context as otel_context
from opentelemetry import propagate
from opentelemetry import trace as otel_trace
from opentelemetry.propagators.textmap import TextMapPropagator
from opentelemetry.trace import Status, StatusCode

from rpctrace.tracing.base import ContextCarrier, ContextSnapshot, TracerBackend
from rpctrace.tracing.context import SpanContext
from rpctrace.tracing.span import Span, TagValue, describe
from rpctrace.types import Component, SpanLayer

logger = logging.getLogger(__name__)

PEER_ATTRIBUTE = "peer.address"
COMPONENT_ID_ATTRIBUTE = "rpctrace.component.id"
COMPONENT_NAME_ATTRIBUTE = "rpctrace.component.name"
LAYER_ATTRIBUTE = "rpctrace.layer"


def _hex_ids(span_context: otel_trace.SpanContext) -> tuple[str, str]:
    return (
        otel_trace.format_trace_id(span_context.trace_id),
        otel_trace.format_span_id(span_context.span_id),
    )


class OpenTelemetrySpan(Span):
    """Span wrapping an OpenTelemetry span."""

    def __init__(self, native: otel_trace.Span, name: str, parent_span_id: str | None = None) -> None:
        self.native = native
        self._name = name
        self._parent_span_id = parent_span_id
        self._trace_id, self._span_id = _hex_ids(native.get_span_context())
        self._ended = False

    @property
    def trace_id(self) -> str:
        return self._trace_id

    @property
    def span_id(self) -> str:
        return self._span_id

    @property
    def parent_span_id(self) -> str | None:
        return self._parent_span_id

    @property
    def name(self) -> str:
        return self._name

    def set_tag(self, key: str, value: TagValue) -> None:
        if self._ended:
            return
        self.native.set_attribute(key, value)

    def set_component(self, component: Component) -> None:
        if self._ended:
            return
        self.native.set_attributes(
            {
                COMPONENT_ID_ATTRIBUTE: component.id,
                COMPONENT_NAME_ATTRIBUTE: component.name,
            }
        )

    def set_layer(self, layer: SpanLayer) -> None:
        if self._ended:
            return
        self.native.set_attribute(LAYER_ATTRIBUTE, layer.value)

    def error_occurred(self) -> None:
        if self._ended:
            return
        self.native.set_status(Status(StatusCode.ERROR))

    def log(self, error: BaseException) -> None:
        if self._ended:
            return
        self.native.record_exception(error)
        self.native.set_status(Status(StatusCode.ERROR, str(error)))

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self.native.end()

    def is_recording(self) -> bool:
        return not self._ended and self.native.is_recording()

    def span_context(self) -> SpanContext:
        native_context = self.native.get_span_context()
        trace_state = native_context.trace_state.to_header() if native_context.trace_state else ""
        return SpanContext(
            trace_id=self._trace_id,
            span_id=self._span_id,
            trace_flags=int(native_context.trace_flags),
            trace_state=trace_state or None,
        )


class OpenTelemetryTracer(TracerBackend):
    """Tracer backed by an OpenTelemetry ``Tracer``."""

    def __init__(
        self,
        tracer: otel_trace.Tracer | None = None,
        propagator: TextMapPropagator | None = None,
    ) -> None:
        self.tracer = tracer or otel_trace.get_tracer("rpctrace")
        self.propagator = propagator

        self._lock = threading.Lock()
        self._spans: dict[str, OpenTelemetrySpan] = {}
        self._tokens: dict[str, list[Any]] = {}

    def create_exit_span(self, operation_name: str, carrier: ContextCarrier, peer: str) -> Span:
        parent_context = otel_trace.get_current_span().get_span_context()
        parent_span_id = _hex_ids(parent_context)[1] if parent_context.is_valid else None

        native = self.tracer.start_span(
            operation_name,
            kind=otel_trace.SpanKind.CLIENT,
            attributes={PEER_ATTRIBUTE: peer},
        )
        span = OpenTelemetrySpan(native, operation_name, parent_span_id=parent_span_id)

        context = otel_trace.set_span_in_context(native)
        token = otel_context.attach(context)

        headers: dict[str, str] = {}
        if self.propagator is not None:
            self.propagator.inject(headers, context=context)
        else:
            propagate.inject(headers, context=context)
        for key, value in headers.items():
            carrier.set(key, value)

        with self._lock:
            self._spans[span.span_id] = span
            self._tokens[span.span_id] = [token]

        return span

    def active_span(self) -> Span | None:
        native_context = otel_trace.get_current_span().get_span_context()
        if not native_context.is_valid:
            return None
        with self._lock:
            return self._spans.get(_hex_ids(native_context)[1])

    def stop_span(self, span: Span) -> None:
        with self._lock:
            registered = self._spans.pop(span.span_id, None)
        if registered is None:
            logger.debug("Ignoring stop of span that is not active: %s", describe(span))
            return

        registered.end()
        self._release(registered)

        with self._lock:
            self._tokens.pop(span.span_id, None)

    def capture(self, span: Span | None = None) -> ContextSnapshot:
        if isinstance(span, OpenTelemetrySpan):
            native = span.native
        else:
            native = otel_trace.get_current_span()

        native_context = native.get_span_context()
        if not native_context.is_valid:
            return ContextSnapshot(trace_id="", span_id="")

        trace_id, span_id = _hex_ids(native_context)
        return ContextSnapshot(
            trace_id=trace_id,
            span_id=span_id,
            native=otel_trace.set_span_in_context(native),
        )

    def continued(self, snapshot: ContextSnapshot) -> None:
        if not snapshot.is_valid():
            return

        context = snapshot.native
        if context is None:
            local = otel_trace.SpanContext(
                trace_id=int(snapshot.trace_id, 16),
                span_id=int(snapshot.span_id, 16),
                is_remote=False,
                trace_flags=otel_trace.TraceFlags(otel_trace.TraceFlags.SAMPLED),
            )
            context = otel_trace.set_span_in_context(otel_trace.NonRecordingSpan(local))

        token = otel_context.attach(context)
        with self._lock:
            tokens = self._tokens.get(snapshot.span_id)
            if tokens is not None:
                tokens.append(token)

    def deactivate(self, span: Span) -> None:
        if isinstance(span, OpenTelemetrySpan):
            self._release(span)

    def _release(self, span: OpenTelemetrySpan) -> None:
        """Detach the context that made ``span`` current, if it is current here."""
        current = otel_trace.get_current_span().get_span_context()
        if not current.is_valid or _hex_ids(current)[1] != span.span_id:
            return

        with self._lock:
            tokens = self._tokens.get(span.span_id)
            token = tokens.pop() if tokens else None

        if token is not None:
            otel_context.detach(token)
