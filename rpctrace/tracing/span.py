"""Span implementation for rpctrace."""

from __future__ import annotations

import time
import traceback
from abc import ABC, abstractmethod
from typing import Any

from rpctrace.tracing.context import (
    TRACE_FLAG_NONE,
    TRACE_FLAG_SAMPLED,
    SpanContext,
    generate_span_id,
    generate_trace_id,
)
from rpctrace.types import (
    Component,
    SpanKind,
    SpanLayer,
    SpanLog,
    SpanStatus,
    SpanStatusCode,
    TelemetrySpan,
)

TagValue = str | int | float | bool


class Span(ABC):
    """Abstract base class for spans."""

    @property
    @abstractmethod
    def trace_id(self) -> str:
        """Get trace ID."""
        pass

    @property
    @abstractmethod
    def span_id(self) -> str:
        """Get span ID."""
        pass

    @property
    @abstractmethod
    def parent_span_id(self) -> str | None:
        """Get parent span ID."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Get span name (the operation name)."""
        pass

    @abstractmethod
    def set_tag(self, key: str, value: TagValue) -> None:
        """Set a single tag."""
        pass

    @abstractmethod
    def set_component(self, component: Component) -> None:
        """Set the component that produced this span."""
        pass

    @abstractmethod
    def set_layer(self, layer: SpanLayer) -> None:
        """Set the span layer."""
        pass

    @abstractmethod
    def error_occurred(self) -> None:
        """Mark the span as errored."""
        pass

    @abstractmethod
    def log(self, error: BaseException) -> None:
        """Append a structured log entry describing ``error``."""
        pass

    @abstractmethod
    def end(self) -> None:
        """End the span."""
        pass

    @abstractmethod
    def is_recording(self) -> bool:
        """Check if span is still recording."""
        pass

    @abstractmethod
    def span_context(self) -> SpanContext:
        """Get span context for propagation."""
        pass


def error_log_fields(error: BaseException) -> dict[str, str]:
    """Build the structured log fields for an exception."""
    return {
        "event": "error",
        "error.kind": type(error).__name__,
        "message": str(error),
        "stack": "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ),
    }


class SpanImpl(Span):
    """Span implementation."""

    def __init__(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        trace_id: str | None = None,
        parent_span_id: str | None = None,
        trace_flags: int = TRACE_FLAG_SAMPLED,
        trace_state: str | None = None,
        peer: str | None = None,
    ) -> None:
        self._name = name
        self._kind = kind
        self._trace_id = trace_id or generate_trace_id()
        self._span_id = generate_span_id()
        self._parent_span_id = parent_span_id
        self._trace_flags = trace_flags
        self._trace_state = trace_state
        self._peer = peer
        self._start_time_ns = time.time_ns()
        self._end_time_ns: int | None = None
        self._status = SpanStatus()
        self._tags: dict[str, TagValue] = {}
        self._logs: list[SpanLog] = []
        self._component: Component | None = None
        self._layer = SpanLayer.UNKNOWN
        self._error_occurred = False
        self._recording = True

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

    @property
    def kind(self) -> SpanKind:
        return self._kind

    @property
    def peer(self) -> str | None:
        return self._peer

    @property
    def start_time_ns(self) -> int:
        return self._start_time_ns

    @property
    def duration_ns(self) -> int:
        if self._end_time_ns is None:
            return 0
        return self._end_time_ns - self._start_time_ns

    @property
    def status(self) -> SpanStatus:
        return self._status

    @property
    def tags(self) -> dict[str, TagValue]:
        return dict(self._tags)

    @property
    def logs(self) -> list[SpanLog]:
        return list(self._logs)

    @property
    def component(self) -> Component | None:
        return self._component

    @property
    def layer(self) -> SpanLayer:
        return self._layer

    @property
    def is_error(self) -> bool:
        return self._error_occurred

    def set_tag(self, key: str, value: TagValue) -> None:
        if not self._recording:
            return
        self._tags[key] = value

    def set_component(self, component: Component) -> None:
        if not self._recording:
            return
        self._component = component

    def set_layer(self, layer: SpanLayer) -> None:
        if not self._recording:
            return
        self._layer = layer

    def error_occurred(self) -> None:
        if not self._recording:
            return
        self._error_occurred = True
        self._status = SpanStatus(code=SpanStatusCode.ERROR, message=self._status.message)

    def log(self, error: BaseException) -> None:
        if not self._recording:
            return
        self._logs.append(SpanLog(timestamp_ns=time.time_ns(), fields=error_log_fields(error)))
        if self._status.code == SpanStatusCode.ERROR and self._status.message is None:
            self._status = SpanStatus(code=SpanStatusCode.ERROR, message=str(error))

    def end(self) -> None:
        if not self._recording:
            return
        self._end_time_ns = time.time_ns()
        self._recording = False

    def is_recording(self) -> bool:
        return self._recording

    def span_context(self) -> SpanContext:
        return SpanContext(
            trace_id=self._trace_id,
            span_id=self._span_id,
            trace_flags=self._trace_flags,
            trace_state=self._trace_state,
        )

    def to_telemetry_span(self, service_id: str) -> TelemetrySpan:
        """Convert to TelemetrySpan format for the reporter."""
        return TelemetrySpan(
            trace_id=self._trace_id,
            span_id=self._span_id,
            parent_span_id=self._parent_span_id,
            service_id=service_id,
            operation_name=self._name,
            span_kind=self._kind,
            start_time_ns=self._start_time_ns,
            duration_ns=self.duration_ns,
            status=self._status,
            tags=dict(self._tags),
            logs=list(self._logs),
            peer=self._peer,
            component=self._component,
            layer=self._layer,
            error_occurred=self._error_occurred,
        )


class NoopSpan(Span):
    """No-op span for when sampling decides not to record."""

    def __init__(self, context: SpanContext | None = None, name: str = "noop") -> None:
        self._trace_id = context.trace_id if context else generate_trace_id()
        self._span_id = generate_span_id()
        self._parent_span_id = context.span_id if context else None
        self._name = name

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
        pass

    def set_component(self, component: Component) -> None:
        pass

    def set_layer(self, layer: SpanLayer) -> None:
        pass

    def error_occurred(self) -> None:
        pass

    def log(self, error: BaseException) -> None:
        pass

    def end(self) -> None:
        pass

    def is_recording(self) -> bool:
        return False

    def span_context(self) -> SpanContext:
        return SpanContext(
            trace_id=self._trace_id,
            span_id=self._span_id,
            trace_flags=TRACE_FLAG_NONE,
        )

    def __repr__(self) -> str:
        return f"NoopSpan(name={self._name!r})"


def describe(span: Any) -> str:
    """Short human-readable form of a span for log messages."""
    if isinstance(span, Span):
        return f"{span.name} [{span.trace_id}/{span.span_id}]"
    return repr(span)
