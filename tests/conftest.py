"""Shared fixtures for the rpctrace tests."""

from collections.abc import Callable, Mapping

import pytest

from rpctrace.tracing.context import TRACEPARENT_HEADER, TRACESTATE_HEADER, SpanContext


def _read_traceparent(headers: Mapping[str, str]) -> SpanContext | None:
    value = headers.get(TRACEPARENT_HEADER)
    if not value:
        return None
    version, trace_id, span_id, flags = value.split("-")
    assert version == "00"
    assert len(trace_id) == 32 and len(span_id) == 16
    return SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        trace_flags=int(flags, 16),
        trace_state=headers.get(TRACESTATE_HEADER),
    )


@pytest.fixture
def read_traceparent() -> Callable[[Mapping[str, str]], SpanContext | None]:
    """Decode the span context a call transmitted in its attachments."""
    return _read_traceparent
