"""Logging integration for rpctrace."""

from __future__ import annotations

import logging

from rpctrace.tracing.tracer import get_tracer


class TraceContextFilter(logging.Filter):
    """
    Logging filter that stamps records with the active trace context.

    Adds ``trace_id`` and ``span_id`` attributes (``placeholder`` outside a
    span) so formatters can reference them. The ids come from the global
    tracer, so spans of any backend are seen, OpenTelemetry included.

    Usage:
        import logging
        from rpctrace.integrations.logging import TraceContextFilter

        handler = logging.StreamHandler()
        handler.addFilter(TraceContextFilter())
        handler.setFormatter(logging.Formatter("%(trace_id)s %(span_id)s %(message)s"))
        logging.getLogger().addHandler(handler)
    """

    def __init__(self, name: str = "", placeholder: str = "") -> None:
        super().__init__(name)
        self.placeholder = placeholder

    def filter(self, record: logging.LogRecord) -> bool:
        """Annotate a record; never drops it."""
        tracer = get_tracer()
        snapshot = tracer.capture() if tracer is not None else None
        if snapshot is not None and snapshot.is_valid():
            record.trace_id = snapshot.trace_id
            record.span_id = snapshot.span_id
        else:
            record.trace_id = self.placeholder
            record.span_id = self.placeholder
        return True
