"""Global rpctrace client."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from rpctrace.config import default_protocol
from rpctrace.descriptor import RpcRequest
from rpctrace.interceptor import ConsumerInterceptor
from rpctrace.tracing.base import TracerBackend
from rpctrace.tracing.tracer import Tracer, set_tracer
from rpctrace.types import RpcTraceOptions, TelemetrySpan

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Global client instance
_client: RpcTraceClient | None = None


class RpcTraceClient:
    """Owns the tracer and the interceptor configured by :func:`init`."""

    def __init__(self, options: RpcTraceOptions, tracer: TracerBackend | None = None) -> None:
        self.options = options

        if tracer is None:
            tracer = Tracer(
                service_id=options.service_id,
                sample_rate=options.sample_rate,
                max_finished_spans=options.max_finished_spans,
                reporter=options.reporter,
            )
        self.tracer = tracer
        set_tracer(self.tracer)

        self.interceptor = ConsumerInterceptor(
            tracer=self.tracer,
            protocol=options.protocol or default_protocol(),
        )

        if options.debug:
            logging.getLogger("rpctrace").setLevel(logging.DEBUG)

        logger.debug(
            "Client created for service %r (protocol=%s, sample_rate=%s)",
            options.service_id,
            options.protocol,
            options.sample_rate,
        )

    def close(self) -> None:
        """Close the client."""
        if isinstance(self.tracer, Tracer):
            self.tracer.close()
        set_tracer(None)
        logger.debug("Client closed")


def init(
    service_id: str = "",
    protocol: str | None = None,
    sample_rate: float = 1.0,
    debug: bool = False,
    max_finished_spans: int = 1000,
    reporter: Callable[[TelemetrySpan], None] | None = None,
    tracer: TracerBackend | None = None,
) -> RpcTraceClient:
    """
    Initialize rpctrace.

    Pass ``tracer`` to trace through another backend, e.g.
    :class:`rpctrace.tracing.otel.OpenTelemetryTracer`; otherwise an
    in-process :class:`~rpctrace.tracing.tracer.Tracer` is created.
    """
    global _client

    if _client:
        _client.close()

    options = RpcTraceOptions(
        service_id=service_id,
        protocol=protocol,
        sample_rate=sample_rate,
        debug=debug,
        max_finished_spans=max_finished_spans,
        reporter=reporter,
    )

    _client = RpcTraceClient(options, tracer=tracer)
    return _client


def get_client() -> RpcTraceClient | None:
    """Get the current client."""
    return _client


def get_interceptor() -> ConsumerInterceptor | None:
    """Get the interceptor of the current client."""
    if not _client:
        return None
    return _client.interceptor


def trace_call(request: RpcRequest, call: Callable[[RpcRequest], T]) -> T:
    """Run ``call(request)`` through the global interceptor, untraced if not initialized."""
    if not _client:
        return call(request)
    return _client.interceptor.invoke(request, call)


async def atrace_call(request: RpcRequest, call: Callable[[RpcRequest], Awaitable[Any]]) -> Any:
    """Await ``call(request)`` through the global interceptor, untraced if not initialized."""
    if not _client:
        return await call(request)
    return await _client.interceptor.ainvoke(request, call)


def close() -> None:
    """Close rpctrace."""
    global _client
    if not _client:
        return
    client = _client
    _client = None
    client.close()
