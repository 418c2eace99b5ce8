"""Exit span lifecycle of one outbound call."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from enum import Enum
from typing import Any, Protocol

from rpctrace.naming import request_url
from rpctrace.tracing.base import ContextCarrier, ContextSnapshot, TracerBackend
from rpctrace.tracing.span import Span, describe
from rpctrace.types import COMPONENT_ID, Component, Endpoint, SpanLayer

logger = logging.getLogger(__name__)

URL_TAG = "url"


class PendingResult(Protocol):
    """Anything settled later that accepts completion callbacks.

    Satisfied by ``concurrent.futures.Future`` and ``asyncio.Future``.
    """

    def add_done_callback(self, fn: Any, /) -> Any: ...

    def cancelled(self) -> bool: ...

    def exception(self) -> BaseException | None: ...


class LifecycleState(str, Enum):
    """States of an exit span owned by one call."""

    CREATED = "created"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    RESUMED = "resumed"
    CLOSED = "closed"


class LifecycleError(RuntimeError):
    """Raised when a lifecycle operation is used out of order."""


def settled_error(future: PendingResult) -> BaseException | None:
    """Failure a settled future carries, cancellation included."""
    if future.cancelled():
        if isinstance(future, asyncio.Future):
            return asyncio.CancelledError()
        return concurrent.futures.CancelledError()
    return future.exception()


class SpanLifecycle:
    """
    Opens, tags and closes the exit span of exactly one call.

    The span moves ``CREATED -> ACTIVE`` on :meth:`open` and ends in
    ``CLOSED``. Asynchronous calls pass through ``SUSPENDED`` while the
    result is pending and ``RESUMED`` once the completion callback has
    re-established the captured context. Closing is idempotent: only the
    first close reaches the tracer.
    """

    def __init__(self, tracer: TracerBackend) -> None:
        self.tracer = tracer
        self.state = LifecycleState.CREATED
        self.carrier = ContextCarrier()
        self.snapshot: ContextSnapshot | None = None
        self._span: Span | None = None
        self._recorded_error: BaseException | None = None

    @property
    def span(self) -> Span | None:
        return self._span

    @property
    def error_recorded(self) -> bool:
        return self._recorded_error is not None

    def open(self, operation_name: str, endpoint: Endpoint, protocol: str) -> Span:
        """Create, activate and tag the exit span. Must be called once, before dispatch."""
        if self.state is not LifecycleState.CREATED:
            raise LifecycleError(f"Cannot open a span in state {self.state.value}")

        span = self.tracer.create_exit_span(operation_name, self.carrier, endpoint.address)
        span.set_tag(URL_TAG, request_url(endpoint, operation_name))
        span.set_component(Component(id=COMPONENT_ID, name=protocol))
        span.set_layer(SpanLayer.RPC_FRAMEWORK)

        self._span = span
        self.state = LifecycleState.ACTIVE
        logger.debug("Opened exit span %s", describe(span))
        return span

    def record_error(self, error: BaseException) -> None:
        """Mark the span errored and log ``error`` on it. Does not close the span."""
        span = self._require_span()
        if self.state is LifecycleState.CLOSED:
            logger.debug("Not recording %r on closed span %s", error, describe(span))
            return
        if error is self._recorded_error:
            return

        span.error_occurred()
        span.log(error)
        self._recorded_error = error

    def close_sync(self) -> None:
        """End the span right after a synchronous call returned or raised."""
        span = self._require_span()
        if self.state is LifecycleState.CLOSED:
            logger.debug("Span %s already closed", describe(span))
            return
        if self.state is LifecycleState.SUSPENDED:
            raise LifecycleError("Span is waiting for its asynchronous result")

        self._close(span)

    def close_async(self, future: PendingResult) -> None:
        """
        Defer closing the span until ``future`` settles.

        The active context is captured here, while still on the caller's
        execution context, and the span stops being active for the caller.
        The completion callback may run on any thread or task; it resumes
        the snapshot before recording a failure and closing the span.
        """
        span = self._require_span()
        if self.state is not LifecycleState.ACTIVE:
            raise LifecycleError(f"Cannot suspend a span in state {self.state.value}")

        self.snapshot = self.tracer.capture(span)
        self.tracer.deactivate(span)
        self.state = LifecycleState.SUSPENDED
        logger.debug("Suspended exit span %s until its result settles", describe(span))

        future.add_done_callback(self._on_settled)

    def _on_settled(self, future: PendingResult) -> None:
        span = self._require_span()
        if self.state is not LifecycleState.SUSPENDED:
            return

        if self.snapshot is not None:
            self.tracer.continued(self.snapshot)
        self.state = LifecycleState.RESUMED

        error = settled_error(future)
        if error is not None:
            self.record_error(error)

        self._close(span)

    def _close(self, span: Span) -> None:
        self.state = LifecycleState.CLOSED
        self.tracer.stop_span(span)
        logger.debug("Closed exit span %s", describe(span))

    def _require_span(self) -> Span:
        if self._span is None:
            raise LifecycleError("Span has not been opened")
        return self._span
