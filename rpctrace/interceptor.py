"""Client-side RPC call interceptor."""

from __future__ import annotations

import contextvars
import logging
from types import TracebackType
from typing import Awaitable, Callable, TypeVar

from rpctrace.carrier import Carrier, CarrierCodec
from rpctrace.config import default_protocol
from rpctrace.descriptor import RpcRequest
from rpctrace.injector import inject
from rpctrace.lifecycle import LifecycleState, SpanLifecycle
from rpctrace.naming import operation_name
from rpctrace.request_context import (
    RequestContext,
    get_request_context,
    reset_request_context,
    set_request_context,
)
from rpctrace.tracing.base import TracerBackend
from rpctrace.tracing.span import Span
from rpctrace.tracing.tracer import get_tracer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CallScope:
    """
    Tracing hooks for exactly one outbound call.

    Call :meth:`before_call` right before dispatch, :meth:`on_exception` if
    the call raised, and :meth:`after_call` once it returned control. Can
    also be used as a context manager for synchronous calls.

    Between :meth:`before_call` and :meth:`after_call` the current request
    context is a copy holding this call's carrier items; the transport
    reads them with ``get_request_context().merge_into(request.attachments)``.
    The caller's own request context never sees them.
    """

    def __init__(
        self,
        request: RpcRequest,
        tracer: TracerBackend,
        protocol: str,
        codec: CarrierCodec,
        request_context: RequestContext,
    ) -> None:
        self.request = request
        self.protocol = protocol
        self.request_context = request_context
        self.lifecycle = SpanLifecycle(tracer)
        self.operation_name: str | None = None
        self.carrier = Carrier()
        self._codec = codec
        self._caller_context: RequestContext | None = None
        self._context_token: contextvars.Token[RequestContext | None] | None = None

    @property
    def span(self) -> Span | None:
        return self.lifecycle.span

    def before_call(self) -> Span:
        """Open the exit span and propagate its context with the call."""
        self.operation_name = operation_name(self.request.descriptor)
        span = self.lifecycle.open(self.operation_name, self.request.endpoint, self.protocol)
        self.carrier = self._codec.serialize(self.lifecycle.carrier)
        self._enter_call_context()
        inject(self.carrier, self.request.attachments, self.request_context.attachments)
        return span

    def after_call(self, result: T, is_async: bool | None = None) -> T:
        """
        Close the span now, or once ``result`` settles for asynchronous calls.

        ``is_async`` defaults to the request's flag. A call that already
        raised is closed immediately since no result will follow.
        """
        self._exit_call_context()
        if self.lifecycle.state is LifecycleState.CLOSED:
            return result

        deferred = self.request.is_async if is_async is None else is_async
        if deferred and not self.lifecycle.error_recorded:
            if hasattr(result, "add_done_callback"):
                self.lifecycle.close_async(result)  # type: ignore[arg-type]
                return result
            logger.warning(
                "Asynchronous call %s returned %s instead of a future; closing its span now",
                self.operation_name,
                type(result).__name__,
            )

        self.lifecycle.close_sync()
        return result

    def on_exception(self, error: BaseException) -> None:
        """Record a call failure on the span. The caller re-raises ``error``."""
        self.lifecycle.record_error(error)

    def discard(self) -> None:
        """Close a span left open by a failed :meth:`before_call`."""
        self._exit_call_context()
        if self.lifecycle.state is LifecycleState.ACTIVE:
            self.lifecycle.close_sync()

    def _enter_call_context(self) -> None:
        self._caller_context = self.request_context
        self.request_context = self.request_context.clone()
        self._context_token = set_request_context(self.request_context)

    def _exit_call_context(self) -> None:
        """Put the caller's request context back. Safe to call repeatedly."""
        token, self._context_token = self._context_token, None
        if token is None or self._caller_context is None:
            return

        call_context = self.request_context
        self.request_context = self._caller_context
        try:
            reset_request_context(token)
        except ValueError:
            # Token belongs to another execution context; make sure the
            # copy left there no longer carries this call's headers.
            logger.debug("Request context of %s exited on another context", self.operation_name)
            for item in self.carrier:
                if call_context.get_attachment(item.key) == item.value:
                    call_context.remove_attachment(item.key)

    def __enter__(self) -> CallScope:
        self.before_call()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._exit_call_context()
        if self.lifecycle.state is not LifecycleState.ACTIVE:
            return
        if exc_val is not None:
            self.on_exception(exc_val)
        self.lifecycle.close_sync()


class ConsumerInterceptor:
    """
    Instruments outbound RPC calls with exit spans.

    The trace headers are not left in ``request.attachments``; ``call``
    must send the merged view of the current request context.

    Usage:
        def send(request):
            headers = get_request_context().merge_into(request.attachments)
            return transport.send(request.descriptor, request.endpoint, headers)

        interceptor = ConsumerInterceptor(tracer=Tracer(service_id="orders"))
        request = RpcRequest(
            descriptor=StaticCall("UserService", "getUser", (int,)),
            endpoint=parse_endpoint("custom://10.0.0.1:20880"),
        )
        user = interceptor.invoke(request, send)
    """

    def __init__(
        self,
        tracer: TracerBackend | None = None,
        protocol: str | None = None,
        codec: CarrierCodec | None = None,
    ) -> None:
        self._tracer = tracer
        self._protocol = protocol
        self._protocol_resolved = protocol is not None
        self.codec = codec or CarrierCodec()

    @property
    def tracer(self) -> TracerBackend | None:
        """The tracer given at construction, else the global one."""
        return self._tracer or get_tracer()

    def get_protocol(self, request: RpcRequest) -> str:
        """Protocol name for the component tag, falling back to the endpoint's."""
        if not self._protocol_resolved:
            self._protocol = default_protocol()
            self._protocol_resolved = True
        return self._protocol or request.endpoint.protocol

    def intercept(self, request: RpcRequest) -> CallScope:
        """Create the call-scoped hooks for ``request``."""
        tracer = self.tracer
        if tracer is None:
            raise RuntimeError("No tracer configured; call rpctrace.init() or pass a tracer")
        return CallScope(
            request=request,
            tracer=tracer,
            protocol=self.get_protocol(request),
            codec=self.codec,
            request_context=get_request_context(),
        )

    def invoke(self, request: RpcRequest, call: Callable[[RpcRequest], T]) -> T:
        """
        Run ``call(request)`` inside an exit span.

        The result, or any exception, reaches the caller unchanged. When
        ``request.is_async`` is set the call must return a future; its span
        closes once the future settles.
        """
        scope = self._open_scope(request)
        if scope is None:
            return call(request)

        try:
            result = call(request)
        except BaseException as e:
            scope.on_exception(e)
            scope.after_call(None)
            raise
        return scope.after_call(result)

    async def ainvoke(self, request: RpcRequest, call: Callable[[RpcRequest], Awaitable[T]]) -> T:
        """Await ``call(request)`` inside an exit span closed when the await finishes."""
        scope = self._open_scope(request)
        if scope is None:
            return await call(request)

        try:
            result = await call(request)
        except BaseException as e:
            scope.on_exception(e)
            scope.after_call(None, is_async=False)
            raise
        return scope.after_call(result, is_async=False)

    def _open_scope(self, request: RpcRequest) -> CallScope | None:
        """Run the before-call hook; a tracing failure leaves the call untraced."""
        if self.tracer is None:
            logger.debug("No tracer configured; calling %s untraced", request.descriptor)
            return None

        scope = self.intercept(request)
        try:
            scope.before_call()
        except Exception:
            logger.exception("Failed to trace call to %s; calling untraced", request.endpoint.address)
            scope.discard()
            return None
        return scope

