"""
rpctrace for Python

Distributed tracing for outbound RPC calls.

Usage:
    import rpctrace
    from rpctrace import RpcRequest, StaticCall, get_request_context, parse_endpoint

    # Initialize with a service name and the RPC protocol in use
    rpctrace.init(service_id="orders", protocol="custom")

    # The transport sends the call's attachments merged with the request
    # context, which holds the trace headers while the call is dispatched
    def send(request):
        headers = get_request_context().merge_into(request.attachments)
        return transport.send(request.descriptor, request.endpoint, headers)

    # Trace a call: an exit span is opened, its context is propagated, and
    # the span closes when the call completes
    request = RpcRequest(
        descriptor=StaticCall("UserService", "getUser", (int,)),
        endpoint=parse_endpoint("custom://10.0.0.1:20880"),
    )
    user = rpctrace.trace_call(request, send)

    # Asynchronous calls returning a future close their span on settlement
    request.is_async = True
    future = rpctrace.trace_call(request, send_async)
"""

from rpctrace.carrier import Carrier, CarrierCodec
from rpctrace.client import (
    atrace_call,
    close,
    get_client,
    get_interceptor,
    init,
    trace_call,
)
from rpctrace.config import is_valid_endpoint, parse_endpoint
from rpctrace.descriptor import CallDescriptor, DynamicCall, RpcRequest, StaticCall
from rpctrace.injector import inject
from rpctrace.interceptor import CallScope, ConsumerInterceptor
from rpctrace.lifecycle import LifecycleError, LifecycleState, SpanLifecycle
from rpctrace.naming import operation_name, request_url
from rpctrace.request_context import RequestContext, get_request_context, with_request_context
from rpctrace.tracing import Tracer, get_active_span
from rpctrace.types import (
    COMPONENT_ID,
    CarrierItem,
    Component,
    Endpoint,
    RpcTraceOptions,
    SpanLayer,
    TelemetrySpan,
)

__version__ = "0.1.0"
__all__ = [
    # Core
    "init",
    "close",
    "get_client",
    "get_interceptor",
    "trace_call",
    "atrace_call",
    # Interceptor
    "ConsumerInterceptor",
    "CallScope",
    "SpanLifecycle",
    "LifecycleState",
    "LifecycleError",
    # Calls
    "CallDescriptor",
    "StaticCall",
    "DynamicCall",
    "RpcRequest",
    "operation_name",
    "request_url",
    # Propagation
    "Carrier",
    "CarrierCodec",
    "inject",
    "RequestContext",
    "get_request_context",
    "with_request_context",
    # Tracing
    "Tracer",
    "get_active_span",
    # Config
    "parse_endpoint",
    "is_valid_endpoint",
    # Types
    "COMPONENT_ID",
    "CarrierItem",
    "Component",
    "Endpoint",
    "RpcTraceOptions",
    "SpanLayer",
    "TelemetrySpan",
]
