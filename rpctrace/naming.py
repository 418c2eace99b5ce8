"""Operation names and request URLs for traced calls."""

from __future__ import annotations

from rpctrace.descriptor import CallDescriptor, DynamicCall, StaticCall
from rpctrace.types import Endpoint


def simple_type_name(arg_type: object) -> str:
    """Unqualified name of a type or of a dotted type-name string."""
    if isinstance(arg_type, str):
        return arg_type.rsplit(".", 1)[-1]
    name = getattr(arg_type, "__name__", None)
    if isinstance(name, str):
        return name
    return str(arg_type).rsplit(".", 1)[-1]


def operation_name(descriptor: CallDescriptor) -> str:
    """
    Derive the span operation name of a call.

    Static calls always carry a parenthesized argument list, e.g.
    ``UserService.getUser(Long)`` or ``Foo.bar()``. Dynamic calls drop the
    list entirely when no argument types were supplied, e.g. ``Foo.echo``.
    """
    if isinstance(descriptor, StaticCall):
        args = ",".join(simple_type_name(arg) for arg in descriptor.arg_types)
        return f"{descriptor.type_name}.{descriptor.method_name}({args})"

    if isinstance(descriptor, DynamicCall):
        name = f"{descriptor.type_name}.{descriptor.method_name}"
        if descriptor.arg_type_names:
            args = ",".join(simple_type_name(arg) for arg in descriptor.arg_type_names)
            name += f"({args})"
        return name

    raise TypeError(f"Unsupported call descriptor: {type(descriptor).__name__}")


def request_url(endpoint: Endpoint, operation: str) -> str:
    """Format the request URL tag, e.g. ``custom://10.0.0.1:20880/Foo.bar()``."""
    return f"{endpoint.protocol}://{endpoint.host}:{endpoint.port}/{operation}"
