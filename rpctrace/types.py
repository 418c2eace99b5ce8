"""Type definitions for rpctrace."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

COMPONENT_ID = 2000


class SpanKind(str, Enum):
    """Span kinds for tracing."""

    INTERNAL = "internal"
    CLIENT = "client"


class SpanStatusCode(str, Enum):
    """Span status codes."""

    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


class SpanLayer(str, Enum):
    """Layer a span belongs to, used by the backend for rendering."""

    UNKNOWN = "unknown"
    RPC_FRAMEWORK = "rpc_framework"


@dataclass(frozen=True)
class Endpoint:
    """Routing target of one outbound call."""

    protocol: str
    host: str
    port: int

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Component:
    """Component identifier attached to a span."""

    id: int
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class CarrierItem:
    """One unit of propagated trace state."""

    key: str
    value: str


@dataclass
class SpanStatus:
    """Span status."""

    code: SpanStatusCode = SpanStatusCode.UNSET
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"code": self.code.value}
        if self.message:
            result["message"] = self.message
        return result


@dataclass
class SpanLog:
    """A structured log entry recorded on a span."""

    timestamp_ns: int
    fields: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp_ns": self.timestamp_ns,
            "fields": self.fields,
        }


@dataclass
class TelemetrySpan:
    """A finished span as handed to the reporter."""

    trace_id: str
    span_id: str
    service_id: str
    operation_name: str
    span_kind: SpanKind
    start_time_ns: int
    duration_ns: int
    status: SpanStatus
    tags: dict[str, str | int | float | bool]
    logs: list[SpanLog]
    peer: str | None = None
    component: Component | None = None
    layer: SpanLayer = SpanLayer.UNKNOWN
    error_occurred: bool = False
    parent_span_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "service_id": self.service_id,
            "operation_name": self.operation_name,
            "span_kind": self.span_kind.value,
            "start_time_ns": self.start_time_ns,
            "duration_ns": self.duration_ns,
            "status": self.status.to_dict(),
            "tags": self.tags,
            "logs": [entry.to_dict() for entry in self.logs],
            "layer": self.layer.value,
            "error_occurred": self.error_occurred,
        }
        if self.peer:
            result["peer"] = self.peer
        if self.component:
            result["component"] = self.component.to_dict()
        if self.parent_span_id:
            result["parent_span_id"] = self.parent_span_id
        return result


@dataclass
class RpcTraceOptions:
    """Configuration options for rpctrace."""

    service_id: str = ""
    protocol: str | None = None
    sample_rate: float = 1.0
    debug: bool = False
    max_finished_spans: int = 1000
    reporter: Callable[[TelemetrySpan], None] | None = None
