"""Tracer API consumed by the rpctrace interceptor."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator

from rpctrace.tracing.span import Span


class ContextCarrier:
    """
    Tracer-native carrier filled while an exit span is created.

    Headers keep their insertion order; writing an existing key replaces
    its value in place.
    """

    def __init__(self) -> None:
        self._headers: dict[str, str] = {}

    def set(self, key: str, value: str) -> None:
        self._headers[key] = value

    def get(self, key: str) -> str | None:
        return self._headers.get(key)

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(list(self._headers.items()))

    def __len__(self) -> int:
        return len(self._headers)

    def __contains__(self, key: object) -> bool:
        return key in self._headers

    def __repr__(self) -> str:
        return f"ContextCarrier({self._headers!r})"


@dataclass(frozen=True)
class ContextSnapshot:
    """Captured "which span is active" token, resumable on another thread or task."""

    trace_id: str
    span_id: str
    native: Any = field(default=None, compare=False, repr=False)

    def is_valid(self) -> bool:
        return bool(self.trace_id) and bool(self.span_id)


class TracerBackend(ABC):
    """Abstract base class for the tracer dependency."""

    @abstractmethod
    def create_exit_span(self, operation_name: str, carrier: ContextCarrier, peer: str) -> Span:
        """Create and activate an exit span, filling ``carrier`` with its context."""
        pass

    @abstractmethod
    def active_span(self) -> Span | None:
        """Span active on the current execution context."""
        pass

    @abstractmethod
    def stop_span(self, span: Span) -> None:
        """End ``span`` and hand it to the backend. Stopping twice is a no-op."""
        pass

    @abstractmethod
    def capture(self, span: Span | None = None) -> ContextSnapshot:
        """Capture the active context, or the context of ``span``."""
        pass

    @abstractmethod
    def continued(self, snapshot: ContextSnapshot) -> None:
        """Resume a captured context on the current execution context."""
        pass

    @abstractmethod
    def deactivate(self, span: Span) -> None:
        """Stop ``span`` being active here without ending it."""
        pass
