"""Carrier of trace context transmitted alongside a remote call."""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from rpctrace.tracing.base import ContextCarrier
from rpctrace.types import CarrierItem


class Carrier:
    """Ordered, read-only sequence of carrier items."""

    def __init__(self, items: tuple[CarrierItem, ...] = ()) -> None:
        self._items = items

    @classmethod
    def from_mapping(cls, headers: Mapping[str, str]) -> Carrier:
        """Build a carrier from a header mapping, keeping its order."""
        return cls(tuple(CarrierItem(key=key, value=value) for key, value in headers.items()))

    def to_dict(self) -> dict[str, str]:
        return {item.key: item.value for item in self._items}

    def keys(self) -> list[str]:
        return [item.key for item in self._items]

    def __iter__(self) -> Iterator[CarrierItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Carrier):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"Carrier({list(self._items)!r})"


class CarrierCodec:
    """Adapts the tracer's native carrier into RPC metadata items."""

    def serialize(self, context_carrier: ContextCarrier) -> Carrier:
        """Copy every header of ``context_carrier``, in order, into a Carrier."""
        return Carrier(
            tuple(CarrierItem(key=key, value=value) for key, value in context_carrier.items())
        )
