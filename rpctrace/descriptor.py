"""Call descriptors for outbound RPC calls."""

from __future__ import annotations

import inspect
import typing
from collections.abc import MutableMapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from rpctrace.types import Endpoint


@dataclass(frozen=True)
class StaticCall:
    """A call whose signature is known when the stub is written."""

    type_name: str
    method_name: str
    arg_types: tuple[type | str, ...] = ()

    @classmethod
    def from_callable(cls, owner: type | str, func: Callable[..., Any]) -> StaticCall:
        """
        Describe ``func`` as a method of ``owner`` from its annotations.

        Parameters without an annotation are described as ``object``;
        ``self``/``cls`` and ``*args``/``**kwargs`` are skipped.

        Example:
            >>> class UserService:
            ...     def get_user(self, user_id: int) -> dict: ...
            >>> StaticCall.from_callable(UserService, UserService.get_user)
            StaticCall(type_name='UserService', method_name='get_user', arg_types=(<class 'int'>,))
        """
        try:
            hints = typing.get_type_hints(func)
        except (NameError, TypeError):
            hints = {}

        arg_types: list[type | str] = []
        for index, param in enumerate(inspect.signature(func).parameters.values()):
            if index == 0 and param.name in ("self", "cls"):
                continue
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            annotation = hints.get(param.name, param.annotation)
            if annotation is inspect.Parameter.empty:
                annotation = object
            arg_types.append(annotation)

        type_name = owner if isinstance(owner, str) else owner.__name__
        return cls(type_name=type_name, method_name=func.__name__, arg_types=tuple(arg_types))


@dataclass(frozen=True)
class DynamicCall:
    """A generic call: method name and argument type names are runtime values."""

    type_name: str
    method_name: str
    arg_type_names: Sequence[str] | None = None


CallDescriptor = Union[StaticCall, DynamicCall]


@dataclass
class RpcRequest:
    """One outbound call as seen by the interceptor."""

    descriptor: CallDescriptor
    endpoint: Endpoint
    attachments: MutableMapping[str, str] = field(default_factory=dict)
    is_async: bool = False
