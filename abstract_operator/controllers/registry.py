"""Explicit registry of operator implementations.

Operators are registered by calling :meth:`OperatorRegistry.register` (or
decorating the class with :meth:`OperatorRegistry.operator`) before the
runtime starts. Nothing is discovered implicitly.
"""

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from abstract_operator.controllers.context import OperatorContext
from abstract_operator.controllers.operator import Operator
from abstract_operator.models.crds import OperatorDescriptor

OperatorFactory = Callable[[OperatorDescriptor, OperatorContext], Operator[Any]]


@dataclass(frozen=True)
class Registration:
    """A descriptor and the factory building its operators."""

    descriptor: OperatorDescriptor
    factory: OperatorFactory

    def create(self, context: OperatorContext) -> Operator[Any]:
        return self.factory(self.descriptor, context)


class OperatorRegistry:
    """Maps operator kinds to the factories constructing them."""

    def __init__(self) -> None:
        self._registrations: list[Registration] = []

    def register(self, descriptor: OperatorDescriptor, factory: OperatorFactory) -> None:
        """Register an operator.

        Args:
            descriptor: The operator's static configuration.
            factory: Callable building the operator, usually the operator class.

        Raises:
            ValueError: If an operator for the same kind is already registered.
        """
        kind = descriptor.kind
        if kind and any(r.descriptor.kind == kind for r in self._registrations):
            raise ValueError(f"An operator for kind {kind} is already registered")
        self._registrations.append(Registration(descriptor, factory))

    def operator(self, **fields: Any) -> Callable[[type[Operator[Any]]], type[Operator[Any]]]:
        """Class decorator registering an operator with the given descriptor fields."""

        def decorator(cls: type[Operator[Any]]) -> type[Operator[Any]]:
            self.register(OperatorDescriptor(**fields), cls)
            return cls

        return decorator

    def get(self, kind: str) -> Registration | None:
        for registration in self._registrations:
            if registration.descriptor.kind == kind:
                return registration
        return None

    def __iter__(self) -> Iterator[Registration]:
        return iter(list(self._registrations))

    def __len__(self) -> int:
        return len(self._registrations)


# Default registry used by the host process
registry = OperatorRegistry()
