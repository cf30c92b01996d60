"""Serializable polymorphism for pluggable rules.

Pagination rules, authorization providers and rate limiters are configured as
fields of an `Api`. Each concrete variant registers a `kind` so that a
connector configuration dumped to JSON validates back to the same variants.
"""

import sys
from typing import Any, Callable, TypeVar

from pydantic import BaseModel, GetCoreSchemaHandler, computed_field
from pydantic_core import core_schema

T = TypeVar("T")

CURRENT_MODULE_NAME = sys.modules[__name__].__name__


class _KindRegistry:
    def __init__(self):
        self._by_base: dict[type, dict[str, type]] = {}
        self._kind_of: dict[type, str] = {}

    def add_base(self, base: type) -> None:
        if not issubclass(base, Discriminated):
            raise ValueError(f"Class {base} is not a subclass of Discriminated")
        if base in self._by_base:
            raise ValueError(f"Class {base} is already registered")
        self._by_base[base] = {}

    def base_of(self, cls: type) -> type | None:
        for klass in cls.__mro__:
            if klass in self._by_base:
                return klass
        return None

    def add(self, owner: type, subclass: type, kind: str) -> None:
        if not issubclass(subclass, owner):
            raise ValueError(f"Class {subclass} is not a subclass of {owner}")

        base = self.base_of(owner)
        if base is None:
            raise ValueError(f"Class {owner} is not registered with @discriminated_base")

        kinds = self._by_base[base]
        if kind in kinds:
            raise ValueError(f"Kind {kind} is already registered for {base}")

        kinds[kind] = subclass
        self._kind_of[subclass] = kind

    def kind_of(self, cls: type) -> str | None:
        return self._kind_of.get(cls)

    def lookup(self, base: type, kind: str) -> type | None:
        return self._by_base.get(base, {}).get(kind)


_REGISTRY = _KindRegistry()


class Discriminated(BaseModel):
    @computed_field
    def kind(self) -> str | None:
        """The registered kind of this variant, or None if unregistered."""
        return _REGISTRY.kind_of(type(self))

    @classmethod
    def register(cls, kind: str) -> Callable[[type[T]], type[T]]:
        def decorator(subclass: type[T]) -> type[T]:
            _REGISTRY.add(cls, subclass, kind)
            return subclass

        return decorator

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        # Only the direct child of Discriminated dispatches on `kind`; concrete
        # variants validate with their own schema. Compared by name since this
        # also runs while `Discriminated` itself is being built.
        if not any(
            klass.__name__ == "Discriminated"
            and klass.__module__ == CURRENT_MODULE_NAME
            for klass in cls.__bases__
        ):
            return handler(source)

        base = cls

        def validate_variant(value: Any) -> Any:
            if isinstance(value, base):
                return value
            if not isinstance(value, dict):
                raise ValueError(f"Value {value} is not a dictionary")

            kind = value.get("kind")
            if kind is None:
                raise ValueError(f"Kind is not provided for class {base}")
            if not isinstance(kind, str):
                raise ValueError(f"Kind is expected to be a string, got {type(kind)}")

            variant = _REGISTRY.lookup(base, kind)
            if variant is None:
                raise ValueError(f"Kind {kind} is not registered for class {base}")

            return variant.model_validate(value)

        return core_schema.no_info_plain_validator_function(validate_variant)


def discriminated_base(cls: type[T]) -> type[T]:
    """Mark a class as the base of a family of registered variants.

    Examples
    --------
    >>> @discriminated_base
    ... class PaginationRule(Discriminated):
    ...     def is_terminal(self, page, cursor): ...
    """
    _REGISTRY.add_base(cls)
    return cls
