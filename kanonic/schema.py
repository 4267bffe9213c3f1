"""
Schema adapter over pydantic.

Any type pydantic can validate (a `BaseModel` subclass, `list[Model]`, a
`TypedDict`, `int`, ...) can be used as an endpoint schema. The pipeline only
relies on `Schema.validate()`, which never raises for invalid data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Validation(Generic[T]):
    """Outcome of `Schema.validate()`: either `data` or `issues` is meaningful."""

    success: bool
    data: T | None = None
    issues: list[Any] = field(default_factory=list)


class Schema(Generic[T]):
    """A validatable type wrapped in a cached `TypeAdapter`."""

    __slots__ = ("type", "_adapter")

    def __init__(self, tp: Any) -> None:
        self.type = tp
        self._adapter: TypeAdapter[T] = TypeAdapter(tp)

    def validate(self, value: Any) -> Validation[T]:
        try:
            data = self._adapter.validate_python(value)
        except ValidationError as e:
            return Validation(success=False, issues=e.errors())
        return Validation(success=True, data=data)

    def __repr__(self) -> str:
        return f"Schema({self.type!r})"


def as_schema(obj: Any) -> Schema[Any] | None:
    """Coerce an endpoint schema declaration (type or `Schema`) to a `Schema`."""
    if obj is None:
        return None
    if isinstance(obj, Schema):
        return obj
    return Schema(obj)
