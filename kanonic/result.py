"""
Result type returned by every endpoint call.

Calls never raise kanonic errors; they return `Ok(value)` or `Err(error)`:

    result = await api.todos.get({"params": {"id": 1}})
    match result:
        case Ok(value=todo):
            print(todo.title)
        case Err(error=ApiError() as error):
            print(error.status_code, error.text)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, NoReturn, TypeAlias, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E", bound=BaseException)
D = TypeVar("D")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: D) -> T | D:
        return self.value


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: D) -> D:
        return default


Result: TypeAlias = Union[Ok[T], Err[E]]
