"""
Error taxonomy for kanonic.

Every failure a call can produce is one of five closed variants. They are
exceptions so that `Result.unwrap()` can raise them, but the request pipeline
always returns them inside `Err` rather than raising.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeAlias, TypeVar, Union

E = TypeVar("E")


class ErrorKind(Enum):
    """Discriminant for the error variants."""

    INPUT_VALIDATION = "InputValidationError"
    OUTPUT_VALIDATION = "OutputValidationError"
    PARSE = "ParseError"
    FETCH = "FetchError"
    API = "ApiError"


class KanonicError(Exception):
    """Base class for all kanonic errors."""

    kind: ErrorKind

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message


class InputValidationError(KanonicError):
    """Request data (input, params or query) violates its declared schema."""

    kind = ErrorKind.INPUT_VALIDATION

    def __init__(self, message: str, *, issues: list[Any]) -> None:
        super().__init__(message)
        self.issues = issues


class OutputValidationError(KanonicError):
    """Response body violates the endpoint's output schema."""

    kind = ErrorKind.OUTPUT_VALIDATION

    def __init__(self, message: str, *, issues: list[Any]) -> None:
        super().__init__(message)
        self.issues = issues


class ParseError(KanonicError):
    """Response body could not be read or decoded as JSON."""

    kind = ErrorKind.PARSE


class FetchError(KanonicError):
    """The transport raised (network, DNS, timeout, ...)."""

    kind = ErrorKind.FETCH


class ApiError(KanonicError, Generic[E]):
    """
    Server answered with a non-2xx status.

    `text` is the raw response body and is always present. `data` is only set
    when an error schema was configured, the status was selected for
    validation, and the body parsed and validated.
    """

    kind = ErrorKind.API

    def __init__(self, *, status_code: int, text: str, data: E | None = None) -> None:
        super().__init__(f"API request failed with status {status_code}")
        self.status_code = status_code
        self.text = text
        self.data = data

    def __repr__(self) -> str:
        return f"ApiError(status_code={self.status_code}, text={self.text!r}, data={self.data!r})"


ApiErrors: TypeAlias = Union[
    InputValidationError, OutputValidationError, ParseError, FetchError, ApiError[Any]
]
RetriableError: TypeAlias = Union[FetchError, ApiError[Any]]


def is_retriable(error: KanonicError) -> bool:
    """Only transport failures and error-status responses may be retried."""
    return error.kind in (ErrorKind.FETCH, ErrorKind.API)
