"""
Declarative types: endpoint descriptors, retry policy, auth and option bags.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeAlias, TypedDict, Union

from .exceptions import RetriableError
from .schema import as_schema


class Method(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @property
    def read_only(self) -> bool:
        return self is Method.GET


class Backoff(str, Enum):
    """How the delay between retries grows with the retry index."""

    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Per-call retry configuration.

    Attributes:
        times: Number of retries, not counting the first attempt
            (total attempts = times + 1).
        delay_ms: Base delay in milliseconds.
        backoff: Growth of the delay with the zero-based retry index `i`:
            constant `d`, linear `d * (i + 1)`, exponential `d * 2**i`.
        should_retry: Optional predicate over the retriable error
            (`FetchError` or `ApiError`). Defaults to always retry.

    Validation, parse and output errors are never retried regardless of
    `should_retry`.

    Only honoured when passed in the per-call request options; a `retry` key in
    client-wide or endpoint-level options is ignored.
    """

    times: int
    delay_ms: float = 0
    backoff: Backoff = Backoff.CONSTANT
    should_retry: Callable[[RetriableError], bool] | None = None

    def __post_init__(self) -> None:
        if self.times < 0:
            raise ValueError(f"times must be >= 0, got {self.times}")
        if self.delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {self.delay_ms}")
        if not isinstance(self.backoff, Backoff):
            object.__setattr__(self, "backoff", Backoff(self.backoff))


@dataclass(frozen=True, slots=True)
class BearerAuth:
    token: str


@dataclass(frozen=True, slots=True)
class BasicAuth:
    username: str
    password: str


Auth: TypeAlias = Union[BearerAuth, BasicAuth]


class RequestOptions(TypedDict, total=False):
    """
    Transport options accepted at client, endpoint and call level.

    Headers merge with call > endpoint > client precedence. `retry` is only
    read from the call level.
    """

    headers: Mapping[str, str]
    timeout: Any
    follow_redirects: bool
    extensions: dict[str, Any]
    retry: RetryPolicy


class CallOptions(TypedDict, total=False):
    """Raw (pre-validation) values for one call."""

    input: Any
    params: Mapping[str, Any]
    query: Mapping[str, Any]


@dataclass(frozen=True, eq=False)
class Endpoint:
    """
    Immutable description of one callable operation.

    Schemas may be any type pydantic can validate, or a prebuilt `Schema`.

    Example:
        ```python
        get_todo = Endpoint(
            method="GET",
            path="/todos/:id",
            params=TodoParams,
            output=Todo,
        )
        ```
    """

    method: Method
    path: str
    params: Any = None
    query: Any = None
    input: Any = None
    output: Any = None
    stream: bool = False
    request_options: RequestOptions = field(default_factory=lambda: RequestOptions())

    def __post_init__(self) -> None:
        method = Method(self.method.upper() if isinstance(self.method, str) else self.method)
        object.__setattr__(self, "method", method)
        if not self.path.startswith("/"):
            raise ValueError(f"Endpoint path must start with '/', got {self.path!r}")
        if method.read_only and self.input is not None:
            raise ValueError(f"{method.value} endpoints cannot declare an input schema")
        for name in ("params", "query", "input", "output"):
            object.__setattr__(self, name, as_schema(getattr(self, name)))

    @property
    def takes_options(self) -> bool:
        """Whether calls carry a `CallOptions` slot (any of input/params/query declared)."""
        return any(s is not None for s in (self.input, self.params, self.query))


EndpointTree: TypeAlias = Mapping[str, Union[Endpoint, "EndpointTree"]]
