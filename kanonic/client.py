"""
Main kanonic client.

Turns a (possibly nested) tree of `Endpoint` descriptors into an object whose
attributes mirror the tree and whose leaves are awaitable endpoint functions.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from types import TracebackType
from typing import Any, ClassVar

import httpx

from .clients.http import ClientConfig, HTTPClient
from .clients.pipeline import Plugin
from .clients.responses import StatusPredicate
from .exceptions import ApiErrors
from .policies import Policies
from .result import Result
from .types import Auth, CallOptions, Endpoint, EndpointTree, RequestOptions


_RESERVED_NAMES = frozenset({"api", "config", "aclose"})


def create_endpoints(endpoints: EndpointTree) -> EndpointTree:
    """
    Check an endpoint tree and return it unchanged.

    Top-level names may not shadow client attributes (`api`, `config`,
    `aclose`), and no name may start with an underscore.

    Raises:
        TypeError: If a leaf is neither an `Endpoint` nor a nested mapping.
        ValueError: If a key is not a valid attribute name or is reserved.
    """
    _check_tree(endpoints, top_level=True)
    return endpoints


def _check_tree(endpoints: EndpointTree, *, top_level: bool) -> None:
    for key, value in endpoints.items():
        if not isinstance(key, str) or not key.isidentifier() or key.startswith("_"):
            raise ValueError(f"Endpoint names must be public identifiers, got {key!r}")
        if top_level and key in _RESERVED_NAMES:
            raise ValueError(f"Endpoint name {key!r} is reserved by the client")
        if isinstance(value, Endpoint):
            continue
        if isinstance(value, Mapping):
            _check_tree(value, top_level=False)
            continue
        raise TypeError(
            f"{key!r} must be an Endpoint or a nested mapping, got {type(value).__name__}"
        )


class EndpointFunction:
    """
    Awaitable bound to one endpoint descriptor.

    Endpoints declaring input, params or query are called as
    `fn(options, request_options=None)`; all others as `fn(request_options=None)`.

    Example:
        ```python
        await api.todos.get({"params": {"id": 1}}, {"headers": {"X-Trace": "1"}})
        await api.todos.list({"retry": RetryPolicy(times=2, delay_ms=100)})
        ```
    """

    __slots__ = ("endpoint", "name", "_http")

    def __init__(self, endpoint: Endpoint, http: HTTPClient, name: str = ""):
        self.endpoint = endpoint
        self.name = name
        self._http = http

    def __call__(
        self,
        options: CallOptions | RequestOptions | None = None,
        request_options: RequestOptions | None = None,
    ) -> Awaitable[Result[Any, ApiErrors]]:
        if self.endpoint.takes_options:
            return self._http.call(
                self.endpoint, options, request_options  # type: ignore[arg-type]
            )
        if request_options is not None:
            raise TypeError(f"{self.name or 'endpoint'}() takes only request options")
        return self._http.call(self.endpoint, None, options)  # type: ignore[arg-type]

    def __repr__(self) -> str:
        return f"<EndpointFunction {self.name} {self.endpoint.method.value} {self.endpoint.path}>"


class ApiNode:
    """A group of endpoint functions, addressable by attribute or item."""

    def __init__(self, tree: EndpointTree, http: HTTPClient, prefix: str = ""):
        self._children: dict[str, EndpointFunction | ApiNode] = {}
        for key, value in tree.items():
            name = f"{prefix}{key}"
            if isinstance(value, Endpoint):
                self._children[key] = EndpointFunction(value, http, name)
            else:
                self._children[key] = ApiNode(value, http, f"{name}.")

    def __getattr__(self, name: str) -> EndpointFunction | ApiNode:
        try:
            return self.__dict__["_children"][name]
        except KeyError:
            raise AttributeError(name) from None

    def __getitem__(self, name: str) -> EndpointFunction | ApiNode:
        return self._children[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._children)

    def __dir__(self) -> list[str]:
        return [*super().__dir__(), *self._children]


class Kanonic:
    """
    Async typed API client.

    Example:
        ```python
        from kanonic import Endpoint, Kanonic

        endpoints = {
            "todos": {
                "list": Endpoint("GET", "/todos", output=list[Todo]),
                "get": Endpoint("GET", "/todos/:id", params=TodoId, output=Todo),
                "create": Endpoint("POST", "/todos", input=NewTodo, output=Todo),
            },
        }

        async with Kanonic("https://api.example.com", endpoints) as api:
            result = await api.todos.get({"params": {"id": 1}})
            if result.is_ok():
                print(result.value.title)
        ```

    Attributes:
        config: The resolved `ClientConfig`.
        api: Root node of the endpoint tree (also reachable directly on the client).
    """

    def __init__(
        self,
        base_url: str,
        endpoints: EndpointTree,
        *,
        auth: Auth | None = None,
        request_options: RequestOptions | None = None,
        policies: Policies | None = None,
        plugins: Sequence[Plugin] = (),
        error_schema: Any = None,
        should_validate_error: StatusPredicate | None = None,
        timeout: float | httpx.Timeout | None = 30.0,
        log_requests: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Prefix for every endpoint path.
            endpoints: Tree of `Endpoint` descriptors.
            auth: Bearer or basic credentials sent as the Authorization header.
            request_options: Options applied to every request (lowest priority;
                `retry` is ignored here).
            policies: Input/output validation policies.
            plugins: Lifecycle plugins, applied in order.
            error_schema: Schema for structured error bodies.
            should_validate_error: Status predicate selecting which error bodies
                are validated against `error_schema`.
            timeout: Default transport timeout in seconds.
            log_requests: Log every attempt and response at DEBUG.
            transport: Custom httpx transport (e.g. `httpx.MockTransport`).
            http_client: Preconfigured `httpx.AsyncClient` (not closed by us).
            sleep: Retry sleep function (seconds), mainly for tests.
        """
        self.config = ClientConfig(
            base_url=base_url,
            auth=auth,
            request_options=request_options or RequestOptions(),
            policies=policies or Policies(),
            plugins=plugins,
            error_schema=error_schema,
            should_validate_error=should_validate_error,
            timeout=timeout,
            log_requests=log_requests,
        )
        http_kwargs: dict[str, Any] = {"transport": transport, "http_client": http_client}
        if sleep is not None:
            http_kwargs["sleep"] = sleep
        self._http = HTTPClient(self.config, **http_kwargs)
        self.api = ApiNode(create_endpoints(endpoints), self._http)

    def __getattr__(self, name: str) -> EndpointFunction | ApiNode:
        api = self.__dict__.get("api")
        if api is None:
            raise AttributeError(name)
        return getattr(api, name)

    async def __aenter__(self) -> Kanonic:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client and release resources."""
        await self._http.aclose()


def create_api(base_url: str, endpoints: EndpointTree, **kwargs: Any) -> Kanonic:
    """Build a `Kanonic` client; keyword arguments are those of `Kanonic.__init__`."""
    return Kanonic(base_url, endpoints, **kwargs)


class ApiService:
    """
    Base class for service wrappers with a fixed endpoint tree.

    Example:
        ```python
        class TodoService(ApiService):
            endpoints = todo_endpoints
            error_schema = ApiErrorBody

            def __init__(self, token: str):
                super().__init__("https://api.example.com", auth=BearerAuth(token))

            async def titles(self) -> list[str]:
                todos = (await self.api.todos.list()).unwrap()
                return [t.title for t in todos]
        ```
    """

    endpoints: ClassVar[EndpointTree] = {}
    error_schema: ClassVar[Any] = None

    def __init__(self, base_url: str, **kwargs: Any):
        kwargs.setdefault("error_schema", type(self).error_schema)
        self._client = Kanonic(base_url, type(self).endpoints, **kwargs)

    @property
    def api(self) -> Kanonic:
        return self._client

    async def __aenter__(self) -> ApiService:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()
