"""End-to-end tests for the client over an injected httpx transport."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator

import httpx
import pytest
from pydantic import BaseModel, Field

from kanonic import (
    ApiError,
    ApiService,
    BearerAuth,
    Endpoint,
    Err,
    EventStream,
    FetchError,
    InputValidationError,
    Kanonic,
    LoggingPlugin,
    Ok,
    OutputValidationError,
    ParseError,
    Plugin,
    Policies,
    RetryPolicy,
    TimingPlugin,
    ValidationPolicy,
    create_api,
    create_endpoints,
    validate_client_errors,
)

BASE_URL = "https://api.example.test"


class Todo(BaseModel):
    id: int
    title: str
    completed: bool = False


class NewTodo(BaseModel):
    title: str = Field(min_length=1)
    user_id: int = Field(alias="userId")


class TodoId(BaseModel):
    id: int


class TodoQuery(BaseModel):
    tag: list[str] = []
    done: bool | None = None


class Tick(BaseModel):
    id: int


class ErrorBody(BaseModel):
    code: str
    message: str


ENDPOINTS = create_endpoints(
    {
        "todos": {
            "list": Endpoint("GET", "/todos", query=TodoQuery, output=list[Todo]),
            "get": Endpoint("GET", "/todos/:id", params=TodoId, output=Todo),
            "create": Endpoint("POST", "/todos", input=NewTodo, output=Todo),
            "raw": Endpoint("GET", "/todos/raw"),
        },
        "ticks": Endpoint("GET", "/ticks", output=Tick, stream=True),
        "lines": Endpoint("GET", "/lines", stream=True),
        "echo": Endpoint("POST", "/echo", input=Todo, output=Todo),
        "tagged": Endpoint(
            "GET",
            "/tagged",
            request_options={"headers": {"x": "endpoint", "X-Endpoint-Only": "e"}},
        ),
    }
)


class _Recorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class Calls:
    def __init__(self, handler):
        self.requests: list[httpx.Request] = []
        self._handler = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    @property
    def count(self) -> int:
        return len(self.requests)


def _client(handler, **kwargs) -> tuple[Kanonic, Calls]:
    calls = Calls(handler)
    kwargs.setdefault("sleep", _Recorder())
    client = Kanonic(BASE_URL, ENDPOINTS, transport=httpx.MockTransport(calls), **kwargs)
    return client, calls


def _todo_json(todo_id: int = 1) -> dict:
    return {"id": todo_id, "title": "milk", "completed": False}


# =============================================================================
# Validation and URL building
# =============================================================================


@pytest.mark.asyncio
async def test_invalid_input_never_reaches_network() -> None:
    client, calls = _client(lambda r: httpx.Response(200, json=_todo_json()))
    async with client:
        result = await client.todos.create({"input": {"title": "", "userId": 1}})

    assert calls.count == 0
    assert isinstance(result, Err)
    assert isinstance(result.error, InputValidationError)
    assert result.error.message == "Invalid input"
    assert result.error.issues[0]["loc"] == ("title",)


@pytest.mark.asyncio
async def test_invalid_params_and_query_short_circuit() -> None:
    client, calls = _client(lambda r: httpx.Response(200, json=[]))
    async with client:
        bad_params = await client.todos.get({"params": {"id": "abc"}})
        bad_query = await client.todos.list({"query": {"done": "maybe"}})

    assert calls.count == 0
    assert bad_params.error.message == "Invalid params"
    assert bad_query.error.message == "Invalid query"


@pytest.mark.asyncio
async def test_params_and_query_resolve_into_url() -> None:
    client, calls = _client(lambda r: httpx.Response(200, json=_todo_json(7)))
    async with client:
        got = await client.todos.get({"params": {"id": "7"}})
        listed = await client.todos.list({"query": {"tag": ["a", "b"]}})

    assert got == Ok(Todo(id=7, title="milk"))
    assert isinstance(listed, Err)
    assert isinstance(listed.error, OutputValidationError)
    assert str(calls.requests[0].url) == f"{BASE_URL}/todos/7"
    assert str(calls.requests[1].url) == f"{BASE_URL}/todos?tag=a&tag=b"


@pytest.mark.asyncio
async def test_input_is_serialized_by_alias_as_json_body() -> None:
    client, calls = _client(lambda r: httpx.Response(201, json=_todo_json(3)))
    async with client:
        result = await client.todos.create({"input": {"title": "milk", "userId": 5}})

    assert result.unwrap().id == 3
    request = calls.requests[0]
    assert request.method == "POST"
    assert json.loads(request.content) == {"title": "milk", "userId": 5}
    assert request.headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_skip_input_policy_sends_unvalidated_input() -> None:
    client, calls = _client(
        lambda r: httpx.Response(200, json=_todo_json()),
        policies=Policies(input=ValidationPolicy.SKIP),
    )
    async with client:
        result = await client.todos.create({"input": {"title": ""}})

    assert result.is_ok()
    assert json.loads(calls.requests[0].content) == {"title": ""}


@pytest.mark.asyncio
async def test_round_trip_echo_returns_equal_value() -> None:
    client, _ = _client(lambda r: httpx.Response(200, content=r.content))
    todo = {"id": 4, "title": "echo", "completed": True}
    async with client:
        result = await client.echo({"input": todo})

    assert result == Ok(Todo(**todo))


# =============================================================================
# Options and headers
# =============================================================================


@pytest.mark.asyncio
async def test_header_layers_merge_with_call_winning() -> None:
    client, calls = _client(
        lambda r: httpx.Response(200, json={}),
        auth=BearerAuth("secret"),
        request_options={"headers": {"x": "global", "X-Global-Only": "g"}},
    )
    async with client:
        await client.tagged({"headers": {"x": "call", "Content-Type": "text/plain"}})

    headers = calls.requests[0].headers
    assert headers["x"] == "call"
    assert headers["x-global-only"] == "g"
    assert headers["x-endpoint-only"] == "e"
    assert headers["authorization"] == "Bearer secret"
    assert headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_call_level_auth_header_overrides_auth() -> None:
    client, calls = _client(lambda r: httpx.Response(200, json={}), auth=BearerAuth("secret"))
    async with client:
        await client.todos.raw({"headers": {"Authorization": "Bearer other"}})
    assert calls.requests[0].headers["authorization"] == "Bearer other"


@pytest.mark.asyncio
async def test_timeout_option_is_forwarded_to_transport() -> None:
    client, calls = _client(lambda r: httpx.Response(200, json={}))
    async with client:
        await client.todos.raw({"timeout": 5.0})
    assert calls.requests[0].extensions["timeout"]["read"] == 5.0


@pytest.mark.asyncio
async def test_zero_option_endpoint_rejects_second_slot() -> None:
    client, _ = _client(lambda r: httpx.Response(200, json={}))
    async with client:
        with pytest.raises(TypeError):
            client.todos.raw({}, {"headers": {}})


# =============================================================================
# Errors
# =============================================================================


@pytest.mark.asyncio
async def test_error_status_without_schema_keeps_text() -> None:
    client, _ = _client(lambda r: httpx.Response(404, text="plain text"))
    async with client:
        result = await client.todos.raw()

    error = result.error
    assert isinstance(error, ApiError)
    assert error.data is None
    assert error.text == "plain text"
    assert error.status_code == 404


@pytest.mark.asyncio
async def test_error_schema_parses_client_errors() -> None:
    client, _ = _client(
        lambda r: httpx.Response(422, json={"code": "invalid", "message": "nope"}),
        error_schema=ErrorBody,
        should_validate_error=validate_client_errors,
    )
    async with client:
        result = await client.todos.raw()

    assert result.error.data == ErrorBody(code="invalid", message="nope")


@pytest.mark.asyncio
async def test_transport_exception_becomes_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = _client(handler)
    async with client:
        result = await client.todos.raw()

    assert isinstance(result.error, FetchError)
    assert isinstance(result.error.cause, httpx.ConnectError)
    assert "connection refused" in result.error.message


@pytest.mark.asyncio
async def test_non_json_success_is_parse_error() -> None:
    client, _ = _client(lambda r: httpx.Response(200, text="<html/>"))
    async with client:
        result = await client.todos.raw()
    assert isinstance(result.error, ParseError)
    with pytest.raises(ParseError):
        result.unwrap()


# =============================================================================
# Retry
# =============================================================================


class Counting(Plugin):
    id = "counting"

    def __init__(self) -> None:
        self.events: list[str] = []
        self.request_metadata: list[dict] = []
        self.final_metadata: dict | None = None

    async def init(self, url, options):
        self.events.append("init")
        return url, {**options, "metadata": {"call": "c1"}}

    async def on_request(self, ctx):
        self.events.append("request")
        self.request_metadata.append(dict(ctx.metadata))
        ctx.metadata["attempt_only"] = True
        return ctx

    async def on_response(self, ctx, response):
        self.events.append("response")
        return response

    async def on_success(self, ctx, response, data):
        self.events.append(f"success:{response.status_code}")
        self.final_metadata = dict(ctx.metadata)

    async def on_error(self, ctx, error):
        self.events.append(f"error:{error.kind.value}")
        self.final_metadata = dict(ctx.metadata)

    async def on_retry(self, ctx, error):
        self.events.append("retry")


@pytest.mark.asyncio
async def test_retry_exhaustion_runs_times_plus_one_attempts() -> None:
    plugin = Counting()
    sleep = _Recorder()
    client, calls = _client(
        lambda r: httpx.Response(503, text=f"busy {len(calls.requests)}"),
        plugins=[plugin],
        sleep=sleep,
    )
    async with client:
        result = await client.todos.raw(
            {"retry": RetryPolicy(times=2, delay_ms=100, backoff="exponential")}
        )

    assert calls.count == 3
    assert result.error.text == "busy 3"
    assert sleep.delays == [0.1, 0.2]
    assert plugin.events == [
        "init",
        "request", "response",
        "retry",
        "request", "response",
        "retry",
        "request", "response",
        "error:ApiError",
    ]


@pytest.mark.asyncio
async def test_attempt_state_does_not_leak_between_attempts() -> None:
    plugin = Counting()
    client, _ = _client(lambda r: httpx.Response(500, text=""), plugins=[plugin])
    async with client:
        await client.todos.raw({"retry": RetryPolicy(times=1)})

    assert plugin.request_metadata == [{"call": "c1"}, {"call": "c1"}]
    assert plugin.final_metadata == {"call": "c1"}


class NestedMarker(Plugin):
    id = "nested-marker"

    def __init__(self) -> None:
        self.seen: list[dict] = []
        self.final: dict | None = None
        self.attempts = 0

    async def on_request(self, ctx):
        self.attempts += 1
        extensions = ctx.options.setdefault("extensions", {})
        self.seen.append(dict(extensions))
        extensions["attempt_marker"] = self.attempts
        ctx.metadata["trace"]["attempts"].append(self.attempts)
        return ctx

    async def init(self, url, options):
        return url, {**options, "metadata": {"trace": {"attempts": []}}}

    async def on_error(self, ctx, error):
        self.final = {"extensions": ctx.options["extensions"], "trace": ctx.metadata["trace"]}


@pytest.mark.asyncio
async def test_nested_attempt_mutations_do_not_leak() -> None:
    endpoints = {
        "flaky": Endpoint("GET", "/flaky", request_options={"extensions": {"k": 1}}),
    }
    plugin = NestedMarker()
    calls = Calls(lambda r: httpx.Response(500, text=""))
    client = Kanonic(
        BASE_URL,
        endpoints,
        transport=httpx.MockTransport(calls),
        plugins=[plugin],
        sleep=_Recorder(),
    )
    async with client:
        await client.flaky({"retry": RetryPolicy(times=1)})

    assert calls.count == 2
    assert plugin.seen == [{"k": 1}, {"k": 1}]
    assert plugin.final == {"extensions": {"k": 1}, "trace": {"attempts": []}}
    assert calls.requests[1].extensions["attempt_marker"] == 2


class Replacing(Plugin):
    id = "replacing"

    def __init__(self) -> None:
        self.originals: list[httpx.Response] = []

    async def on_response(self, ctx, response):
        self.originals.append(response)
        return httpx.Response(200, json={"replaced": True})


@pytest.mark.asyncio
async def test_replaced_response_is_closed() -> None:
    plugin = Replacing()
    client, _ = _client(lambda r: httpx.Response(503, text="busy"), plugins=[plugin])
    async with client:
        result = await client.todos.raw()

    assert result == Ok({"replaced": True})
    assert len(plugin.originals) == 1
    assert plugin.originals[0].is_closed


@pytest.mark.asyncio
async def test_cancel_during_retry_sleep_stops_retrying() -> None:
    plugin = Counting()
    sleeping = asyncio.Event()

    async def sleep(seconds: float) -> None:
        sleeping.set()
        await asyncio.sleep(seconds)

    client, calls = _client(lambda r: httpx.Response(503, text=""), plugins=[plugin], sleep=sleep)
    async with client:
        task = asyncio.create_task(
            client.todos.raw({"retry": RetryPolicy(times=3, delay_ms=500)})
        )
        await sleeping.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert calls.count == 1
    assert plugin.events == ["init", "request", "response", "retry"]


@pytest.mark.asyncio
async def test_should_retry_predicate_stops_on_client_errors() -> None:
    def should_retry(error) -> bool:
        return isinstance(error, FetchError) or error.status_code >= 500

    client, calls = _client(lambda r: httpx.Response(404, text="missing"))
    async with client:
        result = await client.todos.raw({"retry": RetryPolicy(times=5, should_retry=should_retry)})

    assert calls.count == 1
    assert result.error.status_code == 404


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failure() -> None:
    responses = [httpx.Response(502, text="bad gateway"), httpx.Response(200, json=_todo_json())]
    plugin = Counting()
    client, calls = _client(lambda r: responses.pop(0), plugins=[plugin])
    async with client:
        result = await client.todos.get({"params": {"id": 1}}, {"retry": RetryPolicy(times=3)})

    assert calls.count == 2
    assert result == Ok(Todo(id=1, title="milk"))
    assert plugin.events[-1] == "success:200"


@pytest.mark.asyncio
async def test_output_validation_error_is_not_retried() -> None:
    client, calls = _client(lambda r: httpx.Response(200, json={"id": "nope"}))
    async with client:
        result = await client.todos.get({"params": {"id": 1}}, {"retry": RetryPolicy(times=3)})

    assert calls.count == 1
    assert isinstance(result.error, OutputValidationError)


@pytest.mark.asyncio
async def test_retry_in_client_or_endpoint_options_is_ignored() -> None:
    endpoints = {
        "flaky": Endpoint("GET", "/flaky", request_options={"retry": RetryPolicy(times=4)}),
    }
    calls = Calls(lambda r: httpx.Response(503, text=""))
    client = Kanonic(
        BASE_URL,
        endpoints,
        transport=httpx.MockTransport(calls),
        request_options={"retry": RetryPolicy(times=4)},
        sleep=_Recorder(),
    )
    async with client:
        result = await client.flaky()

    assert calls.count == 1
    assert isinstance(result.error, ApiError)


# =============================================================================
# Plugins
# =============================================================================


class Broken(Plugin):
    id = "broken"

    async def on_success(self, ctx, response, data):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_plugin_observer_failure_does_not_change_result() -> None:
    plugin = Counting()
    client, _ = _client(
        lambda r: httpx.Response(200, json=_todo_json()), plugins=[Broken(), plugin]
    )
    async with client:
        result = await client.todos.get({"params": {"id": 1}})

    assert result == Ok(Todo(id=1, title="milk"))
    assert plugin.events[-1] == "success:200"


class Rewriter(Plugin):
    id = "rewriter"

    async def init(self, url, options):
        return url.replace("/todos/raw", "/todos/rewritten"), options

    async def on_request(self, ctx):
        ctx.headers["X-Signed"] = "yes"
        return ctx


@pytest.mark.asyncio
async def test_plugins_rewrite_url_and_headers() -> None:
    client, calls = _client(lambda r: httpx.Response(200, json={}), plugins=[Rewriter()])
    async with client:
        await client.todos.raw()

    request = calls.requests[0]
    assert request.url.path == "/todos/rewritten"
    assert request.headers["x-signed"] == "yes"


@pytest.mark.asyncio
async def test_logging_plugin_reports_lifecycle(caplog: pytest.LogCaptureFixture) -> None:
    responses = [httpx.Response(503, text=""), httpx.Response(200, json={"ok": True})]
    client, _ = _client(lambda r: responses.pop(0), plugins=[LoggingPlugin()])

    with caplog.at_level(logging.INFO, logger="kanonic.requests"):
        async with client:
            await client.todos.raw({"retry": RetryPolicy(times=1)})

    messages = [r.getMessage() for r in caplog.records if r.name == "kanonic.requests"]
    assert messages == [
        f"Sending request to [GET] {BASE_URL}/todos/raw",
        f"Request [GET] {BASE_URL}/todos/raw failed with ApiError, retrying",
        f"Sending request to [GET] {BASE_URL}/todos/raw",
        "Request succeeded with status 200",
    ]


@pytest.mark.asyncio
async def test_timing_plugin_reports_total_duration() -> None:
    timing = TimingPlugin()
    client, _ = _client(lambda r: httpx.Response(200, json={}), plugins=[timing])
    async with client:
        await client.todos.raw()

    assert timing.last_duration_ms is not None
    assert timing.last_duration_ms >= 0
    assert timing._started == {}


# =============================================================================
# Streaming
# =============================================================================


def _sse(*chunks: bytes):
    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk

    return lambda request: httpx.Response(
        200, content=body(), headers={"content-type": "text/event-stream"}
    )


@pytest.mark.asyncio
async def test_stream_endpoint_yields_validated_values() -> None:
    client, _ = _client(
        _sse(b'data: {"id":1}\n\n', b"data: not json\n\n", b'data: {"id":2}\n\ndata: [DONE]\n\n')
    )
    async with client:
        result = await client.ticks()
        assert isinstance(result.value, EventStream)
        async with result.value as stream:
            values = [tick async for tick in stream]

    assert values == [Tick(id=1), Tick(id=2)]


@pytest.mark.asyncio
async def test_stream_without_schema_yields_raw_lines() -> None:
    client, _ = _client(_sse(b"data: hel", b"lo\n\n"))
    async with client:
        result = await client.lines()
        values = [line async for line in result.unwrap()]

    assert values == ["hello"]


@pytest.mark.asyncio
async def test_stream_error_status_is_api_error() -> None:
    client, _ = _client(lambda r: httpx.Response(500, text="stream unavailable"))
    async with client:
        result = await client.ticks()

    assert isinstance(result.error, ApiError)
    assert result.error.text == "stream unavailable"


# =============================================================================
# Construction surface
# =============================================================================


def test_get_endpoint_cannot_declare_input() -> None:
    with pytest.raises(ValueError):
        Endpoint("GET", "/todos", input=NewTodo)


def test_create_endpoints_rejects_bad_leaves() -> None:
    with pytest.raises(TypeError):
        create_endpoints({"todos": {"list": "/todos"}})
    with pytest.raises(ValueError):
        create_endpoints({"bad-name": Endpoint("GET", "/x")})


@pytest.mark.parametrize("name", ["api", "config", "aclose", "_http"])
def test_create_endpoints_rejects_names_shadowing_client(name: str) -> None:
    with pytest.raises(ValueError):
        create_endpoints({name: Endpoint("GET", "/x")})


def test_reserved_names_are_allowed_below_top_level() -> None:
    tree = {"admin": {"config": Endpoint("GET", "/admin/config")}}
    assert create_endpoints(tree) is tree


@pytest.mark.asyncio
async def test_non_mapping_params_are_returned_as_input_error() -> None:
    calls = Calls(lambda r: httpx.Response(200, json={}))
    client = Kanonic(
        BASE_URL,
        {"item": Endpoint("GET", "/items/:id", params=int)},
        transport=httpx.MockTransport(calls),
    )
    async with client:
        result = await client.item({"params": 5})

    assert calls.count == 0
    assert isinstance(result.error, InputValidationError)
    assert result.error.message == "Invalid params"
    assert result.error.issues[0]["type"] == "mapping_type"


class TodoService(ApiService):
    endpoints = {"todos": {"get": Endpoint("GET", "/todos/:id", params=TodoId, output=Todo)}}
    error_schema = ErrorBody

    async def title(self, todo_id: int) -> str:
        return (await self.api.todos.get({"params": {"id": todo_id}})).unwrap().title


@pytest.mark.asyncio
async def test_api_service_exposes_typed_api() -> None:
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json=_todo_json(9)))
    async with TodoService(BASE_URL, transport=transport) as service:
        assert await service.title(9) == "milk"
        assert service.api.config.error_schema is not None


@pytest.mark.asyncio
async def test_create_api_uses_supplied_http_client() -> None:
    transport = httpx.MockTransport(lambda r: httpx.Response(200, json=[]))
    async with httpx.AsyncClient(transport=transport) as http_client:
        api = create_api(BASE_URL, ENDPOINTS, http_client=http_client)
        result = await api.todos.list({"query": {}})
        await api.aclose()
        assert not http_client.is_closed

    assert result == Ok([])
