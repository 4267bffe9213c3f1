"""
Per-call request orchestration.

`HTTPClient.call()` drives one endpoint invocation:

1. validate input, params and query (no network on failure)
2. resolve the URL and merge options/headers
3. run plugin `init` once
4. run the attempt (`on_request` -> transport -> `on_response` -> response
   handling), under the retry controller when a per-call policy is given
5. notify plugins of the final success or error
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic_core import to_jsonable_python

from ..exceptions import ApiErrors, FetchError, InputValidationError
from ..policies import Policies
from ..result import Err, Ok, Result
from ..schema import Schema, as_schema
from ..types import Auth, CallOptions, Endpoint, RequestOptions, RetryPolicy
from ..utils import build_auth_header, build_url, merge_headers, to_mapping
from .pipeline import (
    Plugin,
    RequestContext,
    RequestInit,
    run_init,
    run_on_error,
    run_on_request,
    run_on_response,
    run_on_retry,
    run_on_success,
)
from .responses import StatusPredicate, handle_json_response, handle_stream_response
from .retry import run_with_retry

logger = logging.getLogger(__name__)

_CONTENT_TYPE = {"Content-Type": "application/json"}


@dataclass
class ClientConfig:
    """Configuration shared by every endpoint of a client."""

    base_url: str
    auth: Auth | None = None
    request_options: RequestOptions = field(default_factory=lambda: RequestOptions())
    policies: Policies = field(default_factory=Policies)
    plugins: Sequence[Plugin] = ()
    error_schema: Any = None
    should_validate_error: StatusPredicate | None = None
    timeout: float | httpx.Timeout | None = 30.0
    log_requests: bool = False

    def __post_init__(self) -> None:
        self.error_schema = as_schema(self.error_schema)
        self.plugins = tuple(self.plugins)


def _split_options(
    options: Mapping[str, Any] | None, *, allow_retry: bool
) -> tuple[dict[str, str], dict[str, Any], RetryPolicy | None]:
    """Separate headers and retry from the transport passthrough options."""
    rest = dict(options or {})
    headers = dict(rest.pop("headers", None) or {})
    retry = rest.pop("retry", None)
    if retry is not None and not allow_retry:
        logger.debug("Ignoring retry policy outside per-call request options")
        retry = None
    return headers, rest, retry


class HTTPClient:
    """
    Executes endpoint calls over an `httpx.AsyncClient`.

    Pass `transport` (e.g. `httpx.MockTransport`) or a preconfigured
    `http_client` to control the network layer; a client passed in is not
    closed by `aclose()`.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(transport=transport, timeout=config.timeout)
        self._sleep = sleep
        self._auth_header = build_auth_header(config.auth)
        self._global_headers, self._global_options, _ = _split_options(
            config.request_options, allow_retry=False
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # Pipeline steps
    # =========================================================================

    def _validate(
        self, endpoint: Endpoint, options: CallOptions
    ) -> Result[tuple[Any, dict[str, Any], dict[str, Any]], InputValidationError]:
        values = {
            "input": options.get("input"),
            "params": options.get("params"),
            "query": options.get("query"),
        }
        if self._config.policies.validate_input:
            checks: list[tuple[str, Schema[Any] | None]] = [
                ("input", None if endpoint.method.read_only else endpoint.input),
                ("params", endpoint.params),
                ("query", endpoint.query),
            ]
            for name, schema in checks:
                if schema is None:
                    continue
                validation = schema.validate(values[name])
                if not validation.success:
                    return Err(InputValidationError(f"Invalid {name}", issues=validation.issues))
                values[name] = validation.data

        for name in ("params", "query"):
            try:
                values[name] = to_mapping(values[name])
            except TypeError as e:
                issue = {"type": "mapping_type", "loc": (), "msg": str(e), "input": values[name]}
                return Err(InputValidationError(f"Invalid {name}", issues=[issue]))
        return Ok((values["input"], values["params"], values["query"]))

    def _encode_body(self, endpoint: Endpoint, options: CallOptions, value: Any) -> str | None:
        if endpoint.method.read_only or "input" not in options:
            return None
        return json.dumps(to_jsonable_python(value, by_alias=True))

    async def _send(self, ctx: RequestContext) -> httpx.Response:
        build_kwargs: dict[str, Any] = {}
        if "timeout" in ctx.options:
            build_kwargs["timeout"] = ctx.options["timeout"]
        if "extensions" in ctx.options:
            build_kwargs["extensions"] = ctx.options["extensions"]
        request = self._client.build_request(
            ctx.method,
            ctx.url,
            headers=ctx.headers,
            content=ctx.body,
            **build_kwargs,
        )
        send_kwargs: dict[str, Any] = {}
        if "follow_redirects" in ctx.options:
            send_kwargs["follow_redirects"] = ctx.options["follow_redirects"]
        return await self._client.send(request, stream=True, **send_kwargs)

    # =========================================================================
    # Call
    # =========================================================================

    async def call(
        self,
        endpoint: Endpoint,
        options: CallOptions | None = None,
        request_options: RequestOptions | None = None,
    ) -> Result[Any, ApiErrors]:
        """
        Execute one call of `endpoint`.

        Returns:
            `Ok` with the validated JSON body (or an `EventStream` for streaming
            endpoints), or `Err` with one of the kanonic error variants.
        """
        config = self._config
        options = options or CallOptions()

        validated = self._validate(endpoint, options)
        if isinstance(validated, Err):
            return validated
        input_value, params, query = validated.value

        url = build_url(
            config.base_url,
            endpoint.path,
            params=params,
            query=query,
        )

        endpoint_headers, endpoint_options, _ = _split_options(
            endpoint.request_options, allow_retry=False
        )
        call_headers, call_options, retry = _split_options(request_options, allow_retry=True)
        init: RequestInit = {
            **self._global_options,
            **endpoint_options,
            **call_options,
            "method": endpoint.method.value,
            "headers": merge_headers(
                self._auth_header,
                self._global_headers,
                endpoint_headers,
                call_headers,
                _CONTENT_TYPE,
            ),
            "body": self._encode_body(endpoint, options, input_value),
        }

        url, init = await run_init(config.plugins, url, init)
        stable_ctx = RequestContext.from_init(url, init)
        last_response: httpx.Response | None = None

        async def attempt() -> Result[Any, ApiErrors]:
            nonlocal last_response
            ctx = await run_on_request(config.plugins, stable_ctx.copy())
            if config.log_requests:
                logger.debug("-> %s %s", ctx.method, ctx.url)
            try:
                response = await self._send(ctx)
            except Exception as e:
                if config.log_requests:
                    logger.debug("x %s %s: %r", ctx.method, ctx.url, e)
                return Err(FetchError(str(e) or type(e).__name__, cause=e))

            original = response
            response = await run_on_response(config.plugins, ctx, response)
            if response is not original:
                await original.aclose()
            last_response = response
            if config.log_requests:
                logger.debug("<- %d %s %s", response.status_code, ctx.method, ctx.url)

            handler = handle_stream_response if endpoint.stream else handle_json_response
            return await handler(
                response,
                output_schema=endpoint.output,
                validate_output=config.policies.validate_output,
                error_schema=config.error_schema,
                should_validate_error=config.should_validate_error,
            )

        async def notify_retry(error: Any) -> None:
            await run_on_retry(config.plugins, stable_ctx, error)

        if retry is None:
            result = await attempt()
        else:
            result = await run_with_retry(attempt, retry, on_retry=notify_retry, sleep=self._sleep)

        if isinstance(result, Ok):
            await run_on_success(config.plugins, stable_ctx, last_response, result.value)
        else:
            await run_on_error(config.plugins, stable_ctx, result.error)
        return result
