"""
Plugin pipeline primitives.

A call's request is modelled independently of the underlying HTTP transport so
cross-cutting behavior (logging, tracing, signing, timing) can be implemented
as plugins. Plugins are applied in registration order; each mutating hook
receives what the previous plugin returned.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from copy import deepcopy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypedDict

import httpx

if TYPE_CHECKING:
    from ..exceptions import ApiErrors, RetriableError

logger = logging.getLogger(__name__)


class RequestInit(TypedDict, total=False):
    """Merged request options handed to `Plugin.init` next to the URL."""

    method: str
    headers: dict[str, str]
    body: str | None
    timeout: Any
    follow_redirects: bool
    extensions: dict[str, Any]
    metadata: dict[str, Any]


@dataclass(slots=True)
class RequestContext:
    """
    Everything that will be forwarded to the transport for one attempt.

    `options` holds transport passthrough fields (timeout, follow_redirects,
    extensions). `metadata` is free-form storage for plugins, e.g. a
    correlation id injected by `init`; it is never sent over the wire.
    """

    url: str
    method: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    options: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_init(cls, url: str, init: RequestInit) -> RequestContext:
        rest = {
            k: v
            for k, v in init.items()
            if k not in ("method", "headers", "body", "metadata")
        }
        return cls(
            url=url,
            method=init.get("method", "GET"),
            headers=dict(init.get("headers") or {}),
            body=init.get("body"),
            options=deepcopy(rest),
            metadata=deepcopy(dict(init.get("metadata") or {})),
        )

    def copy(self) -> RequestContext:
        """Independent clone for a single attempt; nested options and metadata are copied too."""
        return RequestContext(
            url=self.url,
            method=self.method,
            headers=dict(self.headers),
            body=self.body,
            options=deepcopy(self.options),
            metadata=deepcopy(self.metadata),
        )


class Plugin:
    """
    A hook into the request lifecycle.

    Subclasses override only the hooks they need; the defaults pass values
    through unchanged.

    - `init` runs once per call, before the first attempt, and may rewrite the
      URL and merged options.
    - `on_request` / `on_response` run on every attempt, including retries.
    - `on_success` / `on_error` run once with the final outcome; `on_retry`
      runs before each backoff sleep. These three are observers: exceptions
      they raise are logged and discarded.

    Example:
        ```python
        class TracePlugin(Plugin):
            id = "trace"
            name = "Trace"

            async def on_request(self, ctx):
                ctx.headers["X-Trace-Id"] = new_trace_id()
                return ctx
        ```
    """

    id: str = "plugin"
    name: str = "Plugin"
    version: str = "1.0.0"

    async def init(self, url: str, options: RequestInit) -> tuple[str, RequestInit]:
        return url, options

    async def on_request(self, ctx: RequestContext) -> RequestContext:
        return ctx

    async def on_response(self, ctx: RequestContext, response: httpx.Response) -> httpx.Response:
        return response

    async def on_success(
        self, ctx: RequestContext, response: httpx.Response | None, data: Any
    ) -> None:
        return None

    async def on_error(self, ctx: RequestContext, error: ApiErrors) -> None:
        return None

    async def on_retry(self, ctx: RequestContext, error: RetriableError) -> None:
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} version={self.version!r}>"


async def run_init(
    plugins: Sequence[Plugin], url: str, options: RequestInit
) -> tuple[str, RequestInit]:
    for plugin in plugins:
        url, options = await plugin.init(url, options)
    return url, options


async def run_on_request(plugins: Sequence[Plugin], ctx: RequestContext) -> RequestContext:
    for plugin in plugins:
        ctx = await plugin.on_request(ctx)
    return ctx


async def run_on_response(
    plugins: Sequence[Plugin], ctx: RequestContext, response: httpx.Response
) -> httpx.Response:
    for plugin in plugins:
        response = await plugin.on_response(ctx, response)
    return response


async def run_on_success(
    plugins: Sequence[Plugin],
    ctx: RequestContext,
    response: httpx.Response | None,
    data: Any,
) -> None:
    for plugin in plugins:
        try:
            await plugin.on_success(ctx, response, data)
        except Exception:
            logger.warning("Plugin %r failed in on_success", plugin.id, exc_info=True)


async def run_on_error(plugins: Sequence[Plugin], ctx: RequestContext, error: ApiErrors) -> None:
    for plugin in plugins:
        try:
            await plugin.on_error(ctx, error)
        except Exception:
            logger.warning("Plugin %r failed in on_error", plugin.id, exc_info=True)


async def run_on_retry(
    plugins: Sequence[Plugin], ctx: RequestContext, error: RetriableError
) -> None:
    for plugin in plugins:
        try:
            await plugin.on_retry(ctx, error)
        except Exception:
            logger.warning("Plugin %r failed in on_retry", plugin.id, exc_info=True)
