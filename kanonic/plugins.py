"""
Ready-made plugins.

`LoggingPlugin` reports the request lifecycle on a standard library logger.
`TimingPlugin` measures per-attempt and end-to-end latency; it shows how a
plugin correlates hooks of the same call: `init` stamps a correlation id into
the context metadata and the plugin keeps its own store keyed by that id.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any

import httpx

from .clients.pipeline import Plugin, RequestContext, RequestInit
from .exceptions import ApiErrors, RetriableError

_MAX_LOGGED_DATA = 500


class LoggingPlugin(Plugin):
    id = "logger"
    name = "Logger"
    version = "1.0.0"

    def __init__(self, logger: logging.Logger | None = None, *, log_data_on_success: bool = False):
        self.logger = logger or logging.getLogger("kanonic.requests")
        self.log_data_on_success = log_data_on_success

    async def on_request(self, ctx: RequestContext) -> RequestContext:
        self.logger.info("Sending request to [%s] %s", ctx.method, ctx.url)
        return ctx

    async def on_success(
        self, ctx: RequestContext, response: httpx.Response | None, data: Any
    ) -> None:
        status = response.status_code if response is not None else None
        if self.log_data_on_success:
            rendered = json.dumps(data, default=str)[:_MAX_LOGGED_DATA]
            self.logger.info("Request succeeded with status %s and data: %s", status, rendered)
        else:
            self.logger.info("Request succeeded with status %s", status)

    async def on_error(self, ctx: RequestContext, error: ApiErrors) -> None:
        self.logger.error("Request failed [%s] %s", error.kind.value, error.message)

    async def on_retry(self, ctx: RequestContext, error: RetriableError) -> None:
        self.logger.warning(
            "Request [%s] %s failed with %s, retrying", ctx.method, ctx.url, error.kind.value
        )


class TimingPlugin(Plugin):
    id = "timing"
    name = "Timing"
    version = "1.0.0"

    METADATA_KEY = "timing_request_id"

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("kanonic.timing")
        self._started: dict[str, float] = {}
        self.last_duration_ms: float | None = None

    async def init(self, url: str, options: RequestInit) -> tuple[str, RequestInit]:
        request_id = uuid.uuid4().hex
        self._started[request_id] = time.perf_counter()
        metadata = {**options.get("metadata", {}), self.METADATA_KEY: request_id}
        return url, {**options, "metadata": metadata}

    async def on_request(self, ctx: RequestContext) -> RequestContext:
        ctx.metadata["timing_attempt_start"] = time.perf_counter()
        return ctx

    async def on_response(self, ctx: RequestContext, response: httpx.Response) -> httpx.Response:
        started = ctx.metadata.get("timing_attempt_start")
        if started is not None:
            self.logger.debug(
                "Attempt took %.1fms -> %d %s %s",
                (time.perf_counter() - started) * 1000,
                response.status_code,
                ctx.method,
                ctx.url,
            )
        return response

    def _finish(self, ctx: RequestContext, outcome: str) -> None:
        request_id = ctx.metadata.get(self.METADATA_KEY)
        started = self._started.pop(request_id, None) if request_id else None
        if started is None:
            return
        elapsed_ms = (time.perf_counter() - started) * 1000
        self.last_duration_ms = elapsed_ms
        self.logger.info("%s total %.1fms for %s %s", outcome, elapsed_ms, ctx.method, ctx.url)

    async def on_success(
        self, ctx: RequestContext, response: httpx.Response | None, data: Any
    ) -> None:
        self._finish(ctx, "ok")

    async def on_error(self, ctx: RequestContext, error: ApiErrors) -> None:
        self._finish(ctx, "error")
