"""
Server-sent event decoding.

Only `data:` lines are interpreted. Network chunk boundaries never line up with
line boundaries, so the decoder keeps the trailing partial line buffered until
it is completed or the stream ends. Payloads that fail to parse or validate are
skipped; the stream keeps going.
"""

from __future__ import annotations

import codecs
import json
import logging
from collections import deque
from collections.abc import AsyncIterator
from enum import Enum
from types import TracebackType
from typing import Any, Generic, TypeVar

import httpx

from ..schema import Schema

logger = logging.getLogger(__name__)

T = TypeVar("T")

DONE_SENTINEL = "[DONE]"

_SKIP = object()


def extract_data_line(line: str) -> str | None:
    """Return the payload of a `data:` line, or None when the line carries nothing."""
    trimmed = line.strip()
    if not trimmed.startswith("data:"):
        return None
    payload = trimmed[5:].strip()
    if not payload or payload == DONE_SENTINEL:
        return None
    return payload


class SSEDecoder:
    """
    Incremental byte -> line -> value decoder.

    Without a schema each payload is emitted as the raw string. With a schema
    the payload is JSON-decoded and, when `validate` is set, validated.
    """

    def __init__(self, schema: Schema[Any] | None = None, *, validate: bool = True) -> None:
        self._schema = schema
        self._validate = validate
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[Any]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._process(lines)

    def flush(self) -> list[Any]:
        self._buffer += self._decoder.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""
        if not remaining.strip():
            return []
        return self._process(remaining.split("\n"))

    def _process(self, lines: list[str]) -> list[Any]:
        values = []
        for line in lines:
            payload = extract_data_line(line)
            if payload is None:
                continue
            value = self._process_payload(payload)
            if value is not _SKIP:
                values.append(value)
        return values

    def _process_payload(self, payload: str) -> Any:
        if self._schema is None:
            return payload
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON SSE payload: %.200s", payload)
            return _SKIP
        if not self._validate:
            return data
        validation = self._schema.validate(data)
        if not validation.success:
            logger.debug("Skipping SSE payload failing validation: %.200s", payload)
            return _SKIP
        return validation.data


class StreamState(Enum):
    READING = "reading"
    DRAINING = "draining"
    CLOSED = "closed"


class EventStream(Generic[T]):
    """
    Lazy, single-pass async iterator over the decoded values of an SSE response.

    A network chunk is requested only when the consumer needs the next value.
    Closing the stream (explicitly, via `async with`, or by breaking out of an
    `async for` and calling `aclose`) releases the underlying response.

    Example:
        ```python
        result = await api.events({"query": {"interval": 1}})
        async with result.unwrap() as events:
            async for event in events:
                print(event)
        ```
    """

    def __init__(
        self,
        response: httpx.Response,
        *,
        schema: Schema[Any] | None = None,
        validate: bool = True,
    ) -> None:
        self._response = response
        self._chunks: AsyncIterator[bytes] = response.aiter_bytes()
        self._decoder = SSEDecoder(schema, validate=validate)
        self._pending: deque[Any] = deque()
        self.state = StreamState.READING

    @property
    def response(self) -> httpx.Response:
        return self._response

    def __aiter__(self) -> EventStream[T]:
        return self

    async def __anext__(self) -> T:
        while not self._pending:
            if self.state is not StreamState.READING:
                raise StopAsyncIteration
            await self._pull()
        return self._pending.popleft()

    async def _pull(self) -> None:
        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            self.state = StreamState.DRAINING
            self._pending.extend(self._decoder.flush())
            await self._release()
            self.state = StreamState.CLOSED
            return
        except BaseException:
            await self.aclose()
            raise
        self._pending.extend(self._decoder.feed(chunk))

    async def _release(self) -> None:
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()
        await self._response.aclose()

    async def aclose(self) -> None:
        """Stop reading and release the response; buffered values are dropped."""
        if self.state is StreamState.CLOSED:
            return
        self.state = StreamState.CLOSED
        self._pending.clear()
        await self._release()

    async def __aenter__(self) -> EventStream[T]:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
