"""
Turning a completed transport response into a `Result`.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx

from ..exceptions import ApiError, OutputValidationError, ParseError
from ..result import Err, Ok, Result
from ..schema import Schema
from .sse import EventStream

StatusPredicate = Callable[[int], bool]


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


async def _read_text(response: httpx.Response) -> Result[str, ParseError]:
    try:
        await response.aread()
        return Ok(response.text)
    except (httpx.HTTPError, httpx.StreamError) as e:
        return Err(ParseError(str(e) or "Failed to read response body", cause=e))


def _parse_json(text: str) -> Result[Any, ParseError]:
    try:
        return Ok(json.loads(text))
    except json.JSONDecodeError as e:
        return Err(ParseError(f"Failed to parse JSON: {e}", cause=e))


def parse_error_response(
    text: str,
    status_code: int,
    error_schema: Schema[Any] | None = None,
    should_validate_error: StatusPredicate | None = None,
) -> ApiError[Any]:
    """
    Build the `ApiError` for an error-status response.

    The structured `data` is attached only when an error schema is configured,
    `should_validate_error(status_code)` is true, and the body both parses and
    validates. Any other case yields an error carrying the raw text alone.
    """
    if error_schema is None or should_validate_error is None:
        return ApiError(status_code=status_code, text=text)
    if not should_validate_error(status_code):
        return ApiError(status_code=status_code, text=text)

    parsed = _parse_json(text)
    if isinstance(parsed, Err):
        return ApiError(status_code=status_code, text=text)

    validation = error_schema.validate(parsed.value)
    if not validation.success:
        return ApiError(status_code=status_code, text=text)
    return ApiError(status_code=status_code, text=text, data=validation.data)


async def handle_json_response(
    response: httpx.Response,
    *,
    output_schema: Schema[Any] | None,
    validate_output: bool,
    error_schema: Schema[Any] | None = None,
    should_validate_error: StatusPredicate | None = None,
) -> Result[Any, Any]:
    text = await _read_text(response)
    if isinstance(text, Err):
        return text

    if not _is_success(response.status_code):
        return Err(
            parse_error_response(
                text.value, response.status_code, error_schema, should_validate_error
            )
        )

    parsed = _parse_json(text.value)
    if isinstance(parsed, Err) or not validate_output or output_schema is None:
        return parsed

    validation = output_schema.validate(parsed.value)
    if not validation.success:
        return Err(
            OutputValidationError("The output from the api was invalid", issues=validation.issues)
        )
    return Ok(validation.data)


async def handle_stream_response(
    response: httpx.Response,
    *,
    output_schema: Schema[Any] | None,
    validate_output: bool,
    error_schema: Schema[Any] | None = None,
    should_validate_error: StatusPredicate | None = None,
) -> Result[Any, Any]:
    if not _is_success(response.status_code):
        text = await _read_text(response)
        if isinstance(text, Err):
            return text
        return Err(
            parse_error_response(
                text.value, response.status_code, error_schema, should_validate_error
            )
        )

    return Ok(EventStream(response, schema=output_schema, validate=validate_output))
