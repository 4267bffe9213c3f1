"""
Retry controller for transient call failures.

Only `FetchError` (transport raised) and `ApiError` (non-2xx status) are
eligible; validation and parse failures are returned immediately because
retrying cannot change a malformed request or response.

Logger: ``kanonic.clients.retry`` -- retry attempts are logged at DEBUG level.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..exceptions import RetriableError, is_retriable
from ..result import Err, Result
from ..types import Backoff, RetryPolicy

logger = logging.getLogger(__name__)


def compute_delay(policy: RetryPolicy, attempt: int) -> float:
    """
    Compute the delay in milliseconds before retry number `attempt`.

    Args:
        policy: Retry configuration.
        attempt: Zero-based retry index (0 for the first retry).

    Returns:
        Delay in milliseconds.
    """
    if policy.backoff is Backoff.LINEAR:
        return policy.delay_ms * (attempt + 1)
    if policy.backoff is Backoff.EXPONENTIAL:
        return policy.delay_ms * (2**attempt)
    return policy.delay_ms


def _always(_: RetriableError) -> bool:
    return True


async def run_with_retry(
    attempt: Callable[[], Awaitable[Result[Any, Any]]],
    policy: RetryPolicy,
    *,
    on_retry: Callable[[RetriableError], Awaitable[None]] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Result[Any, Any]:
    """
    Run `attempt` until it succeeds or retrying is no longer allowed.

    Args:
        attempt: Coroutine factory producing one attempt's result.
        policy: Retry configuration; at most `policy.times + 1` attempts run.
        on_retry: Awaited with the failing error before each backoff sleep.
        sleep: Sleep function taking seconds (injectable for tests).

    Returns:
        The last attempt's result.
    """
    should_retry = policy.should_retry or _always
    result = await attempt()

    for i in range(policy.times):
        if not isinstance(result, Err):
            break
        error = result.error
        if not is_retriable(error) or not should_retry(error):
            break

        delay_ms = compute_delay(policy, i)
        logger.debug(
            "%s on attempt %d/%d, retrying in %.0fms",
            error.kind.value,
            i + 1,
            policy.times + 1,
            delay_ms,
        )
        if on_retry is not None:
            await on_retry(error)
        await sleep(delay_ms / 1000)
        result = await attempt()

    return result
