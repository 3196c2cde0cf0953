from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from claude_web_client.errors import TransportError

T = TypeVar("T")


def _on_retry(retry_state: RetryCallState) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = str(exc) if exc else "Unknown"
    logger.warning(f"{reason}. Retrying in {wait:.1f}s (attempt {attempt})...")


def transport_retry_kwargs(attempts: int, *, min_wait: float = 1, max_wait: float = 30) -> dict:
    return {
        "retry": retry_if_exception_type(TransportError),
        "wait": wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        "stop": stop_after_attempt(attempts),
        "before_sleep": _on_retry,
        "reraise": True,
    }


async def call_with_retries(
    call: Callable[[], Awaitable[T]],
    attempts: int,
    **retry_kwargs,
) -> T:
    """Run ``call``, retrying on TransportError up to ``attempts`` times in total.

    With ``attempts <= 1`` the call is made exactly once.
    """
    if attempts <= 1:
        return await call()
    retrying = AsyncRetrying(**transport_retry_kwargs(attempts, **retry_kwargs))
    return await retrying(call)
