"""
Timeout + bounded exponential-backoff retry for provider calls.

Only transient provider failures (``ProviderError`` / ``ProviderTimeout``) are
retried. Validation and policy failures never reach this layer.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from insight_copilot.core.config import get_settings
from insight_copilot.core.errors import ProviderError, ProviderTimeout
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_WAIT = wait_exponential(multiplier=0.5, min=0.5, max=8)


async def call_with_retry(
    provider: str,
    fn: Callable[[], Awaitable[T]],
    *,
    timeout_s: float | None = None,
    attempts: int | None = None,
    wait=DEFAULT_WAIT,
) -> T:
    """Await ``fn()`` with a per-attempt timeout, retrying transient errors.

    Parameters
    ----------
    provider : str
        Name used in logs and error messages (e.g. ``"embeddings"``).
    fn : callable
        Zero-argument coroutine factory; called once per attempt.
    timeout_s, attempts : optional
        Override ``provider_timeout_s`` / ``provider_max_retries`` from settings.
    """
    settings = get_settings()
    timeout_s = timeout_s or settings.provider_timeout_s
    attempts = max(1, attempts or settings.provider_max_retries)

    async def _once() -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=timeout_s)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(provider, timeout_s) from exc

    def _log_retry(retry_state) -> None:
        logger.warning(
            "Provider %s failed (attempt %d/%d): %s -- retrying",
            provider, retry_state.attempt_number, attempts, retry_state.outcome.exception(),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait,
        retry=retry_if_exception_type(ProviderError),
        before_sleep=_log_retry,
        reraise=True,
    )
    return await retrying(_once)
