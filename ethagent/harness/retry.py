"""
Retry Logic: resilience against transient completion-provider failures.

Only the Plan <-> Execute boundary retries by default. This helper is the
opt-in call-level retry used by the Claude provider when
``ETHAGENT_RETRY_MAX_RETRIES`` is above zero:
- exponential backoff with jitter
- only transient errors (429, 5xx, network) are retried
- Retry-After is honored when the API sends it
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Callable, Optional

import anthropic
import structlog

logger = structlog.get_logger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 0,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        exponential_base: float = 2.0,
        jitter_range: float = 0.25,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter_range = jitter_range


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error is transient and worth retrying.

    Retryable: rate limits, 5xx/529, connection and timeout errors.
    Not retryable: 4xx request, auth and permission errors.
    """
    if isinstance(error, (anthropic.APIConnectionError, anthropic.RateLimitError)):
        return True
    if isinstance(error, anthropic.InternalServerError):
        return True
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code in (429, 500, 502, 503, 529)
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(error, OSError):
        return True
    return False


def compute_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: Optional[float] = None,
) -> float:
    """
    Exponential backoff with jitter:
        delay = min(max_delay, base_delay * exponential_base ** attempt) +/- jitter

    A server-provided Retry-After wins (never below 1 second).
    """
    if retry_after is not None and retry_after > 0:
        return max(1.0, retry_after)

    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    jitter = delay * config.jitter_range * (2 * random.random() - 1)
    return max(0.1, delay + jitter)


def _retry_after_seconds(error: Exception) -> Optional[float]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    try:
        value = response.headers.get("retry-after")
    except AttributeError:
        return None
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


async def with_retries(
    func: Callable,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable] = None,
) -> Any:
    """
    Execute an async zero-argument callable with retry logic.

    Non-retryable errors and the final retryable error are re-raised unchanged.
    ``on_retry`` receives (attempt, error, delay).
    """
    if config is None:
        config = RetryConfig()

    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            if not is_retryable_error(e):
                logger.debug(
                    "retry.non_retryable_error",
                    error_type=type(e).__name__,
                    attempt=attempt,
                )
                raise

            if attempt >= config.max_retries:
                if config.max_retries:
                    logger.error(
                        "retry.exhausted",
                        error_type=type(e).__name__,
                        error=str(e)[:200],
                        total_attempts=attempt + 1,
                    )
                raise

            delay = compute_delay(attempt, config, _retry_after_seconds(e))
            logger.warning(
                "retry.attempt",
                error_type=type(e).__name__,
                error=str(e)[:200],
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 1),
            )
            if on_retry:
                on_retry(attempt + 1, e, delay)

            await asyncio.sleep(delay)
            attempt += 1
