"""Retry-with-backoff wrapper for transient agent and provider failures."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from articlegen.ai.errors import is_retryable_error
from articlegen.config import Settings

T = TypeVar("T")
logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
RetryHook = Callable[[int, BaseException, float], None]


@dataclass(frozen=True)
class RetryPolicy:
  """Bounds and classification for retrying an operation."""

  max_retries: int = 2
  base_delay_ms: int = 2000
  max_delay_ms: int = 60000
  jitter: bool = True
  is_retryable: Callable[[BaseException], bool] = field(default=is_retryable_error, compare=False)

  @classmethod
  def from_settings(cls, settings: Settings) -> RetryPolicy:
    return cls(max_retries=settings.retry_max_retries, base_delay_ms=settings.retry_base_delay_ms, max_delay_ms=settings.retry_max_delay_ms)

  def delay_ms(self, attempt: int) -> float:
    """Return the wait before retry number ``attempt`` (0-based), capped, plus up to 25% jitter."""
    delay = float(min(self.base_delay_ms * (2**attempt), self.max_delay_ms))
    if self.jitter:
      delay += random.uniform(0, delay * 0.25)
    return delay


DEFAULT_RETRY_POLICY = RetryPolicy()


async def with_retry(
  operation: Callable[[], Awaitable[T]],
  policy: RetryPolicy = DEFAULT_RETRY_POLICY,
  *,
  operation_name: str = "operation",
  sleep: Sleep = asyncio.sleep,
  on_retry: RetryHook | None = None,
) -> T:
  """
  Run ``operation`` and retry transient failures with exponential backoff.

  Each retry calls ``operation`` again from scratch. Non-retryable errors and
  the final failure after ``max_retries`` retries propagate unchanged.
  """
  attempt = 0
  while True:
    try:
      result = await operation()
      if attempt > 0:
        logger.info("Operation succeeded after retry: operation=%s, attempt=%d/%d", operation_name, attempt + 1, policy.max_retries + 1)
      return result
    except Exception as exc:
      retryable = policy.is_retryable(exc)
      logger.warning(
        "Operation failed: operation=%s, attempt=%d/%d, retryable=%s, error=%s",
        operation_name,
        attempt + 1,
        policy.max_retries + 1,
        retryable,
        exc,
      )

      # Non-retryable error - fail fast
      if not retryable:
        raise

      # Retryable but out of attempts
      if attempt >= policy.max_retries:
        logger.error("Operation failed after %d attempts: operation=%s - giving up", attempt + 1, operation_name)
        raise

      delay_ms = policy.delay_ms(attempt)
      logger.info("Retrying operation after backoff: operation=%s, next_attempt=%d, backoff_ms=%.1f", operation_name, attempt + 2, delay_ms)
      if on_retry is not None:
        on_retry(attempt + 1, exc, delay_ms)
      await sleep(delay_ms / 1000.0)
      attempt += 1
