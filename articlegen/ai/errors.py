"""Shared error types and classification helpers for agent and provider failures."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Any

import httpx
import openai

_RETRYABLE_HINTS: tuple[str, ...] = (
  "rate limit",
  "rate-limit",
  "too many requests",
  "network",
  "timeout",
  "timed out",
  "econnreset",
  "enotfound",
)

_RATE_LIMIT_HINTS: tuple[str, ...] = ("rate limit", "rate-limit", "too many requests")

_OUTPUT_HINTS: tuple[str, ...] = (
  "invalid json",
  "failed to parse",
  "parse json",
  "validation",
)

_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
  TimeoutError,
  ConnectionError,
  asyncio.TimeoutError,
  httpx.TimeoutException,
  httpx.NetworkError,
  openai.APIConnectionError,
  openai.RateLimitError,
)


class AgentConfigurationError(RuntimeError):
  """Raised when a stage cannot run because its agent or persona is missing."""


class AgentRegistrationError(ValueError):
  """Raised when an agent is registered twice or under an unknown tag."""


class ProviderOutputError(RuntimeError):
  """Raised when the model returns output that cannot be parsed or validated."""


class ResearchServiceError(RuntimeError):
  """Raised when the keyword research API returns an error."""

  def __init__(self, message: str, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


def _match_hint(message: str, hints: Iterable[str]) -> bool:
  """Return True when any hint appears in the message."""
  return any(hint in message for hint in hints)


def extract_status_code(exc: BaseException) -> int | None:
  """Pull an HTTP status from the usual exception attributes."""
  for attr in ("status", "status_code", "code"):
    value: Any = getattr(exc, attr, None)
    if isinstance(value, int):
      return value
  response = getattr(exc, "response", None)
  status = getattr(response, "status_code", None)
  if isinstance(status, int):
    return status
  return None


def is_rate_limit_error(exc: BaseException) -> bool:
  """Return True for HTTP 429 or rate-limit wording."""
  if extract_status_code(exc) == 429:
    return True
  return _match_hint(str(exc).lower(), _RATE_LIMIT_HINTS)


def is_retryable_error(exc: BaseException) -> bool:
  """Return True when a failure is transient (rate limit, network, timeout) and worth another attempt."""
  if isinstance(exc, _TRANSIENT_TYPES):
    return True
  if extract_status_code(exc) == 429:
    return True
  return _match_hint(str(exc).lower(), _RETRYABLE_HINTS)


def is_output_error(exc: BaseException) -> bool:
  """Return True when an exception indicates invalid output formatting."""
  if isinstance(exc, ProviderOutputError):
    return True
  return _match_hint(str(exc).lower(), _OUTPUT_HINTS)


def describe_error(exc: BaseException) -> str:
  """Render an exception as a single readable message for step and job records."""
  message = str(exc).strip()
  if not message:
    return type(exc).__name__
  return message
