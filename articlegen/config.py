"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from articlegen.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

DEFAULT_LLM_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "claude-sonnet-4-20250514"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the article generation service."""

  environment: str
  debug: bool
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  pg_dsn: str | None
  pg_connect_timeout: int
  llm_api_key: str | None
  llm_base_url: str
  default_model: str
  dataforseo_api_key: str | None
  retry_max_retries: int
  retry_base_delay_ms: int
  retry_max_delay_ms: int
  step_log_queue_size: int
  default_target_word_count: int
  default_max_iterations: int
  publisher_name: str
  site_url: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value


def _parse_int(name: str, default: int, *, minimum: int | None = None, maximum: int | None = None) -> int:
  """Read an integer env var and enforce bounds with an error naming the variable."""
  raw = os.getenv(name)
  if raw is None or raw.strip() == "":
    return default
  try:
    value = int(raw.strip())
  except ValueError as exc:
    raise ValueError(f"{name} must be an integer.") from exc
  if minimum is not None and value < minimum:
    raise ValueError(f"{name} must be at least {minimum}.")
  if maximum is not None and value > maximum:
    raise ValueError(f"{name} must be at most {maximum}.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("ARTICLEGEN_ENV", "development").strip().lower()

  # Toggle verbose SQL echo and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("ARTICLEGEN_DEBUG"))

  log_max_bytes = _parse_int("ARTICLEGEN_LOG_MAX_BYTES", 5 * 1024 * 1024, minimum=1)
  log_backup_count = _parse_int("ARTICLEGEN_LOG_BACKUP_COUNT", 3, minimum=0)

  retry_max_retries = _parse_int("ARTICLEGEN_RETRY_MAX_RETRIES", 2, minimum=0)
  retry_base_delay_ms = _parse_int("ARTICLEGEN_RETRY_BASE_DELAY_MS", 2000, minimum=0)
  retry_max_delay_ms = _parse_int("ARTICLEGEN_RETRY_MAX_DELAY_MS", 60000, minimum=0)
  if retry_max_delay_ms < retry_base_delay_ms:
    raise ValueError("ARTICLEGEN_RETRY_MAX_DELAY_MS must be greater than or equal to ARTICLEGEN_RETRY_BASE_DELAY_MS.")

  return Settings(
    environment=environment,
    debug=debug,
    log_dir=(os.getenv("ARTICLEGEN_LOG_DIR") or "logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    pg_dsn=_optional_str(os.getenv("ARTICLEGEN_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL")),
    pg_connect_timeout=_parse_int("ARTICLEGEN_PG_CONNECT_TIMEOUT", 10, minimum=1),
    llm_api_key=_optional_str(os.getenv("ARTICLEGEN_LLM_API_KEY")),
    llm_base_url=_optional_str(os.getenv("ARTICLEGEN_LLM_BASE_URL")) or DEFAULT_LLM_BASE_URL,
    default_model=_optional_str(os.getenv("ARTICLEGEN_DEFAULT_MODEL")) or DEFAULT_MODEL,
    dataforseo_api_key=_optional_str(os.getenv("ARTICLEGEN_DATAFORSEO_API_KEY")),
    retry_max_retries=retry_max_retries,
    retry_base_delay_ms=retry_base_delay_ms,
    retry_max_delay_ms=retry_max_delay_ms,
    step_log_queue_size=_parse_int("ARTICLEGEN_STEP_LOG_QUEUE_SIZE", 1000, minimum=1),
    default_target_word_count=_parse_int("ARTICLEGEN_DEFAULT_TARGET_WORD_COUNT", 1500, minimum=300, maximum=10000),
    default_max_iterations=_parse_int("ARTICLEGEN_DEFAULT_MAX_ITERATIONS", 5, minimum=1, maximum=10),
    publisher_name=(os.getenv("ARTICLEGEN_PUBLISHER_NAME") or "Editorial Team").strip(),
    site_url=_optional_str(os.getenv("ARTICLEGEN_SITE_URL")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring LLM or logging configuration."""
  # Keep database configuration isolated so offline scripts don't require unrelated env vars.
  return DatabaseSettings(
    debug=_parse_bool(os.getenv("ARTICLEGEN_DEBUG")),
    pg_dsn=_optional_str(os.getenv("ARTICLEGEN_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL")),
    pg_connect_timeout=_parse_int("ARTICLEGEN_PG_CONNECT_TIMEOUT", 10, minimum=1),
  )
