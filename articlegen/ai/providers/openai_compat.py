"""OpenAI-compatible provider (OpenRouter by default) using the openai SDK."""

from __future__ import annotations

import json
import logging
from typing import Any, Final

from openai import AsyncOpenAI

from articlegen.ai.errors import ProviderOutputError, is_output_error
from articlegen.ai.json_parser import parse_json_with_fallback
from articlegen.ai.providers.base import JsonGeneration, LLMProvider, TokenUsage
from articlegen.ai.utils.cost import PricingTable, estimate_cost

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(LLMProvider):
  """Generate JSON objects through any chat-completions endpoint that supports JSON mode."""

  _DEFAULT_BASE_URL: Final[str] = "https://openrouter.ai/api/v1"
  _REPAIR_ATTEMPTS: Final[int] = 1

  def __init__(
    self,
    *,
    api_key: str | None,
    base_url: str | None = None,
    timeout_seconds: float = 120.0,
    pricing_table: PricingTable | None = None,
    client: AsyncOpenAI | None = None,
  ) -> None:
    self.name: str = "openai-compatible"
    if client is None and not api_key:
      raise ValueError("ARTICLEGEN_LLM_API_KEY environment variable is required")
    # SDK-level retries are disabled; the pipeline retry policy owns backoff and audit steps.
    self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url or self._DEFAULT_BASE_URL, timeout=timeout_seconds, max_retries=0)
    self._pricing_table = pricing_table

  async def generate_json(
    self,
    *,
    prompt: str,
    system_prompt: str | None,
    model: str,
    schema: dict[str, Any] | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
  ) -> JsonGeneration:
    """Request a JSON object, re-prompting once when the response cannot be parsed."""
    system_msg = self._system_message(system_prompt, schema)
    prompt_text = prompt
    usage = TokenUsage()
    last_error: Exception | None = None

    for attempt in range(self._REPAIR_ATTEMPTS + 1):
      content, call_usage = await self._complete(model=model, system_msg=system_msg, prompt=prompt_text, temperature=temperature, max_tokens=max_tokens)
      usage = usage + call_usage
      try:
        parsed = self._parse_object(content)
      except Exception as exc:
        # Only malformed output earns a repair prompt.
        if not is_output_error(exc):
          raise
        last_error = exc
        logger.warning("Model %s returned invalid JSON (attempt %d): %s", model, attempt + 1, exc)
        prompt_text = self._build_json_retry_prompt(prompt_text=prompt, error=exc)
        continue
      return JsonGeneration(data=parsed, usage=usage, estimated_cost_usd=estimate_cost(model, usage, self._pricing_table), model=model)

    raise ProviderOutputError(f"Model {model} returned invalid JSON: {last_error}")

  @staticmethod
  def _parse_object(content: str) -> dict[str, Any]:
    try:
      parsed = parse_json_with_fallback(content)
    except json.JSONDecodeError as exc:
      raise ProviderOutputError(f"Failed to parse JSON: {exc}") from exc
    if not isinstance(parsed, dict):
      raise ProviderOutputError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed

  async def _complete(self, *, model: str, system_msg: str, prompt: str, temperature: float | None, max_tokens: int | None) -> tuple[str, TokenUsage]:
    kwargs: dict[str, Any] = {}
    if temperature is not None:
      kwargs["temperature"] = temperature
    if max_tokens is not None:
      kwargs["max_tokens"] = max_tokens

    response = await self._client.chat.completions.create(
      model=model,
      messages=[{"role": "system", "content": system_msg}, {"role": "user", "content": prompt}],
      response_format={"type": "json_object"},
      **kwargs,
    )

    content = response.choices[0].message.content if response.choices else None
    usage = TokenUsage()
    if response.usage:
      usage = TokenUsage.from_counts(response.usage.prompt_tokens, response.usage.completion_tokens, response.usage.total_tokens)
    logger.debug("Model %s responded with %d chars (tokens=%d)", model, len(content or ""), usage.total_tokens)
    return content or "", usage

  @staticmethod
  def _system_message(system_prompt: str | None, schema: dict[str, Any] | None) -> str:
    parts = [system_prompt or "You are a helpful assistant that outputs valid JSON."]
    if schema:
      # Reinforce the schema in-prompt since JSON mode alone does not enforce structure.
      schema_str = json.dumps(schema, indent=2)
      parts.append(f"You MUST output a single JSON object adhering to this schema:\n```json\n{schema_str}\n```\nOutput valid JSON only, no markdown formatting.")
    return "\n\n".join(parts)

  @staticmethod
  def _build_json_retry_prompt(*, prompt_text: str, error: Exception) -> str:
    """Append parser errors to prompts so retries can fix invalid JSON."""
    suffix = "\n\n".join(
      [
        "Previous response could not be parsed as JSON.",
        f"Parser error: {error}",
        "Return ONLY valid JSON and ensure the schema is followed exactly.",
      ]
    )
    return f"{prompt_text}\n\n{suffix}"

  async def aclose(self) -> None:
    await self._client.close()
