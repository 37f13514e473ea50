from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
  from articlegen.ai.providers.base import TokenUsage

# USD per million tokens as (input, output), keyed by provider then model.
PricingTable = dict[str, dict[str, tuple[float, float]]]

DEFAULT_PRICING: PricingTable = {
  "anthropic": {
    "claude-opus-4-5": (5.0, 25.0),
    "claude-sonnet-4-5": (3.0, 15.0),
    "claude-haiku-4-5": (1.0, 5.0),
    "claude-sonnet-4-20250514": (3.0, 15.0),
    "claude-opus-4-20250514": (15.0, 75.0),
    "claude-3-5-haiku-20241022": (0.8, 4.0),
  },
  "openai": {
    "gpt-4o": (2.5, 10.0),
    "gpt-4o-mini": (0.15, 0.6),
  },
}


def _normalize_model(model: str) -> tuple[str | None, str]:
  """Split OpenRouter-style ``provider/model`` names into their parts."""
  name = model.strip().lower()
  if "/" in name:
    provider, _, bare = name.partition("/")
    return provider, bare.split(":", 1)[0]
  return None, name


def lookup_rates(model: str, pricing_table: PricingTable | None = None) -> tuple[float, float]:
  """Return (input, output) per-million rates for a model, or zeros when unknown."""
  pricing = pricing_table or DEFAULT_PRICING
  provider, bare = _normalize_model(model)
  if provider and bare in pricing.get(provider, {}):
    return pricing[provider][bare]
  for rates in pricing.values():
    if bare in rates:
      return rates[bare]
  return (0.0, 0.0)


def estimate_cost(model: str, usage: TokenUsage, pricing_table: PricingTable | None = None) -> float:
  """Estimate the USD cost of one call from its token usage."""
  price_in, price_out = lookup_rates(model, pricing_table)
  call_cost = (usage.prompt_tokens / 1_000_000) * price_in
  call_cost += (usage.completion_tokens / 1_000_000) * price_out
  return round(call_cost, 6)
