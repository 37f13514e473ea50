"""Base interfaces for LLM providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TokenUsage:
  """Token counts reported for one model call (or zero for non-LLM stages)."""

  prompt_tokens: int = 0
  completion_tokens: int = 0
  total_tokens: int = 0

  @classmethod
  def from_counts(cls, prompt_tokens: int | None, completion_tokens: int | None, total_tokens: int | None = None) -> TokenUsage:
    prompt = int(prompt_tokens or 0)
    completion = int(completion_tokens or 0)
    total = int(total_tokens) if total_tokens is not None else prompt + completion
    return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

  def __add__(self, other: TokenUsage) -> TokenUsage:
    return TokenUsage(self.prompt_tokens + other.prompt_tokens, self.completion_tokens + other.completion_tokens, self.total_tokens + other.total_tokens)

  def as_dict(self) -> dict[str, int]:
    return {"prompt_tokens": self.prompt_tokens, "completion_tokens": self.completion_tokens, "total_tokens": self.total_tokens}


@dataclass
class JsonGeneration:
  """Parsed JSON returned by a provider along with usage and cost."""

  data: dict[str, Any]
  usage: TokenUsage = field(default_factory=TokenUsage)
  estimated_cost_usd: float = 0.0
  model: str | None = None


class LLMProvider(ABC):
  """Abstract JSON-generating model provider used by agents."""

  name: str

  @abstractmethod
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
    """Return a JSON object generated for the prompt."""

  async def aclose(self) -> None:
    """Release network resources held by the provider."""
    return None
