"""Provider implementations."""

from articlegen.ai.providers.base import JsonGeneration, LLMProvider, TokenUsage
from articlegen.ai.providers.openai_compat import OpenAICompatibleProvider

__all__ = ["JsonGeneration", "LLMProvider", "OpenAICompatibleProvider", "TokenUsage"]
