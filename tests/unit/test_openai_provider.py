from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from articlegen.ai.errors import ProviderOutputError
from articlegen.ai.providers.base import TokenUsage
from articlegen.ai.providers import openai_compat
from articlegen.ai.providers.openai_compat import OpenAICompatibleProvider
from articlegen.ai.utils.cost import estimate_cost, lookup_rates


def _response(content: str, prompt_tokens: int = 1000, completion_tokens: int = 500) -> SimpleNamespace:
  usage = SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, total_tokens=prompt_tokens + completion_tokens)
  return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))], usage=usage)


def _client(*responses: SimpleNamespace) -> MagicMock:
  client = MagicMock()
  client.chat.completions.create = AsyncMock(side_effect=list(responses))
  return client


@pytest.mark.anyio
async def test_parses_fenced_json_and_reports_usage() -> None:
  client = _client(_response('```json\n{"title": "Compost"}\n```'))
  provider = OpenAICompatibleProvider(api_key=None, client=client)

  result = await provider.generate_json(prompt="Write", system_prompt="Be terse", model="anthropic/claude-sonnet-4-5", schema={"type": "object"}, temperature=0.2, max_tokens=100)

  assert result.data == {"title": "Compost"}
  assert result.usage == TokenUsage(prompt_tokens=1000, completion_tokens=500, total_tokens=1500)
  assert result.estimated_cost_usd == pytest.approx(0.0105)
  kwargs = client.chat.completions.create.await_args.kwargs
  assert kwargs["response_format"] == {"type": "json_object"}
  assert kwargs["temperature"] == 0.2
  assert "adhering to this schema" in kwargs["messages"][0]["content"]


@pytest.mark.anyio
async def test_repairs_once_after_invalid_json() -> None:
  client = _client(_response("not json at all"), _response('{"ok": true}', 10, 5))
  provider = OpenAICompatibleProvider(api_key=None, client=client)

  result = await provider.generate_json(prompt="Write", system_prompt=None, model="unknown-model")

  assert result.data == {"ok": True}
  assert result.usage.total_tokens == 1515
  assert result.estimated_cost_usd == 0.0
  retry_prompt = client.chat.completions.create.await_args_list[1].kwargs["messages"][1]["content"]
  assert "Previous response could not be parsed as JSON." in retry_prompt


@pytest.mark.anyio
async def test_raises_after_failed_repair_attempt() -> None:
  client = _client(_response("[1, 2]"), _response("still not json"))
  provider = OpenAICompatibleProvider(api_key=None, client=client)

  with pytest.raises(ProviderOutputError, match="returned invalid JSON"):
    await provider.generate_json(prompt="Write", system_prompt=None, model="gpt-4o")


@pytest.mark.anyio
async def test_unrelated_parser_errors_skip_repair(monkeypatch: pytest.MonkeyPatch) -> None:
  def _explode(_content: str):
    raise RuntimeError("quota exhausted")

  monkeypatch.setattr(openai_compat, "parse_json_with_fallback", _explode)
  client = _client(_response('{"ok": true}'), _response('{"ok": true}'))
  provider = OpenAICompatibleProvider(api_key=None, client=client)

  with pytest.raises(RuntimeError, match="quota exhausted"):
    await provider.generate_json(prompt="Write", system_prompt=None, model="gpt-4o")
  assert client.chat.completions.create.await_count == 1


def test_requires_api_key_without_client() -> None:
  with pytest.raises(ValueError, match="ARTICLEGEN_LLM_API_KEY"):
    OpenAICompatibleProvider(api_key=None)


def test_pricing_lookup_handles_router_prefixes() -> None:
  assert lookup_rates("openai/gpt-4o-mini") == (0.15, 0.6)
  assert lookup_rates("anthropic/claude-haiku-4-5:beta") == (1.0, 5.0)
  assert lookup_rates("gpt-4o") == (2.5, 10.0)
  assert lookup_rates("mystery") == (0.0, 0.0)
  assert estimate_cost("gpt-4o", TokenUsage(1_000_000, 100_000, 1_100_000)) == 3.5
