"""Shared fixtures for the article pipeline tests."""

from __future__ import annotations

from typing import Any

import pytest

from articlegen.ai.agents.base import AgentContext
from articlegen.ai.providers.base import JsonGeneration, LLMProvider, TokenUsage
from articlegen.jobs.models import ArticleJobRecord, PersonaRecord

ARTICLE_BODY = "\n\n".join(
  [
    "# Home Composting Basics",
    "Home composting turns kitchen scraps into rich soil. It is simple to start and easy to keep going.",
    "## Pick a Bin",
    "A small bin works well for most yards. Put it in a shady spot near the kitchen door.",
    "## Add Greens and Browns",
    "Mix fresh scraps with dry leaves. Keep the pile damp but not wet.",
    "## Turn the Pile",
    "Turn the pile each week. In a few months you will have compost for the garden.",
  ]
)


# Force anyio to use asyncio
@pytest.fixture
def anyio_backend():
  return "asyncio"


class ScriptedProvider(LLMProvider):
  """Return queued JSON payloads in order and record every call."""

  name = "scripted"

  def __init__(self, responses: list[dict[str, Any] | BaseException], usage: TokenUsage | None = None) -> None:
    self._responses = list(responses)
    self._usage = usage or TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150)
    self.calls: list[dict[str, Any]] = []

  async def generate_json(self, *, prompt: str, system_prompt: str | None, model: str, schema: dict[str, Any] | None = None, temperature: float | None = None, max_tokens: int | None = None) -> JsonGeneration:
    self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "model": model, "temperature": temperature, "max_tokens": max_tokens})
    response = self._responses.pop(0)
    if isinstance(response, BaseException):
      raise response
    return JsonGeneration(data=response, usage=self._usage, estimated_cost_usd=0.01, model=model)


@pytest.fixture
def make_job():
  def _make(job_id: str = "job-1", keyword: str = "home composting", **overrides: Any) -> ArticleJobRecord:
    fields: dict[str, Any] = {"id": job_id, "keyword": keyword, "status": "pending", "created_at": "2026-01-01T00:00:00Z", "updated_at": "2026-01-01T00:00:00Z"}
    fields.update(overrides)
    return ArticleJobRecord(**fields)

  return _make


@pytest.fixture
def make_context(make_job):
  def _make(provider: LLMProvider | None = None, *, agent_type: str = "writer", iteration: int = 1, logs: list[tuple[str, str]] | None = None, progress: list[str] | None = None) -> AgentContext:
    persona = PersonaRecord(id=f"persona-{agent_type}", agent_type=agent_type, name="Test persona", model="test-model", is_default=True)

    def _log(level: str, message: str, data: Any = None) -> None:
      if logs is not None:
        logs.append((level, message))

    def _progress(message: str, data: Any = None) -> None:
      if progress is not None:
        progress.append(message)

    return AgentContext(job=make_job(), persona=persona, iteration=iteration, step_id="step-1", llm_provider=provider, log=_log, on_progress=_progress)

  return _make


@pytest.fixture
def scripted_provider():
  return ScriptedProvider
