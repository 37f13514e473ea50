from __future__ import annotations

import logging

import pytest

from articlegen.ai.pipeline.contracts import JobSettings
from articlegen.jobs.models import AgentType


def test_settings_accept_camel_case_keys() -> None:
  settings = JobSettings.model_validate({"autoPost": True, "maxIterations": 3, "skipAgents": ["research"], "personaOverrides": {"writer": "w-1"}})
  assert settings.auto_post
  assert settings.max_iterations == 3
  assert settings.skips(AgentType.RESEARCH)
  assert settings.persona_overrides == {AgentType.WRITER: "w-1"}


def test_unknown_agent_tags_are_dropped_with_warning(caplog: pytest.LogCaptureFixture) -> None:
  with caplog.at_level(logging.WARNING, logger="articlegen.ai.pipeline.contracts"):
    settings = JobSettings.model_validate({"skipAgents": ["qa", "translator"], "personaOverrides": {"editor": "e-1", "seo": "s-1"}})

  assert settings.skip_agents == [AgentType.QA]
  assert settings.persona_overrides == {AgentType.SEO: "s-1"}
  messages = [record.getMessage() for record in caplog.records]
  assert any("translator" in message for message in messages)
  assert any("'editor'" in message for message in messages)


def test_out_of_range_values_still_fail() -> None:
  with pytest.raises(ValueError):
    JobSettings.model_validate({"maxIterations": 11})
