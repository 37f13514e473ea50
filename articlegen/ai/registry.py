"""Agent registry keyed by the closed set of pipeline stages."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from articlegen.ai.agents import ProjectManagerAgent, QAAgent, ResearchAgent, SEOAgent, WriterAgent
from articlegen.ai.agents.base import BaseAgent
from articlegen.ai.errors import AgentRegistrationError
from articlegen.jobs.models import PIPELINE_ORDER, AgentType
from articlegen.services.keyword_research import KeywordResearchService
from articlegen.storage.jobs_repo import PageService

logger = logging.getLogger(__name__)


class AgentRegistry:
  """Maps each AgentType to exactly one agent instance.

  Built once at process start and passed into the orchestrator; there is no
  unregistration.
  """

  def __init__(self, agents: Iterable[BaseAgent[Any, Any]] = ()) -> None:
    self._agents: dict[AgentType, BaseAgent[Any, Any]] = {}
    for agent in agents:
      self.register(agent)

  def register(self, agent: BaseAgent[Any, Any]) -> None:
    """Add an agent, rejecting unknown tags and duplicates."""
    agent_type = getattr(agent, "agent_type", None)
    if not isinstance(agent_type, AgentType):
      raise AgentRegistrationError(f"Agent {type(agent).__name__} declares unknown agent type {agent_type!r}.")
    if agent_type in self._agents:
      raise AgentRegistrationError(f"Agent type '{agent_type.value}' is already registered to {self._agents[agent_type].name}.")
    self._agents[agent_type] = agent
    logger.debug("Registered agent %s for %s", agent.name, agent_type.value)

  def get(self, agent_type: AgentType | str) -> BaseAgent[Any, Any] | None:
    try:
      key = AgentType(agent_type)
    except ValueError:
      return None
    return self._agents.get(key)

  def has(self, agent_type: AgentType | str) -> bool:
    return self.get(agent_type) is not None

  def registered_types(self) -> list[AgentType]:
    return [agent_type for agent_type in PIPELINE_ORDER if agent_type in self._agents]

  def all_agents(self) -> list[BaseAgent[Any, Any]]:
    return [self._agents[agent_type] for agent_type in self.registered_types()]

  def pipeline_agents(self, skip: Iterable[AgentType] = ()) -> list[BaseAgent[Any, Any]]:
    """Registered agents in stage order, minus any skipped types."""
    skipped = set(skip)
    return [agent for agent in self.all_agents() if agent.agent_type not in skipped]

  def missing_agents(self) -> list[AgentType]:
    return [agent_type for agent_type in PIPELINE_ORDER if agent_type not in self._agents]

  def describe(self) -> list[dict[str, str]]:
    return [{"type": agent.agent_type.value, "name": agent.name, "description": agent.description} for agent in self.all_agents()]


def build_default_registry(
  *,
  research_service_factory: Callable[[], KeywordResearchService] | None = None,
  page_service: PageService | None = None,
  publisher_name: str = "Editorial Team",
  site_url: str | None = None,
) -> AgentRegistry:
  """Register the five standard pipeline agents."""
  return AgentRegistry(
    [
      ResearchAgent(research_service_factory),
      WriterAgent(),
      SEOAgent(page_service=page_service, publisher_name=publisher_name, site_url=site_url),
      QAAgent(),
      ProjectManagerAgent(publisher_name=publisher_name),
    ]
  )
