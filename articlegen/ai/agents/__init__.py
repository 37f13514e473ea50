"""Agent implementations."""

from articlegen.ai.agents.base import AgentContext, AgentResult, BaseAgent
from articlegen.ai.agents.project_manager import ProjectManagerAgent
from articlegen.ai.agents.qa import QAAgent
from articlegen.ai.agents.research import ResearchAgent
from articlegen.ai.agents.seo import SEOAgent
from articlegen.ai.agents.writer import WriterAgent

__all__ = [
  "AgentContext",
  "AgentResult",
  "BaseAgent",
  "ProjectManagerAgent",
  "QAAgent",
  "ResearchAgent",
  "SEOAgent",
  "WriterAgent",
]
