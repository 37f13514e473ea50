"""Domain models for article generation jobs and their step audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

JobStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]
StepStatus = Literal["pending", "running", "completed", "failed", "skipped"]
LogLevel = Literal["debug", "info", "warn", "error"]
PageStatus = Literal["draft", "published"]

TERMINAL_JOB_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})


class AgentType(StrEnum):
  """Closed set of pipeline stages an agent can implement."""

  RESEARCH = "research"
  WRITER = "writer"
  SEO = "seo"
  QA = "qa"
  PROJECT_MANAGER = "project_manager"


PIPELINE_ORDER: tuple[AgentType, ...] = (AgentType.RESEARCH, AgentType.WRITER, AgentType.SEO, AgentType.QA, AgentType.PROJECT_MANAGER)


@dataclass
class ArticleJobRecord:
  """Represents one end-to-end article generation request."""

  id: str
  keyword: str
  status: JobStatus
  created_at: str
  updated_at: str
  settings: dict[str, Any] = field(default_factory=dict)
  max_iterations: int | None = None
  current_iteration: int = 1
  current_agent: str | None = None
  progress_percent: int = 0
  total_tokens_used: int = 0
  final_output: dict[str, Any] | None = None
  page_id: str | None = None
  error: str | None = None
  started_at: str | None = None
  completed_at: str | None = None


@dataclass(frozen=True)
class StepLogEntry:
  """Structured log line appended to a step during agent execution."""

  timestamp: str
  level: LogLevel
  message: str
  data: Any = None

  def to_dict(self) -> dict[str, Any]:
    return {"timestamp": self.timestamp, "level": self.level, "message": self.message, "data": self.data}


@dataclass
class JobStepRecord:
  """One recorded attempt to run an agent for a job."""

  id: str
  job_id: str
  agent_type: str
  iteration: int
  status: StepStatus
  created_at: str
  persona_id: str | None = None
  input: Any = None
  output: Any = None
  tokens_used: int = 0
  prompt_tokens: int = 0
  completion_tokens: int = 0
  logs: list[StepLogEntry] = field(default_factory=list)
  error: str | None = None
  error_detail: Any = None
  started_at: str | None = None
  completed_at: str | None = None
  duration_ms: int | None = None


@dataclass(frozen=True)
class PersonaRecord:
  """Per-agent configuration: model, prompt override, and sampling parameters."""

  id: str
  agent_type: str
  name: str
  model: str
  system_prompt: str | None = None
  temperature: float | None = None
  max_tokens: int | None = None
  is_default: bool = False


@dataclass(frozen=True)
class PageRecord:
  """A CMS page created from a finished article."""

  id: str
  title: str
  slug: str
  status: PageStatus
  full_path: str | None = None
  description: str | None = None
