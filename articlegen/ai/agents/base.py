"""Base class and shared result types for pipeline agents."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from articlegen.ai.errors import AgentConfigurationError, describe_error, is_retryable_error
from articlegen.ai.providers.base import LLMProvider, TokenUsage
from articlegen.jobs.models import AgentType, ArticleJobRecord, PersonaRecord

InputT = TypeVar("InputT", bound=BaseModel)
OutputT = TypeVar("OutputT", bound=BaseModel)

LogFn = Callable[..., None]
ProgressFn = Callable[..., None]

logger = logging.getLogger(__name__)


def _noop(*_args: Any, **_kwargs: Any) -> None:
  return None


@dataclass
class AgentResult(Generic[OutputT]):
  """In-memory result of one agent execution."""

  success: bool
  output: OutputT | None = None
  usage: TokenUsage = field(default_factory=TokenUsage)
  error: str | None = None
  feedback: str | None = None
  continue_to_next: bool = True
  estimated_cost_usd: float = 0.0


@dataclass
class AgentContext:
  """Per-attempt dependencies handed to an agent."""

  job: ArticleJobRecord
  persona: PersonaRecord
  iteration: int
  step_id: str | None = None
  llm_provider: LLMProvider | None = None
  log: LogFn = _noop
  on_progress: ProgressFn = _noop

  def require_provider(self) -> LLMProvider:
    if self.llm_provider is None:
      raise AgentConfigurationError("LLM provider is not configured for this pipeline.")
    return self.llm_provider


class BaseAgent(ABC, Generic[InputT, OutputT]):
  """Uniform contract every pipeline stage implements."""

  agent_type: ClassVar[AgentType]
  name: ClassVar[str]
  description: ClassVar[str]
  input_model: ClassVar[type[BaseModel]]
  output_model: ClassVar[type[BaseModel]]

  def validate_input(self, payload: Any) -> bool:
    """Cheap structural check; returns False instead of raising on malformed input."""
    if isinstance(payload, self.input_model):
      return True
    try:
      self.input_model.model_validate(payload)
    except (ValidationError, TypeError, ValueError):
      return False
    return True

  def output_schema(self) -> dict[str, Any]:
    return self.output_model.model_json_schema(by_alias=True)

  async def execute(self, payload: Any, context: AgentContext) -> AgentResult[OutputT]:
    """Run the agent, converting expected failures into ``success=False`` results.

    Transient provider failures are re-raised so the retry policy can run a new attempt.
    """
    try:
      data = payload if isinstance(payload, self.input_model) else self.input_model.model_validate(payload)
    except ValidationError as exc:
      return self._failure(f"Invalid input for {self.agent_type.value} agent: {exc.error_count()} validation error(s)")

    try:
      return await self.run(data, context)  # type: ignore[arg-type]
    except Exception as exc:
      if is_retryable_error(exc):
        context.log("warn", f"{self.name} hit a transient error: {describe_error(exc)}")
        raise
      message = describe_error(exc)
      context.log("error", f"{self.name} failed: {message}", {"type": type(exc).__name__})
      logger.warning("Agent %s failed for job %s: %s", self.agent_type.value, context.job.id, message, exc_info=True)
      return self._failure(message)

  @abstractmethod
  async def run(self, input_data: InputT, context: AgentContext) -> AgentResult[OutputT]:
    """Perform the stage's work on validated input."""

  def _success(self, output: OutputT, usage: TokenUsage | None = None, *, continue_to_next: bool = True, estimated_cost_usd: float = 0.0) -> AgentResult[OutputT]:
    return AgentResult(success=True, output=output, usage=usage or TokenUsage(), continue_to_next=continue_to_next, estimated_cost_usd=estimated_cost_usd)

  def _failure(self, error: str, usage: TokenUsage | None = None, *, estimated_cost_usd: float = 0.0) -> AgentResult[OutputT]:
    return AgentResult(success=False, output=None, usage=usage or TokenUsage(), error=error, continue_to_next=False, estimated_cost_usd=estimated_cost_usd)

  def _validate_output(self, raw: Any, context: AgentContext, usage: TokenUsage | None = None, cost: float = 0.0) -> AgentResult[OutputT]:
    """Validate a candidate output, failing the stage (tokens reported, not counted) when it is malformed."""
    try:
      output = self.output_model.model_validate(raw)
    except ValidationError as exc:
      context.log("error", "Output validation failed", {"errors": exc.errors(include_url=False, include_context=False)})
      return self._failure(f"Output validation failed: {exc.error_count()} error(s)", usage, estimated_cost_usd=cost)
    return self._success(output, usage, estimated_cost_usd=cost)  # type: ignore[arg-type]


def camelize_keys(data: dict[str, Any]) -> dict[str, Any]:
  """Normalize top-level snake_case keys from model output to the camelCase aliases."""
  return {to_camel(key) if "_" in key else key: value for key, value in data.items()}
