from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any

import pytest

from articlegen.ai.agents import ProjectManagerAgent
from articlegen.ai.agents.base import AgentContext, AgentResult, BaseAgent
from articlegen.ai.backoff import RetryPolicy
from articlegen.ai.orchestrator import ArticlePipelineOrchestrator
from articlegen.ai.pipeline.contracts import (
  DimensionScores,
  HeadingAnalysis,
  KeywordDensity,
  QAInput,
  QAIssue,
  QAOutput,
  ResearchInput,
  ResearchOutput,
  SEOInput,
  SEOOutput,
  WriterInput,
  WriterOutput,
)
from articlegen.ai.providers.base import TokenUsage
from articlegen.ai.registry import AgentRegistry
from articlegen.jobs.models import AgentType, PersonaRecord
from articlegen.jobs.progress import ProgressFanout, StepLogSink, make_log_entry
from articlegen.storage.memory_repo import InMemoryJobRepository, InMemoryPageService, InMemoryPersonaRepository, InMemoryStepRepository

KEYWORD = "home composting"
RESEARCH = ResearchOutput(keyword=KEYWORD, related_keywords=["compost bin"], recommended_word_count=1800)
ARTICLE = WriterOutput(title="Home Composting Basics", slug="home-composting-basics", content="## Start\n\n" + "Compost at home. " * 300, excerpt="Compost at home.", word_count=900)
SEO = SEOOutput(
  meta_title="Home Composting Guide",
  meta_description="Everything you need to compost at home.",
  heading_analysis=HeadingAnalysis(is_valid=True),
  keyword_density=KeywordDensity(percentage=1.1, analysis="ok"),
  schema_markup={"@type": "Article", "headline": "Home Composting Basics"},
  optimization_score=84,
)
_DIMS = DimensionScores(readability=80, seo=80, accuracy=80, engagement=80, brand_voice=80)
QA_PASS = QAOutput(passed=True, overall_score=86, dimension_scores=_DIMS)
QA_FAIL = QAOutput(
  passed=False,
  overall_score=55,
  dimension_scores=_DIMS,
  issues=[QAIssue(issue_id="tone-abc12345", category="tone", severity="high", description="Too salesy", suggestion="Tone it down")],
  feedback="Fix tone",
)


def ok(output: Any, tokens: int = 150) -> AgentResult[Any]:
  return AgentResult(success=True, output=output, usage=TokenUsage(prompt_tokens=100, completion_tokens=tokens - 100, total_tokens=tokens) if tokens else TokenUsage())


def qa_fail() -> AgentResult[Any]:
  result = ok(QA_FAIL)
  result.continue_to_next = False
  result.feedback = "Fix tone"
  return result


class _ScriptedAgent(BaseAgent[Any, Any]):
  """Replays outcomes in order; the last one repeats."""

  def __init__(self, outcomes: list[Any]) -> None:
    self._outcomes = list(outcomes)
    self.inputs: list[Any] = []
    self.contexts: list[AgentContext] = []

  async def run(self, input_data: Any, context: AgentContext) -> AgentResult[Any]:
    self.inputs.append(input_data)
    self.contexts.append(context)
    context.log("info", f"{self.name} running iteration {context.iteration}")
    outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
    if isinstance(outcome, BaseException):
      raise outcome
    if callable(outcome):
      outcome = outcome(input_data, context)
      if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome


_MODELS = {
  AgentType.RESEARCH: (ResearchInput, ResearchOutput),
  AgentType.WRITER: (WriterInput, WriterOutput),
  AgentType.SEO: (SEOInput, SEOOutput),
  AgentType.QA: (QAInput, QAOutput),
}


def scripted(agent_type: AgentType, *outcomes: Any) -> _ScriptedAgent:
  input_model, output_model = _MODELS[agent_type]
  attrs = {"agent_type": agent_type, "name": f"Fake {agent_type.value}", "description": "scripted", "input_model": input_model, "output_model": output_model}
  return type(f"Fake{agent_type.name.title()}Agent", (_ScriptedAgent,), attrs)(list(outcomes))


def _personas() -> list[PersonaRecord]:
  return [PersonaRecord(id=f"persona-{agent_type.value}", agent_type=agent_type.value, name=agent_type.value, model="test-model", is_default=True) for agent_type in AgentType]


@dataclass
class Pipeline:
  orchestrator: ArticlePipelineOrchestrator
  jobs: InMemoryJobRepository
  steps: InMemoryStepRepository
  pages: InMemoryPageService
  agents: dict[AgentType, BaseAgent[Any, Any]]
  events: list[tuple[str | None, str, Any]] = field(default_factory=list)
  sleeps: list[float] = field(default_factory=list)

  async def run(self, job):
    await self.jobs.create_job(job)
    return await self.orchestrator.execute(job)

  async def step_summary(self, job_id: str = "job-1") -> list[tuple[str, int, str]]:
    return [(step.agent_type, step.iteration, step.status) for step in await self.steps.list_for_job(job_id)]

  def messages(self) -> list[str]:
    return [message for _, message, _ in self.events]


def build_pipeline(
  *agents: BaseAgent[Any, Any],
  personas: list[PersonaRecord] | None = None,
  page_service: Any = None,
  jobs: InMemoryJobRepository | None = None,
  steps: InMemoryStepRepository | None = None,
  log_sink: StepLogSink | None = None,
) -> Pipeline:
  all_agents = [*agents, ProjectManagerAgent(publisher_name="Acme")]
  jobs = jobs or InMemoryJobRepository()
  steps = steps or InMemoryStepRepository()
  pages = page_service if page_service is not None else InMemoryPageService()
  progress = ProgressFanout()
  pipeline = Pipeline(orchestrator=None, jobs=jobs, steps=steps, pages=pages, agents={agent.agent_type: agent for agent in all_agents})  # type: ignore[arg-type]
  progress.subscribe(lambda agent_type, message, data: pipeline.events.append((agent_type, message, data)))

  async def _sleep(seconds: float) -> None:
    pipeline.sleeps.append(seconds)

  pipeline.orchestrator = ArticlePipelineOrchestrator(
    registry=AgentRegistry(all_agents),
    jobs_repo=jobs,
    steps_repo=steps,
    personas_repo=InMemoryPersonaRepository(_personas() if personas is None else personas),
    page_service=pages,
    retry_policy=RetryPolicy(max_retries=2, base_delay_ms=2000, max_delay_ms=60000, jitter=False),
    progress=progress,
    log_sink=log_sink,
    sleep=_sleep,
  )
  return pipeline


def standard_agents(*, writer: list[Any] | None = None, seo: list[Any] | None = None, qa: list[Any] | None = None) -> list[_ScriptedAgent]:
  return [
    scripted(AgentType.RESEARCH, ok(RESEARCH, tokens=0)),
    scripted(AgentType.WRITER, *(writer or [ok(ARTICLE)])),
    scripted(AgentType.SEO, *(seo or [ok(SEO)])),
    scripted(AgentType.QA, *(qa or [ok(QA_PASS)])),
  ]


@pytest.mark.anyio
async def test_happy_path_completes_in_one_iteration(make_job) -> None:
  pipeline = build_pipeline(*standard_agents())

  result = await pipeline.run(make_job())

  assert result.success
  assert result.iterations == 1
  assert result.total_tokens == 450
  job = result.job
  assert job.status == "completed"
  assert job.progress_percent == 100
  assert job.current_agent is None
  assert job.total_tokens_used == 450
  assert job.completed_at is not None
  assert job.final_output["readyForPublish"] is True
  assert job.final_output["finalArticle"]["metaTitle"] == "Home Composting Guide"
  assert await pipeline.step_summary() == [("research", 1, "completed"), ("writer", 1, "completed"), ("seo", 1, "completed"), ("qa", 1, "completed"), ("project_manager", 1, "completed")]


@pytest.mark.anyio
async def test_steps_record_inputs_usage_and_logs(make_job) -> None:
  pipeline = build_pipeline(*standard_agents())

  await pipeline.run(make_job())

  steps = await pipeline.steps.list_for_job("job-1")
  writer_step = steps[1]
  assert writer_step.persona_id == "persona-writer"
  assert writer_step.input["keyword"] == KEYWORD
  assert writer_step.input["targetWordCount"] == 1800
  assert writer_step.output["title"] == "Home Composting Basics"
  assert (writer_step.tokens_used, writer_step.prompt_tokens, writer_step.completion_tokens) == (150, 100, 50)
  assert [entry.message for entry in writer_step.logs] == ["Fake writer running iteration 1"]
  assert all(step.started_at and step.completed_at for step in steps)


@pytest.mark.anyio
async def test_failed_qa_triggers_revision_with_feedback(make_job) -> None:
  agents = standard_agents(qa=[qa_fail(), qa_fail(), ok(QA_PASS)])
  pipeline = build_pipeline(*agents)

  result = await pipeline.run(make_job())

  assert result.success
  assert result.iterations == 3
  assert result.job.current_iteration == 3
  assert result.total_tokens == 3 * 450
  writer, qa = agents[1], agents[3]
  assert [payload.iteration for payload in writer.inputs] == [1, 2, 3]
  assert writer.inputs[0].qa_feedback is None
  assert writer.inputs[1].qa_feedback == "Fix tone"
  assert writer.inputs[1].previous_article == ARTICLE
  assert writer.inputs[1].is_revision
  assert qa.inputs[0].previous_issues == []
  assert [issue.issue_id for issue in qa.inputs[1].previous_issues] == ["tone-abc12345"]
  assert result.job.final_output["readyForPublish"] is True
  qa_steps = [(iteration, status) for agent_type, iteration, status in await pipeline.step_summary() if agent_type == "qa"]
  assert qa_steps == [(1, "completed"), (2, "completed"), (3, "completed")]


@pytest.mark.anyio
async def test_iteration_ceiling_completes_without_publishable_article(make_job) -> None:
  pipeline = build_pipeline(*standard_agents(qa=[qa_fail()]))

  result = await pipeline.run(make_job(settings={"maxIterations": 2}))

  assert result.success
  assert result.iterations == 2
  final = result.job.final_output
  assert final["readyForPublish"] is False
  assert "QA check failed with score 55/100" in final["validationErrors"]
  assert len([step for step in await pipeline.steps.list_for_job("job-1") if step.agent_type == "writer"]) == 2


@pytest.mark.anyio
async def test_transient_errors_are_retried_as_new_steps(make_job) -> None:
  rate_limited = RuntimeError("429 Too Many Requests")
  pipeline = build_pipeline(*standard_agents(writer=[rate_limited, rate_limited, ok(ARTICLE)]))

  result = await pipeline.run(make_job())

  assert result.success
  assert result.total_tokens == 450
  writer_steps = [step for step in await pipeline.steps.list_for_job("job-1") if step.agent_type == "writer"]
  assert [step.status for step in writer_steps] == ["failed", "failed", "completed"]
  assert writer_steps[0].error == "429 Too Many Requests"
  assert pipeline.sleeps == [2.0, 4.0]
  assert sum(1 for message in pipeline.messages() if message.startswith("Retrying Fake writer")) == 2


@pytest.mark.anyio
async def test_exhausted_retries_fail_the_job(make_job) -> None:
  pipeline = build_pipeline(*standard_agents(writer=[RuntimeError("429 Too Many Requests")]))

  result = await pipeline.run(make_job())

  assert not result.success
  assert not result.cancelled
  assert result.error == "429 Too Many Requests"
  job = result.job
  assert job.status == "failed"
  assert job.error == "429 Too Many Requests"
  assert job.current_agent is None
  assert job.completed_at is not None
  assert await pipeline.step_summary() == [("research", 1, "completed"), ("writer", 1, "failed"), ("writer", 1, "failed"), ("writer", 1, "failed")]


@pytest.mark.anyio
async def test_stage_failure_is_not_retried(make_job) -> None:
  pipeline = build_pipeline(*standard_agents(seo=[AgentResult(success=False, error="Output validation failed: 2 error(s)", usage=TokenUsage(10, 5, 15))]))

  result = await pipeline.run(make_job())

  assert not result.success
  assert result.error == "Output validation failed: 2 error(s)"
  assert result.job.total_tokens_used == 150
  summary = await pipeline.step_summary()
  assert summary[-1] == ("seo", 1, "failed")
  assert len(summary) == 3
  assert pipeline.sleeps == []


@pytest.mark.anyio
async def test_failing_review_stage_fails_the_job(make_job) -> None:
  pipeline = build_pipeline(*standard_agents(qa=[AgentResult(success=False, error="LLM provider is not configured for this pipeline.")]))

  result = await pipeline.run(make_job())

  assert not result.success
  assert result.job.status == "failed"
  assert result.error == "LLM provider is not configured for this pipeline."


@pytest.mark.anyio
async def test_missing_persona_fails_before_any_step(make_job) -> None:
  personas = [persona for persona in _personas() if persona.agent_type != "writer"]
  pipeline = build_pipeline(*standard_agents(), personas=personas)

  result = await pipeline.run(make_job())

  assert not result.success
  assert result.error == "No persona found for agent: writer"
  assert await pipeline.step_summary() == [("research", 1, "completed")]


@pytest.mark.anyio
async def test_missing_agent_fails_the_job(make_job) -> None:
  agents = [agent for agent in standard_agents() if agent.agent_type != AgentType.SEO]
  pipeline = build_pipeline(*agents)

  result = await pipeline.run(make_job())

  assert not result.success
  assert result.error == "Agent not found: seo"


@pytest.mark.anyio
async def test_persona_override_and_fallback(make_job) -> None:
  personas = [*_personas(), PersonaRecord(id="writer-casual", agent_type="writer", name="Casual", model="other-model")]
  pipeline = build_pipeline(*standard_agents(), personas=personas)

  await pipeline.run(make_job(settings={"personaOverrides": {"writer": "writer-casual", "seo": "does-not-exist"}}))

  steps = {step.agent_type: step for step in await pipeline.steps.list_for_job("job-1")}
  assert steps["writer"].persona_id == "writer-casual"
  assert steps["seo"].persona_id == "persona-seo"
  assert pipeline.agents[AgentType.WRITER].contexts[0].persona.model == "other-model"


@pytest.mark.anyio
async def test_unknown_agent_tags_in_settings_are_ignored(make_job) -> None:
  pipeline = build_pipeline(*standard_agents())

  result = await pipeline.run(make_job(settings={"skipAgents": ["translator"], "personaOverrides": {"editor": "e-1"}}))

  assert result.success
  assert len(await pipeline.step_summary()) == 5


@pytest.mark.anyio
async def test_skipped_research_uses_default_word_count(make_job) -> None:
  agents = standard_agents()
  pipeline = build_pipeline(*agents)

  result = await pipeline.run(make_job(settings={"skipAgents": ["research"]}))

  assert result.success
  assert agents[0].inputs == []
  assert agents[1].inputs[0].research_data is None
  assert agents[1].inputs[0].target_word_count == 1500
  assert [agent_type for agent_type, _, _ in await pipeline.step_summary()] == ["writer", "seo", "qa", "project_manager"]


@pytest.mark.anyio
async def test_pinned_target_word_count_wins(make_job) -> None:
  agents = standard_agents()
  pipeline = build_pipeline(*agents)

  await pipeline.run(make_job(settings={"targetWordCount": 2500}))

  assert agents[0].inputs[0].target_word_count == 2500
  assert agents[1].inputs[0].target_word_count == 2500


@pytest.mark.anyio
async def test_skipped_qa_runs_a_single_iteration(make_job) -> None:
  agents = standard_agents(qa=[qa_fail()])
  pipeline = build_pipeline(*agents)

  result = await pipeline.run(make_job(settings={"skipAgents": ["qa"]}))

  assert result.success
  assert result.iterations == 1
  assert len(agents[1].inputs) == 1
  assert result.job.final_output["readyForPublish"] is True


@pytest.mark.anyio
async def test_skipped_writer_yields_unready_placeholder(make_job) -> None:
  agents = standard_agents()
  pipeline = build_pipeline(*agents)

  result = await pipeline.run(make_job(settings={"skipAgents": ["writer"], "autoPost": True}))

  assert result.success
  assert [agent_type for agent_type, _, _ in await pipeline.step_summary()] == ["research"]
  final = result.job.final_output
  assert final["readyForPublish"] is False
  assert final["validationErrors"] == ["Project Manager agent was skipped"]
  assert final["summary"] == "Article assembled without Project Manager validation"
  assert final["finalArticle"]["title"] == KEYWORD
  assert pipeline.pages.created == []


@pytest.mark.anyio
async def test_skipped_project_manager_uses_writer_output(make_job) -> None:
  pipeline = build_pipeline(*standard_agents())

  result = await pipeline.run(make_job(settings={"skipAgents": ["project_manager"]}))

  final = result.job.final_output
  assert final["readyForPublish"] is False
  assert final["finalArticle"]["title"] == "Home Composting Basics"
  assert final["finalArticle"]["metaTitle"] == "Home Composting Guide"


@pytest.mark.anyio
async def test_auto_post_publishes_ready_article(make_job) -> None:
  pipeline = build_pipeline(*standard_agents())

  result = await pipeline.run(make_job(settings={"autoPost": True, "template": "guide", "parentPageId": "parent-1"}))

  assert result.success
  assert len(pipeline.pages.created) == 1
  data = pipeline.pages.created[0]
  assert data["slug"] == "home-composting-basics"
  assert data["status"] == "published"
  assert data["template"] == "guide"
  assert data["parent_id"] == "parent-1"
  assert data["description"] == "Compost at home."
  assert data["metadata"] == {"seo": {"schemaMarkup": SEO.schema_markup}}
  assert result.job.page_id == pipeline.pages.pages[0].id


@pytest.mark.anyio
async def test_auto_post_skips_unready_article(make_job) -> None:
  pipeline = build_pipeline(*standard_agents(qa=[qa_fail()]))

  result = await pipeline.run(make_job(settings={"autoPost": True, "maxIterations": 1}))

  assert result.success
  assert result.job.status == "completed"
  assert pipeline.pages.created == []
  assert result.job.page_id is None
  assert any(message.startswith("Auto-post skipped") for message in pipeline.messages())


@pytest.mark.anyio
async def test_publish_failure_does_not_fail_the_job(make_job) -> None:
  class _BrokenPages(InMemoryPageService):
    async def create_page(self, data: dict[str, Any]):
      raise RuntimeError("cms unavailable")

  pipeline = build_pipeline(*standard_agents(), page_service=_BrokenPages())

  result = await pipeline.run(make_job(settings={"autoPost": True}))

  assert result.success
  assert result.job.status == "completed"
  assert result.job.page_id is None
  assert "Auto-post failed: cms unavailable" in pipeline.messages()


@pytest.mark.anyio
async def test_cancelled_job_is_not_started(make_job) -> None:
  pipeline = build_pipeline(*standard_agents())

  result = await pipeline.run(make_job(status="cancelled"))

  assert result.cancelled
  assert not result.success
  assert result.job.status == "cancelled"
  assert await pipeline.step_summary() == []


@pytest.mark.anyio
async def test_cancellation_is_observed_between_stages(make_job) -> None:
  async def _write_then_cancel(input_data: Any, context: AgentContext) -> AgentResult[Any]:
    await pipeline.jobs.request_cancel(context.job.id)
    return ok(ARTICLE)

  agents = standard_agents(writer=[_write_then_cancel])
  pipeline = build_pipeline(*agents)

  result = await pipeline.run(make_job())

  assert result.cancelled
  assert not result.success
  assert result.error is None
  assert result.job.status == "cancelled"
  assert result.job.current_agent is None
  assert result.job.total_tokens_used == 150
  assert [agent_type for agent_type, _, _ in await pipeline.step_summary()] == ["research", "writer"]
  assert "Pipeline cancelled" in pipeline.messages()


@pytest.mark.anyio
async def test_resumed_job_keeps_iteration_and_tokens(make_job) -> None:
  agents = standard_agents()
  pipeline = build_pipeline(*agents)

  result = await pipeline.run(make_job(current_iteration=2, total_tokens_used=1000))

  assert result.total_tokens == 1450
  assert result.job.total_tokens_used == 1450
  assert agents[1].inputs[0].iteration == 2


@pytest.mark.anyio
async def test_progress_events_follow_stage_order(make_job) -> None:
  pipeline = build_pipeline(*standard_agents())

  await pipeline.run(make_job())

  starts = [agent_type for agent_type, _, data in pipeline.events if isinstance(data, dict) and data.get("event") == "agent_start"]
  assert starts == ["research", "writer", "seo", "qa", "project_manager"]


@pytest.mark.anyio
async def test_injected_log_sink_is_flushed_not_closed(make_job) -> None:
  steps = InMemoryStepRepository()
  sink = StepLogSink(steps)
  pipeline = build_pipeline(*standard_agents(), steps=steps, log_sink=sink)

  await pipeline.run(make_job())

  recorded = await steps.list_for_job("job-1")
  assert sink.written == sum(len(step.logs) for step in recorded)
  assert sink.written > len(recorded)
  assert sink.dropped == 0
  sink.emit(recorded[0].id, make_log_entry("info", "after run"))
  await sink.close()
  assert (await steps.list_for_job("job-1"))[0].logs[-1].message == "after run"


@pytest.mark.anyio
async def test_failure_persistence_errors_are_contained(make_job) -> None:
  class _FlakyJobs(InMemoryJobRepository):
    async def set_status(self, job_id, status, *, error=None, completed_at=None):
      if status == "failed":
        raise RuntimeError("db offline")
      return await super().set_status(job_id, status, error=error, completed_at=completed_at)

  pipeline = build_pipeline(*standard_agents(writer=[AgentResult(success=False, error="writer broke")]), jobs=_FlakyJobs())

  result = await pipeline.run(make_job())

  assert not result.success
  assert result.error == "writer broke"
  assert (await pipeline.jobs.find_by_id("job-1")).status == "processing"


@pytest.mark.anyio
async def test_cancel_during_failing_stage_keeps_cancelled_status(make_job) -> None:
  async def _cancel_then_fail(input_data: Any, context: AgentContext) -> AgentResult[Any]:
    await pipeline.jobs.request_cancel(context.job.id)
    return AgentResult(success=False, error="writer broke")

  pipeline = build_pipeline(*standard_agents(writer=[_cancel_then_fail]))

  result = await pipeline.run(make_job())

  assert result.cancelled
  assert result.error is None
  job = await pipeline.jobs.find_by_id("job-1")
  assert job.status == "cancelled"
  assert job.error is None
  assert job.current_agent is None


@pytest.mark.anyio
async def test_cancel_during_publish_keeps_cancelled_status(make_job) -> None:
  jobs = InMemoryJobRepository()

  class _CancellingPages(InMemoryPageService):
    async def create_page(self, data: dict[str, Any]):
      await jobs.request_cancel("job-1")
      return await super().create_page(data)

  pipeline = build_pipeline(*standard_agents(), jobs=jobs, page_service=_CancellingPages())

  result = await pipeline.run(make_job(settings={"autoPost": True}))

  assert result.cancelled
  assert len(pipeline.pages.created) == 1
  job = await jobs.find_by_id("job-1")
  assert job.status == "cancelled"
  assert job.final_output is None


@pytest.mark.anyio
async def test_cancel_racing_completion_is_not_overwritten(make_job) -> None:
  class _RacingJobs(InMemoryJobRepository):
    async def set_status(self, job_id, status, *, error=None, completed_at=None):
      if status == "completed":
        await self.request_cancel(job_id)
      return await super().set_status(job_id, status, error=error, completed_at=completed_at)

  pipeline = build_pipeline(*standard_agents(), jobs=_RacingJobs())

  result = await pipeline.run(make_job())

  assert result.cancelled
  assert not result.success
  assert (await pipeline.jobs.find_by_id("job-1")).status == "cancelled"


@pytest.mark.anyio
async def test_cancel_before_processing_starts_runs_nothing(make_job) -> None:
  class _LateCancelJobs(InMemoryJobRepository):
    async def start_processing(self, job_id):
      await self.request_cancel(job_id)
      return await super().start_processing(job_id)

  pipeline = build_pipeline(*standard_agents(), jobs=_LateCancelJobs())

  result = await pipeline.run(make_job())

  assert result.cancelled
  assert (await pipeline.jobs.find_by_id("job-1")).status == "cancelled"
  assert await pipeline.step_summary() == []
