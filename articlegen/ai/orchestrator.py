"""Orchestration for the article pipeline.

Research runs once, then Writer, SEO and QA repeat while QA fails, bounded by
the job's iteration ceiling. The Project Manager assembles the final article
and, when requested and ready, it is published as a page.

Every agent attempt is recorded as its own Step, including retried attempts.
Cancellation is checked only between stages.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from articlegen.ai.agents.base import AgentContext, AgentResult, BaseAgent
from articlegen.ai.backoff import DEFAULT_RETRY_POLICY, RetryPolicy, Sleep, with_retry
from articlegen.ai.errors import describe_error
from articlegen.ai.pipeline.contracts import (
  DEFAULT_MAX_ITERATIONS,
  DEFAULT_TARGET_WORD_COUNT,
  META_DESCRIPTION_MAX_CHARS,
  META_TITLE_MAX_CHARS,
  FinalArticle,
  JobSettings,
  ProjectManagerInput,
  ProjectManagerOutput,
  QAInput,
  QAOutput,
  ResearchInput,
  ResearchOutput,
  SEOInput,
  SEOOutput,
  WriterInput,
  WriterOutput,
)
from articlegen.ai.providers.base import LLMProvider
from articlegen.ai.registry import AgentRegistry
from articlegen.ai.utils.text_metrics import generate_slug
from articlegen.jobs.models import AgentType, ArticleJobRecord, LogLevel, PersonaRecord
from articlegen.jobs.progress import ProgressFanout, StepLogSink, make_log_entry, mirror_step_log
from articlegen.storage.jobs_repo import JobRepository, PageService, PersonaRepository, StepRepository

logger = logging.getLogger(__name__)

STAGE_PROGRESS: dict[AgentType, int] = {
  AgentType.RESEARCH: 20,
  AgentType.WRITER: 45,
  AgentType.SEO: 65,
  AgentType.QA: 85,
  AgentType.PROJECT_MANAGER: 95,
}
PM_SKIPPED_ERROR = "Project Manager agent was skipped"


def _now_iso() -> str:
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _dump(payload: BaseModel | None) -> Any:
  return payload.model_dump(mode="json", by_alias=True) if payload is not None else None


@dataclass(frozen=True)
class PipelineResult:
  """Outcome of one ``execute`` call; expected failures never raise."""

  success: bool
  job: ArticleJobRecord
  error: str | None = None
  iterations: int = 0
  total_tokens: int = 0
  cancelled: bool = False


class _StageFailed(Exception):
  """A stage returned ``success=False`` or could not be run."""


class _PipelineCancelled(Exception):
  """Cancellation was observed at a checkpoint."""


@dataclass
class _RunState:
  """Mutable state for one pipeline run."""

  job: ArticleJobRecord
  settings: JobSettings = field(default_factory=JobSettings)
  iteration: int = 1
  total_tokens: int = 0
  research: ResearchOutput | None = None
  article: WriterOutput | None = None
  seo: SEOOutput | None = None
  qa: QAOutput | None = None
  qa_feedback: str | None = None


class ArticlePipelineOrchestrator:
  """Runs one article job through the agent pipeline."""

  def __init__(
    self,
    *,
    registry: AgentRegistry,
    jobs_repo: JobRepository,
    steps_repo: StepRepository,
    personas_repo: PersonaRepository,
    llm_provider: LLMProvider | None = None,
    page_service: PageService | None = None,
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    progress: ProgressFanout | None = None,
    log_sink: StepLogSink | None = None,
    default_target_word_count: int = DEFAULT_TARGET_WORD_COUNT,
    default_max_iterations: int = DEFAULT_MAX_ITERATIONS,
    log_queue_size: int = 1000,
    sleep: Sleep = asyncio.sleep,
  ) -> None:
    self._registry = registry
    self._jobs_repo = jobs_repo
    self._steps_repo = steps_repo
    self._personas_repo = personas_repo
    self._llm_provider = llm_provider
    self._page_service = page_service
    self._retry_policy = retry_policy
    self._progress = progress or ProgressFanout()
    self._log_sink = log_sink
    self._default_target_word_count = default_target_word_count
    self._default_max_iterations = default_max_iterations
    self._log_queue_size = log_queue_size
    self._sleep = sleep

  async def execute(self, job: ArticleJobRecord) -> PipelineResult:
    """Run the job to completion, failure or cancellation."""
    if job.status == "cancelled" or await self._jobs_repo.is_cancelled(job.id):
      logger.info("Job %s is cancelled; skipping pipeline", job.id)
      self._progress.on_cancelled()
      current = await self._jobs_repo.find_by_id(job.id) or job
      return PipelineResult(success=False, job=current, iterations=current.current_iteration, total_tokens=current.total_tokens_used, cancelled=True)

    sink = self._log_sink or StepLogSink(self._steps_repo, queue_size=self._log_queue_size)
    try:
      return await self._run(job, sink)
    finally:
      # Drain step logs so the audit trail is complete when execute returns.
      if self._log_sink is None:
        await sink.close()
      else:
        await sink.flush()

  async def _run(self, job: ArticleJobRecord, sink: StepLogSink) -> PipelineResult:
    state = _RunState(job=job, iteration=max(1, job.current_iteration or 1), total_tokens=job.total_tokens_used or 0)
    logger.info("Starting pipeline for job %s (keyword=%r)", job.id, job.keyword)

    try:
      state.settings = JobSettings.model_validate(job.settings or {})
      await self._jobs_repo.start_processing(job.id)
      max_iterations = state.settings.max_iterations or job.max_iterations or self._default_max_iterations
      state.iteration = min(state.iteration, max_iterations)

      await self._checkpoint(state)
      result = await self._run_stage(state, sink, AgentType.RESEARCH, ResearchInput(keyword=job.keyword, target_word_count=state.settings.target_word_count or None))
      if result is not None:
        state.research = result.output

      target_word_count = state.settings.target_word_count or (state.research.recommended_word_count if state.research else None) or self._default_target_word_count

      await self._revision_loop(state, sink, target_word_count, max_iterations)

      await self._checkpoint(state)
      final = await self._assemble(state, sink)
      page_id = await self._maybe_publish(state, final)
      await self._checkpoint(state)
      return await self._complete(state, final, page_id)
    except _PipelineCancelled:
      return await self._cancel(state)
    except _StageFailed as exc:
      return await self._fail(state, str(exc))
    except Exception as exc:
      logger.exception("Pipeline for job %s raised unexpectedly", job.id)
      return await self._fail(state, describe_error(exc))

  async def _revision_loop(self, state: _RunState, sink: StepLogSink, target_word_count: int, max_iterations: int) -> None:
    job = state.job
    while state.iteration <= max_iterations:
      await self._checkpoint(state)
      logger.info("Job %s starting iteration %d/%d", job.id, state.iteration, max_iterations)
      await self._jobs_repo.update_progress(job.id, current_iteration=state.iteration)

      writer_input = WriterInput(
        keyword=job.keyword,
        research_data=state.research,
        target_word_count=target_word_count,
        qa_feedback=state.qa_feedback,
        previous_article=state.article,
        iteration=state.iteration,
        context=state.settings.context,
      )
      writer = await self._run_stage(state, sink, AgentType.WRITER, writer_input)
      if writer is None:
        # SEO, QA and assembly all need a draft.
        return
      state.article = writer.output

      await self._checkpoint(state)
      seo = await self._run_stage(state, sink, AgentType.SEO, SEOInput(keyword=job.keyword, article=state.article, research_data=state.research))
      if seo is not None:
        state.seo = seo.output

      await self._checkpoint(state)
      previous_issues = state.qa.issues if state.qa is not None else []
      qa = await self._run_stage(state, sink, AgentType.QA, QAInput(keyword=job.keyword, article=state.article, seo_data=state.seo, iteration=state.iteration, previous_issues=previous_issues))
      if qa is None:
        return
      state.qa = qa.output

      if state.qa is None or state.qa.passed:
        logger.info("Job %s passed QA on iteration %d", job.id, state.iteration)
        return
      if state.iteration >= max_iterations:
        logger.warning("Job %s failed QA on final iteration %d; continuing with best effort", job.id, state.iteration)
        return

      logger.info("Job %s failed QA (score %d); preparing revision", job.id, state.qa.overall_score)
      state.qa_feedback = qa.feedback or state.qa.feedback
      state.iteration += 1

  async def _assemble(self, state: _RunState, sink: StepLogSink) -> ProjectManagerOutput:
    if state.article is not None:
      pm_input = ProjectManagerInput(keyword=state.job.keyword, article=state.article, seo_data=state.seo, qa_data=state.qa, settings=state.settings)
      result = await self._run_stage(state, sink, AgentType.PROJECT_MANAGER, pm_input)
      if result is not None and result.output is not None:
        return result.output
    return self._synthesize_final_output(state)

  def _synthesize_final_output(self, state: _RunState) -> ProjectManagerOutput:
    """Minimal not-ready output used when the Project Manager did not run."""
    article, seo, keyword = state.article, state.seo, state.job.keyword
    title = (article.title if article else "") or keyword
    excerpt = article.excerpt if article else ""
    final_article = FinalArticle(
      title=title,
      slug=(article.slug if article else "") or generate_slug(title),
      content=article.content if article else "",
      excerpt=excerpt,
      meta_title=seo.meta_title if seo else title[:META_TITLE_MAX_CHARS],
      meta_description=seo.meta_description if seo else excerpt[:META_DESCRIPTION_MAX_CHARS],
      schema_markup=seo.schema_markup if seo else {},
      template=state.settings.template,
      status="draft",
      focus_keyword=keyword,
      word_count=article.word_count if article else 0,
    )
    return ProjectManagerOutput(ready_for_publish=False, validation_errors=[PM_SKIPPED_ERROR], final_article=final_article, summary="Article assembled without Project Manager validation")

  async def _maybe_publish(self, state: _RunState, final: ProjectManagerOutput) -> str | None:
    """Create a page when auto-post is on and the article is ready; failures never fail the job."""
    if not state.settings.auto_post:
      return None
    if not final.ready_for_publish:
      self._progress.on_progress(None, "Auto-post skipped: article is not ready for publish", {"validationErrors": final.validation_errors})
      return None
    if self._page_service is None:
      logger.warning("Auto-post requested for job %s but no page service is configured", state.job.id)
      self._progress.on_progress(None, "Auto-post skipped: page publishing is not configured")
      return None

    article = final.final_article
    page_data = {
      "title": article.title,
      "slug": article.slug,
      "content": article.content,
      "description": article.excerpt,
      "template": article.template,
      "status": article.status,
      "meta_title": article.meta_title,
      "meta_description": article.meta_description,
      "focus_keyword": article.focus_keyword,
      "parent_id": state.settings.parent_page_id,
      "metadata": {"seo": {"schemaMarkup": article.schema_markup}},
    }
    try:
      page = await self._page_service.create_page(page_data)
    except Exception as exc:
      logger.warning("Auto-post failed for job %s: %s", state.job.id, exc, exc_info=True)
      self._progress.on_progress(None, f"Auto-post failed: {describe_error(exc)}")
      return None
    logger.info("Job %s published page %s", state.job.id, page.id)
    self._progress.on_progress(None, f"Article published as page {page.id}", {"pageId": page.id})
    return page.id

  async def _run_stage(self, state: _RunState, sink: StepLogSink, agent_type: AgentType, payload: BaseModel) -> AgentResult[Any] | None:
    """Run one stage with retries; returns None when the stage is skipped."""
    job = state.job
    if state.settings.skips(agent_type):
      logger.info("Job %s skipping %s agent", job.id, agent_type.value)
      self._progress.on_progress(agent_type.value, f"{agent_type.value} skipped")
      return None

    agent = self._registry.get(agent_type)
    if agent is None:
      raise _StageFailed(f"Agent not found: {agent_type.value}")
    persona = await self._resolve_persona(agent_type, state.settings)
    if persona is None:
      raise _StageFailed(f"No persona found for agent: {agent_type.value}")

    def _on_retry(attempt: int, exc: BaseException, delay_ms: float) -> None:
      self._progress.on_progress(agent_type.value, f"Retrying {agent.name} after transient error (retry {attempt}): {describe_error(exc)}", {"delayMs": round(delay_ms)})

    async def _attempt() -> AgentResult[Any]:
      return await self._run_agent(state, sink, agent, payload, persona)

    try:
      result = await with_retry(_attempt, self._retry_policy, operation_name=f"{agent_type.value} agent (job {job.id})", sleep=self._sleep, on_retry=_on_retry)
    except Exception as exc:
      raise _StageFailed(describe_error(exc)) from exc

    if not result.success or result.output is None:
      raise _StageFailed(result.error or f"{agent.name} failed")

    # Only successful stages count toward the running total.
    state.total_tokens += result.usage.total_tokens
    await self._jobs_repo.update_progress(job.id, total_tokens_used=state.total_tokens, progress_percent=STAGE_PROGRESS[agent_type])
    return result

  async def _run_agent(self, state: _RunState, sink: StepLogSink, agent: BaseAgent[Any, Any], payload: BaseModel, persona: PersonaRecord) -> AgentResult[Any]:
    """One recorded attempt: create the Step, run the agent, record the outcome."""
    job, agent_type = state.job, agent.agent_type

    step = await self._steps_repo.create(job_id=job.id, agent_type=agent_type.value, persona_id=persona.id, iteration=state.iteration, input=_dump(payload))
    await self._jobs_repo.update_progress(job.id, current_agent=agent_type.value)
    self._progress.on_agent_start(agent_type.value, state.iteration)
    await self._steps_repo.start(step.id)
    context = self._build_context(state, sink, agent_type, persona, step.id)

    if not agent.validate_input(payload):
      message = f"Invalid input for {agent_type.value} agent"
      await self._steps_repo.fail(step.id, message)
      self._progress.on_agent_complete(agent_type.value, success=False)
      return AgentResult(success=False, error=message, continue_to_next=False)

    try:
      result = await agent.execute(payload, context)
    except Exception as exc:
      # Record the attempt before the retry policy decides what happens next.
      await self._steps_repo.fail(step.id, describe_error(exc), {"type": type(exc).__name__})
      self._progress.on_agent_complete(agent_type.value, success=False)
      raise

    if result.success:
      usage = result.usage
      await self._steps_repo.complete(step.id, output=_dump(result.output), tokens_used=usage.total_tokens, prompt_tokens=usage.prompt_tokens, completion_tokens=usage.completion_tokens)
    else:
      await self._steps_repo.fail(step.id, result.error or "Unknown error", {"usage": result.usage.as_dict()})
    self._progress.on_agent_complete(agent_type.value, success=result.success, tokens=result.usage.total_tokens)
    return result

  async def _resolve_persona(self, agent_type: AgentType, settings: JobSettings) -> PersonaRecord | None:
    override_id = settings.persona_overrides.get(agent_type)
    if override_id:
      persona = await self._personas_repo.find_by_id(override_id)
      if persona is not None:
        return persona
      logger.warning("Persona override %s for %s not found; using default", override_id, agent_type.value)
    return await self._personas_repo.find_default(agent_type.value)

  def _build_context(self, state: _RunState, sink: StepLogSink, agent_type: AgentType, persona: PersonaRecord, step_id: str) -> AgentContext:
    def _log(level: LogLevel, message: str, data: Any = None) -> None:
      entry = make_log_entry(level, message, data)
      mirror_step_log(agent_type.value, entry)
      sink.emit(step_id, entry)

    def _on_progress(message: str, data: Any = None) -> None:
      self._progress.on_progress(agent_type.value, message, data)

    return AgentContext(job=state.job, persona=persona, iteration=state.iteration, step_id=step_id, llm_provider=self._llm_provider, log=_log, on_progress=_on_progress)

  async def _checkpoint(self, state: _RunState) -> None:
    if await self._jobs_repo.is_cancelled(state.job.id):
      raise _PipelineCancelled()

  async def _complete(self, state: _RunState, final: ProjectManagerOutput, page_id: str | None) -> PipelineResult:
    job_id = state.job.id
    await self._jobs_repo.set_final_output(job_id, _dump(final), page_id)
    await self._jobs_repo.update_progress(job_id, progress_percent=100, clear_current_agent=True, total_tokens_used=state.total_tokens)
    await self._jobs_repo.set_status(job_id, "completed", completed_at=_now_iso())
    # The repository refuses the transition when a cancel landed first.
    if await self._jobs_repo.is_cancelled(job_id):
      return await self._cancel(state)
    logger.info("Job %s completed in %d iteration(s) using %d tokens", job_id, state.iteration, state.total_tokens)
    current = await self._jobs_repo.find_by_id(job_id) or state.job
    return PipelineResult(success=True, job=current, iterations=state.iteration, total_tokens=state.total_tokens)

  async def _cancel(self, state: _RunState) -> PipelineResult:
    job_id = state.job.id
    logger.info("Job %s cancelled at iteration %d", job_id, state.iteration)
    await self._jobs_repo.update_progress(job_id, clear_current_agent=True, total_tokens_used=state.total_tokens)
    self._progress.on_cancelled()
    current = await self._jobs_repo.find_by_id(job_id) or state.job
    return PipelineResult(success=False, job=current, iterations=state.iteration, total_tokens=state.total_tokens, cancelled=True)

  async def _fail(self, state: _RunState, error: str) -> PipelineResult:
    job_id = state.job.id
    current = state.job
    try:
      if await self._jobs_repo.is_cancelled(job_id):
        logger.info("Job %s was cancelled before its failure could be recorded: %s", job_id, error)
        return await self._cancel(state)
      logger.error("Job %s failed: %s", job_id, error)
      await self._jobs_repo.set_status(job_id, "failed", error=error, completed_at=_now_iso())
      await self._jobs_repo.update_progress(job_id, clear_current_agent=True, total_tokens_used=state.total_tokens)
      current = await self._jobs_repo.find_by_id(job_id) or current
    except Exception:
      logger.exception("Could not persist failure for job %s", job_id)
    return PipelineResult(success=False, job=current, error=error, iterations=state.iteration, total_tokens=state.total_tokens)
