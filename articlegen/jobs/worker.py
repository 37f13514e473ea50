"""Entry point that runs a single queued article job."""

from __future__ import annotations

import argparse
import asyncio
import logging

from articlegen.ai.backoff import RetryPolicy
from articlegen.ai.orchestrator import ArticlePipelineOrchestrator, PipelineResult
from articlegen.ai.providers.openai_compat import OpenAICompatibleProvider
from articlegen.ai.registry import build_default_registry
from articlegen.config import Settings, get_settings
from articlegen.core.database import create_tables, dispose_engine
from articlegen.core.logging import initialize_logging
from articlegen.jobs.models import TERMINAL_JOB_STATUSES
from articlegen.services.keyword_research import DataForSeoLabsClient, KeywordResearchService
from articlegen.storage.jobs_repo import JobRepository
from articlegen.storage.postgres_jobs_repo import PostgresJobRepository, PostgresPageService, PostgresPersonaRepository, PostgresStepRepository

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings) -> ArticlePipelineOrchestrator:
  """Wire the production pipeline against Postgres and the configured APIs."""
  page_service = PostgresPageService()

  def _research_service() -> KeywordResearchService:
    return DataForSeoLabsClient(api_key=settings.dataforseo_api_key)

  registry = build_default_registry(research_service_factory=_research_service, page_service=page_service, publisher_name=settings.publisher_name, site_url=settings.site_url)
  missing = registry.missing_agents()
  if missing:
    logger.warning("Default registry is missing agents: %s", ", ".join(agent_type.value for agent_type in missing))

  return ArticlePipelineOrchestrator(
    registry=registry,
    jobs_repo=PostgresJobRepository(),
    steps_repo=PostgresStepRepository(),
    personas_repo=PostgresPersonaRepository(),
    llm_provider=OpenAICompatibleProvider(api_key=settings.llm_api_key, base_url=settings.llm_base_url),
    page_service=page_service,
    retry_policy=RetryPolicy.from_settings(settings),
    default_target_word_count=settings.default_target_word_count,
    default_max_iterations=settings.default_max_iterations,
    log_queue_size=settings.step_log_queue_size,
  )


async def process_job(job_id: str, *, orchestrator: ArticlePipelineOrchestrator | None = None, jobs_repo: JobRepository | None = None) -> PipelineResult | None:
  """Load a job and run it through the pipeline unless it has already finished."""
  repo = jobs_repo or PostgresJobRepository()

  job = await repo.find_by_id(job_id)
  if job is None:
    logger.warning("Job %s not found; nothing to process", job_id)
    return None
  if job.status in TERMINAL_JOB_STATUSES:
    logger.info("Job %s is already %s; skipping", job_id, job.status)
    return None

  if orchestrator is None:
    orchestrator = build_orchestrator(get_settings())
  result = await orchestrator.execute(job)
  if result.cancelled:
    logger.info("Job %s was cancelled", job_id)
  elif result.success:
    logger.info("Job %s finished after %d iteration(s), %d tokens", job_id, result.iterations, result.total_tokens)
  else:
    logger.warning("Job %s failed: %s", job_id, result.error)
  return result


async def _run_cli(job_id: str, *, init_db: bool) -> PipelineResult | None:
  try:
    if init_db:
      await create_tables()
    return await process_job(job_id)
  finally:
    await dispose_engine()


def main(argv: list[str] | None = None) -> int:
  """Process one job from the command line; exit status 1 when it did not complete."""
  parser = argparse.ArgumentParser(description="Run one article generation job through the agent pipeline.")
  parser.add_argument("job_id", help="ID of the article job to process")
  parser.add_argument("--create-tables", action="store_true", help="Create missing tables before processing (local setups only)")
  args = parser.parse_args(argv)

  initialize_logging(get_settings())
  result = asyncio.run(_run_cli(args.job_id, init_db=args.create_tables))
  return 0 if result is not None and result.success else 1


if __name__ == "__main__":
  raise SystemExit(main())
