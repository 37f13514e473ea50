"""Postgres-backed repositories for article jobs, steps, personas and pages using SQLAlchemy."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Update, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from articlegen.core.database import get_session_factory
from articlegen.jobs.models import TERMINAL_JOB_STATUSES, ArticleJobRecord, JobStatus, JobStepRecord, PageRecord, PersonaRecord, StepLogEntry
from articlegen.schema.jobs import ArticleJob, ArticleJobStep, Page, Persona
from articlegen.storage.jobs_repo import JobRepository, PageService, PersonaRepository, StepRepository


def _now_iso() -> str:
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _elapsed_ms(started_at: str | None, completed_at: str) -> int | None:
  if not started_at:
    return None
  start = datetime.fromisoformat(started_at.replace("Z", "+00:00"))
  end = datetime.fromisoformat(completed_at.replace("Z", "+00:00"))
  return int((end - start).total_seconds() * 1000)


def _require_session_factory() -> async_sessionmaker[AsyncSession]:
  session_factory = get_session_factory()
  if session_factory is None:
    raise RuntimeError("Database not initialized")
  return session_factory


def guarded_status_update(job_id: str, status: JobStatus, changes: dict[str, Any]) -> Update:
  """UPDATE that leaves jobs already in a terminal status untouched."""
  return (
    update(ArticleJob)
    .where(ArticleJob.id == job_id, ArticleJob.status.not_in(sorted(TERMINAL_JOB_STATUSES)))
    .values(status=status, updated_at=_now_iso(), **changes)
    .returning(ArticleJob)
  )


class PostgresJobRepository(JobRepository):
  """Persist article jobs to the ai_article_jobs table."""

  def __init__(self) -> None:
    self._session_factory = _require_session_factory()

  async def create_job(self, record: ArticleJobRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        ArticleJob(
          id=record.id,
          keyword=record.keyword,
          status=record.status,
          settings=record.settings,
          max_iterations=record.max_iterations,
          current_iteration=record.current_iteration,
          current_agent=record.current_agent,
          progress_percent=record.progress_percent,
          total_tokens_used=record.total_tokens_used,
          final_output=record.final_output,
          page_id=record.page_id,
          error=record.error,
          created_at=record.created_at,
          updated_at=record.updated_at,
          started_at=record.started_at,
          completed_at=record.completed_at,
        )
      )
      await session.commit()

  async def find_by_id(self, job_id: str) -> ArticleJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(ArticleJob, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def _apply(self, job_id: str, changes: dict[str, Any]) -> ArticleJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(ArticleJob, job_id)
      if row is None:
        return None
      for key, value in changes.items():
        setattr(row, key, value)
      row.updated_at = _now_iso()
      session.add(row)
      await session.commit()
      await session.refresh(row)
      return self._model_to_record(row)

  async def _transition(self, job_id: str, status: JobStatus, changes: dict[str, Any]) -> ArticleJobRecord | None:
    async with self._session_factory() as session:
      row = (await session.execute(guarded_status_update(job_id, status, changes))).scalar_one_or_none()
      await session.commit()
      if row is None:
        return None
      return self._model_to_record(row)

  async def start_processing(self, job_id: str) -> ArticleJobRecord | None:
    return await self._transition(job_id, "processing", {"started_at": _now_iso(), "error": None})

  async def update_progress(
    self,
    job_id: str,
    *,
    current_iteration: int | None = None,
    current_agent: str | None = None,
    clear_current_agent: bool = False,
    total_tokens_used: int | None = None,
    progress_percent: int | None = None,
  ) -> ArticleJobRecord | None:
    changes: dict[str, Any] = {}
    if current_iteration is not None:
      changes["current_iteration"] = current_iteration
    if current_agent is not None:
      changes["current_agent"] = current_agent
    if clear_current_agent:
      changes["current_agent"] = None
    if total_tokens_used is not None:
      changes["total_tokens_used"] = total_tokens_used
    if progress_percent is not None:
      changes["progress_percent"] = progress_percent
    return await self._apply(job_id, changes)

  async def set_status(self, job_id: str, status: JobStatus, *, error: str | None = None, completed_at: str | None = None) -> ArticleJobRecord | None:
    changes: dict[str, Any] = {}
    if error is not None:
      changes["error"] = error
    if completed_at is not None:
      changes["completed_at"] = completed_at
    return await self._transition(job_id, status, changes)

  async def set_final_output(self, job_id: str, final_output: dict[str, Any], page_id: str | None = None) -> ArticleJobRecord | None:
    changes: dict[str, Any] = {"final_output": final_output}
    if page_id is not None:
      changes["page_id"] = page_id
    return await self._apply(job_id, changes)

  async def is_cancelled(self, job_id: str) -> bool:
    async with self._session_factory() as session:
      status = (await session.execute(select(ArticleJob.status).where(ArticleJob.id == job_id))).scalar_one_or_none()
      return status == "cancelled"

  @staticmethod
  def _model_to_record(row: ArticleJob) -> ArticleJobRecord:
    return ArticleJobRecord(
      id=row.id,
      keyword=row.keyword,
      status=row.status,  # type: ignore[arg-type]
      created_at=row.created_at,
      updated_at=row.updated_at,
      settings=dict(row.settings or {}),
      max_iterations=row.max_iterations,
      current_iteration=row.current_iteration,
      current_agent=row.current_agent,
      progress_percent=row.progress_percent,
      total_tokens_used=row.total_tokens_used,
      final_output=row.final_output,
      page_id=row.page_id,
      error=row.error,
      started_at=row.started_at,
      completed_at=row.completed_at,
    )


class PostgresStepRepository(StepRepository):
  """Persist the step audit trail to ai_article_job_steps."""

  def __init__(self) -> None:
    self._session_factory = _require_session_factory()

  async def create(self, *, job_id: str, agent_type: str, persona_id: str | None, iteration: int, input: Any) -> JobStepRecord:
    async with self._session_factory() as session:
      row = ArticleJobStep(
        id=str(uuid.uuid4()),
        job_id=job_id,
        agent_type=agent_type,
        persona_id=persona_id,
        iteration=iteration,
        status="pending",
        input=input,
        logs=[],
        created_at=_now_iso(),
      )
      session.add(row)
      await session.commit()
      return self._model_to_record(row)

  async def _apply(self, step_id: str, changes: dict[str, Any]) -> None:
    async with self._session_factory() as session:
      row = await session.get(ArticleJobStep, step_id)
      if row is None:
        raise KeyError(f"Unknown step {step_id}")
      for key, value in changes.items():
        setattr(row, key, value)
      if "completed_at" in changes:
        row.duration_ms = _elapsed_ms(row.started_at, changes["completed_at"])
      session.add(row)
      await session.commit()

  async def start(self, step_id: str) -> None:
    await self._apply(step_id, {"status": "running", "started_at": _now_iso()})

  async def complete(self, step_id: str, *, output: Any, tokens_used: int, prompt_tokens: int, completion_tokens: int) -> None:
    await self._apply(
      step_id,
      {"status": "completed", "output": output, "tokens_used": tokens_used, "prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens, "completed_at": _now_iso()},
    )

  async def fail(self, step_id: str, error: str, detail: Any = None) -> None:
    await self._apply(step_id, {"status": "failed", "error": error, "error_detail": detail, "completed_at": _now_iso()})

  async def append_log(self, step_id: str, entry: StepLogEntry) -> None:
    async with self._session_factory() as session:
      row = await session.get(ArticleJobStep, step_id, with_for_update=True)
      if row is None:
        raise KeyError(f"Unknown step {step_id}")
      # Reassign so the JSON column registers the change.
      row.logs = [*(row.logs or []), entry.to_dict()]
      session.add(row)
      await session.commit()

  async def list_for_job(self, job_id: str) -> list[JobStepRecord]:
    async with self._session_factory() as session:
      stmt = select(ArticleJobStep).where(ArticleJobStep.job_id == job_id).order_by(ArticleJobStep.created_at.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  @staticmethod
  def _model_to_record(row: ArticleJobStep) -> JobStepRecord:
    logs = [StepLogEntry(timestamp=item.get("timestamp", ""), level=item.get("level", "info"), message=item.get("message", ""), data=item.get("data")) for item in row.logs or []]
    return JobStepRecord(
      id=row.id,
      job_id=row.job_id,
      agent_type=row.agent_type,
      iteration=row.iteration,
      status=row.status,  # type: ignore[arg-type]
      created_at=row.created_at,
      persona_id=row.persona_id,
      input=row.input,
      output=row.output,
      tokens_used=row.tokens_used or 0,
      prompt_tokens=row.prompt_tokens or 0,
      completion_tokens=row.completion_tokens or 0,
      logs=logs,
      error=row.error,
      error_detail=row.error_detail,
      started_at=row.started_at,
      completed_at=row.completed_at,
      duration_ms=row.duration_ms,
    )


class PostgresPersonaRepository(PersonaRepository):
  """Read active personas from ai_personas."""

  def __init__(self) -> None:
    self._session_factory = _require_session_factory()

  async def find_by_id(self, persona_id: str) -> PersonaRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Persona, persona_id)
      if row is None or not row.is_active:
        return None
      return self._model_to_record(row)

  async def find_default(self, agent_type: str) -> PersonaRecord | None:
    async with self._session_factory() as session:
      stmt = select(Persona).where(Persona.agent_type == agent_type, Persona.is_default.is_(True), Persona.is_active.is_(True)).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return self._model_to_record(row)

  @staticmethod
  def _model_to_record(row: Persona) -> PersonaRecord:
    return PersonaRecord(
      id=row.id,
      agent_type=row.agent_type,
      name=row.name,
      model=row.model,
      system_prompt=row.system_prompt,
      temperature=row.temperature,
      max_tokens=row.max_tokens,
      is_default=row.is_default,
    )


class PostgresPageService(PageService):
  """Create and list CMS pages in the pages table."""

  def __init__(self) -> None:
    self._session_factory = _require_session_factory()

  async def create_page(self, data: dict[str, Any]) -> PageRecord:
    async with self._session_factory() as session:
      slug = str(data["slug"])
      parent_id = data.get("parent_id")
      prefix = ""
      if parent_id:
        parent = await session.get(Page, parent_id)
        if parent is not None and parent.full_path:
          prefix = parent.full_path.rstrip("/")
      now = _now_iso()
      row = Page(
        id=str(uuid.uuid4()),
        title=data["title"],
        slug=slug,
        full_path=f"{prefix}/{slug}",
        parent_id=parent_id,
        content=data.get("content"),
        description=data.get("description"),
        template=data.get("template") or "article",
        status=data.get("status") or "draft",
        meta_title=data.get("meta_title"),
        meta_description=data.get("meta_description"),
        focus_keyword=data.get("focus_keyword"),
        metadata_json=data.get("metadata"),
        created_at=now,
        updated_at=now,
      )
      session.add(row)
      await session.commit()
      return self._model_to_record(row)

  async def list_published(self, *, limit: int = 50) -> list[PageRecord]:
    async with self._session_factory() as session:
      stmt = select(Page).where(Page.status == "published", Page.deleted_at.is_(None)).order_by(Page.updated_at.desc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  @staticmethod
  def _model_to_record(row: Page) -> PageRecord:
    return PageRecord(id=row.id, title=row.title, slug=row.slug, status=row.status, full_path=row.full_path, description=row.description)  # type: ignore[arg-type]
