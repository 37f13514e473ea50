"""In-memory repositories for local runs and tests."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from articlegen.jobs.models import TERMINAL_JOB_STATUSES, ArticleJobRecord, JobStatus, JobStepRecord, PageRecord, PersonaRecord, StepLogEntry


def _now_iso() -> str:
  return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _elapsed_ms(started_at: str | None, completed_at: str) -> int | None:
  if started_at is None:
    return None
  start = datetime.fromisoformat(started_at.replace("Z", "+00:00"))
  end = datetime.fromisoformat(completed_at.replace("Z", "+00:00"))
  return int((end - start).total_seconds() * 1000)


class InMemoryJobRepository:
  """Dictionary-backed job repository."""

  def __init__(self) -> None:
    self._jobs: dict[str, ArticleJobRecord] = {}

  async def create_job(self, record: ArticleJobRecord) -> None:
    self._jobs[record.id] = record

  async def find_by_id(self, job_id: str) -> ArticleJobRecord | None:
    return self._jobs.get(job_id)

  def _update(self, job_id: str, **changes: Any) -> ArticleJobRecord | None:
    record = self._jobs.get(job_id)

    # Bail out when the job id is unknown.
    if record is None:
      return None

    updated = replace(record, updated_at=_now_iso(), **changes)
    self._jobs[job_id] = updated
    return updated

  def _transition(self, job_id: str, status: JobStatus, **changes: Any) -> ArticleJobRecord | None:
    """Change status unless the job already reached a terminal one."""
    record = self._jobs.get(job_id)
    if record is None or record.status in TERMINAL_JOB_STATUSES:
      return None
    return self._update(job_id, status=status, **changes)

  async def start_processing(self, job_id: str) -> ArticleJobRecord | None:
    return self._transition(job_id, "processing", started_at=_now_iso(), error=None)

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
    changes: dict[str, Any] = {
      key: value
      for key, value in {"current_iteration": current_iteration, "current_agent": current_agent, "total_tokens_used": total_tokens_used, "progress_percent": progress_percent}.items()
      if value is not None
    }
    if clear_current_agent:
      changes["current_agent"] = None
    return self._update(job_id, **changes)

  async def set_status(self, job_id: str, status: JobStatus, *, error: str | None = None, completed_at: str | None = None) -> ArticleJobRecord | None:
    changes: dict[str, Any] = {}
    if error is not None:
      changes["error"] = error
    if completed_at is not None:
      changes["completed_at"] = completed_at
    return self._transition(job_id, status, **changes)

  async def set_final_output(self, job_id: str, final_output: dict[str, Any], page_id: str | None = None) -> ArticleJobRecord | None:
    changes: dict[str, Any] = {"final_output": final_output}
    if page_id is not None:
      changes["page_id"] = page_id
    return self._update(job_id, **changes)

  async def is_cancelled(self, job_id: str) -> bool:
    record = self._jobs.get(job_id)
    return record is not None and record.status == "cancelled"

  async def request_cancel(self, job_id: str) -> ArticleJobRecord | None:
    """Flag a job as cancelled; the pipeline stops at its next checkpoint."""
    return self._transition(job_id, "cancelled", completed_at=_now_iso())


class InMemoryStepRepository:
  """List-backed step repository preserving creation order."""

  def __init__(self) -> None:
    self._steps: dict[str, JobStepRecord] = {}

  async def create(self, *, job_id: str, agent_type: str, persona_id: str | None, iteration: int, input: Any) -> JobStepRecord:
    record = JobStepRecord(id=str(uuid.uuid4()), job_id=job_id, agent_type=agent_type, persona_id=persona_id, iteration=iteration, input=input, status="pending", created_at=_now_iso())
    self._steps[record.id] = record
    return record

  def _update(self, step_id: str, **changes: Any) -> None:
    record = self._steps.get(step_id)
    if record is None:
      raise KeyError(f"Unknown step {step_id}")
    self._steps[step_id] = replace(record, **changes)

  async def start(self, step_id: str) -> None:
    self._update(step_id, status="running", started_at=_now_iso())

  async def complete(self, step_id: str, *, output: Any, tokens_used: int, prompt_tokens: int, completion_tokens: int) -> None:
    completed_at = _now_iso()
    started_at = self._steps[step_id].started_at if step_id in self._steps else None
    self._update(
      step_id,
      status="completed",
      output=output,
      tokens_used=tokens_used,
      prompt_tokens=prompt_tokens,
      completion_tokens=completion_tokens,
      completed_at=completed_at,
      duration_ms=_elapsed_ms(started_at, completed_at),
    )

  async def fail(self, step_id: str, error: str, detail: Any = None) -> None:
    completed_at = _now_iso()
    started_at = self._steps[step_id].started_at if step_id in self._steps else None
    self._update(step_id, status="failed", error=error, error_detail=detail, completed_at=completed_at, duration_ms=_elapsed_ms(started_at, completed_at))

  async def append_log(self, step_id: str, entry: StepLogEntry) -> None:
    record = self._steps.get(step_id)
    if record is None:
      raise KeyError(f"Unknown step {step_id}")
    self._steps[step_id] = replace(record, logs=[*record.logs, entry])

  async def list_for_job(self, job_id: str) -> list[JobStepRecord]:
    return [step for step in self._steps.values() if step.job_id == job_id]


class InMemoryPersonaRepository:
  """Persona lookup over a fixed list."""

  def __init__(self, personas: list[PersonaRecord] | None = None) -> None:
    self._personas: dict[str, PersonaRecord] = {persona.id: persona for persona in personas or []}

  def add(self, persona: PersonaRecord) -> None:
    self._personas[persona.id] = persona

  async def find_by_id(self, persona_id: str) -> PersonaRecord | None:
    return self._personas.get(persona_id)

  async def find_default(self, agent_type: str) -> PersonaRecord | None:
    for persona in self._personas.values():
      if persona.agent_type == agent_type and persona.is_default:
        return persona
    return None


class InMemoryPageService:
  """Records created pages; publishes nothing."""

  def __init__(self, published: list[PageRecord] | None = None) -> None:
    self.pages: list[PageRecord] = list(published or [])
    self.created: list[dict[str, Any]] = []

  async def create_page(self, data: dict[str, Any]) -> PageRecord:
    self.created.append(data)
    slug = str(data.get("slug") or "")
    page = PageRecord(id=str(uuid.uuid4()), title=str(data.get("title") or ""), slug=slug, status=data.get("status") or "draft", full_path=f"/{slug}", description=data.get("description"))
    self.pages.append(page)
    return page

  async def list_published(self, *, limit: int = 50) -> list[PageRecord]:
    return [page for page in self.pages if page.status == "published"][:limit]
