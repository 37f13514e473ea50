"""Storage interfaces for article jobs, steps, personas and pages."""

from __future__ import annotations

from typing import Any, Protocol

from articlegen.jobs.models import ArticleJobRecord, JobStatus, JobStepRecord, PageRecord, PersonaRecord, StepLogEntry


class JobRepository(Protocol):
  """Repository contract for article job persistence."""

  async def create_job(self, record: ArticleJobRecord) -> None:
    """Persist an initial job record."""

  async def find_by_id(self, job_id: str) -> ArticleJobRecord | None:
    """Fetch a job by identifier."""

  async def start_processing(self, job_id: str) -> ArticleJobRecord | None:
    """Move a job to processing and stamp its start time; returns None for terminal jobs."""

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
    """Apply partial progress updates; ``None`` leaves a field unchanged."""

  async def set_status(self, job_id: str, status: JobStatus, *, error: str | None = None, completed_at: str | None = None) -> ArticleJobRecord | None:
    """Set the job status with an optional error and completion time.

    Jobs already completed, failed or cancelled are left untouched and None is returned.
    """

  async def set_final_output(self, job_id: str, final_output: dict[str, Any], page_id: str | None = None) -> ArticleJobRecord | None:
    """Store the assembled article and the published page id, if any."""

  async def is_cancelled(self, job_id: str) -> bool:
    """Return True when cancellation has been requested for the job."""


class StepRepository(Protocol):
  """Repository contract for the per-attempt step audit trail."""

  async def create(self, *, job_id: str, agent_type: str, persona_id: str | None, iteration: int, input: Any) -> JobStepRecord:
    """Create a pending step for one agent attempt."""

  async def start(self, step_id: str) -> None:
    """Mark a step running and stamp its start time."""

  async def complete(self, step_id: str, *, output: Any, tokens_used: int, prompt_tokens: int, completion_tokens: int) -> None:
    """Record a successful step outcome."""

  async def fail(self, step_id: str, error: str, detail: Any = None) -> None:
    """Record a failed step outcome."""

  async def append_log(self, step_id: str, entry: StepLogEntry) -> None:
    """Append one structured log entry to a step."""

  async def list_for_job(self, job_id: str) -> list[JobStepRecord]:
    """Return a job's steps in creation order."""


class PersonaRepository(Protocol):
  """Read-only access to agent personas."""

  async def find_by_id(self, persona_id: str) -> PersonaRecord | None:
    """Fetch a persona by identifier."""

  async def find_default(self, agent_type: str) -> PersonaRecord | None:
    """Return the default persona for an agent type."""


class PageService(Protocol):
  """CMS page operations used for internal links and auto-publishing."""

  async def create_page(self, data: dict[str, Any]) -> PageRecord:
    """Create a page from a finished article."""

  async def list_published(self, *, limit: int = 50) -> list[PageRecord]:
    """List published pages for internal link suggestions."""
