from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from articlegen.ai.orchestrator import PipelineResult
from articlegen.jobs import worker
from articlegen.storage.memory_repo import InMemoryJobRepository


@pytest.mark.anyio
async def test_unknown_job_is_ignored() -> None:
  orchestrator = MagicMock()
  orchestrator.execute = AsyncMock()

  assert await worker.process_job("missing", orchestrator=orchestrator, jobs_repo=InMemoryJobRepository()) is None
  orchestrator.execute.assert_not_awaited()


@pytest.mark.anyio
@pytest.mark.parametrize("status", ["completed", "failed", "cancelled"])
async def test_finished_jobs_are_not_reprocessed(make_job, status: str) -> None:
  repo = InMemoryJobRepository()
  await repo.create_job(make_job(status=status))
  orchestrator = MagicMock()
  orchestrator.execute = AsyncMock()

  assert await worker.process_job("job-1", orchestrator=orchestrator, jobs_repo=repo) is None
  orchestrator.execute.assert_not_awaited()


@pytest.mark.anyio
async def test_pending_job_runs_through_orchestrator(make_job) -> None:
  repo = InMemoryJobRepository()
  job = make_job()
  await repo.create_job(job)
  expected = PipelineResult(success=True, job=job, iterations=1, total_tokens=450)
  orchestrator = MagicMock()
  orchestrator.execute = AsyncMock(return_value=expected)

  result = await worker.process_job("job-1", orchestrator=orchestrator, jobs_repo=repo)

  assert result is expected
  orchestrator.execute.assert_awaited_once_with(job)


def test_main_exit_code_reflects_outcome(monkeypatch: pytest.MonkeyPatch, make_job) -> None:
  monkeypatch.setattr(worker, "initialize_logging", lambda settings: None)
  outcomes = {"ok": PipelineResult(success=True, job=make_job()), "bad": PipelineResult(success=False, job=make_job(), error="boom"), "gone": None}
  seen: list[tuple[str, bool]] = []

  async def _fake_run(job_id: str, *, init_db: bool):
    seen.append((job_id, init_db))
    return outcomes[job_id]

  monkeypatch.setattr(worker, "_run_cli", _fake_run)

  assert worker.main(["ok", "--create-tables"]) == 0
  assert worker.main(["bad"]) == 1
  assert worker.main(["gone"]) == 1
  assert seen == [("ok", True), ("bad", False), ("gone", False)]
