"""Step log persistence and live progress fan-out for pipeline runs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from articlegen.jobs.models import LogLevel, StepLogEntry
from articlegen.storage.jobs_repo import StepRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str | None, str, Any], None]

_LEVELS: dict[str, int] = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


def make_log_entry(level: LogLevel, message: str, data: Any = None) -> StepLogEntry:
  return StepLogEntry(timestamp=datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ"), level=level, message=message, data=data)


def mirror_step_log(agent_type: str, entry: StepLogEntry) -> None:
  """Echo a step log line to the ``articlegen.agents.<agent_type>`` logger."""
  logging.getLogger(f"articlegen.agents.{agent_type}").log(_LEVELS.get(entry.level, logging.INFO), entry.message)


class StepLogSink:
  """Bounded, non-blocking writer for step log entries.

  ``emit`` only enqueues; one background task drains the queue in order, so a
  slow or failing store never delays or aborts the pipeline. Entries that do
  not fit in the queue are dropped and counted.
  """

  def __init__(self, steps_repo: StepRepository, *, queue_size: int = 1000) -> None:
    self._steps_repo = steps_repo
    self._queue: asyncio.Queue[tuple[str, StepLogEntry]] = asyncio.Queue(maxsize=queue_size)
    self._task: asyncio.Task[None] | None = None
    self.written = 0
    self.dropped = 0
    self.failed = 0

  def start(self) -> None:
    if self._task is None or self._task.done():
      self._task = asyncio.get_running_loop().create_task(self._drain(), name="step-log-sink")

  def emit(self, step_id: str, entry: StepLogEntry) -> None:
    """Queue an entry for persistence; never blocks and never raises."""
    try:
      self.start()
      self._queue.put_nowait((step_id, entry))
    except asyncio.QueueFull:
      self.dropped += 1
      logger.debug("Step log queue full; dropped entry for step %s", step_id)
    except RuntimeError:
      # No running loop to drain into.
      self.dropped += 1
      logger.debug("Step log sink has no running loop; dropped entry for step %s", step_id)

  async def _drain(self) -> None:
    while True:
      step_id, entry = await self._queue.get()
      try:
        await self._steps_repo.append_log(step_id, entry)
        self.written += 1
      except Exception as exc:
        self.failed += 1
        logger.warning("Failed to persist step log for step %s: %s", step_id, exc)
      finally:
        self._queue.task_done()

  async def flush(self, timeout: float = 5.0) -> bool:
    """Wait until queued entries are written; returns False on timeout."""
    if self._task is None:
      return True
    try:
      await asyncio.wait_for(self._queue.join(), timeout=timeout)
    except TimeoutError:
      logger.warning("Step log sink flush timed out with %d entries pending", self._queue.qsize())
      return False
    return True

  async def close(self, timeout: float = 5.0) -> None:
    await self.flush(timeout)
    if self._task is not None:
      self._task.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await self._task
      self._task = None

  async def __aenter__(self) -> StepLogSink:
    self.start()
    return self

  async def __aexit__(self, *_exc: object) -> None:
    await self.close()


class ProgressFanout:
  """Forward pipeline progress to live subscribers without persistence guarantees."""

  def __init__(self, subscribers: list[ProgressCallback] | None = None) -> None:
    self._subscribers: list[ProgressCallback] = list(subscribers or [])

  def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
    self._subscribers.append(callback)

    def _unsubscribe() -> None:
      if callback in self._subscribers:
        self._subscribers.remove(callback)

    return _unsubscribe

  def on_progress(self, agent_type: str | None, message: str, data: Any = None) -> None:
    for callback in list(self._subscribers):
      try:
        callback(agent_type, message, data)
      except Exception:
        logger.warning("Progress subscriber failed for message %r", message, exc_info=True)

  def on_agent_start(self, agent_type: str, iteration: int) -> None:
    self.on_progress(agent_type, f"{agent_type} started (iteration {iteration})", {"event": "agent_start", "iteration": iteration})

  def on_agent_complete(self, agent_type: str, *, success: bool, tokens: int = 0) -> None:
    status = "completed" if success else "failed"
    self.on_progress(agent_type, f"{agent_type} {status}", {"event": "agent_complete", "success": success, "tokens": tokens})

  def on_cancelled(self) -> None:
    self.on_progress(None, "Pipeline cancelled", {"event": "cancelled"})
