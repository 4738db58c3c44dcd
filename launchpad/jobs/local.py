"""Single-process job queue backend."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Mapping
from datetime import datetime

from launchpad.jobs.executor import JobExecutor
from launchpad.jobs.models import LANES, EnqueueOptions, JobPriority, JobRecord, utc_now
from launchpad.jobs.queue import DEFAULT_STALL_TIMEOUT_SECONDS, BaseJobQueue
from launchpad.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)

DEFAULT_LANE_CONCURRENCY: dict[str, int] = {"generation": 1, "rendering": 3, "file_ops": 3, "database_ops": 3, "scheduled": 3}


class InProcessJobQueue(BaseJobQueue):
  """
  Poll the Job Store and run jobs inside this process.

  Each lane owns a semaphore sized to its concurrency; a poll loop claims the oldest due QUEUED job whenever a
  lane has a free slot. Scheduling delay and priority are not supported here; retries still wait out their backoff
  through the job's run_at.
  """

  backend_name = "memory"

  def __init__(self, jobs_repo: JobsRepository, executor: JobExecutor, *, lane_concurrency: Mapping[str, int] | None = None, poll_interval: float = 1.0, stall_timeout: float = DEFAULT_STALL_TIMEOUT_SECONDS, clock: Callable[[], datetime] = utc_now) -> None:
    super().__init__(jobs_repo, executor, stall_timeout=stall_timeout, clock=clock)
    concurrency = {**DEFAULT_LANE_CONCURRENCY, **(lane_concurrency or {})}
    self._slots = {lane: asyncio.Semaphore(concurrency[lane]) for lane in LANES}
    self._poll_interval = poll_interval
    self._wake = asyncio.Event()
    self._loop_task: asyncio.Task[None] | None = None
    self._inflight: set[asyncio.Task[None]] = set()
    self._stopping = False

  async def start(self) -> None:
    if self._loop_task is not None and not self._loop_task.done():
      return
    self._stopping = False
    # No worker has started yet; PROCESSING jobs past the timeout belong to a worker that went away.
    await self.recover_stalled()
    self._loop_task = asyncio.create_task(self._run(), name="launchpad-inprocess-queue")
    logger.info("In-process job queue started")

  async def shutdown(self) -> None:
    self._stopping = True
    self._wake.set()
    if self._loop_task is not None:
      self._loop_task.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await self._loop_task
      self._loop_task = None
    if self._inflight:
      logger.info("Waiting for %d in-flight job(s) to finish", len(self._inflight))
      await asyncio.gather(*self._inflight, return_exceptions=True)
    logger.info("In-process job queue stopped")

  def _initial_run_at(self, now: datetime, options: EnqueueOptions) -> datetime | None:
    if options.delay_seconds > 0 or options.priority != JobPriority.NORMAL:
      logger.warning("In-process queue ignores delay=%.1fs and priority=%d", options.delay_seconds, options.priority)
    return None

  async def _schedule(self, record: JobRecord) -> None:
    self._wake.set()

  async def _unschedule(self, record: JobRecord) -> None:
    # Nothing to remove; the poll loop only claims QUEUED jobs.
    return None

  async def _run(self) -> None:
    while not self._stopping:
      try:
        await self._tick()
      except Exception:  # noqa: BLE001
        logger.error("In-process queue tick failed", exc_info=True)
      with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(self._wake.wait(), timeout=self._poll_interval)
      self._wake.clear()

  async def _tick(self) -> None:
    for lane, slots in self._slots.items():
      while not self._stopping and not slots.locked():
        candidates = await self._jobs_repo.find_queued(limit=1, lane=lane, due_before=self._clock())
        if not candidates:
          break
        claimed = await self._executor.claim(candidates[0].job_id)
        if claimed is None:
          continue
        await slots.acquire()
        self._running.add(claimed.job_id)
        task = asyncio.create_task(self._execute(lane, claimed), name=f"launchpad-job-{claimed.job_id}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

  async def _execute(self, lane: str, job: JobRecord) -> None:
    try:
      outcome = await self._executor.execute(job)
    except Exception:  # noqa: BLE001
      logger.error("Unexpected executor failure for job %s", job.job_id, exc_info=True)
      return
    finally:
      self._running.discard(job.job_id)
      self._slots[lane].release()
      self._wake.set()

    if outcome.retry_at is not None:
      delay = max((outcome.retry_at - self._clock()).total_seconds(), 0.0)
      asyncio.get_running_loop().call_later(delay, self._wake.set)
