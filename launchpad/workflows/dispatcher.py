"""In-process channel that runs workflow handlers off the caller's path."""

from __future__ import annotations

import asyncio
import logging

from launchpad.workflows.engine import WorkflowEngine
from launchpad.workflows.events import WorkflowEvent

logger = logging.getLogger(__name__)


class WorkflowDispatcher:
  """
  Publish events onto a queue consumed by a single loop.

  `publish` never blocks and never raises; handlers for one event run sequentially and their errors are logged
  without reaching the publisher or stopping the loop.
  """

  def __init__(self, engine: WorkflowEngine) -> None:
    self._engine = engine
    self._events: asyncio.Queue[WorkflowEvent] = asyncio.Queue()
    self._consumer: asyncio.Task[None] | None = None

  @property
  def pending(self) -> int:
    return self._events.qsize()

  def publish(self, event: WorkflowEvent) -> None:
    logger.debug("Publishing workflow event %s for client %s", event.type, event.subject_id)
    self._events.put_nowait(event)

  async def start(self) -> None:
    if self._consumer is None or self._consumer.done():
      self._consumer = asyncio.create_task(self._consume(), name="workflow-dispatcher")
      logger.info("Workflow dispatcher started")

  async def drain(self) -> None:
    """Wait until every published event has been handled."""
    await self._events.join()

  async def shutdown(self, *, timeout: float = 5.0) -> None:
    if self._consumer is None:
      return
    try:
      await asyncio.wait_for(self._events.join(), timeout=timeout)
    except asyncio.TimeoutError:
      logger.warning("Workflow dispatcher stopping with %d unhandled events", self._events.qsize())

    self._consumer.cancel()
    try:
      await self._consumer
    except asyncio.CancelledError:
      pass
    self._consumer = None
    logger.info("Workflow dispatcher stopped")

  async def _consume(self) -> None:
    while True:
      event = await self._events.get()
      try:
        await self._engine.handle(event)
      except Exception:  # noqa: BLE001
        logger.error("Workflow event handler failed: %s for client %s", event.type, event.subject_id, exc_info=True)
      finally:
        self._events.task_done()
