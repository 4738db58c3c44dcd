"""Unit tests for the workflow dispatcher and job completion bridge."""

from __future__ import annotations

from typing import Any

import anyio
import pytest

from launchpad.jobs.models import JobRecord, utc_now
from launchpad.workflows.dispatcher import WorkflowDispatcher
from launchpad.workflows.events import WorkflowEvent
from launchpad.workflows.hooks import JobCompletionBridge, trigger_workflow


class RecordingEngine:
  def __init__(self, fail_on: str | None = None) -> None:
    self.fail_on = fail_on
    self.handled: list[WorkflowEvent] = []

  async def handle(self, event: WorkflowEvent) -> None:
    if event.type == self.fail_on:
      raise RuntimeError("handler exploded")
    self.handled.append(event)


def _completed(job_type: str, payload: dict[str, Any], result: dict[str, Any] | None = None) -> JobRecord:
  now = utc_now()
  return JobRecord(job_id="job-1", job_type=job_type, payload=payload, status="COMPLETED", created_at=now, updated_at=now, result=result)


@pytest.mark.anyio
async def test_handler_errors_do_not_stop_the_dispatcher() -> None:
  engine = RecordingEngine(fail_on="CLIENT_CREATED")
  dispatcher = WorkflowDispatcher(engine)
  await dispatcher.start()
  try:
    trigger_workflow(dispatcher, "CLIENT_CREATED", "client-1")
    trigger_workflow(dispatcher, "MILESTONE_REACHED", "client-1", "admin-1", milestone="first_sale")
    with anyio.fail_after(5):
      await dispatcher.drain()
  finally:
    await dispatcher.shutdown()

  assert [event.type for event in engine.handled] == ["MILESTONE_REACHED"]
  assert engine.handled[0].metadata == {"milestone": "first_sale"}
  assert engine.handled[0].actor_id == "admin-1"


@pytest.mark.anyio
async def test_publish_does_not_wait_for_handlers() -> None:
  engine = RecordingEngine()
  dispatcher = WorkflowDispatcher(engine)

  dispatcher.publish(WorkflowEvent(type="CLIENT_ACTIVATED", subject_id="client-1"))

  assert dispatcher.pending == 1
  assert engine.handled == []


@pytest.mark.anyio
async def test_business_plan_completion_raises_plan_completed() -> None:
  dispatcher = WorkflowDispatcher(RecordingEngine())
  bridge = JobCompletionBridge(dispatcher)

  await bridge(_completed("GENERATE_BUSINESS_PLAN", {"clientId": "client-1", "userId": "admin-1"}, {"businessPlanId": "plan-1"}))

  assert dispatcher.pending == 1


@pytest.mark.anyio
async def test_deliverable_completion_only_advances_when_enabled() -> None:
  dispatcher = WorkflowDispatcher(RecordingEngine())
  job = _completed("GENERATE_DELIVERABLE", {"clientId": "client-1", "month": 2}, {"deliverableId": "d-2"})

  await JobCompletionBridge(dispatcher, auto_advance=False)(job)
  assert dispatcher.pending == 0

  await JobCompletionBridge(dispatcher, auto_advance=True)(job)
  assert dispatcher.pending == 1


@pytest.mark.anyio
async def test_jobs_without_client_are_ignored() -> None:
  dispatcher = WorkflowDispatcher(RecordingEngine())
  await JobCompletionBridge(dispatcher, auto_advance=True)(_completed("CLEANUP_CACHE", {}))
  assert dispatcher.pending == 0
