"""Unit tests for journey automation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from launchpad.jobs.dispatch import JobHandlerRegistry
from launchpad.jobs.executor import JobExecutor
from launchpad.jobs.local import InProcessJobQueue
from launchpad.jobs.models import EnqueueOptions, JobPriority, JobRecord, utc_now
from launchpad.storage.journey_repo import ClientProfile, InMemoryJourneyRepository
from launchpad.storage.memory_jobs_repo import InMemoryJobsRepository
from launchpad.workflows.engine import FIRST_MONTH_DELAY_SECONDS, NEXT_MONTH_DELAY_SECONDS, WorkflowEngine, business_plan_key, deliverable_key, journey_completed_key
from launchpad.workflows.events import WorkflowEvent


@dataclass
class Enqueued:
  job_type: str
  payload: dict[str, Any]
  options: EnqueueOptions


class RecordingQueue:
  """Captures enqueue calls and honors idempotency keys like the real backends."""

  backend_name = "recording"

  def __init__(self) -> None:
    self.enqueued: list[Enqueued] = []
    self._by_key: dict[str, JobRecord] = {}

  async def enqueue(self, job_type: str, payload: dict[str, Any], options: EnqueueOptions | None = None) -> str:
    options = options or EnqueueOptions()
    if options.idempotency_key and options.idempotency_key in self._by_key:
      return self._by_key[options.idempotency_key].job_id
    job_id = f"job-{len(self.enqueued) + 1}"
    self.enqueued.append(Enqueued(job_type, payload, options))
    if options.idempotency_key:
      now = utc_now()
      self._by_key[options.idempotency_key] = JobRecord(job_id=job_id, job_type=job_type, payload=payload, status="QUEUED", created_at=now, updated_at=now, idempotency_key=options.idempotency_key)
    return job_id

  async def find_by_idempotency_key(self, key: str) -> JobRecord | None:
    return self._by_key.get(key)

  def of_type(self, job_type: str) -> list[Enqueued]:
    return [item for item in self.enqueued if item.job_type == job_type]


@pytest.fixture
def queue() -> RecordingQueue:
  return RecordingQueue()


def _engine(queue: RecordingQueue, journey: InMemoryJourneyRepository, **kwargs: Any) -> WorkflowEngine:
  return WorkflowEngine(queue, journey, app_url="https://studio.example.com/", **kwargs)


async def _deliver(journey: InMemoryJourneyRepository, client_id: str, month: int) -> None:
  await journey.create_deliverable(client_id=client_id, month=month, title=f"Month {month}", content="done", generated_by=None)
  await journey.mark_delivered(client_id, month)


@pytest.mark.anyio
async def test_client_activation_enqueues_plan_then_first_month(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  engine = _engine(queue, journey)

  await engine.handle(WorkflowEvent(type="CLIENT_ACTIVATED", subject_id="client-1", actor_id="admin-1"))

  assert [item.job_type for item in queue.enqueued] == ["GENERATE_BUSINESS_PLAN", "GENERATE_DELIVERABLE"]
  plan, month_one = queue.enqueued
  assert plan.options.priority == JobPriority.HIGH
  assert plan.options.delay_seconds == 0
  assert plan.options.idempotency_key == business_plan_key("client-1")
  assert plan.payload == {"clientId": "client-1", "userId": "admin-1"}
  assert month_one.payload["month"] == 1
  assert month_one.options.delay_seconds == FIRST_MONTH_DELAY_SECONDS
  assert month_one.options.idempotency_key == deliverable_key("client-1", 1)


@pytest.mark.anyio
async def test_repeated_activation_does_not_enqueue_twice(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  engine = _engine(queue, journey)
  event = WorkflowEvent(type="CLIENT_ACTIVATED", subject_id="client-1")

  await engine.handle(event)
  await engine.handle(event)

  assert len(queue.of_type("GENERATE_BUSINESS_PLAN")) == 1
  assert len(queue.of_type("GENERATE_DELIVERABLE")) == 1


@pytest.mark.anyio
async def test_activation_skips_existing_artifacts(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  await journey.create_business_plan(client_id="client-1", content="# Plan", generated_by=None)
  await journey.create_deliverable(client_id="client-1", month=1, title="Month 1", content="draft", generated_by=None)

  await _engine(queue, journey).handle(WorkflowEvent(type="CLIENT_ACTIVATED", subject_id="client-1"))

  assert queue.enqueued == []


@pytest.mark.anyio
async def test_activation_for_unknown_client_is_a_no_op(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  await _engine(queue, journey).handle(WorkflowEvent(type="CLIENT_ACTIVATED", subject_id="nobody"))
  assert queue.enqueued == []


@pytest.mark.anyio
async def test_activation_email_follows_flag_and_preferences(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  journey.add_client(ClientProfile(client_id="client-2", full_name="Grace Hopper", email="grace@example.com"), preferences={"activation": False})
  engine = _engine(queue, journey, email_workflows_enabled=True)

  await engine.handle(WorkflowEvent(type="CLIENT_ACTIVATED", subject_id="client-1"))
  await engine.handle(WorkflowEvent(type="CLIENT_ACTIVATED", subject_id="client-2"))

  emails = queue.of_type("SEND_EMAIL")
  assert len(emails) == 1
  assert emails[0].payload["to"] == "ada@example.com"
  assert emails[0].payload["template"] == "CLIENT_ACTIVATED"
  assert emails[0].payload["context"]["portalUrl"] == "https://studio.example.com/client-portal"


@pytest.mark.anyio
async def test_completed_deliverable_schedules_next_month(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  engine = _engine(queue, journey)

  await engine.handle(WorkflowEvent(type="DELIVERABLE_COMPLETED", subject_id="client-1", metadata={"month": 2}))

  (job,) = queue.enqueued
  assert job.job_type == "GENERATE_DELIVERABLE"
  assert job.payload["month"] == 3
  assert job.options.priority == JobPriority.NORMAL
  assert job.options.delay_seconds == NEXT_MONTH_DELAY_SECONDS


@pytest.mark.anyio
async def test_completed_deliverable_sends_ready_email_when_enabled(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  engine = _engine(queue, journey, email_workflows_enabled=True)

  await engine.handle(WorkflowEvent(type="DELIVERABLE_COMPLETED", subject_id="client-1", metadata={"deliverable": {"month": "1"}}))

  (email,) = queue.of_type("SEND_EMAIL")
  assert email.payload["template"] == "DELIVERABLE_READY"
  assert email.payload["context"]["month"] == 2


@pytest.mark.anyio
async def test_completed_deliverable_without_month_is_ignored(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  await _engine(queue, journey).handle(WorkflowEvent(type="DELIVERABLE_COMPLETED", subject_id="client-1", metadata={"month": "soon"}))
  assert queue.enqueued == []


@pytest.mark.anyio
async def test_final_month_completes_the_journey(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  engine = _engine(queue, journey, journey_months=8)

  await engine.handle(WorkflowEvent(type="DELIVERABLE_COMPLETED", subject_id="client-1", metadata={"month": 8}))

  assert queue.enqueued == []
  (activity,) = journey.activities
  assert activity.activity_type == "CLIENT_UPDATED"
  assert activity.metadata == {"milestone": "JOURNEY_COMPLETED"}


@pytest.mark.anyio
async def test_overdue_check_reminds_each_draft(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  await journey.create_deliverable(client_id="client-1", month=1, title="Month 1: Foundation Excellence", content="draft", generated_by=None)
  await _deliver(journey, "client-1", 2)
  engine = _engine(queue, journey, email_workflows_enabled=True)

  assert await engine.check_overdue_deliverables(actor_id="scheduler") == 1

  (email,) = queue.of_type("SEND_EMAIL")
  assert email.payload["template"] == "DELIVERABLE_OVERDUE"
  assert email.payload["context"]["deliverableTitle"] == "Month 1: Foundation Excellence"
  assert [item.activity_type for item in journey.activities] == ["DELIVERABLE_OVERDUE"]


@pytest.mark.anyio
async def test_month_transition_requires_delivered_latest_month(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  engine = _engine(queue, journey)
  await journey.create_deliverable(client_id="client-1", month=1, title="Month 1", content="draft", generated_by=None)

  await engine.handle(WorkflowEvent(type="MONTH_TRANSITION", subject_id="client-1"))
  assert queue.enqueued == []

  await journey.mark_delivered("client-1", 1)
  await engine.handle(WorkflowEvent(type="MONTH_TRANSITION", subject_id="client-1"))
  (job,) = queue.enqueued
  assert job.payload["month"] == 2
  assert job.options.delay_seconds == 0


@pytest.mark.anyio
async def test_month_transition_stops_after_last_month(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  engine = _engine(queue, journey, journey_months=2)
  await _deliver(journey, "client-1", 1)
  await _deliver(journey, "client-1", 2)

  await engine.handle(WorkflowEvent(type="MONTH_TRANSITION", subject_id="client-1"))

  assert queue.enqueued == []


@pytest.mark.anyio
async def test_plan_completion_renders_pdf_when_enabled(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  plan = await journey.create_business_plan(client_id="client-1", content="# Plan", generated_by=None)

  await _engine(queue, journey).handle(WorkflowEvent(type="PLAN_COMPLETED", subject_id="client-1"))
  assert queue.enqueued == []

  await _engine(queue, journey, auto_generate_pdf=True).handle(WorkflowEvent(type="PLAN_COMPLETED", subject_id="client-1"))
  (pdf,) = queue.of_type("GENERATE_PDF")
  assert pdf.payload["businessPlanId"] == plan.plan_id
  assert pdf.payload["quality"] == "final"


@pytest.mark.anyio
async def test_milestone_is_recorded(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  await _engine(queue, journey).handle(WorkflowEvent(type="MILESTONE_REACHED", subject_id="client-1", metadata={"milestone": "first_sale"}))

  (activity,) = journey.activities
  assert activity.description == "Client reached milestone: first_sale"
  assert queue.enqueued == []


@pytest.mark.anyio
async def test_client_created_records_activity_and_welcome(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  await _engine(queue, journey, email_workflows_enabled=True).handle(WorkflowEvent(type="CLIENT_CREATED", subject_id="client-1", actor_id="admin-1"))

  assert [item.payload["template"] for item in queue.of_type("SEND_EMAIL")] == ["WELCOME"]
  assert journey.activities[0].description == "Created new client: Ada Lovelace"


@pytest.mark.anyio
async def test_duplicate_deliverable_completion_schedules_next_month_once(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  engine = _engine(queue, journey, email_workflows_enabled=True)
  event = WorkflowEvent(type="DELIVERABLE_COMPLETED", subject_id="client-1", metadata={"month": 2})

  await engine.handle(event)
  await engine.handle(event)

  (job,) = queue.of_type("GENERATE_DELIVERABLE")
  assert job.payload["month"] == 3
  (email,) = queue.of_type("SEND_EMAIL")
  assert email.payload["template"] == "DELIVERABLE_READY"


@pytest.mark.anyio
async def test_duplicate_completion_after_next_month_finished_enqueues_nothing(jobs_repo: InMemoryJobsRepository, journey: InMemoryJourneyRepository) -> None:
  job_queue = InProcessJobQueue(jobs_repo, JobExecutor(jobs_repo, JobHandlerRegistry()))
  engine = WorkflowEngine(job_queue, journey, email_workflows_enabled=True)
  event = WorkflowEvent(type="DELIVERABLE_COMPLETED", subject_id="client-1", metadata={"month": 2})

  await engine.handle(event)
  next_month = await job_queue.find_by_idempotency_key(deliverable_key("client-1", 3))
  await jobs_repo.update_job(next_month.job_id, status="COMPLETED", result={"deliverableId": "d-3"}, completed_at=utc_now())
  await engine.handle(event)

  _, generations = await jobs_repo.list_jobs(limit=10, offset=0, job_type="GENERATE_DELIVERABLE")
  _, emails = await jobs_repo.list_jobs(limit=10, offset=0, job_type="SEND_EMAIL")
  assert generations == 1
  assert emails == 1


@pytest.mark.anyio
async def test_duplicate_final_month_completes_the_journey_once(queue: RecordingQueue, journey: InMemoryJourneyRepository) -> None:
  engine = _engine(queue, journey, email_workflows_enabled=True, journey_months=8)
  event = WorkflowEvent(type="DELIVERABLE_COMPLETED", subject_id="client-1", metadata={"month": 8})

  await engine.handle(event)
  await engine.handle(event)

  (email,) = queue.of_type("SEND_EMAIL")
  assert email.payload["template"] == "JOURNEY_COMPLETED"
  assert email.options.idempotency_key == journey_completed_key("client-1")
  assert [activity.metadata for activity in journey.activities] == [{"milestone": "JOURNEY_COMPLETED"}]
