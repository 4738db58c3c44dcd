"""Client journey automation driven by lifecycle events."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from launchpad.ai.prompts import month_title
from launchpad.jobs.models import EnqueueOptions, JobPriority
from launchpad.jobs.queue import JobQueue
from launchpad.storage.journey_repo import ActivityRecord, ClientProfile, EmailPreference, JourneyRepository
from launchpad.workflows.events import WorkflowEvent, WorkflowEventType

logger = logging.getLogger(__name__)

FIRST_MONTH_DELAY_SECONDS = 60 * 60
NEXT_MONTH_DELAY_SECONDS = 5 * 60
JOURNEY_COMPLETED_MILESTONE = "JOURNEY_COMPLETED"

EventHandler = Callable[[WorkflowEvent], Awaitable[None]]


def deliverable_key(client_id: str, month: int) -> str:
  return f"deliverable:{client_id}:{month}"


def business_plan_key(client_id: str) -> str:
  return f"business-plan:{client_id}"


def plan_pdf_key(plan_id: str) -> str:
  return f"business-plan-pdf:{plan_id}"


def journey_completed_key(client_id: str) -> str:
  return f"journey-complete:{client_id}"


class WorkflowEngine:
  """
  Decide which jobs follow a lifecycle event.

  Every handler re-checks whether the artifact it would produce already exists, and generation jobs carry
  idempotency keys so a repeated event cannot enqueue a second job while the first is still queued or running.
  Handler errors propagate to the caller; the dispatcher is responsible for isolating them.
  """

  def __init__(self, queue: JobQueue, journey: JourneyRepository, *, email_workflows_enabled: bool = False, auto_generate_pdf: bool = False, journey_months: int = 8, app_url: str = "http://localhost:3000") -> None:
    self._queue = queue
    self._journey = journey
    self._email_workflows_enabled = email_workflows_enabled
    self._auto_generate_pdf = auto_generate_pdf
    self._journey_months = journey_months
    self._portal_url = f"{app_url.rstrip('/')}/client-portal"
    self._handlers: dict[WorkflowEventType, EventHandler] = {
      "CLIENT_CREATED": self._on_client_created,
      "CLIENT_ACTIVATED": self._on_client_activated,
      "DELIVERABLE_COMPLETED": self._on_deliverable_completed,
      "DELIVERABLE_OVERDUE": self._on_deliverable_overdue,
      "PLAN_COMPLETED": self._on_plan_completed,
      "MONTH_TRANSITION": self._on_month_transition,
      "MILESTONE_REACHED": self._on_milestone_reached,
    }

  @property
  def journey_months(self) -> int:
    return self._journey_months

  async def handle(self, event: WorkflowEvent) -> None:
    handler = self._handlers.get(event.type)
    if handler is None:
      logger.error("Unknown workflow event type: %s", event.type)
      return

    logger.info("Processing workflow event %s for client %s", event.type, event.subject_id)
    await handler(event)

  async def check_overdue_deliverables(self, actor_id: str | None = None) -> int:
    """Raise DELIVERABLE_OVERDUE for every draft deliverable; returns how many were found."""
    drafts = await self._journey.list_draft_deliverables()
    logger.info("Found %d overdue deliverables", len(drafts))

    for deliverable in drafts:
      event = WorkflowEvent(
        type="DELIVERABLE_OVERDUE",
        subject_id=deliverable.client_id,
        actor_id=actor_id,
        metadata={"deliverable": {"deliverableId": deliverable.deliverable_id, "month": deliverable.month, "title": deliverable.title, "createdAt": deliverable.created_at.isoformat()}},
      )
      try:
        await self.handle(event)
      except Exception:  # noqa: BLE001
        logger.error("Overdue reminder failed for deliverable %s", deliverable.deliverable_id, exc_info=True)
    return len(drafts)

  async def _send_email(self, client: ClientProfile, preference: EmailPreference, template_id: str, context: dict[str, Any], *, idempotency_key: str | None = None) -> str | None:
    if not self._email_workflows_enabled:
      return None
    if not await self._journey.email_allowed(client.client_id, preference):
      logger.debug("Email %s disabled in preferences for client %s", template_id, client.client_id)
      return None

    payload = {"template": template_id, "clientId": client.client_id, "to": client.email, "toName": client.full_name, "context": context}
    job_id = await self._queue.enqueue("SEND_EMAIL", payload, EnqueueOptions(priority=JobPriority.NORMAL, idempotency_key=idempotency_key))
    logger.debug("Enqueued %s email for client %s as job %s", template_id, client.client_id, job_id)
    return job_id

  async def _enqueue_once(self, job_type: str, payload: dict[str, Any], key: str, *, priority: JobPriority, delay_seconds: float = 0.0) -> str | None:
    """Enqueue unless a job with the same key is queued, running or completed; returns the new job id."""
    existing = await self._queue.find_by_idempotency_key(key)
    if existing is not None:
      logger.info("Skipping %s: job %s already %s for key=%s", job_type, existing.job_id, existing.status, key)
      return None
    return await self._queue.enqueue(job_type, payload, EnqueueOptions(priority=priority, delay_seconds=delay_seconds, idempotency_key=key))

  async def _on_client_created(self, event: WorkflowEvent) -> None:
    client = await self._journey.get_client(event.subject_id)
    if client is None:
      logger.error("Client %s not found for CLIENT_CREATED", event.subject_id)
      return

    await self._send_email(client, "welcome", "WELCOME", {"clientName": client.full_name, "portalUrl": self._portal_url})
    await self._journey.record_activity(ActivityRecord(activity_type="CLIENT_CREATED", description=f"Created new client: {client.full_name}", actor_id=event.actor_id, client_id=client.client_id))

  async def _on_client_activated(self, event: WorkflowEvent) -> None:
    client = await self._journey.get_client(event.subject_id)
    if client is None:
      logger.error("Client %s not found for CLIENT_ACTIVATED", event.subject_id)
      return

    await self._send_email(client, "activation", "CLIENT_ACTIVATED", {"clientName": client.full_name, "portalUrl": self._portal_url})

    if await self._journey.latest_business_plan(client.client_id) is None:
      await self._enqueue_once("GENERATE_BUSINESS_PLAN", {"clientId": client.client_id, "userId": event.actor_id}, business_plan_key(client.client_id), priority=JobPriority.HIGH)

    # Month 1 waits for the business plan to land first.
    if await self._journey.get_deliverable(client.client_id, 1) is None:
      await self._enqueue_once(
        "GENERATE_DELIVERABLE", {"clientId": client.client_id, "month": 1, "userId": event.actor_id}, deliverable_key(client.client_id, 1), priority=JobPriority.HIGH, delay_seconds=FIRST_MONTH_DELAY_SECONDS
      )

  async def _on_deliverable_completed(self, event: WorkflowEvent) -> None:
    month = _event_month(event)
    if month is None:
      logger.error("DELIVERABLE_COMPLETED for client %s carries no month", event.subject_id)
      return

    if month >= self._journey_months:
      await self._complete_journey(event)
      return

    next_month = month + 1
    if await self._journey.get_deliverable(event.subject_id, next_month) is not None:
      logger.debug("Month %d deliverable already exists for client %s", next_month, event.subject_id)
      return

    job_id = await self._enqueue_once(
      "GENERATE_DELIVERABLE", {"clientId": event.subject_id, "month": next_month, "userId": event.actor_id}, deliverable_key(event.subject_id, next_month), priority=JobPriority.NORMAL, delay_seconds=NEXT_MONTH_DELAY_SECONDS
    )
    if job_id is None:
      return
    logger.info("Scheduled month %d deliverable for client %s after month %d", next_month, event.subject_id, month)

    client = await self._journey.get_client(event.subject_id)
    if client is not None:
      await self._send_email(client, "deliverable_ready", "DELIVERABLE_READY", {"clientName": client.full_name, "month": next_month, "deliverableTitle": month_title(next_month)})

  async def _complete_journey(self, event: WorkflowEvent) -> None:
    if await self._journey.has_milestone(event.subject_id, JOURNEY_COMPLETED_MILESTONE):
      logger.info("Journey for client %s already marked complete", event.subject_id)
      return

    logger.info("Client %s completed all %d months of deliverables", event.subject_id, self._journey_months)
    client = await self._journey.get_client(event.subject_id)
    if client is not None:
      await self._send_email(client, "journey_completed", "JOURNEY_COMPLETED", {"clientName": client.full_name}, idempotency_key=journey_completed_key(event.subject_id))

    await self._journey.record_activity(
      ActivityRecord(
        activity_type="CLIENT_UPDATED", description=f"Client {event.subject_id} completed all {self._journey_months} months of deliverables", actor_id=event.actor_id, client_id=event.subject_id, metadata={"milestone": JOURNEY_COMPLETED_MILESTONE}
      )
    )

  async def _on_deliverable_overdue(self, event: WorkflowEvent) -> None:
    deliverable = event.metadata.get("deliverable")
    if not deliverable:
      logger.error("DELIVERABLE_OVERDUE for client %s carries no deliverable", event.subject_id)
      return

    title = deliverable.get("title") or month_title(int(deliverable.get("month") or 0))
    client = await self._journey.get_client(event.subject_id)
    if client is not None:
      await self._send_email(client, "deliverable_overdue", "DELIVERABLE_OVERDUE", {"clientName": client.full_name, "deliverableTitle": title, "createdAt": deliverable.get("createdAt")})

    await self._journey.record_activity(ActivityRecord(activity_type="DELIVERABLE_OVERDUE", description=f"Deliverable overdue: {title}", actor_id=event.actor_id, client_id=event.subject_id, metadata=dict(deliverable)))

  async def _on_plan_completed(self, event: WorkflowEvent) -> None:
    if self._auto_generate_pdf:
      plan = await self._journey.latest_business_plan(event.subject_id)
      if plan is not None:
        await self._enqueue_once("GENERATE_PDF", {"businessPlanId": plan.plan_id, "quality": "final", "userId": event.actor_id}, plan_pdf_key(plan.plan_id), priority=JobPriority.NORMAL)

    client = await self._journey.get_client(event.subject_id)
    if client is not None:
      await self._send_email(client, "business_plan_ready", "BUSINESS_PLAN_READY", {"clientName": client.full_name})

  async def _on_month_transition(self, event: WorkflowEvent) -> None:
    deliverables = await self._journey.list_deliverables(event.subject_id)
    if not deliverables:
      return

    latest = max(deliverables, key=lambda item: item.month)
    next_month = latest.month + 1
    if latest.status != "DELIVERED" or next_month > self._journey_months:
      return
    if any(item.month == next_month for item in deliverables):
      return

    await self._enqueue_once("GENERATE_DELIVERABLE", {"clientId": event.subject_id, "month": next_month, "userId": event.actor_id}, deliverable_key(event.subject_id, next_month), priority=JobPriority.NORMAL)

  async def _on_milestone_reached(self, event: WorkflowEvent) -> None:
    milestone = str(event.metadata.get("milestone") or "unknown")
    await self._journey.record_activity(ActivityRecord(activity_type="CLIENT_UPDATED", description=f"Client reached milestone: {milestone}", actor_id=event.actor_id, client_id=event.subject_id, metadata={"milestone": milestone}))

    client = await self._journey.get_client(event.subject_id)
    if client is not None:
      await self._send_email(client, "milestone_reached", "CLIENT_MILESTONE", {"clientName": client.full_name, "milestone": milestone})


def _event_month(event: WorkflowEvent) -> int | None:
  raw = event.metadata.get("month")
  if raw is None:
    raw = (event.metadata.get("deliverable") or {}).get("month")
  try:
    return int(raw) if raw is not None else None
  except (TypeError, ValueError):
    return None
