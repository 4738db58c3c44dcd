"""Client journey artifacts reached by generation handlers and workflows."""

from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

from launchpad.jobs.models import generate_id, utc_now

DeliverableStatus = Literal["DRAFT", "DELIVERED"]
EmailPreference = Literal["welcome", "activation", "deliverable_ready", "deliverable_overdue", "business_plan_ready", "journey_completed", "milestone_reached"]


@dataclass(frozen=True)
class ClientProfile:
  """Onboarding answers used to build generation context."""

  client_id: str
  full_name: str
  email: str
  niche: str = ""
  vision: str = ""
  target_audience: str = ""
  demographics: str = ""
  pain_points: str = ""
  value_props: str = ""
  target_age: str = ""
  brand_image: str = ""
  brand_personality: str = ""
  preferred_font: str = ""
  onboarded_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class DeliverableRecord:
  deliverable_id: str
  client_id: str
  month: int
  title: str
  content: str
  status: DeliverableStatus = "DRAFT"
  generated_by: str | None = None
  created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class BusinessPlanRecord:
  plan_id: str
  client_id: str
  version: int
  content: str
  status: str = "DRAFT"
  generated_by: str | None = None
  created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ActivityRecord:
  activity_type: str
  description: str
  actor_id: str | None = None
  client_id: str | None = None
  metadata: dict[str, Any] = field(default_factory=dict)
  created_at: datetime = field(default_factory=utc_now)


class JourneyRepository(Protocol):
  """Access to the host application's clients, deliverables, plans and activity log."""

  async def get_client(self, client_id: str) -> ClientProfile | None:
    """Fetch a client profile."""

  async def get_deliverable(self, client_id: str, month: int) -> DeliverableRecord | None:
    """Fetch the main deliverable for one journey month."""

  async def list_deliverables(self, client_id: str) -> list[DeliverableRecord]:
    """List a client's deliverables ordered by month."""

  async def list_draft_deliverables(self) -> list[DeliverableRecord]:
    """List deliverables that were generated but never delivered."""

  async def create_deliverable(self, *, client_id: str, month: int, title: str, content: str, generated_by: str | None) -> DeliverableRecord:
    """Persist a generated deliverable as a draft."""

  async def latest_business_plan(self, client_id: str) -> BusinessPlanRecord | None:
    """Fetch the highest plan version for a client."""

  async def create_business_plan(self, *, client_id: str, content: str, generated_by: str | None) -> BusinessPlanRecord:
    """Persist a new plan version."""

  async def record_activity(self, activity: ActivityRecord) -> None:
    """Append to the activity log."""

  async def has_milestone(self, client_id: str, milestone: str) -> bool:
    """Return whether the activity log already records a milestone for a client."""

  async def email_allowed(self, client_id: str, preference: EmailPreference) -> bool:
    """Return whether the client accepts a category of email."""


class InMemoryJourneyRepository(JourneyRepository):
  """Process-local journey store for development and tests."""

  def __init__(self) -> None:
    self._clients: dict[str, ClientProfile] = {}
    self._deliverables: dict[tuple[str, int], DeliverableRecord] = {}
    self._plans: dict[str, list[BusinessPlanRecord]] = {}
    self._preferences: dict[str, dict[str, bool]] = {}
    self.activities: list[ActivityRecord] = []
    self._lock = asyncio.Lock()

  def add_client(self, client: ClientProfile, *, preferences: dict[str, bool] | None = None) -> None:
    self._clients[client.client_id] = client
    if preferences:
      self._preferences[client.client_id] = dict(preferences)

  async def get_client(self, client_id: str) -> ClientProfile | None:
    return self._clients.get(client_id)

  async def get_deliverable(self, client_id: str, month: int) -> DeliverableRecord | None:
    return self._deliverables.get((client_id, month))

  async def list_deliverables(self, client_id: str) -> list[DeliverableRecord]:
    return sorted((item for key, item in self._deliverables.items() if key[0] == client_id), key=lambda item: item.month)

  async def list_draft_deliverables(self) -> list[DeliverableRecord]:
    return [item for item in self._deliverables.values() if item.status == "DRAFT"]

  async def create_deliverable(self, *, client_id: str, month: int, title: str, content: str, generated_by: str | None) -> DeliverableRecord:
    async with self._lock:
      if (client_id, month) in self._deliverables:
        raise ValueError(f"Deliverable for Month {month} already exists")
      record = DeliverableRecord(deliverable_id=generate_id(), client_id=client_id, month=month, title=title, content=content, generated_by=generated_by)
      self._deliverables[(client_id, month)] = record
      return record

  async def mark_delivered(self, client_id: str, month: int) -> DeliverableRecord:
    record = dataclasses.replace(self._deliverables[(client_id, month)], status="DELIVERED")
    self._deliverables[(client_id, month)] = record
    return record

  async def latest_business_plan(self, client_id: str) -> BusinessPlanRecord | None:
    plans = self._plans.get(client_id)
    return plans[-1] if plans else None

  async def create_business_plan(self, *, client_id: str, content: str, generated_by: str | None) -> BusinessPlanRecord:
    async with self._lock:
      plans = self._plans.setdefault(client_id, [])
      record = BusinessPlanRecord(plan_id=generate_id(), client_id=client_id, version=len(plans) + 1, content=content, generated_by=generated_by)
      plans.append(record)
      return record

  async def record_activity(self, activity: ActivityRecord) -> None:
    self.activities.append(activity)

  async def has_milestone(self, client_id: str, milestone: str) -> bool:
    return any(activity.client_id == client_id and activity.metadata.get("milestone") == milestone for activity in self.activities)

  async def email_allowed(self, client_id: str, preference: EmailPreference) -> bool:
    # Clients without stored preferences receive every category.
    return self._preferences.get(client_id, {}).get(preference, True)
