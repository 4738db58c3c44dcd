"""Prompt builders for business plan and monthly deliverable generation."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from launchpad.jobs.models import utc_now
from launchpad.storage.journey_repo import ClientProfile, DeliverableRecord

STUDIO_NAME = "Launchpad Studio"
PREVIOUS_SUMMARY_CHARS = 500

MONTH_TITLES = (
  "Month 1: Foundation Excellence",
  "Month 2: Brand Readiness & Productization",
  "Month 3: Market Entry Preparation",
  "Month 4: Sales Engine & Launch Infrastructure",
  "Month 5: Pre-Launch Mastery",
  "Month 6: Soft Launch Execution",
  "Month 7: Scaling & Growth Systems",
  "Month 8: Full Launch & Market Domination",
)

BUSINESS_PLAN_SYSTEM_PROMPT = (
  "You are a senior brand strategist at {{STUDIO}}. Write practical, specific business plans in Markdown for creators launching a consumer brand. "
  "Ground every recommendation in the client's answers and avoid generic filler."
)

BUSINESS_PLAN_PROMPT = """Create a complete business plan for {{CLIENT_NAME}}.

Client profile:
- Niche: {{NICHE}}
- Vision: {{VISION}}
- Target audience: {{TARGET_AUDIENCE}} ({{TARGET_AGE}})
- Demographics: {{DEMOGRAPHICS}}
- Key pain points: {{PAIN_POINTS}}
- Unique value: {{VALUE_PROPS}}
- Brand image: {{BRAND_IMAGE}}
- Brand personality: {{BRAND_PERSONALITY}}
- Preferred font: {{PREFERRED_FONT}}

Onboarded {{ONBOARDED_DATE}}; plan generated {{GENERATION_DATE}}.

Cover the executive summary, market analysis, brand positioning, product strategy, go-to-market plan, revenue model and an
eight month launch roadmap."""

DELIVERABLE_SYSTEM_PROMPT = (
  "You are the {{STUDIO}} launch team. Produce the monthly client deliverable as structured Markdown with clear action items, "
  "owners and deadlines. Build on the work already delivered instead of repeating it."
)

DELIVERABLE_PROMPT = """Write the deliverable "{{MONTH_TITLE}}" (month {{MONTH}} of the launch journey) for {{CLIENT_NAME}}.

Niche: {{NICHE}}
Vision: {{VISION}}
Target audience: {{TARGET_AUDIENCE}}
Brand personality: {{BRAND_PERSONALITY}}

Previous months:
{{PREVIOUS_MONTHS}}"""


def month_title(month: int) -> str:
  if 1 <= month <= len(MONTH_TITLES):
    return MONTH_TITLES[month - 1]
  return f"Month {month}"


def _replace_placeholders(template: str, values: dict[str, str]) -> str:
  """Substitute {{PLACEHOLDER}} markers with client context."""
  rendered = template
  for key, value in values.items():
    rendered = rendered.replace(f"{{{{{key}}}}}", value)

  return rendered


def _client_values(client: ClientProfile, *, now: datetime | None = None) -> dict[str, str]:
  generated = now or utc_now()
  return {
    "STUDIO": STUDIO_NAME,
    "CLIENT_NAME": client.full_name,
    "NICHE": client.niche or "-",
    "VISION": client.vision or "-",
    "TARGET_AUDIENCE": client.target_audience or "-",
    "TARGET_AGE": client.target_age or "-",
    "DEMOGRAPHICS": client.demographics or "-",
    "PAIN_POINTS": client.pain_points or "-",
    "VALUE_PROPS": client.value_props or "-",
    "BRAND_IMAGE": client.brand_image or "-",
    "BRAND_PERSONALITY": client.brand_personality or "-",
    "PREFERRED_FONT": client.preferred_font or "-",
    "ONBOARDED_DATE": client.onboarded_at.date().isoformat(),
    "GENERATION_DATE": generated.date().isoformat(),
  }


def summarize_previous_months(deliverables: Sequence[DeliverableRecord], month: int) -> str:
  """Condense earlier deliverables into a prompt-sized recap."""
  earlier = [item for item in sorted(deliverables, key=lambda item: item.month) if item.month < month]
  if not earlier:
    return "None yet; this is the first deliverable."

  return "\n\n".join(f"## {item.title}\n{item.content[:PREVIOUS_SUMMARY_CHARS]}..." for item in earlier)


def build_business_plan_prompt(client: ClientProfile, *, now: datetime | None = None) -> tuple[str, str]:
  """Return (system_prompt, prompt) for a business plan."""
  values = _client_values(client, now=now)
  return _replace_placeholders(BUSINESS_PLAN_SYSTEM_PROMPT, values), _replace_placeholders(BUSINESS_PLAN_PROMPT, values)


def build_deliverable_prompt(client: ClientProfile, month: int, previous: Sequence[DeliverableRecord], *, now: datetime | None = None) -> tuple[str, str]:
  """Return (system_prompt, prompt) for one month of the journey."""
  values = _client_values(client, now=now)
  values.update({"MONTH": str(month), "MONTH_TITLE": month_title(month), "PREVIOUS_MONTHS": summarize_previous_months(previous, month)})
  return _replace_placeholders(DELIVERABLE_SYSTEM_PROMPT, values), _replace_placeholders(DELIVERABLE_PROMPT, values)
