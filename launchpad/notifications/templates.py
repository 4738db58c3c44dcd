"""Subject and body templates for journey notifications."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Any

from launchpad.notifications.contracts import UnknownTemplateError

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")


@dataclass(frozen=True)
class EmailTemplate:
  template_id: str
  subject: str
  body: str


TEMPLATES: dict[str, EmailTemplate] = {
  "WELCOME": EmailTemplate("WELCOME", "Welcome aboard, {{clientName}}", "Hi {{clientName}},\n\nYour launch journey starts now. Follow your progress at {{portalUrl}}."),
  "CLIENT_ACTIVATED": EmailTemplate("CLIENT_ACTIVATED", "Your launch journey is active", "Hi {{clientName}},\n\nYour account is active and we are preparing your business plan. Track it at {{portalUrl}}."),
  "BUSINESS_PLAN_READY": EmailTemplate("BUSINESS_PLAN_READY", "Your business plan is ready", "Hi {{clientName}},\n\nYour business plan is ready for review."),
  "DELIVERABLE_READY": EmailTemplate("DELIVERABLE_READY", "{{deliverableTitle}} is on its way", "Hi {{clientName}},\n\nWe have started work on month {{month}} of your journey."),
  "DELIVERABLE_OVERDUE": EmailTemplate("DELIVERABLE_OVERDUE", "Reminder: {{deliverableTitle}}", "Hi {{clientName}},\n\n{{deliverableTitle}} is still waiting for your review."),
  "JOURNEY_COMPLETED": EmailTemplate("JOURNEY_COMPLETED", "You completed the launch journey", "Hi {{clientName}},\n\nCongratulations on completing every month of the launch journey."),
  "CLIENT_MILESTONE": EmailTemplate("CLIENT_MILESTONE", "Milestone reached: {{milestone}}", "Hi {{clientName}},\n\nYou just reached a new milestone: {{milestone}}."),
}


def _render(raw_template: str, *, variables: dict[str, Any], escape_html: bool) -> str:
  def _replace(match: re.Match[str]) -> str:
    value = variables.get(match.group(1), "")
    rendered = str(value) if value is not None else ""
    return html.escape(rendered, quote=True) if escape_html else rendered

  return _PLACEHOLDER_RE.sub(_replace, raw_template)


def render_email(template_id: str, variables: dict[str, Any]) -> tuple[str, str, str]:
  """Render subject, text and html for a template id."""
  template = TEMPLATES.get(template_id)
  if template is None:
    raise UnknownTemplateError(f"Unknown notification template: {template_id}")

  subject = _render(template.subject, variables=variables, escape_html=False)
  text = _render(template.body, variables=variables, escape_html=False)
  paragraphs = _render(template.body, variables=variables, escape_html=True).split("\n\n")
  html_body = "".join(f"<p>{paragraph}</p>" for paragraph in paragraphs)
  return subject, text, html_body
