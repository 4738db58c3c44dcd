"""Templated email delivery for the SEND_EMAIL job."""

from __future__ import annotations

import logging
from typing import Any

from starlette.concurrency import run_in_threadpool

from launchpad.notifications.contracts import EmailNotification, EmailSender
from launchpad.notifications.templates import render_email

logger = logging.getLogger(__name__)


class NotificationService:
  """Render a template and hand it to the configured sender."""

  def __init__(self, *, email_sender: EmailSender, email_enabled: bool) -> None:
    self._email_sender = email_sender
    self._email_enabled = email_enabled

  @property
  def email_enabled(self) -> bool:
    return self._email_enabled

  async def send_template(self, *, template_id: str, to_address: str, variables: dict[str, Any], to_name: str | None = None) -> dict[str, str | None]:
    """
    Deliver one templated email.

    Rendering errors raise UnknownTemplateError; provider failures raise NotificationProviderError so the
    calling job can retry.
    """
    subject, text_body, html_body = render_email(template_id, variables)
    notification = EmailNotification(to_address=to_address, to_name=to_name, subject=subject, text=text_body, html=html_body, template_id=template_id)

    # The sender performs blocking I/O.
    result = await run_in_threadpool(self._email_sender.send, notification)
    logger.info("Email %s sent to=%s provider=%s message_id=%s", template_id, to_address, result.get("provider"), result.get("message_id"))
    return result
