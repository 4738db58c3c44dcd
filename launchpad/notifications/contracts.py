"""Contracts for journey email delivery."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class EmailNotification:
  """A rendered journey email; `template_id` is forwarded to the provider as a tag."""

  to_address: str
  to_name: str | None
  subject: str
  text: str
  html: str
  template_id: str | None = None


class NotificationError(Exception):
  """Base class for all notification delivery failures."""


class NotificationProviderError(NotificationError):
  """The email provider rejected the message or could not be reached; the SEND_EMAIL job retries."""


class UnknownTemplateError(NotificationError):
  """No template is registered under the requested id; retrying cannot help."""


class EmailSender(Protocol):
  """Delivery contract for sending journey emails."""

  def send(self, notification: EmailNotification) -> dict[str, str | None]:
    """Send an email synchronously and return provider, message and request identifiers."""
