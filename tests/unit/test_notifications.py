import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from launchpad.notifications.contracts import EmailNotification, NotificationProviderError, UnknownTemplateError
from launchpad.notifications.email_sender import MailerSendConfig, MailerSendEmailSender, NullEmailSender
from launchpad.notifications.service import NotificationService
from launchpad.notifications.templates import render_email


@pytest.fixture
def mock_email_sender():
  sender = MagicMock()
  sender.send.return_value = {"provider": "mailersend", "message_id": "msg-1", "request_id": "req-1"}
  return sender


@pytest.fixture
def notification_service(mock_email_sender):
  return NotificationService(email_sender=mock_email_sender, email_enabled=True)


def test_render_email_escapes_html_only_in_html_body():
  subject, text, html_body = render_email("CLIENT_MILESTONE", {"clientName": "Ada", "milestone": "<b>First sale</b>"})
  assert subject == "Milestone reached: <b>First sale</b>"
  assert "<b>First sale</b>" in text
  assert "&lt;b&gt;First sale&lt;/b&gt;" in html_body
  assert html_body.startswith("<p>Hi Ada,</p>")


def test_render_email_rejects_unknown_template():
  with pytest.raises(UnknownTemplateError):
    render_email("NOPE", {})


@pytest.mark.anyio
async def test_send_template_renders_and_sends(notification_service, mock_email_sender):
  result = await notification_service.send_template(template_id="WELCOME", to_address="ada@example.com", to_name="Ada", variables={"clientName": "Ada", "portalUrl": "https://app/client-portal"})

  assert result["message_id"] == "msg-1"
  notification = mock_email_sender.send.call_args[0][0]
  assert notification.to_address == "ada@example.com"
  assert notification.subject == "Welcome aboard, Ada"
  assert notification.template_id == "WELCOME"
  assert "https://app/client-portal" in notification.text


@pytest.mark.anyio
async def test_send_template_propagates_provider_error(notification_service, mock_email_sender):
  # Provider failures must reach the job so it can be retried.
  mock_email_sender.send.side_effect = NotificationProviderError("MailerSend returned HTTP 503")
  with pytest.raises(NotificationProviderError):
    await notification_service.send_template(template_id="WELCOME", to_address="ada@example.com", variables={})


def test_mailersend_wraps_http_errors():
  sender = MailerSendEmailSender(config=MailerSendConfig(api_key="key", from_address="studio@example.com", from_name="Studio", timeout_seconds=5))
  notification = EmailNotification(to_address="ada@example.com", to_name="Ada", subject="Hi", text="Hi", html="<p>Hi</p>")
  error = urllib.error.HTTPError(url="https://api.mailersend.com/v1/email", code=403, msg="Forbidden", hdrs=None, fp=None)

  with patch("urllib.request.urlopen", side_effect=error):
    with pytest.raises(NotificationProviderError, match="HTTP 403"):
      sender.send(notification)


def test_mailersend_reads_message_id_header():
  sender = MailerSendEmailSender(config=MailerSendConfig(api_key="key", from_address="studio@example.com", from_name=None, timeout_seconds=5))
  notification = EmailNotification(to_address="ada@example.com", to_name=None, subject="Hi", text="Hi", html="<p>Hi</p>", template_id="WELCOME")
  response = MagicMock()
  response.headers.items.return_value = [("X-Message-Id", "abc123"), ("X-Request-Id", "req-9")]
  response.read.return_value = b""
  response.__enter__.return_value = response

  with patch("urllib.request.urlopen", return_value=response) as mock_urlopen:
    result = sender.send(notification)

  assert result == {"provider": "mailersend", "message_id": "abc123", "request_id": "req-9"}
  request = mock_urlopen.call_args[0][0]
  assert request.get_header("Authorization") == "Bearer key"
  body = json.loads(request.data)
  assert body["tags"] == ["WELCOME"]
  assert "name" not in body["from"]


def test_null_sender_drops_email():
  notification = EmailNotification(to_address="ada@example.com", to_name=None, subject="Hi", text="Hi", html="<p>Hi</p>")
  assert NullEmailSender().send(notification) == {"provider": None, "message_id": None, "request_id": None}
