"""Shared dependencies for admin routes."""

from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from launchpad.config import Settings, get_settings
from launchpad.pipeline import Pipeline

logger = logging.getLogger(__name__)


def get_pipeline(request: Request) -> Pipeline:
  pipeline = getattr(request.app.state, "pipeline", None)
  if pipeline is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Pipeline is not running.")
  return pipeline


def require_admin_secret(settings: Annotated[Settings, Depends(get_settings)], x_launchpad_admin_secret: str | None = Header(default=None)) -> None:
  """Reject requests without the configured admin secret."""
  # An unset secret disables the admin surface.
  if not settings.admin_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin authentication is not configured.")
  if not secrets.compare_digest(x_launchpad_admin_secret or "", settings.admin_secret):
    logger.warning("Unauthorized admin request")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin secret.")
