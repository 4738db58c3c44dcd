import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from launchpad.jobs.errors import CronPatternError, InvalidJobTransitionError, JobNotFoundError


def _error_payload(detail: Any, *, error_code: str | None = None) -> dict[str, Any]:
  payload: dict[str, Any] = {"detail": detail}
  if error_code:
    payload["errorCode"] = error_code
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key not in {"input", "ctx"}}
    sanitized.append({key: value if isinstance(value, str | int | float | bool | list | tuple) or value is None else str(value) for key, value in scrubbed.items()})
  return sanitized


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  logger = logging.getLogger("uvicorn.error")
  logger.error("Global exception path=%s error_type=%s", request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error"))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
  # 422s are client-correctable; keep the log concise.
  logging.getLogger("uvicorn.error").warning("Request validation failed path=%s method=%s errors=%s", request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle HTTPExceptions while keeping 5xx details out of responses."""
  if exc.status_code >= 500:
    logging.getLogger("uvicorn.error").error("HTTPException path=%s status_code=%s detail=%s", request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error"))
  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail))


async def job_not_found_handler(request: Request, exc: JobNotFoundError) -> JSONResponse:
  return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=_error_payload(str(exc), error_code="job_not_found"))


async def job_transition_handler(request: Request, exc: InvalidJobTransitionError) -> JSONResponse:
  return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=_error_payload(str(exc), error_code="invalid_transition"))


async def cron_pattern_handler(request: Request, exc: CronPatternError) -> JSONResponse:
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(str(exc), error_code="invalid_schedule"))
