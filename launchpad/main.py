from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from launchpad.api.routes import admin
from launchpad.core.exceptions import cron_pattern_handler, global_exception_handler, http_exception_handler, job_not_found_handler, job_transition_handler, request_validation_exception_handler
from launchpad.core.lifespan import lifespan
from launchpad.jobs.errors import CronPatternError, InvalidJobTransitionError, JobNotFoundError

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(JobNotFoundError, job_not_found_handler)
app.add_exception_handler(InvalidJobTransitionError, job_transition_handler)
app.add_exception_handler(CronPatternError, cron_pattern_handler)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(admin.router, prefix="/admin", tags=["admin"])
