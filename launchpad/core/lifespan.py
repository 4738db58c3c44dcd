import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from launchpad.core.database import dispose_engine
from launchpad.core.logging import _initialize_logging
from launchpad.pipeline import build_pipeline


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, then build and run the generation pipeline for the app's lifetime."""
  from launchpad.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("launchpad.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except Exception:  # noqa: BLE001
    # Logging problems must not keep the service from starting.
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  pipeline = await build_pipeline(settings)
  await pipeline.start()
  app.state.pipeline = pipeline
  try:
    yield
  finally:
    app.state.pipeline = None
    await pipeline.shutdown()
    await dispose_engine()
    logger.info("Shutdown complete.")
