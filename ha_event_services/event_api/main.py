from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .. import __version__
from ..common.config import env_bool
from ..jobs.batch.config import BatchConfig
from ..jobs.batch.factory import get_orchestrator
from ..jobs.batch.scheduler import BatchScheduler
from .endpoints import batch_router, health_router, ingest_router, metrics_router
from .wiring import shutdown_pipeline

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler: Optional[BatchScheduler] = None
    # The batch normally runs as its own process (jobs.batch.cli).
    if env_bool("AI_BATCH_SCHEDULER_IN_API", False):
        cfg = BatchConfig.from_env()
        scheduler = BatchScheduler(get_orchestrator(), cfg.interval_seconds, enabled=cfg.enabled)
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()
        shutdown_pipeline()
        logger.info("[API] Shutdown complete")


app = FastAPI(title="HA Event Services", version=__version__, lifespan=lifespan)

app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(ingest_router)
app.include_router(batch_router)
