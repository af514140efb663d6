"""FastAPI application entry point."""
import logging
import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI

from erp_mirror.api.routes import router
from erp_mirror.auth.token_manager import build_token_manager
from erp_mirror.config import settings
from erp_mirror.connectors.sankhya import SankhyaClient
from erp_mirror.database import init_db
from erp_mirror.scheduler.queue import build_scheduler

# Configure structured logging at startup
logging.config.dictConfig({
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%dT%H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "loggers": {
        "apscheduler": {"level": "WARNING"},
    },
    "root": {
        "level": settings.log_level,
        "handlers": ["console"],
    },
})

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("ERP Mirror starting up (%s)", settings.environment)
    init_db()
    logger.info("Database ready")

    client = SankhyaClient()
    app.state.token_manager = build_token_manager(client)
    app.state.scheduler = build_scheduler(app.state.token_manager, client)
    if settings.scheduler_enabled:
        app.state.scheduler.start()
    else:
        logger.info("Scheduler disabled; queue only drains on force-sync")
    yield
    app.state.scheduler.stop()
    logger.info("ERP Mirror shutting down")


app = FastAPI(
    title="ERP Mirror",
    description="Multi-tenant mirror of ERP entity tables with scheduled reconciliation.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(router, prefix="/api", tags=["api"])


@app.get("/health")
def health():
    return {"status": "ok"}
