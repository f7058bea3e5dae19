import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api import clock, cron, notifications
from app.config import settings
from app.database import init_db
from app.errors import StorageError
from app.logging import setup_logging
from app.milestones import MILESTONES, check_table_spacing
from app.notifications.push import PushConfig

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # ConfigError here stops the app from starting
    check_table_spacing(MILESTONES, timedelta(seconds=settings.milestone_tolerance_seconds))
    app.state.push_config = PushConfig.from_settings(settings)
    init_db()
    logger.info("Countdown to %s at %s", settings.countdown_title, settings.countdown_target.isoformat())
    yield

app = FastAPI(title="Countdown Push API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])
app.include_router(clock.router, prefix="/api/time", tags=["time"])
app.include_router(cron.router, prefix="/api/cron", tags=["cron"])

@app.exception_handler(StorageError)
def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Subscription store unavailable"})

@app.get("/health")
def health():
    return {"status": "ok"}
