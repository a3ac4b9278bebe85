import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agenda.api.routes import appointments, availability, cron, waitlist
from agenda.core.cache import TTLCache
from agenda.core.config import _ENV_FILE, settings
from agenda.core.db import async_session_maker
from agenda.core.errors import AvailabilityError
from agenda.services.integration_service import IntegrationDirectory
from agenda.services.messaging import Messenger, WhatsAppMessenger
from agenda.services.reminder_job import run_reminder_job
from agenda.services.timewindow import system_clock
from agenda.services.waitlist_job import run_waitlist_job

if os.getenv("ENV") != "production":
    logging.basicConfig(level=logging.DEBUG)
else:
    logging.basicConfig(
        level=logging.INFO,
        format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
    )
logger = logging.getLogger(__name__)


def configure_state(
    app: FastAPI,
    session_maker: async_sessionmaker[AsyncSession],
    messenger: Messenger | None = None,
) -> None:
    """Attach the shared collaborators routes and jobs pull from ``app.state``."""
    app.state.session_maker = session_maker
    app.state.tenant_cache = TTLCache(settings.cache_ttl_seconds, settings.cache_max_entries)
    app.state.integration_cache = TTLCache(settings.cache_ttl_seconds, settings.cache_max_entries)
    app.state.integrations = IntegrationDirectory(session_maker, app.state.integration_cache)
    app.state.messenger = messenger or WhatsAppMessenger(app.state.integrations)


async def _run_job(name: str, job: Callable[[], Awaitable[object]]) -> None:
    try:
        report = await job()
        logger.debug("Job %s finished: %s", name, report)
    except Exception as e:
        logger.exception("Job %s failed: %s", name, e)


async def _job_loop(name: str, interval_minutes: int, job: Callable[[], Awaitable[object]]) -> None:
    while True:
        await _run_job(name, job)
        await asyncio.sleep(interval_minutes * 60)


def _start_job_loops(app: FastAPI) -> list[asyncio.Task]:
    session_maker = app.state.session_maker
    messenger = app.state.messenger
    jobs = [
        (
            "waitlist",
            settings.waitlist_poll_interval_minutes,
            lambda: run_waitlist_job(session_maker, messenger, system_clock()),
        ),
        (
            "reminder_24h",
            settings.reminder_poll_interval_minutes,
            lambda: run_reminder_job(session_maker, messenger, system_clock(), 24),
        ),
        (
            "reminder_2h",
            settings.reminder_poll_interval_minutes,
            lambda: run_reminder_job(session_maker, messenger, system_clock(), 2),
        ),
    ]
    return [asyncio.create_task(_job_loop(name, interval, job)) for name, interval, job in jobs]


@asynccontextmanager
async def lifespan(app: FastAPI):
    _startup_log()
    configure_state(app, async_session_maker)
    tasks = _start_job_loops(app) if settings.jobs_enabled else []
    yield
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title="Agenda API",
    description="Multi-tenant scheduling: availability, bookings, waitlist and reminders",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Tenant-Id", "X-Cron-Secret"],
)

app.include_router(availability.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(waitlist.router, prefix="/api/v1")
app.include_router(cron.router, prefix="/api/v1")


def _cors_headers(origin: str | None) -> dict[str, str]:
    """Add CORS headers to error responses so the browser doesn't block them."""
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, X-Tenant-Id, X-Cron-Secret",
    }
    if origin and origin in settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = origin
    elif settings.cors_origins_list:
        headers["Access-Control-Allow-Origin"] = settings.cors_origins_list[0]
    return headers


@app.exception_handler(AvailabilityError)
async def availability_exception_handler(request: Request, exc: AvailabilityError) -> JSONResponse:
    if exc.status_code >= 422:
        logger.warning("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=_cors_headers(request.headers.get("origin")),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return actual error in JSON; include CORS so 500 responses are not blocked by browser."""
    origin = request.headers.get("origin")
    headers = _cors_headers(origin)
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=headers,
        )
    logger.exception("Unhandled exception: %s", exc)
    detail = f"{type(exc).__name__}: {str(exc)}"
    return JSONResponse(
        status_code=500,
        content={"detail": detail},
        headers=headers,
    )


def _startup_log() -> None:
    logger.info("Loading .env from: %s (exists: %s)", _ENV_FILE, _ENV_FILE.exists())
    if settings.jobs_enabled:
        logger.info(
            "Background jobs: waitlist every %d min, reminders every %d min (tolerance %d min)",
            settings.waitlist_poll_interval_minutes,
            settings.reminder_poll_interval_minutes,
            settings.reminder_tolerance_minutes,
        )
    else:
        logger.info("Background jobs disabled; expecting calls to /api/v1/cron/*")
    if not settings.cron_secret:
        logger.warning("CRON_SECRET is not set; cron routes will answer 503")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
