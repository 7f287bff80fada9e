"""Airdate: FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from airdate.config import settings
from airdate.errors import PersistenceError, SyncInProgressError, ValidationError
from airdate.api import health, library, calendar, reminders, preferences, sync

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup: logging, DB tables, shared store + services
    from airdate.database import init_db
    from airdate.api.deps import build_services

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await init_db()
    await build_services(app, settings)
    yield
    # Shutdown: stop a restore that is still running
    await app.state.sync_engine.close()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Personal TV and movie release calendar",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

# CORS: allow frontend dev server + production URL
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",     # Vite dev server
        settings.app_url,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error mapping ────────────────────────────────────────────────

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})


@app.exception_handler(SyncInProgressError)
async def sync_in_progress_handler(request: Request, exc: SyncInProgressError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Persistence failed: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# ── Mount routers ────────────────────────────────────────────────
app.include_router(health.router,       prefix="/api/v1", tags=["system"])
app.include_router(library.router,      prefix="/api/v1", tags=["library"])
app.include_router(calendar.router,     prefix="/api/v1", tags=["calendar"])
app.include_router(reminders.router,    prefix="/api/v1", tags=["reminders"])
app.include_router(preferences.router,  prefix="/api/v1", tags=["settings"])
app.include_router(sync.router,         prefix="/api/v1", tags=["sync"])


def run():
    """Console entry point."""
    import uvicorn

    uvicorn.run("airdate.main:app", host=settings.host, port=settings.port)
