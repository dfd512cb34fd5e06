import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from helpshelf.api.deps import build_session_binder
from helpshelf.api.router import api_router
from helpshelf.config import settings
from helpshelf.core.database import init_db
from helpshelf.services.collaborators import build_default_collaborators, close_http_client


def setup_logging() -> None:
    """Configure application logging."""
    # Format: timestamp - level - logger name - message
    log_format = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    date_format = "%H:%M:%S"

    # Configure root logger
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=log_format,
        datefmt=date_format,
        stream=sys.stdout,
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    # Quieten uvicorn access logs (the frontend polls every few seconds)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    from helpshelf.services.scheduler import scheduler

    # Startup
    setup_logging()
    logger.info(f"HelpShelf onboarding API starting up (persistence={settings.persistence_backend})")
    if settings.debug and settings.persistence_backend == "sql":
        await init_db()

    binder = build_session_binder()
    app.state.session_binder = binder
    app.state.collaborators = build_default_collaborators()
    scheduler.start(binder)
    yield
    # Shutdown
    scheduler.stop()
    await binder.shutdown()
    await close_http_client()
    logger.info("HelpShelf onboarding API shutting down")


app = FastAPI(
    title="HelpShelf Onboarding API",
    description="Site analysis progress for the onboarding flow",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests, skipping OPTIONS preflight and progress polls."""
    if request.method == "OPTIONS" or request.url.path == "/health":
        return await call_next(request)

    response = await call_next(request)

    # Only log non-2xx or state-changing endpoints
    path = request.url.path
    if response.status_code >= 400 or request.method != "GET":
        logger.info(f"{request.method} {path} → {response.status_code}")

    return response


# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
