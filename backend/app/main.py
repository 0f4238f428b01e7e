"""FastAPI application entry point.

Routes:
    GET  /, /health                         service info and readiness
    POST /jira-webhook, /agents/all,
         /agents/execute                    workflow triggers
    GET  /status/{id}, /results/{id}, /runs run inspection
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings, settings
from app.routes import health, runs, webhook

_logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
QUIET_LOGGERS = ("httpcore", "httpx", "urllib3", "asyncio", "watchfiles", "github")


# ── Logging configuration ────────────────────────────────────────────

def configure_logging(level: str, log_file: str | Path) -> None:
    """Console at *level*, everything at DEBUG appended to *log_file*."""
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(fmt)

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()  # uvicorn reload re-imports this module
    root.addHandler(console)
    root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# ── Lifespan ─────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: Settings = app.state.settings
    _logger.info(
        "Starting Test Autopilot | env=%s | target_repo=%s | workspace=%s | headed=%s",
        cfg.APP_ENV, cfg.TARGET_REPO_URL or "(unset)", cfg.WORKSPACE_ROOT, cfg.HEADED,
    )
    for name, ready in health.integrations(cfg).items():
        if not ready:
            _logger.warning("Integration '%s' is not configured; runs that need it will fail", name)

    yield

    cancelled = webhook.cancel_active_runs()
    if cancelled:
        _logger.warning("Shutdown cancelled %d running workflow(s)", cancelled)


# ── Application factory ──────────────────────────────────────────────

def create_app(cfg: Settings = settings) -> FastAPI:
    configure_logging(cfg.LOG_LEVEL, cfg.LOG_FILE)

    application = FastAPI(
        title="Issue-to-Test Autopilot",
        description="Turns Jira issues into Playwright tests, runs them and repairs broken locators.",
        version="1.0.0",
        debug=cfg.APP_DEBUG,
        lifespan=lifespan,
    )
    application.state.settings = cfg
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.include_router(health.router, tags=["health"])
    application.include_router(webhook.router, tags=["workflow"])
    application.include_router(runs.router, tags=["runs"])
    return application


app = create_app()


def run() -> None:
    """Console-script entry point."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.BACKEND_HOST,
        port=settings.BACKEND_PORT,
        reload=settings.APP_DEBUG and settings.APP_ENV == "development",
    )
