"""
Runbook chat server

Entry point for the FastAPI application.
"""

from __future__ import annotations

import argparse
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from runbook_chat import __version__
from runbook_chat.api import realtime
from runbook_chat.api.v1 import router as api_v1_router
from runbook_chat.core.config import Settings, get_settings
from runbook_chat.core.errors import ChatError
from runbook_chat.core.logging import configure_logging
from runbook_chat.core.runtime import build_runtime

log = structlog.get_logger()


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("api.error", path=request.url.path, code=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(
            "Runbook chat starting",
            data_dir=settings.data_dir,
            token_format=settings.token_format,
        )
        yield
        log.info("Runbook chat shutting down", connections=len(app.state.runtime.registry))

    app = FastAPI(
        title="Runbook Chat",
        description="Real-time channel messaging for the runbook platform.",
        version=__version__,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.runtime = build_runtime(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(ChatError, chat_error_handler)

    app.include_router(api_v1_router, prefix="/api/v1")
    app.include_router(realtime.router)

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        await app.state.runtime.directory.list_channels()
        return {"status": "ready"}

    return app


def run() -> None:
    parser = argparse.ArgumentParser(description="Runbook chat server")
    parser.add_argument("--host", default=None, help="Bind address")
    parser.add_argument("--port", type=int, default=None, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    args = parser.parse_args()

    settings = get_settings()
    uvicorn.run(
        "runbook_chat.main:create_app",
        factory=True,
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    run()
