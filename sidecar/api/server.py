"""FastAPI application for the file manager API.

Serves:
  /api/*    -- file and log endpoints (rate limited)
  /health   -- liveness of the sidecar's own HTTP server

The server runs as an asyncio task next to the lifecycle manager and
stops when the shared shutdown signal fires.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

import sidecar
from sidecar.api import routes
from sidecar.api.files import FileStore
from sidecar.api.ratelimit import RateLimitMiddleware
from sidecar.config import Settings
from sidecar.log import get_logger
from sidecar.shutdown import ShutdownSignal

logger = get_logger("api.server")

# Grace period for open requests (log streams mostly) on shutdown.
GRACEFUL_SHUTDOWN_SECONDS = 5


def create_app(settings: Settings, shutdown: ShutdownSignal | None = None) -> FastAPI:
    """Build the FastAPI app serving files from ``settings.data_root``."""
    app = FastAPI(
        title="Agnostic Sidecar File Manager",
        description="Browse and manage the game server's data directory.",
        version=sidecar.__version__,
    )

    store = FileStore(settings.data_root)
    app.state.store = store
    app.state.stdout_log_path = store.root / Path(settings.stdout_log_file)
    app.state.shutdown = shutdown

    app.add_middleware(RateLimitMiddleware, limit=settings.rate_limit)

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            {"detail": "Invalid request body", "errors": jsonable_errors(exc)},
            status_code=400,
        )

    app.include_router(routes.router)

    @app.get("/health", tags=["health"], response_class=PlainTextResponse)
    async def health() -> str:
        return "OK\n"

    logger.info(
        "api_app_created",
        data_root=str(store.root),
        rate_limit=settings.rate_limit,
    )
    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    return [
        {"loc": ".".join(str(part) for part in err.get("loc", ())), "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the sidecar service."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    async def serve(self, sockets: Any = None) -> None:
        try:
            await super().serve(sockets)
        except SystemExit as exc:
            # uvicorn exits the process when it cannot bind.
            raise OSError(f"API server failed to start (exit code {exc.code})") from None


async def start_api_server(
    app: FastAPI,
    host: str = "0.0.0.0",
    port: int = 8080,
    shutdown: ShutdownSignal | None = None,
) -> None:
    """Run the API server as an asyncio task.

    Uses uvicorn's programmatic Server API so it shares the event loop
    with the lifecycle manager.
    """
    config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
        timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SECONDS,
    )
    server = EmbeddedServer(config)

    logger.info("api_server_starting", host=host, port=port)

    serve_task = asyncio.create_task(server.serve())

    if shutdown:
        shutdown_task = asyncio.create_task(shutdown.wait())
        done, pending = await asyncio.wait(
            [serve_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        if shutdown_task in done:
            logger.info("api_server_shutting_down")
            server.should_exit = True
            await serve_task
        for task in pending:
            task.cancel()
        if serve_task in done:
            serve_task.result()
    else:
        await serve_task

    logger.info("api_server_stopped")
