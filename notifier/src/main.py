"""
Worker entry point: health endpoint plus scheduler loop.

This module provides:
- The FastAPI application exposing GET /health for orchestration probes
- WorkerRunner, which serves the health endpoint with uvicorn and runs the
  notification scheduler in the same event loop until SIGINT/SIGTERM

Environment Variables:
    NOTIFIER_DB_URL: Database URL of the shared job store
    NOTIFIER_ENV: Environment (production/development, default: development)
    NOTIFIER_LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL, default: INFO)
    WORKER_HEALTH_PORT: Port of the health endpoint (default: 8787)
"""

import asyncio
import contextlib
import signal
import sys
from datetime import datetime
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI

from notifier.src.config.settings import WorkerSettings, get_settings
from notifier.src.scheduler import NotificationScheduler
from notifier.src.utils.logging_config import get_logger, init_logging


logger = get_logger("api")


app = FastAPI(
    title="Reminder Notification Worker",
    description="Delivers due reminder notifications via Web Push",
    version="1.0.0",
    docs_url=None,
    redoc_url=None,
)


@app.get("/health", tags=["Health"])
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns:
        Liveness flag and current server time
    """
    return {
        "ok": True,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


class HealthServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to WorkerRunner."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class WorkerRunner:
    """
    Runs the health server and the scheduler until shutdown.

    Handles graceful shutdown on SIGINT/SIGTERM: the scheduler finishes its
    current cycle and the health server stops accepting connections.

    Attributes:
        settings: Worker settings
        scheduler: Notification scheduler
    """

    def __init__(
        self,
        settings: WorkerSettings,
        scheduler: NotificationScheduler,
        serve_health: bool = True,
    ):
        self.settings = settings
        self.scheduler = scheduler
        self.serve_health = serve_health
        self._server: Optional[HealthServer] = None

    async def run(self) -> int:
        """
        Run until a shutdown signal arrives.

        Returns:
            Exit code (0 for success)
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)

        if not self.settings.vapid_configured:
            logger.warning("VAPID keys are not configured; push jobs will be skipped")
        if not self.settings.google_configured:
            logger.warning("Google OAuth client is not configured; calendar tokens cannot be refreshed")

        server_task = None
        if self.serve_health:
            self._server = HealthServer(
                uvicorn.Config(
                    app,
                    host="0.0.0.0",
                    port=self.settings.health_port,
                    log_level="warning",
                )
            )
            server_task = asyncio.create_task(self._server.serve())
            logger.info(f"Health endpoint listening on port {self.settings.health_port}")

        try:
            return await self.scheduler.run()
        finally:
            if self._server is not None:
                self._server.should_exit = True
            if server_task is not None:
                await server_task
            self.scheduler.close()

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the worker."""
        logger.info("Shutdown requested")
        self.scheduler.request_shutdown()
        if self._server is not None:
            self._server.should_exit = True


# ============================================================================
# Main Entry Point
# ============================================================================


def build_scheduler(settings: Optional[WorkerSettings] = None) -> NotificationScheduler:
    """Create a scheduler bound to the application's session factory."""
    from notifier.src.db.database import SessionLocal

    return NotificationScheduler(settings or get_settings(), SessionLocal)


def run_worker(serve_health: bool = True) -> int:
    """
    Run the worker.

    This is the main entry point for the worker daemon.

    Returns:
        Exit code
    """
    from notifier.src.db.database import dispose_engine

    init_logging()
    settings = get_settings()
    runner = WorkerRunner(settings, build_scheduler(settings), serve_health=serve_health)
    try:
        return asyncio.run(runner.run())
    finally:
        dispose_engine()


if __name__ == "__main__":
    sys.exit(run_worker())
