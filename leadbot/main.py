"""
Leadbot FastAPI entry point
- Inbound chat webhook feeding the lead engine
- Lead query/update endpoints
- Background maintenance loop for the lifetime of the app
"""

from __future__ import annotations

import asyncio
import os
import signal
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

from leadbot.maintenance import run_maintenance_loop
from leadbot.processor import Dispatcher, build_dispatcher
from leadbot.runtime import configure_logging, get_logger, install_global_exception_hook
from leadbot.webhook import router

logger = get_logger("main")


def _terminate() -> None:
    """Ask the server to stop; the process supervisor restarts it with a fresh session."""
    os.kill(os.getpid(), signal.SIGTERM)


def create_app(
    dispatcher: Optional[Dispatcher] = None,
    *,
    maintenance: bool = True,
    on_session_lost: Callable[[], None] = _terminate,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.dispatcher = dispatcher or build_dispatcher()
        task = asyncio.create_task(run_maintenance_loop(app.state.dispatcher)) if maintenance else None
        logger.info("✅ Leadbot API started")
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.info("👋 Leadbot API stopped")

    app = FastAPI(title="Leadbot", version="1.0.0", lifespan=lifespan)
    app.state.dispatcher = dispatcher
    app.state.on_session_lost = on_session_lost
    app.include_router(router)
    return app


configure_logging()
install_global_exception_hook()
app = create_app()
