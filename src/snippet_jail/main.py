"""FastAPI application entry point.

Creates the app with a lifespan that loads the settings, builds the
session manager and starts a background task expiring idle sessions.
Everything is stored in ``app.state`` and torn down cleanly on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from snippet_jail.api.router import api_router
from snippet_jail.config import Settings
from snippet_jail.sandbox.security import ExecutionPolicy
from snippet_jail.sessions import SessionManager

logger = logging.getLogger(__name__)


async def expire_sessions_periodically(manager: SessionManager, interval_seconds: float) -> None:
    """Close idle sessions every *interval_seconds* until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            expired = await asyncio.to_thread(manager.expire_idle)
        except Exception:
            logger.exception("Idle session sweep failed")
            continue
        if expired:
            logger.info("Expired %d idle session(s)", expired)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan -- set up and tear down shared resources.

    On startup:
        1. Load :class:`Settings` from the environment.
        2. Validate the execution policy so a bad configuration fails now.
        3. Create the :class:`SessionManager`.
        4. Start the idle-session sweeper.
        5. Store all objects in ``app.state``.

    On shutdown:
        1. Cancel the sweeper.
        2. Close every session and its engine process.
    """
    settings = Settings()

    # Configure root logging level.
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Starting snippet-jail (log_level=%s)", settings.log_level)

    policy = ExecutionPolicy.from_settings(settings)
    logger.info(
        "Execution policy: %d package(s), %d class(es), %d method(s) blocked",
        len(policy.blocked_packages),
        len(policy.blocked_classes),
        len(policy.blocked_methods),
    )

    manager = SessionManager(settings)

    app.state.settings = settings
    app.state.sessions = manager

    sweeper_task = asyncio.create_task(
        expire_sessions_periodically(manager, settings.cleanup_interval_seconds),
        name="session-sweeper",
    )

    logger.info("Application startup complete")

    try:
        yield
    finally:
        logger.info("Shutting down snippet-jail")

        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            pass

        await asyncio.to_thread(manager.close)

        logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title="snippet-jail",
    description="Evaluates untrusted Python snippets under a deadline and an execution policy.",
    version="0.1.0",
    lifespan=lifespan,
)

# ---- Middleware ----------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings().cors_allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

# ---- Routes --------------------------------------------------------------

app.include_router(api_router)
