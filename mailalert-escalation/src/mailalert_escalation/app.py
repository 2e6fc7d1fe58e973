"""
This module is responsible for creating and configuring the FastAPI application.

``create_app`` builds the settings and the escalation service, mounts the API
router and, unless disabled, runs the scheduler loop for the lifetime of the
app so that registered ticks fire without an external cron.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from mailalert_contracts import __version__

from .api import get_router
from .config import EscalationSettings
from .logging_utils import configure_logging
from .scheduler import TICK_HANDLER, SchedulerLoop
from .service import EscalationService

LOGGER = logging.getLogger(__name__)


def create_app(
    settings: Optional[EscalationSettings] = None,
    service: Optional[EscalationService] = None,
) -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.

    Args:
        settings: Configuration; read from the environment when omitted.
        service: Pre-built service, mainly for tests.

    Returns:
        A configured ``FastAPI`` application.
    """
    configure_logging()

    settings = settings or EscalationSettings()
    service = service or EscalationService.from_settings(settings)
    loop = SchedulerLoop(
        service.scheduler,
        {TICK_HANDLER: service.run_tick},
        poll_seconds=settings.scheduler_poll_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.scheduler_enabled:
            await loop.start()
        try:
            yield
        finally:
            await loop.shutdown()
            service.close()

    app = FastAPI(
        title="Mail Alert Escalation",
        description="Escalating calendar reminders for time-sensitive mail",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.service = service
    app.state.scheduler_loop = loop

    app.include_router(get_router(service))

    return app
