# /chatflow/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

from chatflow.services.timer_service import ResumeCallback, TimerService, timer_service
from chatflow.utils.alerting import alerting_service
from chatflow.utils.logging import setup_logging

# Manages the runtime's lifespan: logging setup and the timer runner on
# startup, scheduler shutdown and client cleanup on exit.

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(service: Optional[TimerService] = None, resume_callback: Optional[ResumeCallback] = None):
    """Run the flow core's background machinery for the duration of the block."""
    service = service or timer_service
    setup_logging()

    logger.info("Flow runtime starting up...")

    if resume_callback is not None:
        service.set_resume_callback(resume_callback)
    service.start()

    logger.info("Flow runtime startup complete.")

    try:
        yield service
    finally:
        logger.info("Flow runtime shutting down...")
        service.shutdown()
        await alerting_service.cleanup()
