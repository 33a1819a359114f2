# /chatflow/utils/logging.py

import logging
import sys
from typing import Optional

import structlog
from chatflow.config.settings import settings

# Structured logging (JSON outside development) shared by the engine, the
# delay scheduler and the timer runner. Records emitted inside flow_log_context()
# carry the conversation and node they belong to.

def setup_logging():
    """
    Configures structured logging using structlog, integrated with Python's
    standard logging so every module can keep using logging.getLogger(__name__).
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "development":
        final_processor = structlog.dev.ConsoleRenderer()
    else:
        final_processor = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=final_processor,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)

    # APScheduler logs every job submission at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def flow_log_context(conversation_id: Optional[str] = None, node_id: Optional[str] = None, **extra):
    """
    Bind flow identifiers to every log record emitted inside the block,
    including records from plain logging.getLogger() loggers.

    Usage:
        with flow_log_context(conversation_id="c1", node_id="delay_1"):
            logger.info("Timer fired.")
    """
    fields = {"conversation_id": conversation_id, "node_id": node_id, **extra}
    return structlog.contextvars.bound_contextvars(**{k: v for k, v in fields.items() if v is not None})
