"""
Structured logging setup.

Worker processes and scripts call configure_logging() once at startup; library
code only ever does ``structlog.get_logger(__name__)``.
"""
import logging
import sys
from typing import Optional

import structlog

from invoice_canon.config import get_settings


def configure_logging(level: Optional[str] = None, json_logs: bool = True) -> None:
    """
    Configure stdlib logging and structlog.

    Args:
        level: Log level name (defaults to settings.log_level)
        json_logs: Render JSON lines; console rendering otherwise
    """
    level_name = (level or get_settings().log_level).upper()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # job_id, task_id bound by the task
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
