import logging
import sys

import structlog


def configure_logging(level: str = 'INFO') -> None:
    """Route stdlib and structlog output through one JSON line renderer.

    Call once at startup; calling again reconfigures.
    """
    level_value = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=level_value, stream=sys.stdout, format='%(message)s', force=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
