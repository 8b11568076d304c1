import logging
import sys

import structlog

SQL_LOGGER_NAME = "sqlalchemy.engine"


def configure_logging(log_level: str = "INFO", *, sql_echo: bool = False) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    # SQL statements share the root stdout handler instead of the engine's own echo handler.
    logging.getLogger(SQL_LOGGER_NAME).setLevel(logging.INFO if sql_echo else logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
