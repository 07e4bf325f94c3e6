"""Logging setup: stdlib handlers rendered through structlog."""
import logging
import sys

import structlog


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Route structlog events through the root logger.

    Console output is human readable on a TTY and JSON otherwise (or when
    json_output is set), so dual-write failures can be grepped by event name.
    """
    level_num = getattr(logging, level.upper(), logging.INFO)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output or not sys.stdout.isatty()
        else structlog.dev.ConsoleRenderer()
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level_num)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level_num)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.get_logger("focusstore").info("logging_initialized", level=level.upper(), json=json_output)
