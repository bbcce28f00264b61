"""
Diagnostic logging for the sequencer itself, using structlog.

This is the side channel the sequencer reports on (write failures,
retries, discarded fan-in records). It never writes to the log
destination the sequencer manages, so a failing destination cannot
recurse into itself.

Diagnostics go through the stdlib "logsequencer" logger, which gets its
own handler and does not propagate, so configuring them leaves the
host's root logger alone. A host that never calls configure_logging
gets WARNING and above on stderr; stdout stays free for console echo.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

PACKAGE_LOGGER = "logsequencer"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to diagnostic entries."""
    event_dict["app"] = PACKAGE_LOGGER
    return event_dict


def configure_logging(
    log_level: str = "WARNING",
    log_format: str = "console",
    log_output: str = "stderr",
) -> None:
    """
    Configure the diagnostic channel.
    
    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_output: Output stream (stdout or stderr)
    """
    handler = logging.StreamHandler(sys.stdout if log_output == "stdout" else sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for old in list(package_logger.handlers):
        package_logger.removeHandler(old)
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, log_level.upper()))
    package_logger.propagate = False
    
    shared_processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    
    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:  # console format
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ]
    
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a diagnostic logger.
    
    Configures the channel with its defaults if nothing has configured
    structlog yet. Names outside the package are nested under it.
    
    Args:
        name: Logger name (typically __name__)
    
    Returns:
        structlog logger
    """
    if not structlog.is_configured():
        configure_logging()
    
    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    
    return structlog.get_logger(name)
