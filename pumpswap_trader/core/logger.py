"""
Structured logging for the PumpSwap trader

structlog renders on top of stdlib logging. Events are snake_case names with
keyword context, e.g. ``logger.info("buy_signal", market_cap=112.0)``.
"""

import importlib.util
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.typing import EventDict, Processor


def add_timestamp(logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO timestamp to log events"""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_log_level(logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["level"] = method_name
    return event_dict


def _console_colors() -> bool:
    return importlib.util.find_spec("colorama") is not None


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    output_file: Optional[str] = None
) -> None:
    """
    Configure structured logging for the trader

    Calling it again replaces the previous handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        format: "json" for log shipping, "console" for a terminal
        output_file: Optional file that receives a copy of every event
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if output_file:
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(output_file))

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers, force=True)

    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        add_log_level,
        add_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=_console_colors(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def short_address(address: str, width: int = 8) -> str:
    """Abbreviate a base58 address for log context"""
    address = str(address)
    if len(address) <= width * 2:
        return address
    return f"{address[:width]}..{address[-4:]}"


def get_session_logger(name: str, mint: str, pool: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger bound to one trading session

    Every event carries the abbreviated mint and pool so interleaved
    sessions stay readable in a shared log stream.
    """
    return structlog.get_logger(name).bind(
        mint=short_address(mint),
        pool=short_address(pool)
    )
