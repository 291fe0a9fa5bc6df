"""
Structured logging setup for the rapid-sell engine
Uses structlog on top of stdlib logging

Every log line emitted inside bound_run_context() carries the run id and
mint, so the interleaved output of many wallet tasks can be split per run.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
import structlog
from structlog.typing import Processor


def setup_logging(
    level: str = "INFO",
    format: str = "console",
    output_file: Optional[str] = None
) -> None:
    """
    Configure structured logging for a sell run

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        format: Output format ("json" or "console")
        output_file: Optional file path for log output
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    logging.root.setLevel(numeric_level)

    if output_file:
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(output_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        logging.root.addHandler(file_handler)

    # aiohttp client chatter is noise during a race
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for a module (usually __name__)"""
    return structlog.get_logger(name)


@contextmanager
def bound_run_context(mint: str, run_id: Optional[str] = None) -> Iterator[str]:
    """
    Tag every log line in the block with a run id and the mint

    Tasks created inside the block inherit the context.

    Yields:
        The run id
    """
    run_id = run_id or uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(run_id=run_id, mint=short_address(mint)):
        yield run_id


def short_address(address: str, length: int = 8) -> str:
    """Shorten a base58 address for log lines"""
    if len(address) <= length:
        return address
    return f"{address[:length]}..."
