"""
Structured logging for the simulation engine.

configure_logging() wires structlog onto stdlib logging once per process;
job_log_context() binds the ids of the simulation being processed so every
event emitted by the pipeline, queue and providers carries them.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional, TextIO

import structlog
from structlog.types import EventDict, Processor

from simengine.config import get_settings


def add_severity(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add severity level for structured logging."""
    event_dict["severity"] = method_name.upper()
    return event_dict


def build_processors(json_logs: bool) -> list[Processor]:
    """Processor chain shared by every engine logger, ending in a renderer."""
    renderer: Processor = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=False)
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_severity,
        renderer,
    ]


def configure_logging(
    log_level: Optional[str] = None,
    json_logs: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure stdlib logging and structlog for the engine.

    Args:
        log_level: Level name; settings.log_level when omitted
        json_logs: Render JSON lines; by default JSON unless dev_mode is on
            or log_format is "console"
        stream: Output stream, stdout by default
    """
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    if json_logs is None:
        json_logs = settings.log_format == "json" and not settings.dev_mode

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
        force=True,
    )

    structlog.configure(
        processors=build_processors(json_logs),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def job_log_context(simulation_id: str, organization_id: Optional[str] = None) -> Iterator[None]:
    """
    Bind simulation identifiers to every log line emitted inside the block.

    Args:
        simulation_id: Simulation being processed
        organization_id: Owning organization, when known
    """
    context = {"simulation_id": simulation_id}
    if organization_id:
        context["organization_id"] = organization_id
    with structlog.contextvars.bound_contextvars(**context):
        yield
