"""Logging helpers shared by engine components."""

from simengine.utils.logging import build_processors, configure_logging, job_log_context

__all__ = ["build_processors", "configure_logging", "job_log_context"]
