"""
Utilities Module

Logging configuration shared by the service and the API host.
"""

from .logging_config import (
    log_error,
    log_performance,
    log_training_event,
    set_request_context,
    setup_logging,
)

__all__ = [
    "log_error",
    "log_performance",
    "log_training_event",
    "set_request_context",
    "setup_logging",
]
