"""
Tuneweave Logging Configuration

Structured logging for the recommendation core:
- structlog on top of stdlib logging
- Rotating log files (everything / errors only)
- Colored console output for development
- Helpers for performance, training and error events
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars


class TuneweaveLogger:
    """
    Centralized logging configuration for tuneweave.

    Owns the root handlers; creating a new instance replaces any
    previously installed configuration.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: str = "INFO",
        enable_console: bool = True,
        enable_files: bool = True,
        max_file_size: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5
    ):
        """
        Initialize the logging system.

        Args:
            log_dir: Directory to store log files
            log_level: Default log level
            enable_console: Whether to log to stdout
            enable_files: Whether to write rotating log files
            max_file_size: Maximum size per log file before rotation
            backup_count: Number of backup files to keep
        """
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper(), logging.INFO)
        self.enable_console = enable_console
        self.enable_files = enable_files
        self.max_file_size = max_file_size
        self.backup_count = backup_count

        # Libraries whose chatter is capped at WARNING unless debugging
        self.quiet_modules = ["httpx", "urllib3", "uvicorn.access", "diskcache"]

        self._setup_logging()

    def _setup_logging(self):
        logging.getLogger().handlers.clear()

        self._configure_structlog()

        if self.enable_files:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._setup_file_handlers()

        if self.enable_console:
            self._setup_console_handler()

        if self.log_level != logging.DEBUG:
            for module in self.quiet_modules:
                logging.getLogger(module).setLevel(logging.WARNING)

        logging.getLogger().setLevel(self.log_level)

    def _configure_structlog(self):
        shared_processors = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]

        structlog.configure(
            processors=shared_processors + [
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def _setup_file_handlers(self):
        root_logger = logging.getLogger()
        root_logger.addHandler(self._rotating_handler("tuneweave.log", self.log_level))
        root_logger.addHandler(self._rotating_handler("errors.log", logging.ERROR))

    def _rotating_handler(self, filename: str, level: int) -> logging.handlers.RotatingFileHandler:
        handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / filename,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
            encoding="utf-8"
        )
        handler.setLevel(level)
        handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
        ))
        return handler

    def _setup_console_handler(self):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=True),
        ))
        logging.getLogger().addHandler(console_handler)

    def get_logger(self, name: str) -> structlog.stdlib.BoundLogger:
        return structlog.get_logger(name)

    def set_request_context(self, request_id: str, client: Optional[str] = None):
        """Bind request-scoped values to every log line of the current task."""
        clear_contextvars()
        bind_contextvars(
            request_id=request_id,
            client=client,
            timestamp=datetime.now(timezone.utc).isoformat()
        )

    def log_performance(self, operation: str, duration: float, **kwargs):
        self.get_logger("performance").info(
            "performance_metric",
            operation=operation,
            duration_seconds=round(duration, 4),
            **kwargs
        )

    def log_training_event(self, phase: str, progress: float, **kwargs):
        self.get_logger("training").info(
            "training_phase",
            phase=phase,
            progress=round(progress, 3),
            **kwargs
        )

    def log_error(self, error: Exception, context: Dict[str, Any], **kwargs):
        self.get_logger("errors").error(
            "error_occurred",
            error_type=type(error).__name__,
            error_message=str(error),
            context=context,
            **kwargs
        )


# Global logger instance
_logger_instance: Optional[TuneweaveLogger] = None


def setup_logging(
    log_dir: str = "logs",
    log_level: str = "INFO",
    enable_console: bool = True,
    **kwargs
) -> TuneweaveLogger:
    """
    Setup the global logging configuration.

    Args:
        log_dir: Directory to store log files
        log_level: Default log level
        enable_console: Whether to enable console logging
        **kwargs: Additional arguments for TuneweaveLogger

    Returns:
        Configured logger instance
    """
    global _logger_instance

    _logger_instance = TuneweaveLogger(
        log_dir=log_dir,
        log_level=log_level,
        enable_console=enable_console,
        **kwargs
    )
    return _logger_instance


def log_performance(operation: str, duration: float, **kwargs):
    if _logger_instance:
        _logger_instance.log_performance(operation, duration, **kwargs)


def log_training_event(phase: str, progress: float, **kwargs):
    if _logger_instance:
        _logger_instance.log_training_event(phase, progress, **kwargs)


def log_error(error: Exception, context: Dict[str, Any], **kwargs):
    if _logger_instance:
        _logger_instance.log_error(error, context, **kwargs)


def set_request_context(request_id: str, client: Optional[str] = None):
    if _logger_instance:
        _logger_instance.set_request_context(request_id, client)
