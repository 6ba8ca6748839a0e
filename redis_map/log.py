import logging as _logging
import sys
import time
import traceback
from types import TracebackType
from typing import Any

import loguru

from redis_map.config import config

LOGURU_PRETTY_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[service]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>\n<dim>{extra}</dim>"
)


def setup_logger_from_env() -> None:
    loguru.logger.remove()
    loguru.logger.configure(extra={"service": config.service_name})
    if config.log_pretty:
        loguru.logger.add(sys.stderr, colorize=True, format=LOGURU_PRETTY_FORMAT, level=config.log_level)
    else:
        loguru.logger.add(sys.stderr, format="{message}", serialize=True, level=config.log_level)


class InterceptHandler(_logging.Handler):
    """Forward records of stdlib loggers (e.g. redis-py's) to loguru."""

    def emit(self, record: _logging.LogRecord) -> None:
        log_level: str | int
        try:
            log_level = loguru.logger.level(record.levelname).name
        except ValueError:
            log_level = record.levelno
        frame = _logging.currentframe()
        depth = 2
        while frame.f_code.co_filename == _logging.__file__:
            if frame.f_back is None:
                break
            frame = frame.f_back
            depth += 1
        loguru.logger.opt(depth=depth, exception=record.exc_info).bind(service=record.name).log(
            log_level, record.getMessage()
        )


def intercept_python_loggers() -> None:
    _logging.root.handlers = []
    _logging.root.setLevel(_logging.DEBUG)
    _logging.root.addHandler(InterceptHandler())


class LogTiming:
    """Context manager logging how long an action took, and whether it failed."""

    def __init__(self, action: str | None = None, logger: "loguru.Logger | None" = None, **context: Any) -> None:
        self.action = action
        self.context = context
        self.start_time: float = 0
        self.logger = logger or get_logger("timing")

    def __enter__(self) -> None:
        self.start_time = time.monotonic()

    def __exit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc: BaseException | None = None,
        tb: TracebackType | None = None,
    ) -> None:
        duration = time.monotonic() - self.start_time
        action = self.action or "unnamed action"
        if exc:
            self.logger.warning(
                f"Action {action!r} failed after {duration:0.3f} seconds.",
                action=self.action,
                duration=duration,
                exception_type=exc_type.__name__ if exc_type else "unknown",
                exception=str(exc),
                traceback="\n".join(traceback.format_tb(tb)),
                **self.context,
            )
            return
        self.logger.info(
            f"Action {action!r} finished after {duration:0.3f} seconds.",
            action=self.action,
            duration=duration,
            **self.context,
        )


setup_logger_from_env()
intercept_python_loggers()


def get_logger(service: str, **context: Any) -> "loguru.Logger":
    """Get logger bound to a service with optional contextual variables."""
    return loguru.logger.bind(service=service, **context)
