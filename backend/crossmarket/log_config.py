"""
Logging for the batch engine: loguru sinks plus structlog job events.

Human-readable lines go through loguru. Machine-readable job events
(`task_complete`, `task_skipped`, ...) go through structlog and carry the
job name and run id bound by `job_context`. Both paths scrub the oracle
credentials before anything reaches a sink.
"""

import re
import sys
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from loguru import logger
import structlog
from structlog.typing import EventDict, WrappedLogger

from crossmarket.config import settings

# Third-party loggers that are chatty at INFO during feed and scheduler runs
NOISY_LOGGERS: Dict[str, int] = {
    "urllib3": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "yfinance": logging.WARNING,
    "peewee": logging.WARNING,
    "apscheduler": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[job]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

REDACTED = "[REDACTED]"
_BEARER = re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]+")
_SECRET_KEYS = ("api_key", "token", "secret", "password", "authorization")


def redact(text: str) -> str:
    """Mask bearer tokens and the configured oracle key inside free text."""
    text = _BEARER.sub(r"\1" + REDACTED, text)
    if settings.oracle_api_key:
        text = text.replace(settings.oracle_api_key, REDACTED)
    return text


class SecretFilter:
    """structlog processor: drop credential-named fields, scrub string values."""

    def __call__(self, logger: WrappedLogger, name: str, event_dict: EventDict) -> EventDict:
        for key, value in list(event_dict.items()):
            if any(secret in key.lower() for secret in _SECRET_KEYS):
                event_dict[key] = REDACTED
            elif isinstance(value, str):
                event_dict[key] = redact(value)
        return event_dict


def _stamp(logger: WrappedLogger, name: str, event_dict: EventDict) -> EventDict:
    event_dict["level"] = name.upper()
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _patch_record(record: Dict[str, Any]) -> None:
    record["extra"].setdefault("job", "-")
    record["message"] = redact(record["message"])


class InterceptHandler(logging.Handler):
    """Route stdlib logging (SQLAlchemy, APScheduler, yfinance) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    fmt: Optional[str] = None,
) -> None:
    """(Re)build every sink; arguments default to settings."""
    level = (level or settings.log_level).upper()
    log_file = settings.log_file if log_file is None else log_file
    as_json = (fmt or settings.log_format) == "json"

    logger.remove()
    logger.configure(patcher=_patch_record, extra={"job": "-"})

    sink_options = dict(
        level=level,
        serialize=as_json,
        backtrace=True,
        diagnose=settings.is_development,
    )
    logger.add(sys.stderr, format="{message}" if as_json else TEXT_FORMAT, **sink_options)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        # Rotated daily; batch jobs append across runs
        logger.add(
            log_file,
            format="{message}" if as_json else TEXT_FORMAT,
            rotation="00:00",
            retention="14 days",
            compression="zip",
            enqueue=True,
            **sink_options,
        )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _stamp,
            SecretFilter(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if as_json else structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)

    logger.debug(f"Logging configured (level={level}, json={as_json}, file={log_file or 'off'})")


@contextmanager
def job_context(job_name: str, run_id: Optional[int] = None) -> Generator[None, None, None]:
    """Tag every loguru line and structlog event inside the block with the job."""
    tag = job_name if run_id is None else f"{job_name}#{run_id}"
    with structlog.contextvars.bound_contextvars(job=job_name, run_id=run_id):
        with logger.contextualize(job=tag):
            yield


def get_logger(name: str) -> Any:
    """structlog logger for machine-readable job events."""
    return structlog.get_logger(name)


configure_logging()
