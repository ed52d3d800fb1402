from __future__ import annotations

import logging
import logging.handlers
import sys
from collections.abc import Mapping, MutableMapping
from typing import Any

import structlog
from opentelemetry import trace
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars
from structlog.stdlib import ProcessorFormatter

from nodepool_failover.core.config import ObservabilityConfig

# rotated daily, one week kept
LOG_FILE_BACKUPS = 7

_NOISY_LOGGERS = (
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
    "asyncio",
)

_configured = False


def _drop_private_keys(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
    return {k: v for k, v in event_dict.items() if not str(k).startswith("_")}


def _otel_enricher(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> Mapping[str, Any]:
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = f"{ctx.trace_id:032x}"
        event_dict["span_id"] = f"{ctx.span_id:016x}"
    return event_dict


def _stamp() -> list[Any]:
    return [
        merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="@timestamp"),
    ]


def configure_logging(
    obs: ObservabilityConfig | None = None,
    *,
    context: dict[str, Any] | None = None,
    force: bool = False,
) -> None:
    """Route structlog through the stdlib root logger.

    Console output goes to stderr. When ``obs.log_file`` is set the same
    records are also written to a daily-rotated file.
    """
    global _configured
    if _configured and not force:
        return
    obs = obs or ObservabilityConfig()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_stamp(),
            _drop_private_keys,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _otel_enricher,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if obs.log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    formatter = ProcessorFormatter(processor=renderer, foreign_pre_chain=_stamp())

    root = logging.getLogger()
    root.setLevel(getattr(logging, obs.log_level, logging.INFO))
    root.handlers.clear()

    # stdout carries the provisioning payload
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    if obs.log_file:
        obs.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            str(obs.log_file),
            when="D",
            backupCount=LOG_FILE_BACKUPS,
            utc=True,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    clear_contextvars()
    if context:
        bind_contextvars(**context)

    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)


__all__ = ["configure_logging", "get_logger"]
