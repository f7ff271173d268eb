"""structlog setup shared by the sniper processes."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
from typing import Any

import structlog

from sniper.config.settings import MonitoringConfig

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")
REDACTED_KEYS = frozenset({"payload", "swap_transaction", "signed_transaction"})


def redact_transactions(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Serialized transactions are large and signable; never write them to logs."""
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "<redacted>"
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    logs_path: str | None = None,
    monitoring: MonitoringConfig | None = None,
) -> None:
    monitoring = monitoring or MonitoringConfig()
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)

    if logs_path:
        log_dir = Path(logs_path)
        log_dir.mkdir(parents=True, exist_ok=True)
        errors = RotatingFileHandler(
            log_dir / "errors.log",
            maxBytes=monitoring.error_log_max_bytes,
            backupCount=monitoring.error_log_backup_count,
            encoding="utf-8",
        )
        errors.setLevel(logging.ERROR)
        errors.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(errors)

    # Request tracing is opt-in through monitoring.log_http.
    noisy_level = logging.DEBUG if monitoring.log_http else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            redact_transactions,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
