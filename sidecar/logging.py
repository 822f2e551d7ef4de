"""
F3 Sidecar: Logging Initialization

One explicit initialize(config) call, made once by the process entry
point. Nothing here runs at import time.

  - every log line goes through one handler on the root logger, as JSON
    (default) or plain text
  - a component verbosity table sets per-component levels. Component
    names use "/" separators ("dht/RtRefreshManager") and map onto
    logger names with "." ("dht.RtRefreshManager")
  - environment toggles for the embedded engine runtime are written to
    os.environ before the engine starts

Sidecar loggers live under "f3.sidecar" (the "f3/sidecar" component).

Usage:
    from sidecar.logging import LoggingConfig, initialize

    initialize(LoggingConfig(level="info", format="json"))
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sidecar.errors import ConfigError

SERVICE_NAME = "f3-sidecar"

# Level above CRITICAL: nothing gets through
OFF = logging.CRITICAL + 10

_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
    "off": OFF,
}

DEFAULT_COMPONENT_LEVELS: dict[str, str] = {
    "dht": "error",
    # breaks terminals
    "dht/RtRefreshManager": "off",
    "net/identify": "error",
    "pubsub": "error",
    "swarm2": "error",
    "f3/sidecar": "debug",
}

DEFAULT_ENVIRONMENT: dict[str, str] = {
    "GODEBUG": "invalidptr=0,cgocheck=0",
}


def parse_level(name: str | int) -> int:
    """Map a level name (go-log or Python spelling) to a logging level."""
    if isinstance(name, int):
        return name
    level = _LEVELS.get(str(name).strip().lower())
    if level is None:
        raise ConfigError(f"Unknown log level: {name!r}")
    return level


def component_logger_name(component: str) -> str:
    return component.strip("/").replace("/", ".")


# ═══════════════════════════════════════════════════════════════════
# JSON Formatter
# ═══════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """Formats log records as JSON lines."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service.name": self.service_name,
        }

        # Merge structured fields from extra={"structured": {...}}
        if hasattr(record, "structured"):
            entry.update(record.structured)

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception.type"] = record.exc_info[0].__name__
            entry["exception.message"] = str(record.exc_info[1])

        return json.dumps(entry, default=str)


TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


# ═══════════════════════════════════════════════════════════════════
# Initialization
# ═══════════════════════════════════════════════════════════════════

@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "json"
    components: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_COMPONENT_LEVELS)
    )
    environment: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_ENVIRONMENT)
    )
    stream: Any = None

    def validate(self) -> list[str]:
        errors = []
        if self.format not in ("json", "text"):
            errors.append(f"logging.format must be 'json' or 'text', got {self.format!r}")
        for name in [self.level, *self.components.values()]:
            if str(name).strip().lower() not in _LEVELS:
                errors.append(f"unknown log level {name!r}")
        return errors


_handler: logging.Handler | None = None
_touched: set[str] = set()


def initialize(config: LoggingConfig | None = None) -> logging.Logger:
    """
    Configure process-wide logging and environment toggles.

    Safe to call again: the previous handler is replaced, never
    duplicated, and component levels from the previous call are reset.

    Returns the "f3.sidecar" logger.
    """
    global _handler
    config = config or LoggingConfig()
    errors = config.validate()
    if errors:
        raise ConfigError("; ".join(errors))

    for key, value in config.environment.items():
        os.environ[key] = str(value)

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    handler = logging.StreamHandler(config.stream or sys.stderr)
    if config.format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
    root.setLevel(parse_level(config.level))
    _handler = handler

    for name in _touched:
        logging.getLogger(name).setLevel(logging.NOTSET)
    _touched.clear()

    for component, level in config.components.items():
        name = component_logger_name(component)
        logging.getLogger(name).setLevel(parse_level(level))
        _touched.add(name)

    logger = logging.getLogger("f3.sidecar")
    logger.debug(
        "Logging initialized: level=%s format=%s components=%d",
        config.level, config.format, len(config.components),
    )
    return logger


def get_logger(name: str = "") -> logging.Logger:
    """Get a child logger under the f3.sidecar namespace."""
    if name:
        return logging.getLogger(f"f3.sidecar.{name}")
    return logging.getLogger("f3.sidecar")


def reset() -> None:
    """Remove the handler and component levels installed by initialize()."""
    global _handler
    if _handler is not None:
        logging.getLogger().removeHandler(_handler)
        _handler = None
    for name in _touched:
        logging.getLogger(name).setLevel(logging.NOTSET)
    _touched.clear()
