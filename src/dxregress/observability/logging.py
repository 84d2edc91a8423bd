"""Console logging for the dxregress CLI."""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Mapping
from dataclasses import fields, is_dataclass
from enum import Enum
from logging.config import dictConfig
from pathlib import PurePath
from typing import Any

DATA_LIMIT = 512
_MAX_DEPTH = 6
_MAX_ITEMS = 100

LINE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _env_level(name: str, fallback: str) -> str:
    return (os.environ.get(name) or fallback).upper()


def _jsonable(value: Any, depth: int = _MAX_DEPTH) -> Any:
    """Reduce a log payload to plain JSON types; anything unknown becomes its ``str``."""

    if isinstance(value, Enum):
        value = value.value
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if depth <= 0:
        return "<nested>"
    if isinstance(value, PurePath):
        return value.as_posix()
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes len={len(value)}>"
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name), depth - 1) for f in fields(value)}
    if isinstance(value, Mapping):
        items = list(value.items())
        reduced = {str(key): _jsonable(item, depth - 1) for key, item in items[:_MAX_ITEMS]}
        if len(items) > _MAX_ITEMS:
            reduced["<more>"] = len(items) - _MAX_ITEMS
        return reduced
    if isinstance(value, (list, tuple, set, frozenset)):
        members = list(value)
        reduced_list = [_jsonable(item, depth - 1) for item in members[:_MAX_ITEMS]]
        if len(members) > _MAX_ITEMS:
            reduced_list.append(f"<{len(members) - _MAX_ITEMS} more>")
        return reduced_list
    return str(value)


def render_data(data: Any, *, limit: int = DATA_LIMIT) -> str:
    text = json.dumps(_jsonable(data), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return text if len(text) <= limit else f"{text[:limit]}... (truncated)"


class ExtrasFormatter(logging.Formatter):
    """Formats the record, then appends ``extra={"data": ...}`` as compact JSON."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        data = getattr(record, "data", None)
        return f"{line} | data={render_data(data)}" if data else line


def build_log_config(
    *,
    root_level_env: str,
    root_default: str,
    extra_loggers: Mapping[str, dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Return the ``dictConfig`` mapping: one stderr handler, quiet HTTP client loggers."""

    http_level = _env_level("HTTPX_LOG_LEVEL", "WARNING")
    quiet = {"handlers": ["stderr"], "propagate": False}
    loggers: dict[str, dict[str, Any]] = {
        "httpx": {"level": http_level, **quiet},
        "httpcore": {"level": http_level, **quiet},
        "asyncio": {"level": "WARNING", **quiet},
    }
    loggers.update(extra_loggers or {})
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"extras": {"()": ExtrasFormatter, "format": LINE_FORMAT, "datefmt": DATE_FORMAT}},
        "handlers": {
            "stderr": {"class": "logging.StreamHandler", "formatter": "extras", "stream": "ext://sys.stderr"},
        },
        "root": {"level": _env_level(root_level_env, root_default), "handlers": ["stderr"]},
        "loggers": loggers,
    }


def configure_logging(
    *,
    root_level_env: str = "DX_LOG_LEVEL",
    root_default: str = "INFO",
    extra_loggers: Mapping[str, dict[str, Any]] | None = None,
) -> None:
    started = time.monotonic()
    config = build_log_config(root_level_env=root_level_env, root_default=root_default, extra_loggers=extra_loggers)
    dictConfig(config)
    logging.getLogger(__name__).debug(
        "configured logging",
        extra={"data": {"root_level": config["root"]["level"], "elapsed_s": round(time.monotonic() - started, 3)}},
    )


__all__ = ["ExtrasFormatter", "build_log_config", "configure_logging", "render_data"]
