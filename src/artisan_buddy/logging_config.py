from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level:<8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"

# Server loggers that write through the standard library.
STDLIB_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def __init__(self, stream: str = "stderr"):
        if stream not in ("stderr", "stdout"):
            raise ValueError(f"Console log stream must be stderr or stdout, got {stream!r}")
        self._stream = stream

    def register(self, level: str) -> None:
        sink = sys.stdout if self._stream == "stdout" else sys.stderr
        logger.add(sink, level=level, format=_CONSOLE_FORMAT)

    def describe(self, level: str) -> str:
        return f"console ({self._stream}, {level})"


class FileLogConsumer:
    """Rotating file sink; ``serialize=True`` writes one JSON record per line."""

    def __init__(
        self,
        path: str = "artisan_buddy.log",
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = Path(path)
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize

    def register(self, level: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self._path),
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
            enqueue=True,
        )

    def describe(self, level: str) -> str:
        kind = "json file" if self._serialize else "file"
        return f"{kind} ({self._path}, {level})"


class _LoguruHandler(logging.Handler):
    """Forwards standard-library records to loguru with the caller's depth."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def route_stdlib_loggers(names: tuple[str, ...] = STDLIB_LOGGERS) -> None:
    for name in names:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [_LoguruHandler()]
        std_logger.propagate = False


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

DEFAULT_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console"},
    {"type": "file", "path": "artisan_buddy.log"},
]


def build_consumer(config: dict[str, Any]) -> LogConsumer | None:
    sink_type = config.get("type", "")
    cls = _CONSUMER_TYPES.get(sink_type)
    if cls is None:
        logger.warning(f"Unknown log consumer type: {sink_type!r}")
        return None
    options = {k: v for k, v in config.items() if k not in ("type", "level")}
    return cls(**options)


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace loguru's sinks with the configured consumers.

    Each consumer entry is ``{"type": ..., "level": ..., **options}``; entries
    with an unknown type are skipped. Standard-library server loggers are
    routed through the same sinks. Returns one description per sink.
    """
    logger.remove()

    descriptions: list[str] = []
    for config in DEFAULT_CONSUMERS if consumers is None else consumers:
        consumer = build_consumer(config)
        if consumer is None:
            continue
        sink_level = str(config.get("level", level)).upper()
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    route_stdlib_loggers()
    return descriptions
