import builtins
import os
import sys
import time
from typing import Any

_start_time = time.perf_counter()
_LOG_LEVEL_ENV = "DB_BRAIN_LOG_LEVEL"
_NAMED_LEVELS = {"quiet": 0, "off": 0, "info": 1, "verbose": 2, "debug": 3, "trace": 3}
_STORE_FIELDS = ("order", "tokens", "nodes", "edges")


def parse_log_level(raw: str | None, default: int = 1) -> int:
    """Accept an integer or one of the names in ``_NAMED_LEVELS``; anything else is ``default``."""
    value = (raw or "").strip().lower()
    if not value:
        return default
    if value.lstrip("-").isdigit():
        return max(0, int(value))
    return _NAMED_LEVELS.get(value, default)


_LOG_LEVEL = parse_log_level(os.getenv(_LOG_LEVEL_ENV))


def timestamp_prefix() -> str:
    return f"+[{time.perf_counter() - _start_time:7.2f}]"


def set_log_level(level: int) -> int:
    """Override DB_BRAIN_LOG_LEVEL (the CLIs' -v flags); returns the previous level."""
    global _LOG_LEVEL
    previous, _LOG_LEVEL = _LOG_LEVEL, max(0, int(level))
    return previous


def apply_verbosity(extra: int) -> None:
    """Raise the level by the number of -v flags given on the command line."""
    if extra:
        set_log_level(_LOG_LEVEL + extra)


def verbose_enabled(level: int) -> bool:
    return _LOG_LEVEL >= level


def log(*objects: Any, sep: str = " ", end: str = "\n", file=None, flush: bool = False, prefix: bool = True) -> None:
    message = sep.join(str(obj) for obj in objects)
    if prefix:
        message = f"{timestamp_prefix()} {message}"
    builtins.print(message, end=end, file=file, flush=flush)


def log_error(*objects: Any, **kwargs: Any) -> None:
    kwargs.setdefault("file", sys.stderr)
    log(*objects, **kwargs)


def log_verbose(level: int, *objects: Any, **kwargs: Any) -> None:
    """Emit a log line only when the configured verbosity is high enough."""
    if verbose_enabled(level):
        log(*objects, **kwargs)


def format_store_stats(stats: Any) -> str:
    """``order=2 tokens=.. nodes=.. edges=..`` for any object carrying those counters."""
    return " ".join(f"{field}={getattr(stats, field)}" for field in _STORE_FIELDS)
