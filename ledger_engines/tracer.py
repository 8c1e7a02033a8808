"""
Engine invocation tracing.

Every pure engine entry point is wrapped with ``@traced_engine`` so that a
single ``engine_trace`` log record names the engine, its version, a short
fingerprint of the inputs that decide its result, the size of the result
and how long it took.  Two runs with the same fingerprint must produce the
same answer; the trace is how that is checked after the fact.
"""

from __future__ import annotations

import functools
import hashlib
import time
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from ledger_kernel.logging_config import get_logger

_logger = get_logger("engines.trace")


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (Decimal, date)):
        return str(value)
    if isinstance(value, dict):
        return "{" + ",".join(f"{k}:{_canonical(v)}" for k, v in sorted(value.items())) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return str(value)


def input_fingerprint(fields: tuple[str, ...], kwargs: dict[str, Any]) -> str:
    """16-hex-character SHA-256 prefix over the named keyword arguments."""
    canonical = "|".join(f"{name}={_canonical(kwargs.get(name))}" for name in fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""
            started = time.monotonic()
            result = func(*args, **kwargs)
            _logger.info(
                "engine_trace",
                extra={
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "result_size": len(result) if isinstance(result, (list, tuple)) else None,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
