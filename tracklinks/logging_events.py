"""Structured event logging used by every tracklinks component.

Events are plain log records whose ``extra`` carries an ``event`` name, flat
scalar fields (``component``, ``status``, ``duration_ms`` ...) and an optional
nested ``meta`` mapping for anything that does not fit a flat field.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from time import perf_counter
from typing import Any

_SCALARS = (str, int, float, bool, type(None))

# Attributes LogRecord sets itself; passing them through ``extra`` raises at emit time.
_RESERVED_FIELDS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def _check_meta(value: Any, path: str) -> None:
    if isinstance(value, _SCALARS):
        return
    if isinstance(value, Mapping):
        for key, nested in value.items():
            if not isinstance(key, str):
                raise TypeError(f"{path} keys must be strings, got {type(key).__name__}")
            _check_meta(nested, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, nested in enumerate(value):
            _check_meta(nested, f"{path}[{index}]")
    else:
        raise TypeError(f"{path} holds a {type(value).__name__}, which is not JSON-compatible")


def log_event(
    logger: logging.Logger,
    event: str,
    /,
    *,
    level: str = "info",
    meta: Mapping[str, Any] | None = None,
    **fields: Any,
) -> None:
    """Emit ``event`` at ``level``.

    ``fields`` must be scalars and must not shadow LogRecord attributes.
    ``meta`` may nest mappings and sequences of scalars.
    """

    if not event or not event.strip():
        raise ValueError("event name must not be blank")

    extra: dict[str, Any] = {"event": event}
    for name, value in fields.items():
        if name in _RESERVED_FIELDS:
            raise ValueError(f"'{name}' is a reserved log record attribute")
        if not isinstance(value, _SCALARS):
            raise TypeError(f"field '{name}' must be a scalar, got {type(value).__name__}")
        extra[name] = value

    if meta is not None:
        if not isinstance(meta, Mapping):
            raise TypeError("meta must be a mapping")
        payload = dict(meta)
        _check_meta(payload, "meta")
        extra["meta"] = payload

    logger.log(logging.getLevelName(level.upper()), event, extra=extra)


def elapsed_ms(started: float) -> int:
    """Milliseconds since ``started``, a :func:`time.perf_counter` reading."""

    return int((perf_counter() - started) * 1000)


__all__ = ["elapsed_ms", "log_event"]
