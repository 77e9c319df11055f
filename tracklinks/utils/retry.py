"""Backoff helpers for retrying calls to external services."""

from __future__ import annotations


def backoff_delay_ms(
    attempt: int,
    *,
    base_ms: int,
    max_ms: int,
    retry_after_ms: int | None = None,
) -> int:
    """Delay before retry number ``attempt`` (0-based).

    A retry hint from the remote service takes precedence over the computed
    exponential delay but is still capped at ``max_ms``.
    """

    ceiling = max(1, int(max_ms))
    if retry_after_ms is not None:
        return min(ceiling, max(0, int(retry_after_ms)))
    delay = max(1, int(base_ms)) * (2 ** max(0, int(attempt)))
    return min(ceiling, delay)


__all__ = ["backoff_delay_ms"]
