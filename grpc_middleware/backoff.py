"""Helpers shared by retry and backoff logic."""

from __future__ import annotations

import random
from datetime import timedelta
from typing import TypeVar

_D = TypeVar("_D", timedelta, float, int)


def jitter_up(duration: _D, jitter: float) -> _D:
    """Add or subtract a random fraction of ``duration``, bounded by ``jitter``.

    For 10 seconds and a jitter of 0.1 the result lies within [9s, 11s].
    ``duration`` may be a :class:`timedelta`, a float, or an integer
    (integers are truncated back to integers, as with nanosecond counts).
    """
    multiplier = jitter * (random.random() * 2 - 1)
    scaled = duration * (1 + multiplier)
    if isinstance(duration, int) and not isinstance(duration, bool):
        return int(scaled)
    return scaled


def exponent_base2(a: int) -> int:
    """Compute 2**(a-1) for a >= 1; return 0 when ``a`` is 0."""
    if a < 0:
        raise ValueError(f"exponent must be non-negative, got {a}")
    return (1 << a) >> 1