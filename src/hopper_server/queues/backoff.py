"""Retry delay curve."""

import math
import zlib


def jitter_fraction(seed: str | int | None, ratio: float) -> float:
    """A fixed fraction in [0, ratio) for a given seed.

    The same job always gets the same jitter, so its delays stay ordered by attempt.
    """
    if seed is None or ratio <= 0:
        return 0.0
    bucket = zlib.crc32(str(seed).encode("utf-8")) / 2**32
    return bucket * ratio


def backoff_delay(
    attempts: int,
    *,
    base: float = 2.0,
    cap: float = 60.0,
    jitter_ratio: float = 0.1,
    seed: str | int | None = None,
) -> float:
    """Seconds to wait before the next try after `attempts` failures.

    Exponential in attempts, capped, then scaled by a per-job jitter. Never
    decreases as attempts grow and never exceeds cap * (1 + jitter_ratio).
    """
    if attempts < 1:
        return 0.0
    exponent = min(attempts - 1, 32)
    delay = min(cap, base * 2**exponent)
    return delay * (1 + jitter_fraction(seed, jitter_ratio))


def retry_at(
    now: int,
    attempts: int,
    *,
    base: float = 2.0,
    cap: float = 60.0,
    jitter_ratio: float = 0.1,
    seed: str | int | None = None,
) -> int:
    delay = backoff_delay(attempts, base=base, cap=cap, jitter_ratio=jitter_ratio, seed=seed)
    return now + math.ceil(delay)
