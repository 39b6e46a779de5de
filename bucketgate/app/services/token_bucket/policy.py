"""Hourly token bucket refill policy.

Pure functions, no I/O. Refill is whole-hour granular: a partial hour adds
nothing, and the refill anchor only moves when a token is consumed.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .models import BucketState

HOUR = timedelta(hours=1)


@dataclass(frozen=True)
class RefillOutcome:
    """Tokens available before consuming, and the state to persist if any."""
    available: int
    new_state: Optional[BucketState]

    @property
    def admitted(self) -> bool:
        return self.new_state is not None


def elapsed_hours(since: datetime, now: datetime) -> int:
    """Whole hours from ``since`` to ``now``; never negative under clock skew."""
    if now <= since:
        return 0
    return (now - since) // HOUR


def refill(
    old: Optional[BucketState],
    now: datetime,
    max_tokens: int,
    refill_rate_per_hour: int,
) -> RefillOutcome:
    """Refill a bucket up to ``now`` and try to take one token.

    Args:
        old: Stored state, or None for a client with no record
        now: Current time
        max_tokens: Bucket capacity
        refill_rate_per_hour: Tokens added per whole elapsed hour

    Returns:
        RefillOutcome. ``new_state`` is None when the bucket is empty; the
        caller must not write anything back in that case, otherwise the
        refill anchor would move and the client would never refill.
    """
    if old is None:
        old = BucketState.full(max_tokens, now)

    hours = elapsed_hours(old.last_refill, now)
    available = min(max_tokens, old.tokens + hours * refill_rate_per_hour)

    if available < 1:
        return RefillOutcome(available=available, new_state=None)

    return RefillOutcome(
        available=available,
        new_state=BucketState(tokens=max(0, available - 1), last_refill=now),
    )


def seconds_until_next_token(
    state: Optional[BucketState],
    now: datetime,
    refill_rate_per_hour: int,
) -> int:
    """Seconds until the next hourly refill lands, for Retry-After."""
    if state is None or refill_rate_per_hour < 1:
        return 0
    next_refill = state.last_refill + (elapsed_hours(state.last_refill, now) + 1) * HOUR
    remaining = (next_refill - now).total_seconds()
    return max(1, math.ceil(remaining))
