"""Data models for the distributed token bucket."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BucketState:
    """Token bucket state stored per client.

    Attributes:
        tokens: Tokens left in the bucket, 0 <= tokens <= max_tokens
        last_refill: Anchor the hourly refill is measured from
    """
    tokens: int
    last_refill: datetime

    @classmethod
    def full(cls, max_tokens: int, now: datetime) -> "BucketState":
        """Implicit state of a client with no stored record."""
        return cls(tokens=max_tokens, last_refill=now)


class Decision(str, Enum):
    ADMITTED = "admitted"
    DENIED = "denied"


class DenialReason(str, Enum):
    EXHAUSTED = "exhausted"      # Bucket empty
    CONTENTION = "contention"    # Optimistic retries used up


@dataclass
class AttemptResult:
    """Result of one admission attempt against the store.

    Attributes:
        decision: ADMITTED or DENIED
        limit: Bucket capacity
        remaining: Tokens left after this request
        state: State committed to the store (admitted only)
        reason: Why the request was denied
        attempts: Optimistic transaction cycles used
        retry_after: Seconds until another token accrues (denied only)
    """
    decision: Decision
    limit: int
    remaining: int
    state: Optional[BucketState] = None
    reason: Optional[DenialReason] = None
    attempts: int = field(default=1)
    retry_after: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ADMITTED

    @property
    def outcome(self) -> str:
        """Label used in logs."""
        if self.allowed:
            return Decision.ADMITTED.value
        if self.reason is DenialReason.CONTENTION:
            return DenialReason.CONTENTION.value
        return Decision.DENIED.value
