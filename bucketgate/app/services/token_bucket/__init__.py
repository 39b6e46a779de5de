"""Distributed token bucket backed by Redis optimistic transactions.

This package derives per-client bucket keys, encodes bucket records and
runs the WATCH/MULTI/EXEC cycle that keeps concurrent admissions for the
same client from spending the same token twice.
"""

from .codec import decode, encode
from .keys import DEFAULT_KEY_PREFIX, derive_bucket_key
from .models import AttemptResult, BucketState, Decision, DenialReason, utc_now
from .policy import RefillOutcome, elapsed_hours, refill, seconds_until_next_token
from .transactor import TokenBucketTransactor

__all__ = [
    "AttemptResult",
    "BucketState",
    "Decision",
    "DenialReason",
    "RefillOutcome",
    "TokenBucketTransactor",
    "DEFAULT_KEY_PREFIX",
    "decode",
    "derive_bucket_key",
    "elapsed_hours",
    "encode",
    "refill",
    "seconds_until_next_token",
    "utc_now",
]
