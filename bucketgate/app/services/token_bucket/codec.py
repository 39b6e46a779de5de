"""Serialization of bucket state to Redis values.

Records are compact JSON objects::

    {"tokens": 9, "last_updated": "2026-10-16T12:00:00.123456Z"}

Anything else found under a bucket key is reported as CorruptStateError,
which callers must keep distinct from a missing key.
"""

from typing import Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, ValidationError

from bucketgate.app.exceptions import CorruptStateError

from .models import BucketState


class _BucketRecord(BaseModel):
    """Wire shape of a stored bucket."""

    model_config = ConfigDict(extra="forbid", strict=False)

    tokens: int = Field(ge=0)
    last_updated: AwareDatetime


def encode(state: BucketState) -> bytes:
    """Serialize a bucket state for a single SET."""
    record = _BucketRecord(tokens=state.tokens, last_updated=state.last_refill)
    return record.model_dump_json().encode("utf-8")


def decode(raw: Union[bytes, bytearray, str]) -> BucketState:
    """Deserialize a stored bucket record.

    Raises:
        CorruptStateError: If the value is not a well-formed bucket record
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptStateError(f"Bucket record is not UTF-8: {e}") from e
    if not isinstance(raw, str):
        raise CorruptStateError(f"Unexpected bucket record type: {type(raw).__name__}")
    try:
        record = _BucketRecord.model_validate_json(raw)
    except ValidationError as e:
        raise CorruptStateError(
            f"Invalid bucket record ({e.error_count()} errors)"
        ) from e
    return BucketState(tokens=record.tokens, last_refill=record.last_updated)
