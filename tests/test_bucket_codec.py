"""Tests for bucket record encoding."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from bucketgate.app.exceptions import CorruptStateError
from bucketgate.app.services.token_bucket import BucketState, decode, encode

NOW = datetime(2026, 10, 16, 12, 0, 0, 123456, tzinfo=timezone.utc)


class TestEncode:
    """Test bucket record encoding."""

    def test_encodes_json_with_original_field_names(self):
        """Records use the tokens / last_updated field names."""
        data = json.loads(encode(BucketState(tokens=9, last_refill=NOW)))
        assert data["tokens"] == 9
        assert set(data) == {"tokens", "last_updated"}
        assert data["last_updated"].startswith("2026-10-16T12:00:00.123456")

    @pytest.mark.parametrize("tokens", [0, 1, 10])
    def test_round_trip(self, tokens):
        """Encoded state decodes back to the same state."""
        state = BucketState(tokens=tokens, last_refill=NOW)
        assert decode(encode(state)) == state

    def test_round_trip_non_utc_offset(self):
        """Non-UTC offsets survive a round trip as the same instant."""
        tz = timezone(timedelta(hours=8))
        state = BucketState(tokens=3, last_refill=NOW.astimezone(tz))
        decoded = decode(encode(state))
        assert decoded == state
        assert decoded.last_refill.utcoffset() is not None


class TestDecode:
    """Test bucket record decoding and validation."""

    def test_decodes_str(self):
        """A str record decodes like bytes."""
        raw = '{"tokens": 4, "last_updated": "2026-10-16T12:00:00Z"}'
        state = decode(raw)
        assert state.tokens == 4
        assert state.last_refill == datetime(2026, 10, 16, 12, tzinfo=timezone.utc)

    def test_decodes_record_written_with_rfc3339_offset(self):
        """RFC 3339 timestamps with an offset are accepted."""
        raw = b'{"tokens":10,"last_updated":"2026-10-16T12:00:00.5+00:00"}'
        assert decode(raw).tokens == 10

    @pytest.mark.parametrize(
        "raw",
        [
            b"",
            b"not json",
            b"\xff\xfe\x00",
            b"[]",
            b'{"tokens": 3}',
            b'{"last_updated": "2026-10-16T12:00:00Z"}',
            b'{"tokens": "lots", "last_updated": "2026-10-16T12:00:00Z"}',
            b'{"tokens": -1, "last_updated": "2026-10-16T12:00:00Z"}',
            b'{"tokens": 3, "last_updated": "yesterday"}',
            b'{"tokens": 3, "last_updated": "2026-10-16T12:00:00"}',
            b'{"tokens": 3, "last_updated": "2026-10-16T12:00:00Z", "extra": 1}',
        ],
    )
    def test_malformed_records_raise_corrupt_state(self, raw):
        """Malformed records raise CorruptStateError."""
        with pytest.raises(CorruptStateError):
            decode(raw)

    def test_unexpected_type_raises_corrupt_state(self):
        """Non-text input raises CorruptStateError."""
        with pytest.raises(CorruptStateError):
            decode(42)
