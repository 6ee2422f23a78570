"""
tests/test_tokens.py -- Unit tests for auth/tokens.py (TokenCodec).

All expiry tests drive a FrozenClock; nothing here sleeps.

Covers:
  - issue/verify round trip preserves user id and admin flag
  - expiry is exclusive: valid at exactly exp, ExpiredToken one second later
  - any single-character change to payload or signature -> InvalidSignature
  - tokens from another key -> InvalidSignature
  - any single-character change to the header -> InvalidSignature
  - input that is not three segments, and wrong-shape claims -> MalformedToken
  - short keys and non-positive TTLs are refused
  - refresh token fingerprinting is deterministic and key-bound
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import ExpiredToken, InvalidSignature, MalformedToken
from auth.tokens import TokenCodec, generate_refresh_token
from conftest import TEST_SECRET


def _replace_middle_char(segment: str) -> str:
    i = len(segment) // 2
    replacement = "A" if segment[i] != "A" else "B"
    return segment[:i] + replacement + segment[i + 1 :]


def test_round_trip_preserves_identity(codec):
    issued = codec.issue(42, False, timedelta(minutes=15))
    claims = codec.verify(issued.value)
    assert claims.user_id == 42
    assert claims.is_admin is False
    assert claims == issued.claims


def test_round_trip_preserves_admin_flag(codec):
    claims = codec.verify(codec.issue(1, True, timedelta(minutes=15)).value)
    assert claims.is_admin is True


def test_expires_at_is_issued_at_plus_ttl(codec, clock):
    issued = codec.issue(1, False, timedelta(minutes=15))
    assert issued.claims.issued_at == clock.now.replace(microsecond=0)
    assert issued.claims.expires_at - issued.claims.issued_at == timedelta(minutes=15)


def test_token_still_valid_at_exact_expiry(codec, clock):
    issued = codec.issue(7, False, timedelta(seconds=60))
    clock.advance(seconds=60)
    assert codec.verify(issued.value).user_id == 7


def test_token_expired_one_second_after_expiry(codec, clock):
    issued = codec.issue(7, False, timedelta(seconds=60))
    clock.advance(seconds=61)
    with pytest.raises(ExpiredToken):
        codec.verify(issued.value)


def test_tampered_payload_fails_signature(codec):
    header, payload, signature = codec.issue(3, False, timedelta(minutes=5)).value.split(".")
    tampered = ".".join([header, _replace_middle_char(payload), signature])
    with pytest.raises(InvalidSignature):
        codec.verify(tampered)


def test_tampered_signature_fails_signature(codec):
    header, payload, signature = codec.issue(3, False, timedelta(minutes=5)).value.split(".")
    tampered = ".".join([header, payload, _replace_middle_char(signature)])
    with pytest.raises(InvalidSignature):
        codec.verify(tampered)


def test_tampered_expired_token_reports_signature_first(codec, clock):
    header, payload, signature = codec.issue(3, False, timedelta(seconds=1)).value.split(".")
    clock.advance(hours=1)
    with pytest.raises(InvalidSignature):
        codec.verify(".".join([header, payload, _replace_middle_char(signature)]))


def test_token_from_other_key_fails_signature(codec, clock):
    other = TokenCodec("another-secret-key-that-is-also-long-enough", clock=clock)
    with pytest.raises(InvalidSignature):
        codec.verify(other.issue(1, True, timedelta(minutes=5)).value)


@pytest.mark.parametrize("garbage", ["", "not-a-token", "Bearer abc", "a..c", "a.b.c.d", ".b.c"])
def test_wrong_segment_count_is_malformed(codec, garbage):
    with pytest.raises(MalformedToken):
        codec.verify(garbage)


def test_three_unverifiable_segments_fail_signature(codec):
    with pytest.raises(InvalidSignature):
        codec.verify("a.b.c")


def test_any_header_change_fails_signature(codec):
    header, payload, signature = codec.issue(3, False, timedelta(minutes=5)).value.split(".")
    for i, original in enumerate(header):
        for replacement in "AQzx":
            if replacement == original:
                continue
            tampered_header = header[:i] + replacement + header[i + 1 :]
            with pytest.raises(InvalidSignature):
                codec.verify(".".join([tampered_header, payload, signature]))


def test_correctly_signed_token_without_admin_flag_is_malformed(codec, clock):
    now = int(clock.now.timestamp())
    token = jwt.encode({"sub": "5", "iat": now, "exp": now + 60}, TEST_SECRET, algorithm="HS256")
    with pytest.raises(MalformedToken):
        codec.verify(token)


def test_correctly_signed_token_with_non_numeric_subject_is_malformed(codec, clock):
    now = int(clock.now.timestamp())
    token = jwt.encode({"sub": "alice", "adm": False, "iat": now, "exp": now + 60}, TEST_SECRET, algorithm="HS256")
    with pytest.raises(MalformedToken):
        codec.verify(token)


def test_short_key_is_refused():
    with pytest.raises(ValueError):
        TokenCodec("too-short")


@pytest.mark.parametrize("ttl", [timedelta(0), timedelta(seconds=-5)])
def test_non_positive_ttl_is_refused(codec, ttl):
    with pytest.raises(ValueError):
        codec.issue(1, False, ttl)


def test_fingerprint_is_deterministic_and_key_bound(codec, clock):
    raw = generate_refresh_token()
    assert codec.fingerprint(raw) == codec.fingerprint(raw)
    assert len(codec.fingerprint(raw)) == 64
    other = TokenCodec("another-secret-key-that-is-also-long-enough", clock=clock)
    assert other.fingerprint(raw) != codec.fingerprint(raw)


def test_refresh_tokens_are_unique():
    assert len({generate_refresh_token() for _ in range(100)}) == 100
