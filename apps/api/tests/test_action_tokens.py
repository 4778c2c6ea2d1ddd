from __future__ import annotations

import string
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from booking_api.booking.errors import (
    TokenActionMismatch,
    TokenError,
    TokenExpired,
    TokenMalformed,
    TokenSignatureInvalid,
)
from booking_api.booking.tokens import ActionTokenCodec


SECRET = b"test-secret-key"
_B64URL_ALPHABET = string.ascii_letters + string.digits + "-_"


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def codec(clock: FakeClock) -> ActionTokenCodec:
    return ActionTokenCodec(secret=SECRET, clock=clock)


@pytest.mark.parametrize("action", ["approve", "reject"])
@pytest.mark.parametrize("record_id", ["R1", "clx8f2k0a0000a1b2c3d4e5f6", "id:with:colons", "id.with.dots", "ünïcode-id"])
def test_issue_then_verify_returns_record_and_action(codec: ActionTokenCodec, record_id: str, action: str) -> None:
    claims = codec.verify(codec.issue(record_id, action))  # type: ignore[arg-type]

    assert claims.record_id == record_id
    assert claims.action == action


def test_claims_carry_issue_time_from_clock(codec: ActionTokenCodec, clock: FakeClock) -> None:
    token = codec.issue("R1", "approve")
    issued = clock()
    clock.advance(timedelta(minutes=5))

    assert codec.verify(token).issued_at == issued


def test_token_is_url_safe(codec: ActionTokenCodec) -> None:
    token = codec.issue("R1", "approve")

    assert token
    assert set(token) <= set(_B64URL_ALPHABET + ".")
    assert token.count(".") == 2


def test_issue_rejects_unknown_action(codec: ActionTokenCodec) -> None:
    with pytest.raises(ValueError):
        codec.issue("R1", "delete")  # type: ignore[arg-type]


def test_issue_rejects_empty_record_id(codec: ActionTokenCodec) -> None:
    with pytest.raises(ValueError):
        codec.issue("", "approve")


def test_single_character_substitution_fails_verification(codec: ActionTokenCodec) -> None:
    token = codec.issue("R1", "approve")

    # The final character holds unused low bits of the base64 signature.
    for index in range(len(token) - 1):
        replacement = "A" if token[index] != "A" else "B"
        tampered = token[:index] + replacement + token[index + 1 :]
        expected = TokenError if token[index] == "." else TokenSignatureInvalid
        with pytest.raises(expected):
            codec.verify(tampered)


def test_mutating_last_character_never_changes_claims(codec: ActionTokenCodec) -> None:
    token = codec.issue("R1", "approve")
    original = codec.verify(token)

    for replacement in _B64URL_ALPHABET:
        if replacement == token[-1]:
            continue
        try:
            claims = codec.verify(token[:-1] + replacement)
        except TokenError:
            continue
        assert claims == original


def test_token_signed_with_other_secret_is_rejected(clock: FakeClock, codec: ActionTokenCodec) -> None:
    other = ActionTokenCodec(secret=b"another-secret", clock=clock)

    with pytest.raises(TokenSignatureInvalid):
        codec.verify(other.issue("R1", "approve"))


def test_payload_swap_with_original_signature_is_rejected(codec: ActionTokenCodec) -> None:
    approve_payload = codec.issue("R1", "approve").split(".", 1)[0]
    reject_token = codec.issue("R1", "reject")
    timestamp_and_signature = reject_token.split(".", 1)[1]

    with pytest.raises(TokenSignatureInvalid):
        codec.verify(f"{approve_payload}.{timestamp_and_signature}")


@pytest.mark.parametrize("token", ["", "!!!!", "abc", "A" * 10, "Zm9v", "ab+/cd", "only.one"])
def test_garbage_tokens_are_malformed(codec: ActionTokenCodec, token: str) -> None:
    with pytest.raises(TokenMalformed):
        codec.verify(token)


def test_dotted_garbage_fails_signature_check(codec: ActionTokenCodec) -> None:
    with pytest.raises(TokenSignatureInvalid):
        codec.verify("a.b.c")


def test_non_ascii_token_is_malformed(codec: ActionTokenCodec) -> None:
    with pytest.raises(TokenMalformed):
        codec.verify("tö.k.én")


def test_signed_but_unreadable_payload_is_malformed(codec: ActionTokenCodec) -> None:
    token = codec.serializer.make_signer().sign(b"not-json-at-all").decode("ascii")

    with pytest.raises(TokenMalformed):
        codec.verify(token)


def test_signed_payload_with_unknown_action_is_malformed(codec: ActionTokenCodec) -> None:
    token = codec.serializer.dumps({"record_id": "R1", "action": "delete"})

    with pytest.raises(TokenMalformed):
        codec.verify(token)


@pytest.mark.parametrize("payload", [["R1", "approve"], {"action": "approve"}, {"record_id": "", "action": "approve"}])
def test_signed_payload_with_wrong_shape_is_malformed(codec: ActionTokenCodec, payload: object) -> None:
    token = codec.serializer.dumps(payload)

    with pytest.raises(TokenMalformed):
        codec.verify(token)


def test_token_valid_just_before_expiry(codec: ActionTokenCodec, clock: FakeClock) -> None:
    token = codec.issue("R1", "approve")
    clock.advance(timedelta(hours=23, minutes=59))

    assert codec.verify(token).record_id == "R1"


def test_token_expired_just_after_max_age(codec: ActionTokenCodec, clock: FakeClock) -> None:
    token = codec.issue("R1", "approve")
    clock.advance(timedelta(hours=24, minutes=1))

    with pytest.raises(TokenExpired):
        codec.verify(token)


def test_token_from_the_future_is_refused(codec: ActionTokenCodec, clock: FakeClock) -> None:
    token = codec.issue("R1", "approve")
    clock.advance(timedelta(hours=-1))

    with pytest.raises(TokenExpired):
        codec.verify(token)


def test_from_secret_reads_configured_values() -> None:
    codec = ActionTokenCodec.from_secret("configured-secret", max_age_seconds=60)

    assert codec.secret == b"configured-secret"
    assert codec.max_age == timedelta(seconds=60)


def test_custom_max_age_is_respected(clock: FakeClock) -> None:
    codec = ActionTokenCodec(secret=SECRET, max_age=timedelta(seconds=60), clock=clock)
    token = codec.issue("R1", "reject")
    clock.advance(timedelta(seconds=61))

    with pytest.raises(TokenExpired):
        codec.verify(token)


def test_verify_for_enforces_action_binding(codec: ActionTokenCodec) -> None:
    reject_token = codec.issue("R1", "reject")
    approve_token = codec.issue("R1", "approve")

    with pytest.raises(TokenActionMismatch) as exc_info:
        codec.verify_for(reject_token, "approve")
    assert exc_info.value.expected == "approve"
    assert exc_info.value.actual == "reject"

    with pytest.raises(TokenActionMismatch):
        codec.verify_for(approve_token, "reject")

    assert codec.verify_for(approve_token, "approve").record_id == "R1"


def test_token_errors_share_one_public_message() -> None:
    messages = {
        TokenMalformed().public_message,
        TokenSignatureInvalid().public_message,
        TokenExpired().public_message,
        TokenActionMismatch("approve", "reject").public_message,
    }
    assert len(messages) == 1


def test_empty_secret_is_refused() -> None:
    with pytest.raises(ValueError):
        ActionTokenCodec(secret=b"")


def test_non_positive_max_age_is_refused() -> None:
    with pytest.raises(ValueError):
        ActionTokenCodec(secret=SECRET, max_age=timedelta(0))


def test_build_action_links_embed_action_bound_tokens(codec: ActionTokenCodec) -> None:
    links = codec.build_action_links("R1", "https://api.example.com/")

    approve = urlparse(links.approve_url)
    reject = urlparse(links.reject_url)
    assert approve.path == "/actions/approve"
    assert reject.path == "/actions/reject"

    approve_token = parse_qs(approve.query)["token"][0]
    reject_token = parse_qs(reject.query)["token"][0]
    assert codec.verify_for(approve_token, "approve").record_id == "R1"
    assert codec.verify_for(reject_token, "reject").record_id == "R1"
    with pytest.raises(TokenActionMismatch):
        codec.verify_for(approve_token, "reject")
