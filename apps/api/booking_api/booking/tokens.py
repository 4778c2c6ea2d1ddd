"""Signed, time-limited capability tokens for the approve/reject email links.

Tokens are itsdangerous ``URLSafeTimedSerializer`` strings,
``payload.timestamp.signature``, signed with HMAC-SHA256 under a dedicated
salt. The signer splits on the *last* separator, so the payload can never
desynchronise the signature check.

Tokens are never stored or consumed. Replays are harmless because the record's
own status gates every transition.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal
from urllib.parse import urlencode

from itsdangerous import BadData, BadPayload, BadSignature, SignatureExpired, TimestampSigner, URLSafeTimedSerializer

from booking_api.booking.errors import (
    TokenActionMismatch,
    TokenExpired,
    TokenMalformed,
    TokenSignatureInvalid,
)


Action = Literal["approve", "reject"]
ACTIONS: frozenset[str] = frozenset({"approve", "reject"})

ACTION_TOKEN_SALT = "booking-request.action-link"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClockedTimestampSigner(TimestampSigner):
    """Timestamp signer whose notion of "now" comes from an injected clock."""

    def __init__(self, *args: Any, clock: Callable[[], datetime] = _utcnow, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.clock = clock

    def get_timestamp(self) -> int:
        return int(self.clock().timestamp())


@dataclass(frozen=True, slots=True)
class ActionClaims:
    record_id: str
    action: Action
    issued_at: datetime


@dataclass(frozen=True, slots=True)
class ActionLinks:
    approve_url: str
    reject_url: str


@dataclass(frozen=True, slots=True)
class ActionTokenCodec:
    secret: bytes = field(repr=False)
    max_age: timedelta = timedelta(hours=24)
    clock: Callable[[], datetime] = field(default=_utcnow, compare=False)
    serializer: URLSafeTimedSerializer = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.secret:
            raise ValueError("action token secret must not be empty")
        if self.max_age <= timedelta(0):
            raise ValueError("action token max_age must be positive")
        object.__setattr__(
            self,
            "serializer",
            URLSafeTimedSerializer(
                self.secret,
                salt=ACTION_TOKEN_SALT,
                signer=ClockedTimestampSigner,
                signer_kwargs={"digest_method": hashlib.sha256, "clock": self.clock},
            ),
        )

    @classmethod
    def from_secret(cls, secret: str, *, max_age_seconds: int = 24 * 60 * 60) -> ActionTokenCodec:
        return cls(secret=secret.encode("utf-8"), max_age=timedelta(seconds=max_age_seconds))

    def issue(self, record_id: str, action: Action) -> str:
        if action not in ACTIONS:
            raise ValueError(f"unsupported action: {action}")
        if not record_id:
            raise ValueError("record_id must not be empty")
        return self.serializer.dumps({"action": action, "record_id": record_id})

    def verify(self, token: str) -> ActionClaims:
        # payload.timestamp.signature; anything else never reaches the signer.
        if not token or not token.isascii() or token.count(".") < 2:
            raise TokenMalformed("token does not have the signed-token shape")

        try:
            data, issued_at = self.serializer.loads(
                token,
                max_age=int(self.max_age.total_seconds()),
                return_timestamp=True,
            )
        except SignatureExpired as exc:
            raise TokenExpired("token expired") from exc
        except BadSignature as exc:
            raise TokenSignatureInvalid("token signature mismatch") from exc
        except BadPayload as exc:
            raise TokenMalformed("token payload unreadable") from exc
        except BadData as exc:
            raise TokenMalformed("token could not be decoded") from exc

        if not isinstance(data, dict):
            raise TokenMalformed("token payload is not an object")
        record_id = data.get("record_id")
        action = data.get("action")
        if not isinstance(record_id, str) or not record_id:
            raise TokenMalformed("token payload missing record id")
        if action not in ACTIONS:
            raise TokenMalformed("token payload has unknown action")

        return ActionClaims(record_id=record_id, action=action, issued_at=issued_at)

    def verify_for(self, token: str, action: Action) -> ActionClaims:
        claims = self.verify(token)
        if claims.action != action:
            raise TokenActionMismatch(expected=action, actual=claims.action)
        return claims

    def build_action_links(self, record_id: str, base_url: str) -> ActionLinks:
        root = base_url.rstrip("/")
        approve = urlencode({"token": self.issue(record_id, "approve")})
        reject = urlencode({"token": self.issue(record_id, "reject")})
        return ActionLinks(
            approve_url=f"{root}/actions/approve?{approve}",
            reject_url=f"{root}/actions/reject?{reject}",
        )
