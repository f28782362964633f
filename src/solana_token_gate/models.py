from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    REQUESTED = "requested"
    VERIFIED = "verified"
    WHITELIST_CHANGED = "whitelist-changed"
    GROUP_REQUESTED = "group-requested"
    GROUP_CLEARED = "group-cleared"
    REVOKED = "revoked"


class VerificationState(str, Enum):
    UNREGISTERED = "unregistered"
    PENDING_CHALLENGE = "pending-challenge"
    VERIFIED = "verified"


@dataclass
class IdentityRecord:
    external_id: str
    display_name: Optional[str] = None
    wallet_address: Optional[str] = None
    challenge_amount: Optional[float] = None
    challenge_expires_at: Optional[datetime] = None
    verified: bool = False
    verified_at: Optional[datetime] = None
    last_known_balance: Optional[float] = None
    last_checked_at: Optional[datetime] = None
    whitelisted: bool = False
    requested_group_id: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_pending_challenge(self) -> bool:
        return self.challenge_amount is not None

    @property
    def state(self) -> VerificationState:
        """Where this identity sits in the verification lifecycle.

        ``whitelisted`` is not a state; callers check it before any transition.
        """
        if self.has_pending_challenge:
            return VerificationState.PENDING_CHALLENGE
        if self.verified:
            return VerificationState.VERIFIED
        return VerificationState.UNREGISTERED

    def challenge_expired(self, now: datetime) -> bool:
        if self.challenge_expires_at is None:
            return False
        return now > self.challenge_expires_at

    @property
    def label(self) -> str:
        if self.display_name:
            return f"@{self.display_name}"
        return f"ID {self.external_id}"


@dataclass(frozen=True)
class VerificationEvent:
    identity_ref: int
    event_type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
