from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from .models import IdentityRecord
from .project_constants import CHALLENGE_DECIMALS, VERIFICATION_WINDOW_MINUTES
from .store import RecordStore, utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Challenge:
    external_id: str
    wallet_address: str
    amount: float
    expires_at: datetime


def random_challenge_amount(
    min_amount: float,
    max_amount: float,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Uniform draw from [min_amount, max_amount], rounded to 9 decimals.
    The amount is a matching nonce, not a price: the 9th decimal is what makes
    two concurrent challenges distinguishable on chain.
    """
    if min_amount > max_amount:
        raise ValueError(f"Empty challenge range [{min_amount}, {max_amount}]")
    draw = (rng or random).uniform(min_amount, max_amount)
    return round(draw, CHALLENGE_DECIMALS)


def issue_challenge(
    store: RecordStore,
    external_id: str,
    wallet_address: str,
    amount_range: Tuple[float, float],
    window: timedelta = timedelta(minutes=VERIFICATION_WINDOW_MINUTES),
    requested_group_id: str | None = None,
    now: datetime | None = None,
    rng: Optional[random.Random] = None,
) -> Tuple[Challenge, IdentityRecord]:
    """Persist a fresh challenge for `external_id`, replacing any pending one."""
    amount = random_challenge_amount(*amount_range, rng=rng)
    expires_at = (now or utcnow()) + window

    previous = store.get(external_id)
    if previous is not None and previous.has_pending_challenge:
        log.info(
            "Replacing pending challenge %s for %s", previous.challenge_amount, external_id
        )

    record = store.save_challenge(
        external_id,
        wallet_address=wallet_address,
        amount=amount,
        expires_at=expires_at,
        requested_group_id=requested_group_id,
    )
    log.info("Issued challenge %.9f to %s (wallet %s)", amount, external_id, wallet_address)
    return Challenge(external_id, wallet_address, amount, expires_at), record
