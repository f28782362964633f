from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .project_constants import (
    DEFAULT_SIGNATURE_LIMIT,
    DIAGNOSTIC_SAMPLE_SIZE,
    MATCH_TOLERANCE,
)
from .rpc import LedgerClient
from .token_balances import SkippedTransaction

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchingTransfer:
    signature: str
    slot: int
    block_time: Optional[int]
    user_delta: float
    treasury_delta: float


@dataclass
class MatchDiagnostics:
    """Per-signature notes from one scan. For operators only."""

    entries: List[str] = field(default_factory=list)

    def skipped(self, signature: str, reason: str) -> None:
        self.entries.append(f"{signature[:12]} {reason}")

    def compared(
        self, signature: str, user_delta: float, treasury_delta: float, expected: float
    ) -> None:
        self.entries.append(
            f"{signature[:12]} userΔ={user_delta:.9f} (diff {abs(user_delta - expected):.2e}), "
            f"treasuryΔ={treasury_delta:.9f} (diff {abs(treasury_delta - expected):.2e})"
        )


def amounts_match(a: float, b: float, tolerance: float = MATCH_TOLERANCE) -> bool:
    return abs(a - b) <= tolerance


async def find_matching_transfer(
    ledger: LedgerClient,
    user_wallet: str,
    treasury_wallet: str,
    mint: str,
    expected_amount: float,
    search_limit: int = DEFAULT_SIGNATURE_LIMIT,
    diagnostics: Optional[MatchDiagnostics] = None,
) -> Optional[MatchingTransfer]:
    """
    Walk the holder's recent signatures newest to oldest and return the first
    transaction that moved `expected_amount` of `mint` from the holder to the
    treasury. Both sides are checked independently against the tolerance.

    Ledger failures propagate; they are never reported as "no match".
    """
    notes = diagnostics if diagnostics is not None else MatchDiagnostics()
    signatures = await ledger.list_recent_signatures(user_wallet, search_limit)

    for signature in signatures:
        deltas = await ledger.get_transfer_deltas(
            signature, user_wallet, treasury_wallet, mint
        )
        if isinstance(deltas, SkippedTransaction):
            notes.skipped(signature, deltas.reason)
            continue

        notes.compared(signature, deltas.user_delta, deltas.treasury_delta, expected_amount)
        if amounts_match(deltas.user_delta, expected_amount) and amounts_match(
            deltas.treasury_delta, expected_amount
        ):
            log.info("Matched transfer %s at slot %d for %s", signature, deltas.slot, user_wallet)
            return MatchingTransfer(
                signature=signature,
                slot=deltas.slot,
                block_time=deltas.block_time,
                user_delta=deltas.user_delta,
                treasury_delta=deltas.treasury_delta,
            )

    if notes.entries:
        log.warning(
            "No matching transfer found: wallet=%s treasury=%s mint=%s expected=%.9f "
            "inspected=%d sample=%s",
            user_wallet,
            treasury_wallet,
            mint,
            expected_amount,
            len(notes.entries),
            notes.entries[:DIAGNOSTIC_SAMPLE_SIZE],
        )
    else:
        log.warning(
            "No signatures returned: wallet=%s treasury=%s mint=%s expected=%.9f",
            user_wallet,
            treasury_wallet,
            mint,
            expected_amount,
        )
    return None
