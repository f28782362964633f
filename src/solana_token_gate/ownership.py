from __future__ import annotations

import asyncio
from dataclasses import dataclass

from .errors import ZeroSupplyError
from .rpc import LedgerClient


@dataclass(frozen=True)
class OwnershipResult:
    qualifies: bool
    percent_owned: float  # fraction of supply, 0..1
    balance: float
    supply: float


async def evaluate_ownership(
    ledger: LedgerClient, wallet: str, mint: str, required_fraction: float
) -> OwnershipResult:
    """Does `wallet` hold at least `required_fraction` of the supply of `mint`?

    Supply and balance are read concurrently. The threshold is inclusive.
    A zero supply raises :class:`ZeroSupplyError` instead of a verdict.
    """
    supply, balance = await asyncio.gather(
        ledger.get_supply(mint),
        ledger.get_balance(wallet, mint),
    )
    if supply == 0:
        raise ZeroSupplyError(mint)
    percent_owned = balance / supply
    return OwnershipResult(
        qualifies=percent_owned >= required_fraction,
        percent_owned=percent_owned,
        balance=balance,
        supply=supply,
    )
