"""
Shared fixtures: a temporary SQLite store, an in-memory ledger and an access
manager that records every call instead of talking to Telegram.
"""

from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest

from solana_token_gate.access import LoggingAccessManager
from solana_token_gate.config import Settings
from solana_token_gate.errors import AccessError, LedgerError
from solana_token_gate.store import RecordStore
from solana_token_gate.token_balances import SkippedTransaction, TransferDeltas
from solana_token_gate.verification import VerificationService

MINT = "9NrkmoqwF1rBjsfKZvn7ngCy6zqvb8A6A5RfTvR2pump"
TREASURY = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
HOLDER = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
OTHER_HOLDER = "So11111111111111111111111111111111111111112"
GROUP_ID = "-1001234567890"
ADMIN_ID = "999"


def transfer(signature: str, amount: float, slot: int = 100) -> TransferDeltas:
    return TransferDeltas(
        signature=signature,
        slot=slot,
        block_time=1_700_000_000 + slot,
        user_delta=amount,
        treasury_delta=amount,
    )


class FakeLedger:
    def __init__(self, supply: float = 10_000.0) -> None:
        self.supply = supply
        self.balances: Dict[str, float] = {}
        self.signatures: Dict[str, List[str]] = {}
        self.deltas: Dict[str, TransferDeltas | SkippedTransaction] = {}
        self.failing_wallets: Set[str] = set()
        self.calls: List[Tuple[str, ...]] = []

    def add_transfers(self, wallet: str, items: Iterable[TransferDeltas | SkippedTransaction]) -> None:
        for item in items:
            self.signatures.setdefault(wallet, []).append(item.signature)
            self.deltas[item.signature] = item

    async def get_supply(self, mint: str) -> float:
        self.calls.append(("get_supply", mint))
        return self.supply

    async def get_balance(self, wallet: str, mint: str) -> float:
        self.calls.append(("get_balance", wallet, mint))
        if wallet in self.failing_wallets:
            raise LedgerError(f"balance lookup for {wallet} timed out")
        return self.balances.get(wallet, 0.0)

    async def list_recent_signatures(self, wallet: str, limit: int) -> List[str]:
        self.calls.append(("list_recent_signatures", wallet, str(limit)))
        if wallet in self.failing_wallets:
            raise LedgerError(f"signature lookup for {wallet} timed out")
        return self.signatures.get(wallet, [])[:limit]

    async def get_transfer_deltas(
        self, signature: str, wallet: str, treasury: str, mint: str
    ) -> TransferDeltas | SkippedTransaction:
        self.calls.append(("get_transfer_deltas", signature))
        return self.deltas[signature]


class RecordingAccess(LoggingAccessManager):
    def __init__(self) -> None:
        super().__init__()
        self.fail_on: Set[Tuple[str, str]] = set()

    def _maybe_fail(self, action: str, external_id: str) -> None:
        if (action, str(external_id)) in self.fail_on:
            raise AccessError(f"{action} {external_id} refused")

    async def grant_access(self, external_id: str, scope: str) -> None:
        self._maybe_fail("grant", external_id)
        await super().grant_access(external_id, scope)

    async def revoke_access(self, external_id: str, scope: str) -> None:
        self._maybe_fail("revoke", external_id)
        await super().revoke_access(external_id, scope)

    async def notify(self, external_id: str, text: str) -> None:
        self._maybe_fail("notify", external_id)
        await super().notify(external_id, text)

    def of(self, action: str, external_id: Optional[str] = None) -> List[Tuple[str, str, str]]:
        return [
            a
            for a in self.actions
            if a[0] == action and (external_id is None or a[1] == str(external_id))
        ]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        treasury_wallet=TREASURY,
        token_mint=MINT,
        required_percent=0.001,
        admin_ids=(ADMIN_ID,),
        group_id=GROUP_ID,
        database_path=":memory:",
    )


@pytest.fixture
def store(tmp_path):
    store = RecordStore(str(tmp_path / "gate.sqlite"))
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def access() -> RecordingAccess:
    return RecordingAccess()


@pytest.fixture
def service(store, ledger, access, settings) -> VerificationService:
    return VerificationService(store, ledger, access, settings)
