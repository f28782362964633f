from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .access import AccessManager
from .config import Settings
from .errors import GateError
from .models import IdentityRecord
from .ownership import OwnershipResult, evaluate_ownership
from .report import format_percent, revoked_message
from .rpc import LedgerClient
from .store import RecordStore
from .verification import VerificationService

log = logging.getLogger(__name__)


class SweepOutcome(str, Enum):
    KEPT = "kept"
    REVOKED = "revoked"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class IdentitySweepResult:
    external_id: str
    outcome: SweepOutcome
    ownership: Optional[OwnershipResult] = None
    error: Optional[str] = None


@dataclass
class SweepReport:
    results: List[IdentitySweepResult] = field(default_factory=list)

    def count(self, outcome: SweepOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    def summary(self) -> str:
        return ", ".join(f"{o.value}={self.count(o)}" for o in SweepOutcome)


async def _remove_from_group(
    service: VerificationService,
    record: IdentityRecord,
    ownership: OwnershipResult,
) -> None:
    """Chat-side effects of a revocation. Failures are logged, never retried."""
    settings = service.settings
    access = service.access
    if settings.group_id:
        try:
            await access.revoke_access(record.external_id, settings.group_id)
        except GateError as e:
            log.error("Failed to remove %s from %s: %s", record.external_id, settings.group_id, e)
    try:
        await access.notify(
            record.external_id,
            revoked_message(ownership.percent_owned, settings.required_percent),
        )
    except GateError as e:
        log.warning("Failed to notify %s of removal: %s", record.external_id, e)
    await service.notify_admins(
        "\n".join(
            [
                f"Removed {record.label} ({record.external_id}) for dropping below threshold",
                f"Latest balance: {ownership.balance}",
                f"Percent owned: {format_percent(ownership.percent_owned)}%",
            ]
        )
    )


async def sweep_identity(
    service: VerificationService, record: IdentityRecord
) -> IdentitySweepResult:
    if record.whitelisted or not record.wallet_address:
        return IdentitySweepResult(record.external_id, SweepOutcome.SKIPPED)

    settings = service.settings
    ownership = await evaluate_ownership(
        service.ledger,
        record.wallet_address,
        settings.token_mint,
        settings.required_percent,
    )
    service.store.update_balance(record.external_id, ownership.balance)
    if ownership.qualifies:
        return IdentitySweepResult(record.external_id, SweepOutcome.KEPT, ownership)

    log.warning("User %s dropped below threshold. Removing.", record.external_id)
    service.revoke(record, ownership)
    await _remove_from_group(service, record, ownership)
    return IdentitySweepResult(record.external_id, SweepOutcome.REVOKED, ownership)


async def sweep_once(
    service: VerificationService, concurrency: int | None = None
) -> SweepReport:
    """
    Re-check every verified identity. Each identity is evaluated in isolation:
    an exception for one is logged and recorded as FAILED, the rest carry on.
    At most `concurrency` identities are in flight at once.
    """
    report = SweepReport()
    records = service.store.list_verified()
    if not records:
        log.info("Ownership sweep: no verified users to check.")
        return report

    service.settings.require_chain_config()
    log.info("Ownership sweep: checking %d users.", len(records))
    limit = asyncio.Semaphore(max(1, concurrency or service.settings.sweep_concurrency))

    async def _guarded(record: IdentityRecord) -> IdentitySweepResult:
        async with limit:
            try:
                return await sweep_identity(service, record)
            except Exception as e:
                log.exception("Ownership sweep error for user %s", record.external_id)
                return IdentitySweepResult(record.external_id, SweepOutcome.FAILED, error=str(e))

    report.results.extend(await asyncio.gather(*(_guarded(r) for r in records)))
    log.info("Ownership sweep finished: %s", report.summary())
    return report


async def run_ownership_sweep(
    store: RecordStore,
    ledger: LedgerClient,
    access: AccessManager,
    settings: Settings,
) -> None:
    await sweep_once(VerificationService(store, ledger, access, settings))


async def run_forever(service: VerificationService, interval_s: float | None = None) -> None:
    """Sweep, sleep, repeat until cancelled. A failed tick never stops the loop."""
    interval = interval_s if interval_s is not None else service.settings.sweep_interval_s
    while True:
        try:
            await sweep_once(service)
        except Exception:
            log.exception("Ownership sweep aborted")
        await asyncio.sleep(interval)
