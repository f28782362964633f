from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .access import AccessManager
from .challenge import Challenge, issue_challenge
from .config import Settings
from .errors import GateError
from .matcher import MatchingTransfer, find_matching_transfer
from .models import IdentityRecord, VerificationState
from .ownership import OwnershipResult, evaluate_ownership
from .report import join_request_instructions
from .rpc import LedgerClient
from .store import RecordStore, utcnow
from .token_balances import is_valid_wallet

log = logging.getLogger(__name__)


class ConfirmStatus(str, Enum):
    NO_CHALLENGE = "no-challenge"
    EXPIRED = "expired"
    NO_TRANSFER = "no-transfer"
    INSUFFICIENT_HOLDINGS = "insufficient-holdings"
    VERIFIED = "verified"


@dataclass(frozen=True)
class ConfirmResult:
    status: ConfirmStatus
    record: Optional[IdentityRecord] = None
    transfer: Optional[MatchingTransfer] = None
    ownership: Optional[OwnershipResult] = None
    scope: Optional[str] = None
    admitted: bool = False


class VerificationService:
    """Per-identity state transitions: issue, confirm, whitelist, revoke."""

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerClient,
        access: AccessManager,
        settings: Settings,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.access = access
        self.settings = settings

    async def notify_admins(self, text: str) -> None:
        async def _one(admin_id: str) -> None:
            try:
                await self.access.notify(admin_id, text)
            except GateError as e:
                log.warning("Failed to notify admin %s: %s", admin_id, e)

        await asyncio.gather(*(_one(a) for a in self.settings.admin_ids))

    async def _admit(self, record: IdentityRecord, scope: str) -> bool:
        try:
            await self.access.grant_access(record.external_id, scope)
            return True
        except GateError as e:
            log.error("Failed to grant %s access to %s: %s", record.external_id, scope, e)
            return False

    def resolve_identity(self, ref: str) -> Optional[IdentityRecord]:
        """`ref` is an external id or `@display_name`."""
        ref = ref.strip()
        if ref.startswith("@"):
            return self.store.find_by_display_name(ref[1:])
        return self.store.get_or_create(ref)

    def request_verification(
        self,
        external_id: str,
        wallet_address: str,
        display_name: str | None = None,
        group_id: str | None = None,
        now: datetime | None = None,
    ) -> Challenge:
        wallet = (wallet_address or "").strip()
        if not wallet:
            raise ValueError("Please provide a wallet address.")
        if not is_valid_wallet(wallet):
            raise ValueError(f"{wallet} is not a valid Solana address.")

        self.store.get_or_create(external_id, display_name)
        challenge, _ = issue_challenge(
            self.store,
            external_id,
            wallet,
            self.settings.amount_range,
            requested_group_id=group_id or self.settings.group_id or None,
            now=now,
        )
        return challenge

    async def confirm(self, external_id: str, now: datetime | None = None) -> ConfirmResult:
        """
        Raises ConfigurationError when treasury/mint are unset or supply is zero,
        LedgerError when the chain could not be read. Everything else is a
        ConfirmStatus.
        """
        now = now or utcnow()
        record = self.store.get(external_id)
        if record is None or record.state is not VerificationState.PENDING_CHALLENGE:
            return ConfirmResult(ConfirmStatus.NO_CHALLENGE, record)
        if not record.wallet_address:
            return ConfirmResult(ConfirmStatus.NO_CHALLENGE, record)

        if record.challenge_expired(now):
            self.store.clear_challenge(external_id)
            log.info("Challenge for %s expired at %s", external_id, record.challenge_expires_at)
            return ConfirmResult(ConfirmStatus.EXPIRED, self.store.get(external_id))

        self.settings.require_chain_config()

        transfer = await find_matching_transfer(
            self.ledger,
            user_wallet=record.wallet_address,
            treasury_wallet=self.settings.treasury_wallet,
            mint=self.settings.token_mint,
            expected_amount=record.challenge_amount,
        )
        if transfer is None:
            return ConfirmResult(ConfirmStatus.NO_TRANSFER, record)

        ownership = await evaluate_ownership(
            self.ledger,
            record.wallet_address,
            self.settings.token_mint,
            self.settings.required_percent,
        )
        if not ownership.qualifies:
            log.info(
                "%s proved control of %s but holds %.6f of supply",
                external_id,
                record.wallet_address,
                ownership.percent_owned,
            )
            return ConfirmResult(
                ConfirmStatus.INSUFFICIENT_HOLDINGS, record, transfer, ownership
            )

        verified = self.store.mark_verified(external_id, ownership.balance)
        log.info("Verified %s via %s (balance %s)", external_id, transfer.signature, ownership.balance)

        scope = record.requested_group_id or self.settings.group_id or None
        admitted = False
        if scope:
            try:
                admitted = await self._admit(verified, scope)
            finally:
                self.store.clear_requested_group(external_id)

        await self.notify_admins(
            "\n".join(
                [
                    f"Verified {verified.label} ({external_id})",
                    f"Wallet: {verified.wallet_address}",
                    f"Balance: {ownership.balance}",
                ]
            )
        )
        return ConfirmResult(
            ConfirmStatus.VERIFIED,
            self.store.get(external_id),
            transfer,
            ownership,
            scope=scope,
            admitted=admitted,
        )

    async def whitelist(self, admin_id: str, target: str) -> IdentityRecord:
        if not self.settings.is_admin(admin_id):
            raise PermissionError("You are not authorized to use this command.")
        record = self.resolve_identity(target)
        if record is None:
            raise LookupError(f"Could not find a user with username {target}.")

        record = self.store.set_whitelisted(record.external_id, True)
        log.info("%s whitelisted %s", admin_id, record.external_id)

        if record.requested_group_id:
            if await self._admit(record, record.requested_group_id):
                try:
                    await self.access.notify(
                        record.external_id,
                        "An admin added you to the whitelist and you have been approved to join.",
                    )
                except GateError as e:
                    log.warning("Failed to notify %s: %s", record.external_id, e)
                self.store.clear_requested_group(record.external_id)
        return self.store.get(record.external_id)

    async def handle_join_request(
        self,
        external_id: str,
        group_id: str,
        display_name: str | None = None,
        first_name: str | None = None,
    ) -> bool:
        """Returns True when the requester was admitted straight away."""
        self.store.get_or_create(external_id, display_name)
        self.store.set_requested_group(external_id, group_id)
        record = self.store.get(external_id)

        if record.whitelisted:
            if await self._admit(record, group_id):
                try:
                    await self.access.notify(
                        external_id,
                        "You are whitelisted and have been approved to join the group.",
                    )
                except GateError as e:
                    log.warning("Failed to notify %s: %s", external_id, e)
                self.store.clear_requested_group(external_id)
                return True
            return False

        try:
            await self.access.notify(
                external_id,
                join_request_instructions(first_name, self.settings.treasury_wallet),
            )
        except GateError as e:
            log.warning("Failed to send join instructions to %s: %s", external_id, e)
        return False

    def handle_member_left(self, external_id: str) -> None:
        if self.store.get(external_id) is not None:
            self.store.update_balance(external_id, 0)

    def revoke(self, record: IdentityRecord, ownership: OwnershipResult) -> None:
        self.store.mark_revoked(
            record.external_id,
            {"balance": ownership.balance, "percent_owned": ownership.percent_owned},
        )
