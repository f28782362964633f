from __future__ import annotations

from typing import Iterable, List, Optional

from .models import IdentityRecord
from .project_constants import TELEGRAM_MESSAGE_CHARACTER_LIMIT, VERIFICATION_WINDOW_MINUTES


def format_percent(fraction: float) -> str:
    return f"{fraction * 100:.4f}"


def _ts(value) -> str:
    return value.isoformat() if value else "unknown"


def challenge_instructions(amount: float, treasury_wallet: str) -> str:
    return "\n".join(
        [
            "Your verification amount is:",
            "```",
            f"{amount:.9f} tokens",
            "```",
            f"Send exactly this amount of the configured SPL token to the treasury wallet: `{treasury_wallet}`.",
            "",
            "Once the transfer is confirmed on-chain, run /confirm to finish. "
            f"This code expires in {VERIFICATION_WINDOW_MINUTES} minutes.",
        ]
    )


def join_request_instructions(first_name: Optional[str], treasury_wallet: str) -> str:
    return "\n".join(
        [
            f"Hi {first_name or 'there'}!",
            "To join the group you must verify token ownership.",
            "",
            "Please start a private chat with me and run /start followed by /verify <wallet_address>.",
            "Once verified, I will send you a single-use invite button.",
            f"Treasury wallet: `{treasury_wallet}`",
        ]
    )


def insufficient_message(percent_owned: float, required: float) -> str:
    return (
        f"We confirmed your transfer but your holdings ({format_percent(percent_owned)}% of supply) "
        f"are below the required threshold of {format_percent(required)}%."
    )


def revoked_message(percent_owned: float, required: float) -> str:
    return (
        "You were removed from the group because your holdings fell to "
        f"{format_percent(percent_owned)}% of supply. Required: {format_percent(required)}%."
    )


def status_lines(record: IdentityRecord) -> List[str]:
    lines = [
        f"Wallet: {record.wallet_address or 'Not set'}",
        f"Verified: {'Yes' if record.verified else 'No'}",
    ]
    if record.whitelisted:
        lines.append("Whitelisted: Yes")
    if record.last_known_balance is not None:
        lines.append(f"Last balance: {record.last_known_balance}")
    if record.verified_at:
        lines.append(f"Verified at: {record.verified_at.isoformat()}")
    if record.challenge_amount is not None:
        lines.append(f"Pending verification amount: {record.challenge_amount:.9f}")
    return lines


def audit_line(record: IdentityRecord, index: int) -> str:
    status = "whitelisted" if record.whitelisted else "verified"
    return (
        f"{index + 1}. {record.label} - {status}\n"
        f"    Wallet: {record.wallet_address or 'n/a'}\n"
        f"    Balance: {record.last_known_balance or 0}\n"
        f"    Verified: {_ts(record.verified_at)}\n"
        f"    Last sweep: {_ts(record.last_checked_at)}"
    )


def audit_lines(
    verified: Iterable[IdentityRecord], pending: Iterable[IdentityRecord]
) -> List[str]:
    verified = sorted(verified, key=lambda r: r.last_known_balance or 0, reverse=True)
    pending = list(pending)
    if not verified and not pending:
        return ["No holders have verified yet."]

    lines = [
        f"Verified holders: {len(verified)}",
        f"Pending verifications: {len(pending)}",
    ]
    lines.extend(audit_line(r, i) for i, r in enumerate(verified))
    if pending:
        lines.append("Pending users:")
        lines.extend(
            f"- {r.label} - wallet: {r.wallet_address or 'n/a'}, "
            f"requested group: {r.requested_group_id or 'n/a'}"
            for r in pending
        )
    return lines


def chunk_lines(
    lines: Iterable[str], limit: int = TELEGRAM_MESSAGE_CHARACTER_LIMIT
) -> List[str]:
    """Join lines into messages no longer than `limit` (single overlong lines pass as-is)."""
    chunks: List[str] = []
    current: List[str] = []
    length = 0
    for line in lines:
        if current and length + len(line) + 1 > limit:
            chunks.append("\n".join(current))
            current, length = [], 0
        current.append(line)
        length += len(line) + 1
    if current:
        chunks.append("\n".join(current))
    return chunks
