from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import base58


@dataclass(frozen=True)
class TransferDeltas:
    signature: str
    slot: int
    block_time: Optional[int]
    user_delta: float  # debited from the holder
    treasury_delta: float  # credited to the treasury


@dataclass(frozen=True)
class SkippedTransaction:
    signature: str
    reason: str


def is_valid_wallet(address: str) -> bool:
    """A Solana account address is the base58 form of a 32-byte public key."""
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False


def ui_amount(entry: Dict[str, Any]) -> float:
    """
    UI amount of a pre/post token balance entry.
    jsonParsed returns uiAmount as a number (or null for zero on some nodes)
    and uiAmountString as a string; fall back to the string form.
    """
    token_amount = entry.get("uiTokenAmount") or {}
    value = token_amount.get("uiAmount")
    if value is None:
        value = token_amount.get("uiAmountString")
    if value is None or value == "":
        return 0.0
    return float(value)


def find_balance(
    entries: Iterable[Dict[str, Any]], owner: str, mint: str
) -> Optional[Dict[str, Any]]:
    for entry in entries:
        if entry.get("owner") == owner and entry.get("mint") == mint:
            return entry
    return None


def extract_transfer_deltas(
    signature: str,
    tx: Optional[Dict[str, Any]],
    user_wallet: str,
    treasury_wallet: str,
    mint: str,
) -> TransferDeltas | SkippedTransaction:
    """
    Compute how much of `mint` left the holder and reached the treasury in one
    transaction, from its pre/post token balance snapshots.

    Holder pre/post and treasury post must be present. Treasury pre is optional
    (the treasury may not have held the token before) and counts as zero.
    """
    if not tx or not tx.get("meta"):
        return SkippedTransaction(signature, "missing meta")

    meta = tx["meta"]
    pre = meta.get("preTokenBalances") or []
    post = meta.get("postTokenBalances") or []

    user_pre = find_balance(pre, user_wallet, mint)
    user_post = find_balance(post, user_wallet, mint)
    treasury_pre = find_balance(pre, treasury_wallet, mint)
    treasury_post = find_balance(post, treasury_wallet, mint)

    missing: List[str] = []
    if user_pre is None:
        missing.append("userPre")
    if user_post is None:
        missing.append("userPost")
    if treasury_post is None:
        missing.append("treasuryPost")
    if missing:
        return SkippedTransaction(signature, f"missing {', '.join(missing)}")

    treasury_pre_amount = ui_amount(treasury_pre) if treasury_pre else 0.0
    return TransferDeltas(
        signature=signature,
        slot=int(tx.get("slot") or 0),
        block_time=tx.get("blockTime"),
        user_delta=ui_amount(user_pre) - ui_amount(user_post),
        treasury_delta=ui_amount(treasury_post) - treasury_pre_amount,
    )
