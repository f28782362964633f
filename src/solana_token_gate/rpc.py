from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .errors import LedgerError
from .token_balances import SkippedTransaction, TransferDeltas, extract_transfer_deltas

log = logging.getLogger(__name__)


class LedgerClient(Protocol):
    """What the verification engine needs from the chain.

    Amounts are UI amounts (decimal token quantities, not raw base units).
    Every method may raise :class:`LedgerError`.
    """

    async def get_supply(self, mint: str) -> float: ...

    async def get_balance(self, wallet: str, mint: str) -> float: ...

    async def list_recent_signatures(self, wallet: str, limit: int) -> List[str]:
        """Most recent signatures touching `wallet`, NEWEST FIRST."""
        ...

    async def get_transfer_deltas(
        self, signature: str, wallet: str, treasury: str, mint: str
    ) -> TransferDeltas | SkippedTransaction: ...


class RpcClient:
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _post(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": method,
            "method": method,
            "params": params,
        }
        try:
            resp = await self.client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerError(f"Solana RPC {method} failed: {e}") from e
        if "error" in data:
            err = data["error"] or {}
            raise LedgerError(
                f"Solana RPC error in {method}: {err.get('message', 'Unknown error')}"
            )
        if "result" not in data:
            raise LedgerError(f"Solana RPC {method} response missing result field")
        return data["result"]

    async def get_supply(self, mint: str) -> float:
        result = await self._post("getTokenSupply", [mint])
        value = (result or {}).get("value")
        if not value:
            raise LedgerError("Invalid getTokenSupply response")
        amount = value.get("uiAmount")
        if amount is None:
            amount = value.get("uiAmountString")
        if amount is None:
            raise LedgerError("Token supply missing uiAmount")
        return float(amount)

    async def get_balance(self, wallet: str, mint: str) -> float:
        """Sum of the UI balances of every token account `wallet` holds for `mint`."""
        result = await self._post(
            "getTokenAccountsByOwner",
            [wallet, {"mint": mint}, {"encoding": "jsonParsed"}],
        )
        total = 0.0
        for account in (result or {}).get("value") or []:
            info = (
                account.get("account", {})
                .get("data", {})
                .get("parsed", {})
                .get("info", {})
            )
            amount = info.get("tokenAmount", {}).get("uiAmount")
            if isinstance(amount, (int, float)):
                total += amount
        return total

    async def list_recent_signatures(self, wallet: str, limit: int) -> List[str]:
        """
        getSignaturesForAddress returns signatures newest first; that order
        is passed through unchanged.
        """
        result = await self._post(
            "getSignaturesForAddress", [wallet, {"limit": int(limit)}]
        )
        if not isinstance(result, list):
            return []
        return [item["signature"] for item in result if item.get("signature")]

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        return await self._post(
            "getTransaction",
            [
                signature,
                {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0},
            ],
        )

    async def get_transfer_deltas(
        self, signature: str, wallet: str, treasury: str, mint: str
    ) -> TransferDeltas | SkippedTransaction:
        tx = await self.get_transaction(signature)
        return extract_transfer_deltas(signature, tx, wallet, treasury, mint)
