from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv

from .errors import ConfigurationError
from .project_constants import PUBLIC_MAINNET_RPC_URL

log = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        value = math.nan
    if not math.isfinite(value):
        log.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default
    return value


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


def _env_list(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(v.strip() for v in raw.split(",") if v.strip())


def _resolve_rpc_url(rpc_url_override: str | None) -> str:
    # If user provides --rpc-url, trust it.
    if rpc_url_override:
        return rpc_url_override

    for name in ("SOLANA_RPC_URL", "RPC_URL"):
        env_rpc = os.getenv(name, "").strip()
        if env_rpc:
            return env_rpc

    helius_key = os.getenv("HELIUS_API_KEY", "").strip()
    if helius_key:
        return f"https://mainnet.helius-rpc.com/?api-key={helius_key}"

    return PUBLIC_MAINNET_RPC_URL


@dataclass(frozen=True)
class Settings:
    rpc_url: str = PUBLIC_MAINNET_RPC_URL
    treasury_wallet: str = ""
    token_mint: str = ""
    min_token_code: float = 0.000001
    max_token_code: float = 0.000009
    required_percent: float = 0.001  # fraction of supply, 0.001 == 0.1%
    sweep_interval_s: float = 60 * 60
    admin_ids: Tuple[str, ...] = ()
    database_path: str = os.path.join("data", "bot.sqlite")
    telegram_token: str = ""
    group_id: str = ""
    rpc_timeout_s: float = 60.0
    sweep_concurrency: int = 1
    invite_link_ttl_minutes: float = 10
    invite_link_member_limit: int = 1

    @staticmethod
    def from_env(
        rpc_url_override: str | None = None,
        timeout_override: float | None = None,
    ) -> "Settings":
        load_dotenv()

        interval_ms = _env_float("HOURLY_CHECK_INTERVAL_MS", 60 * 60 * 1000)
        return Settings(
            rpc_url=_resolve_rpc_url(rpc_url_override),
            treasury_wallet=os.getenv("TREASURY_WALLET", "").strip(),
            token_mint=os.getenv("TOKEN_MINT", "").strip(),
            min_token_code=_env_float("MIN_TOKEN_CODE", 0.000001),
            max_token_code=_env_float("MAX_TOKEN_CODE", 0.000009),
            required_percent=_env_float("REQUIRED_PERCENT", 0.001),
            sweep_interval_s=interval_ms / 1000.0,
            admin_ids=_env_list("ADMIN_IDS"),
            database_path=os.getenv("DATABASE_PATH", "").strip()
            or os.path.join(os.getcwd(), "data", "bot.sqlite"),
            telegram_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
            group_id=os.getenv("TELEGRAM_GROUP_ID", "").strip(),
            rpc_timeout_s=(
                timeout_override
                if timeout_override is not None
                else _env_float("RPC_TIMEOUT_S", 60.0)
            ),
            sweep_concurrency=max(1, _env_int("SWEEP_CONCURRENCY", 1)),
            invite_link_ttl_minutes=_env_float("INVITE_LINK_TTL_MINUTES", 10),
            invite_link_member_limit=_env_int("INVITE_LINK_MEMBER_LIMIT", 1),
        )

    @property
    def amount_range(self) -> Tuple[float, float]:
        return self.min_token_code, self.max_token_code

    def is_admin(self, external_id: str) -> bool:
        return str(external_id) in self.admin_ids

    def require_chain_config(self) -> None:
        missing = [
            name
            for name, value in (
                ("TREASURY_WALLET", self.treasury_wallet),
                ("TOKEN_MINT", self.token_mint),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing {', '.join(missing)}. Put it in .env or export it."
            )
