from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx

from .errors import AccessError
from .project_constants import TELEGRAM_API_URL

log = logging.getLogger(__name__)


class AccessManager(Protocol):
    """The chat layer as seen by the verification engine.

    Calls are fire-and-observe: the engine logs failures and never retries.
    """

    async def grant_access(self, external_id: str, scope: str) -> None: ...

    async def revoke_access(self, external_id: str, scope: str) -> None: ...

    async def notify(self, external_id: str, text: str) -> None: ...


class LoggingAccessManager:
    """Dry-run access manager: records what would have happened."""

    def __init__(self) -> None:
        self.actions: List[Tuple[str, str, str]] = []

    async def grant_access(self, external_id: str, scope: str) -> None:
        log.info("[dry-run] grant %s access to %s", external_id, scope)
        self.actions.append(("grant", str(external_id), str(scope)))

    async def revoke_access(self, external_id: str, scope: str) -> None:
        log.info("[dry-run] revoke %s from %s", external_id, scope)
        self.actions.append(("revoke", str(external_id), str(scope)))

    async def notify(self, external_id: str, text: str) -> None:
        log.info("[dry-run] notify %s: %s", external_id, text)
        self.actions.append(("notify", str(external_id), text))


class TelegramAccessManager:
    """Access manager backed by the Telegram Bot API.

    Grant approves a pending join request (if any) and DMs a single-use invite
    link. Revoke bans then immediately unbans, which removes the member but
    lets them re-join after verifying again.
    """

    def __init__(
        self,
        token: str,
        invite_ttl_minutes: float = 10,
        invite_member_limit: int = 1,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not token:
            raise AccessError("TELEGRAM_BOT_TOKEN is not configured.")
        self.base_url = f"{TELEGRAM_API_URL}/bot{token}"
        self.invite_ttl_minutes = invite_ttl_minutes
        self.invite_member_limit = invite_member_limit
        self.client = httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        body = {k: v for k, v in payload.items() if v is not None}
        try:
            resp = await self.client.post(f"{self.base_url}/{method}", json=body)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AccessError(f"Telegram {method} failed: {e}") from e
        if not data.get("ok"):
            raise AccessError(
                f"Telegram {method} failed: {data.get('description', resp.status_code)}"
            )
        return data.get("result")

    async def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self._call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "parse_mode": parse_mode,
                "disable_web_page_preview": True,
                "reply_markup": reply_markup,
            },
        )

    async def create_invite_link(self, scope: str, external_id: str) -> str:
        expire_date = None
        if self.invite_ttl_minutes > 0:
            ttl_s = max(60, int(self.invite_ttl_minutes * 60))
            expire_date = int(time.time()) + ttl_s
        invite = await self._call(
            "createChatInviteLink",
            {
                "chat_id": scope,
                "name": f"verified holder {external_id}",
                "expire_date": expire_date,
                "member_limit": self.invite_member_limit or None,
                "creates_join_request": False,
            },
        )
        return invite["invite_link"]

    async def grant_access(self, external_id: str, scope: str) -> None:
        try:
            await self._call(
                "approveChatJoinRequest", {"chat_id": scope, "user_id": external_id}
            )
        except AccessError as e:
            # No pending join request is the usual case for /verify-first users.
            log.info("No join request approved for %s in %s: %s", external_id, scope, e)

        link = await self.create_invite_link(scope, external_id)
        await self.send_message(
            external_id,
            "Verification successful! Tap the button below to enter the gated chat.",
            reply_markup={"inline_keyboard": [[{"text": "Join the group", "url": link}]]},
        )

    async def revoke_access(self, external_id: str, scope: str) -> None:
        await self._call("banChatMember", {"chat_id": scope, "user_id": external_id})
        await self._call(
            "unbanChatMember",
            {"chat_id": scope, "user_id": external_id, "only_if_banned": True},
        )

    async def notify(self, external_id: str, text: str) -> None:
        await self.send_message(external_id, text)
