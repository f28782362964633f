from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .access import LoggingAccessManager, TelegramAccessManager
from .config import Settings
from .errors import ConfigurationError, GateError, LedgerError
from .report import (
    audit_lines,
    challenge_instructions,
    chunk_lines,
    format_percent,
    insufficient_message,
    status_lines,
)
from .rpc import RpcClient
from .store import RecordStore
from .sweep import run_forever, sweep_once
from .verification import ConfirmStatus, VerificationService

log = logging.getLogger("gate")


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # httpx logs every request at INFO, which would leak the RPC api key.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def open_store(settings: Settings) -> RecordStore:
    store = RecordStore(settings.database_path)
    store.initialize()
    return store


@asynccontextmanager
async def open_service(args: argparse.Namespace) -> AsyncIterator[VerificationService]:
    settings = Settings.from_env(rpc_url_override=args.rpc_url, timeout_override=args.timeout)
    store = open_store(settings)
    rpc = RpcClient(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
    if args.dry_run or not settings.telegram_token:
        if not args.dry_run:
            log.warning("TELEGRAM_BOT_TOKEN not set; access changes are only logged.")
        access = LoggingAccessManager()
    else:
        access = TelegramAccessManager(
            settings.telegram_token,
            invite_ttl_minutes=settings.invite_link_ttl_minutes,
            invite_member_limit=settings.invite_link_member_limit,
        )
    try:
        yield VerificationService(store, rpc, access, settings)
    finally:
        await rpc.close()
        if isinstance(access, TelegramAccessManager):
            await access.close()
        store.close()


def cmd_init_db(args: argparse.Namespace) -> int:
    settings = Settings.from_env()
    open_store(settings).close()
    print(f"Database ready: {settings.database_path}")
    return 0


async def cmd_verify(args: argparse.Namespace) -> int:
    async with open_service(args) as service:
        try:
            challenge = service.request_verification(
                args.user, args.wallet, display_name=args.name, group_id=args.group
            )
        except ValueError as e:
            print(str(e))
            return 2
        print(challenge_instructions(challenge.amount, service.settings.treasury_wallet))
    return 0


async def cmd_confirm(args: argparse.Namespace) -> int:
    async with open_service(args) as service:
        try:
            result = await service.confirm(args.user)
        except ConfigurationError as e:
            log.error("Configuration error: %s", e)
            print("The bot is missing token mint or treasury configuration. Please contact an admin.")
            return 3
        except LedgerError as e:
            log.error("Verification failed for %s: %s", args.user, e)
            print("Could not reach the Solana network. Please try /confirm again shortly.")
            return 4

        settings = service.settings
        if result.status is ConfirmStatus.NO_CHALLENGE:
            print("No active verification request found. Use /verify <wallet> to start.")
        elif result.status is ConfirmStatus.EXPIRED:
            print("Your verification code expired. Please start again with /verify <wallet>.")
        elif result.status is ConfirmStatus.NO_TRANSFER:
            print("Could not find the matching transfer yet. Please wait a few moments and try /confirm again.")
        elif result.status is ConfirmStatus.INSUFFICIENT_HOLDINGS:
            print(insufficient_message(result.ownership.percent_owned, settings.required_percent))
        elif result.scope and not result.admitted:
            print("Verification succeeded but we could not generate an invite link. Please contact an admin.")
        elif result.scope:
            print(f"Verification successful! Holding {format_percent(result.ownership.percent_owned)}% of supply.")
        else:
            print("Verification successful! An admin will add you to the group shortly.")
    return 0 if result.status is ConfirmStatus.VERIFIED else 1


async def cmd_status(args: argparse.Namespace) -> int:
    async with open_service(args) as service:
        record = service.store.get(args.user)
        if record is None:
            print("No profile found. Use /verify <wallet> to start the verification process.")
            return 1
        print("\n".join(status_lines(record)))
    return 0


async def cmd_whitelist(args: argparse.Namespace) -> int:
    async with open_service(args) as service:
        try:
            record = await service.whitelist(args.admin, args.target)
        except (PermissionError, LookupError) as e:
            print(str(e))
            return 2
        print(f"Whitelisted user {record.external_id}.")
    return 0


async def cmd_audit(args: argparse.Namespace) -> int:
    async with open_service(args) as service:
        lines = audit_lines(service.store.list_verified(), service.store.list_pending())
        for chunk in chunk_lines(lines):
            print(chunk)
            print()
    return 0


async def cmd_sweep(args: argparse.Namespace) -> int:
    async with open_service(args) as service:
        report = await sweep_once(service)
        print(f"Sweep finished: {report.summary()}")
    return 0


async def cmd_run_sweeper(args: argparse.Namespace) -> int:
    async with open_service(args) as service:
        if not service.settings.treasury_wallet or not service.settings.token_mint:
            log.warning("Treasury wallet or token mint not configured. Sweeps will fail until they are set.")
        log.info("Ownership sweeper running every %.0fs.", service.settings.sweep_interval_s)
        await run_forever(service)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="solana-token-gate",
        description="Token-gated community access via micro-transfer verification.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=None, help="RPC timeout seconds.")
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Log grants, removals and messages instead of calling Telegram.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    i = sub.add_parser("init-db", help="Create the database schema (idempotent).")
    i.set_defaults(func=cmd_init_db)

    v = sub.add_parser("verify", help="Issue a verification amount to a user.")
    v.add_argument("--user", required=True, help="Telegram user id.")
    v.add_argument("--wallet", required=True, help="Solana wallet holding the token.")
    v.add_argument("--name", default=None, help="Telegram username.")
    v.add_argument("--group", default=None, help="Group the user wants to enter.")
    v.set_defaults(func=cmd_verify)

    c = sub.add_parser("confirm", help="Look for the user's transfer and check holdings.")
    c.add_argument("--user", required=True, help="Telegram user id.")
    c.set_defaults(func=cmd_confirm)

    s = sub.add_parser("status", help="Show a user's verification status.")
    s.add_argument("--user", required=True, help="Telegram user id.")
    s.set_defaults(func=cmd_status)

    w = sub.add_parser("whitelist", help="Exempt a user from threshold checks (admins only).")
    w.add_argument("--admin", required=True, help="Telegram id of the admin issuing this.")
    w.add_argument("--target", required=True, help="Telegram id or @username.")
    w.set_defaults(func=cmd_whitelist)

    a = sub.add_parser("audit", help="List verified and pending users.")
    a.set_defaults(func=cmd_audit)

    sw = sub.add_parser("sweep", help="Re-check every verified user once.")
    sw.set_defaults(func=cmd_sweep)

    r = sub.add_parser("run-sweeper", help="Re-check verified users on the configured interval.")
    r.set_defaults(func=cmd_run_sweeper)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        result = args.func(args)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
    except GateError as e:
        raise SystemExit(f"Error: {e}")
    except KeyboardInterrupt:
        result = 130
    raise SystemExit(result)
