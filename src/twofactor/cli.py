"""CLI entry point for the 2FA service."""

from __future__ import annotations

import asyncio
import logging
import time

import click
from rich.console import Console
from rich.table import Table

from twofactor.auth import base32, totp

console = Console()


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL.")
def main(log_level: str | None) -> None:
    """CampusMind two-factor authentication tools."""
    from twofactor.config import settings

    logging.basicConfig(level=log_level or settings.log_level)


@main.command()
def status() -> None:
    """Show configuration."""
    from twofactor.config import settings

    console.print("[bold]CampusMind 2FA[/bold]")
    console.print(f"  Issuer: {settings.app_name}")
    console.print(f"  TOTP: {settings.totp_digits} digits / {settings.totp_period}s, window ±{settings.totp_window}")
    console.print(f"  Replay protection: {'on' if settings.reject_replayed_codes else 'off'}")
    console.print(f"  Backup codes: {settings.backup_code_count} per batch")
    console.print(f"  Store: {settings.store_backend}")
    if settings.store_backend == "postgres":
        console.print(f"  Database: {settings.database_url.split('@')[-1]}")
        console.print(f"  Master key: {'set' if settings.twofactor_master_key else '[red]missing[/red]'}")


@main.command()
def db_check() -> None:
    """Verify database connectivity."""
    from twofactor.db import close_pool, execute_one, init_pool

    async def _check() -> None:
        await init_pool(min_size=1, max_size=1)
        try:
            row = await execute_one("SELECT 1 AS ok")
            if row and row["ok"] == 1:
                console.print("[green]Database connection OK[/green]")
            else:
                console.print("[red]Database check failed[/red]")
        finally:
            await close_pool()

    asyncio.run(_check())


@main.command()
def init_db() -> None:
    """Create the 2FA tables if they do not exist."""
    from twofactor.db import close_pool, init_pool
    from twofactor.store.postgres import create_schema

    async def _init() -> None:
        await init_pool(min_size=1, max_size=1)
        try:
            await create_schema()
        finally:
            await close_pool()

    asyncio.run(_init())
    console.print("[green]Schema ready[/green]")


@main.command()
@click.argument("identity")
@click.option("--limit", default=20, show_default=True)
def events(identity: str, limit: int) -> None:
    """Show recent audit events for a user."""
    from twofactor import events as audit
    from twofactor.db import close_pool, init_pool

    async def _fetch() -> list[dict]:
        await init_pool(min_size=1, max_size=1)
        try:
            return await audit.recent(identity, limit)
        finally:
            await close_pool()

    rows = asyncio.run(_fetch())
    table = Table("id", "timestamp", "event", "message")
    for row in rows:
        table.add_row(str(row["id"]), str(row["timestamp"]), row["event_type"], row["message"])
    console.print(table)


@main.command()
@click.argument("secret")
def code(secret: str) -> None:
    """Print the current code for a Base32 SECRET."""
    from twofactor.config import settings

    key = base32.decode(secret)
    if not key:
        raise click.BadParameter("not a Base32 secret", param_hint="SECRET")
    now = time.time()
    step = totp.current_step(now, settings.totp_period)
    remaining = settings.totp_period - int(now % settings.totp_period)
    console.print(f"{totp.generate(key, step, settings.totp_digits)}  [dim](valid {remaining}s)[/dim]")


@main.command()
@click.argument("secret")
@click.argument("account")
@click.option("--issuer", default=None, help="Defaults to APP_NAME.")
def uri(secret: str, account: str, issuer: str | None) -> None:
    """Print the otpauth:// URI for SECRET and ACCOUNT."""
    from twofactor.config import settings

    console.print(totp.provisioning_uri(secret, account, issuer or settings.app_name), soft_wrap=True)


if __name__ == "__main__":
    main()
