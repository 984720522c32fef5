#!/usr/bin/env python3
"""
D2L Client - Operator CLI
=========================

Small command-line front end over the client runtime.

Usage:
    python main.py status                      # Is there a usable credential?
    python main.py store-token SECRET          # Hand over a bearer token
    python main.py store-token SECRET --cookie # Hand over a session cookie
    python main.py logout                      # Forget the credential
    python main.py whoami                      # Call lp /users/whoami
    python main.py get /d2l/api/... --ttl 60   # Raw GET, prints JSON
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

# Ensure project root is in path
sys.path.insert(0, str(Path(__file__).parent))

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax

from api.client import D2LClient
from auth import (
    AuthScheme, CredentialManager, CredentialOrigin, CredentialRecord,
    SessionStore, mask_secret
)
from auth.credentials import COOKIE_MARKER
from core.errors import D2LError, ErrorSummary
from infra.config import ClientSettings
from infra.logging import configure_logging
from infra.update_notice import UpdateNotifier


# Setup rich console
console = Console()
logger = logging.getLogger("d2l.main")


def build_manager(settings: ClientSettings) -> CredentialManager:
    """Credential manager over the configured session directory."""
    return CredentialManager(SessionStore(settings.session_dir))


def print_json(payload: Any) -> None:
    console.print(Syntax(json.dumps(payload, indent=2, ensure_ascii=False), "json"))


def cmd_status(settings: ClientSettings, args: argparse.Namespace) -> int:
    """Report whether a valid credential is available (check_auth)."""
    manager = build_manager(settings)
    record = manager.get_credential()

    if record is None:
        console.print(Panel(
            "Not authenticated. Log in and hand the credential over with "
            "`python main.py store-token`.",
            title="Auth", border_style="red"
        ))
        return 1

    minutes = round(manager.expires_in(record).total_seconds() / 60)
    console.print(Panel(
        f"Authenticated with {settings.base_url}.\n"
        f"Token expires in ~{minutes} minutes. Source: {record.origin.value}.\n"
        f"Credential: {mask_secret(record.secret)} ({record.scheme.value})",
        title="Auth", border_style="green"
    ))
    return 0


def cmd_store_token(settings: ClientSettings, args: argparse.Namespace) -> int:
    """Store a credential produced by the external login flow."""
    ttl = args.ttl if args.ttl is not None else settings.token_ttl
    secret = args.secret

    if args.cookie and not secret.startswith(COOKIE_MARKER):
        record = CredentialRecord.capture(
            secret, ttl,
            origin=CredentialOrigin.COOKIE_SESSION,
            scheme=AuthScheme.COOKIE,
        )
    else:
        captured = CredentialRecord.capture(secret, ttl)
        record = CredentialRecord.from_marked_secret(
            secret, captured.captured_at, captured.expires_at
        )

    manager = build_manager(settings)
    if manager.set_credential(record):
        console.print(f"[green]Stored credential[/green] {mask_secret(record.secret)} "
                      f"[dim]({record.scheme.value}, valid {ttl}s)[/dim]")
        return 0

    console.print("[yellow]Credential kept in memory only; it could not be saved to disk.[/yellow]")
    return 1


def cmd_logout(settings: ClientSettings, args: argparse.Namespace) -> int:
    build_manager(settings).clear_credential()
    console.print("[green]Credential cleared.[/green]")
    return 0


async def _run_get(settings: ClientSettings, path: Optional[str], ttl: Optional[float]) -> Any:
    manager = build_manager(settings)
    async with D2LClient(settings.client_config(), manager) as client:
        await client.initialize()
        return await client.get(path or client.lp("/users/whoami"), ttl=ttl)


def cmd_whoami(settings: ClientSettings, args: argparse.Namespace) -> int:
    print_json(asyncio.run(_run_get(settings, None, None)))
    return 0


def cmd_get(settings: ClientSettings, args: argparse.Namespace) -> int:
    print_json(asyncio.run(_run_get(settings, args.path, args.ttl)))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="D2L Brightspace API client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--log-level", help="Console log level (default from config)")
    parser.add_argument("--no-update-check", action="store_true", help="Skip the release check")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show authentication status").set_defaults(func=cmd_status)

    store = sub.add_parser("store-token", help="Store a credential from the login flow")
    store.add_argument("secret", help="Bearer token or session cookie")
    store.add_argument("--cookie", action="store_true", help="Send the secret as a Cookie header")
    store.add_argument("--ttl", type=int, help="Seconds until the credential expires")
    store.set_defaults(func=cmd_store_token)

    sub.add_parser("logout", help="Clear the stored credential").set_defaults(func=cmd_logout)
    sub.add_parser("whoami", help="Fetch the current user").set_defaults(func=cmd_whoami)

    get = sub.add_parser("get", help="GET an API path and print the JSON")
    get.add_argument("path", help="API path, e.g. /d2l/api/lp/1.56/users/whoami")
    get.add_argument("--ttl", type=float, help="Cache lifetime in seconds")
    get.set_defaults(func=cmd_get)

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = ClientSettings.load(args.config)
    except (OSError, ValueError) as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return 2

    configure_logging(level=args.log_level or settings.log_level, log_dir=settings.log_dir)

    notifier = None
    if not args.no_update_check:
        notifier = UpdateNotifier()
        notifier.start()

    try:
        code = args.func(settings, args)
    except D2LError as e:
        summary = ErrorSummary.from_exception(e)
        console.print(f"[bold red]{summary}[/bold red]")
        code = summary.exit_code
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 130
    except Exception as e:
        logger.exception("Fatal error")
        console.print(f"[bold red]Error:[/bold red] {e}")
        return 1

    if notifier is not None:
        notice = notifier.take_notice()
        if notice:
            console.print(f"[dim]{notice}[/dim]")

    return code


if __name__ == "__main__":
    sys.exit(main())
