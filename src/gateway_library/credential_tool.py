# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gateway_library/credential_tool.py

import asyncio
import getpass
import os
import secrets
from pathlib import Path

from dotenv import get_key, set_key
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from .admin import CredentialAdmin
from .errors import GatewayError
from .storage import create_store
from .token_manager import TokenRefresher
from .types import now_ms

console = Console()


def _get_env_file() -> Path:
    return Path.cwd() / ".env"


def clear_screen(subtitle: str = "Credential Manager"):
    os.system("cls" if os.name == "nt" else "clear")
    console.print(
        Panel(
            f"[bold cyan]{subtitle}[/bold cyan]",
            title="--- OAuth Chat Gateway ---",
        )
    )


def ensure_env_defaults():
    """
    Ensures the .env file exists and holds an ADMIN_KEY and CREDENTIAL_STORE_PATH,
    so credentials added here land in the same store the server reads.
    """
    env_file = _get_env_file()
    if not env_file.is_file():
        env_file.touch()
        console.print(f"Creating a new [bold yellow]{env_file.name}[/bold yellow] file...")

    if get_key(str(env_file), "ADMIN_KEY") is None:
        console.print(
            f"Adding a generated [bold cyan]ADMIN_KEY[/bold cyan] to "
            f"[bold yellow]{env_file.name}[/bold yellow]..."
        )
        set_key(str(env_file), "ADMIN_KEY", secrets.token_urlsafe(24))

    if get_key(str(env_file), "CREDENTIAL_STORE_PATH") is None:
        set_key(str(env_file), "CREDENTIAL_STORE_PATH", "credentials.json")


def _build_admin() -> CredentialAdmin:
    path = os.getenv("CREDENTIAL_STORE_PATH") or get_key(
        str(_get_env_file()), "CREDENTIAL_STORE_PATH"
    )
    store = create_store(path)
    return CredentialAdmin(store, TokenRefresher(store, sweep_delay_seconds=1.0))


async def _display_credentials(admin: CredentialAdmin):
    rows = await admin.status()
    if not rows:
        console.print("[dim]No credentials stored yet.[/dim]\n")
        return

    table = Table(
        title="Stored Credentials",
        box=None,
        padding=(0, 2),
        title_style="bold cyan",
    )
    table.add_column("Label", style="yellow", no_wrap=True)
    table.add_column("Enabled", justify="center")
    table.add_column("Expires In", justify="right")
    table.add_column("Plan", style="dim")
    table.add_column("Uses", justify="right")
    table.add_column("Errors", justify="right")

    for row in rows:
        remaining = row["remainingMin"]
        if remaining is None:
            expiry = Text("unknown", style="dim")
        elif remaining <= 0:
            expiry = Text("expired", style="red")
        else:
            expiry = Text(f"{remaining} min", style="green" if remaining > 10 else "yellow")
        table.add_row(
            row["label"],
            Text("✓", style="green") if row["enabled"] else Text("✗", style="red"),
            expiry,
            row["subscriptionType"],
            str(row["useCount"]),
            str(row["errorCount"]),
        )

    console.print(table)
    console.print()


async def _add_credential(admin: CredentialAdmin):
    label = Prompt.ask("Label for the new credential").strip()
    if not label:
        console.print("[bold red]Label must not be empty.[/bold red]")
        return

    existing = await admin.store.get(label)
    if existing and not Confirm.ask(
        f"'{label}' already exists. Overwrite it?", default=False
    ):
        return

    console.print(
        "Paste the credentials JSON ([cyan]{\"claudeAiOauth\": {...}}[/cyan]) on one line:"
    )
    raw = input().strip()
    try:
        record = await admin.add_from_oauth_json(label, raw, added_by=getpass.getuser())
    except (ValueError, GatewayError) as e:
        console.print(Panel(f"[bold red]Could not add credential:[/bold red] {e}", style="red"))
        return

    remaining = record.remaining_minutes(now_ms())
    console.print(
        Panel(
            f"[bold green]Added '{record.label}'[/bold green]\n"
            f"Plan: {record.subscription_type}  Tier: {record.rate_limit_tier}\n"
            f"Expires in: {remaining if remaining is not None else '?'} min",
            style="green",
        )
    )


async def _pick_label(admin: CredentialAdmin, action: str) -> str:
    labels = [r.label for r in await admin.store.list_all()]
    if not labels:
        console.print("[dim]No credentials stored.[/dim]")
        return ""
    for i, label in enumerate(labels, 1):
        console.print(f"  {i}. {label}")
    choice = Prompt.ask(
        f"Select a credential to {action} or type [red]'b'[/red] to go back",
        choices=[str(i) for i in range(1, len(labels) + 1)] + ["b"],
        show_choices=False,
    )
    if choice.lower() == "b":
        return ""
    return labels[int(choice) - 1]


async def _toggle_credential(admin: CredentialAdmin):
    label = await _pick_label(admin, "enable/disable")
    if not label:
        return
    record = await admin.store.get(label)
    updated = await admin.set_enabled(label, not record.enabled)
    state = "enabled" if updated.enabled else "disabled"
    console.print(f"[bold green]'{label}' is now {state}.[/bold green]")


async def _refresh_credential(admin: CredentialAdmin):
    label = await _pick_label(admin, "refresh")
    if not label:
        return
    with console.status(f"Refreshing '{label}'...", spinner="dots"):
        report = await admin.refresh(label)
    if report.success:
        console.print(f"[bold green]Refreshed '{label}'.[/bold green]")
    else:
        suffix = " The credential has been disabled." if report.disabled else ""
        console.print(f"[bold red]Refresh failed:[/bold red] {report.error}.{suffix}")


async def _rename_credential(admin: CredentialAdmin):
    label = await _pick_label(admin, "rename")
    if not label:
        return
    new_label = Prompt.ask("New label").strip()
    try:
        await admin.rename(label, new_label)
    except (ValueError, GatewayError) as e:
        console.print(f"[bold red]Rename failed:[/bold red] {e}")
        return
    console.print(f"[bold green]Renamed '{label}' -> '{new_label}'.[/bold green]")


async def _remove_credential(admin: CredentialAdmin):
    label = await _pick_label(admin, "remove")
    if not label:
        return
    if not Confirm.ask(f"Remove '{label}' permanently?", default=False):
        return
    await admin.remove(label)
    console.print(f"[bold green]Removed '{label}'.[/bold green]")


async def main(clear_on_start=True):
    ensure_env_defaults()
    admin = _build_admin()

    actions = {
        "1": _add_credential,
        "2": _toggle_credential,
        "3": _refresh_credential,
        "4": _rename_credential,
        "5": _remove_credential,
    }

    while True:
        if clear_on_start:
            clear_screen()
        clear_on_start = True

        await _display_credentials(admin)
        console.print(
            Panel(
                Text.from_markup(
                    "[bold]Actions:[/bold]\n"
                    "1. Add a credential\n"
                    "2. Enable / disable a credential\n"
                    "3. Refresh a credential now\n"
                    "4. Rename a credential\n"
                    "5. Remove a credential"
                ),
                title="Choose action",
                style="bold blue",
            )
        )
        choice = Prompt.ask(
            Text.from_markup("[bold]Select an option or type [red]'q'[/red] to quit[/bold]"),
            choices=list(actions) + ["q"],
            show_choices=False,
        )
        if choice.lower() == "q":
            break

        await actions[choice](admin)
        console.print("\n[dim]Press Enter to continue...[/dim]")
        input()


def run_credential_tool():
    """Entry point for the interactive credential manager."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Exiting credential manager.[/bold yellow]")
