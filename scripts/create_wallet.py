#!/usr/bin/env python3
"""
StealthPay - Create Wallet Script
===================================
Script per creare una KeyPair stealth e salvarla nel secure storage.

Usage:
    python scripts/create_wallet.py --id default --device-key data/device.key
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from stealth_pay.config import get_settings
from stealth_pay.domain.crypto_core import generate_random_bytes
from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.errors import StealthPayException
from stealth_pay.storage.secure_storage import SqliteSecureStorage

app = typer.Typer()
console = Console()


def _read_device_key(path: Path) -> bytes:
    if path.exists():
        return path.read_bytes()
    path.parent.mkdir(parents=True, exist_ok=True)
    key = generate_random_bytes(32)
    path.write_bytes(key)
    path.chmod(0o600)
    console.print(f"[yellow]⚠️  New device key written to {path}[/yellow]")
    return key


async def _store(db_path: Path, device_key: bytes, keypair_id: str, keypair: KeyPair, force: bool) -> None:
    storage = SqliteSecureStorage(db_path, device_key)
    try:
        if keypair_id in await storage.list_keypairs() and not force:
            raise typer.BadParameter(f"Keypair {keypair_id!r} already stored (use --force)")
        await storage.store_keypair(keypair_id, keypair)
    finally:
        storage.close()


@app.command()
def main(
    keypair_id: str = typer.Option("default", "--id", help="Keypair identifier"),
    device_key: Path = typer.Option(..., "--device-key", "-k", help="Device key file (created if missing)"),
    db_path: Optional[Path] = typer.Option(None, "--db", help="Secure storage path (default from settings)"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing keypair")
):
    """Create a stealth keypair and store it encrypted at rest"""

    config = get_settings()
    db_path = db_path or config.storage_path

    try:
        key = _read_device_key(device_key)
        with KeyPair.generate() as keypair:
            asyncio.run(_store(db_path, key, keypair_id, keypair, force))
            meta_address = keypair.to_meta_address()
    except (StealthPayException, OSError) as e:
        console.print(f"[red]Error creating wallet: {e}[/red]")
        raise typer.Exit(1)

    console.print(Panel.fit(
        f"[green]✅ Stealth keypair stored as '{keypair_id}'[/green]\n\n"
        f"Meta-address:\n[bold cyan]{meta_address}[/bold cyan]\n\n"
        f"Storage: [cyan]{db_path}[/cyan]\n\n"
        f"[yellow]⚠️  Losing the device key makes the stored keypair unrecoverable.[/yellow]",
        title="Wallet Created",
        border_style="green"
    ))


if __name__ == "__main__":
    app()
