"""
StealthPay - Command Line Interface
=====================================
CLI per chiavi stealth, derivazione indirizzi e QR code.

Security Level: MEDIUM
Last Updated: 2026-10-18
Version: 1.0.0

Commands:
- keys: Generazione e ispezione backup cifrati
- address: Derivazione e verifica stealth address
- qr: QR code del meta-address
- version: Versione e formati supportati
"""

import typer
from typing import Optional
from pathlib import Path
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Internal imports
from stealth_pay.config import get_settings
from stealth_pay.constants import format_amount, sol_to_lamports
from stealth_pay.domain.crypto_core import secret_scope
from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.domain.signers import StealthSigner
from stealth_pay.errors import StealthPayException
from stealth_pay.logging_setup import setup_logging
from stealth_pay.qr.generator import MetaAddressQRGenerator
from stealth_pay.utils.base58 import decode_public_key, encode_public_key
from stealth_pay.version import get_build_info
from stealth_pay.wallet.generator import StealthAddressGenerator
from stealth_pay.wallet.scanner import StealthScanner


# ============================================================================
# CLI APP
# ============================================================================

app = typer.Typer(
    name="stealthpay",
    help="StealthPay - Stealth address wallet CLI",
    add_completion=False
)

console = Console()


def _load_backup(backup: Path, password: str) -> KeyPair:
    return KeyPair.import_encrypted(
        backup.read_bytes(),
        password,
        kdf_n=get_settings().backup_kdf_n,
    )


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


# ============================================================================
# KEY COMMANDS
# ============================================================================

keys_app = typer.Typer(help="Stealth keypair commands")
app.add_typer(keys_app, name="keys")


@keys_app.command("generate")
def keys_generate(
    output: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Encrypted backup file"
    ),
    password: str = typer.Option(
        ...,
        "--password",
        "-p",
        help="Backup password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an existing backup"
    )
):
    """Generate a new stealth keypair and save an encrypted backup"""
    if output.exists() and not force:
        _fail(f"{output} already exists (use --force to overwrite)")
    
    try:
        with KeyPair.generate() as keypair:
            blob = keypair.export_encrypted(password, kdf_n=get_settings().backup_kdf_n)
            meta_address = keypair.to_meta_address()
        
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(blob)
    except (StealthPayException, OSError) as e:
        _fail(f"Error generating keypair: {e}")
    
    console.print(Panel.fit(
        f"[green]✅ Keypair generated[/green]\n\n"
        f"Meta-address:\n[bold cyan]{meta_address}[/bold cyan]\n\n"
        f"Backup: [cyan]{output}[/cyan] ({len(blob)} bytes)\n\n"
        f"[yellow]⚠️  Without the password the backup cannot be recovered.[/yellow]",
        title="Stealth Keypair",
        border_style="green"
    ))


@keys_app.command("show")
def keys_show(
    backup: Path = typer.Argument(..., help="Encrypted backup file"),
    password: str = typer.Option(
        ...,
        "--password",
        "-p",
        help="Backup password",
        prompt=True,
        hide_input=True
    )
):
    """Show the public keys stored in an encrypted backup"""
    try:
        with _load_backup(backup, password) as keypair:
            identity = keypair.public_identity()
    except (StealthPayException, OSError) as e:
        _fail(f"Error opening backup: {e}")
    
    table = Table(title="Stealth Keypair", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    
    table.add_row("Version", str(identity.version))
    table.add_row("Spending public key", encode_public_key(identity.spending_public_key()))
    table.add_row("Viewing public key", encode_public_key(identity.viewing_public_key()))
    table.add_row("Meta-address", identity.to_meta_address())
    
    console.print(table)


# ============================================================================
# ADDRESS COMMANDS
# ============================================================================

address_app = typer.Typer(help="Stealth address commands")
app.add_typer(address_app, name="address")


@address_app.command("derive")
def address_derive(
    meta_address: str = typer.Argument(..., help="Receiver meta-address"),
    amount: Optional[float] = typer.Option(
        None,
        "--amount",
        "-a",
        help="Amount in SOL (shows the prepared payment)"
    )
):
    """Derive a fresh one-time stealth address for a receiver"""
    generator = StealthAddressGenerator(cache_size=0)
    
    try:
        if amount is not None:
            prepared = generator.prepare_payment(meta_address, sol_to_lamports(amount))
            stealth_address = prepared.stealth_address
            ephemeral = prepared.ephemeral_public_key
            tag = prepared.viewing_tag
            memo = prepared.metadata().encode()
        else:
            output = generator.generate_stealth_address(meta_address)
            stealth_address = output.stealth_address
            ephemeral = output.ephemeral_public_key
            tag = output.viewing_tag
            memo = None
    except StealthPayException as e:
        _fail(f"Error deriving stealth address: {e}")
    
    table = Table(title="Stealth Address", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    
    table.add_row("Stealth address", encode_public_key(stealth_address))
    table.add_row("Ephemeral public key", encode_public_key(ephemeral))
    table.add_row("Viewing tag", tag.hex())
    if memo is not None:
        table.add_row("Amount", format_amount(sol_to_lamports(amount)))
        table.add_row("Memo payload", memo.hex())
    
    console.print(table)


@address_app.command("check")
def address_check(
    backup: Path = typer.Argument(..., help="Encrypted backup file"),
    ephemeral: str = typer.Option(..., "--ephemeral", "-e", help="Ephemeral public key (base58)"),
    stealth_address: str = typer.Option(..., "--address", help="Stealth address (base58)"),
    tag: Optional[str] = typer.Option(None, "--tag", "-t", help="Viewing tag (hex)"),
    password: str = typer.Option(
        ...,
        "--password",
        "-p",
        help="Backup password",
        prompt=True,
        hide_input=True
    )
):
    """Check whether a stealth address belongs to this keypair"""
    try:
        ephemeral_key = decode_public_key(ephemeral)
        address_key = decode_public_key(stealth_address)
        tag_bytes = bytes.fromhex(tag) if tag else None
    except (StealthPayException, ValueError) as e:
        _fail(f"Invalid input: {e}")
    
    try:
        with _load_backup(backup, password) as keypair:
            with StealthScanner.from_keypair(keypair) as scanner:
                tag_ok = scanner.check_viewing_tag(ephemeral_key, tag_bytes) if tag_bytes else None
                owned = scanner.verify_ownership(ephemeral_key, address_key)
                if owned:
                    with secret_scope(keypair.spending_secret_key()) as spending_secret:
                        one_time = scanner.derive_spending_key(ephemeral_key, spending_secret)
                    with secret_scope(one_time) as one_time_secret:
                        # KeyDerivationError se s'*B non coincide con l'indirizzo
                        StealthSigner(one_time_secret, expected_address=address_key).zeroize()
    except (StealthPayException, OSError) as e:
        _fail(f"Error checking address: {e}")
    
    if tag_ok is not None:
        console.print(f"Viewing tag: {'[green]match[/green]' if tag_ok else '[red]no match[/red]'}")
    
    if not owned:
        console.print("[red]❌ Stealth address does not belong to this keypair[/red]")
        raise typer.Exit(1)
    
    console.print(Panel.fit(
        f"[green]✅ Stealth address owned[/green]\n\n"
        f"Address: [cyan]{stealth_address}[/cyan]\n"
        f"One-time spending key: [cyan]verified[/cyan]",
        title="Ownership",
        border_style="green"
    ))


# ============================================================================
# QR COMMANDS
# ============================================================================

@app.command("qr")
def qr_command(
    meta_address: str = typer.Argument(..., help="Meta-address to encode"),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write QR to file (.svg or .png)"
    )
):
    """Render a meta-address as QR code"""
    generator = MetaAddressQRGenerator()
    
    try:
        if output is not None:
            path = generator.save(meta_address, output)
            console.print(f"[green]✅ QR code saved to {path}[/green]")
        else:
            console.print(generator.to_ascii(meta_address), highlight=False)
    except (StealthPayException, OSError) as e:
        _fail(f"Error generating QR code: {e}")


@app.command("version")
def version_command():
    """Show version and supported meta-address versions"""
    info = get_build_info()
    console.print(f"[cyan]StealthPay[/cyan] {info['version']}")
    console.print(
        "Meta-address versions: "
        + ", ".join(str(v) for v in info["meta_address_versions"])
    )


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Verbose output"
    )
):
    """
    StealthPay - Stealth address wallet CLI
    
    Gestisci chiavi stealth, deriva indirizzi one-time e pubblica meta-address.
    """
    settings = get_settings()
    setup_logging(
        log_level="DEBUG" if verbose else settings.log_level,
        log_to_file=settings.log_to_file,
        log_dir=settings.log_dir,
        log_format=settings.log_format,
        enable_console=verbose
    )
    if verbose:
        console.print("[dim]Verbose mode enabled[/dim]")


if __name__ == "__main__":
    app()


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "app",
]
