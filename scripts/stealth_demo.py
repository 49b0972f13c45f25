#!/usr/bin/env python3
"""
StealthPay - Stealth Payment Demo
===================================
Flusso completo su ledger in memoria: meta-address, pagamento stealth,
coda offline, scansione e unshield.

Usage:
    python scripts/stealth_demo.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stealth_pay.config import get_test_config
from stealth_pay.constants import format_amount
from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.domain.signers import Ed25519Signer
from stealth_pay.ledger.memory import InMemoryLedger
from stealth_pay.network.monitor import StaticNetworkStatus
from stealth_pay.services.payment_queue import PaymentQueue
from stealth_pay.services.stealth_service import StealthWalletManager
from stealth_pay.storage.secure_storage import InMemorySecureStorage

console = Console()


async def run_demo():
    """Run stealth payment demo"""

    console.print(Panel.fit(
        "[cyan]StealthPay - Stealth Payment Demo[/cyan]\n\n"
        "Unlinkable one-time addresses on an account ledger",
        border_style="cyan"
    ))

    config = get_test_config()
    ledger = InMemoryLedger()
    network = StaticNetworkStatus(online=True)

    # ========================================================================
    # STEP 1: Receiver publishes meta-address
    # ========================================================================

    console.print("\n[yellow]Step 1: Receiver creates stealth keypair[/yellow]")

    receiver = StealthWalletManager(
        KeyPair.generate(), ledger, storage=InMemorySecureStorage(), config=config
    )
    meta_address = receiver.get_meta_address()

    console.print("[green]✅ Stealth keypair created[/green]")
    console.print(f"[cyan]Meta-address: {meta_address}[/cyan]")
    console.print("[dim]Only public keys are shared; secrets never leave the wallet[/dim]")

    # ========================================================================
    # STEP 2: Sender pays two one-time addresses
    # ========================================================================

    console.print("\n[yellow]Step 2: Sender pays the meta-address twice[/yellow]")

    payer = Ed25519Signer.generate()
    ledger.airdrop(payer.address, 10_000_000_000)
    sender_storage = InMemorySecureStorage()
    queue = PaymentQueue.from_settings(config, ledger, sender_storage, network, payer)
    sender = StealthWalletManager(
        KeyPair.generate(), ledger, storage=sender_storage, queue=queue,
        payer=payer, network_status=network, config=config,
    )

    first = sender.prepare_payment(meta_address, 1_500_000_000)
    result = await sender.send_payment(first)
    console.print(f"[green]✅ Settled[/green] {format_amount(first.amount)} -> {first.stealth_address_b58}")
    console.print(f"[dim]Signature: {result.signature[:32]}...[/dim]")

    # ========================================================================
    # STEP 3: Offline payment goes through the queue
    # ========================================================================

    console.print("\n[yellow]Step 3: Sender goes offline[/yellow]")

    network.set_online(False)
    second = sender.prepare_payment(meta_address, 500_000_000)
    queued = await sender.send_payment(second)
    console.print(f"[cyan]Payment queued: {queued.payment_id} ({queue.get_status(queued.payment_id)})[/cyan]")

    network.set_online(True)
    for outcome in await queue.process_queue():
        console.print(f"[green]✅ Queue settled {outcome.payment_id}[/green] ({outcome.status})")

    console.print("[dim]Two payments, two unrelated addresses[/dim]")

    # ========================================================================
    # STEP 4: Receiver scans the ledger
    # ========================================================================

    console.print("\n[yellow]Step 4: Receiver scans for payments[/yellow]")

    detected = await receiver.scan_incoming()

    table = Table(title="Detected Payments")
    table.add_column("Slot", style="cyan")
    table.add_column("Stealth Address", style="green")
    table.add_column("Amount", style="yellow")
    for payment in detected:
        table.add_row(str(payment.slot), payment.stealth_address_b58, format_amount(payment.amount))
    console.print(table)

    outsider = StealthWalletManager(KeyPair.generate(), ledger, config=config)
    outsider_found = await outsider.scan_incoming()
    if not outsider_found:
        console.print("[green]✅ Other wallets cannot detect these payments[/green]")

    # ========================================================================
    # STEP 5: Unshield to a regular address
    # ========================================================================

    console.print("\n[yellow]Step 5: Receiver unshields the first payment[/yellow]")

    destination = Ed25519Signer.generate().address
    signature = await receiver.unshield(detected[0], destination)
    balance = await ledger.get_balance(destination)

    console.print(f"[green]✅ Unshielded {format_amount(balance)} to {destination}[/green]")
    console.print(f"[dim]Signature: {signature[:32]}...[/dim]")

    for manager in (receiver, sender, outsider):
        manager.close()

    # ========================================================================
    # Summary
    # ========================================================================

    console.print("\n" + "="*60)
    console.print("[green]Stealth Payment Demo Complete![/green]")
    console.print("\n[cyan]Key Benefits:[/cyan]")
    console.print("• Each payment lands on a fresh one-time address")
    console.print("• Viewing tags let the receiver skip most transactions cheaply")
    console.print("• Only the spending key can move funds out")
    console.print("• Offline payments settle automatically when the network returns")


def main():
    asyncio.run(run_demo())


if __name__ == "__main__":
    main()
