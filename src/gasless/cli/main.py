#!/usr/bin/env python3
"""
Gasless Wallet CLI
Derive passkey wallets, inspect the sponsor and send sponsored notes
"""

from __future__ import annotations

import base64
import json
import logging
import sys
from contextlib import nullcontext
from typing import Optional

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gasless.core import config as gasless_config
from gasless.core.config import Config
from gasless.core.exceptions import GaslessError
from gasless.core.gasless import (
    GaslessWalletService,
    build_sponsored_note,
    explorer_url,
    sol_to_lamports,
    to_wire_bytes,
)
from gasless.core.key_derivation import derive
from gasless.core.ledger_client import LedgerClient
from gasless.core.logging_config import setup_logging
from gasless.core.sponsor import SponsorProvider
from gasless.wallet.passkey import decode_credential_public_key

# Configure module logger
logger = logging.getLogger(__name__)

# Rich console for terminal output
console = Console()

STRATEGY_CHOICES = click.Choice(["xor", "hkdf"])
ENCODING_CHOICES = click.Choice(["auto", "hex", "base64url"])


def _cli_fail(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _status(ctx: click.Context, message: str):
    """Spinner for interactive output; silent when emitting JSON."""
    if ctx.obj["json_output"]:
        return nullcontext()
    return console.status(message)


def _derive_from_text(credential_key: str, encoding: str, strategy: str):
    raw = decode_credential_public_key(credential_key, encoding)
    return derive(raw, strategy)


# ============================================================================
# CLI Groups
# ============================================================================

@click.group()
@click.option(
    '--rpc-url',
    default=None,
    help='Solana JSON-RPC URL (defaults to the configured cluster)',
)
@click.option(
    '--timeout',
    default=None,
    type=float,
    help='Request timeout in seconds',
)
@click.option('--json-output', is_flag=True, help='Output raw JSON')
@click.option(
    '--log-level',
    default=gasless_config.LOG_LEVEL,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
    show_default=True,
    help='Logging level',
)
@click.option('--log-json', is_flag=True, help='Emit log records as JSON on stderr')
@click.pass_context
def cli(
    ctx: click.Context,
    rpc_url: Optional[str],
    timeout: Optional[float],
    json_output: bool,
    log_level: str,
    log_json: bool,
):
    """
    Gasless Wallet CLI

    Passkey-derived Solana wallets whose transaction fees are paid by a sponsor.
    """
    ctx.ensure_object(dict)
    setup_logging(name="gasless", level=log_level, json_format=log_json, cluster=Config.CLUSTER)
    ctx.obj['client'] = LedgerClient(rpc_url=rpc_url, timeout=timeout)
    ctx.obj['json_output'] = json_output


# ============================================================================
# Wallet Commands
# ============================================================================

@cli.group()
def wallet():
    """Wallet commands"""
    pass


@wallet.command('derive')
@click.option('--credential-key', required=True, help='Credential public key (hex or base64url)')
@click.option('--encoding', type=ENCODING_CHOICES, default='auto', show_default=True,
              help='Encoding of --credential-key')
@click.option('--strategy', type=STRATEGY_CHOICES, default=Config.DERIVATION_STRATEGY,
              show_default=True, help='Seed derivation strategy')
@click.pass_context
def wallet_derive(ctx: click.Context, credential_key: str, encoding: str, strategy: str):
    """Derive the wallet address for a passkey credential public key"""
    try:
        derived = _derive_from_text(credential_key, encoding, strategy)
    except GaslessError as exc:
        _cli_fail(exc)
        return

    if ctx.obj['json_output']:
        click.echo(json.dumps({**derived.to_dict(), "strategy": strategy}, indent=2))
        return

    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[bold cyan]Address", derived.address)
    table.add_row("[bold cyan]Strategy", strategy)
    console.print(Panel(table, title="[bold green]Derived Wallet", border_style="green"))


@wallet.command('balance')
@click.argument('address')
@click.pass_context
def wallet_balance(ctx: click.Context, address: str):
    """Check wallet balance"""
    client: LedgerClient = ctx.obj['client']

    try:
        with _status(ctx, f"[bold cyan]Fetching balance for {address[:20]}..."):
            lamports = client.get_balance(address)
    except GaslessError as exc:
        _cli_fail(exc)
        return

    sol = lamports / gasless_config.LAMPORTS_PER_SOL
    if ctx.obj['json_output']:
        click.echo(json.dumps({"address": address, "lamports": lamports, "sol": sol}, indent=2))
        return

    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[bold cyan]Address", address)
    table.add_row("[bold green]Balance", f"{sol:.9f} SOL")
    console.print(Panel(table, title="[bold green]Wallet Balance", border_style="green"))


@wallet.command('airdrop')
@click.argument('address')
@click.option('--amount', default=1.0, type=float, show_default=True, help='Amount in SOL')
@click.pass_context
def wallet_airdrop(ctx: click.Context, address: str, amount: float):
    """Request faucet SOL (devnet/testnet only)"""
    service = GaslessWalletService(ledger=ctx.obj["client"])

    try:
        lamports = sol_to_lamports(amount)
        with _status(ctx, f"[bold cyan]Requesting {amount} SOL..."):
            signature = service.request_airdrop(address, amount)
    except GaslessError as exc:
        _cli_fail(exc)
        return

    if ctx.obj['json_output']:
        click.echo(json.dumps({"signature": signature, "lamports": lamports}, indent=2))
        return
    console.print(f"[bold green]✓[/] Airdrop confirmed: [cyan]{signature}[/]")


# ============================================================================
# Sponsor Commands
# ============================================================================

@cli.group()
def sponsor():
    """Sponsor (fee payer) commands"""
    pass


@sponsor.command('show')
@click.pass_context
def sponsor_show(ctx: click.Context):
    """Show the sponsor identity that pays transaction fees"""
    try:
        resolution = SponsorProvider.from_env().get()
    except GaslessError as exc:
        _cli_fail(exc)
        return

    if ctx.obj['json_output']:
        click.echo(json.dumps(resolution.to_dict(), indent=2))
        return

    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[bold cyan]Sponsor", resolution.address)
    table.add_row("[bold cyan]Cluster", Config.CLUSTER)
    if resolution.ephemeral:
        table.add_row("[bold yellow]Mode", "ephemeral (demo only)")
    console.print(Panel(table, title="[bold green]Sponsor", border_style="green"))
    if resolution.warning is not None:
        console.print(f"[yellow]⚠[/] {resolution.warning.message}")


# ============================================================================
# Transaction Commands
# ============================================================================

@cli.group()
def tx():
    """Sponsored transaction commands"""
    pass


@tx.command('note')
@click.option('--credential-key', required=True, help='Credential public key (hex or base64url)')
@click.option('--memo', required=True, help='Note text recorded on chain')
@click.option('--encoding', type=ENCODING_CHOICES, default='auto', show_default=True)
@click.option('--strategy', type=STRATEGY_CHOICES, default=Config.DERIVATION_STRATEGY,
              show_default=True)
@click.option('--blockhash', default=None,
              help='Recent blockhash to use instead of fetching one (offline build)')
@click.option('--submit/--no-submit', default=False, show_default=True,
              help='Submit the transaction and wait for confirmation')
@click.pass_context
def tx_note(
    ctx: click.Context,
    credential_key: str,
    memo: str,
    encoding: str,
    strategy: str,
    blockhash: Optional[str],
    submit: bool,
):
    """Build (and optionally submit) a sponsored memo transaction"""
    client: LedgerClient = ctx.obj['client']

    try:
        derived = _derive_from_text(credential_key, encoding, strategy)
        resolution = SponsorProvider.from_env().get()
        recent_blockhash = blockhash or client.get_recent_blockhash()
        envelope = build_sponsored_note(derived, memo, resolution, recent_blockhash)
        wire = to_wire_bytes(envelope)

        signature = envelope.transaction_id
        if submit:
            with _status(ctx, "[bold cyan]Submitting sponsored transaction..."):
                signature = client.submit(wire)
                client.confirm(signature)
    except GaslessError as exc:
        _cli_fail(exc)
        return

    result = {
        "signature": signature,
        "wallet": derived.address,
        "sponsor": resolution.address,
        "ephemeral_sponsor": envelope.ephemeral_sponsor,
        "submitted": submit,
        "transaction": base64.b64encode(wire).decode("ascii"),
    }
    if submit:
        result["explorer_url"] = explorer_url(signature)

    if ctx.obj['json_output']:
        click.echo(json.dumps(result, indent=2))
        return

    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[bold cyan]Wallet", derived.address)
    table.add_row("[bold cyan]Sponsor", resolution.address)
    table.add_row("[bold cyan]Signature", signature)
    if submit:
        table.add_row("[bold cyan]Explorer", result["explorer_url"])
    title = "[bold green]Sponsored Note Sent" if submit else "[bold green]Sponsored Note Built"
    console.print(Panel(table, title=title, border_style="green"))
    if envelope.ephemeral_sponsor:
        console.print("[yellow]⚠[/] Fee paid by an ephemeral demo sponsor")


def main():
    """Main CLI entry point"""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/]")
        sys.exit(130)


if __name__ == '__main__':
    main()
