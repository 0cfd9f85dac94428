"""
Kryptokrona Wallet CLI - Inspect a daemon and run the wallet's fee and size arithmetic.
"""

from __future__ import annotations

import asyncio
import sys

import typer
from loguru import logger

from xkrcore.fees import (
    estimated_transaction_size,
    get_max_tx_size,
    get_minimum_transaction_fee,
    split_amount_into_denominations,
)
from xkrcore.utils import pretty_print_amount
from xkrwallet.config import get_settings

app = typer.Typer(
    name="xkr-wallet",
    help="Kryptokrona Wallet Tools",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


@app.command()
def status(
    host: str = typer.Option(None, "--host", envvar="DAEMON_HOST", help="Daemon host"),
    port: int = typer.Option(None, "--port", "-p", envvar="DAEMON_PORT", help="Daemon port"),
    ssl: bool = typer.Option(False, "--ssl", help="Use https"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Show daemon reachability, heights, peers, hashrate and node fee."""
    setup_logging(log_level)

    settings = get_settings()
    host = host or settings.daemon_host
    port = port or settings.daemon_port
    ssl = ssl or settings.daemon_ssl

    ok = asyncio.run(_show_status(host, port, ssl, settings.request_timeout))
    if not ok:
        raise typer.Exit(1)


async def _show_status(host: str, port: int, ssl: bool, timeout: float) -> bool:
    """Show daemon status implementation."""
    from xkrwallet.backends.http import HttpDaemonBackend
    from xkrwallet.daemon import Daemon
    from xkrwallet.errors import NodeError

    settings = get_settings()
    backend = HttpDaemonBackend(host=host, port=port, ssl=ssl, timeout=timeout)
    daemon = Daemon(backend, settings)

    try:
        if not await daemon.is_reachable():
            logger.error(f"Daemon at {backend.daemon_url} is not reachable")
            return False

        try:
            await daemon.init()
        except NodeError as e:
            logger.error(f"Daemon is not usable: {e}")
            return False

        typer.echo(f"\nDaemon:          {backend.daemon_url}")
        typer.echo(f"Local height:    {daemon.local_daemon_block_count:,}")
        typer.echo(f"Network height:  {daemon.network_block_count:,}")
        typer.echo(f"Peers:           {daemon.peer_count}")
        typer.echo(f"Hashrate:        {daemon.last_known_hashrate:,} H/s")

        if daemon.node_fee.amount > 0:
            fee = pretty_print_amount(daemon.node_fee.amount, settings.decimal_places, settings.ticker)
            typer.echo(f"Node fee:        {fee} to {daemon.node_fee.address}")
        else:
            typer.echo("Node fee:        none")

        return True

    finally:
        await daemon.close()


@app.command("estimate-fee")
def estimate_fee(
    inputs: int = typer.Option(1, "--inputs", "-i", min=1, help="Number of inputs"),
    outputs: int = typer.Option(2, "--outputs", "-o", min=1, help="Number of outputs"),
    mixin: int = typer.Option(None, "--mixin", "-m", min=0, help="Ring size minus one"),
    payment_id: bool = typer.Option(False, "--payment-id", help="Include a payment ID"),
    extra_size: int = typer.Option(0, "--extra-size", min=0, help="Bytes of extra data"),
    height: int = typer.Option(0, "--height", min=0, help="Chain height for the fee schedule"),
) -> None:
    """Estimate the size and minimum fee of a transaction."""
    settings = get_settings()
    if mixin is None:
        mixin = settings.mixin

    size = estimated_transaction_size(mixin, inputs, outputs, payment_id, extra_size)
    fee = get_minimum_transaction_fee(size, height)

    typer.echo(f"Estimated size:  {size:,} bytes")
    typer.echo(f"Minimum fee:     {pretty_print_amount(fee, settings.decimal_places, settings.ticker)}")


@app.command()
def split(
    amount: int = typer.Argument(..., min=1, help="Amount in atomic units"),
    allow_large_outputs: bool = typer.Option(
        False, "--allow-large-outputs", help="Do not break up outputs above the client limit"
    ),
) -> None:
    """Split an amount into the denominations a transaction would use."""
    settings = get_settings()
    denominations = split_amount_into_denominations(amount, not allow_large_outputs)

    typer.echo(f"{len(denominations)} outputs:")
    for denomination in denominations:
        typer.echo(f"  {pretty_print_amount(denomination, settings.decimal_places, settings.ticker)}")


@app.command("max-tx-size")
def max_tx_size(
    height: int = typer.Argument(..., min=0, help="Chain height"),
) -> None:
    """Show the largest transaction a block at this height can hold."""
    settings = get_settings()
    typer.echo(f"{get_max_tx_size(height, settings.block_target_time):,} bytes")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
