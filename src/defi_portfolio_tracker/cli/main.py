"""CLI interface for the DeFi portfolio tracker."""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from defi_portfolio_tracker.config import Settings, load_settings
from defi_portfolio_tracker.core.aggregator import PortfolioAggregator
from defi_portfolio_tracker.core.bootstrap import build_portfolio_aggregator
from defi_portfolio_tracker.core.models import Portfolio, TokenBalance, YieldPosition
from defi_portfolio_tracker.data import get_all_supported_chains, get_chain, get_yield_protocols
from defi_portfolio_tracker.errors import ConfigurationError, InvalidAddressError
from defi_portfolio_tracker.logging_config import configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="defi-portfolio",
    help="Aggregate wallet token balances and DeFi yield positions across chains",
    add_completion=False,
)

console = Console()


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="YAML settings file"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    """Load settings and configure logging for every command."""
    configure_logging(log_level)
    try:
        ctx.obj = load_settings(config)
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1) from e


@contextmanager
def _aggregator(ctx: typer.Context) -> Iterator[PortfolioAggregator]:
    """
    Build an aggregator and map errors to exit codes.

    Invalid addresses exit with code 2; any other failure is logged with its
    traceback and exits with code 1.

    """
    settings: Settings = ctx.obj
    try:
        with build_portfolio_aggregator(settings) as aggregator:
            yield aggregator
    except InvalidAddressError as e:
        console.print(f"[bold red]Invalid address:[/bold red] {escape(e.address)}")
        raise typer.Exit(code=2) from e
    except typer.Exit:
        raise
    except Exception as e:
        logger.exception("Command failed")
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1) from e


@contextmanager
def _spinner(description: str) -> Iterator[None]:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        yield


@app.command()
def portfolio(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Wallet address to query"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    refresh: bool = typer.Option(False, "--refresh", help="Ignore cached data"),
) -> None:
    """
    Show the full portfolio of a wallet.

    Examples:

        defi-portfolio portfolio 0xABC...

        defi-portfolio portfolio 0xABC... --format json --refresh
    """
    with _aggregator(ctx) as aggregator:
        with _spinner(f"Fetching portfolio for {address}..."):
            result = aggregator.refresh(address) if refresh else aggregator.portfolio(address)

        if format == OutputFormat.JSON:
            _output_json(result.model_dump(mode="json"))
        else:
            _output_portfolio(result)


@app.command()
def balances(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Wallet address to query"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """Show merged token balances of a wallet."""
    with _aggregator(ctx) as aggregator:
        with _spinner("Fetching token balances..."):
            result = aggregator.token_balances(address)

        if format == OutputFormat.JSON:
            _output_json([b.model_dump(mode="json") for b in result])
        else:
            _output_balances(result)


@app.command()
def yields(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Wallet address to query"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
) -> None:
    """Show yield positions of a wallet."""
    with _aggregator(ctx) as aggregator:
        with _spinner("Fetching yield positions..."):
            result = aggregator.yield_positions(address)

        if format == OutputFormat.JSON:
            _output_json([p.model_dump(mode="json") for p in result])
        else:
            _output_positions(result)


@app.command()
def value(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Wallet address to query"),
    currency: str = typer.Option("usd", "--currency", "-c", help="Target currency"),
) -> None:
    """Show total portfolio value in a currency."""
    with _aggregator(ctx) as aggregator:
        with _spinner("Computing total value..."):
            total = aggregator.total_value(address, currency)
        console.print(f"[bold]Total value:[/bold] [bold green]{total:,.2f} {currency.upper()}[/bold green]")


@app.command()
def chains() -> None:
    """List all supported chains."""
    table = Table(title="Supported Chains", show_header=True, header_style="bold magenta")
    table.add_column("Id", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Chain Id", justify="right")
    table.add_column("Native", style="yellow")

    for chain_id in get_all_supported_chains():
        chain = get_chain(chain_id)
        table.add_row(chain.id, chain.name, str(chain.chain_id), chain.native_symbol)

    console.print(table)


@app.command()
def protocols(
    chain: str | None = typer.Option(None, "--chain", help="Only list protocols on this chain"),
) -> None:
    """List supported yield protocols."""
    chain_ids = [chain] if chain else get_all_supported_chains()
    if chain and chain not in get_all_supported_chains():
        console.print(f"[bold red]Unsupported chain:[/bold red] {escape(chain)}")
        raise typer.Exit(code=2)

    table = Table(title="Yield Protocols", show_header=True, header_style="bold magenta")
    table.add_column("Protocol", style="cyan")
    table.add_column("Chain", style="blue")
    table.add_column("Category", style="yellow")
    table.add_column("Website", style="dim")

    for chain_id in chain_ids:
        for protocol in get_yield_protocols(chain_id):
            table.add_row(protocol.name, protocol.chain.name, protocol.category.value, protocol.website or "-")

    console.print(table)


def _usd(amount: Decimal) -> str:
    return f"${amount:,.2f}" if amount else "-"


def _output_balances(balances: list[TokenBalance]) -> None:
    if not balances:
        console.print("\n[yellow]No token balances found[/yellow]")
        return

    table = Table(title="Token Balances", show_header=True, header_style="bold magenta")
    table.add_column("Token", style="green")
    table.add_column("Chain", style="blue")
    table.add_column("Balance", style="white", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("USD Value", style="bold green", justify="right")

    for balance in balances:
        table.add_row(
            balance.token.symbol,
            balance.token.chain.name,
            f"{balance.balance:,.4f}",
            _usd(balance.token.price_usd),
            _usd(balance.balance_usd),
        )

    console.print(table)


def _output_positions(positions: list[YieldPosition]) -> None:
    if not positions:
        console.print("\n[yellow]No yield positions found[/yellow]")
        return

    table = Table(title="Yield Positions", show_header=True, header_style="bold magenta")
    table.add_column("Protocol", style="cyan")
    table.add_column("Chain", style="blue")
    table.add_column("Pool", style="yellow")
    table.add_column("Deposited", style="green")
    table.add_column("APY", justify="right")
    table.add_column("USD Value", style="bold green", justify="right")
    table.add_column("Daily Yield", justify="right")

    for position in positions:
        deposited = ", ".join(f"{t.balance:,.4f} {t.token.symbol}" for t in position.deposited_tokens)
        table.add_row(
            position.protocol.name,
            position.protocol.chain.name,
            position.pool_name,
            deposited,
            f"{position.apy:.2f}%",
            _usd(position.total_value_usd),
            _usd(position.daily_yield_usd),
        )

    console.print(table)


def _output_portfolio(result: Portfolio) -> None:
    """Output portfolio as rich tables."""
    console.print(f"\n[bold cyan]Portfolio for:[/bold cyan] {result.wallet_address}\n")
    _output_balances(result.token_balances)
    _output_positions(result.yield_positions)

    summary_table = Table(show_header=False, box=None)
    summary_table.add_column("Label", style="bold")
    summary_table.add_column("Value", style="bold green")

    summary_table.add_row("Total Value:", f"${result.total_value_usd:,.2f}")
    summary_table.add_row("Tokens:", f"${result.total_token_value_usd:,.2f}")
    summary_table.add_row("Yield Positions:", f"${result.total_yield_value_usd:,.2f}")
    summary_table.add_row("Average APY:", f"{result.average_apy:.2f}%")
    summary_table.add_row("Est. Daily Yield:", f"${result.estimated_daily_yield_usd:,.2f}")
    summary_table.add_row("Est. Annual Yield:", f"${result.estimated_annual_yield_usd:,.2f}")

    if result.by_chain:
        summary_table.add_row("", "")
        summary_table.add_row("[bold]By Chain:[/bold]", "")
        for chain, amount in result.by_chain.items():
            summary_table.add_row(f"  {chain}", f"${amount:,.2f}")

    if result.by_protocol:
        summary_table.add_row("", "")
        summary_table.add_row("[bold]By Protocol:[/bold]", "")
        for protocol, amount in result.by_protocol.items():
            summary_table.add_row(f"  {protocol}", f"${amount:,.2f}")

    console.print("\n")
    console.print(summary_table)

    for error in result.errors:
        console.print(
            f"[yellow]Unavailable:[/yellow] {error.source} on {error.chain} ({error.kind}): {escape(error.message)}"
        )
    console.print("\n")


def _output_json(data: object) -> None:
    """Output data as JSON."""
    console.print(json.dumps(data, indent=2), soft_wrap=True, markup=False, highlight=False)


if __name__ == "__main__":
    app()
