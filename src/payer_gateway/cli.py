"""
Command line interface for the payer gateway.
"""

import asyncio
import json
import sys

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import GatewaySettings, LogLevel
from .exceptions import GatewayError
from .logger import setup_logging
from .orchestrator import IntegrationOrchestrator
from .transformers import PartnerTransformer

console = Console()


def _load_settings(ctx) -> GatewaySettings:
    path = ctx.obj.get("config_path")
    try:
        return GatewaySettings.from_yaml(path) if path else GatewaySettings.from_env()
    except GatewayError as e:
        console.print(f"[red]Configuration error: {e.message}[/red]")
        sys.exit(1)


def _setup_logging(ctx, settings: GatewaySettings) -> None:
    """Configure logging, forcing DEBUG under --verbose."""
    logging_settings = settings.logging
    if ctx.obj.get("verbose"):
        logging_settings = logging_settings.model_copy(update={"level": LogLevel.DEBUG})
    setup_logging(logging_settings)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", "config_path", type=click.Path(), envvar="PAYER_GATEWAY_CONFIG",
    help="Gateway YAML configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Payer Integration Gateway CLI"""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


@cli.command()
@click.pass_context
def partners(ctx):
    """List configured partners."""
    settings = _load_settings(ctx)
    table = Table(title="Configured partners")
    table.add_column("Partner", style="cyan")
    table.add_column("Type")
    table.add_column("Protocol")
    table.add_column("Format")
    table.add_column("State")
    table.add_column("Max batch", justify="right")
    table.add_column("Test mode")

    for partner in settings.partners:
        transformer = PartnerTransformer(partner)
        table.add_row(
            partner.partner_id,
            partner.partner_type.value,
            partner.protocol.value,
            partner.data_format.value,
            partner.state or "-",
            str(transformer.max_batch_size),
            "yes" if partner.test_mode else "no",
        )
    console.print(table)


@cli.command()
@click.argument("partner_id", required=False)
@click.pass_context
def health(ctx, partner_id):
    """Run health checks against one or all partners."""
    settings = _load_settings(ctx)
    _setup_logging(ctx, settings)

    async def run():
        async with IntegrationOrchestrator.from_settings(settings) as orchestrator:
            if partner_id:
                return {partner_id: await orchestrator.check_health(partner_id)}
            return await orchestrator.check_all_health()

    try:
        statuses = asyncio.run(run())
    except GatewayError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    table = Table(title="Partner health")
    table.add_column("Partner", style="cyan")
    table.add_column("Status")
    table.add_column("Breaker")
    table.add_column("Response (ms)", justify="right")
    table.add_column("Message")
    for pid, status in statuses.items():
        color = "green" if status.healthy else "red"
        table.add_row(
            pid,
            f"[{color}]{status.status.value}[/{color}]",
            status.breaker_state.value if status.breaker_state else "-",
            f"{status.response_time_ms:.1f}" if status.response_time_ms is not None else "-",
            status.message,
        )
    console.print(table)
    if not all(s.healthy for s in statuses.values()):
        sys.exit(1)


@cli.command("claim-status")
@click.argument("partner_id")
@click.argument("tracking_number")
@click.pass_context
def claim_status(ctx, partner_id, tracking_number):
    """Check the status of a submitted claim."""
    settings = _load_settings(ctx)
    _setup_logging(ctx, settings)

    async def run():
        async with IntegrationOrchestrator.from_settings(settings) as orchestrator:
            return await orchestrator.check_claim_status(partner_id, tracking_number)

    try:
        response = asyncio.run(run())
    except GatewayError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    if response.success:
        console.print(
            f"[green]{tracking_number}: {response.data['status'].value}[/green] "
            f"(partner status {response.data['partner_status']!r})"
        )
    else:
        console.print(f"[red]{response.error.code}: {response.error.message}[/red]")
        sys.exit(1)


@cli.command("x12-preview")
@click.argument("partner_id")
@click.argument("claim_file", type=click.File("r"))
@click.pass_context
def x12_preview(ctx, partner_id, claim_file):
    """Render the X12 837 a claim would produce, without sending it."""
    settings = _load_settings(ctx)
    try:
        transformer = PartnerTransformer(settings.partner(partner_id))
        claim = json.load(claim_file)
        transformer.validate_claim(claim)
        interchange = transformer.x12_document(claim, "submit_claim").render()
    except GatewayError as e:
        console.print(f"[red]{e.message}[/red]")
        for error in e.details.get("errors", []):
            console.print(f"  - {error}")
        sys.exit(1)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid claim JSON: {e}[/red]")
        sys.exit(1)

    click.echo(interchange.replace("~", "~\n"))


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
