import click
import rich
from ape.cli import skip_confirmation_option

from ape_safe_coordinator._cli.click_ext import (
    CoordinatorCliContext,
    chain_id_option,
    coordinator_cli_ctx,
    handle_coordinator_errors,
    safe_argument,
)


@click.command()
@coordinator_cli_ctx()
@safe_argument
@chain_id_option
@click.option("--name", default="", help="A label for the Safe")
@handle_coordinator_errors()
def add(cli_ctx: CoordinatorCliContext, safe, chain_id, name):
    """
    Track a Safe so `sync` picks it up
    """
    target = cli_ctx.resolve_safe(safe, chain_id=chain_id)
    tracked = cli_ctx.coordinator.track_safe(target.address, target.chain_id, name=name)
    safe_str = cli_ctx.coordinator.format_address(tracked.address, tracked.chain_id)
    cli_ctx.logger.success(f"Safe '{safe_str}' added.")


@click.command()
@coordinator_cli_ctx()
@safe_argument
@chain_id_option
@skip_confirmation_option()
@handle_coordinator_errors()
def remove(cli_ctx: CoordinatorCliContext, safe, chain_id, skip_confirmation):
    """
    Stop tracking a Safe (its transactions are kept)
    """
    target = cli_ctx.resolve_safe(safe, chain_id=chain_id)
    safe_str = cli_ctx.coordinator.format_address(target.address, target.chain_id)
    if skip_confirmation or click.confirm(f"Remove Safe '{safe_str}'"):
        cli_ctx.coordinator.untrack_safe(target.address, target.chain_id)
        cli_ctx.logger.success(f"Safe '{safe_str}' removed.")


@click.command(name="safes")
@coordinator_cli_ctx()
@handle_coordinator_errors()
def _safes(cli_ctx: CoordinatorCliContext):
    """
    Show tracked Safes
    """
    coordinator = cli_ctx.coordinator
    safes = coordinator.safes.all()
    if not safes:
        cli_ctx.logger.warning("No Safes found.")
        return

    for safe in safes:
        extras = []
        if safe.name:
            extras.append(f"name: '{safe.name}'")

        if safe.owners:
            extras.append(f"threshold: {safe.threshold}/{len(safe.owners)}")

        extras_display = f" ({', '.join(extras)})" if extras else ""
        rich.print(f"  {coordinator.format_address(safe.address, safe.chain_id)}{extras_display}")
