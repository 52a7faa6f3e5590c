import json

import click

from ape_safe_coordinator._cli.click_ext import (
    CoordinatorCliContext,
    coordinator_cli_ctx,
    handle_coordinator_errors,
    safe_tx_hash_argument,
)


@click.command()
@coordinator_cli_ctx()
@safe_tx_hash_argument
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True),
    help="Write the document to this file instead of stdout",
)
@handle_coordinator_errors()
def export(cli_ctx: CoordinatorCliContext, safe_tx_hash, output):
    """
    Export a transaction and its signatures as a JSON document
    """
    document = json.dumps(cli_ctx.coordinator.export_transaction(safe_tx_hash), indent=2)
    if output is None:
        click.echo(document)
        return

    with open(output, "w", encoding="utf-8") as file:
        file.write(f"{document}\n")

    cli_ctx.logger.success(f"Exported transaction '{safe_tx_hash}' to '{output}'.")


@click.command(name="import")
@coordinator_cli_ctx()
@click.argument("source", type=click.File("r", encoding="utf-8"), default="-")
@handle_coordinator_errors()
def _import(cli_ctx: CoordinatorCliContext, source):
    """
    Import a transaction document from a file (or stdin), merging its signatures
    """
    result = cli_ctx.coordinator.import_transaction(source.read())
    if result.mode == "new":
        cli_ctx.logger.success(f"Imported new transaction '{result.safe_tx_hash}'.")

    elif result.new_signers:
        signers = ", ".join(result.new_signers)
        cli_ctx.logger.success(f"Added signatures from {signers} to '{result.safe_tx_hash}'.")

    else:
        cli_ctx.logger.info(f"Transaction '{result.safe_tx_hash}' is already up to date.")
