from typing import cast

import click
import rich
from ape.cli import ConnectedProviderCommand, account_option
from eth_typing import Hash32
from eth_utils import humanize_hash
from hexbytes import HexBytes

from ape_safe_coordinator._cli.click_ext import (
    CoordinatorCliContext,
    chain_id_option,
    coordinator_cli_ctx,
    handle_coordinator_errors,
    safe_argument,
    safe_tx_hash_argument,
)
from ape_safe_coordinator.types import OperationType, SafeTxData, TxStatus
from ape_safe_coordinator.utils import checksum_address, normalize_hex


@click.command(name="list")
@coordinator_cli_ctx()
@click.option("--safe", help="Only transactions of this Safe")
@chain_id_option
@click.option(
    "--status",
    "statuses",
    multiple=True,
    type=click.Choice([s.value for s in TxStatus]),
    help="Only transactions with this status (repeatable)",
)
@handle_coordinator_errors()
def _list(cli_ctx: CoordinatorCliContext, safe, chain_id, statuses):
    """
    Show locally stored transactions
    """
    coordinator = cli_ctx.coordinator
    if safe:
        target = coordinator.parse_address(safe, default_chain_id=chain_id)
        safe, chain_id = target.address, target.chain_id

    records = coordinator.list_transactions(
        safe_address=safe, chain_id=chain_id, statuses=statuses or None
    )
    if not records:
        cli_ctx.logger.warning("No transactions found.")
        return

    for record in records:
        safe_str = coordinator.format_address(record.safe_address, record.chain_id)
        rich.print(
            f"{record.safe_tx_hash} {safe_str} nonce={record.metadata.nonce} "
            f"status={record.status.value} signatures={len(record.signatures)}"
        )


@click.command()
@coordinator_cli_ctx()
@safe_tx_hash_argument
@handle_coordinator_errors()
def show(cli_ctx: CoordinatorCliContext, safe_tx_hash):
    """
    Show a transaction and its signatures
    """
    record = cli_ctx.coordinator.get_transaction(safe_tx_hash)
    click.echo(str(record), nl=False)
    if record.remote_executed:
        rich.print(f"[yellow]Remote service reports execution in '{record.remote_tx_hash}'.")

    for idx, sig in enumerate(record.signatures):
        signature_str = humanize_hash(cast(Hash32, HexBytes(sig.signature)))
        rich.print(
            f"  Signature {idx + 1} signer={sig.signer} signature='{signature_str}' "
            f"signed_at={sig.signed_at.isoformat()}"
        )


def _hex_data(ctx, param, value):
    try:
        return normalize_hex(value)
    except ValueError as err:
        raise click.BadParameter(str(err)) from err


@click.command(cls=ConnectedProviderCommand)
@coordinator_cli_ctx()
@safe_argument
@chain_id_option
@click.option("--to", "receiver", required=True, help="Transaction receiver")
@click.option("--value", type=click.IntRange(min=0), default=0, help="Value in wei")
@click.option("--data", default="0x", callback=_hex_data, help="Transaction data (hex)")
@click.option(
    "--operation",
    type=click.Choice([op.name.lower() for op in OperationType]),
    default=OperationType.CALL.name.lower(),
    help="Call type",
)
@click.option("--nonce", type=click.IntRange(min=0), help="Safe nonce (defaults to the current)")
@account_option()
@click.option("--sign", "sign_now", is_flag=True, help="Sign with the account right away")
@handle_coordinator_errors()
def create(
    cli_ctx: CoordinatorCliContext,
    safe,
    chain_id,
    receiver,
    value,
    data,
    operation,
    nonce,
    account,
    sign_now,
):
    """
    Create a new transaction for a Safe
    """
    coordinator = cli_ctx.coordinator
    target = cli_ctx.resolve_safe(safe, chain_id)
    if nonce is None:
        nonce = coordinator.next_nonce(target.address, target.chain_id)

    metadata = SafeTxData(
        to=checksum_address(receiver),
        value=value,
        data=data,
        operation=OperationType[operation.upper()],
        nonce=nonce,
    )
    record = coordinator.create_transaction(
        target.address, target.chain_id, metadata, account.address
    )
    click.echo(record.safe_tx_hash)
    if sign_now:
        coordinator.sign_transaction(record.safe_tx_hash, account)


@click.command(cls=ConnectedProviderCommand)
@coordinator_cli_ctx()
@safe_tx_hash_argument
@handle_coordinator_errors()
def status(cli_ctx: CoordinatorCliContext, safe_tx_hash):
    """
    Show collected signatures against the Safe's live threshold
    """
    coordinator = cli_ctx.coordinator
    record = coordinator.refresh_status(safe_tx_hash)
    readiness = coordinator.transaction_status(record.safe_tx_hash)
    safe_str = coordinator.format_address(record.safe_address, record.chain_id)
    rich.print(
        f"{record.safe_tx_hash} {safe_str} nonce={record.metadata.nonce} "
        f"status={record.status.value} signatures={readiness} "
        f"ready={'yes' if readiness.ready else 'no'}"
    )


@click.command(cls=ConnectedProviderCommand)
@coordinator_cli_ctx()
@safe_tx_hash_argument
@account_option()
@handle_coordinator_errors()
def sign(cli_ctx: CoordinatorCliContext, safe_tx_hash, account):
    """
    Sign a transaction with a local account
    """
    record = cli_ctx.coordinator.sign_transaction(safe_tx_hash, account)
    if record.status == TxStatus.SIGNED:
        cli_ctx.logger.success(f"Transaction '{record.safe_tx_hash}' is ready to execute.")


@click.command(cls=ConnectedProviderCommand)
@coordinator_cli_ctx()
@safe_tx_hash_argument
@account_option()
@handle_coordinator_errors()
def execute(cli_ctx: CoordinatorCliContext, safe_tx_hash, account):
    """
    Execute a transaction that has enough signatures
    """
    cli_ctx.coordinator.execute_transaction(safe_tx_hash, account)


@click.command(cls=ConnectedProviderCommand)
@coordinator_cli_ctx()
@safe_tx_hash_argument
@account_option()
@handle_coordinator_errors()
def reject(cli_ctx: CoordinatorCliContext, safe_tx_hash, account):
    """
    Mark a pending transaction as rejected
    """
    record = cli_ctx.coordinator.get_transaction(safe_tx_hash)
    if click.confirm(f"{record}\nReject transaction?"):
        cli_ctx.coordinator.reject_transaction(safe_tx_hash, account)
