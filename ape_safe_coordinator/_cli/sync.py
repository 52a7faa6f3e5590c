import click
import rich

from ape_safe_coordinator._cli.click_ext import (
    CoordinatorCliContext,
    CoordinatorCliError,
    chain_id_option,
    coordinator_cli_ctx,
    handle_coordinator_errors,
    safe_argument,
)


@click.command()
@coordinator_cli_ctx()
@safe_argument
@chain_id_option
@handle_coordinator_errors()
def pull(cli_ctx: CoordinatorCliContext, safe, chain_id):
    """
    Fetch proposals and signatures from the Safe Transaction Service
    """
    target = cli_ctx.resolve_safe(safe, chain_id=chain_id)
    result = cli_ctx.coordinator.pull_transactions(target.address, target.chain_id)
    cli_ctx.logger.success(
        f"Pulled {len(result.new)} new and {len(result.updated)} updated transaction(s)."
    )


@click.command()
@coordinator_cli_ctx()
@safe_argument
@chain_id_option
@handle_coordinator_errors()
def push(cli_ctx: CoordinatorCliContext, safe, chain_id):
    """
    Propose local transactions and upload their signatures
    """
    target = cli_ctx.resolve_safe(safe, chain_id=chain_id)
    result = cli_ctx.coordinator.push_transactions(target.address, target.chain_id)
    cli_ctx.logger.success(
        f"Proposed {len(result.proposed)} and updated {len(result.updated)} transaction(s)."
    )
    if result.skipped:
        cli_ctx.logger.warning(f"Skipped {len(result.skipped)} transaction(s).")


@click.command()
@coordinator_cli_ctx()
@click.argument("safes", nargs=-1, metavar="SAFE(s)")
@chain_id_option
@click.option("--pull/--no-pull", "do_pull", default=True, help="Fetch remote changes")
@click.option("--push/--no-push", "do_push", default=True, help="Upload local changes")
@handle_coordinator_errors()
def sync(cli_ctx: CoordinatorCliContext, safes, chain_id, do_pull, do_push):
    """
    Pull and push the given Safes (all tracked Safes when none are given)
    """
    coordinator = cli_ctx.coordinator
    targets = None
    if safes:
        targets = [
            (target.address, target.chain_id)
            for target in (cli_ctx.resolve_safe(safe, chain_id=chain_id) for safe in safes)
        ]

    reports = coordinator.sync_transactions(targets, pull=do_pull, push=do_push)
    if not reports:
        cli_ctx.logger.warning("No Safes to sync. Track one using `safe-coordinator add`.")
        return

    failed = []
    for report in reports.values():
        safe_str = coordinator.format_address(report.safe_address, report.chain_id)
        if not report.ok:
            failed.append(report)
            rich.print(f"{safe_str} [red]failed[/red] ({report.error_kind}): {report.error}")
            continue

        parts = []
        if report.pulled:
            parts.append(f"{len(report.pulled.new)} new, {len(report.pulled.updated)} updated")

        if report.pushed:
            parts.append(
                f"{len(report.pushed.proposed)} proposed, {len(report.pushed.updated)} uploaded"
            )

        if report.promoted:
            parts.append(f"{len(report.promoted)} ready to execute")

        rich.print(f"{safe_str} {'; '.join(parts) or 'up to date'}")

    if failed:
        raise CoordinatorCliError(
            f"{len(failed)} of {len(reports)} Safe(s) failed to sync.",
            exit_code=failed[0].exit_code or 1,
        )
