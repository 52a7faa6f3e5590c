import click

from ape_safe_coordinator._cli.safes import _safes, add, remove
from ape_safe_coordinator._cli.sync import pull, push, sync
from ape_safe_coordinator._cli.transactions import (
    _list,
    create,
    execute,
    reject,
    show,
    sign,
    status,
)
from ape_safe_coordinator._cli.transfer import _import, export


@click.group(short_help="Coordinate Safe transactions and signatures across devices")
def cli():
    """
    Command-line helper for collecting Safe signatures. Share transactions as
    documents, sync them with the Safe Transaction Service, and execute them
    once enough owners signed.
    """


cli.add_command(add)
cli.add_command(remove)
cli.add_command(_safes)
cli.add_command(_list)
cli.add_command(show)
cli.add_command(create)
cli.add_command(status)
cli.add_command(export)
cli.add_command(_import)
cli.add_command(pull)
cli.add_command(push)
cli.add_command(sync)
cli.add_command(sign)
cli.add_command(execute)
cli.add_command(reject)
