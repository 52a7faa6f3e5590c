from contextlib import ContextDecorator
from typing import TYPE_CHECKING, Optional

import click
from ape.cli import ApeCliContextObject, ape_cli_context

from ape_safe_coordinator.exceptions import ApeSafeCoordinatorException

if TYPE_CHECKING:
    # perf: Keep the CLI module loading fast as possible.
    from ape_safe_coordinator.addresses import ChainQualifiedAddress
    from ape_safe_coordinator.context import CoordinatorContext


class CoordinatorCliContext(ApeCliContextObject):
    _coordinator: Optional["CoordinatorContext"] = None

    @property
    def coordinator(self) -> "CoordinatorContext":
        if self._coordinator is None:
            from ape_safe_coordinator.context import CoordinatorContext

            self._coordinator = CoordinatorContext.from_config()

        return self._coordinator

    def resolve_safe(self, value: str, chain_id: Optional[str] = None) -> "ChainQualifiedAddress":
        """
        Parse a bare or chain-qualified Safe address. A bare address needs
        ``--chain-id``.
        """
        target = self.coordinator.parse_address(value, default_chain_id=chain_id)
        if target.chain_id is None:
            raise click.BadParameter(
                f"'{value}' has no chain, use 'shortName:address' or '--chain-id'.",
                param_hint="SAFE",
            )

        return target


def coordinator_cli_ctx():
    return ape_cli_context(obj_type=CoordinatorCliContext)


class CoordinatorCliError(click.ClickException):
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


class handle_coordinator_errors(ContextDecorator):
    """Turn coordinator errors into a clean exit with the error's exit code."""

    def __enter__(self):
        pass

    def __exit__(self, exc_type: type[BaseException], exc: BaseException, tb):
        if isinstance(exc, ApeSafeCoordinatorException):
            raise CoordinatorCliError(str(exc), exit_code=exc.exit_code) from exc

        # NOTE: Will raise `exc` by default because we did not return anything


chain_id_option = click.option(
    "--chain-id", help="Chain of a bare Safe address (not needed for 'shortName:address')"
)
safe_argument = click.argument("safe", metavar="SAFE")
safe_tx_hash_argument = click.argument("safe_tx_hash", metavar="SAFE_TX_HASH")
