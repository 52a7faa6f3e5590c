from collections.abc import Iterable
from contextlib import ContextDecorator
from typing import TYPE_CHECKING, Optional

from ape.exceptions import ApeException, ContractLogicError

if TYPE_CHECKING:
    from requests import Response


class ApeSafeCoordinatorException(ApeException):
    exit_code: int = 1
    """Process exit code the CLI uses when this error aborts a command."""


class ApeSafeCoordinatorError(ApeSafeCoordinatorException):
    """
    A generic error for the ``ape-safe-coordinator`` plugin.
    """


class InvalidAddress(ApeSafeCoordinatorException, ValueError):
    exit_code = 2

    def __init__(self, value: str, reason: Optional[str] = None):
        self.value = value
        super().__init__(f"Invalid address '{value}'" + (f": {reason}." if reason else "."))


class NotAnOwner(ApeSafeCoordinatorException):
    exit_code = 3

    def __init__(self, account: str, safe_address: str):
        super().__init__(f"{account} is not an owner of Safe '{safe_address}'.")


class InsufficientSignatures(ApeSafeCoordinatorException):
    exit_code = 4

    def __init__(self, required: int, collected: int):
        self.required = required
        self.collected = collected
        super().__init__(
            f"Not enough signatures, {required - collected} more are needed "
            f"(have {collected}, need {required})."
        )


class NetworkError(ApeSafeCoordinatorException):
    """
    A retryable failure talking to a remote service or the chain.
    """

    exit_code = 5


class UnknownChain(ApeSafeCoordinatorException):
    exit_code = 6

    def __init__(self, short_name: str):
        self.short_name = short_name
        super().__init__(f"Chain with short name '{short_name}' not found in configuration.")


class NotFound(ApeSafeCoordinatorException):
    exit_code = 9

    def __init__(self, key: str, kind: str = "Transaction"):
        self.key = key
        super().__init__(f"{kind} '{key}' not found.")


class SafeNotFound(NotFound):
    exit_code = 8

    def __init__(self, key: str):
        super().__init__(key, kind="Safe")


class AlreadyExists(ApeSafeCoordinatorException):
    exit_code = 11

    def __init__(self, key: str, kind: str = "Transaction"):
        self.key = key
        super().__init__(f"{kind} '{key}' already exists.")


class InvalidTransition(ApeSafeCoordinatorException):
    exit_code = 12

    def __init__(self, safe_tx_hash: str, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Transaction '{safe_tx_hash}' cannot move from '{current}' to '{requested}'."
        )


class InvalidDocument(ApeSafeCoordinatorException):
    exit_code = 13

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid transaction document: {reason}")


class ConflictingMetadata(ApeSafeCoordinatorException):
    exit_code = 14

    def __init__(self, safe_tx_hash: str, fields: Iterable[str]):
        self.fields = sorted(fields)
        super().__init__(
            f"Transaction '{safe_tx_hash}' already exists with different content "
            f"({', '.join(self.fields)})."
        )


SAFE_ERROR_CODES = {
    "GS010": "Not enough gas to execute Safe transaction",
    "GS011": "Could not pay gas costs with ether",
    "GS012": "Could not pay gas costs with token",
    "GS013": "Safe transaction failed when gasPrice and safeTxGas were 0",
    "GS020": "Signatures data too short",
    "GS021": "Invalid contract signature location: inside static part",
    "GS022": "Invalid contract signature location: length not present",
    "GS023": "Invalid contract signature location: data not complete",
    "GS024": "Invalid contract signature provided",
    "GS025": "Hash has not been approved",
    "GS026": "Invalid owner provided",
}


class SafeLogicError(ApeSafeCoordinatorException, ContractLogicError):
    def __init__(self, error_code: str):
        super().__init__(f"{SAFE_ERROR_CODES[error_code]} ({error_code})")


class handle_safe_logic_error(ContextDecorator):
    def __enter__(self):
        pass

    def __exit__(self, exc_type: type[BaseException], exc: BaseException, tb):
        if isinstance(exc, ContractLogicError) and exc_type == ContractLogicError:
            message = exc.message.replace("revert: ", "").strip()
            if message in SAFE_ERROR_CODES:
                raise SafeLogicError(message) from exc

        # NOTE: Will raise `exc` by default because we did not return anything


class SafeClientException(ApeSafeCoordinatorException):
    pass


class ClientResponseError(SafeClientException):
    def __init__(self, endpoint_url: str, response: "Response", message: Optional[str] = None):
        self.endpoint_url = endpoint_url
        self.response = response
        message = message or f"Exception when calling '{endpoint_url}':\n{response.text}"
        super().__init__(message)
