from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Union

from ape.exceptions import ProviderNotConnectedError
from ape.types import AddressType, HexBytes
from ape.utils import ManagerAccessMixin
from eip712.common import SafeTxV1, SafeTxV2, create_safe_tx_def
from eip712.messages import calculate_hash
from eth_utils import to_hex

from .exceptions import ApeSafeCoordinatorError, NetworkError, handle_safe_logic_error
from .utils import checksum_address, encode_signatures

if TYPE_CHECKING:
    from ape.api import AccountAPI
    from ape.contracts import ContractInstance

    from .types import SafeTxData, StoredTransaction

SafeTx = Union[SafeTxV1, SafeTxV2]


class ChainGateway(ABC):
    """
    Everything the coordinator needs from a chain: live Safe membership,
    Safe transaction hashing, signing and submission.
    """

    @abstractmethod
    def get_owners(self, safe_address: AddressType, chain_id: str) -> list[AddressType]: ...

    @abstractmethod
    def get_threshold(self, safe_address: AddressType, chain_id: str) -> int: ...

    @abstractmethod
    def get_nonce(self, safe_address: AddressType, chain_id: str) -> int:
        """The nonce the next executed Safe transaction must use."""

    @abstractmethod
    def compute_safe_tx_hash(
        self, safe_address: AddressType, chain_id: str, metadata: "SafeTxData"
    ) -> str: ...

    @abstractmethod
    def sign(
        self,
        safe_address: AddressType,
        chain_id: str,
        metadata: "SafeTxData",
        account: "AccountAPI",
    ) -> str:
        """
        Sign the Safe transaction with ``account``, returning the 65-byte ``rsv``
        signature as hex.
        """

    @abstractmethod
    def submit(
        self,
        record: "StoredTransaction",
        signatures: Mapping[AddressType, str],
        submitter: "AccountAPI",
    ) -> str:
        """
        Call ``execTransaction`` with ``signatures`` and return the on-chain
        transaction hash once it is mined.
        """


class ApeChainGateway(ChainGateway, ManagerAccessMixin):
    """A :class:`ChainGateway` backed by the connected Ape provider."""

    @contextmanager
    def _connected(self, chain_id: str) -> Iterator[None]:
        try:
            connected_chain_id = str(self.provider.chain_id)
        except ProviderNotConnectedError as err:
            raise NetworkError(f"Not connected to a network: {err}") from err

        if connected_chain_id != str(chain_id):
            raise ApeSafeCoordinatorError(
                f"Connected to chain '{connected_chain_id}', "
                f"but the Safe is on chain '{chain_id}'."
            )

        yield

    def _contract(self, safe_address: AddressType, chain_id: str) -> "ContractInstance":
        with self._connected(chain_id):
            return self.chain_manager.contracts.instance_at(checksum_address(safe_address))

    def get_owners(self, safe_address: AddressType, chain_id: str) -> list[AddressType]:
        return [checksum_address(o) for o in self._contract(safe_address, chain_id).getOwners()]

    def get_threshold(self, safe_address: AddressType, chain_id: str) -> int:
        return int(self._contract(safe_address, chain_id).getThreshold())

    def get_nonce(self, safe_address: AddressType, chain_id: str) -> int:
        return int(self._contract(safe_address, chain_id).nonce())

    def _safe_tx(
        self, safe_address: AddressType, chain_id: str, metadata: "SafeTxData"
    ) -> SafeTx:
        contract = self._contract(safe_address, chain_id)
        safe_tx_def = create_safe_tx_def(
            version=str(contract.VERSION()),
            contract_address=contract.address,
            chain_id=int(chain_id),
        )
        fields = metadata.model_dump(by_alias=True)
        fields["data"] = HexBytes(metadata.data)
        fields["operation"] = int(metadata.operation)
        if issubclass(safe_tx_def, SafeTxV1):
            # NOTE: Safes before v1.0.0 call it `dataGas`
            fields["dataGas"] = fields.pop("baseGas")

        return safe_tx_def(**fields)

    def compute_safe_tx_hash(
        self, safe_address: AddressType, chain_id: str, metadata: "SafeTxData"
    ) -> str:
        safe_tx = self._safe_tx(safe_address, chain_id, metadata)
        return to_hex(calculate_hash(safe_tx.signable_message))

    def sign(
        self,
        safe_address: AddressType,
        chain_id: str,
        metadata: "SafeTxData",
        account: "AccountAPI",
    ) -> str:
        safe_tx = self._safe_tx(safe_address, chain_id, metadata)
        if not (signature := account.sign_message(safe_tx)):
            raise ApeSafeCoordinatorError(f"{account.address} did not sign the transaction.")

        return to_hex(signature.encode_rsv())

    @handle_safe_logic_error()
    def submit(
        self,
        record: "StoredTransaction",
        signatures: Mapping[AddressType, str],
        submitter: "AccountAPI",
    ) -> str:
        safe_tx = self._safe_tx(record.safe_address, record.chain_id, record.metadata)
        exec_args = list(safe_tx._body_["message"].values())[:-1]  # NOTE: Skip nonce
        contract = self._contract(record.safe_address, record.chain_id)
        receipt = contract.execTransaction(
            *exec_args, encode_signatures(signatures), sender=submitter
        )
        return to_hex(HexBytes(receipt.txn_hash))
