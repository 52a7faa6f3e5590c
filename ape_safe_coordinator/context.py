from collections.abc import Iterable
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from ape.exceptions import ApeException
from ape.logging import logger
from ape.types import AddressType
from ape.utils import ManagerAccessMixin

from .addresses import ChainQualifiedAddress, ChainRegistry, format_address, parse_address
from .client import BaseProposalClient, SafeTransactionServiceClient
from .exceptions import (
    ApeSafeCoordinatorError,
    InsufficientSignatures,
    InvalidTransition,
    NotAnOwner,
)
from .safes import SafeStore
from .signatures import Readiness, compute_readiness, derive_status, owner_signatures
from .store import TransactionStore
from .sync import ClientFactory, PullResult, PushResult, Synchronizer, SyncReport, SyncTarget
from .transfer import ImportResult, TransferDocument, export_document, import_document
from .types import (
    SafeAccountData,
    SafeTxData,
    SafeTxSignature,
    StoredTransaction,
    TxStatus,
)
from .utils import checksum_address, utc_now

if TYPE_CHECKING:
    from ape.api import AccountAPI

    from .config import CoordinatorConfig
    from .gateway import ChainGateway

TRANSACTIONS_FILE = "transactions.json"
SAFES_FILE = "safes.json"


class CoordinatorContext:
    """
    The stores, chain registry and collaborators of one process.

    Build it once (usually via :meth:`from_config`) and hand it to whatever needs
    it; nothing in this package keeps global state.
    """

    def __init__(
        self,
        store: TransactionStore,
        safes: SafeStore,
        chains: ChainRegistry,
        gateway: Optional["ChainGateway"] = None,
        client_for: Optional[ClientFactory] = None,
        transaction_service_url: Optional[str] = None,
        request_timeout: int = 10,
    ):
        self.store = store
        self.safes = safes
        self.chains = chains
        self.gateway = gateway
        self.transaction_service_url = transaction_service_url
        self.request_timeout = request_timeout
        self._client_for = client_for
        self._clients: dict[str, BaseProposalClient] = {}

    @classmethod
    def from_folder(cls, data_folder: Path, **kwargs) -> "CoordinatorContext":
        chains = kwargs.pop("chains", None) or ChainRegistry.default()
        return cls(
            TransactionStore(data_folder / TRANSACTIONS_FILE),
            SafeStore(data_folder / SAFES_FILE),
            chains,
            **kwargs,
        )

    @classmethod
    def from_config(cls, config: Optional["CoordinatorConfig"] = None) -> "CoordinatorContext":
        from .gateway import ApeChainGateway

        access = ManagerAccessMixin
        if config is None:
            config = access.config_manager.get_config("safe_coordinator")

        data_folder = config.data_folder or access.config_manager.DATA_FOLDER / "safe-coordinator"
        return cls.from_folder(
            data_folder,
            chains=ChainRegistry.default(config.chains),
            gateway=ApeChainGateway(),
            transaction_service_url=config.transaction_service_url,
            request_timeout=config.request_timeout,
        )

    def client_for(self, chain_id: str) -> BaseProposalClient:
        chain_id = str(chain_id)
        if self._client_for is not None:
            return self._client_for(chain_id)

        if chain_id not in self._clients:
            self._clients[chain_id] = SafeTransactionServiceClient(
                chain_id,
                self.chains,
                override_url=self.transaction_service_url,
                timeout=self.request_timeout,
            )

        return self._clients[chain_id]

    @cached_property
    def synchronizer(self) -> Synchronizer:
        return Synchronizer(self.store, self.client_for, gateway=self.gateway)

    def _require_gateway(self) -> "ChainGateway":
        if self.gateway is None:
            raise ApeSafeCoordinatorError("This operation needs a chain gateway.")

        return self.gateway

    """Addresses"""

    def parse_address(
        self, value: str, default_chain_id: Optional[str] = None
    ) -> ChainQualifiedAddress:
        return parse_address(value, self.chains, default_chain_id=default_chain_id)

    def format_address(self, address: str, chain_id: str) -> str:
        return format_address(address, chain_id, self.chains)

    """Transactions"""

    def next_nonce(self, safe_address: str, chain_id: str) -> int:
        return self._require_gateway().get_nonce(checksum_address(safe_address), str(chain_id))

    def create_transaction(
        self,
        safe_address: str,
        chain_id: str,
        metadata: SafeTxData,
        created_by: str,
        safe_tx_hash: Optional[str] = None,
    ) -> StoredTransaction:
        """
        Store a new proposal. The hash is computed through the gateway unless
        ``safe_tx_hash`` is given.
        """
        safe_address = checksum_address(safe_address)
        if safe_tx_hash is None:
            safe_tx_hash = self._require_gateway().compute_safe_tx_hash(
                safe_address, str(chain_id), metadata
            )

        record = self.store.create(
            safe_tx_hash, safe_address, str(chain_id), metadata, checksum_address(created_by)
        )
        logger.info(f"Created transaction '{record.safe_tx_hash}'.")
        return record

    def add_signature(self, safe_tx_hash: str, signer: str, signature: str) -> StoredTransaction:
        record = self.store.get(safe_tx_hash)
        if record.status.is_terminal:
            raise InvalidTransition(record.safe_tx_hash, record.status.value, "signed")

        return self.store.add_signature(
            record.safe_tx_hash,
            SafeTxSignature(signer=signer, signature=signature, signed_at=utc_now()),
        )

    def sign_transaction(self, safe_tx_hash: str, account: "AccountAPI") -> StoredTransaction:
        """
        Sign with ``account``, which must be a live owner, and promote the record
        to ``signed`` once the threshold is met.
        """
        gateway = self._require_gateway()
        record = self.store.get(safe_tx_hash)
        owners = gateway.get_owners(record.safe_address, record.chain_id)
        if account.address.lower() not in {o.lower() for o in owners}:
            raise NotAnOwner(account.address, record.safe_address)

        signature = gateway.sign(record.safe_address, record.chain_id, record.metadata, account)
        record = self.add_signature(record.safe_tx_hash, account.address, signature)
        logger.success(f"Signed transaction '{record.safe_tx_hash}' as {account.address}.")
        threshold = gateway.get_threshold(record.safe_address, record.chain_id)
        return self._promote(record, owners, threshold)

    def get_transaction(self, safe_tx_hash: str) -> StoredTransaction:
        return self.store.get(safe_tx_hash)

    def list_transactions(
        self,
        safe_address: Optional[str] = None,
        chain_id: Optional[str] = None,
        statuses: Optional[Iterable[Union[TxStatus, str]]] = None,
    ) -> list[StoredTransaction]:
        return self.store.list(
            safe_address=safe_address,
            chain_id=chain_id,
            statuses=[TxStatus(s) for s in statuses] if statuses is not None else None,
        )

    def transaction_status(self, safe_tx_hash: str) -> Readiness:
        """Readiness against the live owners and threshold."""
        gateway = self._require_gateway()
        record = self.store.get(safe_tx_hash)
        return compute_readiness(
            record,
            gateway.get_owners(record.safe_address, record.chain_id),
            gateway.get_threshold(record.safe_address, record.chain_id),
        )

    def refresh_status(self, safe_tx_hash: str) -> StoredTransaction:
        gateway = self._require_gateway()
        record = self.store.get(safe_tx_hash)
        return self._promote(
            record,
            gateway.get_owners(record.safe_address, record.chain_id),
            gateway.get_threshold(record.safe_address, record.chain_id),
        )

    def _promote(
        self, record: StoredTransaction, owners: list[AddressType], threshold: int
    ) -> StoredTransaction:
        if status := derive_status(record, compute_readiness(record, owners, threshold)):
            return self.store.update_status(record.safe_tx_hash, status)

        return record

    """Transfer"""

    def export_transaction(self, safe_tx_hash: str) -> dict:
        return export_document(self.store.get(safe_tx_hash))

    def import_transaction(self, raw: Union[str, bytes, dict, TransferDocument]) -> ImportResult:
        return import_document(raw, self.store)

    """Sync"""

    def pull_transactions(self, safe_address: str, chain_id: str) -> PullResult:
        return self.synchronizer.pull(safe_address, chain_id)

    def push_transactions(self, safe_address: str, chain_id: str) -> PushResult:
        return self.synchronizer.push(safe_address, chain_id)

    def sync_transactions(
        self,
        targets: Optional[Iterable[tuple[str, str]]] = None,
        pull: bool = True,
        push: bool = True,
    ) -> dict[SyncTarget, SyncReport]:
        """
        Sync ``targets``, or every deployed Safe in the local cache when omitted.
        """
        if targets is None:
            targets = [(safe.address, safe.chain_id) for safe in self.safes.all(deployed=True)]

        return self.synchronizer.sync(targets, pull=pull, push=push)

    """Execution"""

    def execute_transaction(self, safe_tx_hash: str, submitter: "AccountAPI") -> StoredTransaction:
        """
        Submit the transaction on chain with ``submitter`` paying for gas.

        Raises:
            :class:`~ape_safe_coordinator.exceptions.InvalidTransition`: When the
              transaction was already executed or rejected.
            :class:`~ape_safe_coordinator.exceptions.NotAnOwner`: When
              ``submitter`` is not a live owner.
            :class:`~ape_safe_coordinator.exceptions.InsufficientSignatures`: When
              too few live owners signed.

        Returns:
            :class:`~ape_safe_coordinator.types.StoredTransaction`: The ``executed``
            record.
        """
        gateway = self._require_gateway()
        record = self.store.get(safe_tx_hash)
        if record.status.is_terminal:
            raise InvalidTransition(
                record.safe_tx_hash, record.status.value, TxStatus.EXECUTED.value
            )

        owners = gateway.get_owners(record.safe_address, record.chain_id)
        threshold = gateway.get_threshold(record.safe_address, record.chain_id)
        if submitter.address.lower() not in {o.lower() for o in owners}:
            raise NotAnOwner(submitter.address, record.safe_address)

        readiness = compute_readiness(record, owners, threshold)
        if not readiness.ready:
            raise InsufficientSignatures(readiness.required, readiness.collected)

        tx_hash = gateway.submit(record, owner_signatures(record, owners), submitter)
        if record.status == TxStatus.PENDING:
            self.store.update_status(record.safe_tx_hash, TxStatus.SIGNED)

        record = self.store.update_status(record.safe_tx_hash, TxStatus.EXECUTED, tx_hash=tx_hash)
        logger.success(f"Executed transaction '{record.safe_tx_hash}' in '{tx_hash}'.")
        return record

    def reject_transaction(self, safe_tx_hash: str, owner: "AccountAPI") -> StoredTransaction:
        """Mark a ``pending`` transaction ``rejected`` on behalf of a live owner."""
        gateway = self._require_gateway()
        record = self.store.get(safe_tx_hash)
        owners = gateway.get_owners(record.safe_address, record.chain_id)
        if owner.address.lower() not in {o.lower() for o in owners}:
            raise NotAnOwner(owner.address, record.safe_address)

        record = self.store.update_status(record.safe_tx_hash, TxStatus.REJECTED)
        logger.info(f"Rejected transaction '{record.safe_tx_hash}'.")
        return record

    """Tracked Safes"""

    def track_safe(self, safe_address: str, chain_id: str, name: str = "") -> SafeAccountData:
        """
        Remember a Safe locally so ``sync_transactions`` picks it up. Owners and
        threshold are cached from the chain when a gateway can read them.
        """
        safe = SafeAccountData(address=safe_address, chain_id=chain_id, name=name)
        if self.gateway is not None:
            try:
                owners = self.gateway.get_owners(safe.address, safe.chain_id)
                threshold = self.gateway.get_threshold(safe.address, safe.chain_id)
            except ApeException as err:
                logger.warning(f"Unable to read owners of '{safe.address}': {err}")
            else:
                safe = safe.model_copy(update={"owners": owners, "threshold": threshold})

        return self.safes.save(safe)

    def untrack_safe(self, safe_address: str, chain_id: str):
        safe = self.safes.get(safe_address, chain_id)
        self.safes.delete(safe.address, safe.chain_id)
