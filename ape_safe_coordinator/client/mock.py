from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Optional

from ape.types import AddressType

from ape_safe_coordinator.client.base import BaseProposalClient
from ape_safe_coordinator.client.types import RemoteConfirmation, RemoteProposal, SignatureType
from ape_safe_coordinator.exceptions import AlreadyExists, NotFound, SafeClientException
from ape_safe_coordinator.utils import normalize_safe_tx_hash, same_address, utc_now

if TYPE_CHECKING:
    from ape_safe_coordinator.transfer import TransferDocument
    from ape_safe_coordinator.types import SafeTxSignature


class MockProposalClient(BaseProposalClient):
    """
    An in-memory proposal service. Useful for tests and for working fully
    offline.
    """

    def __init__(self):
        super().__init__("mock://proposal-service")
        self.proposals: dict[str, RemoteProposal] = {}
        self.next_nonces: dict[AddressType, int] = {}
        self.write_count = 0

    def get_next_nonce(self, safe_address: AddressType) -> int:
        return self.next_nonces.get(safe_address, 0)

    def _all_proposals(self, safe_address: AddressType) -> Iterator[RemoteProposal]:
        matching = [p for p in self.proposals.values() if same_address(p.safe, safe_address)]
        yield from sorted(matching, key=lambda p: p.nonce, reverse=True)

    def propose_transaction(self, document: "TransferDocument"):
        if document.safe_tx_hash in self.proposals:
            raise AlreadyExists(document.safe_tx_hash, kind="Remote transaction")

        if not document.signatures:
            # NOTE: mimic real exception for mock testing purposes
            raise SafeClientException("At least one signature is required to propose.")

        self.write_count += 1
        self.proposals[document.safe_tx_hash] = RemoteProposal.from_document(
            document, submission_date=utc_now()
        )

    def add_signatures(self, safe_tx_hash: str, signatures: Iterable["SafeTxSignature"]):
        key = normalize_safe_tx_hash(safe_tx_hash)
        if not (proposal := self.proposals.get(key)):
            raise NotFound(key, kind="Remote transaction")

        for sig in signatures:
            if sig.signer in proposal.signers:
                continue

            self.write_count += 1
            proposal.confirmations.append(
                RemoteConfirmation(
                    owner=sig.signer,
                    submission_date=utc_now(),
                    signature=sig.signature,
                    signature_type=SignatureType.EOA,
                )
            )

    def mark_executed(self, safe_tx_hash: str, tx_hash: Optional[str] = None):
        """Pretend someone executed the proposal on chain."""
        key = normalize_safe_tx_hash(safe_tx_hash)
        proposal = self.proposals[key]
        self.proposals[key] = proposal.model_copy(
            update={"is_executed": True, "transaction_hash": tx_hash}
        )
        self.next_nonces[proposal.safe] = max(
            self.next_nonces.get(proposal.safe, 0), proposal.nonce + 1
        )
