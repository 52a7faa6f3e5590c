import json
import os
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Optional

from ape.types import AddressType
from ape.utils import USER_AGENT, get_package_version

from ape_safe_coordinator.addresses import SAFE_CLIENT_GATEWAY_URL, ChainRegistry
from ape_safe_coordinator.client.base import BaseProposalClient
from ape_safe_coordinator.client.mock import MockProposalClient
from ape_safe_coordinator.client.types import (
    RemoteConfirmation,
    RemoteProposal,
    SignatureType,
)
from ape_safe_coordinator.exceptions import (
    ApeSafeCoordinatorError,
    ClientResponseError,
    NotFound,
)

if TYPE_CHECKING:
    from requests import Response

    from ape_safe_coordinator.transfer import TransferDocument
    from ape_safe_coordinator.types import SafeTxSignature

APE_SAFE_COORDINATOR_VERSION = get_package_version(__name__)
APE_SAFE_COORDINATOR_USER_AGENT = (
    f"Ape-Safe-Coordinator/{APE_SAFE_COORDINATOR_VERSION} {USER_AGENT}"
)
# NOTE: Origin must be a string, but can be json that contains url & name fields
ORIGIN = json.dumps(
    dict(url="https://apeworx.io", name="Ape Safe Coordinator", ua=APE_SAFE_COORDINATOR_USER_AGENT)
)
assert len(ORIGIN) <= 200  # NOTE: Must be less than 200 chars


class SafeTransactionServiceClient(BaseProposalClient):
    def __init__(
        self,
        chain_id: str,
        chains: ChainRegistry,
        override_url: Optional[str] = None,
        timeout: int = 10,
    ) -> None:
        self.chain_id = str(chain_id)
        self.api_key = os.environ.get("APE_SAFE_GATEWAY_API_KEY")

        if override_url:
            base_url = override_url

        elif self.chain_id in chains and (url := chains[self.chain_id].transaction_service_url):
            if url.startswith(SAFE_CLIENT_GATEWAY_URL) and not self.api_key:
                raise ApeSafeCoordinatorError(
                    "Must provide API key via 'APE_SAFE_GATEWAY_API_KEY='."
                )

            base_url = url

        else:
            raise ApeSafeCoordinatorError(
                f"No Safe Transaction Service configured for chain '{self.chain_id}'."
            )

        super().__init__(base_url.rstrip("/"), timeout=timeout)

    def _request(self, method: str, url: str, json: Optional[dict] = None, **kwargs) -> "Response":
        # NOTE: Add authorization header
        if self.api_key:
            headers = kwargs.pop("headers", {})
            headers.update(dict(Authorization=f"Bearer {self.api_key}"))
            kwargs["headers"] = headers

        return super()._request(method, url, json=json, **kwargs)

    def get_next_nonce(self, safe_address: AddressType) -> int:
        response = self._get(f"/safes/{safe_address}/")
        return int(response.json()["nonce"])

    def _all_proposals(self, safe_address: AddressType) -> Iterator[RemoteProposal]:
        """
        Get all multisig transactions of the safe, both executed and pending,
        newest nonce first.
        """
        url = f"/safes/{safe_address}/multisig-transactions/"
        while url:
            response = self._get(url, api_version="v2")
            data = response.json()

            for txn in data.get("results", []):
                # NOTE: Entries without `isExecuted` are incoming transfers
                if "isExecuted" in txn:
                    yield RemoteProposal.model_validate(txn)

            url = data.get("next")

    def propose_transaction(self, document: "TransferDocument"):
        if not document.signatures:
            raise ApeSafeCoordinatorError(
                f"Transaction '{document.safe_tx_hash}' needs at least one signature to propose."
            )

        # NOTE: The service requires the sender to sign, prefer the proposer
        sender = next(
            (sig for sig in document.signatures if sig.signer == document.created_by),
            document.signatures[0],
        )
        post_dict: dict = {
            **document.transaction.model_dump(by_alias=True, mode="json"),
            "contractTransactionHash": document.safe_tx_hash,
            "sender": sender.signer,
            "signature": sender.signature,
            "origin": ORIGIN,
        }
        url = f"/safes/{document.safe_address}/multisig-transactions/"
        self._post(url, json=post_dict, api_version="v2")

        if others := [sig for sig in document.signatures if sig.signer != sender.signer]:
            self.add_signatures(document.safe_tx_hash, others)

    def add_signatures(self, safe_tx_hash: str, signatures: Iterable["SafeTxSignature"]):
        url = f"/multisig-transactions/{safe_tx_hash}/confirmations/"
        for sig in signatures:
            try:
                self._post(url, json={"signature": sig.signature})
            except ClientResponseError as err:
                if err.response.status_code == 404:
                    raise NotFound(safe_tx_hash, kind="Remote transaction") from err

                raise  # The error from BaseClient we are already raising (no changes)


__all__ = [
    "BaseProposalClient",
    "MockProposalClient",
    "RemoteConfirmation",
    "RemoteProposal",
    "SafeTransactionServiceClient",
    "SignatureType",
]
