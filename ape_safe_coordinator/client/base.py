from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from functools import cached_property
from typing import TYPE_CHECKING, Optional

import requests
from ape.logging import logger
from ape.types import AddressType
from requests.adapters import HTTPAdapter

from ape_safe_coordinator.client.types import RemoteProposal
from ape_safe_coordinator.exceptions import ClientResponseError, NetworkError

if TYPE_CHECKING:
    from requests import Response

    from ape_safe_coordinator.transfer import TransferDocument
    from ape_safe_coordinator.types import SafeTxSignature

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}
# NOTE: Status codes worth retrying later rather than treating as a rejection
RETRYABLE_STATUS_CODES = {408, 425, 429}


class BaseProposalClient(ABC):
    def __init__(self, base_url: str, timeout: int = 10):
        self.base_url = base_url
        self.timeout = timeout

    """Abstract methods"""

    @abstractmethod
    def get_next_nonce(self, safe_address: AddressType) -> int: ...

    @abstractmethod
    def _all_proposals(self, safe_address: AddressType) -> Iterator[RemoteProposal]: ...

    @abstractmethod
    def propose_transaction(self, document: "TransferDocument"): ...

    @abstractmethod
    def add_signatures(self, safe_tx_hash: str, signatures: Iterable["SafeTxSignature"]): ...

    """Shared methods"""

    def list_proposals(
        self, safe_address: AddressType, starting_nonce: int = 0
    ) -> list[RemoteProposal]:
        """
        All proposals for ``safe_address`` with a nonce of at least ``starting_nonce``,
        executed or not.
        """
        proposals = []

        # NOTE: We loop backwards.
        for proposal in self._all_proposals(safe_address):
            if proposal.nonce < starting_nonce:
                break  # NOTE: order is largest nonce to smallest, so safe to break here

            proposals.append(proposal)

        return proposals

    """Request methods"""

    @cached_property
    def session(self) -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(
            pool_connections=10,  # Doing all the connections to the same url
            pool_maxsize=100,  # Number of concurrent connections
            pool_block=False,
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _get(self, url: str, params: Optional[dict] = None, **kwargs) -> "Response":
        return self._request("GET", url, params=params, **kwargs)

    def _post(self, url: str, json: Optional[dict] = None, **kwargs) -> "Response":
        return self._request("POST", url, json=json, **kwargs)

    def _request(self, method: str, url: str, json: Optional[dict] = None, **kwargs) -> "Response":
        api_version = kwargs.pop("api_version", "v1")

        # NOTE: paged requests include full url already
        if url.startswith(self.base_url):
            api_url = url

        else:
            api_url = f"{self.base_url}/{api_version}{url}"

        do_fail = not kwargs.pop("allow_failure", False)

        # Use `or` to handle when None is explicit.
        kwargs["timeout"] = kwargs.get("timeout") or self.timeout

        # Add default headers
        headers = kwargs.get("headers", {})
        kwargs["headers"] = {**DEFAULT_HEADERS, **headers}
        logger.debug(f"{method} {api_url}")
        try:
            response = self.session.request(method, api_url, json=json, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as err:
            raise NetworkError(f"Request to '{api_url}' failed: {err}") from err

        if not response.ok and do_fail:
            if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
                raise NetworkError(
                    f"Request to '{api_url}' failed with status {response.status_code}."
                )

            raise ClientResponseError(api_url, response)

        return response
