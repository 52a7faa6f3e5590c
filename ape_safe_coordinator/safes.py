from collections.abc import Iterable
from typing import Optional

from ape.types import AddressType

from .exceptions import AlreadyExists, SafeNotFound
from .store import JsonFileStore
from .types import SafeAccountData, safe_key
from .utils import checksum_address


class SafeStore(JsonFileStore[SafeAccountData]):
    """Safes tracked on this machine, keyed by ``chainId:address``."""

    root_key = "safes"
    record_type = SafeAccountData

    def save(self, safe: SafeAccountData, overwrite: bool = False) -> SafeAccountData:
        with self.mutate() as records:
            if safe.key in records and not overwrite:
                raise AlreadyExists(safe.key, kind="Safe")

            records[safe.key] = safe

        return safe

    def get(self, address: str, chain_id: str) -> SafeAccountData:
        key = safe_key(checksum_address(address), str(chain_id))
        if safe := self._read().get(key):
            return safe

        raise SafeNotFound(key)

    def all(self, deployed: Optional[bool] = None) -> list[SafeAccountData]:
        return [
            safe
            for safe in self._read().values()
            if deployed is None or safe.deployed == deployed
        ]

    def update_membership(
        self, address: str, chain_id: str, owners: Iterable[AddressType], threshold: int
    ) -> SafeAccountData:
        """Refresh the cached owners and threshold with values read from the chain."""
        key = safe_key(checksum_address(address), str(chain_id))
        with self.mutate() as records:
            if key not in records:
                raise SafeNotFound(key)

            safe = records[key].model_copy(
                update={"owners": [checksum_address(o) for o in owners], "threshold": threshold}
            )
            records[key] = safe

        return safe

    def delete(self, address: str, chain_id: str):
        with self.mutate() as records:
            records.pop(safe_key(checksum_address(address), str(chain_id)), None)
