from collections.abc import Iterator, Mapping
from typing import Optional

from ape.types import AddressType
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import InvalidAddress, UnknownChain
from .utils import checksum_address

# URL for the multichain client gateway
SAFE_CLIENT_GATEWAY_URL = "https://api.safe.global/tx-service"
# NOTE: EIP-3770 short names, keyed by chain ID
EIP3770_BLOCKCHAIN_NAMES_BY_CHAIN_ID = {
    "1": "eth",  # Ethereum Mainnet
    "11155111": "sep",  # Ethereum Sepolia
    "10": "oeth",  # Optimism Mainnet
    "42161": "arb1",  # Arbitrum One Mainnet
    "56": "bnb",  # Binance Smart Chain
    "146": "sonic",
    "5000": "mantle",
    "43114": "avax",
    "1313161554": "aurora",
    "8453": "base",  # Base Mainnet
    "84532": "basesep",  # Base Sepolia
    "42220": "celo",  # Celo Mainnet
    "100": "gno",  # Gnosis Chain
    "59144": "linea",  # Linea Mainnet
    "137": "pol",  # Polygon
    "534352": "scr",  # Scroll
    "130": "unichain",  # Unichain Mainnet
    "480": "wc",  # Worldchain Mainnet
    "324": "zksync",  # zkSync Mainnet
    "57073": "ink",  # Ink Mainnet
    "800094": "berachain",  # Berachain Mainnet
}
# NOTE: Prefix used when formatting an address on a chain without a short name
FALLBACK_PREFIX = "chain"


class ChainInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    short_name: str = Field(alias="shortName", min_length=1)
    name: str = ""
    transaction_service_url: Optional[str] = Field(default=None, alias="transactionServiceUrl")


class ChainRegistry(Mapping[str, ChainInfo]):
    """
    Chain IDs and their EIP-3770 short names.
    """

    def __init__(self, chains: Optional[Mapping[str, ChainInfo]] = None):
        self._chains: dict[str, ChainInfo] = dict(chains or {})

    @classmethod
    def default(cls, overrides: Optional[Mapping[str, ChainInfo]] = None) -> "ChainRegistry":
        chains = {
            chain_id: ChainInfo(
                short_name=short_name,
                transaction_service_url=f"{SAFE_CLIENT_GATEWAY_URL}/{short_name}/api",
            )
            for chain_id, short_name in EIP3770_BLOCKCHAIN_NAMES_BY_CHAIN_ID.items()
        }
        chains.update({str(k): v for k, v in (overrides or {}).items()})
        return cls(chains)

    def __getitem__(self, chain_id: str) -> ChainInfo:
        return self._chains[str(chain_id)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._chains)

    def __len__(self) -> int:
        return len(self._chains)

    def short_name_for(self, chain_id: str) -> Optional[str]:
        if chain := self._chains.get(str(chain_id)):
            return chain.short_name

        return None

    def chain_id_for(self, short_name: str) -> str:
        for chain_id, chain in self._chains.items():
            if chain.short_name == short_name:
                return chain_id

        raise UnknownChain(short_name)


class ChainQualifiedAddress(BaseModel):
    address: AddressType
    chain_id: Optional[str] = None
    """``None`` for a bare address given without a default chain."""


def parse_address(
    value: str, chains: ChainRegistry, default_chain_id: Optional[str] = None
) -> ChainQualifiedAddress:
    """
    Parse a bare address, an EIP-3770 ``shortName:address`` or the fallback
    ``chain:<chainId>:address`` form.

    Raises:
        :class:`~ape_safe_coordinator.exceptions.InvalidAddress`: When the
          address part is not a 20-byte hex value, or when a
          two-part prefix is not ``chain:<chainId>``.
        :class:`~ape_safe_coordinator.exceptions.UnknownChain`: When the short
          name is not in ``chains``.

    Args:
        value (str): The user input.
        chains (:class:`~ape_safe_coordinator.addresses.ChainRegistry`): Known chains.
        default_chain_id (Optional[str]): Chain to use for a bare address.

    Returns:
        :class:`~ape_safe_coordinator.addresses.ChainQualifiedAddress`
    """
    value = value.strip()
    if ":" not in value:
        return ChainQualifiedAddress(address=checksum_address(value), chain_id=default_chain_id)

    prefix, _, address = value.rpartition(":")
    if ":" in prefix:
        fallback, _, chain_id = prefix.partition(":")
        if fallback != FALLBACK_PREFIX or not chain_id.isdigit():
            raise InvalidAddress(value, f"expected '{FALLBACK_PREFIX}:<chainId>:' prefix")

        return ChainQualifiedAddress(address=checksum_address(address), chain_id=chain_id)

    # NOTE: Check the address first so a typo there is not reported as a bad chain
    checksummed = checksum_address(address)
    return ChainQualifiedAddress(address=checksummed, chain_id=chains.chain_id_for(prefix))


def format_address(address: str, chain_id: str, chains: ChainRegistry) -> str:
    checksummed = checksum_address(address)
    if short_name := chains.short_name_for(chain_id):
        return f"{short_name}:{checksummed}"

    return f"{FALLBACK_PREFIX}:{chain_id}:{checksummed}"
