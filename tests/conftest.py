import json
from types import SimpleNamespace
from typing import Optional

import pytest
from cchecksum import to_checksum_address
from eth_utils import keccak, to_hex

from ape_safe_coordinator.addresses import ChainRegistry
from ape_safe_coordinator.client import MockProposalClient
from ape_safe_coordinator.context import CoordinatorContext
from ape_safe_coordinator.exceptions import NetworkError
from ape_safe_coordinator.gateway import ChainGateway
from ape_safe_coordinator.safes import SafeStore
from ape_safe_coordinator.store import TransactionStore
from ape_safe_coordinator.types import SafeTxData, SafeTxSignature
from ape_safe_coordinator.utils import utc_now

CHAIN_ID = "1"


class FakeGateway(ChainGateway):
    """Membership and signing without a chain."""

    def __init__(self, owners, threshold: int):
        self.owners = list(owners)
        self.threshold = threshold
        self.nonce = 0
        self.submitted: list[tuple[str, dict, str]] = []
        self.fail_reads = False

    def get_owners(self, safe_address, chain_id):
        if self.fail_reads:
            raise NetworkError("chain unreachable")

        return list(self.owners)

    def get_threshold(self, safe_address, chain_id):
        if self.fail_reads:
            raise NetworkError("chain unreachable")

        return self.threshold

    def get_nonce(self, safe_address, chain_id):
        if self.fail_reads:
            raise NetworkError("chain unreachable")

        return self.nonce

    def compute_safe_tx_hash(self, safe_address, chain_id, metadata):
        content = json.dumps(
            [safe_address, chain_id, metadata.model_dump(mode="json", by_alias=True)]
        )
        return to_hex(keccak(text=content))

    def sign(self, safe_address, chain_id, metadata, account):
        safe_tx_hash = self.compute_safe_tx_hash(safe_address, chain_id, metadata)
        return make_signature(account.address, safe_tx_hash)

    def submit(self, record, signatures, submitter):
        self.submitted.append((record.safe_tx_hash, dict(signatures), submitter.address))
        return to_hex(keccak(text=f"exec:{record.safe_tx_hash}"))


class FlakyProposalClient(MockProposalClient):
    """Fails every request while ``offline`` is set."""

    def __init__(self):
        super().__init__()
        self.offline = False

    def get_next_nonce(self, safe_address):
        if self.offline:
            raise NetworkError("Request to 'mock://proposal-service' timed out.")

        return super().get_next_nonce(safe_address)


def make_address(seed: int) -> str:
    return to_checksum_address(f"0x{to_hex(keccak(text=f'address-{seed}'))[-40:]}")


def make_signature(signer: str, safe_tx_hash: str) -> str:
    digest = keccak(text=f"{signer.lower()}:{safe_tx_hash}")
    return to_hex(digest + digest + b"\x1b")


def make_hash(seed: int) -> str:
    return f"0x{seed:064x}"


@pytest.fixture(scope="session")
def OWNERS():
    return [make_address(i) for i in range(3)]


@pytest.fixture(scope="session")
def owner_a(OWNERS):
    return OWNERS[0]


@pytest.fixture(scope="session")
def owner_b(OWNERS):
    return OWNERS[1]


@pytest.fixture(scope="session")
def owner_c(OWNERS):
    return OWNERS[2]


@pytest.fixture(scope="session")
def stranger():
    return make_address(99)


@pytest.fixture(scope="session")
def SAFE():
    return make_address(1000)


@pytest.fixture(scope="session")
def OTHER_SAFE():
    return make_address(1001)


@pytest.fixture(scope="session")
def receiver():
    return make_address(2000)


@pytest.fixture(scope="session")
def chains():
    return ChainRegistry.default()


@pytest.fixture
def store(tmp_path):
    return TransactionStore(tmp_path / "transactions.json")


@pytest.fixture
def safes(tmp_path):
    return SafeStore(tmp_path / "safes.json")


@pytest.fixture
def gateway(OWNERS):
    return FakeGateway(OWNERS, threshold=2)


@pytest.fixture
def client():
    return FlakyProposalClient()


@pytest.fixture
def metadata(receiver):
    def factory(nonce: int = 0, value: int = 1, data: Optional[str] = None) -> SafeTxData:
        return SafeTxData(to=receiver, value=value, data=data or "0x", nonce=nonce)

    return factory


@pytest.fixture
def account():
    def factory(address: str):
        return SimpleNamespace(address=address)

    return factory


@pytest.fixture
def coordinator(tmp_path, chains, gateway, client):
    return CoordinatorContext.from_folder(
        tmp_path, chains=chains, gateway=gateway, client_for=lambda chain_id: client
    )


@pytest.fixture
def new_record(coordinator, SAFE, owner_a, metadata):
    def factory(nonce: int = 0, created_by: Optional[str] = None, **kwargs):
        return coordinator.create_transaction(
            SAFE, CHAIN_ID, metadata(nonce=nonce, **kwargs), created_by or owner_a
        )

    return factory


@pytest.fixture(scope="session")
def signature_for():
    return make_signature


@pytest.fixture(scope="session")
def tx_hash():
    return make_hash


@pytest.fixture
def sig(signature_for):
    def factory(signer: str, content: str) -> SafeTxSignature:
        return SafeTxSignature(
            signer=signer, signature=signature_for(signer, content), signed_at=utc_now()
        )

    return factory
