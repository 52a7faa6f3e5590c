from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Optional

from ape.types import AddressType
from ape.utils import ZERO_ADDRESS
from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
)

from .utils import checksum_address, normalize_hex, normalize_safe_tx_hash, same_address


def _as_utc(value: datetime) -> datetime:
    # NOTE: Documents from other tools may carry naive timestamps, assume UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)

    return value.astimezone(timezone.utc)


def _chain_id(value):
    # NOTE: Chain IDs are opaque strings, but other tools emit them as numbers
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)

    return value


Address = Annotated[AddressType, BeforeValidator(checksum_address)]
ChainId = Annotated[str, BeforeValidator(_chain_id), Field(min_length=1)]
HexData = Annotated[str, BeforeValidator(normalize_hex)]
CallData = Annotated[str, BeforeValidator(lambda value: normalize_hex(value or "0x"))]
SafeTxHash = Annotated[str, BeforeValidator(normalize_safe_tx_hash)]
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]
# NOTE: Wei amounts and gas values travel as decimal strings on the wire
WireInt = Annotated[int, Field(ge=0), PlainSerializer(str, return_type=str, when_used="json")]


class TxStatus(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"
    EXECUTED = "executed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (TxStatus.EXECUTED, TxStatus.REJECTED)


# NOTE: Allowed moves of the transaction state machine.
STATUS_TRANSITIONS: dict[TxStatus, set[TxStatus]] = {
    TxStatus.PENDING: {TxStatus.SIGNED, TxStatus.REJECTED},
    TxStatus.SIGNED: {TxStatus.EXECUTED},
    TxStatus.EXECUTED: set(),
    TxStatus.REJECTED: set(),
}


class OperationType(int, Enum):
    CALL = 0
    DELEGATECALL = 1


class SafeTxData(BaseModel):
    """The content of a Safe transaction, i.e. everything its hash commits to."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    to: Address
    value: WireInt = 0
    data: CallData = "0x"
    operation: OperationType = OperationType.CALL
    safe_tx_gas: WireInt = Field(default=0, alias="safeTxGas")
    base_gas: WireInt = Field(default=0, alias="baseGas")
    gas_price: WireInt = Field(default=0, alias="gasPrice")
    gas_token: Address = Field(default=ZERO_ADDRESS, alias="gasToken")
    refund_receiver: Address = Field(default=ZERO_ADDRESS, alias="refundReceiver")
    nonce: int = Field(ge=0)

    def differing_fields(self, other: "SafeTxData") -> list[str]:
        return [
            field.alias or name
            for name, field in type(self).model_fields.items()
            if getattr(self, name) != getattr(other, name)
        ]


class SafeTxSignature(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signer: Address
    signature: HexData
    signed_at: UtcDatetime = Field(alias="signedAt")


class StoredTransaction(BaseModel):
    """A Safe transaction proposal and the signatures collected for it so far."""

    model_config = ConfigDict(populate_by_name=True)

    safe_tx_hash: SafeTxHash = Field(alias="safeTxHash")
    safe_address: Address = Field(alias="safeAddress")
    chain_id: ChainId = Field(alias="chainId")
    metadata: SafeTxData
    status: TxStatus = TxStatus.PENDING
    signatures: list[SafeTxSignature] = []
    created_by: Address = Field(alias="createdBy")
    created_at: UtcDatetime = Field(alias="createdAt")
    executed_at: Optional[UtcDatetime] = Field(default=None, alias="executedAt")
    tx_hash: Optional[str] = Field(default=None, alias="txHash")

    remote_executed: bool = Field(default=False, alias="remoteExecuted")
    """Whether the remote service claims execution. Advisory only."""

    remote_tx_hash: Optional[str] = Field(default=None, alias="remoteTxHash")

    @property
    def signers(self) -> list[AddressType]:
        return [sig.signer for sig in self.signatures]

    def get_signature(self, signer: str) -> Optional[SafeTxSignature]:
        for sig in self.signatures:
            if same_address(sig.signer, signer):
                return sig

        return None

    def __str__(self) -> str:
        data = self.metadata.data
        if len(data) > 40:
            data = f"{data[:18]}....{data[-18:]}"

        return f"""Tx {self.safe_tx_hash}
   safe: {self.safe_address} (chain {self.chain_id})
  nonce: {self.metadata.nonce}
 status: {self.status.value}
     to: {self.metadata.to}
  value: {self.metadata.value}
   data: {data}
signers: {", ".join(self.signers) or "(none)"}
"""


class SafeAccountData(BaseModel):
    """Locally cached view of a Safe. Owners and threshold may be stale."""

    model_config = ConfigDict(populate_by_name=True)

    address: Address
    chain_id: ChainId = Field(alias="chainId")
    name: str = ""
    owners: list[Address] = []
    threshold: int = Field(default=0, ge=0)
    deployed: bool = True

    @property
    def key(self) -> str:
        return safe_key(self.address, self.chain_id)


def safe_key(address: str, chain_id: str) -> str:
    return f"{chain_id}:{address.lower()}"
