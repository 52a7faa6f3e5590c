from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Annotated, Optional, Union

from ape.types import AddressType
from ape.utils import ZERO_ADDRESS
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from ape_safe_coordinator.types import (
    CallData,
    OperationType,
    SafeTxData,
    SafeTxHash,
    SafeTxSignature,
    UtcDatetime,
)
from ape_safe_coordinator.utils import checksum_address, normalize_hex

if TYPE_CHECKING:
    from ape_safe_coordinator.transfer import TransferDocument


def clean_api_address(data: Union[AddressType, dict]) -> AddressType:
    # NOTE: Safe API returns `{'value':'<addr>', ...}` object
    if isinstance(data, dict):
        return data["value"]
    return data


# NOTE: Validators run last-to-first, so the API object is unwrapped before checksumming
Address = Annotated[
    AddressType, BeforeValidator(checksum_address), BeforeValidator(clean_api_address)
]
OptionalHex = Annotated[
    Optional[str], BeforeValidator(lambda value: normalize_hex(value) if value else None)
]


class SignatureType(str, Enum):
    APPROVED_HASH = "APPROVED_HASH"
    CONTRACT_SIGNATURE = "CONTRACT_SIGNATURE"
    EOA = "EOA"
    ETH_SIGN = "ETH_SIGN"


class RemoteConfirmation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    owner: Address
    submission_date: UtcDatetime = Field(alias="submissionDate")
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    signature: OptionalHex = None
    signature_type: Optional[SignatureType] = Field(default=None, alias="signatureType")

    def to_signature(self) -> Optional[SafeTxSignature]:
        # NOTE: On-chain approvals (`approveHash`) have no signature bytes to share
        if not self.signature:
            return None

        return SafeTxSignature(
            signer=self.owner, signature=self.signature, signed_at=self.submission_date
        )


class RemoteProposal(BaseModel):
    """A multisig transaction as the Safe Transaction Service reports it."""

    model_config = ConfigDict(populate_by_name=True)

    safe: Address
    to: Address
    value: int
    data: CallData = "0x"
    operation: OperationType
    gas_token: Address = Field(default=ZERO_ADDRESS, alias="gasToken")
    safe_tx_gas: int = Field(default=0, alias="safeTxGas")
    base_gas: int = Field(default=0, alias="baseGas")
    gas_price: int = Field(default=0, alias="gasPrice")
    refund_receiver: Address = Field(default=ZERO_ADDRESS, alias="refundReceiver")
    nonce: int
    submission_date: UtcDatetime = Field(alias="submissionDate")
    safe_tx_hash: SafeTxHash = Field(alias="safeTxHash")
    proposer: Optional[Address] = None
    confirmations_required: Optional[int] = Field(default=None, alias="confirmationsRequired")
    confirmations: list[RemoteConfirmation] = []
    is_executed: bool = Field(default=False, alias="isExecuted")
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")

    @property
    def metadata(self) -> SafeTxData:
        return SafeTxData(
            to=self.to,
            value=self.value,
            data=self.data,
            operation=self.operation,
            safe_tx_gas=self.safe_tx_gas,
            base_gas=self.base_gas,
            gas_price=self.gas_price,
            gas_token=self.gas_token,
            refund_receiver=self.refund_receiver,
            nonce=self.nonce,
        )

    @property
    def signatures(self) -> list[SafeTxSignature]:
        signatures = []
        for confirmation in self.confirmations:
            if sig := confirmation.to_signature():
                signatures.append(sig)

        return signatures

    @property
    def signers(self) -> set[AddressType]:
        return {conf.owner for conf in self.confirmations}

    def to_document(self, chain_id: str) -> "TransferDocument":
        from ape_safe_coordinator.transfer import TransferDocument

        signatures = self.signatures
        created_by = self.proposer or (signatures[0].signer if signatures else self.safe)
        return TransferDocument(
            chain_id=chain_id,
            safe_tx_hash=self.safe_tx_hash,
            safe_address=self.safe,
            transaction=self.metadata,
            signatures=signatures,
            created_by=created_by,
            created_at=self.submission_date,
        )

    @classmethod
    def from_document(
        cls, document: "TransferDocument", submission_date: Optional[datetime] = None
    ) -> "RemoteProposal":
        tx = document.transaction
        return cls(
            safe=document.safe_address,
            submission_date=submission_date or document.created_at,
            safe_tx_hash=document.safe_tx_hash,
            proposer=document.created_by,
            confirmations=[
                RemoteConfirmation(
                    owner=sig.signer,
                    submission_date=sig.signed_at,
                    signature=sig.signature,
                    signature_type=SignatureType.EOA,
                )
                for sig in document.signatures
            ],
            **tx.model_dump(by_alias=True),
        )
