"""
Portable transaction documents for sharing a Safe transaction and its signatures
out of band (files, chat, QR codes...).
"""

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Literal, Optional, Union

from ape.logging import logger
from ape.types import AddressType
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConflictingMetadata, InvalidDocument
from .signatures import merge_signatures
from .types import (
    Address,
    ChainId,
    SafeTxData,
    SafeTxHash,
    SafeTxSignature,
    StoredTransaction,
    UtcDatetime,
)

if TYPE_CHECKING:
    from .store import TransactionStore

TRANSFER_DOCUMENT_VERSION = 1


class TransferDocument(BaseModel):
    # NOTE: Field order is the wire order, do not reorder.
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    version: Literal[1] = TRANSFER_DOCUMENT_VERSION
    chain_id: ChainId = Field(alias="chainId")
    safe_tx_hash: SafeTxHash = Field(alias="safeTxHash")
    safe_address: Address = Field(alias="safeAddress")
    transaction: SafeTxData
    signatures: list[SafeTxSignature] = []
    created_by: Address = Field(alias="createdBy")
    created_at: UtcDatetime = Field(alias="createdAt")

    @field_validator("signatures")
    def unique_signers(cls, value: list[SafeTxSignature]) -> list[SafeTxSignature]:
        signers = [sig.signer for sig in value]
        if len(set(signers)) != len(signers):
            raise ValueError("signers must be unique")

        return value

    @classmethod
    def from_record(cls, record: StoredTransaction) -> "TransferDocument":
        return cls(
            chain_id=record.chain_id,
            safe_tx_hash=record.safe_tx_hash,
            safe_address=record.safe_address,
            transaction=record.metadata,
            signatures=record.signatures,
            created_by=record.created_by,
            created_at=record.created_at,
        )

    def to_record(self) -> StoredTransaction:
        # NOTE: Status is never taken from a peer, every import starts `pending`
        return StoredTransaction(
            safe_tx_hash=self.safe_tx_hash,
            safe_address=self.safe_address,
            chain_id=self.chain_id,
            metadata=self.transaction,
            signatures=self.signatures,
            created_by=self.created_by,
            created_at=self.created_at,
        )


class ParseResult(BaseModel):
    """Either a valid document or the reason the input was rejected."""

    document: Optional[TransferDocument] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, document: TransferDocument) -> "ParseResult":
        return cls(document=document)

    @classmethod
    def err(cls, reason: str) -> "ParseResult":
        return cls(error=reason)

    @property
    def is_ok(self) -> bool:
        return self.document is not None

    def unwrap(self) -> TransferDocument:
        if self.document is None:
            raise InvalidDocument(self.error or "unknown error")

        return self.document


class ImportResult(BaseModel):
    safe_tx_hash: str
    mode: Literal["new", "merged"]
    new_signers: list[AddressType] = []


def _describe(err: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or '(document)'}: {error['msg']}"
        for error in err.errors()
    )


def _upgrade_legacy(data: dict) -> dict:
    # NOTE: Documents exported before versioning carry `metadata` and an EIP-3770 `safe`
    if "version" in data or "metadata" not in data:
        return data

    upgraded = {k: v for k, v in data.items() if k not in ("metadata", "safe")}
    upgraded["transaction"] = data["metadata"]
    upgraded["version"] = TRANSFER_DOCUMENT_VERSION
    return upgraded


def parse_document(raw: Union[str, bytes, Mapping[str, Any]]) -> ParseResult:
    """
    Parse and validate a transfer document without touching any store.

    Args:
        raw (Union[str, bytes, Mapping]): JSON text or an already-decoded object.

    Returns:
        :class:`~ape_safe_coordinator.transfer.ParseResult`
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as err:
            return ParseResult.err(f"not valid JSON ({err})")

    if not isinstance(raw, Mapping):
        return ParseResult.err("expected a JSON object")

    try:
        document = TransferDocument.model_validate(_upgrade_legacy(dict(raw)))
    except ValidationError as err:
        return ParseResult.err(_describe(err))

    return ParseResult.ok(document)


def export_document(record: StoredTransaction) -> dict:
    return TransferDocument.from_record(record).model_dump(mode="json", by_alias=True)


def dumps_document(record: StoredTransaction) -> str:
    return json.dumps(export_document(record), separators=(",", ":"))


def conflicting_fields(record: StoredTransaction, document: TransferDocument) -> list[str]:
    differing = record.metadata.differing_fields(document.transaction)
    fields = [f"transaction.{name}" for name in differing]
    if record.safe_address != document.safe_address:
        fields.append("safeAddress")

    if record.chain_id != document.chain_id:
        fields.append("chainId")

    return fields


def import_document(
    raw: Union[str, bytes, Mapping[str, Any], TransferDocument], store: "TransactionStore"
) -> ImportResult:
    """
    Add a transfer document to ``store``: a new record if the hash is unknown,
    otherwise a union of signatures.

    Raises:
        :class:`~ape_safe_coordinator.exceptions.InvalidDocument`: When the input
          is malformed. Nothing is written.
        :class:`~ape_safe_coordinator.exceptions.ConflictingMetadata`: When the
          stored transaction with the same hash has different content.

    Returns:
        :class:`~ape_safe_coordinator.transfer.ImportResult`: Including the
        signers this import added.
    """
    document = raw if isinstance(raw, TransferDocument) else parse_document(raw).unwrap()
    with store.mutate() as records:
        if (existing := records.get(document.safe_tx_hash)) is None:
            records[document.safe_tx_hash] = document.to_record()
            result = ImportResult(
                safe_tx_hash=document.safe_tx_hash,
                mode="new",
                new_signers=[sig.signer for sig in document.signatures],
            )

        else:
            if fields := conflicting_fields(existing, document):
                raise ConflictingMetadata(document.safe_tx_hash, fields)

            merged, new_signers = merge_signatures(existing, document.signatures)
            records[document.safe_tx_hash] = merged
            result = ImportResult(
                safe_tx_hash=document.safe_tx_hash, mode="merged", new_signers=new_signers
            )

    logger.info(
        f"Imported transaction '{result.safe_tx_hash}' ({result.mode}, "
        f"{len(result.new_signers)} new signature(s))."
    )
    return result
