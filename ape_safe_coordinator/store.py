import json
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import ClassVar, Generic, Optional, TypeVar

from ape.logging import logger
from ape.types import AddressType
from pydantic import BaseModel, TypeAdapter, ValidationError

from .exceptions import AlreadyExists, ApeSafeCoordinatorError, InvalidTransition, NotFound
from .signatures import add_signature, merge_signatures
from .types import (
    STATUS_TRANSITIONS,
    SafeTxData,
    SafeTxSignature,
    StoredTransaction,
    TxStatus,
)
from .utils import normalize_safe_tx_hash, same_address, utc_now, write_json_atomic

RecordT = TypeVar("RecordT", bound=BaseModel)


class JsonFileStore(Generic[RecordT]):
    """
    A whole-file JSON key-value store.

    Every mutation re-reads the file, applies the change and rewrites the whole
    file atomically. Concurrent processes are last-writer-wins.
    """

    root_key: ClassVar[str]
    record_type: ClassVar[type[BaseModel]]

    def __init__(self, path: Path):
        self.path = path
        self._adapter = TypeAdapter(dict[str, self.record_type])  # type: ignore[name-defined]

    def _read(self) -> dict[str, RecordT]:
        if not self.path.is_file():
            return {}

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            return self._adapter.validate_python(raw.get(self.root_key, {}))

        except (json.JSONDecodeError, ValidationError, AttributeError) as err:
            raise ApeSafeCoordinatorError(f"Store '{self.path}' is corrupted: {err}") from err

    def _dump(self, records: dict[str, RecordT]) -> dict:
        return {
            self.root_key: {
                key: record.model_dump(mode="json", by_alias=True)
                for key, record in records.items()
            }
        }

    def _write(self, data: dict):
        logger.debug(f"Writing '{self.path}'.")
        write_json_atomic(self.path, data)

    @contextmanager
    def mutate(self) -> Iterator[dict[str, RecordT]]:
        """
        Read the latest records, let the caller change them, and persist the
        result. Nothing is written if the block raises or changes nothing.
        """
        records = self._read()
        before = self._dump(records)
        yield records
        after = self._dump(records)
        if after != before:
            self._write(after)


class TransactionStore(JsonFileStore[StoredTransaction]):
    root_key = "transactions"
    record_type = StoredTransaction

    def __contains__(self, safe_tx_hash: str) -> bool:
        try:
            key = normalize_safe_tx_hash(safe_tx_hash)
        except ValueError:
            return False

        return key in self._read()

    def create(
        self,
        safe_tx_hash: str,
        safe_address: AddressType,
        chain_id: str,
        metadata: SafeTxData,
        created_by: AddressType,
        created_at: Optional[datetime] = None,
    ) -> StoredTransaction:
        """
        Store a new ``pending`` transaction with no signatures.

        Raises:
            :class:`~ape_safe_coordinator.exceptions.AlreadyExists`: When the
              hash is already stored.
        """
        record = StoredTransaction(
            safe_tx_hash=safe_tx_hash,
            safe_address=safe_address,
            chain_id=str(chain_id),
            metadata=metadata,
            created_by=created_by,
            created_at=created_at or utc_now(),
        )
        with self.mutate() as records:
            if record.safe_tx_hash in records:
                raise AlreadyExists(record.safe_tx_hash)

            records[record.safe_tx_hash] = record

        return record

    def get(self, safe_tx_hash: str) -> StoredTransaction:
        key = self._key(safe_tx_hash)
        if record := self._read().get(key):
            return record

        raise NotFound(key)

    def update_status(
        self, safe_tx_hash: str, status: TxStatus, tx_hash: Optional[str] = None
    ) -> StoredTransaction:
        """
        Move a transaction through ``pending -> signed -> executed`` or
        ``pending -> rejected``.

        Raises:
            :class:`~ape_safe_coordinator.exceptions.InvalidTransition`: When the
              move is not allowed, including any move out of a terminal status.
        """
        status = TxStatus(status)
        with self._mutate_one(safe_tx_hash) as record:
            if record.status == status and not status.is_terminal:
                return record

            if status not in STATUS_TRANSITIONS[record.status]:
                raise InvalidTransition(record.safe_tx_hash, record.status.value, status.value)

            record.status = status
            if status == TxStatus.EXECUTED:
                record.executed_at = utc_now()
                record.tx_hash = tx_hash

        logger.debug(f"Transaction '{record.safe_tx_hash}' is now '{status.value}'.")
        return record

    def add_signature(self, safe_tx_hash: str, signature: SafeTxSignature) -> StoredTransaction:
        with self._mutate_one(safe_tx_hash) as record:
            updated = add_signature(
                record, signature.signer, signature.signature, signed_at=signature.signed_at
            )
            record.signatures = updated.signatures

        return record

    def merge_signatures(
        self, safe_tx_hash: str, signatures: Iterable[SafeTxSignature]
    ) -> list[AddressType]:
        with self._mutate_one(safe_tx_hash) as record:
            updated, new_signers = merge_signatures(record, signatures)
            record.signatures = updated.signatures

        return new_signers

    def delete(self, safe_tx_hash: str):
        with self.mutate() as records:
            records.pop(self._key(safe_tx_hash), None)

    @contextmanager
    def _mutate_one(self, safe_tx_hash: str) -> Iterator[StoredTransaction]:
        key = self._key(safe_tx_hash)
        with self.mutate() as records:
            if key not in records:
                raise NotFound(key)

            yield records[key]

    def _key(self, safe_tx_hash: str) -> str:
        try:
            return normalize_safe_tx_hash(safe_tx_hash)
        except ValueError:
            # NOTE: Anything that is not a hash can never be stored
            raise NotFound(safe_tx_hash) from None

    # NOTE: Defined last so `list` annotations above still refer to the builtin
    def list(
        self,
        safe_address: Optional[str] = None,
        chain_id: Optional[str] = None,
        statuses: Optional[Iterable[TxStatus]] = None,
    ) -> list[StoredTransaction]:
        wanted = {TxStatus(s) for s in statuses} if statuses is not None else None
        records = [
            record
            for record in self._read().values()
            if (safe_address is None or same_address(record.safe_address, safe_address))
            and (chain_id is None or record.chain_id == str(chain_id))
            and (wanted is None or record.status in wanted)
        ]
        return sorted(records, key=lambda r: (r.created_at, r.safe_tx_hash))
