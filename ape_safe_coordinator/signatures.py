"""
Signature bookkeeping and threshold readiness.

Everything here is pure: callers fetch live owners and threshold (see
:class:`~ape_safe_coordinator.gateway.ChainGateway`) and pass them in, so
readiness is never computed from cached Safe membership.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from ape.types import AddressType
from eth_utils import to_int
from pydantic import BaseModel

from .types import SafeTxSignature, TxStatus
from .utils import checksum_address, utc_now

if TYPE_CHECKING:
    from .types import StoredTransaction


class Readiness(BaseModel):
    collected: int
    required: int
    ready: bool

    def __str__(self) -> str:
        return f"{self.collected}/{self.required}"


def add_signature(
    record: "StoredTransaction",
    signer: str,
    signature: str,
    signed_at: Optional[datetime] = None,
) -> "StoredTransaction":
    """
    Insert ``signer``'s signature, replacing any previous one from the same
    signer (re-signing never duplicates).
    """
    new_sig = SafeTxSignature(signer=signer, signature=signature, signed_at=signed_at or utc_now())
    signatures = list(record.signatures)
    for idx, sig in enumerate(signatures):
        if sig.signer == new_sig.signer:
            signatures[idx] = new_sig
            break

    else:
        signatures.append(new_sig)

    return record.model_copy(update={"signatures": signatures})


def merge_signatures(
    record: "StoredTransaction", signatures: Iterable[SafeTxSignature]
) -> tuple["StoredTransaction", list[AddressType]]:
    """
    Union ``signatures`` into the record. Signers already present keep their
    existing entry.

    Returns:
        The merged record and the signers that were not there before.
    """
    merged = list(record.signatures)
    known = {sig.signer for sig in merged}
    new_signers: list[AddressType] = []
    for sig in signatures:
        if sig.signer in known:
            continue

        merged.append(sig)
        known.add(sig.signer)
        new_signers.append(sig.signer)

    if not new_signers:
        return record, []

    return record.model_copy(update={"signatures": merged}), new_signers


def _owner_set(live_owners: Iterable[str]) -> set[str]:
    return {owner.lower() for owner in live_owners}


def compute_readiness(
    record: "StoredTransaction", live_owners: Iterable[str], live_threshold: int
) -> Readiness:
    """
    Count the signatures of current owners only. Signatures from removed (or
    never valid) owners are ignored.
    """
    owners = _owner_set(live_owners)
    collected = sum(1 for sig in record.signatures if sig.signer.lower() in owners)
    return Readiness(
        collected=collected, required=live_threshold, ready=collected >= live_threshold
    )


def derive_status(record: "StoredTransaction", readiness: Readiness) -> Optional[TxStatus]:
    """
    The status ``record`` should move to given ``readiness``, if any.
    Readiness only ever promotes ``pending`` to ``signed``.
    """
    if record.status == TxStatus.PENDING and readiness.ready:
        return TxStatus.SIGNED

    return None


def owner_signatures(
    record: "StoredTransaction", live_owners: Iterable[str]
) -> dict[AddressType, str]:
    """
    Signatures of current owners, ordered by signer as ``execTransaction`` expects.
    """
    owners = _owner_set(live_owners)
    by_signer = {
        checksum_address(sig.signer): sig.signature
        for sig in record.signatures
        if sig.signer.lower() in owners
    }
    ordered = sorted(by_signer, key=lambda signer: to_int(hexstr=signer))
    return {signer: by_signer[signer] for signer in ordered}
