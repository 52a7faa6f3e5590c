"""
Two-way synchronization between the local transaction store and a remote
proposal service.

Signatures only ever get added, on both sides. Status is never taken from the
remote service: it is derived locally from live owners and threshold read
through a :class:`~ape_safe_coordinator.gateway.ChainGateway`.
"""

import asyncio
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Optional

from ape.exceptions import ApeException
from ape.logging import logger
from ape.types import AddressType
from pydantic import BaseModel
from requests import RequestException

from .client import BaseProposalClient, RemoteProposal
from .exceptions import SafeClientException
from .signatures import compute_readiness, derive_status, merge_signatures
from .transfer import TransferDocument, conflicting_fields
from .types import TxStatus
from .utils import checksum_address, same_address

if TYPE_CHECKING:
    from .gateway import ChainGateway
    from .store import TransactionStore

OPEN_STATUSES = (TxStatus.PENDING, TxStatus.SIGNED)
# NOTE: Errors that fail one Safe's sync without stopping the others
ISOLATED_ERRORS = (ApeException, RequestException, ValueError)

SyncTarget = tuple[AddressType, str]
ClientFactory = Callable[[str], BaseProposalClient]


class PullResult(BaseModel):
    new: list[str] = []
    updated: list[str] = []
    unchanged: list[str] = []


class PushResult(BaseModel):
    proposed: list[str] = []
    updated: list[str] = []
    skipped: list[str] = []


class SyncReport(BaseModel):
    safe_address: AddressType
    chain_id: str
    pulled: Optional[PullResult] = None
    pushed: Optional[PushResult] = None
    promoted: list[str] = []
    error: Optional[str] = None
    error_kind: Optional[str] = None
    exit_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RemoteSnapshot(BaseModel):
    """Everything read from remote before any merge is applied."""

    proposals: list[RemoteProposal] = []
    next_nonce: int = 0
    owners: Optional[list[AddressType]] = None
    threshold: Optional[int] = None

    @property
    def has_membership(self) -> bool:
        return self.owners is not None and self.threshold is not None


class Synchronizer:
    def __init__(
        self,
        store: "TransactionStore",
        client_for: ClientFactory,
        gateway: Optional["ChainGateway"] = None,
    ):
        self.store = store
        self.client_for = client_for
        self.gateway = gateway

    def pull(self, safe_address: str, chain_id: str) -> PullResult:
        safe_address, chain_id = checksum_address(safe_address), str(chain_id)
        snapshot = self._fetch_snapshot(safe_address, chain_id)
        result = self._apply_pull(safe_address, chain_id, snapshot)
        self._promote(safe_address, chain_id, snapshot)
        return result

    def push(self, safe_address: str, chain_id: str) -> PushResult:
        safe_address, chain_id = checksum_address(safe_address), str(chain_id)
        snapshot = self._fetch_snapshot(safe_address, chain_id, with_membership=False)
        return self._apply_push(safe_address, chain_id, snapshot)

    def sync(
        self, targets: Iterable[tuple[str, str]], pull: bool = True, push: bool = True
    ) -> dict[SyncTarget, SyncReport]:
        return asyncio.run(self.sync_async(targets, pull=pull, push=push))

    async def sync_async(
        self, targets: Iterable[tuple[str, str]], pull: bool = True, push: bool = True
    ) -> dict[SyncTarget, SyncReport]:
        """
        Pull and/or push every ``(safe_address, chain_id)`` in ``targets``.

        Remote reads for all Safes run concurrently and are joined before any
        merge is applied. A Safe that fails is reported in its
        :class:`SyncReport` and the others carry on.
        """
        unique_targets: list[SyncTarget] = list(
            dict.fromkeys((checksum_address(a), str(c)) for a, c in targets)
        )
        reports = {
            target: SyncReport(safe_address=target[0], chain_id=target[1])
            for target in unique_targets
        }

        fetched = await asyncio.gather(
            *(asyncio.to_thread(self._fetch_snapshot, *target) for target in unique_targets),
            return_exceptions=True,
        )
        snapshots: dict[SyncTarget, RemoteSnapshot] = {}
        for target, snapshot in zip(unique_targets, fetched):
            if isinstance(snapshot, BaseException):
                self._fail(reports[target], snapshot)
            else:
                snapshots[target] = snapshot

        if pull:
            for target, snapshot in list(snapshots.items()):
                try:
                    reports[target].pulled = self._apply_pull(*target, snapshot)
                except ISOLATED_ERRORS as err:
                    self._fail(reports[target], err)
                    del snapshots[target]

        if push:
            pushed = await asyncio.gather(
                *(
                    asyncio.to_thread(self._apply_push, *target, snapshot)
                    for target, snapshot in snapshots.items()
                ),
                return_exceptions=True,
            )
            for (target, _), result in zip(list(snapshots.items()), pushed):
                if isinstance(result, BaseException):
                    self._fail(reports[target], result)
                    del snapshots[target]
                else:
                    reports[target].pushed = result

        for target, snapshot in snapshots.items():
            reports[target].promoted = self._promote(*target, snapshot)

        return reports

    def _fail(self, report: SyncReport, err: BaseException):
        if not isinstance(err, ISOLATED_ERRORS):
            raise err

        report.error = str(err)
        report.error_kind = type(err).__name__
        report.exit_code = getattr(err, "exit_code", 1)
        logger.warning(
            f"Sync of Safe '{report.safe_address}' (chain {report.chain_id}) failed: {err}"
        )

    def _fetch_snapshot(
        self, safe_address: AddressType, chain_id: str, with_membership: bool = True
    ) -> RemoteSnapshot:
        client = self.client_for(chain_id)
        next_nonce = client.get_next_nonce(safe_address)
        open_nonces = [
            record.metadata.nonce
            for record in self.store.list(safe_address, chain_id, statuses=OPEN_STATUSES)
        ]
        starting_nonce = min([next_nonce, *open_nonces])
        logger.debug(f"Fetching proposals for '{safe_address}' from nonce {starting_nonce}.")
        snapshot = RemoteSnapshot(
            proposals=client.list_proposals(safe_address, starting_nonce=starting_nonce),
            next_nonce=next_nonce,
        )
        if with_membership and self.gateway is not None:
            try:
                snapshot.owners = self.gateway.get_owners(safe_address, chain_id)
                snapshot.threshold = self.gateway.get_threshold(safe_address, chain_id)
            except ApeException as err:
                # NOTE: Without live membership statuses are left alone
                logger.warning(f"Unable to read owners of '{safe_address}': {err}")
                snapshot.owners = snapshot.threshold = None

        return snapshot

    def _apply_pull(
        self, safe_address: AddressType, chain_id: str, snapshot: RemoteSnapshot
    ) -> PullResult:
        result = PullResult()
        with self.store.mutate() as records:
            for proposal in snapshot.proposals:
                if not same_address(proposal.safe, safe_address):
                    continue

                key = proposal.safe_tx_hash
                if (existing := records.get(key)) is None:
                    if proposal.is_executed:
                        continue  # NOTE: Nothing left to coordinate

                    records[key] = proposal.to_document(chain_id).to_record()
                    result.new.append(key)
                    continue

                document = proposal.to_document(chain_id)
                if fields := conflicting_fields(existing, document):
                    logger.warning(
                        f"Remote transaction '{key}' differs from the local one "
                        f"({', '.join(fields)}), skipping."
                    )
                    result.unchanged.append(key)
                    continue

                merged, new_signers = merge_signatures(existing, document.signatures)
                if proposal.is_executed and (
                    not merged.remote_executed or merged.remote_tx_hash != proposal.transaction_hash
                ):
                    # NOTE: Advisory only, never moves the record to `executed`
                    merged = merged.model_copy(
                        update={
                            "remote_executed": True,
                            "remote_tx_hash": proposal.transaction_hash,
                        }
                    )

                records[key] = merged
                if new_signers:
                    result.updated.append(key)
                else:
                    result.unchanged.append(key)

        logger.info(
            f"Pulled '{safe_address}': {len(result.new)} new, {len(result.updated)} updated."
        )
        return result

    def _apply_push(
        self, safe_address: AddressType, chain_id: str, snapshot: RemoteSnapshot
    ) -> PushResult:
        result = PushResult()
        client = self.client_for(chain_id)
        remote = {proposal.safe_tx_hash: proposal for proposal in snapshot.proposals}
        for record in self.store.list(safe_address, chain_id, statuses=OPEN_STATUSES):
            key = record.safe_tx_hash
            try:
                if (proposal := remote.get(key)) is None:
                    if not record.signatures or record.metadata.nonce < snapshot.next_nonce:
                        result.skipped.append(key)
                        continue

                    client.propose_transaction(TransferDocument.from_record(record))
                    result.proposed.append(key)

                elif proposal.is_executed:
                    # NOTE: The service refuses confirmations once executed
                    result.skipped.append(key)

                elif missing := [s for s in record.signatures if s.signer not in proposal.signers]:
                    client.add_signatures(key, missing)
                    result.updated.append(key)

            except SafeClientException as err:
                # NOTE: The service rejected this one transaction, e.g. a bad signature
                logger.warning(f"Remote service rejected '{key}': {err}")
                result.skipped.append(key)

        logger.info(
            f"Pushed '{safe_address}': {len(result.proposed)} proposed, "
            f"{len(result.updated)} updated."
        )
        return result

    def _promote(
        self, safe_address: AddressType, chain_id: str, snapshot: RemoteSnapshot
    ) -> list[str]:
        if not snapshot.has_membership:
            return []

        promoted = []
        with self.store.mutate() as records:
            for key, record in records.items():
                if record.chain_id != chain_id or not same_address(
                    record.safe_address, safe_address
                ):
                    continue

                if record.remote_executed:
                    continue  # NOTE: Executed elsewhere, nothing left to collect

                readiness = compute_readiness(
                    record, snapshot.owners or [], snapshot.threshold or 0
                )
                if status := derive_status(record, readiness):
                    records[key] = record.model_copy(update={"status": status})
                    promoted.append(key)

        for key in promoted:
            logger.success(f"Transaction '{key}' has enough signatures to execute.")

        return promoted
