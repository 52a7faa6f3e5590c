import json

import pytest

from ape_safe_coordinator.exceptions import ConflictingMetadata, InvalidDocument
from ape_safe_coordinator.transfer import (
    dumps_document,
    export_document,
    import_document,
    parse_document,
)
from ape_safe_coordinator.types import TxStatus

CHAIN_ID = "1"
WIRE_FIELDS = [
    "version",
    "chainId",
    "safeTxHash",
    "safeAddress",
    "transaction",
    "signatures",
    "createdBy",
    "createdAt",
]
TRANSACTION_FIELDS = [
    "to",
    "value",
    "data",
    "operation",
    "safeTxGas",
    "baseGas",
    "gasPrice",
    "gasToken",
    "refundReceiver",
    "nonce",
]


@pytest.fixture
def record(store, tx_hash, SAFE, owner_a, owner_b, metadata, sig):
    record = store.create(tx_hash(7), SAFE, CHAIN_ID, metadata(data="0xDEADBEEF"), owner_a)
    store.add_signature(record.safe_tx_hash, sig(owner_a, "1"))
    return store.add_signature(record.safe_tx_hash, sig(owner_b, "1"))


@pytest.fixture
def other_store(tmp_path):
    from ape_safe_coordinator.store import TransactionStore

    return TransactionStore(tmp_path / "other" / "transactions.json")


def test_export_field_order(record):
    document = export_document(record)
    assert list(document) == WIRE_FIELDS
    assert list(document["transaction"]) == TRANSACTION_FIELDS
    assert list(document["signatures"][0]) == ["signer", "signature", "signedAt"]
    assert document["version"] == 1
    assert document["transaction"]["data"] == "0xdeadbeef"
    assert document["transaction"]["value"] == "1"


def test_export_is_deterministic(record):
    assert dumps_document(record) == dumps_document(record)
    assert json.loads(dumps_document(record)) == export_document(record)


def test_round_trip(record, other_store):
    result = import_document(export_document(record), other_store)
    assert result.mode == "new"
    assert set(result.new_signers) == set(record.signers)
    assert export_document(other_store.get(record.safe_tx_hash)) == export_document(record)


def test_import_never_trusts_status(record, store, other_store):
    store.update_status(record.safe_tx_hash, TxStatus.SIGNED)
    import_document(dumps_document(store.get(record.safe_tx_hash)), other_store)
    assert other_store.get(record.safe_tx_hash).status == TxStatus.PENDING


def test_reimport_is_idempotent(record, other_store):
    text = dumps_document(record)
    import_document(text, other_store)
    before = other_store.path.read_text()

    result = import_document(text, other_store)
    assert result.mode == "merged"
    assert result.new_signers == []
    assert other_store.path.read_text() == before


def test_import_merges_new_signers(record, store, owner_c, sig):
    document = export_document(record)
    document["signatures"] = [sig(owner_c, "1").model_dump(mode="json", by_alias=True)]
    result = import_document(document, store)
    assert result.mode == "merged"
    assert result.new_signers == [owner_c]
    assert len(store.get(record.safe_tx_hash).signatures) == 3


def test_import_keeps_existing_signatures(record, store, owner_a, sig):
    document = export_document(record)
    document["signatures"] = [sig(owner_a, "replacement").model_dump(mode="json", by_alias=True)]
    assert import_document(document, store).new_signers == []
    stored = store.get(record.safe_tx_hash)
    assert stored.get_signature(owner_a) == record.get_signature(owner_a)


def test_conflicting_metadata(record, store):
    document = export_document(record)
    document["transaction"]["value"] = "2"
    before = store.path.read_text()
    with pytest.raises(ConflictingMetadata) as err:
        import_document(document, store)

    assert err.value.fields == ["transaction.value"]
    assert store.path.read_text() == before


def test_conflicting_safe(record, store, OTHER_SAFE):
    document = export_document(record)
    document["safeAddress"] = OTHER_SAFE
    with pytest.raises(ConflictingMetadata) as err:
        import_document(document, store)

    assert err.value.fields == ["safeAddress"]


@pytest.mark.parametrize(
    "mutate",
    [
        lambda d: d.pop("safeTxHash"),
        lambda d: d.update(safeTxHash="0x1234"),
        lambda d: d.update(safeAddress="0x" + "ab" * 19),
        lambda d: d.update(version=2),
        lambda d: d.update(unexpected=True),
        lambda d: d["transaction"].update(nonce=-1),
        lambda d: d["transaction"].update(data="0xabc"),
        lambda d: d["signatures"].append(dict(d["signatures"][0])),
        lambda d: d["signatures"][0].update(signature="not hex"),
        lambda d: d.update(createdAt="yesterday"),
    ],
)
def test_invalid_document(record, other_store, mutate):
    document = export_document(record)
    mutate(document)
    result = parse_document(document)
    assert not result.is_ok
    assert result.error

    with pytest.raises(InvalidDocument):
        import_document(document, other_store)

    assert not other_store.path.exists()


@pytest.mark.parametrize("raw", ["", "not json", "[]", "42", b"\xff"])
def test_invalid_input(raw):
    result = parse_document(raw)
    assert not result.is_ok
    with pytest.raises(InvalidDocument):
        result.unwrap()


def test_parse_accepts_numeric_chain_id(record):
    document = export_document(record)
    document["chainId"] = 1
    assert parse_document(document).unwrap().chain_id == "1"


def test_legacy_document(record, other_store, chains):
    from ape_safe_coordinator.addresses import format_address

    document = export_document(record)
    legacy = {
        "safeTxHash": document["safeTxHash"],
        "safe": format_address(record.safe_address, CHAIN_ID, chains),
        "chainId": document["chainId"],
        "safeAddress": document["safeAddress"],
        "metadata": document["transaction"],
        "signatures": document["signatures"],
        "createdBy": document["createdBy"],
        "createdAt": document["createdAt"],
    }
    result = import_document(json.dumps(legacy), other_store)
    assert result.mode == "new"
    assert export_document(other_store.get(record.safe_tx_hash)) == document
