import json

import pytest

from ape_safe_coordinator.exceptions import InvalidDocument, NetworkError, NotFound
from ape_safe_coordinator.types import TxStatus

CHAIN_ID = "1"


@pytest.mark.parametrize(
    "subcommand",
    [
        "add",
        "remove",
        "safes",
        "list",
        "show",
        "create",
        "status",
        "export",
        "import",
        "pull",
        "push",
        "sync",
        "sign",
        "execute",
        "reject",
    ],
)
def test_help(runner, cli, subcommand):
    result = runner.invoke(cli, [subcommand, "--help"], catch_exceptions=False)
    assert result.exit_code == 0, result.output


def test_list_empty(runner, cli):
    result = runner.invoke(cli, ["list"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "No transactions found" in result.output


def test_list(runner, cli, new_record, SAFE):
    first = new_record(nonce=0)
    second = new_record(nonce=1)
    result = runner.invoke(cli, ["list"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert first.safe_tx_hash in result.output
    assert second.safe_tx_hash in result.output
    assert f"eth:{SAFE}" in result.output


def test_list_filters(runner, cli, coordinator, new_record, SAFE):
    pending = new_record(nonce=0)
    signed = new_record(nonce=1)
    coordinator.store.update_status(signed.safe_tx_hash, TxStatus.SIGNED)

    result = runner.invoke(
        cli, ["list", "--safe", f"eth:{SAFE}", "--status", "signed"], catch_exceptions=False
    )
    assert result.exit_code == 0, result.output
    assert signed.safe_tx_hash in result.output
    assert pending.safe_tx_hash not in result.output


def test_list_invalid_status(runner, cli):
    result = runner.invoke(cli, ["list", "--status", "unknown"])
    assert result.exit_code == 2


def test_show(runner, cli, coordinator, new_record, owner_a, sig):
    record = new_record()
    coordinator.store.add_signature(record.safe_tx_hash, sig(owner_a, record.safe_tx_hash))
    result = runner.invoke(cli, ["show", record.safe_tx_hash], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert record.safe_tx_hash in result.output
    assert f"signer={owner_a}" in result.output


def test_show_missing(runner, cli, tx_hash):
    result = runner.invoke(cli, ["show", tx_hash(404)])
    assert result.exit_code == NotFound.exit_code
    assert "not found" in result.output


def test_export_import(runner, cli, coordinator, new_record, owner_a, sig, tmp_path):
    record = new_record()
    coordinator.store.add_signature(record.safe_tx_hash, sig(owner_a, record.safe_tx_hash))
    document_path = tmp_path / "transfer.json"

    result = runner.invoke(
        cli, ["export", record.safe_tx_hash, "-o", str(document_path)], catch_exceptions=False
    )
    assert result.exit_code == 0, result.output
    assert json.loads(document_path.read_text())["safeTxHash"] == record.safe_tx_hash

    # NOTE: Importing into a fresh store creates the transaction again
    coordinator.store.delete(record.safe_tx_hash)
    result = runner.invoke(cli, ["import", str(document_path)], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert coordinator.get_transaction(record.safe_tx_hash).signers == [owner_a]


def test_export_to_stdout_and_import_from_stdin(runner, cli, coordinator, new_record):
    record = new_record()
    result = runner.invoke(cli, ["export", record.safe_tx_hash], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    document = json.loads(result.stdout)
    assert document["version"] == 1

    result = runner.invoke(cli, ["import"], input=json.dumps(document), catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert len(coordinator.list_transactions()) == 1


def test_import_invalid(runner, cli, coordinator):
    result = runner.invoke(cli, ["import"], input='{"version": 1}')
    assert result.exit_code == InvalidDocument.exit_code
    assert coordinator.list_transactions() == []


def test_safes(runner, cli, SAFE):
    result = runner.invoke(cli, ["safes"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "No Safes found" in result.output

    result = runner.invoke(cli, ["add", f"eth:{SAFE}", "--name", "treasury"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(cli, ["safes"], catch_exceptions=False)
    assert f"eth:{SAFE}" in result.output
    assert "treasury" in result.output
    assert "2/3" in result.output

    result = runner.invoke(cli, ["remove", f"eth:{SAFE}", "--yes"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    result = runner.invoke(cli, ["safes"], catch_exceptions=False)
    assert "No Safes found" in result.output


def test_add_bare_address(runner, cli, coordinator, SAFE):
    result = runner.invoke(cli, ["add", SAFE])
    assert result.exit_code == 2
    assert coordinator.safes.all() == []

    result = runner.invoke(cli, ["add", SAFE, "--chain-id", CHAIN_ID], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert coordinator.safes.get(SAFE, CHAIN_ID)


def test_invalid_address(runner, cli):
    result = runner.invoke(cli, ["add", "eth:0x1234"])
    assert result.exit_code == 2


def test_pull_and_push(runner, cli, coordinator, client, new_record, owner_a, sig, SAFE):
    record = new_record()
    coordinator.store.add_signature(record.safe_tx_hash, sig(owner_a, record.safe_tx_hash))

    result = runner.invoke(cli, ["push", f"eth:{SAFE}"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert record.safe_tx_hash in client.proposals

    coordinator.store.delete(record.safe_tx_hash)
    result = runner.invoke(cli, ["pull", SAFE, "--chain-id", CHAIN_ID], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert coordinator.get_transaction(record.safe_tx_hash).signers == [owner_a]


def test_sync_nothing_tracked(runner, cli):
    result = runner.invoke(cli, ["sync"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "No Safes to sync" in result.output


def test_sync(runner, cli, coordinator, client, new_record, owner_a, sig, SAFE):
    coordinator.track_safe(SAFE, CHAIN_ID)
    record = new_record()
    coordinator.store.add_signature(record.safe_tx_hash, sig(owner_a, record.safe_tx_hash))

    result = runner.invoke(cli, ["sync"], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "proposed" in result.output
    assert record.safe_tx_hash in client.proposals


def test_sync_offline(runner, cli, client, SAFE):
    client.offline = True
    result = runner.invoke(cli, ["sync", f"eth:{SAFE}"])
    assert result.exit_code == NetworkError.exit_code
    assert "failed" in result.output


def test_create(runner, cli, coordinator, gateway, metadata, accounts, receiver, SAFE):
    gateway.nonce = 3
    cmd = ["create", f"eth:{SAFE}", "--to", receiver, "--value", "1", "--account", "TEST::0"]
    result = runner.invoke(cli, cmd, catch_exceptions=False)
    assert result.exit_code == 0, result.output

    # NOTE: The nonce defaults to the Safe's current one
    safe_tx_hash = gateway.compute_safe_tx_hash(SAFE, CHAIN_ID, metadata(nonce=3))
    assert safe_tx_hash in result.output
    record = coordinator.get_transaction(safe_tx_hash)
    assert record.created_by == accounts[0].address
    assert record.status == TxStatus.PENDING
    assert record.signatures == []


def test_create_and_sign(runner, cli, coordinator, gateway, accounts, receiver, SAFE):
    gateway.owners.append(accounts[0].address)
    cmd = [
        "create",
        SAFE,
        "--chain-id",
        CHAIN_ID,
        "--to",
        receiver,
        "--data",
        "0xABCD",
        "--operation",
        "delegatecall",
        "--nonce",
        "5",
        "--account",
        "TEST::0",
        "--sign",
    ]
    result = runner.invoke(cli, cmd, catch_exceptions=False)
    assert result.exit_code == 0, result.output

    [record] = coordinator.list_transactions()
    assert record.metadata.data == "0xabcd"
    assert record.metadata.nonce == 5
    assert record.metadata.operation == 1
    assert record.signers == [accounts[0].address]


@pytest.mark.parametrize(
    "option,value", [("--data", "0xabc"), ("--to", "0x1234"), ("--value", "-1")]
)
def test_create_invalid(runner, cli, coordinator, receiver, SAFE, option, value):
    options = {"--to": receiver, "--data": "0x", "--value": "0", option: value}
    cmd = ["create", f"eth:{SAFE}", "--nonce", "0", "--account", "TEST::0"]
    result = runner.invoke(cli, cmd + [part for item in options.items() for part in item])
    assert result.exit_code == 2
    assert coordinator.list_transactions() == []


def test_status(runner, cli, coordinator, gateway, new_record, owner_a, sig):
    record = new_record()
    coordinator.store.add_signature(record.safe_tx_hash, sig(owner_a, record.safe_tx_hash))

    result = runner.invoke(cli, ["status", record.safe_tx_hash], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "signatures=1/2" in result.output
    assert "ready=no" in result.output

    gateway.threshold = 1
    result = runner.invoke(cli, ["status", record.safe_tx_hash], catch_exceptions=False)
    assert result.exit_code == 0, result.output
    assert "ready=yes" in result.output
    assert coordinator.get_transaction(record.safe_tx_hash).status == TxStatus.SIGNED


def test_status_missing(runner, cli, tx_hash):
    result = runner.invoke(cli, ["status", tx_hash(404)])
    assert result.exit_code == NotFound.exit_code
