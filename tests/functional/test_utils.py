import json

import pytest

from ape_safe_coordinator.exceptions import InvalidAddress
from ape_safe_coordinator.utils import (
    checksum_address,
    normalize_hex,
    normalize_safe_tx_hash,
    order_by_signer,
    same_address,
    write_json_atomic,
)

LOW_SIGNER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
HIGH_SIGNER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def test_order_by_signer_empty():
    assert order_by_signer({}) == []


def test_order_by_signer_1_sig():
    assert order_by_signer({HIGH_SIGNER: "sig"}) == ["sig"]


def test_order_by_signer_n_sigs():
    # Ensure all orders of the dict work.
    signature_map_0 = {HIGH_SIGNER: "high", LOW_SIGNER: "low"}
    signature_map_1 = {LOW_SIGNER: "low", HIGH_SIGNER: "high"}

    # We expect the signatures to be sorted in ascending order by the
    # signer's address.
    assert order_by_signer(signature_map_0) == order_by_signer(signature_map_1) == ["low", "high"]


def test_same_address():
    assert same_address(HIGH_SIGNER, HIGH_SIGNER.lower())
    assert not same_address(HIGH_SIGNER, LOW_SIGNER)


@pytest.mark.parametrize(
    "value,expected", [("0x", "0x"), ("0xDEADbeef", "0xdeadbeef"), ("0XABCD", "0xabcd")]
)
def test_normalize_hex(value, expected):
    assert normalize_hex(value) == expected


@pytest.mark.parametrize("value", ["", "deadbeef", "0xabc", "0xzz", None])
def test_normalize_hex_invalid(value):
    with pytest.raises(ValueError):
        normalize_hex(value)


def test_normalize_safe_tx_hash(tx_hash):
    assert normalize_safe_tx_hash(tx_hash(0xABC).upper().replace("0X", "0x")) == tx_hash(0xABC)
    with pytest.raises(ValueError):
        normalize_safe_tx_hash("0x1234")


def test_write_json_atomic(tmp_path):
    path = tmp_path / "nested" / "data.json"
    write_json_atomic(path, {"a": 1})
    write_json_atomic(path, {"a": 2})
    assert json.loads(path.read_text()) == {"a": 2}
    assert [p.name for p in path.parent.iterdir()] == ["data.json"]


def test_checksum_address_prefix_case():
    assert checksum_address(f"0X{HIGH_SIGNER[2:].lower()}") == HIGH_SIGNER


@pytest.mark.parametrize("value", [HIGH_SIGNER[2:], f"{HIGH_SIGNER}00", "0x" + "g" * 40, 42])
def test_checksum_address_invalid(value):
    with pytest.raises(InvalidAddress):
        checksum_address(value)
