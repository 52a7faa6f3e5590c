import json
import os
import tempfile
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ape.types import AddressType, HexBytes
from cchecksum import to_checksum_address
from eth_utils import is_0x_prefixed, is_hex, is_hex_address, remove_0x_prefix, to_hex, to_int

from .exceptions import InvalidAddress

SAFE_TX_HASH_SIZE = 32


def checksum_address(value: str) -> AddressType:
    """
    Validate a bare ``0x``-prefixed 20-byte address and return it checksum-cased.

    Raises:
        :class:`~ape_safe_coordinator.exceptions.InvalidAddress`: When ``value``
          has the wrong length, is missing its ``0x`` prefix or contains non-hex
          characters.
    """
    if not isinstance(value, str):
        raise InvalidAddress(str(value), "not a string")

    value = value.strip()
    if not is_0x_prefixed(value):
        raise InvalidAddress(value, "missing '0x' prefix")

    if not is_hex_address(value):
        raise InvalidAddress(value, "expected 40 hexadecimal characters")

    return AddressType(to_checksum_address(f"0x{value[2:]}"))


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def normalize_hex(value: str) -> str:
    if not isinstance(value, str) or not is_0x_prefixed(value) or not is_hex(value):
        raise ValueError(f"'{value}' is not 0x-prefixed hex")

    if len(remove_0x_prefix(value)) % 2:
        raise ValueError(f"'{value}' is not a whole number of bytes")

    return to_hex(hexstr=value)


def normalize_safe_tx_hash(value: str) -> str:
    value = normalize_hex(value)
    if len(remove_0x_prefix(value)) != 2 * SAFE_TX_HASH_SIZE:
        raise ValueError(f"'{value}' is not a {SAFE_TX_HASH_SIZE}-byte hash")

    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def order_by_signer(signatures: Mapping[AddressType, Any]) -> list[Any]:
    # NOTE: Must order signatures in ascending order of signer address (converted to int)
    return [signatures[signer] for signer in sorted(signatures, key=lambda a: to_int(hexstr=a))]


def encode_signatures(signatures: Mapping[AddressType, str]) -> HexBytes:
    return HexBytes(b"".join(HexBytes(sig) for sig in order_by_signer(signatures)))


def write_json_atomic(path: Path, data: Any):
    """
    Replace ``path`` with ``data`` serialized as JSON. The content is written to a
    temporary file in the same folder first, so readers only ever observe the
    old or the new file and never a partial one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            json.dump(data, fp, indent=2)
            fp.flush()
            os.fsync(fp.fileno())

        os.replace(tmp_name, path)

    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
