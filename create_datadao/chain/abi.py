"""Minimal ABI encoding for the handful of fixed contract calls we make.

Selectors and event topics are the keccak-256 hashes of the signatures noted
next to them, precomputed so no hashing dependency is needed at runtime.
"""

from __future__ import annotations

import re

# dlpIds(address)
DLP_IDS_SELECTOR = "0xc06020b0"
# dlpPubKeys(uint256)
DLP_PUB_KEYS_SELECTOR = "0x8fe45502"

# RefinerAdded(uint256,uint256,string,string,string,string)
REFINER_ADDED_TOPIC = "0x2e45fd64d95dba6332b9f695a744e76794f19fa4eea054c19afda51fc121bbac"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_WORD = 64


def _strip(hex_data: str) -> str:
    return hex_data[2:] if hex_data.startswith(("0x", "0X")) else hex_data


def encode_address(address: str) -> str:
    if not _ADDRESS_RE.match(address):
        raise ValueError(f"Not a 20-byte hex address: {address!r}")
    return _strip(address).lower().rjust(_WORD, "0")


def encode_uint256(value: int) -> str:
    if value < 0 or value >= 2**256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "x").rjust(_WORD, "0")


def encode_call(selector: str, *words: str) -> str:
    """Concatenate a selector with already-encoded static argument words."""
    return selector + "".join(words)


def decode_uint256(hex_data: str) -> int:
    """Decode one uint256 word. ``0x`` (no data) decodes to 0.

    Raises:
        ValueError: If the data is not hex.
    """
    body = _strip(hex_data)
    if not body:
        return 0
    return int(body[:_WORD], 16)


def decode_string(hex_data: str) -> str:
    """Decode a single ABI-encoded dynamic ``string`` return value.

    ``0x`` (no data) decodes to the empty string.
    """
    body = _strip(hex_data)
    if not body:
        return ""
    offset = int(body[:_WORD], 16) * 2
    length = int(body[offset:offset + _WORD], 16)
    start = offset + _WORD
    raw = bytes.fromhex(body[start:start + length * 2])
    return raw.decode("utf-8", errors="replace")


def same_topic(left: str, right: str) -> bool:
    return _strip(left).lower() == _strip(right).lower()
