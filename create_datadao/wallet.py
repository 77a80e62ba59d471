"""The deployer wallet, derived from its private key.

The owner address written to ``contracts/.env`` and ``deployment.json`` is
always the one the private key controls, so registration never runs with an
owner the deployer cannot sign for.
"""

from __future__ import annotations

from eth_account import Account
from eth_keys.exceptions import ValidationError as InvalidKeyError

from create_datadao.errors import ValidationError
from create_datadao.validation import validate_hex_key

_KEY_LENGTH = 2 + 64


def private_key_error(value: str) -> str | None:
    """Prompt validator for the deployer key."""
    text = value.strip()
    error = validate_hex_key(text, "Private key")
    if error is not None:
        return error
    if len(text) != _KEY_LENGTH:
        return "Private key must be 0x followed by 64 hex characters"
    try:
        Account.from_key(text)
    except (ValueError, InvalidKeyError):
        return "Private key is outside the secp256k1 range"
    return None


def derive_address(private_key: str) -> str:
    """Return the checksummed address controlled by *private_key*.

    Raises:
        ValidationError: If the key is malformed or not a usable secp256k1 key.
    """
    error = private_key_error(private_key)
    if error is not None:
        raise ValidationError(error)
    return Account.from_key(private_key.strip()).address
