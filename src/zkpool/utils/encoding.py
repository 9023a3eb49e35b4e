"""Encoding and decoding utilities."""

import re
from typing import Union

from zkpool.utils.hash import keccak256
from zkpool.exceptions import InvalidAddressError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

ZERO_ADDRESS = "0x" + "0" * 40


def to_fixed_hex(value: int, length: int = 32) -> str:
    """
    Render an unsigned integer as a zero-padded 0x hex string.

    Args:
        value: Non-negative integer
        length: Width in bytes

    Returns:
        str: '0x' followed by exactly ``2 * length`` hex digits
    """
    if value < 0:
        raise ValueError("Value must be non-negative")
    if value >= 2 ** (8 * length):
        raise ValueError(f"Value does not fit in {length} bytes")
    return "0x" + format(value, f"0{2 * length}x")


def to_int(value: Union[int, str, bytes]) -> int:
    """
    Parse an integer given as int, 0x-hex string, decimal string or bytes.

    Raises:
        ValueError: If the value cannot be parsed or is negative
    """
    if isinstance(value, bool):
        raise ValueError("Booleans are not integers here")
    if isinstance(value, int):
        result = value
    elif isinstance(value, bytes):
        result = int.from_bytes(value, 'big')
    elif isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            result = int(text, 16)
        else:
            result = int(text, 10)
    else:
        raise TypeError(f"Expected int, str or bytes, got {type(value)}")

    if result < 0:
        raise ValueError("Value must be non-negative")
    return result


def to_checksum_address(address: str) -> str:
    """
    Apply the EIP-55 mixed-case checksum to an address.

    Args:
        address: 0x-prefixed 40 hex digit address (any case)

    Returns:
        str: Checksummed address
    """
    lowered = normalize_address(address)[2:]
    digest = keccak256(lowered.encode('ascii')).hex()
    return "0x" + "".join(
        char.upper() if int(digest[i], 16) >= 8 else char
        for i, char in enumerate(lowered)
    )


def normalize_address(address: str) -> str:
    """
    Sanitize an address to lowercase 0x form.

    All-lowercase and all-uppercase input is accepted as is; mixed-case input
    must carry a valid EIP-55 checksum.

    Raises:
        InvalidAddressError: If the address is malformed
    """
    if not isinstance(address, str):
        raise InvalidAddressError(f"Address must be a string, got {type(address)}")

    candidate = address.strip()
    if len(candidate) == 40:
        candidate = "0x" + candidate
    if not _ADDRESS_RE.match(candidate):
        raise InvalidAddressError(f"Malformed address: {address!r}")

    body = candidate[2:]
    if body != body.lower() and body != body.upper():
        digest = keccak256(body.lower().encode('ascii')).hex()
        for i, char in enumerate(body):
            if char.isalpha() and char.isupper() != (int(digest[i], 16) >= 8):
                raise InvalidAddressError(f"Bad address checksum: {address!r}")

    return "0x" + body.lower()


def address_to_int(address: str) -> int:
    """Interpret an address as the integer a circuit public input carries."""
    return int(normalize_address(address), 16)
