"""Cryptographic hash utilities."""

import hashlib
from typing import Union

from Crypto.Hash import keccak


def sha256(data: Union[bytes, str]) -> bytes:
    """
    Compute SHA-256 hash of data.

    Args:
        data: Bytes or string to hash

    Returns:
        bytes: 32-byte SHA-256 hash
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def keccak256(data: Union[bytes, str]) -> bytes:
    """
    Compute Keccak-256 hash of data (the Ethereum variant, not SHA3-256).

    Args:
        data: Bytes or string to hash; strings are UTF-8 encoded

    Returns:
        bytes: 32-byte Keccak-256 hash
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def pack_uint256(value: int) -> bytes:
    """Encode an unsigned integer as a 32-byte big-endian word."""
    if value < 0 or value >= 2**256:
        raise ValueError("Value does not fit in uint256")
    return value.to_bytes(32, 'big')


def pack_address(address: str) -> bytes:
    """Encode a normalized 0x-prefixed address as its 20 raw bytes."""
    raw = bytes.fromhex(address[2:] if address.startswith("0x") else address)
    if len(raw) != 20:
        raise ValueError("Address must be 20 bytes")
    return raw


def solidity_keccak256(*words: bytes) -> bytes:
    """
    Keccak-256 over tightly packed values (Solidity ``abi.encodePacked``).

    Args:
        *words: Already-packed byte strings (see pack_uint256, pack_address)

    Returns:
        bytes: 32-byte hash of the concatenation
    """
    return keccak256(b"".join(words))
