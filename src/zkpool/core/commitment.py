"""Deposit notes: commitment and nullifier hash generation."""

import os
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional

from zkpool.crypto.hasher import HashCompressor, get_compressor
from zkpool.utils.encoding import to_fixed_hex, to_int
from zkpool.exceptions import DeserializationError


def compute_commitment(
    nullifier: int, secret: int, compressor: Optional[HashCompressor] = None
) -> int:
    """
    Compute the deposit commitment C = H(nullifier, secret).

    The commitment is the only value that enters the accumulator.
    """
    compressor = compressor or get_compressor()
    return compressor.compress(nullifier, secret)


def compute_nullifier_hash(nullifier: int, compressor: Optional[HashCompressor] = None) -> int:
    """
    Compute the public nullifier hash N = H(nullifier, 0).

    The same note always yields the same nullifier hash, which is what the
    registry uses to reject a second withdrawal.
    """
    compressor = compressor or get_compressor()
    return compressor.compress(nullifier, 0)


@dataclass
class Note:
    """
    Private deposit note held by the depositor.

    Whoever holds the note can withdraw the deposit, so it must be stored
    like a private key.
    """

    # Constants
    RANDOM_SIZE = 31  # bytes, always below the field order

    nullifier: int
    secret: int
    hash_function: str = "keccak256"
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @classmethod
    def generate(cls, hash_function: str = "keccak256") -> "Note":
        """
        Create a note with fresh random nullifier and secret.

        Returns:
            Note: New note; neither value is ever reused
        """
        return cls(
            nullifier=int.from_bytes(os.urandom(cls.RANDOM_SIZE), 'big'),
            secret=int.from_bytes(os.urandom(cls.RANDOM_SIZE), 'big'),
            hash_function=hash_function,
        )

    @property
    def compressor(self) -> HashCompressor:
        return get_compressor(self.hash_function)

    @property
    def commitment(self) -> int:
        return compute_commitment(self.nullifier, self.secret, self.compressor)

    @property
    def nullifier_hash(self) -> int:
        return compute_nullifier_hash(self.nullifier, self.compressor)

    def to_dict(self) -> dict:
        """Hex-encode the note in the format written to the commitment file."""
        return {
            "nullifier": to_fixed_hex(self.nullifier),
            "secret": to_fixed_hex(self.secret),
            "commitment": to_fixed_hex(self.commitment),
            "nullifier_hash": to_fixed_hex(self.nullifier_hash),
            "hash_function": self.hash_function,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Note":
        """
        Load a note written by to_dict.

        Raises:
            DeserializationError: If a field is missing or the stored
                commitment does not match the note's values
        """
        try:
            note = cls(
                nullifier=to_int(data["nullifier"]),
                secret=to_int(data["secret"]),
                hash_function=data.get("hash_function", "keccak256"),
                created_at=data.get("created_at") or datetime.now(UTC).isoformat(),
            )
            stored = data.get("commitment")
            if stored is not None and to_int(stored) != note.commitment:
                raise DeserializationError("Stored commitment does not match the note")
        except (KeyError, TypeError, ValueError) as e:
            raise DeserializationError(f"Invalid note: {e}")

        return note

    def __repr__(self) -> str:
        # never print the secret values
        return f"Note(commitment={to_fixed_hex(self.commitment)[:18]}...)"
