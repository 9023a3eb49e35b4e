"""Spent-nullifier registry.

A nullifier hash is derived inside the withdraw circuit from the secret
nullifier of a note, so two withdrawals of the same deposit always publish the
same nullifier hash while nothing links it to the deposit's commitment.

Core Properties:
    - Registry only grows; a spent nullifier hash is never released
    - Check-and-mark is a single step under the registry lock
    - Batch status queries for clients (``is_spent_array``)

Example Usage:
    >>> registry = NullifierRegistry()
    >>> registry.mark_spent(nullifier_hash, root=root)
    >>> registry.is_spent(nullifier_hash)
    True
    >>> registry.mark_spent(nullifier_hash)
    Traceback (most recent call last):
    AlreadySpentError: ...

Warning:
    Nullifier uniqueness is the only defense against double-spending.
    Never mark a nullifier outside a withdrawal that has passed every check.
"""

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Dict, Iterable, List, Optional

from zkpool.utils.encoding import to_fixed_hex, to_int
from zkpool.exceptions import AlreadySpentError, DeserializationError

logger = logging.getLogger(__name__)


@dataclass
class NullifierRecord:
    """
    Record of a spent nullifier.

    Tracks when and against which root a nullifier was used.
    """

    nullifier_hash: int
    spent_at: str
    merkle_root: Optional[int] = None
    recipient: Optional[str] = None
    transaction_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "nullifier_hash": to_fixed_hex(self.nullifier_hash),
            "spent_at": self.spent_at,
            "merkle_root": to_fixed_hex(self.merkle_root) if self.merkle_root is not None else None,
            "recipient": self.recipient,
            "transaction_id": self.transaction_id,
        }


class NullifierRegistry:
    """
    Maintains the set of spent nullifier hashes.

    Key properties:
      - Nullifier hashes are independent of commitments
      - Publicly observable: clients query it to see if a note was withdrawn
      - Set grows over time (never shrinks)
    """

    def __init__(self):
        """Initialize empty registry."""
        self._spent: Dict[int, NullifierRecord] = {}
        self._lock = threading.Lock()

    def is_spent(self, nullifier_hash: int) -> bool:
        """Check if a nullifier hash has been spent."""
        return nullifier_hash in self._spent

    def is_spent_array(self, nullifier_hashes: Iterable[int]) -> List[bool]:
        """Spent status for each nullifier hash, in order."""
        return [self.is_spent(n) for n in nullifier_hashes]

    def mark_spent(
        self,
        nullifier_hash: int,
        merkle_root: Optional[int] = None,
        recipient: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> NullifierRecord:
        """
        Mark a nullifier hash as spent.

        Args:
            nullifier_hash: Public nullifier hash from the withdrawal
            merkle_root: Root the withdrawal proof was generated against
            recipient: Withdrawal recipient
            transaction_id: Withdrawal identifier

        Returns:
            NullifierRecord: The stored record

        Raises:
            AlreadySpentError: If the nullifier hash was already marked
        """
        with self._lock:
            if nullifier_hash in self._spent:
                logger.warning(
                    f"SECURITY: double-spend attempt with nullifier {to_fixed_hex(nullifier_hash)}"
                )
                raise AlreadySpentError(
                    f"The note {to_fixed_hex(nullifier_hash)} has been already spent"
                )

            record = NullifierRecord(
                nullifier_hash=nullifier_hash,
                spent_at=datetime.now(UTC).isoformat(),
                merkle_root=merkle_root,
                recipient=recipient,
                transaction_id=transaction_id,
            )
            self._spent[nullifier_hash] = record
            return record

    def revert(self, nullifier_hash: int) -> None:
        """Undo a mark made by a withdrawal that could not release value."""
        with self._lock:
            self._spent.pop(nullifier_hash, None)

    def get_record(self, nullifier_hash: int) -> Optional[NullifierRecord]:
        """Get spending record for a nullifier hash."""
        return self._spent.get(nullifier_hash)

    @property
    def size(self) -> int:
        """Get number of spent nullifiers."""
        return len(self._spent)

    def __len__(self) -> int:
        return len(self._spent)

    def serialize(self) -> str:
        """Serialize registry to JSON."""
        records = [record.to_dict() for record in self._spent.values()]
        return json.dumps({"records": records, "total_spent": self.size})

    @classmethod
    def deserialize(cls, json_str: str) -> "NullifierRegistry":
        """
        Deserialize registry from JSON.

        Raises:
            DeserializationError: If the snapshot is malformed
        """
        registry = cls()
        try:
            data = json.loads(json_str)
            for item in data["records"]:
                root = item.get("merkle_root")
                record = NullifierRecord(
                    nullifier_hash=to_int(item["nullifier_hash"]),
                    spent_at=item["spent_at"],
                    merkle_root=to_int(root) if root is not None else None,
                    recipient=item.get("recipient"),
                    transaction_id=item.get("transaction_id"),
                )
                registry._spent[record.nullifier_hash] = record
        except (KeyError, TypeError, ValueError) as e:
            raise DeserializationError(f"Invalid nullifier registry snapshot: {e}")

        return registry
