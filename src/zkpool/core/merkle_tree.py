"""Incremental Merkle accumulator with root history for deposit commitments."""

import logging
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, List, Optional

from zkpool.crypto.hasher import (
    HashCompressor,
    MAX_TREE_HEIGHT,
    ZERO_VALUE,
    ZeroSubtreeCache,
    check_field_element,
    get_compressor,
)
from zkpool.utils.encoding import to_fixed_hex
from zkpool.exceptions import TreeFullError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RootEntry:
    """A historical root and the number of leaves it covers."""

    root: int
    leaf_count: int


class RootHistory:
    """
    Fixed-capacity ring of recent roots with O(1) membership.

    A counter keyed by root value shadows the ring so lookups do not scan it.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("Root history size must be at least 1")
        self.capacity = capacity
        self._entries: Deque[RootEntry] = deque()
        self._counts: Counter = Counter()

    def push(self, root: int, leaf_count: int) -> Optional[RootEntry]:
        """Record a root; return the evicted entry when the ring was full."""
        evicted = None
        if len(self._entries) == self.capacity:
            evicted = self._entries.popleft()
            self._counts[evicted.root] -= 1
            if self._counts[evicted.root] <= 0:
                del self._counts[evicted.root]

        self._entries.append(RootEntry(root=root, leaf_count=leaf_count))
        self._counts[root] += 1
        return evicted

    def __contains__(self, root: int) -> bool:
        return root in self._counts

    @property
    def last(self) -> RootEntry:
        return self._entries[-1]

    def entries(self) -> List[RootEntry]:
        """Entries from oldest to newest."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class IncrementalMerkleTree:
    """
    Append-only commitment accumulator of fixed height.

    Only the rightmost known node of each level (``filled_subtrees``) is kept,
    so an insertion costs one compression per level. Every new root is
    recorded in a bounded history so that withdrawal proofs generated against
    a recent, no longer current root are still accepted.

    Attributes:
        height: Number of levels above the leaves
        capacity: Maximum number of leaves (2**height)
        next_index: Next free leaf slot, never reused
    """

    DEFAULT_HEIGHT = 20
    DEFAULT_ROOT_HISTORY_SIZE = 100

    def __init__(
        self,
        height: int = DEFAULT_HEIGHT,
        root_history_size: int = DEFAULT_ROOT_HISTORY_SIZE,
        compressor: Optional[HashCompressor] = None,
        zero_leaf: int = ZERO_VALUE,
    ):
        """
        Initialize empty tree.

        Args:
            height: Height of the tree, between 1 and 32
            root_history_size: Number of recent roots accepted by is_known_root
            compressor: Two-to-one hash (default keccak256)
            zero_leaf: Canonical empty leaf value

        Raises:
            ValueError: If height or history size is invalid
        """
        if height < 1 or height > MAX_TREE_HEIGHT:
            raise ValueError(f"Tree height must be between 1 and {MAX_TREE_HEIGHT}")

        self.height = height
        self.capacity = 2**height
        self.compressor = compressor or get_compressor()
        self.zeros = ZeroSubtreeCache(height, self.compressor, zero_leaf)

        self.filled_subtrees: List[int] = [self.zeros[level] for level in range(height)]
        self.next_index = 0

        self.root_history = RootHistory(root_history_size)
        self.root_history.push(self.zeros.root, 0)

    def insert(self, leaf: int) -> int:
        """
        Append a leaf at the next free index.

        Args:
            leaf: Commitment field element

        Returns:
            int: Index the leaf was stored at

        Raises:
            TreeFullError: If all 2**height slots are used
            InvalidFieldElementError: If leaf is outside the field
        """
        check_field_element(leaf, "leaf")
        if self.next_index == self.capacity:
            raise TreeFullError("Merkle tree is full. No more leaves can be added")

        index = self.next_index
        position = index
        current = leaf
        filled = list(self.filled_subtrees)

        for level in range(self.height):
            if position % 2 == 0:
                left, right = current, self.zeros[level]
                filled[level] = current
            else:
                left, right = filled[level], current
            current = self.compressor.compress(left, right)
            position >>= 1

        # commit only after every compression succeeded
        self.filled_subtrees = filled
        self.next_index = index + 1
        self.root_history.push(current, self.next_index)

        logger.debug(f"Inserted leaf {index}, new root {to_fixed_hex(current)}")
        return index

    def is_known_root(self, root: int) -> bool:
        """Check whether ``root`` is one of the retained recent roots."""
        if not isinstance(root, int) or isinstance(root, bool) or root == 0:
            return False
        return root in self.root_history

    @property
    def root(self) -> int:
        """Get the current root."""
        return self.root_history.last.root

    def get_last_root(self) -> int:
        return self.root

    @property
    def roots(self) -> List[int]:
        """Retained roots from oldest to newest."""
        return [entry.root for entry in self.root_history.entries()]

    @property
    def is_full(self) -> bool:
        return self.next_index == self.capacity

    def get_state(self) -> dict:
        """
        Get the current state of the tree for serialization.

        Returns:
            dict: Height, next index, current root and root history (hex)
        """
        return {
            "height": self.height,
            "capacity": self.capacity,
            "next_index": self.next_index,
            "root": to_fixed_hex(self.root),
            "root_history_size": self.root_history.capacity,
            "root_history": [
                {"root": to_fixed_hex(entry.root), "leaf_count": entry.leaf_count}
                for entry in self.root_history.entries()
            ],
        }

    def __len__(self) -> int:
        """Return the number of leaves in the tree."""
        return self.next_index

    def __repr__(self) -> str:
        """String representation of the tree."""
        return (
            f"IncrementalMerkleTree(height={self.height}, "
            f"leaves={self.next_index}/{self.capacity}, "
            f"root={to_fixed_hex(self.root)[:18]}...)"
        )
