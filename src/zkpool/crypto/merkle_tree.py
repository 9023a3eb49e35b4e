"""
Full layered Merkle tree over field elements.

This is the off-protocol mirror of the commitment accumulator: clients and
the indexer keep every layer so they can hand out authentication paths for
the withdraw circuit. The on-protocol accumulator in
:mod:`zkpool.core.merkle_tree` keeps only the right frontier and must always
produce the same root as this tree over the same leaves.

Tree Structure:
    - Height: fixed at construction (capacity ``2**height`` leaves)
    - Hashing: pluggable compressor (keccak256 by default)
    - Empty nodes: zero-subtree values derived from ZERO_VALUE

Example:
    Mirroring deposits and building a withdrawal path::

        from zkpool.crypto.merkle_tree import MerkleTree

        tree = MerkleTree(height=20)
        index = tree.insert(note.commitment)
        path = tree.path(index)
        assert path.verify(tree.compressor)
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from zkpool.crypto.hasher import (
    HashCompressor,
    ZeroSubtreeCache,
    ZERO_VALUE,
    check_field_element,
    get_compressor,
)
from zkpool.utils.encoding import to_fixed_hex
from zkpool.exceptions import InvalidLeafIndexError, LeafNotFoundError, TreeFullError


@dataclass
class MerklePath:
    """Authentication path for one leaf, in the withdraw circuit's layout."""

    leaf: int
    leaf_index: int
    path_elements: List[int]
    path_indices: List[int]  # 0 when the node on the path is a left child
    root: int

    def verify(self, compressor: HashCompressor, root: Optional[int] = None) -> bool:
        """Verify the path leads from the leaf to ``root`` (default: stored root)."""
        expected = self.root if root is None else root
        return verify_merkle_path(
            self.leaf, self.path_elements, self.path_indices, expected, compressor
        )

    def to_dict(self) -> dict:
        """Hex-encode the path the way the indexer serves it."""
        return {
            "root": to_fixed_hex(self.root),
            "index": self.leaf_index,
            "leaf": to_fixed_hex(self.leaf),
            "elements": [to_fixed_hex(e) for e in self.path_elements],
            "indices": list(self.path_indices),
        }


def compute_root(
    leaves: Sequence[int],
    height: int,
    compressor: Optional[HashCompressor] = None,
    zero_leaf: int = ZERO_VALUE,
) -> int:
    """
    Root of a full tree over ``leaves`` padded with zero subtrees.

    Batch counterpart of incremental insertion.

    Raises:
        TreeFullError: If there are more leaves than the tree can hold
    """
    compressor = compressor or get_compressor()
    zeros = ZeroSubtreeCache(height, compressor, zero_leaf)
    if len(leaves) > 2**height:
        raise TreeFullError(f"{len(leaves)} leaves exceed capacity {2**height}")

    level = [check_field_element(leaf, "leaf") for leaf in leaves]
    for depth in range(height):
        if not level:
            return zeros.root
        level = [
            compressor.compress(
                level[i], level[i + 1] if i + 1 < len(level) else zeros[depth]
            )
            for i in range(0, len(level), 2)
        ]
    return level[0] if level else zeros.root


def verify_merkle_path(
    leaf: int,
    path_elements: Sequence[int],
    path_indices: Sequence[int],
    root: int,
    compressor: HashCompressor,
) -> bool:
    """Standalone verification: walk the path and compare with ``root``."""
    if len(path_elements) != len(path_indices):
        return False

    try:
        current = leaf
        for sibling, direction in zip(path_elements, path_indices):
            if direction not in (0, 1):
                return False
            if direction == 0:
                current = compressor.compress(current, sibling)
            else:
                current = compressor.compress(sibling, current)
    except ValueError:
        return False

    return current == root


class MerkleTree:
    """
    Fixed-height Merkle tree that keeps every computed layer.

    Insertion recomputes only the path above the new leaf; nodes to the right
    of the last leaf are implicit zero subtrees.
    """

    DEFAULT_HEIGHT = 20

    def __init__(
        self,
        height: int = DEFAULT_HEIGHT,
        leaves: Iterable[int] = (),
        compressor: Optional[HashCompressor] = None,
        zero_leaf: int = ZERO_VALUE,
    ):
        if height < 1:
            raise ValueError("Tree height must be at least 1")

        self.compressor = compressor or get_compressor()
        self.zeros = ZeroSubtreeCache(height, self.compressor, zero_leaf)
        self.height = height
        self.capacity = 2**height
        self._layers: List[List[int]] = [[] for _ in range(height + 1)]
        self._positions: Dict[int, int] = {}

        self.bulk_insert(leaves)

    def insert(self, leaf: int) -> int:
        """Append a leaf and return its index."""
        check_field_element(leaf, "leaf")
        if len(self._layers[0]) >= self.capacity:
            raise TreeFullError("Merkle tree is full. No more leaves can be added")

        index = len(self._layers[0])
        self._layers[0].append(leaf)
        self._positions.setdefault(leaf, index)
        self._update_path(index)
        return index

    def bulk_insert(self, leaves: Iterable[int]) -> None:
        for leaf in leaves:
            self.insert(leaf)

    def _update_path(self, index: int) -> None:
        for level in range(1, self.height + 1):
            index >>= 1
            below = self._layers[level - 1]
            left = below[2 * index]
            right_position = 2 * index + 1
            right = below[right_position] if right_position < len(below) else self.zeros[level - 1]
            node = self.compressor.compress(left, right)

            layer = self._layers[level]
            if index < len(layer):
                layer[index] = node
            else:
                layer.append(node)

    @property
    def root(self) -> int:
        top = self._layers[self.height]
        return top[0] if top else self.zeros.root

    @property
    def leaves(self) -> List[int]:
        return list(self._layers[0])

    def index_of(self, leaf: int) -> int:
        """Return the first index holding ``leaf``."""
        try:
            return self._positions[leaf]
        except KeyError:
            raise LeafNotFoundError(f"Leaf {to_fixed_hex(leaf)} is not in the tree")

    def path(self, index: int) -> MerklePath:
        """
        Return the authentication path for the leaf at ``index``.

        Raises:
            InvalidLeafIndexError: If no leaf has been inserted at ``index``
        """
        if index < 0 or index >= len(self._layers[0]):
            raise InvalidLeafIndexError(f"Invalid leaf index: {index}")

        elements: List[int] = []
        indices: List[int] = []
        position = index
        for level in range(self.height):
            sibling = position ^ 1
            layer = self._layers[level]
            elements.append(layer[sibling] if sibling < len(layer) else self.zeros[level])
            indices.append(position & 1)
            position >>= 1

        return MerklePath(
            leaf=self._layers[0][index],
            leaf_index=index,
            path_elements=elements,
            path_indices=indices,
            root=self.root,
        )

    def __len__(self) -> int:
        return len(self._layers[0])

    def __repr__(self) -> str:
        return (
            f"MerkleTree(height={self.height}, "
            f"leaves={len(self)}/{self.capacity}, "
            f"root={to_fixed_hex(self.root)[:18]}...)"
        )
