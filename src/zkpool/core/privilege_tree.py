"""Off-protocol privilege tree builder.

The administrator builds this tree whenever the allow-list changes and
publishes only its root to the gatekeeper. Users receive their index and a
sibling path, which they submit with every deposit and withdrawal.

Leaf layout (Solidity ``abi.encodePacked``)::

    leaf(i) = keccak256(uint256 level || address || uint256 i) mod FIELD_SIZE

Binding the index into the leaf prevents replaying one entry's proof at a
different position.

Index assignment:
    IndexOrdering.INSERTION gives index 0, 1, 2, ... in the iteration order of
    the input mapping. Two builds over the same entries in a different order
    produce different indices and proofs, so the order in which the allow-list
    is read is part of the tree's identity. IndexOrdering.SORTED assigns
    indices by lexicographic order of the normalized address and does not
    depend on input order.
"""

import json
import logging
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, NamedTuple, Optional, Union

from zkpool.crypto.hasher import HashCompressor, MAX_TREE_HEIGHT, get_compressor, reduce_to_field
from zkpool.crypto.merkle_tree import MerkleTree
from zkpool.utils.hash import pack_address, pack_uint256, solidity_keccak256
from zkpool.utils.encoding import normalize_address, to_fixed_hex
from zkpool.exceptions import (
    AddressNotFoundError,
    DuplicateAddressError,
    InvalidAddressError,
    InvalidLeafIndexError,
    InvalidPrivilegeLevelError,
)

logger = logging.getLogger(__name__)

DEFAULT_PRIVILEGE_LEVEL = 1


class IndexOrdering(str, Enum):
    """Rule used to assign leaf indices to addresses."""

    INSERTION = "insertion"
    SORTED = "sorted"


class ProofStep(NamedTuple):
    """One sibling on the path from a leaf to the root."""

    sibling: int
    is_left_sibling: bool


PrivilegeProof = List[ProofStep]


@dataclass(frozen=True)
class PrivilegeEntry:
    """An allow-list member as placed in the tree."""

    address: str
    level: int
    index: int
    leaf: int


def privilege_leaf(level: int, address: str, index: int) -> int:
    """Compute the leaf binding ``(level, address, index)``."""
    return reduce_to_field(
        solidity_keccak256(
            pack_uint256(level),
            pack_address(normalize_address(address)),
            pack_uint256(index),
        )
    )


def _check_level(level: int) -> int:
    if isinstance(level, bool) or not isinstance(level, int):
        raise InvalidPrivilegeLevelError(f"Privilege level must be an integer, got {level!r}")
    if level < 0 or level >= 2**256:
        raise InvalidPrivilegeLevelError(f"Privilege level out of range: {level}")
    return level


def parse_allow_list(text: str, default_level: int = DEFAULT_PRIVILEGE_LEVEL) -> Dict[str, int]:
    """
    Parse an allow-list into an ordered address -> level mapping.

    Accepts one address per line, optionally followed by ``,level``. Blank
    lines and ``#`` comments are ignored. Malformed lines are logged and
    skipped; a repeated address keeps its first position and its last level.

    Args:
        text: Allow-list contents
        default_level: Level for lines without an explicit level

    Returns:
        Dict[str, int]: Normalized addresses in file order
    """
    _check_level(default_level)
    entries: Dict[str, int] = {}

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue

        columns = [column.strip() for column in line.split(",")]
        try:
            address = normalize_address(columns[0])
            level = int(columns[1]) if len(columns) > 1 and columns[1] else default_level
            _check_level(level)
        except (InvalidAddressError, InvalidPrivilegeLevelError, ValueError) as e:
            logger.error(f"Malformed allow-list line {line_number}: {raw_line!r} ({e})")
            continue

        entries[address] = level

    return entries


class PrivilegeTree:
    """
    Static Merkle tree over an allow-list.

    Entries with level 0 carry no privilege and are left out of the tree.

    Args:
        balances: Mapping of address to privilege level
        compressor: Two-to-one hash for internal nodes (default keccak256)
        height: Tree height; defaults to the smallest height holding all entries
        ordering: Index assignment rule
    """

    def __init__(
        self,
        balances: Mapping[str, int],
        compressor: Optional[HashCompressor] = None,
        height: Optional[int] = None,
        ordering: IndexOrdering = IndexOrdering.INSERTION,
    ):
        self.compressor = compressor or get_compressor()
        self.ordering = IndexOrdering(ordering)

        normalized: Dict[str, int] = {}
        for address, level in balances.items():
            key = normalize_address(address)
            if key in normalized:
                raise DuplicateAddressError(f"Address listed twice: {key}")
            level = _check_level(level)
            if level == 0:
                logger.debug(f"Skipping {key}: privilege level 0")
                continue
            normalized[key] = level

        addresses = list(normalized)
        if self.ordering is IndexOrdering.SORTED:
            addresses.sort()

        minimum_height = max(1, math.ceil(math.log2(len(addresses)))) if addresses else 1
        if height is None:
            height = minimum_height
        elif height < minimum_height or height > MAX_TREE_HEIGHT:
            raise ValueError(
                f"Height {height} cannot hold {len(addresses)} entries "
                f"(minimum {minimum_height}, maximum {MAX_TREE_HEIGHT})"
            )
        self.height = height

        self._entries: List[PrivilegeEntry] = [
            PrivilegeEntry(
                address=address,
                level=normalized[address],
                index=index,
                leaf=privilege_leaf(normalized[address], address, index),
            )
            for index, address in enumerate(addresses)
        ]
        self._by_address: Dict[str, PrivilegeEntry] = {e.address: e for e in self._entries}
        self._tree = MerkleTree(
            height=self.height,
            leaves=[e.leaf for e in self._entries],
            compressor=self.compressor,
        )

        logger.info(
            f"Built privilege tree: {len(self._entries)} entries, height {self.height}, "
            f"root {to_fixed_hex(self.root_hash)}"
        )

    @classmethod
    def from_allow_list(
        cls,
        text: str,
        default_level: int = DEFAULT_PRIVILEGE_LEVEL,
        **kwargs,
    ) -> "PrivilegeTree":
        """Build a tree from allow-list text (see parse_allow_list)."""
        return cls(parse_allow_list(text, default_level), **kwargs)

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs) -> "PrivilegeTree":
        """Build a tree from an allow-list file."""
        return cls.from_allow_list(Path(path).read_text(encoding="utf-8"), **kwargs)

    @property
    def root_hash(self) -> int:
        return self._tree.root

    @property
    def entries(self) -> List[PrivilegeEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, address: str) -> bool:
        try:
            return normalize_address(address) in self._by_address
        except InvalidAddressError:
            return False

    def _entry(self, address: str) -> PrivilegeEntry:
        key = normalize_address(address)
        try:
            return self._by_address[key]
        except KeyError:
            raise AddressNotFoundError(f"Address {key} is not in the privilege tree")

    def get_index(self, address: str) -> int:
        """Leaf index assigned to ``address``."""
        return self._entry(address).index

    def get_level(self, address: str) -> int:
        return self._entry(address).level

    def get_leaf(self, index: int) -> int:
        if index < 0 or index >= len(self._entries):
            raise InvalidLeafIndexError(f"Invalid leaf index: {index}")
        return self._entries[index].leaf

    def get_proof(self, index: int) -> PrivilegeProof:
        """
        Sibling path from the leaf at ``index`` to the root.

        Returns:
            PrivilegeProof: ``height`` steps, leaf level first

        Raises:
            InvalidLeafIndexError: If no entry has that index
        """
        if index < 0 or index >= len(self._entries):
            raise InvalidLeafIndexError(f"Invalid leaf index: {index}")

        path = self._tree.path(index)
        return [
            ProofStep(sibling=element, is_left_sibling=bool(direction))
            for element, direction in zip(path.path_elements, path.path_indices)
        ]

    def get_proof_for(self, address: str) -> PrivilegeProof:
        return self.get_proof(self.get_index(address))

    def to_dict(self) -> dict:
        """Export the tree for distribution to users."""
        return {
            "root": to_fixed_hex(self.root_hash),
            "height": self.height,
            "ordering": self.ordering.value,
            "hash_function": self.compressor.name,
            "entries": {
                entry.address: {
                    "index": entry.index,
                    "level": entry.level,
                    "leaf": to_fixed_hex(entry.leaf),
                    "proof": [to_fixed_hex(step.sibling) for step in self.get_proof(entry.index)],
                }
                for entry in self._entries
            },
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps({"tree": self.to_dict()}, indent=indent)

    def __repr__(self) -> str:
        return (
            f"PrivilegeTree(entries={len(self._entries)}, height={self.height}, "
            f"ordering={self.ordering.value}, root={to_fixed_hex(self.root_hash)[:18]}...)"
        )
