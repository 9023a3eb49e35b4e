"""Commitment indexer: serves Merkle paths for deposited commitments.

Withdrawers need the full authentication path of their commitment, which the
incremental accumulator does not keep. The indexer mirrors every deposit in a
full MerkleTree and answers path queries against it.
"""

import logging
import threading
from typing import Iterable, Optional

from zkpool.crypto.hasher import HashCompressor, get_compressor
from zkpool.crypto.merkle_tree import MerklePath, MerkleTree
from zkpool.storage.database import DatabaseManager
from zkpool.utils.encoding import to_fixed_hex, to_int
from zkpool.exceptions import InvalidLeafIndexError

logger = logging.getLogger(__name__)


class CommitmentIndexer:
    """
    Full mirror of the commitment accumulator.

    Leaves must be added in leaf-index order, exactly as the pool inserted
    them, or the mirror's root will not match the pool's.
    """

    def __init__(self, height: int = MerkleTree.DEFAULT_HEIGHT, compressor: Optional[HashCompressor] = None):
        self.tree = MerkleTree(height=height, compressor=compressor or get_compressor())
        self._lock = threading.Lock()

    @classmethod
    def from_commitments(
        cls,
        commitments: Iterable[int],
        height: int = MerkleTree.DEFAULT_HEIGHT,
        compressor: Optional[HashCompressor] = None,
    ) -> "CommitmentIndexer":
        indexer = cls(height=height, compressor=compressor)
        for commitment in commitments:
            indexer.add_commitment(commitment)
        return indexer

    @classmethod
    def from_database(
        cls,
        db: DatabaseManager,
        height: int = MerkleTree.DEFAULT_HEIGHT,
        compressor: Optional[HashCompressor] = None,
    ) -> "CommitmentIndexer":
        """Rebuild the mirror from stored deposit records."""
        with db.get_session() as session:
            records = db.get_deposits(session)
            commitments = []
            for expected_index, record in enumerate(records):
                if record.leaf_index != expected_index:
                    raise InvalidLeafIndexError(
                        f"Deposit records have a gap at leaf index {expected_index}"
                    )
                commitments.append(to_int(record.commitment))

        indexer = cls.from_commitments(commitments, height=height, compressor=compressor)
        logger.info(f"Indexer rebuilt from {len(commitments)} deposits, root {to_fixed_hex(indexer.root)}")
        return indexer

    def add_commitment(self, commitment: int) -> int:
        """Mirror a new deposit and return its leaf index."""
        with self._lock:
            return self.tree.insert(commitment)

    def on_insert(self, leaf_index: int, commitment: int) -> None:
        """
        Pool insert listener; see ``PrivilegedMixer.add_insert_listener``.

        Raises:
            InvalidLeafIndexError: If the leaf does not land at the pool's index
        """
        with self._lock:
            if leaf_index != len(self.tree):
                raise InvalidLeafIndexError(
                    f"Mirror expected leaf {len(self.tree)}, pool inserted leaf {leaf_index}"
                )
            self.tree.insert(commitment)

    @property
    def root(self) -> int:
        return self.tree.root

    def __len__(self) -> int:
        return len(self.tree)

    def get_path(self, commitment: int) -> MerklePath:
        """
        Authentication path of a deposited commitment.

        Raises:
            LeafNotFoundError: If the commitment was never deposited
        """
        with self._lock:
            return self.tree.path(self.tree.index_of(commitment))
