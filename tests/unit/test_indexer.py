"""Tests for the commitment indexer."""

import pytest

from zkpool.core.indexer import CommitmentIndexer
from zkpool.core.merkle_tree import IncrementalMerkleTree
from zkpool.crypto.hasher import get_compressor
from zkpool.storage.database import DatabaseManager
from zkpool.exceptions import InvalidLeafIndexError, LeafNotFoundError

DEPOSITOR = "0x" + "a1" * 20


@pytest.fixture
def db(temp_db):
    manager = DatabaseManager(temp_db)
    manager.create_tables()
    return manager


class TestCommitmentIndexer:
    """Test the indexer mirrors the pool's accumulator."""

    def test_root_matches_incremental_tree(self):
        tree = IncrementalMerkleTree(height=6)
        indexer = CommitmentIndexer(height=6)
        for commitment in (11, 22, 33):
            tree.insert(commitment)
            indexer.add_commitment(commitment)
            assert indexer.root == tree.root

    def test_path_verifies_against_pool_root(self):
        tree = IncrementalMerkleTree(height=6)
        for commitment in (11, 22, 33):
            tree.insert(commitment)

        indexer = CommitmentIndexer.from_commitments([11, 22, 33], height=6)
        path = indexer.get_path(22)
        assert path.leaf_index == 1
        assert path.root == tree.root
        assert path.verify(get_compressor())
        assert len(indexer) == 3

    def test_unknown_commitment(self):
        indexer = CommitmentIndexer.from_commitments([1], height=4)
        with pytest.raises(LeafNotFoundError):
            indexer.get_path(2)

    def test_sha256_compressor(self):
        compressor = get_compressor("sha256")
        tree = IncrementalMerkleTree(height=4, compressor=compressor)
        tree.insert(5)
        indexer = CommitmentIndexer.from_commitments([5], height=4, compressor=compressor)
        assert indexer.root == tree.root

    def test_on_insert_follows_pool_order(self):
        tree = IncrementalMerkleTree(height=6)
        indexer = CommitmentIndexer(height=6)
        for commitment in (11, 22):
            indexer.on_insert(tree.insert(commitment), commitment)
        assert indexer.root == tree.root
        assert indexer.get_path(22).leaf_index == 1

    @pytest.mark.parametrize("leaf_index", [0, 2])
    def test_on_insert_out_of_order(self, leaf_index):
        indexer = CommitmentIndexer.from_commitments([11], height=6)
        with pytest.raises(InvalidLeafIndexError):
            indexer.on_insert(leaf_index, 22)
        assert len(indexer) == 1


class TestFromDatabase:
    """Test rebuilding the mirror from stored deposits."""

    def test_rebuild(self, db):
        session = db.get_session()
        for index, commitment in enumerate((7, 8, 9)):
            db.add_deposit(session, commitment, index, 1, DEPOSITOR, f"deposit_{index}")
        session.close()

        indexer = CommitmentIndexer.from_database(db, height=5)
        assert indexer.root == CommitmentIndexer.from_commitments([7, 8, 9], height=5).root
        assert indexer.get_path(9).leaf_index == 2

    def test_empty_database(self, db):
        indexer = CommitmentIndexer.from_database(db, height=5)
        assert len(indexer) == 0

    def test_gap_in_leaf_indices(self, db):
        session = db.get_session()
        db.add_deposit(session, 7, 0, 1, DEPOSITOR, "deposit_0")
        db.add_deposit(session, 8, 2, 1, DEPOSITOR, "deposit_2")
        session.close()

        with pytest.raises(InvalidLeafIndexError):
            CommitmentIndexer.from_database(db, height=5)
