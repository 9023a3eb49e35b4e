"""Tests for the full layered Merkle tree and path verification."""

import pytest

from zkpool.crypto.hasher import ZeroSubtreeCache, get_compressor
from zkpool.crypto.merkle_tree import MerkleTree, compute_root, verify_merkle_path
from zkpool.exceptions import InvalidLeafIndexError, LeafNotFoundError, TreeFullError


@pytest.fixture
def tree():
    return MerkleTree(height=4, leaves=[11, 22, 33, 44, 55])


class TestMerkleTree:
    """Tests for insertion and roots."""

    def test_empty_root(self):
        assert MerkleTree(height=5).root == ZeroSubtreeCache(5, get_compressor()).root

    def test_root_matches_compute_root(self, tree):
        assert tree.root == compute_root([11, 22, 33, 44, 55], 4)

    def test_bulk_insert_equals_insert(self):
        one = MerkleTree(height=4)
        for value in (1, 2, 3):
            one.insert(value)
        other = MerkleTree(height=4)
        other.bulk_insert([1, 2, 3])
        assert one.root == other.root
        assert other.leaves == [1, 2, 3]

    def test_full(self):
        tree = MerkleTree(height=1, leaves=[1, 2])
        with pytest.raises(TreeFullError):
            tree.insert(3)

    def test_compute_root_too_many_leaves(self):
        with pytest.raises(TreeFullError):
            compute_root([1, 2, 3], 1)

    def test_index_of(self, tree):
        assert tree.index_of(33) == 2
        with pytest.raises(LeafNotFoundError):
            tree.index_of(99)

    def test_invalid_height(self):
        with pytest.raises(ValueError):
            MerkleTree(height=0)


class TestMerklePath:
    """Tests for authentication paths."""

    @pytest.mark.parametrize("index", [0, 1, 2, 3, 4])
    def test_every_path_verifies(self, tree, index):
        path = tree.path(index)
        assert len(path.path_elements) == 4
        assert path.path_indices[0] == index & 1
        assert path.verify(tree.compressor)

    def test_path_fails_against_other_root(self, tree):
        path = tree.path(1)
        assert not path.verify(tree.compressor, root=tree.root + 1)

    def test_tampered_sibling_fails(self, tree):
        path = tree.path(3)
        elements = list(path.path_elements)
        elements[2] ^= 1
        assert not verify_merkle_path(path.leaf, elements, path.path_indices, tree.root, tree.compressor)

    def test_wrong_direction_fails(self, tree):
        path = tree.path(2)
        indices = list(path.path_indices)
        indices[0] ^= 1
        assert not verify_merkle_path(path.leaf, path.path_elements, indices, tree.root, tree.compressor)

    def test_invalid_direction_value(self, tree):
        path = tree.path(0)
        indices = [2] + list(path.path_indices[1:])
        assert not verify_merkle_path(path.leaf, path.path_elements, indices, tree.root, tree.compressor)

    def test_length_mismatch(self, tree):
        path = tree.path(0)
        assert not verify_merkle_path(path.leaf, path.path_elements[:-1], path.path_indices, tree.root, tree.compressor)

    def test_path_invalid_index(self, tree):
        with pytest.raises(InvalidLeafIndexError):
            tree.path(5)
        with pytest.raises(InvalidLeafIndexError):
            tree.path(-1)

    def test_to_dict(self, tree):
        data = tree.path(4).to_dict()
        assert data["index"] == 4
        assert len(data["elements"]) == 4
        assert data["indices"] == [0, 0, 1, 0]
        assert data["root"] == "0x" + format(tree.root, "064x")
