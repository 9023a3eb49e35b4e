"""Tests for the incremental commitment accumulator and its root history."""

import pytest

from zkpool.core.merkle_tree import IncrementalMerkleTree, RootHistory
from zkpool.crypto.hasher import FIELD_SIZE, ZeroSubtreeCache, get_compressor
from zkpool.crypto.merkle_tree import compute_root
from zkpool.exceptions import InvalidFieldElementError, TreeFullError


@pytest.fixture
def merkle_tree():
    """Create a test Merkle tree."""
    return IncrementalMerkleTree(height=8, root_history_size=10)


def leaves(count, start=1):
    return [start + i for i in range(count)]


class TestInitialization:
    """Tests for tree initialization."""

    def test_tree_creation_default(self):
        tree = IncrementalMerkleTree()
        assert tree.height == 20
        assert tree.capacity == 2**20
        assert tree.root_history.capacity == 100
        assert len(tree) == 0

    def test_empty_root_is_zero_subtree(self):
        tree = IncrementalMerkleTree(height=6)
        zeros = ZeroSubtreeCache(6, get_compressor())
        assert tree.root == zeros.root
        assert tree.is_known_root(zeros.root)

    def test_filled_subtrees_start_as_zeros(self):
        tree = IncrementalMerkleTree(height=4)
        assert tree.filled_subtrees == [tree.zeros[level] for level in range(4)]

    @pytest.mark.parametrize("height", [0, -1, 33])
    def test_invalid_height(self, height):
        with pytest.raises(ValueError):
            IncrementalMerkleTree(height=height)

    def test_invalid_history_size(self):
        with pytest.raises(ValueError):
            IncrementalMerkleTree(height=4, root_history_size=0)


class TestInsertion:
    """Tests for leaf insertion."""

    def test_indices_are_sequential(self, merkle_tree):
        assert [merkle_tree.insert(leaf) for leaf in leaves(5)] == [0, 1, 2, 3, 4]
        assert merkle_tree.next_index == 5

    def test_root_changes_on_insert(self, merkle_tree):
        before = merkle_tree.root
        merkle_tree.insert(42)
        assert merkle_tree.root != before

    def test_single_leaf_root(self):
        tree = IncrementalMerkleTree(height=2)
        compressor = tree.compressor
        tree.insert(7)
        level1 = compressor.compress(7, tree.zeros[0])
        expected = compressor.compress(level1, tree.zeros[1])
        assert tree.root == expected

    def test_two_leaves_root(self):
        tree = IncrementalMerkleTree(height=2)
        compressor = tree.compressor
        tree.insert(7)
        tree.insert(8)
        expected = compressor.compress(compressor.compress(7, 8), tree.zeros[1])
        assert tree.root == expected

    @pytest.mark.parametrize("count", [1, 2, 3, 5, 8, 13, 16])
    def test_matches_batch_root(self, count):
        tree = IncrementalMerkleTree(height=4)
        values = leaves(count, start=100)
        for value in values:
            tree.insert(value)
        assert tree.root == compute_root(values, 4)

    def test_tree_full(self):
        tree = IncrementalMerkleTree(height=2)
        for value in leaves(4):
            tree.insert(value)
        assert tree.is_full

        root_before = tree.root
        with pytest.raises(TreeFullError):
            tree.insert(99)
        assert tree.next_index == 4
        assert tree.root == root_before

    def test_rejects_non_field_leaf(self, merkle_tree):
        with pytest.raises(InvalidFieldElementError):
            merkle_tree.insert(FIELD_SIZE)
        assert merkle_tree.next_index == 0

    def test_sha256_tree_differs(self):
        keccak_tree = IncrementalMerkleTree(height=4)
        sha_tree = IncrementalMerkleTree(height=4, compressor=get_compressor("sha256"))
        keccak_tree.insert(1)
        sha_tree.insert(1)
        assert keccak_tree.root != sha_tree.root


class TestRootHistory:
    """Tests for the bounded root history."""

    def test_root_history_bound(self):
        """After K+1 inserts the first post-insert root is gone, the last K remain."""
        k = 5
        tree = IncrementalMerkleTree(height=8, root_history_size=k)
        roots = []
        for value in leaves(k + 1):
            tree.insert(value)
            roots.append(tree.root)

        assert not tree.is_known_root(roots[0])
        for root in roots[1:]:
            assert tree.is_known_root(root)
        assert len(tree.roots) == k

    def test_empty_root_evicted(self):
        tree = IncrementalMerkleTree(height=4, root_history_size=2)
        empty = tree.root
        tree.insert(1)
        assert tree.is_known_root(empty)
        tree.insert(2)
        assert not tree.is_known_root(empty)

    def test_zero_root_never_known(self, merkle_tree):
        assert not merkle_tree.is_known_root(0)

    def test_non_integer_root_not_known(self, merkle_tree):
        assert not merkle_tree.is_known_root("0x00")
        assert not merkle_tree.is_known_root(None)

    def test_roots_ordered_oldest_first(self, merkle_tree):
        merkle_tree.insert(1)
        first = merkle_tree.root
        merkle_tree.insert(2)
        assert merkle_tree.roots[-2:] == [first, merkle_tree.root]
        assert merkle_tree.get_last_root() == merkle_tree.root

    def test_entries_record_leaf_count(self, merkle_tree):
        merkle_tree.insert(1)
        merkle_tree.insert(2)
        counts = [entry.leaf_count for entry in merkle_tree.root_history.entries()]
        assert counts == [0, 1, 2]

    def test_duplicate_roots_counted(self):
        history = RootHistory(capacity=2)
        history.push(10, 0)
        history.push(10, 1)
        evicted = history.push(20, 2)
        assert evicted.root == 10
        assert 10 in history
        history.push(30, 3)
        assert 10 not in history

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RootHistory(0)


class TestState:
    """Tests for state snapshots."""

    def test_get_state(self, merkle_tree):
        merkle_tree.insert(5)
        state = merkle_tree.get_state()
        assert state["height"] == 8
        assert state["next_index"] == 1
        assert state["root"].startswith("0x") and len(state["root"]) == 66
        assert state["root_history"][-1]["leaf_count"] == 1
        assert state["root_history_size"] == 10

    def test_repr(self, merkle_tree):
        assert "IncrementalMerkleTree(height=8" in repr(merkle_tree)
