"""Cryptographic primitives module"""

from zkpool.crypto.hasher import (
    FIELD_SIZE,
    ZERO_VALUE,
    HashCompressor,
    DigestCompressor,
    ZeroSubtreeCache,
    get_compressor,
    register_compressor,
)

from zkpool.crypto.merkle_tree import (
    MerklePath,
    MerkleTree,
    compute_root,
    verify_merkle_path,
)

from zkpool.crypto.nullifier import NullifierRecord, NullifierRegistry

__all__ = [
    'FIELD_SIZE',
    'ZERO_VALUE',
    'HashCompressor',
    'DigestCompressor',
    'ZeroSubtreeCache',
    'get_compressor',
    'register_compressor',
    'MerklePath',
    'MerkleTree',
    'compute_root',
    'verify_merkle_path',
    'NullifierRecord',
    'NullifierRegistry',
]
