"""Main package initialization."""

__version__ = "0.1.0"
__author__ = "ZK Pool Team"
__description__ = "Privileged ZK Pool: fixed-denomination privacy pool gated by a privilege allow-list"

from .core.merkle_tree import IncrementalMerkleTree
from .core.commitment import Note
from .core.privilege_tree import PrivilegeTree, IndexOrdering, ProofStep
from .core.gatekeeper import PrivilegeGatekeeper
from .core.ledger import AssetKind, InMemoryLedger
from .core.zkproof import PublicInputs, TransparentProofSystem
from .core.mixer import PrivilegedMixer

__all__ = [
    "IncrementalMerkleTree",
    "Note",
    "PrivilegeTree",
    "IndexOrdering",
    "ProofStep",
    "PrivilegeGatekeeper",
    "AssetKind",
    "InMemoryLedger",
    "PublicInputs",
    "TransparentProofSystem",
    "PrivilegedMixer",
]
