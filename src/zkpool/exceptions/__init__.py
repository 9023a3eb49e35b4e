"""Custom exceptions for the privileged pool.

Every exception carries a stable ``code`` (the name used by operators and the
HTTP surface) and a ``retryable`` flag telling the caller whether the same
operation can succeed with fresh inputs.
"""


class ZKPoolException(Exception):
    """Base exception for all pool errors."""

    code = "PoolError"
    retryable = False


# Cryptography Errors
class CryptoError(ZKPoolException):
    """Base exception for cryptographic errors."""

    code = "CryptoError"


class InvalidFieldElementError(CryptoError, ValueError):
    """Raised when a value is not inside the scalar field."""

    code = "InvalidFieldElement"


class UnknownHashFunctionError(CryptoError):
    """Raised when a compressor name is not registered."""

    code = "UnknownHashFunction"


# Proof Errors
class ProofError(ZKPoolException):
    """Base exception for proof-related errors."""

    code = "ProofError"


class InvalidProofError(ProofError):
    """Raised when the proof system rejects a withdrawal proof."""

    code = "InvalidProof"


class AlreadySpentError(ProofError):
    """Raised when a nullifier hash has already been spent."""

    code = "AlreadySpent"


# Merkle Tree Errors
class MerkleTreeError(ZKPoolException):
    """Base exception for Merkle tree errors."""

    code = "MerkleTreeError"


class TreeFullError(MerkleTreeError):
    """Raised when the commitment accumulator has no free leaf left."""

    code = "TreeFull"


class InvalidLeafIndexError(MerkleTreeError):
    """Raised when leaf index is invalid."""

    code = "InvalidLeafIndex"


class LeafNotFoundError(MerkleTreeError):
    """Raised when a leaf value is not present in a tree."""

    code = "LeafNotFound"


# Access Control Errors
class AccessControlError(ZKPoolException):
    """Base exception for privilege and administrator checks."""

    code = "AccessControlError"


class NoPrivilegesError(AccessControlError):
    """Raised when a privilege proof does not match the published root."""

    code = "NoPrivileges"


class EmptyProofError(AccessControlError):
    """Raised when a privilege proof has no siblings at all."""

    code = "EmptyProof"


class NotAdminError(AccessControlError):
    """Raised when a non-administrator calls an administrative operation."""

    code = "NotAdmin"


# Privilege Tree Errors
class PrivilegeTreeError(ZKPoolException):
    """Base exception for privilege tree construction errors."""

    code = "PrivilegeTreeError"


class InvalidAddressError(PrivilegeTreeError, ValueError):
    """Raised when an address is malformed or fails its checksum."""

    code = "InvalidAddress"


class InvalidPrivilegeLevelError(PrivilegeTreeError, ValueError):
    """Raised when a privilege level is negative or not an integer."""

    code = "InvalidPrivilegeLevel"


class DuplicateAddressError(PrivilegeTreeError, ValueError):
    """Raised when two mapping keys normalize to the same address."""

    code = "DuplicateAddress"


class AddressNotFoundError(PrivilegeTreeError, KeyError):
    """Raised when an address has no entry in a privilege tree."""

    code = "AddressNotFound"


# Mixer Errors
class MixerError(ZKPoolException):
    """Base exception for pool operation errors."""

    code = "MixerError"


class DepositError(MixerError):
    """Raised when deposit operation fails."""

    code = "DepositError"


class CommitmentAlreadyUsedError(DepositError):
    """Raised when a commitment value was already inserted."""

    code = "CommitmentAlreadyUsed"


class InvalidDepositValueError(DepositError):
    """Raised when the attached value differs from the denomination."""

    code = "InvalidDepositValue"


class WithdrawalError(MixerError):
    """Raised when withdrawal operation fails."""

    code = "WithdrawalError"


class UnknownRootError(WithdrawalError):
    """Raised when a withdrawal references a root outside the history window."""

    code = "UnknownRoot"
    retryable = True


class FeeExceedsValueError(WithdrawalError):
    """Raised when the relayer fee is larger than the denomination."""

    code = "FeeExceedsValue"


class NonZeroRefundError(WithdrawalError):
    """Raised when a refund is requested on an asset kind without refunds."""

    code = "NonZeroRefund"


# Ledger Errors
class LedgerError(ZKPoolException):
    """Base exception for value ledger errors."""

    code = "LedgerError"


class InsufficientFundsError(LedgerError):
    """Raised when an account cannot cover a transfer."""

    code = "InsufficientFunds"


class ValueReleaseError(LedgerError):
    """Raised when value release failed and the withdrawal was rolled back."""

    code = "ValueReleaseFailed"
    retryable = True


class InconsistentStateError(LedgerError):
    """Raised when value was partially released and cannot be rolled back."""

    code = "InconsistentState"


# Storage Errors
class StorageError(ZKPoolException):
    """Base exception for storage errors."""

    code = "StorageError"


class DeserializationError(StorageError):
    """Raised when deserialization fails."""

    code = "DeserializationError"
