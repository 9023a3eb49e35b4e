"""Pydantic data models for the pool API.

Field elements and amounts travel as 0x-hex or decimal strings (JSON numbers
are accepted too) and are parsed into Python ints on the way in.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Any, List, Optional, Union
from datetime import datetime

from zkpool.core.privilege_tree import ProofStep
from zkpool.utils.encoding import ZERO_ADDRESS, normalize_address, to_int


def _parse_int(value: Any) -> int:
    try:
        return to_int(value)
    except TypeError as e:
        raise ValueError(str(e))


class ProofStepModel(BaseModel):
    """One privilege proof step; the direction is optional."""
    sibling: int
    is_left_sibling: Optional[bool] = None

    @field_validator("sibling", mode="before")
    @classmethod
    def _sibling(cls, value):
        return _parse_int(value)


class PrivilegeProofModel(BaseModel):
    """Caller's proof of membership in the privilege tree."""
    index: int = Field(..., ge=0, description="Leaf index in the privilege tree")
    level: int = Field(..., ge=0, description="Claimed privilege level")
    proof: List[Union[ProofStepModel, str, int]] = Field(
        default_factory=list, description="Sibling path, leaf level first"
    )

    def steps(self) -> List[Union[int, ProofStep]]:
        """Proof in the form the gatekeeper accepts."""
        result: List[Union[int, ProofStep]] = []
        for step in self.proof:
            if isinstance(step, ProofStepModel):
                if step.is_left_sibling is None:
                    result.append(step.sibling)
                else:
                    result.append(ProofStep(step.sibling, step.is_left_sibling))
            else:
                result.append(_parse_int(step))
        return result


class DepositRequest(BaseModel):
    """Request model for deposit operations."""
    commitment: int = Field(..., description="Commitment field element")
    privilege: PrivilegeProofModel
    value: Optional[int] = Field(default=None, description="Attached value, defaults to the denomination")

    @field_validator("commitment", mode="before")
    @classmethod
    def _commitment(cls, value):
        return _parse_int(value)

    @field_validator("value", mode="before")
    @classmethod
    def _value(cls, value):
        return None if value is None else _parse_int(value)


class DepositResponse(BaseModel):
    """Response model for deposit operations."""
    commitment: str = Field(..., description="Commitment (hex)")
    leaf_index: int = Field(..., description="Index in Merkle tree")
    merkle_root: str = Field(..., description="Merkle root after insertion (hex)")
    depositor: str
    deposit_hash: str = Field(..., description="Transaction hash")
    timestamp: datetime


class WithdrawalRequest(BaseModel):
    """Request model for withdrawal operations."""
    proof: Any = Field(..., description="Proof payload understood by the verifier")
    root: int
    nullifier_hash: int
    recipient: str
    relayer: str = ZERO_ADDRESS
    fee: int = 0
    refund: int = 0
    privilege: PrivilegeProofModel

    @field_validator("root", "nullifier_hash", "fee", "refund", mode="before")
    @classmethod
    def _integers(cls, value):
        return _parse_int(value)

    @field_validator("recipient", "relayer")
    @classmethod
    def _addresses(cls, value: str) -> str:
        return normalize_address(value)


class WithdrawalResponse(BaseModel):
    """Response model for withdrawal operations."""
    transaction_hash: str
    nullifier_hash: str
    merkle_root: str
    recipient: str
    relayer: str
    amount: int
    fee: int
    refund: int
    stage: str
    timestamp: datetime


class MixerStateResponse(BaseModel):
    """Response model for pool state."""
    merkle_root: str = Field(..., description="Current Merkle root (hex)")
    root_history: List[str] = Field(..., description="Retained roots, oldest first")
    tree_height: int
    next_index: int
    num_nullifiers: int = Field(..., description="Number of spent nullifiers")
    privilege_root: Optional[str] = None
    administrator: str
    denomination: int
    asset_kind: str


class RootsResponse(BaseModel):
    """Retained commitment roots."""
    current: str
    roots: List[str]


class RootKnownResponse(BaseModel):
    root: str
    known: bool


class SpentRequest(BaseModel):
    """Batch spent-status query."""
    nullifier_hashes: List[int] = Field(..., max_length=1000)

    @field_validator("nullifier_hashes", mode="before")
    @classmethod
    def _hashes(cls, value):
        if not isinstance(value, list):
            raise ValueError("nullifier_hashes must be a list")
        return [_parse_int(item) for item in value]


class SpentResponse(BaseModel):
    spent: List[bool]


class MerklePathResponse(BaseModel):
    """Authentication path served by the indexer."""
    root: str
    index: int
    leaf: str
    elements: List[str]
    indices: List[int]


class UpdatePrivilegeRootRequest(BaseModel):
    root: int

    @field_validator("root", mode="before")
    @classmethod
    def _root(cls, value):
        return _parse_int(value)


class UpdateAdministratorRequest(BaseModel):
    administrator: str

    @field_validator("administrator")
    @classmethod
    def _administrator(cls, value: str) -> str:
        return normalize_address(value)


class ErrorResponse(BaseModel):
    """Body of every pool error response."""
    error: str
    code: str
