"""Withdrawal proof interface and the transparent reference proof system.

The pool treats the proof system as a black box behind ``ProofVerifier``:
it hands over the six public inputs of the withdraw circuit, in a fixed
order, together with an opaque proof object.

``TransparentProofSystem`` evaluates the withdraw circuit's predicate in the
clear. Its "proof" is the witness itself, so it offers no privacy at all; it
exists so the pool can be run and tested end to end without proving keys.

Circuit predicate:
    1. commitment = H(nullifier, secret)
    2. nullifier_hash = H(nullifier, 0)
    3. the Merkle path from commitment leads to root
    4. recipient, relayer, fee and refund are bound to the proof

``TransparentProofSystem`` checks 1-3 only. Its proof carries nothing that
commits to the recipient, relayer, fee or refund, so anyone holding a
transparent proof can replay it with different values for those four inputs.
"""

import json
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Tuple, Union, runtime_checkable

from zkpool.core.commitment import Note, compute_commitment, compute_nullifier_hash
from zkpool.crypto.hasher import HashCompressor, check_field_element, get_compressor
from zkpool.crypto.merkle_tree import MerklePath, verify_merkle_path
from zkpool.utils.encoding import ZERO_ADDRESS, address_to_int, to_fixed_hex, to_int
from zkpool.exceptions import InvalidProofError


@dataclass(frozen=True)
class PublicInputs:
    """
    Public inputs of the withdraw circuit.

    Addresses are carried as integers, the way the circuit receives them.
    """

    root: int
    nullifier_hash: int
    recipient: int
    relayer: int
    fee: int
    refund: int

    def __post_init__(self):
        for name, value in zip(self.names(), self.as_tuple()):
            check_field_element(value, name)

    @staticmethod
    def names() -> Tuple[str, ...]:
        return ("root", "nullifier_hash", "recipient", "relayer", "fee", "refund")

    @classmethod
    def for_withdrawal(
        cls,
        root: int,
        nullifier_hash: int,
        recipient: str,
        relayer: str = ZERO_ADDRESS,
        fee: int = 0,
        refund: int = 0,
    ) -> "PublicInputs":
        """Build public inputs from address strings."""
        return cls(
            root=root,
            nullifier_hash=nullifier_hash,
            recipient=address_to_int(recipient),
            relayer=address_to_int(relayer),
            fee=fee,
            refund=refund,
        )

    def as_tuple(self) -> Tuple[int, int, int, int, int, int]:
        """Inputs in the order the verifier expects them."""
        return (self.root, self.nullifier_hash, self.recipient, self.relayer, self.fee, self.refund)

    @property
    def recipient_address(self) -> str:
        return to_fixed_hex(self.recipient, 20)

    @property
    def relayer_address(self) -> str:
        return to_fixed_hex(self.relayer, 20)


@runtime_checkable
class ProofVerifier(Protocol):
    """External proof system as seen by the pool."""

    def verify(self, public_inputs: PublicInputs, proof: Any) -> bool:
        ...

    def parse_proof(self, payload: Any) -> Any:
        ...


@dataclass
class TransparentWithdrawalProof:
    """Witness of the withdraw circuit, sent in the clear."""

    nullifier: int
    secret: int
    path_elements: List[int]
    path_indices: List[int]

    def to_dict(self) -> dict:
        return {
            "nullifier": to_fixed_hex(self.nullifier),
            "secret": to_fixed_hex(self.secret),
            "path_elements": [to_fixed_hex(e) for e in self.path_elements],
            "path_indices": list(self.path_indices),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TransparentWithdrawalProof":
        return cls(
            nullifier=to_int(data["nullifier"]),
            secret=to_int(data["secret"]),
            path_elements=[to_int(e) for e in data["path_elements"]],
            path_indices=[int(i) for i in data["path_indices"]],
        )


class TransparentProofSystem:
    """
    Reference ProofVerifier that checks the witness directly.

    Not zero-knowledge: anyone who sees the proof learns which deposit is
    being withdrawn. It also does not bind recipient, relayer, fee or refund
    (point 4 of the predicate). Use only for development and tests.
    """

    def __init__(self, compressor: Optional[HashCompressor] = None):
        self.compressor = compressor or get_compressor()

    def parse_proof(self, payload: Union[str, dict, TransparentWithdrawalProof]) -> TransparentWithdrawalProof:
        """
        Decode a proof received over the API.

        Raises:
            InvalidProofError: If the payload is malformed
        """
        if isinstance(payload, TransparentWithdrawalProof):
            return payload
        try:
            if isinstance(payload, str):
                payload = json.loads(payload)
            return TransparentWithdrawalProof.from_dict(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidProofError(f"Malformed proof: {e}")

    def verify(self, public_inputs: PublicInputs, proof: Any) -> bool:
        """
        Check points 1-3 of the withdraw predicate for ``proof`` against
        ``public_inputs``. Recipient, relayer, fee and refund are not checked.

        Returns:
            bool: True if the witness satisfies the predicate
        """
        if not isinstance(proof, TransparentWithdrawalProof):
            return False

        try:
            commitment = compute_commitment(proof.nullifier, proof.secret, self.compressor)
            nullifier_hash = compute_nullifier_hash(proof.nullifier, self.compressor)
        except ValueError:
            return False

        if nullifier_hash != public_inputs.nullifier_hash:
            return False

        return verify_merkle_path(
            commitment,
            proof.path_elements,
            proof.path_indices,
            public_inputs.root,
            self.compressor,
        )

    def generate_withdrawal_proof(
        self,
        note: Note,
        path: MerklePath,
        recipient: str,
        relayer: str = ZERO_ADDRESS,
        fee: int = 0,
        refund: int = 0,
    ) -> Tuple[PublicInputs, TransparentWithdrawalProof]:
        """
        Build the public inputs and proof for withdrawing ``note``.

        Args:
            note: Deposit note being withdrawn
            path: Authentication path of the note's commitment
            recipient: Address receiving the value
            relayer: Address receiving the fee
            fee: Relayer fee
            refund: Refund sent along with the withdrawal

        Raises:
            InvalidProofError: If the path does not belong to the note
        """
        commitment = compute_commitment(note.nullifier, note.secret, self.compressor)
        if path.leaf != commitment:
            raise InvalidProofError("Merkle path does not belong to this note")

        public_inputs = PublicInputs.for_withdrawal(
            root=path.root,
            nullifier_hash=compute_nullifier_hash(note.nullifier, self.compressor),
            recipient=recipient,
            relayer=relayer,
            fee=fee,
            refund=refund,
        )
        proof = TransparentWithdrawalProof(
            nullifier=note.nullifier,
            secret=note.secret,
            path_elements=list(path.path_elements),
            path_indices=list(path.path_indices),
        )
        return public_inputs, proof
