"""
On-protocol privilege verifier.

The gatekeeper only knows the currently published privilege root and the
administrator. Callers prove membership by submitting their leaf index,
privilege level and sibling path; the gatekeeper recomputes the leaf from the
caller's own address, so a proof issued to one address is useless to another.

Example:
    >>> gatekeeper = PrivilegeGatekeeper(administrator=admin)
    >>> gatekeeper.update_root(admin, tree.root_hash)
    >>> gatekeeper.check_privilege(user, tree.get_index(user), 1, tree.get_proof_for(user))
    True
"""

import logging
import threading
from typing import Optional, Sequence, Union

from zkpool.core.privilege_tree import ProofStep, privilege_leaf
from zkpool.crypto.hasher import HashCompressor, check_field_element, get_compressor
from zkpool.utils.encoding import normalize_address, to_fixed_hex
from zkpool.exceptions import (
    EmptyProofError,
    InvalidAddressError,
    NoPrivilegesError,
    NotAdminError,
)

logger = logging.getLogger(__name__)

ProofElement = Union[int, ProofStep]


def verify_privilege_proof(
    leaf: int,
    index: int,
    proof: Sequence[ProofElement],
    root: int,
    compressor: HashCompressor,
) -> bool:
    """
    Walk a sibling path from ``leaf`` and compare the result with ``root``.

    The bits of ``index`` decide, level by level, whether the running node is
    a left (bit 0) or right (bit 1) child. When a step is a ProofStep its
    ``is_left_sibling`` flag must agree with that bit.

    Returns:
        bool: True if the path leads to ``root``
    """
    if not proof or index < 0 or index >= 2 ** len(proof):
        return False

    current = leaf
    try:
        for level, step in enumerate(proof):
            is_right_child = (index >> level) & 1 == 1
            if isinstance(step, ProofStep):
                if step.is_left_sibling != is_right_child:
                    return False
                sibling = step.sibling
            else:
                sibling = step

            if is_right_child:
                current = compressor.compress(sibling, current)
            else:
                current = compressor.compress(current, sibling)
    except ValueError:
        return False

    return current == root


class PrivilegeGatekeeper:
    """
    Holds the published privilege root and the administrator.

    The root is replaced wholesale on every update; no earlier root stays
    valid.
    """

    def __init__(
        self,
        administrator: str,
        root: Optional[int] = None,
        compressor: Optional[HashCompressor] = None,
    ):
        self._administrator = normalize_address(administrator)
        self._root = root
        self.compressor = compressor or get_compressor()
        self._lock = threading.RLock()

    @property
    def administrator(self) -> str:
        return self._administrator

    @property
    def root(self) -> Optional[int]:
        """Currently published privilege root, None before the first publication."""
        return self._root

    def is_administrator(self, caller: str) -> bool:
        try:
            return normalize_address(caller) == self._administrator
        except InvalidAddressError:
            return False

    def check_privilege(
        self,
        caller: str,
        index: int,
        level: int,
        proof: Sequence[ProofElement],
    ) -> bool:
        """
        Verify that ``caller`` holds ``level`` at ``index`` in the published tree.

        Args:
            caller: Address the privilege is claimed for
            index: Leaf index from the privilege tree
            level: Claimed privilege level
            proof: Sibling path, leaf level first

        Returns:
            bool: True when the proof is valid

        Raises:
            EmptyProofError: If ``proof`` is empty
            NoPrivilegesError: If the proof does not match the published root
        """
        if not proof:
            raise EmptyProofError("Empty privilege proof")

        if isinstance(level, bool) or not isinstance(level, int) or level <= 0:
            raise NoPrivilegesError("No privileges: level must be at least 1")

        root = self._root
        if root is None:
            raise NoPrivilegesError("No privileges: no privilege root has been published")

        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < 2 ** len(proof):
            raise NoPrivilegesError(f"No privileges: index {index} out of range")

        try:
            leaf = privilege_leaf(level, caller, index)
        except (InvalidAddressError, ValueError):
            raise NoPrivilegesError(f"No privileges for {caller!r}")

        if not verify_privilege_proof(leaf, index, proof, root, self.compressor):
            raise NoPrivilegesError(f"No privileges for {normalize_address(caller)}")

        return True

    def _require_admin(self, caller: str) -> None:
        if not self.is_administrator(caller):
            logger.warning(f"Rejected administrative call from {caller!r}")
            raise NotAdminError("Only the administrator can perform this action")

    def update_root(self, caller: str, new_root: int) -> None:
        """
        Replace the published privilege root.

        Raises:
            NotAdminError: If ``caller`` is not the administrator
            InvalidFieldElementError: If ``new_root`` is not a field element
        """
        with self._lock:
            self._require_admin(caller)
            check_field_element(new_root, "root")
            previous = self._root
            self._root = new_root
        logger.info(
            f"Privilege root rotated: "
            f"{to_fixed_hex(previous) if previous is not None else None} -> {to_fixed_hex(new_root)}"
        )

    def update_administrator(self, caller: str, new_administrator: str) -> None:
        """
        Transfer the administrator role; effective immediately.

        Raises:
            NotAdminError: If ``caller`` is not the administrator
            InvalidAddressError: If ``new_administrator`` is malformed
        """
        with self._lock:
            self._require_admin(caller)
            new_administrator = normalize_address(new_administrator)
            previous = self._administrator
            self._administrator = new_administrator
        logger.info(f"Administrator transferred: {previous} -> {new_administrator}")
