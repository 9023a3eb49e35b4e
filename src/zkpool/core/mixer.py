"""Privileged pool: deposit and withdrawal orchestration.

The mixer owns one commitment accumulator, one nullifier registry and one
privilege gatekeeper, and talks to two external collaborators: a proof
verifier and a value ledger. One instance is one deployment; it is passed
around explicitly and never stored in a module global.

Transaction Flow:

    DEPOSIT:
        1. Caller proves privilege against the published privilege root
        2. Commitment must not have been deposited before
        3. Accumulator must have a free leaf
        4. Exactly one denomination is collected from the caller
        5. Commitment is appended; the new root enters the history

    WITHDRAWAL (stages):
        PROOF_RECEIVED
        ROOT_CHECKED       root is one of the last K accumulator roots
        PROOF_VERIFIED     external verifier accepts the public inputs
        NULLIFIER_CHECKED  fee, refund and nullifier freshness
        PRIVILEGE_CHECKED  caller proves privilege
        VALUE_RELEASED     nullifier marked spent, then value released

Any failed gate ends the withdrawal with no state change. Value is never
released before the nullifier is marked.

Concurrency:
    Every mutation runs under one re-entrant lock per mixer. Proof
    verification is a pure call made before the lock is taken; the root is
    checked again under the lock before anything is mutated.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from zkpool.config import PoolSettings
from zkpool.core.gatekeeper import PrivilegeGatekeeper, ProofElement
from zkpool.core.ledger import AssetKind, InMemoryLedger, ValueLedger
from zkpool.core.merkle_tree import IncrementalMerkleTree
from zkpool.core.zkproof import ProofVerifier, PublicInputs, TransparentProofSystem
from zkpool.crypto.hasher import HashCompressor, check_field_element, get_compressor
from zkpool.crypto.nullifier import NullifierRegistry
from zkpool.utils.encoding import ZERO_ADDRESS, normalize_address, to_fixed_hex, to_int
from zkpool.exceptions import (
    AlreadySpentError,
    CommitmentAlreadyUsedError,
    FeeExceedsValueError,
    InconsistentStateError,
    InvalidDepositValueError,
    InvalidProofError,
    NonZeroRefundError,
    TreeFullError,
    UnknownRootError,
    ValueReleaseError,
)

logger = logging.getLogger(__name__)

# Called as listener(leaf_index, commitment) for every leaf the pool inserts
InsertListener = Callable[[int, int], None]


class WithdrawalStage(str, Enum):
    """Stages a withdrawal passes through, in order."""

    PROOF_RECEIVED = "proof_received"
    ROOT_CHECKED = "root_checked"
    PROOF_VERIFIED = "proof_verified"
    NULLIFIER_CHECKED = "nullifier_checked"
    PRIVILEGE_CHECKED = "privilege_checked"
    VALUE_RELEASED = "value_released"


@dataclass
class DepositReceipt:
    """Receipt for a successful deposit."""

    commitment: int
    leaf_index: int
    merkle_root: int
    depositor: str
    deposit_hash: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "commitment": to_fixed_hex(self.commitment),
            "leaf_index": self.leaf_index,
            "merkle_root": to_fixed_hex(self.merkle_root),
            "depositor": self.depositor,
            "deposit_hash": self.deposit_hash,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class WithdrawalReceipt:
    """Receipt for a successful withdrawal."""

    transaction_hash: str
    nullifier_hash: int
    merkle_root: int
    recipient: str
    relayer: str
    amount: int
    fee: int
    refund: int
    stage: WithdrawalStage = WithdrawalStage.VALUE_RELEASED
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "transaction_hash": self.transaction_hash,
            "nullifier_hash": to_fixed_hex(self.nullifier_hash),
            "merkle_root": to_fixed_hex(self.merkle_root),
            "recipient": self.recipient,
            "relayer": self.relayer,
            "amount": self.amount,
            "fee": self.fee,
            "refund": self.refund,
            "stage": self.stage.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class MixerState:
    """Operator-visible state of the pool."""

    merkle_root: int
    root_history: List[int]
    tree_height: int
    next_index: int
    num_nullifiers: int
    privilege_root: Optional[int]
    administrator: str
    denomination: int
    asset_kind: AssetKind

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "merkle_root": to_fixed_hex(self.merkle_root),
            "root_history": [to_fixed_hex(root) for root in self.root_history],
            "tree_height": self.tree_height,
            "next_index": self.next_index,
            "num_nullifiers": self.num_nullifiers,
            "privilege_root": (
                to_fixed_hex(self.privilege_root) if self.privilege_root is not None else None
            ),
            "administrator": self.administrator,
            "denomination": self.denomination,
            "asset_kind": self.asset_kind.value,
        }


class PrivilegedMixer:
    """
    Fixed-denomination pool gated by a privilege allow-list.

    Args:
        verifier: External withdrawal proof verifier
        ledger: External value ledger
        administrator: Address allowed to rotate the privilege root
        denomination: Value of every deposit
        asset_kind: NATIVE or TOKEN; only TOKEN pools accept refunds
        merkle_tree_height: Height of the commitment accumulator
        root_history_size: Number of recent roots accepted for withdrawals
        compressor: Two-to-one hash for both trees
        privilege_root: Initially published privilege root
    """

    def __init__(
        self,
        verifier: ProofVerifier,
        ledger: ValueLedger,
        administrator: str,
        denomination: int,
        asset_kind: AssetKind = AssetKind.NATIVE,
        merkle_tree_height: int = IncrementalMerkleTree.DEFAULT_HEIGHT,
        root_history_size: int = IncrementalMerkleTree.DEFAULT_ROOT_HISTORY_SIZE,
        compressor: Optional[HashCompressor] = None,
        privilege_root: Optional[int] = None,
    ):
        if denomination <= 0:
            raise ValueError("Denomination should be greater than 0")

        self.compressor = compressor or get_compressor()
        self.verifier = verifier
        self.ledger = ledger
        self.denomination = denomination
        self.asset_kind = AssetKind(asset_kind)

        self.tree = IncrementalMerkleTree(
            height=merkle_tree_height,
            root_history_size=root_history_size,
            compressor=self.compressor,
        )
        self.nullifiers = NullifierRegistry()
        self.gatekeeper = PrivilegeGatekeeper(
            administrator=administrator,
            root=privilege_root,
            compressor=self.compressor,
        )

        self.commitments: Set[int] = set()
        self.deposits: List[DepositReceipt] = []
        self.withdrawals: Dict[int, WithdrawalReceipt] = {}
        self._insert_listeners: List[InsertListener] = []
        self._lock = threading.RLock()

    @classmethod
    def from_settings(
        cls,
        settings: PoolSettings,
        verifier: Optional[ProofVerifier] = None,
        ledger: Optional[ValueLedger] = None,
    ) -> "PrivilegedMixer":
        """Build a mixer from deployment settings (transparent verifier and in-memory ledger by default)."""
        compressor = get_compressor(settings.hash_function)
        return cls(
            verifier=verifier or TransparentProofSystem(compressor),
            ledger=ledger or InMemoryLedger(),
            administrator=settings.administrator,
            denomination=settings.denomination,
            asset_kind=settings.asset_kind,
            merkle_tree_height=settings.merkle_tree_height,
            root_history_size=settings.root_history_size,
            compressor=compressor,
            privilege_root=to_int(settings.privilege_root) if settings.privilege_root else None,
        )

    def deposit(
        self,
        caller: str,
        commitment: int,
        privilege_index: int,
        privilege_level: int,
        privilege_proof: Sequence[ProofElement],
        value: Optional[int] = None,
    ) -> DepositReceipt:
        """
        Deposit one denomination under ``commitment``.

        Args:
            caller: Depositor address
            commitment: Field element H(nullifier, secret)
            privilege_index: Caller's leaf index in the privilege tree
            privilege_level: Caller's privilege level
            privilege_proof: Caller's sibling path in the privilege tree
            value: Attached value (defaults to the denomination)

        Returns:
            DepositReceipt: Leaf index and the root after insertion

        Raises:
            EmptyProofError, NoPrivilegesError: If the privilege check fails
            CommitmentAlreadyUsedError: If the commitment was deposited before
            TreeFullError: If the accumulator is full
            InvalidDepositValueError: If ``value`` differs from the denomination
        """
        caller = normalize_address(caller)
        value = self.denomination if value is None else value

        with self._lock:
            try:
                self.gatekeeper.check_privilege(caller, privilege_index, privilege_level, privilege_proof)
                check_field_element(commitment, "commitment")

                if commitment in self.commitments:
                    raise CommitmentAlreadyUsedError("The commitment has been submitted")
                if self.tree.is_full:
                    raise TreeFullError("Merkle tree is full. No more leaves can be added")
                if value != self.denomination:
                    raise InvalidDepositValueError(
                        f"Please send `denomination` value along with transaction ({self.denomination})"
                    )
            except Exception as e:
                logger.warning(f"Deposit rejected for {caller}: {e}")
                raise

            self.ledger.collect(caller, value)
            leaf_index = self.tree.insert(commitment)
            self.commitments.add(commitment)

            receipt = DepositReceipt(
                commitment=commitment,
                leaf_index=leaf_index,
                merkle_root=self.tree.root,
                depositor=caller,
                deposit_hash="deposit_" + str(uuid.uuid4()),
            )
            self.deposits.append(receipt)
            self._notify_insert(leaf_index, commitment)

        logger.info(
            f"Deposit accepted: commitment {to_fixed_hex(commitment)} at index {leaf_index}, "
            f"root {to_fixed_hex(receipt.merkle_root)}"
        )
        return receipt

    def withdraw(
        self,
        caller: str,
        proof: Any,
        root: int,
        nullifier_hash: int,
        recipient: str,
        relayer: str = ZERO_ADDRESS,
        fee: int = 0,
        refund: int = 0,
        *,
        privilege_index: int,
        privilege_level: int,
        privilege_proof: Sequence[ProofElement],
    ) -> WithdrawalReceipt:
        """
        Withdraw one deposit to ``recipient``.

        Args:
            caller: Address submitting the withdrawal (must be privileged)
            proof: Proof object understood by the verifier
            root: Accumulator root the proof was generated against
            nullifier_hash: Public nullifier hash of the withdrawn note
            recipient: Address receiving ``denomination - fee``
            relayer: Address receiving ``fee``
            fee: Relayer fee
            refund: Refund forwarded to the recipient (TOKEN pools only)
            privilege_index, privilege_level, privilege_proof: Caller's
                privilege proof

        Returns:
            WithdrawalReceipt: Details of the released value

        Raises:
            UnknownRootError: If ``root`` is not among the recent roots
            InvalidProofError: If the verifier rejects the proof
            FeeExceedsValueError: If ``fee`` exceeds the denomination
            NonZeroRefundError: If a refund is sent to a NATIVE pool
            AlreadySpentError: If the note was already withdrawn
            EmptyProofError, NoPrivilegesError: If the privilege check fails
            ValueReleaseError: If the ledger failed before paying anything
            InconsistentStateError: If the ledger failed after a partial payout
        """
        caller = normalize_address(caller)
        recipient = normalize_address(recipient)
        relayer = normalize_address(relayer)
        stage = WithdrawalStage.PROOF_RECEIVED

        try:
            if not self.tree.is_known_root(root):
                raise UnknownRootError("Cannot find your merkle root")
            stage = WithdrawalStage.ROOT_CHECKED

            public_inputs = PublicInputs.for_withdrawal(
                root=root,
                nullifier_hash=nullifier_hash,
                recipient=recipient,
                relayer=relayer,
                fee=fee,
                refund=refund,
            )
            if not self.verifier.verify(public_inputs, proof):
                raise InvalidProofError("Invalid withdraw proof")
            stage = WithdrawalStage.PROOF_VERIFIED

            with self._lock:
                # the root may have left the history while the proof was verified
                if not self.tree.is_known_root(root):
                    raise UnknownRootError("Cannot find your merkle root")
                if fee > self.denomination:
                    raise FeeExceedsValueError("Fee exceeds transfer value")
                if refund != 0 and not self.asset_kind.refund_allowed:
                    raise NonZeroRefundError("Refund value is supposed to be zero for native pools")
                if self.nullifiers.is_spent(nullifier_hash):
                    raise AlreadySpentError("The note has been already spent")
                stage = WithdrawalStage.NULLIFIER_CHECKED

                self.gatekeeper.check_privilege(caller, privilege_index, privilege_level, privilege_proof)
                stage = WithdrawalStage.PRIVILEGE_CHECKED

                transaction_hash = "withdrawal_" + str(uuid.uuid4())
                self.nullifiers.mark_spent(
                    nullifier_hash,
                    merkle_root=root,
                    recipient=recipient,
                    transaction_id=transaction_hash,
                )
                amount = self.denomination - fee
                self._release(nullifier_hash, recipient, relayer, amount, fee, refund)
                stage = WithdrawalStage.VALUE_RELEASED

                receipt = WithdrawalReceipt(
                    transaction_hash=transaction_hash,
                    nullifier_hash=nullifier_hash,
                    merkle_root=root,
                    recipient=recipient,
                    relayer=relayer,
                    amount=amount,
                    fee=fee,
                    refund=refund,
                )
                self.withdrawals[nullifier_hash] = receipt

        except AlreadySpentError:
            logger.warning(
                f"SECURITY: double-spend attempt with nullifier {to_fixed_hex(nullifier_hash)} by {caller}"
            )
            raise
        except InconsistentStateError:
            raise
        except Exception as e:
            logger.warning(f"Withdrawal rejected after stage {stage.value}: {e}")
            raise

        logger.info(
            f"Withdrawal released: {amount} to {recipient}, fee {fee} to {relayer}, "
            f"nullifier {to_fixed_hex(nullifier_hash)}"
        )
        return receipt

    def _release(
        self,
        nullifier_hash: int,
        recipient: str,
        relayer: str,
        amount: int,
        fee: int,
        refund: int,
    ) -> None:
        """Pay out a withdrawal whose nullifier is already marked."""
        paid: List[str] = []
        try:
            self.ledger.release(recipient, amount)
            paid.append("amount")
            if fee > 0:
                self.ledger.release_fee(relayer, fee)
                paid.append("fee")
            if refund > 0:
                self.ledger.release_refund(recipient, refund)
                paid.append("refund")
        except Exception as e:
            if not paid:
                self.nullifiers.revert(nullifier_hash)
                raise ValueReleaseError(f"Value release failed, withdrawal rolled back: {e}") from e

            logger.error(
                f"FATAL: partial payout ({', '.join(paid)}) for nullifier "
                f"{to_fixed_hex(nullifier_hash)} could not be completed: {e}"
            )
            raise InconsistentStateError(
                f"Withdrawal partially paid ({', '.join(paid)}); manual reconciliation required"
            ) from e

    def add_insert_listener(self, listener: InsertListener) -> None:
        """
        Register a callback for inserted leaves.

        Existing leaves are replayed to the listener first. Replay and every
        later call happen under the pool lock, so the listener sees leaves in
        exactly the pool's leaf order.
        """
        with self._lock:
            for receipt in self.deposits:
                listener(receipt.leaf_index, receipt.commitment)
            self._insert_listeners.append(listener)

    def _notify_insert(self, leaf_index: int, commitment: int) -> None:
        for listener in self._insert_listeners:
            try:
                listener(leaf_index, commitment)
            except Exception as e:
                # a failing listener never undoes the insert
                logger.error(f"Insert listener {listener!r} failed on leaf {leaf_index}: {e}")

    def restore(self, deposits: Sequence[DepositReceipt], spent: Iterable[int] = ()) -> None:
        """
        Replay stored deposits and spent nullifiers into an empty pool.

        Value for these deposits was collected by an earlier run, so no
        privilege check is made and the ledger is not touched.

        Args:
            deposits: Deposit receipts in leaf order
            spent: Nullifier hashes already withdrawn

        Raises:
            InconsistentStateError: If the pool is not empty, leaf indices have
                gaps, or a stored root differs from the replayed one
        """
        with self._lock:
            if self.tree.next_index != 0:
                raise InconsistentStateError("Deposits can only be restored into an empty pool")

            for receipt in deposits:
                if receipt.leaf_index != self.tree.next_index or receipt.commitment in self.commitments:
                    raise InconsistentStateError(
                        f"Stored deposit at leaf {receipt.leaf_index} does not follow leaf {self.tree.next_index}"
                    )
                leaf_index = self.tree.insert(receipt.commitment)
                if self.tree.root != receipt.merkle_root:
                    raise InconsistentStateError(f"Stored root for leaf {leaf_index} does not match the replayed tree")
                self.commitments.add(receipt.commitment)
                self.deposits.append(receipt)
                self._notify_insert(leaf_index, receipt.commitment)

            for nullifier_hash in spent:
                self.nullifiers.mark_spent(nullifier_hash)

        logger.info(
            f"Pool restored: {self.tree.next_index} deposits, {self.nullifiers.size} spent nullifiers, "
            f"root {to_fixed_hex(self.tree.root)}"
        )

    def is_known_root(self, root: int) -> bool:
        return self.tree.is_known_root(root)

    def is_spent(self, nullifier_hash: int) -> bool:
        return self.nullifiers.is_spent(nullifier_hash)

    def is_spent_array(self, nullifier_hashes: Sequence[int]) -> List[bool]:
        """Spent status for each nullifier hash, in order."""
        return self.nullifiers.is_spent_array(nullifier_hashes)

    def update_root(self, caller: str, new_root: int) -> None:
        """Publish a new privilege root (administrator only)."""
        with self._lock:
            self.gatekeeper.update_root(caller, new_root)

    def update_administrator(self, caller: str, new_administrator: str) -> None:
        """Transfer the administrator role (administrator only)."""
        with self._lock:
            self.gatekeeper.update_administrator(caller, new_administrator)

    @property
    def privilege_root(self) -> Optional[int]:
        return self.gatekeeper.root

    @property
    def administrator(self) -> str:
        return self.gatekeeper.administrator

    def get_last_root(self) -> int:
        return self.tree.root

    def get_state(self) -> MixerState:
        """Snapshot of the operator-visible state."""
        with self._lock:
            return MixerState(
                merkle_root=self.tree.root,
                root_history=self.tree.roots,
                tree_height=self.tree.height,
                next_index=self.tree.next_index,
                num_nullifiers=self.nullifiers.size,
                privilege_root=self.gatekeeper.root,
                administrator=self.gatekeeper.administrator,
                denomination=self.denomination,
                asset_kind=self.asset_kind,
            )

    def __repr__(self) -> str:
        return (
            f"PrivilegedMixer(denomination={self.denomination}, "
            f"asset_kind={self.asset_kind.value}, deposits={self.tree.next_index})"
        )
