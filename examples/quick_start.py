#!/usr/bin/env python3
"""
Quick start guide for the privileged pool.

Run this to see a complete workflow example: build a privilege tree, deposit
as one allow-listed address, withdraw as another to a fresh recipient.
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from zkpool.core.commitment import Note
from zkpool.core.indexer import CommitmentIndexer
from zkpool.core.ledger import InMemoryLedger
from zkpool.core.mixer import PrivilegedMixer
from zkpool.core.privilege_tree import PrivilegeTree
from zkpool.core.zkproof import TransparentProofSystem
from zkpool.exceptions import AlreadySpentError
from zkpool.utils.encoding import to_checksum_address, to_fixed_hex

ADMIN = "0x" + "ad" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
RECIPIENT = "0x" + "c4" * 20
DENOMINATION = 10**18


def main():
    """Run a simple example of the privileged pool."""

    print("=" * 70)
    print("PRIVILEGED POOL QUICK START EXAMPLE")
    print("=" * 70)
    print()

    # Step 1: Build the privilege tree
    print("Step 1: Build the privilege tree for Alice and Bob")
    print("-" * 70)
    tree = PrivilegeTree({ALICE: 1, BOB: 1})
    print(f"✓ Privilege root: {to_fixed_hex(tree.root_hash)}")
    for entry in tree.entries:
        print(f"  {to_checksum_address(entry.address)}  index {entry.index}  level {entry.level}")
    print()

    # Step 2: Initialize the pool
    print("Step 2: Initialize the pool")
    print("-" * 70)
    ledger = InMemoryLedger()
    ledger.fund(ALICE, 2 * DENOMINATION)
    prover = TransparentProofSystem()
    mixer = PrivilegedMixer(
        verifier=prover,
        ledger=ledger,
        administrator=ADMIN,
        denomination=DENOMINATION,
        merkle_tree_height=20,
        privilege_root=tree.root_hash,
    )
    print(f"✓ {mixer}")
    print()

    # Step 3: Alice deposits
    print("Step 3: Alice deposits one denomination")
    print("-" * 70)
    note = Note.generate()
    receipt = mixer.deposit(
        ALICE, note.commitment, tree.get_index(ALICE), tree.get_level(ALICE), tree.get_proof_for(ALICE)
    )
    indexer = CommitmentIndexer.from_commitments([note.commitment], height=20)
    print(f"✓ Deposit created")
    print(f"  Deposit Hash: {receipt.deposit_hash}")
    print(f"  Commitment: {to_fixed_hex(receipt.commitment)[:34]}...")
    print(f"  Tree Index: {receipt.leaf_index}")
    print()

    # Step 4: Bob withdraws Alice's note to a fresh address
    print("Step 4: Bob submits the withdrawal to a fresh recipient")
    print("-" * 70)
    path = indexer.get_path(note.commitment)
    public_inputs, proof = prover.generate_withdrawal_proof(note, path, RECIPIENT)
    withdrawal = mixer.withdraw(
        BOB,
        proof,
        public_inputs.root,
        public_inputs.nullifier_hash,
        RECIPIENT,
        privilege_index=tree.get_index(BOB),
        privilege_level=tree.get_level(BOB),
        privilege_proof=tree.get_proof_for(BOB),
    )
    print(f"✓ Withdrawal released: {withdrawal.amount} to {to_checksum_address(withdrawal.recipient)}")
    print()

    # Step 5: The same note cannot be spent twice
    print("Step 5: Try to spend the same note again")
    print("-" * 70)
    try:
        mixer.withdraw(
            BOB,
            proof,
            public_inputs.root,
            public_inputs.nullifier_hash,
            RECIPIENT,
            privilege_index=tree.get_index(BOB),
            privilege_level=tree.get_level(BOB),
            privilege_proof=tree.get_proof_for(BOB),
        )
    except AlreadySpentError as e:
        print(f"✓ Rejected: {e}")
    print()

    print("=" * 70)
    print(f"Pool balance: {ledger.balance_of(InMemoryLedger.POOL_ACCOUNT)}")
    print("=" * 70)


if __name__ == "__main__":
    main()
