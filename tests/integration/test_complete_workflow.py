"""Integration tests for the complete privileged pool workflow."""

import json

import pytest

from zkpool.core.commitment import Note
from zkpool.core.indexer import CommitmentIndexer
from zkpool.core.ledger import AssetKind, InMemoryLedger
from zkpool.core.mixer import PrivilegedMixer
from zkpool.core.privilege_tree import PrivilegeTree
from zkpool.core.zkproof import TransparentProofSystem
from zkpool.storage import DatabaseManager
from zkpool.exceptions import AlreadySpentError, NoPrivilegesError, UnknownRootError

ADMIN = "0x" + "ad" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c4" * 20
RELAYER = "0x" + "e1" * 20
DENOMINATION = 10**18


def privilege(tree, address):
    return {
        "privilege_index": tree.get_index(address),
        "privilege_level": tree.get_level(address),
        "privilege_proof": tree.get_proof_for(address),
    }


class TestCompleteMixerWorkflow:
    """Tests for complete pool workflows."""

    @pytest.fixture
    def tree(self):
        return PrivilegeTree({ALICE: 1, BOB: 1})

    @pytest.fixture
    def ledger(self):
        ledger = InMemoryLedger()
        ledger.fund(ALICE, 5 * DENOMINATION)
        ledger.fund(BOB, 5 * DENOMINATION)
        return ledger

    @pytest.fixture
    def mixer(self, ledger, tree):
        """Pool with the production tree height."""
        return PrivilegedMixer(
            verifier=TransparentProofSystem(),
            ledger=ledger,
            administrator=ADMIN,
            denomination=DENOMINATION,
            merkle_tree_height=20,
            privilege_root=tree.root_hash,
        )

    def test_withdraw_against_older_root_then_double_spend(self, mixer, tree, ledger):
        """Two deposits; withdraw the first against the older root, then retry against the newer one."""
        prover = TransparentProofSystem()
        first, second = Note.generate(), Note.generate()

        # Step 1: two deposits
        r1 = mixer.deposit(ALICE, first.commitment, tree.get_index(ALICE), 1, tree.get_proof_for(ALICE))
        r2 = mixer.deposit(BOB, second.commitment, tree.get_index(BOB), 1, tree.get_proof_for(BOB))
        assert mixer.is_known_root(r1.merkle_root)
        assert mixer.is_known_root(r2.merkle_root)

        # Step 2: proof against the root right after the first deposit
        old_path = CommitmentIndexer.from_commitments([first.commitment], height=20).get_path(first.commitment)
        assert old_path.root == r1.merkle_root
        inputs, proof = prover.generate_withdrawal_proof(first, old_path, CAROL, RELAYER, fee=10**16)
        receipt = mixer.withdraw(
            BOB, proof, inputs.root, inputs.nullifier_hash, CAROL, RELAYER, 10**16, **privilege(tree, BOB)
        )
        assert receipt.merkle_root == r1.merkle_root
        assert ledger.balance_of(CAROL) == DENOMINATION - 10**16
        assert ledger.balance_of(RELAYER) == 10**16

        # Step 3: same note against the current root
        new_path = CommitmentIndexer.from_commitments(
            [first.commitment, second.commitment], height=20
        ).get_path(first.commitment)
        assert new_path.root == r2.merkle_root
        inputs, proof = prover.generate_withdrawal_proof(first, new_path, CAROL)
        with pytest.raises(AlreadySpentError):
            mixer.withdraw(BOB, proof, inputs.root, inputs.nullifier_hash, CAROL, **privilege(tree, BOB))

        # Step 4: second note is still withdrawable
        inputs, proof = prover.generate_withdrawal_proof(second, new_path_for(second, [first, second]), BOB)
        mixer.withdraw(ALICE, proof, inputs.root, inputs.nullifier_hash, BOB, **privilege(tree, ALICE))
        assert ledger.balance_of(InMemoryLedger.POOL_ACCOUNT) == 0

    def test_allow_list_to_withdrawal(self, tmp_path, ledger):
        """Allow-list file, exported tree, deposit by one member, withdrawal by another."""
        allow_list = tmp_path / "allow-list.txt"
        allow_list.write_text(f"# members\n{ALICE}\n{BOB},2\n")
        tree = PrivilegeTree.from_file(allow_list)
        exported = json.loads(tree.to_json())["tree"]
        assert exported["entries"][BOB]["level"] == 2

        mixer = PrivilegedMixer(
            verifier=TransparentProofSystem(),
            ledger=ledger,
            administrator=ADMIN,
            denomination=DENOMINATION,
            asset_kind=AssetKind.NATIVE,
            merkle_tree_height=20,
            privilege_root=int(exported["root"], 16),
        )

        # Alice deposits with the proof read back from the export
        alice = exported["entries"][ALICE]
        alice_proof = [int(sibling, 16) for sibling in alice["proof"]]
        note = Note.generate()
        mixer.deposit(ALICE, note.commitment, alice["index"], alice["level"], alice_proof)

        # the note travels as its hex dict
        restored = Note.from_dict(json.loads(json.dumps(note.to_dict())))
        path = CommitmentIndexer.from_commitments([note.commitment], height=20).get_path(restored.commitment)
        inputs, proof = TransparentProofSystem().generate_withdrawal_proof(restored, path, CAROL)

        # Bob submits; a level-1 claim does not match his level-2 leaf
        with pytest.raises(NoPrivilegesError):
            mixer.withdraw(BOB, proof, inputs.root, inputs.nullifier_hash, CAROL,
                           privilege_index=tree.get_index(BOB), privilege_level=1,
                           privilege_proof=tree.get_proof_for(BOB))
        mixer.withdraw(BOB, proof, inputs.root, inputs.nullifier_hash, CAROL, **privilege(tree, BOB))
        assert ledger.balance_of(CAROL) == DENOMINATION

    def test_root_rotation_window(self, ledger, tree):
        mixer = PrivilegedMixer(
            verifier=TransparentProofSystem(),
            ledger=ledger,
            administrator=ADMIN,
            denomination=DENOMINATION,
            merkle_tree_height=20,
            root_history_size=3,
            privilege_root=tree.root_hash,
        )
        notes = [Note.generate() for _ in range(4)]
        for note in notes:
            mixer.deposit(ALICE, note.commitment, **privilege(tree, ALICE))

        stale = CommitmentIndexer.from_commitments([notes[0].commitment], height=20).get_path(notes[0].commitment)
        inputs, proof = TransparentProofSystem().generate_withdrawal_proof(notes[0], stale, CAROL)
        with pytest.raises(UnknownRootError):
            mixer.withdraw(BOB, proof, inputs.root, inputs.nullifier_hash, CAROL, **privilege(tree, BOB))

        fresh = new_path_for(notes[0], notes)
        inputs, proof = TransparentProofSystem().generate_withdrawal_proof(notes[0], fresh, CAROL)
        mixer.withdraw(BOB, proof, inputs.root, inputs.nullifier_hash, CAROL, **privilege(tree, BOB))

    def test_restart_from_database(self, temp_db, mixer, tree):
        """Deposits persisted by the operator rebuild an indexer with the pool's root."""
        db = DatabaseManager(temp_db)
        db.create_tables()
        session = db.get_session()
        for _ in range(3):
            receipt = mixer.deposit(ALICE, Note.generate().commitment, **privilege(tree, ALICE))
            db.add_deposit(session, receipt.commitment, receipt.leaf_index, receipt.merkle_root,
                           receipt.depositor, receipt.deposit_hash)
        session.close()

        indexer = CommitmentIndexer.from_database(db, height=20)
        assert indexer.root == mixer.get_last_root()


def new_path_for(note, notes):
    """Path of ``note`` in a pool holding ``notes`` in deposit order."""
    indexer = CommitmentIndexer.from_commitments([n.commitment for n in notes], height=20)
    return indexer.get_path(note.commitment)

