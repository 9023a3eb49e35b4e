"""Tests for database storage layer."""

import pytest
from sqlalchemy.exc import IntegrityError

from zkpool.storage.database import (
    DatabaseManager,
    DepositRecord,
    RootKind,
    get_db_manager,
    reset_db_manager,
)
from zkpool.utils.encoding import to_fixed_hex

DEPOSITOR = "0x" + "a1" * 20
RECIPIENT = "0x" + "b0" * 20
RELAYER = "0x" + "e1" * 20


@pytest.fixture
def db(temp_db):
    """Create a temporary database for testing."""
    manager = DatabaseManager(temp_db)
    manager.create_tables()
    yield manager
    manager.drop_tables()


class TestDatabaseManager:
    """Test database manager initialization."""

    def test_database_creation(self, db):
        assert db.engine is not None
        assert db.SessionLocal is not None

    def test_get_session(self, db):
        session = db.get_session()
        assert session is not None
        session.close()

    def test_default_manager_is_cached(self, temp_db):
        reset_db_manager()
        try:
            first = get_db_manager(temp_db)
            assert get_db_manager(temp_db) is first
        finally:
            reset_db_manager()


class TestDepositRecords:
    """Test deposit table operations."""

    def test_add_deposit(self, db):
        session = db.get_session()
        record = db.add_deposit(
            session,
            commitment=5,
            leaf_index=0,
            merkle_root=2**255,
            depositor=DEPOSITOR,
            deposit_hash="deposit_1",
        )
        assert record.commitment == to_fixed_hex(5)
        assert record.merkle_root == to_fixed_hex(2**255)
        assert record.timestamp is not None
        session.close()

    def test_deposits_in_leaf_order(self, db):
        session = db.get_session()
        for index in (2, 0, 1):
            db.add_deposit(session, 100 + index, index, 1, DEPOSITOR, f"deposit_{index}")

        records = db.get_deposits(session)
        assert [r.leaf_index for r in records] == [0, 1, 2]
        assert db.get_deposit_count(session) == 3
        session.close()

    def test_get_deposit_by_commitment(self, db):
        session = db.get_session()
        db.add_deposit(session, 77, 0, 1, DEPOSITOR, "deposit_77")

        record = db.get_deposit_by_commitment(session, 77)
        assert isinstance(record, DepositRecord)
        assert record.leaf_index == 0
        assert db.get_deposit_by_commitment(session, 78) is None
        session.close()

    def test_duplicate_commitment_rejected(self, db):
        session = db.get_session()
        db.add_deposit(session, 9, 0, 1, DEPOSITOR, "deposit_a")
        with pytest.raises(IntegrityError):
            db.add_deposit(session, 9, 1, 1, DEPOSITOR, "deposit_b")
        session.rollback()
        session.close()


class TestWithdrawalRecords:
    """Test withdrawal table operations."""

    def test_add_withdrawal(self, db):
        session = db.get_session()
        amount = 10**18 - 10**15
        record = db.add_withdrawal(
            session,
            nullifier_hash=123,
            transaction_hash="withdrawal_1",
            merkle_root=456,
            recipient=RECIPIENT,
            relayer=RELAYER,
            amount=amount,
            fee=10**15,
        )
        assert int(record.amount) == amount
        assert record.fee == str(10**15)
        assert record.refund == "0"
        session.close()

    def test_is_nullifier_recorded(self, db):
        session = db.get_session()
        assert not db.is_nullifier_recorded(session, 123)
        db.add_withdrawal(session, 123, "withdrawal_1", 456, RECIPIENT, RELAYER, 1)
        assert db.is_nullifier_recorded(session, 123)
        session.close()

    def test_recent_withdrawals(self, db):
        session = db.get_session()
        for i in range(5):
            db.add_withdrawal(session, i + 1, f"withdrawal_{i}", 1, RECIPIENT, RELAYER, 1)

        recent = db.get_recent_withdrawals(session, limit=3)
        assert [r.transaction_hash for r in recent] == ["withdrawal_4", "withdrawal_3", "withdrawal_2"]
        session.close()

    def test_all_withdrawals_oldest_first(self, db):
        session = db.get_session()
        assert db.get_withdrawals(session) == []
        for i in range(3):
            db.add_withdrawal(session, 30 - i, f"withdrawal_{i}", 1, RECIPIENT, RELAYER, 1)

        records = db.get_withdrawals(session)
        assert [r.nullifier_hash for r in records] == [to_fixed_hex(30), to_fixed_hex(29), to_fixed_hex(28)]
        session.close()


class TestRootRecords:
    """Test root snapshot operations."""

    def test_current_root_per_kind(self, db):
        session = db.get_session()
        db.add_root(session, 1, RootKind.COMMITMENT, leaf_count=1)
        db.add_root(session, 2, RootKind.COMMITMENT, leaf_count=2)
        db.add_root(session, 99, RootKind.PRIVILEGE)

        current = db.get_current_root(session)
        assert current.root == to_fixed_hex(2)
        assert current.leaf_count == 2
        assert db.get_current_privilege_root(session).root == to_fixed_hex(99)
        session.close()

    def test_no_root_yet(self, db):
        session = db.get_session()
        assert db.get_current_root(session) is None
        assert db.get_current_privilege_root(session) is None
        session.close()
