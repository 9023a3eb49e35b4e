"""Pytest configuration and fixtures."""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from zkpool.config import PoolSettings  # noqa: E402
from zkpool.core.ledger import AssetKind, InMemoryLedger  # noqa: E402
from zkpool.core.mixer import PrivilegedMixer  # noqa: E402
from zkpool.core.privilege_tree import PrivilegeTree  # noqa: E402
from zkpool.core.zkproof import TransparentProofSystem  # noqa: E402

ADMIN = "0x" + "ad" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c4" * 20
RELAYER = "0x" + "e1" * 20
DENOMINATION = 10**17


@pytest.fixture
def temp_db(tmp_path):
    """Fixture providing a temporary database URL."""
    return f"sqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
def addresses():
    return {"admin": ADMIN, "alice": ALICE, "bob": BOB, "carol": CAROL, "relayer": RELAYER}


@pytest.fixture
def privilege_tree():
    """Privilege tree over Alice and Bob, both at level 1."""
    return PrivilegeTree({ALICE: 1, BOB: 1})


@pytest.fixture
def ledger():
    ledger = InMemoryLedger()
    for account in (ALICE, BOB):
        ledger.fund(account, 10 * DENOMINATION)
    return ledger


def build_mixer(ledger, tree, asset_kind=AssetKind.NATIVE, height=8, root_history_size=100):
    return PrivilegedMixer(
        verifier=TransparentProofSystem(),
        ledger=ledger,
        administrator=ADMIN,
        denomination=DENOMINATION,
        asset_kind=asset_kind,
        merkle_tree_height=height,
        root_history_size=root_history_size,
        privilege_root=tree.root_hash,
    )


@pytest.fixture
def mixer(ledger, privilege_tree):
    """Native pool of height 8 with Alice and Bob privileged."""
    return build_mixer(ledger, privilege_tree)


@pytest.fixture
def settings(temp_db):
    """Settings isolated from the environment and any .env file."""
    return PoolSettings(
        _env_file=None,
        merkle_tree_height=8,
        denomination=DENOMINATION,
        administrator=ADMIN,
        database_url=temp_db,
        secret_key="test-secret",
    )


@pytest.fixture
def mixer_factory():
    """Callable building a mixer: (ledger, tree, asset_kind=..., height=..., root_history_size=...)."""
    return build_mixer


@pytest.fixture
def denomination():
    return DENOMINATION
