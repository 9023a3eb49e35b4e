"""Storage layer for persistent data."""

from zkpool.storage.database import (
    DatabaseManager,
    DepositRecord,
    WithdrawalRecord,
    RootRecord,
    RootKind,
    Base,
    get_db_manager,
    reset_db_manager,
)

__all__ = [
    "DatabaseManager",
    "DepositRecord",
    "WithdrawalRecord",
    "RootRecord",
    "RootKind",
    "Base",
    "get_db_manager",
    "reset_db_manager",
]
