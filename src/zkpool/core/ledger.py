"""Value ledger interface and an in-memory implementation.

The pool never moves value itself. It asks a ``ValueLedger`` to collect the
denomination on deposit and to release it on withdrawal, and only after the
nullifier has been marked spent.
"""

import logging
import threading
from collections import defaultdict
from enum import Enum
from typing import Dict, List, Protocol, Tuple, runtime_checkable

from zkpool.utils.encoding import normalize_address
from zkpool.exceptions import InsufficientFundsError

logger = logging.getLogger(__name__)


class AssetKind(str, Enum):
    """
    Kind of value held by a pool.

    NATIVE pools hold the chain's own coin. TOKEN pools hold a token and may
    forward a native refund to the recipient along with the withdrawal.
    """

    NATIVE = "native"
    TOKEN = "token"

    @property
    def refund_allowed(self) -> bool:
        return self is AssetKind.TOKEN


@runtime_checkable
class ValueLedger(Protocol):
    """Settlement layer as seen by the pool."""

    def collect(self, depositor: str, amount: int) -> None:
        ...

    def release(self, recipient: str, amount: int) -> None:
        ...

    def release_fee(self, relayer: str, amount: int) -> None:
        ...

    def release_refund(self, recipient: str, amount: int) -> None:
        ...


class InMemoryLedger:
    """
    Account-balance ledger kept in process memory.

    Depositors must be funded before they can deposit. Collected value goes
    to the pool account and every release is paid from it; refunds are paid
    from a separate refund reserve, the way a relayer forwards native value
    with a token withdrawal.
    """

    POOL_ACCOUNT = "pool"
    REFUND_ACCOUNT = "refund-reserve"

    def __init__(self):
        self._balances: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()
        self.transfers: List[Tuple[str, str, int]] = []

    def _key(self, account: str) -> str:
        if account in (self.POOL_ACCOUNT, self.REFUND_ACCOUNT):
            return account
        return normalize_address(account)

    def balance_of(self, account: str) -> int:
        return self._balances.get(self._key(account), 0)

    def fund(self, account: str, amount: int) -> None:
        """Credit an account out of thin air (test and demo setup)."""
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        with self._lock:
            self._balances[self._key(account)] += amount

    def _transfer(self, source: str, destination: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        source, destination = self._key(source), self._key(destination)
        with self._lock:
            if self._balances[source] < amount:
                raise InsufficientFundsError(
                    f"{source} holds {self._balances[source]}, needs {amount}"
                )
            self._balances[source] -= amount
            self._balances[destination] += amount
            self.transfers.append((source, destination, amount))
        logger.debug(f"Transferred {amount} from {source} to {destination}")

    def collect(self, depositor: str, amount: int) -> None:
        self._transfer(depositor, self.POOL_ACCOUNT, amount)

    def release(self, recipient: str, amount: int) -> None:
        self._transfer(self.POOL_ACCOUNT, recipient, amount)

    def release_fee(self, relayer: str, amount: int) -> None:
        self._transfer(self.POOL_ACCOUNT, relayer, amount)

    def release_refund(self, recipient: str, amount: int) -> None:
        self._transfer(self.REFUND_ACCOUNT, recipient, amount)
