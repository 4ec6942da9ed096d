"""
External collaborators consumed by the claims core.

The core only talks to these through narrow interfaces:

- Ledger: pool liquidity (get_liquidity / debit / credit)
- FundTransfer: moves value between accounts; a refusal aborts the caller
- Clock: current unix time in seconds

In-memory implementations are provided for tests, the demo and embedding.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Protocol

from .errors import InsufficientPoolFunds, InvalidAmount, TransferFailed
from .models import Pool, U64_MAX, checked_add, checked_div, checked_mul, checked_sub
from .store import Store, touch

logger = logging.getLogger(__name__)

IDLE_RESERVE_PERCENT = 20


# =============================================================================
# Interfaces
# =============================================================================

class Ledger(Protocol):
    """Atomic pool balance operations."""

    def get_liquidity(self, pool_id: str) -> int:
        ...

    def debit(self, pool_id: str, amount: int) -> None:
        ...

    def credit(self, pool_id: str, amount: int) -> None:
        ...


class FundTransfer(Protocol):
    """Moves value between accounts; raises TransferFailed on refusal."""

    def transfer(self, from_account: str, to_account: str, amount: int) -> None:
        ...


class Clock(Protocol):
    def now(self) -> int:
        ...


# =============================================================================
# Implementations
# =============================================================================

class PoolLedger:
    """
    Ledger backed by ``Pool.total_liquidity`` in the store.

    Callers are expected to hold the pool lock; the ledger does not lock.
    """

    def __init__(self, store: Store):
        self._store = store

    def get_liquidity(self, pool_id: str) -> int:
        return self._store.get_pool(pool_id).total_liquidity

    def debit(self, pool_id: str, amount: int) -> None:
        pool = self._store.get_pool(pool_id)
        if amount > pool.total_liquidity:
            raise InsufficientPoolFunds(
                f"Pool {pool_id} holds {pool.total_liquidity}, cannot debit {amount}",
                pool_id=pool_id,
                liquidity=pool.total_liquidity,
                amount=amount,
            )
        pool.total_liquidity = checked_sub(pool.total_liquidity, amount)
        touch(pool)

    def credit(self, pool_id: str, amount: int) -> None:
        pool = self._store.get_pool(pool_id)
        pool.total_liquidity = checked_add(pool.total_liquidity, amount)
        touch(pool)


class InMemoryFundTransfer:
    """Account balances held in a dict; transfers are all-or-nothing."""

    def __init__(self, balances: Dict[str, int] = None):
        self._balances: Dict[str, int] = dict(balances or {})
        self._lock = threading.Lock()
        self.transfers = 0

    def mint(self, account: str, amount: int) -> None:
        """Give ``account`` funds out of thin air (test and demo setup)."""
        if amount <= 0:
            raise InvalidAmount("mint amount must be positive", amount=amount)
        with self._lock:
            self._balances[account] = checked_add(self._balances.get(account, 0), amount)

    def balance(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def transfer(self, from_account: str, to_account: str, amount: int) -> None:
        if amount <= 0:
            raise TransferFailed("transfer amount must be positive", amount=amount)
        with self._lock:
            available = self._balances.get(from_account, 0)
            if available < amount:
                raise TransferFailed(
                    f"{from_account} holds {available}, cannot move {amount}",
                    from_account=from_account,
                    to_account=to_account,
                    amount=amount,
                )
            target = self._balances.get(to_account, 0)
            if target + amount > U64_MAX:
                raise TransferFailed(f"{to_account} balance would overflow")
            self._balances[from_account] = available - amount
            self._balances[to_account] = target + amount
            self.transfers += 1
        logger.debug(f"Transferred {amount} {from_account} -> {to_account}")


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock under test control."""

    def __init__(self, start: int = 1_700_000_000):
        self._now = start

    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = timestamp

    def advance(self, seconds: int) -> int:
        self._now += seconds
        return self._now


# =============================================================================
# Helpers
# =============================================================================

def idle_funds(pool: Pool, vault_balance: int) -> int:
    """
    Funds in the vault that no active claim or reserve needs.

    idle = vault - active_claims * (max_coverage / 2) - 20% of pool liquidity,
    floored at zero. Active claims are assumed to average half of max coverage.
    """
    reserved_for_claims = checked_mul(
        pool.active_claim_count, checked_div(pool.max_coverage, 2), limit=U64_MAX
    )
    min_reserve = checked_div(
        checked_mul(pool.total_liquidity, IDLE_RESERVE_PERCENT, limit=U64_MAX), 100
    )
    total_reserved = checked_add(reserved_for_claims, min_reserve)
    if vault_balance > total_reserved:
        return vault_balance - total_reserved
    return 0
