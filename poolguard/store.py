"""
In-memory repository for claims-core entities.

Every entity is addressed by a stable string key and guarded by its own
re-entrant lock. Operations that touch several entities acquire all of their
locks through ``locked()``, which orders keys canonically so two operations
can never wait on each other in opposite order.

Key scheme:
    pool:<pool_id>
    coverage:<owner>@<pool_id>
    claim:<claim_id>
    validator:<pool_id>:<address>
    round:<pool_id>
    selection:<pool_id>
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Dict, Iterator, List, Optional

from .errors import UnknownEntity
from .models import (
    MAX_DISTRIBUTION_QUEUE,
    MAX_PENDING_SELECTIONS,
    BoundedList,
    Claim,
    Coverage,
    DistributionRound,
    Pool,
    SelectionState,
    Validator,
    coverage_key,
)

logger = logging.getLogger(__name__)


def pool_key(pool_id: str) -> str:
    return f"pool:{pool_id}"


def claim_key(claim_id: str) -> str:
    return f"claim:{claim_id}"


def validator_key(pool_id: str, address: str) -> str:
    return f"validator:{pool_id}:{address}"


def round_key(pool_id: str) -> str:
    return f"round:{pool_id}"


def selection_key(pool_id: str) -> str:
    return f"selection:{pool_id}"


def coverage_lock_key(owner: str, pool_id: str) -> str:
    return f"coverage:{coverage_key(owner, pool_id)}"


class Store:
    """
    Repository of pools, coverages, claims, validators and per-pool round state.

    The store itself only guarantees map consistency; callers serialize
    entity mutations by holding the entity's lock while they mutate it.
    """

    def __init__(
        self,
        queue_capacity: int = MAX_DISTRIBUTION_QUEUE,
        selection_capacity: int = MAX_PENDING_SELECTIONS,
    ) -> None:
        self._queue_capacity = queue_capacity
        self._selection_capacity = selection_capacity
        self._pools: Dict[str, Pool] = {}
        self._coverages: Dict[str, Coverage] = {}
        self._claims: Dict[str, Claim] = {}
        self._validators: Dict[str, Validator] = {}
        self._registry_order: Dict[str, List[str]] = {}
        self._rounds: Dict[str, DistributionRound] = {}
        self._selections: Dict[str, SelectionState] = {}

        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._maps_guard = threading.RLock()

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def lock_for(self, key: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def locked(self, *keys: str) -> Iterator[None]:
        """Hold the locks of every key, acquired in sorted order."""
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.lock_for(key))
            yield

    # -------------------------------------------------------------------------
    # Pools
    # -------------------------------------------------------------------------

    def has_pool(self, pool_id: str) -> bool:
        return pool_id in self._pools

    def add_pool(self, pool: Pool) -> None:
        with self._maps_guard:
            self._pools[pool.pool_id] = pool
            self._rounds[pool.pool_id] = DistributionRound(
                pool_id=pool.pool_id,
                pending_claims=BoundedList(self._queue_capacity),
            )
            self._selections[pool.pool_id] = SelectionState(
                pool_id=pool.pool_id,
                pending_claims=BoundedList(self._selection_capacity),
            )
            self._registry_order[pool.pool_id] = []

    def get_pool(self, pool_id: str) -> Pool:
        try:
            return self._pools[pool_id]
        except KeyError:
            raise UnknownEntity(f"Unknown pool: {pool_id}", pool_id=pool_id) from None

    def pools(self) -> List[Pool]:
        with self._maps_guard:
            return list(self._pools.values())

    # -------------------------------------------------------------------------
    # Coverages
    # -------------------------------------------------------------------------

    def find_coverage(self, owner: str, pool_id: str) -> Optional[Coverage]:
        return self._coverages.get(coverage_key(owner, pool_id))

    def get_coverage(self, owner: str, pool_id: str) -> Coverage:
        coverage = self.find_coverage(owner, pool_id)
        if coverage is None:
            raise UnknownEntity(
                f"No coverage for {owner} in pool {pool_id}",
                owner=owner,
                pool_id=pool_id,
            )
        return coverage

    def put_coverage(self, coverage: Coverage) -> None:
        with self._maps_guard:
            self._coverages[coverage.key] = coverage

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    def has_claim(self, claim_id: str) -> bool:
        return claim_id in self._claims

    def add_claim(self, claim: Claim) -> None:
        with self._maps_guard:
            self._claims[claim.claim_id] = claim

    def get_claim(self, claim_id: str) -> Claim:
        try:
            return self._claims[claim_id]
        except KeyError:
            raise UnknownEntity(f"Unknown claim: {claim_id}", claim_id=claim_id) from None

    def claims_for_pool(self, pool_id: str) -> List[Claim]:
        with self._maps_guard:
            return [c for c in self._claims.values() if c.pool_id == pool_id]

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------

    def find_validator(self, pool_id: str, address: str) -> Optional[Validator]:
        return self._validators.get(validator_key(pool_id, address))

    def get_validator(self, pool_id: str, address: str) -> Validator:
        validator = self.find_validator(pool_id, address)
        if validator is None:
            raise UnknownEntity(
                f"Unknown validator {address} in pool {pool_id}",
                pool_id=pool_id,
                address=address,
            )
        return validator

    def add_validator(self, validator: Validator) -> None:
        """Insert and append to the pool's registration order."""
        with self._maps_guard:
            self._validators[validator_key(validator.pool_id, validator.address)] = validator
            self._registry_order.setdefault(validator.pool_id, []).append(validator.address)

    def registration_order(self, pool_id: str) -> List[str]:
        with self._maps_guard:
            return list(self._registry_order.get(pool_id, []))

    # -------------------------------------------------------------------------
    # Per-pool state
    # -------------------------------------------------------------------------

    def get_round(self, pool_id: str) -> DistributionRound:
        try:
            return self._rounds[pool_id]
        except KeyError:
            raise UnknownEntity(f"Unknown pool: {pool_id}", pool_id=pool_id) from None

    def get_selection(self, pool_id: str) -> SelectionState:
        try:
            return self._selections[pool_id]
        except KeyError:
            raise UnknownEntity(f"Unknown pool: {pool_id}", pool_id=pool_id) from None

    def stats(self) -> Dict[str, int]:
        with self._maps_guard:
            return {
                "pools": len(self._pools),
                "coverages": len(self._coverages),
                "claims": len(self._claims),
                "validators": len(self._validators),
            }


def touch(*entities) -> None:
    """Bump the version of each committed entity."""
    for entity in entities:
        entity.version += 1
