"""
Pool membership bookkeeping: pool creation, joining and premium payment.

Each operation validates every input first, then moves funds through the
FundTransfer collaborator, then commits to the store and the ledger. A refused
transfer therefore leaves no trace.
"""

from __future__ import annotations

import hashlib
import logging
import struct
from typing import Optional

from .collaborators import FundTransfer, Ledger
from .config import ProtocolConfig
from .errors import (
    AlreadyRegistered,
    DuplicateEntry,
    ExcessiveCoverageAmount,
    InvalidClaimPeriod,
    InvalidCommitteeSize,
    InvalidCoverageAmount,
    InvalidPremiumAmount,
    UnauthorizedClaimant,
)
from .models import Coverage, Pool, PoolType, checked_add
from .store import Store, touch

logger = logging.getLogger(__name__)


def derive_pool_id(authority: str, pool_type: PoolType, nonce: int) -> str:
    digest = hashlib.sha256(
        b"pool" + authority.encode("utf-8") + pool_type.name.encode() + struct.pack("<Q", nonce)
    ).hexdigest()
    return digest[:16]


def validate_pool_params(
    premium_amount: int,
    max_coverage: int,
    min_committee_size: int,
    claim_period: int,
    config: ProtocolConfig,
) -> None:
    """Raise the first violated pool-creation rule, in a fixed order."""
    if premium_amount <= 0:
        raise InvalidPremiumAmount("Premium must be positive", premium_amount=premium_amount)
    if max_coverage <= premium_amount:
        raise InvalidCoverageAmount(
            "Coverage must exceed premium",
            max_coverage=max_coverage,
            premium_amount=premium_amount,
        )
    if not config.min_committee_size <= min_committee_size <= config.max_committee_size:
        raise InvalidCommitteeSize(
            f"Committee size must be in [{config.min_committee_size}, {config.max_committee_size}]",
            min_committee_size=min_committee_size,
        )
    if claim_period <= 0:
        raise InvalidClaimPeriod("Claim period must be positive", claim_period=claim_period)


class MembershipBook:
    """Creates pools and tracks member coverage and premiums."""

    def __init__(
        self,
        store: Store,
        ledger: Ledger,
        transfer: FundTransfer,
        config: Optional[ProtocolConfig] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._transfer = transfer
        self._config = config or ProtocolConfig()

    def create_pool(
        self,
        pool_id: str,
        pool_type: PoolType,
        authority: str,
        premium_amount: int,
        max_coverage: int,
        min_committee_size: int,
        claim_period: int,
        now: int,
    ) -> Pool:
        pool_type = PoolType.parse(pool_type)
        validate_pool_params(premium_amount, max_coverage, min_committee_size, claim_period, self._config)
        if self._store.has_pool(pool_id):
            raise DuplicateEntry(f"Pool {pool_id} already exists", pool_id=pool_id)

        pool = Pool(
            pool_id=pool_id,
            pool_type=pool_type,
            authority=authority,
            premium_amount=premium_amount,
            max_coverage=max_coverage,
            claim_period=claim_period,
            min_committee_size=min_committee_size,
            created_at=now,
        )
        self._store.add_pool(pool)
        logger.info(
            f"Pool {pool_id} created: type={pool_type.name}, premium={premium_amount}, "
            f"coverage={max_coverage}, committee={min_committee_size}"
        )
        return pool

    def join_pool(self, pool_id: str, member: str, coverage_limit: int, now: int) -> Coverage:
        """
        Raises:
            ExcessiveCoverageAmount: coverage above the pool maximum
            InvalidCoverageAmount: coverage not positive
            AlreadyRegistered: member already holds coverage in this pool
            TransferFailed: premium could not be collected
        """
        pool = self._store.get_pool(pool_id)
        if coverage_limit > pool.max_coverage:
            raise ExcessiveCoverageAmount(
                f"Coverage {coverage_limit} exceeds pool maximum {pool.max_coverage}",
                coverage_limit=coverage_limit,
                max_coverage=pool.max_coverage,
            )
        if coverage_limit <= 0:
            raise InvalidCoverageAmount("Coverage must be positive", coverage_limit=coverage_limit)
        if self._store.find_coverage(member, pool_id) is not None:
            raise AlreadyRegistered(f"{member} already covered by pool {pool_id}")
        new_members = checked_add(pool.total_members, 1)
        checked_add(pool.total_liquidity, pool.premium_amount)

        self._transfer.transfer(member, pool.vault, pool.premium_amount)

        coverage = Coverage(
            owner=member,
            pool_id=pool_id,
            coverage_limit=coverage_limit,
            active=True,
            joined_at=now,
            premiums_paid=pool.premium_amount,
            last_payment=now,
        )
        self._store.put_coverage(coverage)
        self._ledger.credit(pool_id, pool.premium_amount)
        pool.total_members = new_members
        touch(pool)
        logger.info(f"{member} joined pool {pool_id} with coverage {coverage_limit}")
        return coverage

    def pay_premium(self, pool_id: str, owner: str, now: int, caller: Optional[str] = None) -> Coverage:
        """Collect one premium and reactivate the coverage."""
        pool = self._store.get_pool(pool_id)
        coverage = self._store.get_coverage(owner, pool_id)
        if caller is not None and caller != coverage.owner:
            raise UnauthorizedClaimant(
                f"{caller} cannot pay premium for {owner}",
                caller=caller,
                owner=owner,
            )
        premiums_paid = checked_add(coverage.premiums_paid, pool.premium_amount)
        checked_add(pool.total_liquidity, pool.premium_amount)

        self._transfer.transfer(owner, pool.vault, pool.premium_amount)

        self._ledger.credit(pool_id, pool.premium_amount)
        coverage.premiums_paid = premiums_paid
        coverage.last_payment = now
        coverage.active = True
        touch(coverage)
        logger.debug(f"Premium {pool.premium_amount} paid by {owner} for pool {pool_id}")
        return coverage

    def deactivate(self, pool_id: str, owner: str) -> Coverage:
        """Suspend coverage (e.g. lapsed premium); pay_premium reactivates."""
        coverage = self._store.get_coverage(owner, pool_id)
        coverage.active = False
        touch(coverage)
        return coverage
