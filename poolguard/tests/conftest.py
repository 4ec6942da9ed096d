"""Shared fixtures for PoolGuard tests."""

from __future__ import annotations

import struct
from typing import List, Optional

import pytest

from poolguard.algorithms.randomness import HashDerivedRandomness
from poolguard.collaborators import InMemoryFundTransfer, ManualClock
from poolguard.config import PoolGuardConfig
from poolguard.coordinator import PoolCoordinator
from poolguard.hooks import EventLog
from poolguard.models import Claim, ClaimStatus, Coverage, IncidentType, MIN_STAKE, Pool, PoolType
from poolguard.observability import ProtocolMetrics

START = 1_700_000_000


def scenario_seed(*windows: int) -> bytes:
    """32-byte seed 0x01..0x20 with its leading 4-byte windows overwritten."""
    head = struct.pack(f"<{len(windows)}I", *windows)
    return head + bytes(range(len(head) + 1, 33))


class Harness:
    """Builds pools, members, validators and claims through the coordinator."""

    def __init__(self, coordinator: PoolCoordinator, transfer: InMemoryFundTransfer,
                 clock: ManualClock, events: EventLog):
        self.coordinator = coordinator
        self.transfer = transfer
        self.clock = clock
        self.events = events

    def pool(
        self,
        pool_id: str = "pool-1",
        committee: int = 3,
        premium: int = 100,
        max_coverage: int = 10_000,
        claim_period: int = 3600,
    ) -> Pool:
        return self.coordinator.create_pool(
            authority="authority",
            pool_type=PoolType.GENERAL,
            premium_amount=premium,
            max_coverage=max_coverage,
            min_committee_size=committee,
            claim_period=claim_period,
            pool_id=pool_id,
        )

    def member(self, pool_id: str, name: str, coverage: int = 1000) -> Coverage:
        pool = self.coordinator.get_pool(pool_id)
        self.transfer.mint(name, pool.premium_amount * 10)
        return self.coordinator.join_pool(pool_id, name, coverage)

    def validators(self, pool_id: str, n: int, prefix: str = "v") -> List[str]:
        addresses = []
        for i in range(n):
            address = f"{prefix}{i}"
            self.transfer.mint(address, MIN_STAKE)
            self.coordinator.stake_validator(pool_id, address, MIN_STAKE)
            addresses.append(address)
        return addresses

    def claim(self, pool_id: str, claimant: str, amount: int = 500, ago: int = 10) -> Claim:
        # incident must not predate the coverage
        self.clock.advance(ago + 50)
        return self.coordinator.submit_claim(
            claimant=claimant,
            pool_id=pool_id,
            amount_requested=amount,
            incident_type=IncidentType.ACCIDENT,
            incident_time=self.clock.now() - ago,
            description="incident",
        )

    def decide(self, claim: Claim, approvals: Optional[List[bool]] = None,
               seed: Optional[bytes] = None) -> Claim:
        """Assign a committee and have it vote (all approve by default)."""
        self.coordinator.assign_committee(claim.claim_id, seed=seed)
        committee = claim.assigned_committee.to_list()
        ballots = approvals if approvals is not None else [True] * len(committee)
        for member, approve in zip(committee, ballots):
            self.coordinator.cast_vote(claim.claim_id, member, approve, "checked")
        return claim

    def approved_claim(self, pool_id: str, claimant: str, amount: int = 500) -> Claim:
        claim = self.decide(self.claim(pool_id, claimant, amount))
        assert claim.status == ClaimStatus.APPROVED
        return claim


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def transfer() -> InMemoryFundTransfer:
    return InMemoryFundTransfer()


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def metrics() -> ProtocolMetrics:
    return ProtocolMetrics()


@pytest.fixture
def coordinator(clock, transfer, events, metrics) -> PoolCoordinator:
    return PoolCoordinator(
        config=PoolGuardConfig(),
        transfer=transfer,
        randomness=HashDerivedRandomness(),
        clock=clock,
        hooks=events,
        metrics=metrics,
    )


@pytest.fixture
def harness(coordinator, transfer, clock, events) -> Harness:
    return Harness(coordinator, transfer, clock, events)
