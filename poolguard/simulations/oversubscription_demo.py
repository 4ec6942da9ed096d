#!/usr/bin/env python3
"""
PoolGuard End-to-End Demo: Oversubscribed Payout Round

This demo walks one pool through the whole claims pipeline:
1. Create a pool and enroll members
2. Stake validators
3. Submit claims, assign committees, vote
4. Queue the approved claims
5. Run a distribution round with less liquidity than demand
6. Pay the selected claims

Run with: python -m poolguard demo
"""

from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

from poolguard import (
    ClaimPaidOutEvent,
    EventLog,
    IncidentType,
    InMemoryFundTransfer,
    ManualClock,
    PoolCoordinator,
    PoolGuardConfig,
    PoolType,
    ProtocolMetrics,
)
from poolguard.errors import PoolGuardError


# =============================================================================
# Demo Configuration
# =============================================================================

@dataclass
class DemoConfig:
    """Configuration for the demo."""
    num_members: int = 6
    num_validators: int = 5
    committee_size: int = 3
    premium: int = 1_000
    max_coverage: int = 10_000
    claim_amount: int = 3_000
    honest_ratio: float = 0.8  # probability a validator approves a valid claim
    seed: int = 7
    verbose: bool = True


def _say(config: DemoConfig, text: str = "") -> None:
    if config.verbose:
        print(text)


def run_demo(config: Optional[DemoConfig] = None, pg_config: Optional[PoolGuardConfig] = None) -> Dict[str, Any]:
    """Run the demo and return a summary of the round."""
    config = config or DemoConfig()
    rng = random.Random(config.seed)
    clock = ManualClock()
    transfer = InMemoryFundTransfer()
    events = EventLog()
    coordinator = PoolCoordinator(
        config=pg_config or PoolGuardConfig(),
        transfer=transfer,
        clock=clock,
        hooks=events,
        metrics=ProtocolMetrics(),
    )
    stake = coordinator.config.protocol.min_stake

    _say(config, "=" * 70)
    _say(config, "PoolGuard Oversubscription Demo")
    _say(config, "=" * 70)

    # -------------------------------------------------------------------------
    # Step 1: Pool and members
    # -------------------------------------------------------------------------
    pool = coordinator.create_pool(
        authority="authority",
        pool_type=PoolType.WEATHER,
        premium_amount=config.premium,
        max_coverage=config.max_coverage,
        min_committee_size=config.committee_size,
        claim_period=7 * 24 * 3600,
        pool_id="demo-weather",
    )
    members = [f"member-{i}" for i in range(config.num_members)]
    for member in members:
        transfer.mint(member, config.premium * 10)
        coordinator.join_pool(pool.pool_id, member, config.max_coverage)
    _say(config, f"Pool {pool.pool_id}: {len(members)} members, liquidity {coordinator.ledger.get_liquidity(pool.pool_id)}")

    # -------------------------------------------------------------------------
    # Step 2: Validators
    # -------------------------------------------------------------------------
    for i in range(config.num_validators):
        address = f"validator-{i}"
        transfer.mint(address, stake)
        coordinator.stake_validator(pool.pool_id, address, stake)
    _say(config, f"Validators staked: {config.num_validators}")

    # -------------------------------------------------------------------------
    # Step 3: Claims and votes
    # -------------------------------------------------------------------------
    clock.advance(3600)
    for member in members:
        claim = coordinator.submit_claim(
            claimant=member,
            pool_id=pool.pool_id,
            amount_requested=config.claim_amount,
            incident_type=IncidentType.NATURAL_DISASTER,
            incident_time=clock.now() - 60,
            description="storm damage",
        )
        request = coordinator.request_committee(claim.claim_id)
        coordinator.fulfill_committee(request)
        for validator in claim.assigned_committee.to_list():
            approve = rng.random() < config.honest_ratio
            coordinator.cast_vote(claim.claim_id, validator, approve, "reviewed evidence")
        _say(config, f"  {claim.claim_id[:12]}... {claim.status.name} ({claim.approvals}/{claim.committee_size})")
        if claim.status.name == "APPROVED":
            coordinator.enqueue_claim(claim.claim_id)

    # -------------------------------------------------------------------------
    # Step 4: Distribution
    # -------------------------------------------------------------------------
    clock.advance(60)
    round_seed = hashlib.sha256(f"demo-round-{config.seed}".encode()).digest()
    result = coordinator.run_round(pool.pool_id, seed=round_seed)
    _say(config, (
        f"Round {result.round_number}: oversubscribed={result.is_oversubscribed}, "
        f"{result.selected_count}/{result.total_claims} selected, "
        f"available={result.available_funds}, requested={result.total_requested}"
    ))

    paid = 0
    for claim_id in list(result.selected_claims):
        try:
            paid += coordinator.payout(claim_id)
        except PoolGuardError as e:
            _say(config, f"  payout {claim_id[:12]}... failed: {e.code}")
    _say(config, f"Paid out {paid}; remaining liquidity {coordinator.ledger.get_liquidity(pool.pool_id)}")

    summary = {
        "round": result.to_dict(),
        "paid": paid,
        "payouts": len(events.of_type(ClaimPaidOutEvent)),
        "events": len(events.events),
        "stats": coordinator.get_stats(),
    }
    if config.verbose:
        print()
        print(coordinator.metrics.to_prometheus())
    return summary


if __name__ == "__main__":
    run_demo()
