"""
Property-based tests for the claims core.

Properties:
- Committees are duplicate-free, sized exactly k, and drawn from the candidates
- Reputation stays within [0, MAX_REPUTATION] under any outcome sequence
- Oversubscribed rounds never admit more than the funds cover at the average size
- Every normal round selects exactly the pending queue
- Votes never exceed the committee, and a full committee always finalizes
- A claim is paid at most once
"""

import pytest
from hypothesis import given, settings, strategies as st

from poolguard.algorithms.selection import CommitteeSelector, probe_select
from poolguard.claims import ClaimStateMachine
from poolguard.collaborators import InMemoryFundTransfer, PoolLedger
from poolguard.config import ProtocolConfig
from poolguard.distribution import DistributionEngine, select_oversubscribed
from poolguard.errors import InsufficientCandidates, StateError
from poolguard.models import (
    MAX_REPUTATION,
    MIN_STAKE,
    Claim,
    ClaimStatus,
    IncidentType,
    Pool,
    PoolType,
    Validator,
)
from poolguard.reputation import ReputationLedger
from poolguard.store import Store
from poolguard.validation import ValidationAggregator, majority_threshold

NOW = 1_700_000_000

seeds = st.binary(min_size=32, max_size=32)


@st.composite
def selection_case(draw):
    n = draw(st.integers(min_value=1, max_value=40))
    k = draw(st.integers(min_value=1, max_value=min(n, 10)))
    return draw(seeds), n, k


def _pool(committee: int = 3, liquidity: int = 0) -> Pool:
    return Pool(
        pool_id="p",
        pool_type=PoolType.GENERAL,
        authority="authority",
        premium_amount=100,
        max_coverage=10**12,
        claim_period=3600,
        min_committee_size=committee,
        total_liquidity=liquidity,
    )


def _claim(claim_id: str, amount: int, status: ClaimStatus = ClaimStatus.PENDING) -> Claim:
    return Claim(
        claim_id=claim_id,
        claimant=f"member-{claim_id}",
        pool_id="p",
        amount_requested=amount,
        incident_type=IncidentType.OTHER,
        incident_time=NOW - 1,
        description="",
        created_at=NOW,
        status=status,
        payout_amount=amount if status == ClaimStatus.APPROVED else None,
    )


# =============================================================================
# Selection
# =============================================================================

class TestSelectionProperties:
    """Properties of seeded sampling."""

    @given(selection_case())
    @settings(max_examples=100)
    def test_committee_shape(self, case):
        seed, n, k = case
        candidates = [f"v{i}" for i in range(n)]

        committee = CommitteeSelector().select(seed, candidates, k)

        assert len(committee) == k
        assert len(set(committee)) == k
        assert set(committee) <= set(candidates)

    @given(selection_case())
    @settings(max_examples=50)
    def test_deterministic(self, case):
        seed, n, k = case
        assert probe_select(seed, n, k) == probe_select(seed, n, k)

    @given(seeds, st.integers(min_value=0, max_value=20), st.integers(min_value=1, max_value=10))
    @settings(max_examples=50)
    def test_too_few_candidates(self, seed, n, extra):
        with pytest.raises(InsufficientCandidates):
            probe_select(seed, n, n + extra)


# =============================================================================
# Reputation
# =============================================================================

class TestReputationProperties:
    """Reputation and stake bounds."""

    @given(
        st.integers(min_value=0, max_value=MAX_REPUTATION),
        st.lists(st.booleans(), max_size=60),
        st.integers(min_value=3, max_value=10),
    )
    @settings(max_examples=50)
    def test_bounds_hold(self, start, outcomes, committee):
        ledger = ReputationLedger(ProtocolConfig())
        pool = _pool(committee)
        validator = Validator(address="v", pool_id="p", stake_amount=MIN_STAKE, reputation=start)

        for aligned in outcomes:
            stake_before = validator.stake_amount
            ledger.apply_outcome(validator, aligned, pool, NOW)
            assert 0 <= validator.reputation <= MAX_REPUTATION
            assert 0 <= validator.stake_amount <= stake_before
            assert validator.successful_validations <= validator.validations_completed

        assert validator.validations_completed == len(outcomes)


# =============================================================================
# Distribution
# =============================================================================

class TestDistributionProperties:
    """Round selection properties."""

    @given(
        st.lists(st.integers(min_value=1, max_value=10**9), min_size=1, max_size=50),
        st.integers(min_value=0, max_value=10**10),
        seeds,
    )
    @settings(max_examples=100)
    def test_oversubscribed_admits_at_average_size(self, amounts, available, seed):
        total = sum(amounts)
        available = available % total
        pending = [f"c{i}" for i in range(len(amounts))]

        selected = select_oversubscribed(pending, total, available, seed)

        avg = total // len(pending)
        assert len(selected) == len(set(selected))
        assert set(selected) <= set(pending)
        assert len(selected) * avg <= available

    @given(st.lists(st.integers(min_value=1, max_value=10**6), max_size=20), st.integers(min_value=1, max_value=5))
    @settings(max_examples=50)
    def test_rounds_are_sequential(self, amounts, rounds):
        store = Store()
        store.add_pool(_pool(liquidity=sum(amounts)))
        engine = DistributionEngine(store, PoolLedger(store), InMemoryFundTransfer(), ClaimStateMachine())
        for i, amount in enumerate(amounts):
            claim = _claim(f"c{i}", amount, ClaimStatus.APPROVED)
            store.add_claim(claim)
            engine.enqueue(claim)

        for expected in range(1, rounds + 1):
            result = engine.run_round("p", NOW)
            assert result.round_number == expected
            assert not result.is_oversubscribed
            assert result.selected_claims == [f"c{i}" for i in range(len(amounts))]

    @given(st.lists(st.integers(min_value=1, max_value=10**6), min_size=1, max_size=10), st.data())
    @settings(max_examples=50)
    def test_paid_at_most_once(self, amounts, data):
        store = Store()
        pool = _pool(liquidity=sum(amounts))
        store.add_pool(pool)
        transfer = InMemoryFundTransfer({pool.vault: sum(amounts)})
        engine = DistributionEngine(store, PoolLedger(store), transfer, ClaimStateMachine())
        claims = []
        for i, amount in enumerate(amounts):
            claim = _claim(f"c{i}", amount, ClaimStatus.APPROVED)
            store.add_claim(claim)
            engine.enqueue(claim)
            claims.append(claim)
        engine.run_round("p", NOW)

        attempts = data.draw(st.lists(st.sampled_from(claims), max_size=3 * len(claims)))
        paid = set()
        for claim in attempts:
            try:
                engine.payout(claim, NOW)
            except StateError:
                assert claim.claim_id in paid
            else:
                assert claim.claim_id not in paid
                paid.add(claim.claim_id)

        assert transfer.balance(pool.vault) == sum(c.amount_requested for c in claims if c.claim_id not in paid)
        assert pool.total_liquidity == transfer.balance(pool.vault)


# =============================================================================
# Voting
# =============================================================================

class TestVotingProperties:
    """Vote tallies under arbitrary ballots."""

    @given(st.integers(min_value=3, max_value=10).flatmap(
        lambda n: st.lists(st.booleans(), min_size=n, max_size=n)
    ))
    @settings(max_examples=100)
    def test_tally_and_finalization(self, ballots):
        size = len(ballots)
        store = Store()
        pool = _pool(committee=size)
        store.add_pool(pool)
        members = [f"v{i}" for i in range(size)]
        for address in members:
            store.add_validator(Validator(address=address, pool_id="p", stake_amount=MIN_STAKE))
        machine = ClaimStateMachine()
        claim = _claim("c", 100)
        machine.assign_committee(claim, members, bytes(32), NOW)
        aggregator = ValidationAggregator(store, machine, ReputationLedger())

        for i, (member, approve) in enumerate(zip(members, ballots)):
            result = aggregator.cast_vote(claim, pool, member, approve, "", NOW)
            assert claim.vote_count == i + 1 <= claim.committee_size
            if claim.vote_count < claim.committee_size:
                assert not result.outcome.finalized
                assert claim.status == ClaimStatus.UNDER_VALIDATION

        approved = sum(ballots) >= majority_threshold(size)
        assert result.outcome.finalized
        assert result.outcome.approved == approved
        assert claim.status == (ClaimStatus.APPROVED if approved else ClaimStatus.REJECTED)
        for member, approve in zip(members, ballots):
            validator = store.get_validator("p", member)
            assert validator.validations_completed == 1
            assert validator.successful_validations == (1 if approve == approved else 0)
