"""
Tests for committee vote aggregation.

Tests cover:
- Majority threshold and full-participation quorum
- Finalization with rewards for the majority and slashing for the minority
- Vote checks (status, membership, duplicates, reason length)
- Participation is counted once per member
"""

import pytest

from poolguard.errors import (
    DuplicateVote,
    InvalidTransition,
    TextTooLong,
    UnauthorizedValidator,
)
from poolguard.models import ClaimStatus, MIN_STAKE
from poolguard.validation import VoteOutcome, is_quorum, majority_threshold


@pytest.fixture
def pool(harness):
    pool = harness.pool(committee=3)
    harness.member(pool.pool_id, "alice")
    harness.validators(pool.pool_id, 5)
    return pool


@pytest.fixture
def claim(harness, pool):
    claim = harness.claim(pool.pool_id, "alice", amount=500)
    harness.coordinator.assign_committee(claim.claim_id)
    return claim


class TestThreshold:
    """Tests for majority_threshold."""

    @pytest.mark.parametrize("size,threshold", [(1, 1), (3, 2), (4, 3), (5, 3), (10, 6)])
    def test_threshold(self, size, threshold):
        assert majority_threshold(size) == threshold

    def test_outcome_str(self):
        assert str(VoteOutcome.pending()) == "Pending"
        assert str(VoteOutcome.decided(True)) == "Finalized(approved)"
        assert str(VoteOutcome.decided(False)) == "Finalized(rejected)"


class TestCastVote:
    """Tests for casting votes through the coordinator."""

    def test_two_to_one_approval(self, harness, claim):
        """Two approvals and one rejection approve; the dissenter is slashed."""
        coordinator = harness.coordinator
        a, b, c = claim.assigned_committee.to_list()

        first = coordinator.cast_vote(claim.claim_id, a, True, "receipts check out")
        second = coordinator.cast_vote(claim.claim_id, b, True, "ok")
        assert first.outcome == VoteOutcome.pending()
        assert second.outcome == VoteOutcome.pending()
        assert claim.status == ClaimStatus.UNDER_VALIDATION

        third = coordinator.cast_vote(claim.claim_id, c, False, "suspicious")

        assert third.outcome == VoteOutcome.decided(True)
        assert claim.status == ClaimStatus.APPROVED
        assert claim.payout_amount == 500
        assert (claim.approvals, claim.rejections) == (2, 1)

        pool_id = claim.pool_id
        dissenter = coordinator.get_validator(pool_id, c)
        assert dissenter.stake_amount == MIN_STAKE - MIN_STAKE * 6 // 100
        assert dissenter.reputation == 4800
        for address in (a, b):
            validator = coordinator.get_validator(pool_id, address)
            assert validator.reputation == 5100
            assert validator.stake_amount == MIN_STAKE
            assert validator.successful_validations == 1

    def test_reputation_changes_reported(self, harness, claim):
        a, b, c = claim.assigned_committee.to_list()
        harness.coordinator.cast_vote(claim.claim_id, a, True)
        harness.coordinator.cast_vote(claim.claim_id, b, True)
        result = harness.coordinator.cast_vote(claim.claim_id, c, False)

        by_validator = {change.validator: change for change in result.changes}
        assert set(by_validator) == {a, b, c}
        assert by_validator[c].stake_slashed == 6_000_000
        assert not by_validator[c].aligned

    def test_participation_counted_once(self, harness, claim):
        members = claim.assigned_committee.to_list()
        for member in members:
            harness.coordinator.cast_vote(claim.claim_id, member, True)

        for member in members:
            validator = harness.coordinator.get_validator(claim.pool_id, member)
            assert validator.validations_completed == 1

    def test_majority_rejection(self, harness, pool, claim):
        a, b, c = claim.assigned_committee.to_list()
        harness.coordinator.cast_vote(claim.claim_id, a, False)
        harness.coordinator.cast_vote(claim.claim_id, b, True)
        result = harness.coordinator.cast_vote(claim.claim_id, c, False)

        assert result.outcome == VoteOutcome.decided(False)
        assert claim.status == ClaimStatus.REJECTED
        assert claim.payout_amount is None
        assert harness.coordinator.get_validator(claim.pool_id, b).reputation == 4800
        # rejected claims no longer count as active
        assert pool.active_claim_count == 0

    def test_non_member(self, harness, claim):
        outsider = next(
            v.address for v in harness.coordinator.validators(claim.pool_id)
            if v.address not in claim.assigned_committee
        )
        with pytest.raises(UnauthorizedValidator):
            harness.coordinator.cast_vote(claim.claim_id, outsider, True)

    def test_vote_before_assignment(self, harness, pool):
        claim = harness.claim(pool.pool_id, "alice")
        with pytest.raises(UnauthorizedValidator):
            harness.coordinator.cast_vote(claim.claim_id, "v0", True)

    def test_duplicate_vote(self, harness, claim):
        member = claim.assigned_committee[0]
        harness.coordinator.cast_vote(claim.claim_id, member, True)

        with pytest.raises(DuplicateVote):
            harness.coordinator.cast_vote(claim.claim_id, member, False)
        assert (claim.approvals, claim.rejections) == (1, 0)

    def test_reason_too_long(self, harness, claim):
        member = claim.assigned_committee[0]
        with pytest.raises(TextTooLong):
            harness.coordinator.cast_vote(claim.claim_id, member, True, "r" * 201)
        assert claim.vote_count == 0

    def test_vote_after_finalization(self, harness, claim):
        for member in claim.assigned_committee:
            harness.coordinator.cast_vote(claim.claim_id, member, True)

        with pytest.raises(InvalidTransition):
            harness.coordinator.cast_vote(claim.claim_id, claim.assigned_committee[0], True)

    def test_quorum_requires_everyone(self, harness, claim):
        harness.coordinator.cast_vote(claim.claim_id, claim.assigned_committee[0], True)
        harness.coordinator.cast_vote(claim.claim_id, claim.assigned_committee[1], True)
        assert not is_quorum(claim)
        assert claim.vote_count <= claim.committee_size


class TestEvenCommittee:
    """A tie is not a majority."""

    def test_tie_rejects(self, harness):
        pool = harness.pool(pool_id="pool-even", committee=4)
        harness.member(pool.pool_id, "bob")
        harness.validators(pool.pool_id, 4, prefix="e")
        claim = harness.claim(pool.pool_id, "bob")

        harness.decide(claim, approvals=[True, True, False, False])

        assert claim.status == ClaimStatus.REJECTED
        assert (claim.approvals, claim.rejections) == (2, 2)
