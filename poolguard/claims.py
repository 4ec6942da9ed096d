"""
ClaimStateMachine: owns every claim status transition.

Lifecycle:
    PENDING -> UNDER_VALIDATION -> APPROVED | REJECTED
    APPROVED -> DISTRIBUTED

REJECTED and DISTRIBUTED are terminal. Every operation checks all of its
preconditions before touching the claim, pool or coverage, so a raised error
means nothing changed.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional, Sequence

from .config import ProtocolConfig
from .errors import (
    ClaimPeriodExpired,
    DuplicateAssignment,
    ExcessiveClaimAmount,
    InactiveCoverage,
    IncidentPredatesCoverage,
    InvalidAmount,
    InvalidCommitteeSize,
    InvalidTimestamp,
    InvalidTransition,
    TextTooLong,
    UnauthorizedClaimant,
    ValidationError,
)
from .models import (
    BoundedList,
    Claim,
    ClaimInput,
    ClaimStatus,
    Coverage,
    IncidentType,
    Pool,
    U32_MAX,
    checked_add,
    checked_sub,
    derive_claim_id,
    utf8_len,
)
from .store import touch

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[ClaimStatus, FrozenSet[ClaimStatus]] = {
    ClaimStatus.PENDING: frozenset({ClaimStatus.UNDER_VALIDATION}),
    ClaimStatus.UNDER_VALIDATION: frozenset({ClaimStatus.APPROVED, ClaimStatus.REJECTED}),
    ClaimStatus.APPROVED: frozenset({ClaimStatus.DISTRIBUTED}),
    ClaimStatus.REJECTED: frozenset(),
    ClaimStatus.DISTRIBUTED: frozenset(),
}


def can_transition(current: ClaimStatus, target: ClaimStatus) -> bool:
    return target in TRANSITIONS[current]


def require_transition(claim: Claim, target: ClaimStatus, operation: str) -> None:
    if not can_transition(claim.status, target):
        raise InvalidTransition(operation, claim.status, claim_id=claim.claim_id)


class ClaimStateMachine:
    """Creates claims and moves them through their lifecycle."""

    def __init__(self, config: Optional[ProtocolConfig] = None):
        self._config = config or ProtocolConfig()

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def validate_submission(self, claim_input: ClaimInput, coverage: Coverage, pool: Pool, now: int) -> None:
        """
        Check a claim against its coverage and pool.

        Raises:
            InactiveCoverage: coverage suspended or belongs to another pool
            UnauthorizedClaimant: coverage belongs to someone else
            InvalidAmount: requested amount not positive
            ExcessiveClaimAmount: requested amount above the coverage limit
            ClaimPeriodExpired: incident in the future or older than claim_period
            IncidentPredatesCoverage: incident before the member joined
            TextTooLong: description above the byte bound
        """
        if not coverage.active:
            raise InactiveCoverage(f"Coverage of {coverage.owner} is not active")
        if coverage.owner != claim_input.claimant:
            raise UnauthorizedClaimant(
                f"{claim_input.claimant} does not own this coverage",
                claimant=claim_input.claimant,
                owner=coverage.owner,
            )
        if coverage.pool_id != pool.pool_id or claim_input.pool_id != pool.pool_id:
            raise InactiveCoverage(
                f"Coverage is for pool {coverage.pool_id}, not {pool.pool_id}",
                coverage_pool=coverage.pool_id,
                pool_id=pool.pool_id,
            )
        if claim_input.amount_requested <= 0:
            raise InvalidAmount("Claim amount must be positive", amount=claim_input.amount_requested)
        if claim_input.amount_requested > coverage.coverage_limit:
            raise ExcessiveClaimAmount(
                f"Requested {claim_input.amount_requested} exceeds coverage {coverage.coverage_limit}",
                amount=claim_input.amount_requested,
                coverage_limit=coverage.coverage_limit,
            )
        if claim_input.incident_time < 0:
            raise InvalidTimestamp("Incident time must be non-negative")
        elapsed = now - claim_input.incident_time
        if elapsed < 0:
            raise ClaimPeriodExpired(
                "Incident time is in the future",
                incident_time=claim_input.incident_time,
                now=now,
            )
        if elapsed > pool.claim_period:
            raise ClaimPeriodExpired(
                f"Incident {elapsed}s ago exceeds claim period {pool.claim_period}s",
                elapsed=elapsed,
                claim_period=pool.claim_period,
            )
        if coverage.joined_at > claim_input.incident_time:
            raise IncidentPredatesCoverage(
                "Incident happened before coverage started",
                joined_at=coverage.joined_at,
                incident_time=claim_input.incident_time,
            )
        if utf8_len(claim_input.description) > self._config.max_description_len:
            raise TextTooLong(
                f"Description exceeds {self._config.max_description_len} bytes",
                limit=self._config.max_description_len,
            )

    def submit(self, claim_input: ClaimInput, coverage: Coverage, pool: Pool, now: int) -> Claim:
        """Create a PENDING claim; bumps the pool's active-claim count."""
        self.validate_submission(claim_input, coverage, pool, now)
        active_claims = checked_add(pool.active_claim_count, 1, limit=U32_MAX)
        claims_made = checked_add(coverage.claims_made, 1, limit=U32_MAX)

        claim = Claim(
            claim_id=derive_claim_id(claim_input.claimant, pool.pool_id, now, coverage.claims_made),
            claimant=claim_input.claimant,
            pool_id=pool.pool_id,
            amount_requested=claim_input.amount_requested,
            incident_type=IncidentType.parse(claim_input.incident_type),
            incident_time=claim_input.incident_time,
            description=claim_input.description,
            created_at=now,
        )
        pool.active_claim_count = active_claims
        coverage.claims_made = claims_made
        touch(pool, coverage)
        logger.info(
            f"Claim {claim.claim_id} submitted by {claim.claimant} "
            f"for {claim.amount_requested} ({claim.incident_type.name})"
        )
        return claim

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def assign_committee(self, claim: Claim, committee: Sequence[str], seed: bytes, now: int) -> Claim:
        """
        PENDING -> UNDER_VALIDATION.

        Raises:
            DuplicateAssignment: a committee is already recorded
            InvalidTransition: claim is not PENDING
            InvalidCommitteeSize: empty, oversized or repeating committee
        """
        if len(claim.assigned_committee) > 0:
            raise DuplicateAssignment(
                f"Claim {claim.claim_id} already has a committee",
                claim_id=claim.claim_id,
            )
        require_transition(claim, ClaimStatus.UNDER_VALIDATION, "assign committee")
        if not 1 <= len(committee) <= claim.assigned_committee.capacity:
            raise InvalidCommitteeSize(
                f"Committee of {len(committee)} outside [1, {claim.assigned_committee.capacity}]"
            )
        if len(set(committee)) != len(committee):
            raise ValidationError("Committee contains duplicate validators")

        claim.assigned_committee = BoundedList(claim.assigned_committee.capacity, committee)
        claim.random_seed_used = bytes(seed)
        claim.status = ClaimStatus.UNDER_VALIDATION
        touch(claim)
        logger.info(f"Claim {claim.claim_id} assigned committee of {len(committee)} at {now}")
        return claim

    def finalize(self, claim: Claim, approved: bool, now: int) -> Claim:
        """UNDER_VALIDATION -> APPROVED (payout_amount = request) or REJECTED."""
        target = ClaimStatus.APPROVED if approved else ClaimStatus.REJECTED
        require_transition(claim, target, "finalize")
        claim.status = target
        claim.resolved_at = now
        if approved:
            claim.payout_amount = claim.amount_requested
        touch(claim)
        logger.info(f"Claim {claim.claim_id} finalized: {target.name}")
        return claim

    def mark_distributed(self, claim: Claim, amount: int, now: int) -> Claim:
        """APPROVED -> DISTRIBUTED after funds have moved."""
        require_transition(claim, ClaimStatus.DISTRIBUTED, "pay out")
        claim.status = ClaimStatus.DISTRIBUTED
        claim.payout_amount = amount
        claim.resolved_at = now
        claim.queued = False
        touch(claim)
        return claim

    @staticmethod
    def release(pool: Pool) -> None:
        """Drop one active claim from the pool's count (saturating)."""
        if pool.active_claim_count > 0:
            pool.active_claim_count = checked_sub(pool.active_claim_count, 1)
            touch(pool)
