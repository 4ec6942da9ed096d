"""
ValidationAggregator: turns committee votes into a binding decision.

Quorum is full participation: a claim is decided once every assigned member
has voted. The claim is approved iff approvals >= floor(n / 2) + 1 for a
committee of n. On the deciding vote every member is rewarded or slashed by
whether their ballot matched the decision.

Votes that do not decide the claim only count the voter's participation;
the deciding voter gets participation and outcome in one step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .claims import ClaimStateMachine
from .config import ProtocolConfig
from .errors import DuplicateVote, InvalidTransition, TextTooLong, UnauthorizedValidator
from .models import Claim, ClaimStatus, Pool, U8_MAX, Vote, checked_add, utf8_len
from .reputation import ReputationChange, ReputationLedger
from .store import Store, touch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoteOutcome:
    """Pending, or Finalized(approved)."""
    finalized: bool
    approved: Optional[bool] = None

    @classmethod
    def pending(cls) -> "VoteOutcome":
        return cls(finalized=False)

    @classmethod
    def decided(cls, approved: bool) -> "VoteOutcome":
        return cls(finalized=True, approved=approved)

    def __str__(self) -> str:
        if not self.finalized:
            return "Pending"
        return f"Finalized({'approved' if self.approved else 'rejected'})"


@dataclass
class VoteResult:
    """Outcome of one ballot plus the reputation changes it triggered."""
    outcome: VoteOutcome
    vote: Vote
    changes: List[ReputationChange] = field(default_factory=list)


def majority_threshold(committee_size: int) -> int:
    return committee_size // 2 + 1


def is_quorum(claim: Claim) -> bool:
    return claim.vote_count >= claim.committee_size > 0


class ValidationAggregator:
    """Records votes and finalizes claims on quorum."""

    def __init__(
        self,
        store: Store,
        state_machine: ClaimStateMachine,
        reputation: ReputationLedger,
        config: Optional[ProtocolConfig] = None,
    ):
        self._store = store
        self._claims = state_machine
        self._reputation = reputation
        self._config = config or ProtocolConfig()

    def check_vote(self, claim: Claim, validator: str, reason: str) -> None:
        """
        Raises:
            InvalidTransition: claim is not PENDING or UNDER_VALIDATION
            UnauthorizedValidator: validator is not on the committee
            DuplicateVote: validator already voted
            TextTooLong: reason exceeds its byte bound
        """
        if claim.status not in (ClaimStatus.PENDING, ClaimStatus.UNDER_VALIDATION):
            raise InvalidTransition("vote", claim.status, claim_id=claim.claim_id)
        if validator not in claim.assigned_committee:
            raise UnauthorizedValidator(
                f"{validator} is not on the committee of claim {claim.claim_id}",
                validator=validator,
                claim_id=claim.claim_id,
            )
        if claim.has_voted(validator):
            raise DuplicateVote(
                f"{validator} already voted on claim {claim.claim_id}",
                validator=validator,
                claim_id=claim.claim_id,
            )
        if utf8_len(reason) > self._config.max_reason_len:
            raise TextTooLong(
                f"Reason exceeds {self._config.max_reason_len} bytes",
                limit=self._config.max_reason_len,
            )

    def cast_vote(
        self,
        claim: Claim,
        pool: Pool,
        validator: str,
        approve: bool,
        reason: str,
        now: int,
    ) -> VoteResult:
        """Record one ballot; finalize the claim if this completes the quorum."""
        self.check_vote(claim, validator, reason)
        voter = self._store.get_validator(pool.pool_id, validator)
        approvals = checked_add(claim.approvals, 1 if approve else 0, limit=U8_MAX)
        rejections = checked_add(claim.rejections, 0 if approve else 1, limit=U8_MAX)

        vote = Vote(validator=validator, approved=approve, reason=reason, timestamp=now)
        claim.votes.append(vote)
        claim.approvals = approvals
        claim.rejections = rejections
        touch(claim)

        if not is_quorum(claim):
            self._reputation.record_participation(voter, now)
            logger.debug(
                f"Vote {claim.vote_count}/{claim.committee_size} on {claim.claim_id} "
                f"by {validator}: {'approve' if approve else 'reject'}"
            )
            return VoteResult(outcome=VoteOutcome.pending(), vote=vote)

        return self._finalize(claim, pool, validator, vote, now)

    def _finalize(self, claim: Claim, pool: Pool, deciding: str, vote: Vote, now: int) -> VoteResult:
        approved = claim.approvals >= majority_threshold(claim.committee_size)
        self._claims.finalize(claim, approved, now)
        if not approved:
            self._claims.release(pool)

        changes: List[ReputationChange] = []
        for member in claim.assigned_committee:
            ballot = claim.vote_of(member)
            validator = self._store.get_validator(pool.pool_id, member)
            changes.append(
                self._reputation.apply_outcome(
                    validator,
                    voted_with_majority=(ballot.approved == approved),
                    pool=pool,
                    now=now,
                    count_participation=(member == deciding),
                )
            )

        logger.info(
            f"Claim {claim.claim_id} {'APPROVED' if approved else 'REJECTED'} "
            f"({claim.approvals}/{claim.committee_size} approvals)"
        )
        return VoteResult(outcome=VoteOutcome.decided(approved), vote=vote, changes=changes)
