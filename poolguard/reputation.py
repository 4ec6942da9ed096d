"""
ReputationLedger: rewards and slashes validators by majority alignment.

Rules:
- Every outcome counts as a completed validation at time ``now``
- Aligned with the majority: successful_validations += 1,
  reputation += 100 capped at MAX_REPUTATION
- Against the majority: stake -= stake * (2 * pool.min_committee_size) / 100,
  reputation -= 200 floored at zero

Larger committees imply harsher slashing, discouraging stake concentration in
pools that need stronger guarantees. New values are computed with checked
arithmetic before any field is assigned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import ProtocolConfig
from .models import (
    Pool,
    U64_MAX,
    U128_MAX,
    Validator,
    checked_add,
    checked_div,
    checked_mul,
    saturating_sub,
)
from .store import touch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReputationChange:
    """Before/after snapshot of one outcome."""
    validator: str
    aligned: bool
    reputation_before: int
    reputation_after: int
    stake_before: int
    stake_after: int

    @property
    def stake_slashed(self) -> int:
        return self.stake_before - self.stake_after

    @property
    def delta(self) -> int:
        return self.reputation_after - self.reputation_before


class ReputationLedger:
    """Applies reputation and stake consequences of finalized votes."""

    def __init__(self, config: Optional[ProtocolConfig] = None):
        self._config = config or ProtocolConfig()

    def slash_percent(self, pool: Pool) -> int:
        return self._config.slash_percent_per_seat * pool.min_committee_size

    def slash_amount(self, stake: int, pool: Pool) -> int:
        """Stake removed for one misaligned vote, never more than the stake."""
        raw = checked_div(checked_mul(stake, self.slash_percent(pool), limit=U128_MAX), 100)
        return min(raw, stake)

    def record_participation(self, validator: Validator, now: int) -> None:
        """Count a vote that has not yet produced a decision."""
        completed = checked_add(validator.validations_completed, 1, limit=U64_MAX)
        validator.validations_completed = completed
        validator.last_validation_time = now
        touch(validator)

    def apply_outcome(
        self,
        validator: Validator,
        voted_with_majority: bool,
        pool: Pool,
        now: int,
        count_participation: bool = True,
    ) -> ReputationChange:
        """
        Reward or slash ``validator``.

        Args:
            validator: committee member
            voted_with_majority: member's vote matched the decision
            pool: pool the claim belongs to (sets slash severity)
            now: decision time
            count_participation: False when the vote was already counted by
                ``record_participation``

        Raises:
            MathOverflow: a counter would leave its domain
        """
        completed = validator.validations_completed
        if count_participation:
            completed = checked_add(completed, 1, limit=U64_MAX)

        successful = validator.successful_validations
        stake = validator.stake_amount
        reputation = validator.reputation

        if voted_with_majority:
            successful = checked_add(successful, 1, limit=U64_MAX)
            reputation = min(reputation + self._config.reputation_reward, self._config.max_reputation)
        else:
            stake = saturating_sub(stake, self.slash_amount(stake, pool))
            reputation = saturating_sub(reputation, self._config.reputation_penalty)

        change = ReputationChange(
            validator=validator.address,
            aligned=voted_with_majority,
            reputation_before=validator.reputation,
            reputation_after=reputation,
            stake_before=validator.stake_amount,
            stake_after=stake,
        )

        validator.validations_completed = completed
        validator.last_validation_time = now
        validator.successful_validations = successful
        validator.stake_amount = stake
        validator.reputation = reputation
        touch(validator)

        if voted_with_majority:
            logger.debug(f"Validator {validator.address} rewarded: reputation {change.reputation_after}")
        else:
            logger.info(
                f"Validator {validator.address} slashed {change.stake_slashed} "
                f"({self.slash_percent(pool)}%), reputation {change.reputation_after}"
            )
        return change
