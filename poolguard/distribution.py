"""
DistributionEngine: pays approved claims out of pooled liquidity.

Each pool has one DistributionRound that is advanced, never recreated:

1. enqueue(claim): APPROVED claims join ``pending_claims`` once each
2. run_round(): if demand fits the available funds every pending claim is
   selected; otherwise the claims are visited in a seed-derived order and
   admitted while remaining funds cover the average claim size, each
   admission consuming one average
3. payout(claim): moves the money for a selected claim and retires it

Rounds of one pool are strictly sequential; run_round and payout hold the
pool's round lock for their whole duration.

The oversubscribed cutoff uses the average claim size, not each claim's own
amount. Individual payouts are still bounded by pool liquidity at payout time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from .algorithms.randomness import validate_seed
from .algorithms.selection import seeded_permutation
from .claims import ClaimStateMachine
from .collaborators import FundTransfer, Ledger
from .config import DistributionConfig
from .errors import (
    CapacityExceeded,
    DuplicateEntry,
    InsufficientPoolFunds,
    InvalidTransition,
    MissingRandomness,
    NotSelected,
    ValidationError,
)
from .models import (
    Claim,
    ClaimStatus,
    DistributionRound,
    U32_MAX,
    checked_add,
    checked_div,
    saturating_sub,
)
from .store import Store, round_key, touch

logger = logging.getLogger(__name__)


@dataclass
class RoundResult:
    """Round-completed record."""
    pool_id: str
    round_number: int
    is_oversubscribed: bool
    available_funds: int
    total_requested: int
    total_claims: int
    selected_claims: List[str] = field(default_factory=list)
    avg_claim_size: Optional[int] = None
    seed_used: Optional[bytes] = None
    timestamp: int = 0
    duration_s: float = 0.0

    @property
    def selected_count(self) -> int:
        return len(self.selected_claims)

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "round_number": self.round_number,
            "is_oversubscribed": self.is_oversubscribed,
            "available_funds": self.available_funds,
            "total_requested": self.total_requested,
            "total_claims": self.total_claims,
            "selected_claims": list(self.selected_claims),
            "avg_claim_size": self.avg_claim_size,
            "seed_used": self.seed_used.hex() if self.seed_used else None,
            "timestamp": self.timestamp,
        }


def claim_amount(claim: Claim) -> int:
    """Amount a claim pays: the request, capped by any recorded payout amount."""
    if claim.payout_amount is None:
        return claim.amount_requested
    return min(claim.amount_requested, claim.payout_amount)


def select_oversubscribed(
    pending: List[str],
    total_requested: int,
    available_funds: int,
    seed: bytes,
) -> List[str]:
    """
    Fair subset of ``pending`` when demand exceeds funds.

    Returns claim ids in the order they were admitted.
    """
    if not pending:
        return []
    avg_claim_size = checked_div(total_requested, len(pending))
    remaining = available_funds
    selected: List[str] = []
    for index in seeded_permutation(seed, len(pending)):
        if remaining == 0 or remaining < avg_claim_size:
            break
        selected.append(pending[index])
        remaining = saturating_sub(remaining, avg_claim_size)
    return selected


class DistributionEngine:
    """Per-pool payout rounds."""

    def __init__(
        self,
        store: Store,
        ledger: Ledger,
        transfer: FundTransfer,
        state_machine: ClaimStateMachine,
        config: Optional[DistributionConfig] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._transfer = transfer
        self._claims = state_machine
        self._config = config or DistributionConfig()

    def round_for(self, pool_id: str) -> DistributionRound:
        return self._store.get_round(pool_id)

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    def enqueue(self, claim: Claim) -> DistributionRound:
        """
        Add an APPROVED claim to its pool's pending queue.

        Raises:
            InvalidTransition: claim is not APPROVED
            DuplicateEntry: claim already queued
            CapacityExceeded: queue is full
        """
        with self._store.locked(round_key(claim.pool_id)):
            round_state = self.round_for(claim.pool_id)
            if claim.status != ClaimStatus.APPROVED:
                raise InvalidTransition("enqueue", claim.status, claim_id=claim.claim_id)
            if claim.queued or claim.claim_id in round_state.pending_claims:
                raise DuplicateEntry(
                    f"Claim {claim.claim_id} already queued",
                    claim_id=claim.claim_id,
                )
            if round_state.pending_claims.is_full:
                raise CapacityExceeded(
                    f"Distribution queue for pool {claim.pool_id} is full",
                    capacity=round_state.pending_claims.capacity,
                )
            total = checked_add(round_state.total_requested, claim_amount(claim))

            round_state.pending_claims.append(claim.claim_id)
            round_state.total_requested = total
            claim.queued = True
            touch(round_state, claim)
            logger.debug(
                f"Claim {claim.claim_id} queued in pool {claim.pool_id} "
                f"({len(round_state.pending_claims)} pending, {total} requested)"
            )
            return round_state

    # -------------------------------------------------------------------------
    # Rounds
    # -------------------------------------------------------------------------

    def run_round(
        self,
        pool_id: str,
        now: int,
        available_funds: Optional[int] = None,
        seed: Optional[bytes] = None,
    ) -> RoundResult:
        """
        Decide which pending claims this round pays.

        Args:
            pool_id: pool to run
            now: round timestamp
            available_funds: funds to distribute; defaults to ledger liquidity
            seed: 32-byte seed, required only when oversubscribed

        Raises:
            MissingRandomness: oversubscribed without a seed
            InvalidSeed: seed given but not 32 bytes
            MathOverflow: round counter exhausted
        """
        start = time.monotonic()
        with self._store.locked(round_key(pool_id)):
            round_state = self.round_for(pool_id)
            if available_funds is None:
                if not self._config.funds_from_ledger:
                    raise ValidationError("available_funds is required")
                available_funds = self._ledger.get_liquidity(pool_id)
            if available_funds < 0:
                raise ValidationError("available_funds must be non-negative")
            if seed is not None:
                seed = validate_seed(seed)

            pending = round_state.pending_claims.to_list()
            total_requested = round_state.total_requested
            oversubscribed = total_requested > available_funds
            next_round = checked_add(round_state.round_number, 1, limit=U32_MAX)

            avg_claim_size = None
            if not oversubscribed:
                selected = list(pending)
            else:
                if seed is None:
                    raise MissingRandomness(
                        f"Pool {pool_id} is oversubscribed ({total_requested} > {available_funds}) "
                        f"and no seed was supplied",
                        pool_id=pool_id,
                    )
                avg_claim_size = checked_div(total_requested, len(pending))
                selected = select_oversubscribed(pending, total_requested, available_funds, seed)

            round_state.available_funds = available_funds
            round_state.is_oversubscribed = oversubscribed
            round_state.selected_claims = selected
            round_state.seed_used = seed if oversubscribed else None
            round_state.round_number = next_round
            round_state.last_distribution = now
            touch(round_state)

            result = RoundResult(
                pool_id=pool_id,
                round_number=next_round,
                is_oversubscribed=oversubscribed,
                available_funds=available_funds,
                total_requested=total_requested,
                total_claims=len(pending),
                selected_claims=list(selected),
                avg_claim_size=avg_claim_size,
                seed_used=round_state.seed_used,
                timestamp=now,
                duration_s=time.monotonic() - start,
            )

        mode = "Oversubscribed" if oversubscribed else "Normal"
        logger.info(
            f"{mode} distribution round {next_round} for pool {pool_id}: "
            f"{result.selected_count}/{result.total_claims} claims selected, "
            f"{available_funds} available, {total_requested} requested"
        )
        return result

    # -------------------------------------------------------------------------
    # Payout
    # -------------------------------------------------------------------------

    def payout(self, claim: Claim, now: int) -> int:
        """
        Pay a selected claim; returns the amount moved.

        Raises:
            InvalidTransition: claim is not APPROVED (already paid, rejected...)
            NotSelected: claim is not in the current round's selection
            InsufficientPoolFunds: pool liquidity below the amount
            TransferFailed: transfer refused; nothing changed
        """
        pool_id = claim.pool_id
        with self._store.locked(round_key(pool_id)):
            round_state = self.round_for(pool_id)
            pool = self._store.get_pool(pool_id)
            if claim.status != ClaimStatus.APPROVED:
                raise InvalidTransition("pay out", claim.status, claim_id=claim.claim_id)
            if claim.claim_id not in round_state.selected_claims:
                raise NotSelected(
                    f"Claim {claim.claim_id} is not selected in round {round_state.round_number}",
                    claim_id=claim.claim_id,
                )
            amount = claim_amount(claim)
            liquidity = self._ledger.get_liquidity(pool_id)
            if liquidity < amount:
                raise InsufficientPoolFunds(
                    f"Pool {pool_id} holds {liquidity}, claim needs {amount}",
                    pool_id=pool_id,
                    liquidity=liquidity,
                    amount=amount,
                )

            self._transfer.transfer(pool.vault, claim.claimant, amount)

            self._ledger.debit(pool_id, amount)
            self._claims.release(pool)
            self._claims.mark_distributed(claim, amount, now)
            round_state.pending_claims.remove(claim.claim_id)
            round_state.selected_claims.remove(claim.claim_id)
            round_state.total_requested = saturating_sub(round_state.total_requested, amount)
            touch(round_state)

        logger.info(f"Claim {claim.claim_id} paid out {amount} to {claim.claimant}")
        return amount
