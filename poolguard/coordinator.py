"""
PoolGuard Coordinator - the claims pipeline behind one facade.

Pipeline for a claim:

1. submit_claim: validated against coverage and pool, stored PENDING
2. committee: request_committee + fulfill_committee (two-phase randomness)
   or assign_committee (synchronous, hash-derived seed)
3. cast_vote: until every member has voted; the last vote decides,
   rewards and slashes
4. enqueue_claim: approved claim joins its pool's distribution queue
5. run_round: normal or oversubscribed selection
6. payout: funds move, claim becomes DISTRIBUTED

Design Principles:
- Single writer per entity: every operation holds the locks of all entities
  it touches, acquired in canonical order
- Validate-then-mutate: a raised error leaves no partial state
- Events are dispatched after the locks are released; hook failures are
  logged and ignored
- Every failure is counted by error code in the metrics registry
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from .algorithms.randomness import (
    HashDerivedRandomness,
    PendingRequest,
    RandomnessSource,
    committee_seed_material,
    validate_seed,
)
from .algorithms.selection import CommitteeSelector
from .claims import ClaimStateMachine
from .collaborators import (
    Clock,
    FundTransfer,
    InMemoryFundTransfer,
    Ledger,
    PoolLedger,
    SystemClock,
    idle_funds,
)
from .config import PoolGuardConfig, get_config
from .distribution import DistributionEngine, RoundResult
from .errors import (
    CapacityExceeded,
    DuplicateAssignment,
    DuplicateEntry,
    InsufficientCandidates,
    InvalidTransition,
    PoolGuardError,
    RandomnessReplay,
    describe,
)
from .hooks import (
    ClaimFinalizedEvent,
    ClaimPaidOutEvent,
    ClaimSubmittedEvent,
    CommitteeAssignedEvent,
    CoverageJoinedEvent,
    PoolCreatedEvent,
    PremiumPaidEvent,
    ProtocolEvent,
    ProtocolHooks,
    ReputationChangedEvent,
    RoundComputedEvent,
    ValidatorStakedEvent,
    VoteCastEvent,
    dispatch,
)
from .membership import MembershipBook, derive_pool_id
from .models import (
    Claim,
    ClaimInput,
    ClaimStatus,
    Coverage,
    DistributionRound,
    IncidentType,
    Pool,
    PoolType,
    SelectionState,
    Validator,
    derive_claim_id,
)
from .observability import ProtocolMetrics, get_logger, metrics as global_metrics, timed
from .registry import ValidatorRegistry
from .reputation import ReputationLedger
from .store import (
    Store,
    claim_key,
    coverage_lock_key,
    pool_key,
    round_key,
    selection_key,
    touch,
    validator_key,
)
from .validation import ValidationAggregator, VoteResult

logger = get_logger("coordinator")


class PoolCoordinator:
    """
    Wires the claims-core components together and serializes operations.

    All collaborators are injectable; defaults are in-memory.
    """

    def __init__(
        self,
        config: Optional[PoolGuardConfig] = None,
        store: Optional[Store] = None,
        ledger: Optional[Ledger] = None,
        transfer: Optional[FundTransfer] = None,
        randomness: Optional[RandomnessSource] = None,
        clock: Optional[Clock] = None,
        hooks: Optional[ProtocolHooks] = None,
        metrics: Optional[ProtocolMetrics] = None,
    ) -> None:
        self.config = config or get_config()
        protocol = self.config.protocol

        self.store = store or Store(
            queue_capacity=self.config.distribution.queue_capacity,
            selection_capacity=protocol.max_pending_selections,
        )
        self.ledger = ledger or PoolLedger(self.store)
        self.transfer = transfer or InMemoryFundTransfer()
        self.randomness = randomness or HashDerivedRandomness()
        self.clock = clock or SystemClock()
        self.hooks = hooks
        if metrics is not None:
            self.metrics = metrics
        elif self.config.metrics.enabled:
            self.metrics = global_metrics
        else:
            self.metrics = ProtocolMetrics(namespace=self.config.metrics.namespace)

        self.membership = MembershipBook(self.store, self.ledger, self.transfer, protocol)
        self.registry = ValidatorRegistry(self.store, protocol)
        self.selector = CommitteeSelector(protocol.max_committee_size)
        self.claims = ClaimStateMachine(protocol)
        self.reputation = ReputationLedger(protocol)
        self.aggregator = ValidationAggregator(self.store, self.claims, self.reputation, protocol)
        self.distribution = DistributionEngine(
            self.store, self.ledger, self.transfer, self.claims, self.config.distribution
        )

        self._slot = 0
        self._slot_lock = threading.Lock()
        self._open_requests: Dict[int, str] = {}
        self._pool_nonce = 0

        logger.info(
            "PoolCoordinator initialized",
            extra={"context": {
                "min_stake": protocol.min_stake,
                "max_committee_size": protocol.max_committee_size,
                "queue_capacity": self.config.distribution.queue_capacity,
            }},
        )

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    @contextmanager
    def _operation(self, name: str, **context: Any) -> Iterator[None]:
        """Count and log failures of one public operation, then re-raise."""
        try:
            yield
        except PoolGuardError as e:
            self.metrics.record_error(e.code)
            logger.debug(f"{name} failed: {describe(e)}", extra={"context": context})
            raise

    def _emit(self, events: List[ProtocolEvent]) -> None:
        for event in events:
            dispatch(self.hooks, event)

    def _next_slot(self) -> int:
        with self._slot_lock:
            self._slot += 1
            return self._slot

    def _pool_for_claim(self, claim_id: str) -> str:
        return self.store.get_claim(claim_id).pool_id

    # -------------------------------------------------------------------------
    # Pools and membership
    # -------------------------------------------------------------------------

    def create_pool(
        self,
        authority: str,
        pool_type: PoolType,
        premium_amount: int,
        max_coverage: int,
        min_committee_size: int,
        claim_period: int,
        pool_id: Optional[str] = None,
    ) -> Pool:
        pool_type = PoolType.parse(pool_type)
        if pool_id is None:
            with self._slot_lock:
                self._pool_nonce += 1
                nonce = self._pool_nonce
            pool_id = derive_pool_id(authority, pool_type, nonce)

        with self._operation("create_pool", pool_id=pool_id):
            now = self.clock.now()
            with self.store.locked(pool_key(pool_id)):
                pool = self.membership.create_pool(
                    pool_id=pool_id,
                    pool_type=pool_type,
                    authority=authority,
                    premium_amount=premium_amount,
                    max_coverage=max_coverage,
                    min_committee_size=min_committee_size,
                    claim_period=claim_period,
                    now=now,
                )
        self._emit([PoolCreatedEvent(
            timestamp=now, pool_id=pool_id, pool_type=pool_type.name, authority=authority,
        )])
        return pool

    def join_pool(self, pool_id: str, member: str, coverage_limit: int) -> Coverage:
        with self._operation("join_pool", pool_id=pool_id, member=member):
            now = self.clock.now()
            with self.store.locked(pool_key(pool_id), coverage_lock_key(member, pool_id)):
                coverage = self.membership.join_pool(pool_id, member, coverage_limit, now)
                premium = self.store.get_pool(pool_id).premium_amount
        self._emit([CoverageJoinedEvent(
            timestamp=now, pool_id=pool_id, owner=member,
            coverage_limit=coverage_limit, premium=premium,
        )])
        return coverage

    def pay_premium(self, pool_id: str, owner: str, caller: Optional[str] = None) -> Coverage:
        with self._operation("pay_premium", pool_id=pool_id, owner=owner):
            now = self.clock.now()
            with self.store.locked(pool_key(pool_id), coverage_lock_key(owner, pool_id)):
                coverage = self.membership.pay_premium(pool_id, owner, now, caller=caller)
                amount = self.store.get_pool(pool_id).premium_amount
        self._emit([PremiumPaidEvent(timestamp=now, pool_id=pool_id, owner=owner, amount=amount)])
        return coverage

    def deactivate_coverage(self, pool_id: str, owner: str) -> Coverage:
        """Suspend ``owner``'s coverage; claims fail until the next premium payment."""
        with self._operation("deactivate_coverage", pool_id=pool_id, owner=owner):
            with self.store.locked(pool_key(pool_id), coverage_lock_key(owner, pool_id)):
                coverage = self.membership.deactivate(pool_id, owner)
        logger.info(f"Coverage of {owner} in pool {pool_id} suspended")
        return coverage

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------

    def stake_validator(self, pool_id: str, address: str, stake_amount: int) -> Validator:
        """Register ``address`` with ``pool_id``, moving its stake to the stake vault."""
        with self._operation("stake_validator", pool_id=pool_id, validator=address):
            now = self.clock.now()
            with self.store.locked(pool_key(pool_id), validator_key(pool_id, address)):
                self.registry.check_registration(pool_id, address, stake_amount)
                pool = self.store.get_pool(pool_id)
                self.transfer.transfer(address, pool.stake_vault, stake_amount)
                validator = self.registry.register(pool_id, address, stake_amount, now)
        self._emit([ValidatorStakedEvent(
            timestamp=now, pool_id=pool_id, validator=address, stake_amount=stake_amount,
        )])
        return validator

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    def submit_claim(
        self,
        claimant: str,
        pool_id: str,
        amount_requested: int,
        incident_type: IncidentType,
        incident_time: int,
        description: str = "",
    ) -> Claim:
        with self._operation("submit_claim", pool_id=pool_id, claimant=claimant):
            now = self.clock.now()
            claim_input = ClaimInput(
                claimant=claimant,
                pool_id=pool_id,
                amount_requested=amount_requested,
                incident_type=IncidentType.parse(incident_type),
                incident_time=incident_time,
                description=description,
            )
            with self.store.locked(pool_key(pool_id), coverage_lock_key(claimant, pool_id)):
                pool = self.store.get_pool(pool_id)
                coverage = self.store.get_coverage(claimant, pool_id)
                self.claims.validate_submission(claim_input, coverage, pool, now)
                claim_id = derive_claim_id(claimant, pool_id, now, coverage.claims_made)
                if self.store.has_claim(claim_id):
                    raise DuplicateEntry(f"Claim {claim_id} already exists")
                claim = self.claims.submit(claim_input, coverage, pool, now)
                self.store.add_claim(claim)

        self.metrics.claims_submitted.inc()
        self._emit([ClaimSubmittedEvent(
            timestamp=now, claim_id=claim.claim_id, pool_id=pool_id,
            claimant=claimant, amount_requested=amount_requested,
        )])
        return claim

    def _check_assignable(self, claim: Claim, pool: Pool) -> None:
        if len(claim.assigned_committee) > 0:
            raise DuplicateAssignment(f"Claim {claim.claim_id} already has a committee")
        if claim.status != ClaimStatus.PENDING:
            raise InvalidTransition("assign committee", claim.status, claim_id=claim.claim_id)
        available = self.registry.size(pool.pool_id)
        if available < pool.min_committee_size:
            raise InsufficientCandidates(
                f"Pool {pool.pool_id} has {available} validators, needs {pool.min_committee_size}",
                required=pool.min_committee_size,
                available=available,
            )

    def _assign(self, claim: Claim, pool: Pool, seed: bytes, now: int) -> Claim:
        select = timed(self.metrics.selection_duration)(self.selector.select)
        committee = select(seed, self.registry.candidates(pool.pool_id), pool.min_committee_size)
        return self.claims.assign_committee(claim, committee, seed, now)

    def assign_committee(self, claim_id: str, seed: Optional[bytes] = None) -> Claim:
        """
        Select and assign a committee in one step.

        Without a seed, one is derived from H(claim id, pool id, timestamp, slot).
        A claim parked by request_committee can only be assigned by
        fulfill_committee.
        """
        with self._operation("assign_committee", claim_id=claim_id):
            now = self.clock.now()
            pool_id = self._pool_for_claim(claim_id)
            with self.store.locked(claim_key(claim_id), pool_key(pool_id), selection_key(pool_id)):
                claim = self.store.get_claim(claim_id)
                pool = self.store.get_pool(pool_id)
                self._check_assignable(claim, pool)
                if claim_id in self.store.get_selection(pool_id).pending_claims:
                    raise DuplicateEntry(f"Committee already requested for claim {claim_id}")
                if seed is None:
                    seed = self.randomness.derive(
                        committee_seed_material(claim_id, pool_id, now, self._next_slot())
                    )
                seed = validate_seed(seed)
                self._assign(claim, pool, seed, now)
        return self._committee_assigned(claim, seed, now)

    def request_committee(self, claim_id: str) -> PendingRequest:
        """First phase: park a PENDING claim until randomness arrives."""
        with self._operation("request_committee", claim_id=claim_id):
            pool_id = self._pool_for_claim(claim_id)
            with self.store.locked(claim_key(claim_id), pool_key(pool_id), selection_key(pool_id)):
                claim = self.store.get_claim(claim_id)
                pool = self.store.get_pool(pool_id)
                selection = self.store.get_selection(pool_id)
                self._check_assignable(claim, pool)
                if claim_id in selection.pending_claims:
                    raise DuplicateEntry(f"Committee already requested for claim {claim_id}")
                if selection.pending_claims.is_full:
                    raise CapacityExceeded(
                        f"Pool {pool_id} has too many open committee requests",
                        capacity=selection.pending_claims.capacity,
                    )

                request = self.randomness.request(claim_id)
                selection.pending_claims.append(claim_id)
                self._open_requests[request.request_id] = claim_id
                touch(selection)
        logger.info(f"Committee requested for claim {claim_id} (request {request.request_id})")
        return request

    def fulfill_committee(self, request: PendingRequest) -> Claim:
        """Second phase: consume the request's randomness exactly once and assign."""
        with self._operation("fulfill_committee", request_id=request.request_id):
            claim_id = self._open_requests.get(request.request_id)
            if claim_id is None or claim_id != request.context_id:
                raise RandomnessReplay(
                    f"Request {request.request_id} is unknown or already fulfilled",
                    request_id=request.request_id,
                )
            now = self.clock.now()
            pool_id = self._pool_for_claim(claim_id)
            with self.store.locked(claim_key(claim_id), pool_key(pool_id), selection_key(pool_id)):
                claim = self.store.get_claim(claim_id)
                pool = self.store.get_pool(pool_id)
                selection = self.store.get_selection(pool_id)
                if claim_id not in selection.pending_claims:
                    raise RandomnessReplay(f"Claim {claim_id} has no open committee request")
                self._check_assignable(claim, pool)

                seed = self.randomness.fulfill(request)
                self._assign(claim, pool, seed, now)
                self._record_fulfillment(selection, claim_id, seed, now)
                del self._open_requests[request.request_id]
        return self._committee_assigned(claim, seed, now)

    @staticmethod
    def _record_fulfillment(selection: SelectionState, claim_id: str, seed: bytes, now: int) -> None:
        selection.pending_claims.remove(claim_id)
        selection.last_randomness = seed
        selection.last_timestamp = now
        selection.requests_completed += 1
        touch(selection)

    def _committee_assigned(self, claim: Claim, seed: bytes, now: int) -> Claim:
        self.metrics.committees_assigned.inc()
        logger.info(
            f"Committee assigned to claim {claim.claim_id}",
            extra={"context": {"committee": claim.assigned_committee.to_list()}},
        )
        self._emit([CommitteeAssignedEvent(
            timestamp=now, claim_id=claim.claim_id, pool_id=claim.pool_id,
            committee=tuple(claim.assigned_committee), seed=seed,
        )])
        return claim

    # -------------------------------------------------------------------------
    # Voting
    # -------------------------------------------------------------------------

    def cast_vote(self, claim_id: str, validator: str, approve: bool, reason: str = "") -> VoteResult:
        with self._operation("cast_vote", claim_id=claim_id, validator=validator):
            now = self.clock.now()
            claim = self.store.get_claim(claim_id)
            pool_id = claim.pool_id
            result = None
            while result is None:
                # The committee can change until the claim lock is held; retry
                # until the member locks taken match the committee under lock.
                committee = tuple(claim.assigned_committee)
                member_keys = [validator_key(pool_id, m) for m in committee]
                with self.store.locked(claim_key(claim_id), pool_key(pool_id), *member_keys):
                    if tuple(claim.assigned_committee) != committee:
                        continue
                    pool = self.store.get_pool(pool_id)
                    result = self.aggregator.cast_vote(claim, pool, validator, approve, reason, now)

        self.metrics.votes_cast.inc()
        events: List[ProtocolEvent] = [VoteCastEvent(
            timestamp=now, claim_id=claim_id, validator=validator, approved=approve,
            votes_recorded=claim.vote_count, committee_size=claim.committee_size,
        )]
        if result.outcome.finalized:
            if result.outcome.approved:
                self.metrics.claims_approved.inc()
            else:
                self.metrics.claims_rejected.inc()
            events.append(ClaimFinalizedEvent(
                timestamp=now, claim_id=claim_id, pool_id=pool_id,
                approved=bool(result.outcome.approved),
                approvals=claim.approvals, rejections=claim.rejections,
            ))
            for change in result.changes:
                if change.aligned:
                    self.metrics.validators_rewarded.inc()
                else:
                    self.metrics.validators_slashed.inc()
                    self.metrics.stake_slashed.inc(change.stake_slashed)
                events.append(ReputationChangedEvent(
                    timestamp=now, validator=change.validator, pool_id=pool_id,
                    aligned=change.aligned, reputation_before=change.reputation_before,
                    reputation_after=change.reputation_after, stake_slashed=change.stake_slashed,
                ))
        self._emit(events)
        return result

    # -------------------------------------------------------------------------
    # Distribution
    # -------------------------------------------------------------------------

    def enqueue_claim(self, claim_id: str) -> DistributionRound:
        with self._operation("enqueue_claim", claim_id=claim_id):
            pool_id = self._pool_for_claim(claim_id)
            with self.store.locked(claim_key(claim_id), round_key(pool_id)):
                round_state = self.distribution.enqueue(self.store.get_claim(claim_id))
        self.metrics.distribution_queue_depth.inc()
        return round_state

    def run_round(
        self,
        pool_id: str,
        available_funds: Optional[int] = None,
        seed: Optional[bytes] = None,
    ) -> RoundResult:
        """
        Compute the next distribution round for ``pool_id``.

        ``available_funds`` defaults to the pool's ledger liquidity. A seed is
        required only if the round turns out to be oversubscribed.
        """
        with self._operation("run_round", pool_id=pool_id):
            now = self.clock.now()
            with self.store.locked(pool_key(pool_id), round_key(pool_id)):
                result = self.distribution.run_round(pool_id, now, available_funds, seed)

        self.metrics.rounds_total.inc()
        self.metrics.round_duration.observe(result.duration_s)
        if result.is_oversubscribed:
            self.metrics.oversubscribed_rounds.inc()
        self._emit([RoundComputedEvent(
            timestamp=now, pool_id=pool_id, round_number=result.round_number,
            total_claims=result.total_claims, selected_claims=result.selected_count,
            is_oversubscribed=result.is_oversubscribed, available_funds=result.available_funds,
            total_requested=result.total_requested,
        )])
        return result

    def payout(self, claim_id: str) -> int:
        with self._operation("payout", claim_id=claim_id):
            now = self.clock.now()
            pool_id = self._pool_for_claim(claim_id)
            with self.store.locked(claim_key(claim_id), pool_key(pool_id), round_key(pool_id)):
                claim = self.store.get_claim(claim_id)
                amount = self.distribution.payout(claim, now)

        self.metrics.payouts_total.inc()
        self.metrics.payout_amount.inc(amount)
        self.metrics.distribution_queue_depth.dec()
        self._emit([ClaimPaidOutEvent(
            timestamp=now, claim_id=claim_id, pool_id=pool_id,
            claimant=claim.claimant, amount=amount,
        )])
        return amount

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_pool(self, pool_id: str) -> Pool:
        return self.store.get_pool(pool_id)

    def get_claim(self, claim_id: str) -> Claim:
        return self.store.get_claim(claim_id)

    def get_coverage(self, owner: str, pool_id: str) -> Coverage:
        return self.store.get_coverage(owner, pool_id)

    def get_validator(self, pool_id: str, address: str) -> Validator:
        return self.store.get_validator(pool_id, address)

    def get_round(self, pool_id: str) -> DistributionRound:
        return self.store.get_round(pool_id)

    def get_selection_state(self, pool_id: str) -> SelectionState:
        return self.store.get_selection(pool_id)

    def validators(self, pool_id: str) -> List[Validator]:
        return self.registry.validators(pool_id)

    def idle_funds(self, pool_id: str, vault_balance: Optional[int] = None) -> int:
        """Vault funds not needed for active claims or the 20% reserve."""
        pool = self.store.get_pool(pool_id)
        if vault_balance is None:
            vault_balance = self.ledger.get_liquidity(pool_id)
        return idle_funds(pool, vault_balance)

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = dict(self.store.stats())
        by_status: Dict[str, int] = {s.name: 0 for s in ClaimStatus}
        for pool in self.store.pools():
            for claim in self.store.claims_for_pool(pool.pool_id):
                by_status[claim.status.name] += 1
        stats["claims_by_status"] = by_status
        stats["open_committee_requests"] = len(self._open_requests)
        return stats

    def __repr__(self) -> str:
        stats = self.store.stats()
        return f"PoolCoordinator(pools={stats['pools']}, claims={stats['claims']}, validators={stats['validators']})"
