"""
PoolGuard Data Models.

Defines the entities shared by every claims-core component:
- Pool, Coverage: risk category and a member's right to claim against it
- Claim, Vote: the unit of adjudication and the committee ballots on it
- Validator: a staked adjudicator with bounded reputation
- DistributionRound, SelectionState: per-pool payout and committee-request state

Design Principles:
- Amounts and counters are plain ints, kept inside fixed-width domains by the
  checked helpers below (overflow raises MathOverflow, never wraps)
- Lists with a protocol capacity use BoundedList and refuse to grow past it
- Entities are referenced across components by stable string identifiers
- Every entity carries a ``version`` bumped on each committed mutation
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Generic, Iterable, Iterator, List, Optional, TypeVar

from .errors import (
    CapacityExceeded,
    InvalidIncidentType,
    InvalidPoolType,
    MathOverflow,
)


# =============================================================================
# Protocol Constants
# =============================================================================

MIN_COMMITTEE_SIZE = 3
MAX_COMMITTEE_SIZE = 10
MAX_VOTES = 10
MAX_DESCRIPTION_LEN = 100  # bytes, UTF-8
MAX_REASON_LEN = 200  # bytes, UTF-8
MAX_REGISTRY_SIZE = 100
MAX_PENDING_SELECTIONS = 50
MAX_DISTRIBUTION_QUEUE = 100

MIN_STAKE = 100_000_000
INITIAL_REPUTATION = 5000
MAX_REPUTATION = 10000
REPUTATION_REWARD = 100
REPUTATION_PENALTY = 200
SLASH_PERCENT_PER_SEAT = 2

SEED_LEN = 32

# Integer domains
U8_MAX = 2**8 - 1
U32_MAX = 2**32 - 1
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1


# =============================================================================
# Checked Arithmetic
# =============================================================================

def checked_add(a: int, b: int, limit: int = U64_MAX) -> int:
    """Add within ``[0, limit]`` or raise MathOverflow."""
    result = a + b
    if result < 0 or result > limit:
        raise MathOverflow(f"{a} + {b} leaves [0, {limit}]")
    return result


def checked_sub(a: int, b: int) -> int:
    """Subtract without going below zero or raise MathOverflow."""
    result = a - b
    if result < 0:
        raise MathOverflow(f"{a} - {b} underflows")
    return result


def checked_mul(a: int, b: int, limit: int = U128_MAX) -> int:
    result = a * b
    if result < 0 or result > limit:
        raise MathOverflow(f"{a} * {b} leaves [0, {limit}]")
    return result


def checked_div(a: int, b: int) -> int:
    if b == 0:
        raise MathOverflow(f"{a} / 0")
    return a // b


def saturating_sub(a: int, b: int) -> int:
    return a - b if a > b else 0


# =============================================================================
# Bounded Container
# =============================================================================

T = TypeVar("T")


class BoundedList(Generic[T]):
    """
    List with a fixed capacity.

    Appending past capacity raises CapacityExceeded instead of truncating.
    """

    def __init__(self, capacity: int, items: Optional[Iterable[T]] = None):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._items: List[T] = []
        for item in items or ():
            self.append(item)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def is_full(self) -> bool:
        return len(self._items) >= self._capacity

    def append(self, item: T) -> None:
        if self.is_full:
            raise CapacityExceeded(
                f"capacity {self._capacity} reached",
                capacity=self._capacity,
            )
        self._items.append(item)

    def remove(self, item: T) -> bool:
        """Remove first occurrence; returns False when absent."""
        try:
            self._items.remove(item)
        except ValueError:
            return False
        return True

    def clear(self) -> None:
        self._items.clear()

    def replace(self, items: Iterable[T]) -> None:
        """Swap contents atomically; capacity is checked before clearing."""
        new_items = list(items)
        if len(new_items) > self._capacity:
            raise CapacityExceeded(
                f"{len(new_items)} items exceed capacity {self._capacity}",
                capacity=self._capacity,
            )
        self._items = new_items

    def to_list(self) -> List[T]:
        return list(self._items)

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, BoundedList):
            return self._items == other._items
        if isinstance(other, list):
            return self._items == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"BoundedList({self._items!r}, capacity={self._capacity})"


def utf8_len(text: str) -> int:
    return len(text.encode("utf-8"))


# =============================================================================
# Enumerations
# =============================================================================

class PoolType(Enum):
    """Insurance category a pool covers."""
    MEDICAL = auto()
    WEATHER = auto()
    CROP = auto()
    GENERAL = auto()

    @classmethod
    def parse(cls, value: Any) -> "PoolType":
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise InvalidPoolType(f"Unknown pool type: {value!r}") from None


class IncidentType(Enum):
    """Kind of incident a claim reports."""
    MEDICAL_EMERGENCY = auto()
    NATURAL_DISASTER = auto()
    ACCIDENT = auto()
    CROP_FAILURE = auto()
    PROPERTY_DAMAGE = auto()
    OTHER = auto()

    @classmethod
    def parse(cls, value: Any) -> "IncidentType":
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        # Accept CamelCase ("CropFailure") as well as enum names
        normalized = "".join(
            "_" + ch if ch.isupper() and i > 0 and key[i - 1].islower() else ch
            for i, ch in enumerate(key)
        ).upper()
        try:
            return cls[normalized]
        except KeyError:
            raise InvalidIncidentType(f"Unknown incident type: {value!r}") from None


class ClaimStatus(Enum):
    """
    Claim lifecycle status.

    PENDING -> UNDER_VALIDATION -> APPROVED | REJECTED; APPROVED -> DISTRIBUTED.
    REJECTED and DISTRIBUTED are terminal. Queue membership of an approved
    claim is tracked on the claim (``queued``) and the pool's round.
    """
    PENDING = auto()
    UNDER_VALIDATION = auto()
    APPROVED = auto()
    REJECTED = auto()
    DISTRIBUTED = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (ClaimStatus.REJECTED, ClaimStatus.DISTRIBUTED)


# =============================================================================
# Identifiers
# =============================================================================

def derive_claim_id(claimant: str, pool_id: str, created_at: int, sequence: int) -> str:
    """Deterministic claim id: H("claim" || claimant || pool || created_at || sequence)."""
    digest = hashlib.sha256(
        b"claim"
        + claimant.encode("utf-8")
        + pool_id.encode("utf-8")
        + struct.pack("<qI", created_at, sequence)
    ).hexdigest()
    return digest[:32]


# =============================================================================
# Entities
# =============================================================================

@dataclass
class Pool:
    """
    A risk category with pooled liquidity.

    Invariants:
    - max_coverage > premium_amount
    - MIN_COMMITTEE_SIZE <= min_committee_size <= MAX_COMMITTEE_SIZE
    """
    pool_id: str
    pool_type: PoolType
    authority: str
    premium_amount: int
    max_coverage: int
    claim_period: int  # seconds
    min_committee_size: int
    total_liquidity: int = 0
    total_members: int = 0
    active_claim_count: int = 0
    created_at: int = 0
    version: int = 0

    @property
    def vault(self) -> str:
        """Account name of the pool's premium vault."""
        return f"vault:{self.pool_id}"

    @property
    def stake_vault(self) -> str:
        """Account name holding validator stakes for this pool."""
        return f"stake:{self.pool_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "pool_type": self.pool_type.name,
            "authority": self.authority,
            "premium_amount": self.premium_amount,
            "max_coverage": self.max_coverage,
            "claim_period": self.claim_period,
            "min_committee_size": self.min_committee_size,
            "total_liquidity": self.total_liquidity,
            "total_members": self.total_members,
            "active_claim_count": self.active_claim_count,
            "created_at": self.created_at,
        }


@dataclass
class Coverage:
    """A member's right to claim against a pool."""
    owner: str
    pool_id: str
    coverage_limit: int
    active: bool = True
    joined_at: int = 0
    premiums_paid: int = 0
    last_payment: int = 0
    claims_made: int = 0
    version: int = 0

    @property
    def key(self) -> str:
        return coverage_key(self.owner, self.pool_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "pool_id": self.pool_id,
            "coverage_limit": self.coverage_limit,
            "active": self.active,
            "joined_at": self.joined_at,
            "premiums_paid": self.premiums_paid,
            "last_payment": self.last_payment,
            "claims_made": self.claims_made,
        }


def coverage_key(owner: str, pool_id: str) -> str:
    return f"{owner}@{pool_id}"


@dataclass
class Validator:
    """
    A staked adjudicator registered with one pool.

    Invariants:
    - 0 <= reputation <= MAX_REPUTATION
    - successful_validations <= validations_completed
    """
    address: str
    pool_id: str
    stake_amount: int
    reputation: int = INITIAL_REPUTATION
    validations_completed: int = 0
    successful_validations: int = 0
    last_validation_time: int = 0
    registered_at: int = 0
    version: int = 0

    def __post_init__(self) -> None:
        if self.stake_amount < 0:
            raise ValueError("stake_amount must be non-negative")
        if not 0 <= self.reputation <= MAX_REPUTATION:
            raise ValueError(f"reputation must be in [0, {MAX_REPUTATION}]")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "pool_id": self.pool_id,
            "stake_amount": self.stake_amount,
            "reputation": self.reputation,
            "validations_completed": self.validations_completed,
            "successful_validations": self.successful_validations,
            "last_validation_time": self.last_validation_time,
        }


@dataclass(frozen=True)
class Vote:
    """One committee member's ballot on a claim."""
    validator: str
    approved: bool
    reason: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validator": self.validator,
            "approved": self.approved,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }


@dataclass
class ClaimInput:
    """Claimant-supplied fields for a new claim."""
    claimant: str
    pool_id: str
    amount_requested: int
    incident_type: IncidentType
    incident_time: int
    description: str = ""


@dataclass
class Claim:
    """The unit of adjudication."""
    claim_id: str
    claimant: str
    pool_id: str
    amount_requested: int
    incident_type: IncidentType
    incident_time: int
    description: str
    created_at: int
    assigned_committee: BoundedList[str] = field(
        default_factory=lambda: BoundedList(MAX_COMMITTEE_SIZE)
    )
    votes: BoundedList[Vote] = field(default_factory=lambda: BoundedList(MAX_VOTES))
    approvals: int = 0
    rejections: int = 0
    status: ClaimStatus = ClaimStatus.PENDING
    random_seed_used: Optional[bytes] = None
    resolved_at: Optional[int] = None
    payout_amount: Optional[int] = None
    queued: bool = False
    version: int = 0

    @property
    def vote_count(self) -> int:
        return self.approvals + self.rejections

    @property
    def committee_size(self) -> int:
        return len(self.assigned_committee)

    def has_voted(self, validator: str) -> bool:
        return any(v.validator == validator for v in self.votes)

    def vote_of(self, validator: str) -> Optional[Vote]:
        for vote in self.votes:
            if vote.validator == validator:
                return vote
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "claimant": self.claimant,
            "pool_id": self.pool_id,
            "amount_requested": self.amount_requested,
            "incident_type": self.incident_type.name,
            "incident_time": self.incident_time,
            "description": self.description,
            "created_at": self.created_at,
            "assigned_committee": self.assigned_committee.to_list(),
            "votes": [v.to_dict() for v in self.votes],
            "approvals": self.approvals,
            "rejections": self.rejections,
            "status": self.status.name,
            "random_seed_used": self.random_seed_used.hex() if self.random_seed_used else None,
            "resolved_at": self.resolved_at,
            "payout_amount": self.payout_amount,
            "queued": self.queued,
        }


@dataclass
class DistributionRound:
    """
    Per-pool payout round state.

    Created once per pool and advanced by every run; never destroyed.
    References claims by id only.
    """
    pool_id: str
    pending_claims: BoundedList[str] = field(
        default_factory=lambda: BoundedList(MAX_DISTRIBUTION_QUEUE)
    )
    total_requested: int = 0
    available_funds: int = 0
    selected_claims: List[str] = field(default_factory=list)
    is_oversubscribed: bool = False
    round_number: int = 0
    seed_used: Optional[bytes] = None
    last_distribution: int = 0
    version: int = 0

    @property
    def total_approved_claims(self) -> int:
        return len(self.pending_claims)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "pending_claims": self.pending_claims.to_list(),
            "total_requested": self.total_requested,
            "available_funds": self.available_funds,
            "selected_claims": list(self.selected_claims),
            "is_oversubscribed": self.is_oversubscribed,
            "round_number": self.round_number,
            "seed_used": self.seed_used.hex() if self.seed_used else None,
            "last_distribution": self.last_distribution,
        }


@dataclass
class SelectionState:
    """Per-pool bookkeeping for two-phase committee selection."""
    pool_id: str
    pending_claims: BoundedList[str] = field(
        default_factory=lambda: BoundedList(MAX_PENDING_SELECTIONS)
    )
    last_randomness: Optional[bytes] = None
    last_timestamp: int = 0
    requests_completed: int = 0
    version: int = 0
