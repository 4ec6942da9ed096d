"""
PoolGuard - decentralized adjudication and fair payout of pooled-fund claims.

PoolGuard provides:
- A claim lifecycle state machine with validate-then-mutate transitions
- Seeded committee selection from a staked validator registry
- Majority vote aggregation with reputation rewards and stake slashing
- Distribution rounds that fall back to seeded fair selection when
  approved demand exceeds pool liquidity
"""

from .errors import (
    ErrorKind,
    PoolGuardError,
    ValidationError,
    StateError,
    AuthorizationError,
    ResourceError,
    MathOverflow,
    RandomnessError,
)
from .models import (
    BoundedList,
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
    Vote,
)
from .config import (
    PoolGuardConfig,
    ProtocolConfig,
    DistributionConfig,
    LoggingConfig,
    MetricsConfig,
    get_config,
    set_config,
    reset_config,
)
from .observability import (
    ProtocolMetrics,
    setup_logging,
    get_logger,
    metrics,
)
from .hooks import (
    ProtocolEvent,
    ProtocolHooks,
    NullHooks,
    LoggingHooks,
    EventLog,
    CompositeHooks,
    PoolCreatedEvent,
    CoverageJoinedEvent,
    PremiumPaidEvent,
    ValidatorStakedEvent,
    ClaimSubmittedEvent,
    CommitteeAssignedEvent,
    VoteCastEvent,
    ClaimFinalizedEvent,
    ReputationChangedEvent,
    RoundComputedEvent,
    ClaimPaidOutEvent,
)
from .store import Store
from .collaborators import (
    Ledger,
    FundTransfer,
    Clock,
    PoolLedger,
    InMemoryFundTransfer,
    SystemClock,
    ManualClock,
    idle_funds,
)
from .algorithms import (
    CommitteeSelector,
    FixedRandomness,
    HashDerivedRandomness,
    PendingRequest,
    RandomnessSource,
    SystemRandomness,
)
from .registry import ValidatorRegistry
from .membership import MembershipBook
from .claims import ClaimStateMachine
from .reputation import ReputationLedger, ReputationChange
from .validation import ValidationAggregator, VoteOutcome, VoteResult
from .distribution import DistributionEngine, RoundResult
from .coordinator import PoolCoordinator

__all__ = [
    # Errors
    "ErrorKind",
    "PoolGuardError",
    "ValidationError",
    "StateError",
    "AuthorizationError",
    "ResourceError",
    "MathOverflow",
    "RandomnessError",
    # Models
    "BoundedList",
    "Claim",
    "ClaimInput",
    "ClaimStatus",
    "Coverage",
    "DistributionRound",
    "IncidentType",
    "Pool",
    "PoolType",
    "SelectionState",
    "Validator",
    "Vote",
    # Config
    "PoolGuardConfig",
    "ProtocolConfig",
    "DistributionConfig",
    "LoggingConfig",
    "MetricsConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Observability
    "ProtocolMetrics",
    "setup_logging",
    "get_logger",
    "metrics",
    # Hooks
    "ProtocolEvent",
    "ProtocolHooks",
    "NullHooks",
    "LoggingHooks",
    "EventLog",
    "CompositeHooks",
    "PoolCreatedEvent",
    "CoverageJoinedEvent",
    "PremiumPaidEvent",
    "ValidatorStakedEvent",
    "ClaimSubmittedEvent",
    "CommitteeAssignedEvent",
    "VoteCastEvent",
    "ClaimFinalizedEvent",
    "ReputationChangedEvent",
    "RoundComputedEvent",
    "ClaimPaidOutEvent",
    # Storage and collaborators
    "Store",
    "Ledger",
    "FundTransfer",
    "Clock",
    "PoolLedger",
    "InMemoryFundTransfer",
    "SystemClock",
    "ManualClock",
    "idle_funds",
    # Algorithms
    "CommitteeSelector",
    "FixedRandomness",
    "HashDerivedRandomness",
    "PendingRequest",
    "RandomnessSource",
    "SystemRandomness",
    # Components
    "ValidatorRegistry",
    "MembershipBook",
    "ClaimStateMachine",
    "ReputationLedger",
    "ReputationChange",
    "ValidationAggregator",
    "VoteOutcome",
    "VoteResult",
    "DistributionEngine",
    "RoundResult",
    "PoolCoordinator",
]

__version__ = "0.1.0"
