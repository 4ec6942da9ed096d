"""
PoolGuard Hooks - Observer pattern for claims-core events.

Every committed operation produces one immutable record carrying a timestamp
and the ids of the entities it touched, so indexers and dashboards can follow
the pipeline without reading the store.

Design Principles:
- Hooks are optional (NullHooks by default)
- Hook exceptions are caught and logged, never propagate
- Events are emitted only after the state change has been committed
- Hooks receive frozen event data
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, ClassVar, Dict, List, Optional, Protocol, Tuple, Type

logger = logging.getLogger(__name__)


# =============================================================================
# Event Dataclasses
# =============================================================================

@dataclass(frozen=True)
class ProtocolEvent:
    """Base record: every event carries the time it was committed."""

    kind: ClassVar[str] = "event"

    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind
        return data


@dataclass(frozen=True)
class PoolCreatedEvent(ProtocolEvent):
    kind: ClassVar[str] = "pool_created"

    pool_id: str
    pool_type: str
    authority: str


@dataclass(frozen=True)
class CoverageJoinedEvent(ProtocolEvent):
    kind: ClassVar[str] = "coverage_joined"

    pool_id: str
    owner: str
    coverage_limit: int
    premium: int


@dataclass(frozen=True)
class PremiumPaidEvent(ProtocolEvent):
    kind: ClassVar[str] = "premium_paid"

    pool_id: str
    owner: str
    amount: int


@dataclass(frozen=True)
class ValidatorStakedEvent(ProtocolEvent):
    """Emitted when a validator registers with a pool."""
    kind: ClassVar[str] = "validator_staked"

    pool_id: str
    validator: str
    stake_amount: int


@dataclass(frozen=True)
class ClaimSubmittedEvent(ProtocolEvent):
    kind: ClassVar[str] = "claim_submitted"

    claim_id: str
    pool_id: str
    claimant: str
    amount_requested: int


@dataclass(frozen=True)
class CommitteeAssignedEvent(ProtocolEvent):
    """Emitted when a claim moves to UNDER_VALIDATION."""
    kind: ClassVar[str] = "committee_assigned"

    claim_id: str
    pool_id: str
    committee: Tuple[str, ...]
    seed: bytes


@dataclass(frozen=True)
class VoteCastEvent(ProtocolEvent):
    kind: ClassVar[str] = "vote_cast"

    claim_id: str
    validator: str
    approved: bool
    votes_recorded: int
    committee_size: int


@dataclass(frozen=True)
class ClaimFinalizedEvent(ProtocolEvent):
    kind: ClassVar[str] = "claim_finalized"

    claim_id: str
    pool_id: str
    approved: bool
    approvals: int
    rejections: int


@dataclass(frozen=True)
class ReputationChangedEvent(ProtocolEvent):
    """Emitted per committee member when a claim is finalized."""
    kind: ClassVar[str] = "reputation_changed"

    validator: str
    pool_id: str
    aligned: bool
    reputation_before: int
    reputation_after: int
    stake_slashed: int


@dataclass(frozen=True)
class RoundComputedEvent(ProtocolEvent):
    kind: ClassVar[str] = "round_computed"

    pool_id: str
    round_number: int
    total_claims: int
    selected_claims: int
    is_oversubscribed: bool
    available_funds: int
    total_requested: int


@dataclass(frozen=True)
class ClaimPaidOutEvent(ProtocolEvent):
    kind: ClassVar[str] = "claim_paid_out"

    claim_id: str
    pool_id: str
    claimant: str
    amount: int


# =============================================================================
# Hooks Protocol
# =============================================================================

class ProtocolHooks(Protocol):
    """
    Protocol for claims-core event hooks.

    Implementations must be exception-safe. The coordinator catches and logs
    any exception so a failing observer cannot undo a committed operation.
    Hooks are called synchronously, after the entity locks are released.
    """

    def on_event(self, event: ProtocolEvent) -> None:
        ...


# =============================================================================
# Implementations
# =============================================================================

class NullHooks:
    """No-op hooks implementation."""

    def on_event(self, event: ProtocolEvent) -> None:
        pass


class LoggingHooks:
    """Hooks that log all events for debugging."""

    def __init__(self, log_level: int = logging.INFO):
        self._level = log_level

    def on_event(self, event: ProtocolEvent) -> None:
        fields = ", ".join(
            f"{k}={v.hex()[:16] if isinstance(v, bytes) else v}"
            for k, v in event.to_dict().items()
            if k not in ("kind", "timestamp")
        )
        logger.log(self._level, f"[HOOK] {event.kind} @{event.timestamp}: {fields}")


class EventLog:
    """Thread-safe in-memory recorder; used by tests and the demo."""

    def __init__(self) -> None:
        self._events: List[ProtocolEvent] = []
        self._lock = threading.Lock()

    def on_event(self, event: ProtocolEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[ProtocolEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: Type[ProtocolEvent]) -> List[ProtocolEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def last(self, event_type: Optional[Type[ProtocolEvent]] = None) -> Optional[ProtocolEvent]:
        matching = self.of_type(event_type) if event_type else self.events
        return matching[-1] if matching else None

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class CompositeHooks:
    """Fans one event out to several hooks, isolating their failures."""

    def __init__(self, *hooks: ProtocolHooks):
        self._hooks = list(hooks)

    def add(self, hook: ProtocolHooks) -> None:
        self._hooks.append(hook)

    def on_event(self, event: ProtocolEvent) -> None:
        for hook in self._hooks:
            dispatch(hook, event)


def dispatch(hooks: Optional[ProtocolHooks], event: ProtocolEvent) -> None:
    """Deliver ``event`` to ``hooks``; exceptions are logged, not raised."""
    if hooks is None:
        return
    try:
        hooks.on_event(event)
    except Exception as e:
        logger.warning(f"Hook on_event failed for {event.kind}: {e}", exc_info=True)
