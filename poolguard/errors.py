"""
PoolGuard error taxonomy.

Every failure in the claims core is an expected, typed outcome. Errors are
grouped by kind so callers can branch on the category without knowing every
concrete class:

- INPUT_VALIDATION: zero amounts, oversized strings, unknown enum values
- STATE_VIOLATION: wrong lifecycle state, duplicate vote/assignment/entry
- AUTHORIZATION: caller does not own the coverage or stake it acts on
- RESOURCE_EXHAUSTION: too few validators, too little liquidity, full containers
- ARITHMETIC: overflow/underflow in checked integer math
- RANDOMNESS: seed missing, malformed, or replayed

No operation mutates state before raising one of these.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Top-level error categories."""
    INPUT_VALIDATION = auto()
    STATE_VIOLATION = auto()
    AUTHORIZATION = auto()
    RESOURCE_EXHAUSTION = auto()
    ARITHMETIC = auto()
    RANDOMNESS = auto()


class PoolGuardError(Exception):
    """Base class for all claims-core errors."""

    kind: ErrorKind = ErrorKind.STATE_VIOLATION

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.__class__.__name__)
        self.details: Dict[str, Any] = details

    @property
    def code(self) -> str:
        """Stable machine-readable error code."""
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind.name,
            "message": str(self),
            "details": self.details,
        }


# =============================================================================
# Category bases
# =============================================================================

class ValidationError(PoolGuardError, ValueError):
    """Input rejected before any state was touched."""
    kind = ErrorKind.INPUT_VALIDATION


class StateError(PoolGuardError):
    """Operation attempted from an illegal lifecycle state."""
    kind = ErrorKind.STATE_VIOLATION


class AuthorizationError(PoolGuardError, PermissionError):
    """Caller is not entitled to act on the entity."""
    kind = ErrorKind.AUTHORIZATION


class ResourceError(PoolGuardError):
    """Not enough validators, funds, or container capacity."""
    kind = ErrorKind.RESOURCE_EXHAUSTION


class MathOverflow(PoolGuardError, ArithmeticError):
    """Checked integer arithmetic left its domain."""
    kind = ErrorKind.ARITHMETIC


class RandomnessError(PoolGuardError):
    """Randomness missing, malformed, or already consumed."""
    kind = ErrorKind.RANDOMNESS


# =============================================================================
# Input validation
# =============================================================================

class InvalidAmount(ValidationError):
    pass


class InvalidPremiumAmount(InvalidAmount):
    pass


class InvalidCoverageAmount(InvalidAmount):
    pass


class ExcessiveCoverageAmount(InvalidAmount):
    pass


class ExcessiveClaimAmount(InvalidAmount):
    pass


class InvalidClaimPeriod(ValidationError):
    pass


class InvalidCommitteeSize(ValidationError):
    pass


class InvalidPoolType(ValidationError):
    pass


class InvalidIncidentType(ValidationError):
    pass


class TextTooLong(ValidationError):
    """Description or vote reason exceeds its byte bound."""


class InvalidTimestamp(ValidationError):
    pass


class ClaimPeriodExpired(ValidationError):
    """Incident falls outside the pool's claim window."""


class IncidentPredatesCoverage(ClaimPeriodExpired):
    """Incident happened before the member joined the pool."""


class InsufficientStake(ValidationError):
    pass


# =============================================================================
# State violations
# =============================================================================

class InvalidTransition(StateError):
    """Claim lifecycle transition not permitted from the current status."""

    def __init__(self, operation: str, current: Any, **details: Any) -> None:
        name = getattr(current, "name", str(current))
        super().__init__(f"Cannot {operation} in status {name}", status=name, **details)


class InactiveCoverage(StateError):
    pass


class DuplicateAssignment(StateError):
    pass


class DuplicateVote(StateError):
    pass


class DuplicateEntry(StateError):
    pass


class AlreadyRegistered(StateError):
    pass


class NotSelected(StateError):
    """Claim is not in the current round's selected set."""


class UnknownEntity(StateError):
    """Referenced pool, claim, coverage or validator does not exist."""


# =============================================================================
# Authorization
# =============================================================================

class UnauthorizedClaimant(AuthorizationError):
    pass


class UnauthorizedValidator(AuthorizationError):
    pass


# =============================================================================
# Resource exhaustion
# =============================================================================

class InsufficientCandidates(ResourceError):
    pass


class InsufficientPoolFunds(ResourceError):
    pass


class CapacityExceeded(ResourceError):
    pass


class TransferFailed(ResourceError):
    """External fund transfer refused the movement."""


# =============================================================================
# Randomness
# =============================================================================

class MissingRandomness(RandomnessError):
    pass


class InvalidSeed(RandomnessError):
    """Seed is not exactly 32 bytes."""


class RandomnessReplay(RandomnessError):
    """A randomness request handle was fulfilled twice or never issued."""


def describe(error: Optional[BaseException]) -> str:
    """Short ``code: message`` rendering used in log lines."""
    if error is None:
        return ""
    if isinstance(error, PoolGuardError):
        return f"{error.code}: {error}"
    return f"{type(error).__name__}: {error}"
