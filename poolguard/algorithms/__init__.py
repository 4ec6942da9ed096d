"""
Selection algorithms for PoolGuard.

Algorithms:
- Randomness: two-phase request/fulfill sources with replay protection
- Selection: windowed-modulo sampling without replacement (linear probe)
"""

from .randomness import (
    FixedRandomness,
    HashDerivedRandomness,
    PendingRequest,
    RandomnessSource,
    SystemRandomness,
    committee_seed_material,
    validate_seed,
)

from .selection import (
    CommitteeSelector,
    probe_select,
    seed_window,
    seeded_permutation,
)

__all__ = [
    # Randomness
    "FixedRandomness",
    "HashDerivedRandomness",
    "PendingRequest",
    "RandomnessSource",
    "SystemRandomness",
    "committee_seed_material",
    "validate_seed",
    # Selection
    "CommitteeSelector",
    "probe_select",
    "seed_window",
    "seeded_permutation",
]
