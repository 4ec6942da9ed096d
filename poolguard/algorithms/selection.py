"""
Seeded sampling without replacement.

Selection i reads the i-th 4-byte little-endian window of the seed (windows
start at offset ``4*i mod len(seed)`` and wrap cyclically), reduces it modulo
the candidate count, then probes forward until it hits an index not yet taken.
The result depends only on the seed and the candidate ordering, so callers
must pass a stable ordering (registration order for validators, queue order
for claims).

Complexity: O(k * n) worst case for the probing, O(k) windows.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, TypeVar

from ..errors import InsufficientCandidates, InvalidCommitteeSize, ValidationError
from .randomness import validate_seed

logger = logging.getLogger(__name__)

T = TypeVar("T")

WINDOW_BYTES = 4


def seed_window(seed: bytes, i: int) -> int:
    """Unsigned little-endian value of the i-th 4-byte window of ``seed``."""
    if not seed:
        raise ValueError("seed must be non-empty")
    start = (i * WINDOW_BYTES) % len(seed)
    window = bytes(seed[(start + j) % len(seed)] for j in range(WINDOW_BYTES))
    return int.from_bytes(window, "little")


def probe_select(seed: bytes, n: int, k: int) -> List[int]:
    """
    Pick ``k`` distinct indices from ``range(n)``.

    Raises:
        InsufficientCandidates: if k > n
    """
    if k > n:
        raise InsufficientCandidates(
            f"Need {k} candidates, only {n} available",
            required=k,
            available=n,
        )
    used = [False] * n
    picks: List[int] = []
    for i in range(k):
        index = seed_window(seed, i) % n
        probes = 0
        while used[index]:
            index = (index + 1) % n
            probes += 1
            if probes >= n:
                # Unreachable while k <= n; kept so exhaustion is an error, not a hang
                raise InsufficientCandidates(
                    "Probe exhausted all candidates",
                    required=k,
                    available=n,
                )
        used[index] = True
        picks.append(index)
    return picks


def seeded_permutation(seed: bytes, n: int) -> List[int]:
    """Full visiting order over ``range(n)`` using the same probe scheme."""
    if n == 0:
        return []
    return probe_select(seed, n, n)


class CommitteeSelector:
    """Samples committees from an ordered candidate list."""

    def __init__(self, max_committee_size: int = 10) -> None:
        self.max_committee_size = max_committee_size

    def select(self, seed: bytes, candidates: Sequence[T], k: int) -> List[T]:
        """
        Select ``k`` distinct candidates.

        Args:
            seed: 32-byte random seed
            candidates: ordered, duplicate-free candidate ids
            k: committee size

        Raises:
            InvalidSeed: seed is not 32 bytes
            InvalidCommitteeSize: k outside [1, max_committee_size]
            ValidationError: candidates contain duplicates
            InsufficientCandidates: fewer than k candidates
        """
        seed = validate_seed(seed)
        if not 1 <= k <= self.max_committee_size:
            raise InvalidCommitteeSize(
                f"Committee size {k} outside [1, {self.max_committee_size}]",
                k=k,
            )
        if len(set(candidates)) != len(candidates):
            raise ValidationError("Candidate list contains duplicates")

        picks = probe_select(seed, len(candidates), k)
        committee = [candidates[i] for i in picks]
        logger.debug(f"Selected committee {committee} from {len(candidates)} candidates")
        return committee
