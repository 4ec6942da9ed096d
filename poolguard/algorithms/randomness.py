"""
Randomness sources for committee selection and oversubscribed rounds.

Contract every source satisfies:
- request(context_id) -> PendingRequest; fulfill(request) -> 32-byte seed
- A request is fulfilled at most once. Fulfilling twice, or fulfilling a
  handle that was never issued, raises RandomnessReplay
- derive(seed_material) -> 32 bytes is a synchronous deterministic fallback

Implementations:
- HashDerivedRandomness: SHA-256 over domain-separated material
- SystemRandomness: OS entropy via ``secrets``
- FixedRandomness: queued seeds for tests and reproducible runs
"""

from __future__ import annotations

import hashlib
import secrets
import struct
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, Optional, Protocol

from ..errors import InvalidSeed, MissingRandomness, RandomnessReplay
from ..models import SEED_LEN

# Domain separation constants
_COMMITTEE_SEED_V1 = b"POOLGUARD_COMMITTEE_V1"
_REQUEST_SEED_V1 = b"POOLGUARD_REQUEST_V1"
_DERIVE_V1 = b"POOLGUARD_DERIVE_V1"


def validate_seed(seed: Optional[bytes]) -> bytes:
    """Return ``seed`` if it is exactly 32 bytes, else raise."""
    if seed is None:
        raise MissingRandomness("A 32-byte seed is required")
    if not isinstance(seed, (bytes, bytearray)) or len(seed) != SEED_LEN:
        length = len(seed) if isinstance(seed, (bytes, bytearray)) else None
        raise InvalidSeed(f"Seed must be {SEED_LEN} bytes", length=length)
    return bytes(seed)


def committee_seed_material(claim_id: str, pool_id: str, timestamp: int, slot: int) -> bytes:
    """Canonical encoding of H(claim id, pool id, timestamp, slot) inputs."""
    return (
        _COMMITTEE_SEED_V1
        + claim_id.encode("utf-8")
        + pool_id.encode("utf-8")
        + struct.pack("<qQ", timestamp, slot)
    )


@dataclass(frozen=True)
class PendingRequest:
    """Handle returned by ``request``; redeem it exactly once with ``fulfill``."""
    request_id: int
    context_id: str


class RandomnessSource(Protocol):
    def request(self, context_id: str) -> PendingRequest:
        ...

    def fulfill(self, request: PendingRequest) -> bytes:
        ...

    def derive(self, seed_material: bytes) -> bytes:
        ...


class _TwoPhaseSource:
    """Handle bookkeeping shared by every source."""

    def __init__(self) -> None:
        self._pending: Dict[int, PendingRequest] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def request(self, context_id: str) -> PendingRequest:
        with self._lock:
            request = PendingRequest(request_id=self._next_id, context_id=context_id)
            self._next_id += 1
            self._pending[request.request_id] = request
            return request

    def fulfill(self, request: PendingRequest) -> bytes:
        with self._lock:
            issued = self._pending.get(request.request_id)
            if issued is None or issued != request:
                raise RandomnessReplay(
                    f"Request {request.request_id} is unknown or already fulfilled",
                    request_id=request.request_id,
                    context_id=request.context_id,
                )
            seed = validate_seed(self._produce(request))
            del self._pending[request.request_id]
            return seed

    def outstanding(self) -> int:
        with self._lock:
            return len(self._pending)

    def derive(self, seed_material: bytes) -> bytes:
        return hashlib.sha256(_DERIVE_V1 + seed_material).digest()

    def _produce(self, request: PendingRequest) -> bytes:
        raise NotImplementedError


class HashDerivedRandomness(_TwoPhaseSource):
    """
    Deterministic pseudo-randomness.

    Predictable to anyone who knows the inputs; suitable as a fallback and for
    simulation, not as a production VRF.
    """

    def __init__(self, domain: bytes = b"") -> None:
        super().__init__()
        self._domain = domain

    def _produce(self, request: PendingRequest) -> bytes:
        return hashlib.sha256(
            _REQUEST_SEED_V1
            + self._domain
            + request.context_id.encode("utf-8")
            + struct.pack("<Q", request.request_id)
        ).digest()


class SystemRandomness(_TwoPhaseSource):
    """Seeds drawn from the operating system CSPRNG."""

    def _produce(self, request: PendingRequest) -> bytes:
        return secrets.token_bytes(SEED_LEN)


class FixedRandomness(_TwoPhaseSource):
    """
    Returns preloaded seeds in order, then repeats ``default`` if given.

    ``derive`` also consumes from the queue so synchronous paths are
    reproducible in tests.
    """

    def __init__(self, seeds: Iterable[bytes] = (), default: Optional[bytes] = None) -> None:
        super().__init__()
        self._seeds: Deque[bytes] = deque(validate_seed(s) for s in seeds)
        self._default = validate_seed(default) if default is not None else None

    def push(self, seed: bytes) -> None:
        self._seeds.append(validate_seed(seed))

    def _next(self) -> bytes:
        if self._seeds:
            return self._seeds.popleft()
        if self._default is not None:
            return self._default
        raise MissingRandomness("FixedRandomness has no seeds left")

    def _produce(self, request: PendingRequest) -> bytes:
        return self._next()

    def derive(self, seed_material: bytes) -> bytes:
        return self._next()
