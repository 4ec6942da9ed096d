"""
Tests for randomness sources.

Tests cover:
- Seed validation (missing, wrong length)
- Request/fulfill exactly-once semantics
- Deterministic derivation and domain separation
- FixedRandomness queue behaviour
"""

import pytest

from poolguard.algorithms.randomness import (
    FixedRandomness,
    HashDerivedRandomness,
    PendingRequest,
    SystemRandomness,
    committee_seed_material,
    validate_seed,
)
from poolguard.errors import InvalidSeed, MissingRandomness, RandomnessError, RandomnessReplay


class TestValidateSeed:
    """Tests for validate_seed."""

    def test_accepts_32_bytes(self):
        assert validate_seed(bytearray(32)) == bytes(32)

    def test_none_is_missing(self):
        with pytest.raises(MissingRandomness):
            validate_seed(None)

    @pytest.mark.parametrize("length", [0, 16, 31, 33, 64])
    def test_wrong_length(self, length):
        with pytest.raises(InvalidSeed) as exc_info:
            validate_seed(bytes(length))
        assert exc_info.value.details["length"] == length

    def test_not_bytes(self):
        with pytest.raises(InvalidSeed):
            validate_seed("x" * 32)


class TestTwoPhase:
    """Request handles are redeemable exactly once."""

    def test_request_then_fulfill(self):
        source = HashDerivedRandomness()
        request = source.request("claim-1")

        assert source.outstanding() == 1
        seed = source.fulfill(request)
        assert len(seed) == 32
        assert source.outstanding() == 0

    def test_fulfill_twice_is_replay(self):
        source = HashDerivedRandomness()
        request = source.request("claim-1")
        source.fulfill(request)

        with pytest.raises(RandomnessReplay):
            source.fulfill(request)

    def test_unknown_handle(self):
        source = HashDerivedRandomness()
        with pytest.raises(RandomnessReplay):
            source.fulfill(PendingRequest(request_id=99, context_id="claim-1"))

    def test_tampered_context(self):
        source = HashDerivedRandomness()
        request = source.request("claim-1")
        with pytest.raises(RandomnessReplay):
            source.fulfill(PendingRequest(request_id=request.request_id, context_id="claim-2"))

    def test_request_ids_are_sequential(self):
        source = HashDerivedRandomness()
        ids = [source.request(f"c{i}").request_id for i in range(3)]
        assert ids == [1, 2, 3]

    def test_hash_source_is_reproducible(self):
        a, b = HashDerivedRandomness(), HashDerivedRandomness()
        assert a.fulfill(a.request("claim-1")) == b.fulfill(b.request("claim-1"))

    def test_domain_separates(self):
        a, b = HashDerivedRandomness(b"a"), HashDerivedRandomness(b"b")
        assert a.fulfill(a.request("claim-1")) != b.fulfill(b.request("claim-1"))

    def test_system_randomness(self):
        source = SystemRandomness()
        first = source.fulfill(source.request("claim-1"))
        second = source.fulfill(source.request("claim-1"))
        assert len(first) == 32
        assert first != second


class TestDerive:
    """Tests for the synchronous derive path."""

    def test_deterministic(self):
        material = committee_seed_material("claim", "pool", 1_700_000_000, 1)
        source = HashDerivedRandomness()
        assert source.derive(material) == source.derive(material)
        assert len(source.derive(material)) == 32

    def test_slot_changes_material(self):
        first = committee_seed_material("claim", "pool", 1_700_000_000, 1)
        second = committee_seed_material("claim", "pool", 1_700_000_000, 2)
        assert first != second
        source = HashDerivedRandomness()
        assert source.derive(first) != source.derive(second)


class TestFixedRandomness:
    """Tests for FixedRandomness."""

    def test_returns_seeds_in_order(self):
        seeds = [bytes([1]) * 32, bytes([2]) * 32]
        source = FixedRandomness(seeds)

        assert source.fulfill(source.request("a")) == seeds[0]
        assert source.derive(b"anything") == seeds[1]

    def test_default_repeats(self):
        source = FixedRandomness(default=bytes([9]) * 32)
        assert source.derive(b"x") == source.derive(b"y") == bytes([9]) * 32

    def test_exhausted(self):
        source = FixedRandomness()
        with pytest.raises(MissingRandomness):
            source.derive(b"x")

    def test_exhausted_request_stays_open(self):
        source = FixedRandomness()
        request = source.request("a")
        with pytest.raises(RandomnessError):
            source.fulfill(request)
        source.push(bytes(32))
        assert source.fulfill(request) == bytes(32)

    def test_rejects_bad_seed(self):
        with pytest.raises(InvalidSeed):
            FixedRandomness([b"short"])
