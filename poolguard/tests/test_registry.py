"""
Tests for validator staking and the registry.
"""

import pytest

from poolguard.config import ProtocolConfig
from poolguard.errors import (
    AlreadyRegistered,
    CapacityExceeded,
    InsufficientStake,
    TransferFailed,
    UnknownEntity,
)
from poolguard.hooks import ValidatorStakedEvent
from poolguard.models import INITIAL_REPUTATION, MIN_STAKE, Pool, PoolType
from poolguard.registry import ValidatorRegistry
from poolguard.store import Store

NOW = 1_700_000_000


@pytest.fixture
def pool(harness):
    return harness.pool()


class TestStakeValidator:
    """Staking through the coordinator."""

    def test_stake(self, harness, pool):
        harness.transfer.mint("v0", MIN_STAKE)
        validator = harness.coordinator.stake_validator(pool.pool_id, "v0", MIN_STAKE)

        assert validator.stake_amount == MIN_STAKE
        assert validator.reputation == INITIAL_REPUTATION
        assert validator.validations_completed == 0
        assert harness.transfer.balance("v0") == 0
        assert harness.transfer.balance(pool.stake_vault) == MIN_STAKE
        assert harness.events.last(ValidatorStakedEvent).validator == "v0"

    def test_below_minimum(self, harness, pool):
        harness.transfer.mint("v0", MIN_STAKE)
        with pytest.raises(InsufficientStake):
            harness.coordinator.stake_validator(pool.pool_id, "v0", MIN_STAKE - 1)
        assert harness.transfer.balance("v0") == MIN_STAKE

    def test_twice(self, harness, pool):
        harness.validators(pool.pool_id, 1)
        harness.transfer.mint("v0", MIN_STAKE)
        with pytest.raises(AlreadyRegistered):
            harness.coordinator.stake_validator(pool.pool_id, "v0", MIN_STAKE)
        assert harness.transfer.balance("v0") == MIN_STAKE

    def test_unfunded(self, harness, pool):
        with pytest.raises(TransferFailed):
            harness.coordinator.stake_validator(pool.pool_id, "v0", MIN_STAKE)
        assert harness.coordinator.validators(pool.pool_id) == []

    def test_same_address_in_two_pools(self, harness, pool):
        other = harness.pool(pool_id="pool-2")
        harness.validators(pool.pool_id, 1)
        harness.validators(other.pool_id, 1)
        assert harness.coordinator.get_validator("pool-2", "v0").pool_id == "pool-2"


class TestValidatorRegistry:
    """Registry bookkeeping without fund movement."""

    @pytest.fixture
    def store(self):
        store = Store()
        store.add_pool(Pool(
            pool_id="p",
            pool_type=PoolType.GENERAL,
            authority="authority",
            premium_amount=100,
            max_coverage=1000,
            claim_period=60,
            min_committee_size=3,
        ))
        return store

    def test_registration_order(self, store):
        registry = ValidatorRegistry(store)
        for address in ("c", "a", "b"):
            registry.register("p", address, MIN_STAKE, NOW)

        assert registry.candidates("p") == ["c", "a", "b"]
        assert registry.size("p") == 3
        assert registry.is_registered("p", "a")
        assert not registry.is_registered("p", "z")

    def test_capacity(self, store):
        registry = ValidatorRegistry(store, ProtocolConfig(max_registry_size=2))
        registry.register("p", "a", MIN_STAKE, NOW)
        registry.register("p", "b", MIN_STAKE, NOW)

        with pytest.raises(CapacityExceeded):
            registry.register("p", "c", MIN_STAKE, NOW)
        assert registry.size("p") == 2

    def test_custom_minimum(self, store):
        registry = ValidatorRegistry(store, ProtocolConfig(min_stake=10))
        assert registry.register("p", "a", 10, NOW).stake_amount == 10

    def test_unknown_pool(self, store):
        with pytest.raises(UnknownEntity):
            ValidatorRegistry(store).register("nope", "a", MIN_STAKE, NOW)

    def test_get_unknown(self, store):
        with pytest.raises(UnknownEntity):
            ValidatorRegistry(store).get("p", "ghost")
