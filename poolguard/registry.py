"""
ValidatorRegistry: the authoritative set of staked validators per pool.

Registration order is preserved and is the candidate ordering handed to
committee selection, so the same seed always yields the same committee.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import ProtocolConfig
from .errors import AlreadyRegistered, CapacityExceeded, InsufficientStake
from .models import Validator
from .store import Store

logger = logging.getLogger(__name__)


class ValidatorRegistry:
    """
    Staked validators, keyed by (pool, address).

    Registration is split in two so the caller can move the stake in between:
    ``check_registration`` validates without side effects, ``register``
    commits. Callers hold the pool lock across both.
    """

    def __init__(self, store: Store, config: Optional[ProtocolConfig] = None):
        self._store = store
        self._config = config or ProtocolConfig()

    def check_registration(self, pool_id: str, address: str, stake_amount: int) -> None:
        """
        Raises:
            UnknownEntity: pool does not exist
            InsufficientStake: stake below the minimum
            AlreadyRegistered: address already staked in this pool
            CapacityExceeded: registry is full
        """
        self._store.get_pool(pool_id)
        if stake_amount < self._config.min_stake:
            raise InsufficientStake(
                f"Stake {stake_amount} below minimum {self._config.min_stake}",
                stake_amount=stake_amount,
                min_stake=self._config.min_stake,
            )
        if self._store.find_validator(pool_id, address) is not None:
            raise AlreadyRegistered(
                f"Validator {address} already registered in pool {pool_id}",
                pool_id=pool_id,
                address=address,
            )
        if self.size(pool_id) >= self._config.max_registry_size:
            raise CapacityExceeded(
                f"Validator registry for pool {pool_id} is full",
                pool_id=pool_id,
                capacity=self._config.max_registry_size,
            )

    def register(self, pool_id: str, address: str, stake_amount: int, now: int) -> Validator:
        self.check_registration(pool_id, address, stake_amount)
        validator = Validator(
            address=address,
            pool_id=pool_id,
            stake_amount=stake_amount,
            reputation=self._config.initial_reputation,
            registered_at=now,
        )
        self._store.add_validator(validator)
        logger.info(
            f"Validator {address} staked {stake_amount} in pool {pool_id} "
            f"({self.size(pool_id)}/{self._config.max_registry_size})"
        )
        return validator

    def get(self, pool_id: str, address: str) -> Validator:
        return self._store.get_validator(pool_id, address)

    def is_registered(self, pool_id: str, address: str) -> bool:
        return self._store.find_validator(pool_id, address) is not None

    def candidates(self, pool_id: str) -> List[str]:
        """Validator addresses in registration order."""
        return self._store.registration_order(pool_id)

    def validators(self, pool_id: str) -> List[Validator]:
        return [self._store.get_validator(pool_id, a) for a in self.candidates(pool_id)]

    def size(self, pool_id: str) -> int:
        return len(self._store.registration_order(pool_id))
