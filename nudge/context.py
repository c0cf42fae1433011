"""
Explicit engine context passed through constructors.

Holds the validated configuration, the persistent store, the clock and the
seedable random source. Nothing in the engine reaches for module-level state;
tests build a context with a fixed clock and seed.
"""

import random
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from nudge.models.domain.config_domain import EngineConfig
from nudge.services.store.base import PersistentStore


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class EngineContext:
    config: EngineConfig
    store: PersistentStore
    clock: Callable[[], datetime] = utc_now
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def create(
        cls,
        config: EngineConfig,
        store: PersistentStore,
        clock: Callable[[], datetime] | None = None,
        seed: int | None = None,
    ) -> "EngineContext":
        """Build a context; a missing seed leaves the random source wall-clock seeded."""
        return cls(
            config=config.validate_config(),
            store=store,
            clock=clock or utc_now,
            rng=random.Random(seed),
        )

    def now(self) -> datetime:
        return self.clock()

    def new_id(self, prefix: str) -> str:
        """Identifier drawn from the context rng so seeded runs are reproducible."""
        return f"{prefix}_{uuid.UUID(int=self.rng.getrandbits(128), version=4).hex[:16]}"
