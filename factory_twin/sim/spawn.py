from __future__ import annotations

"""
File: factory_twin/sim/spawn.py
Purpose: Bounded FIFO backlog of box identities awaiting creation.
Key responsibilities:
- Rate-limit and cap unit creation (population ceiling, minimum interval).
- Deterministically pre-seed identities from a fixed color palette.
"""

from collections import deque
from dataclasses import dataclass
import random
from typing import Sequence

from factory_twin.sim.clock import ClockState


@dataclass(frozen=True)
class UnitDescriptor:
    """Identity of a box about to be created."""
    identity: str


def seeded_identities(palette: Sequence[str], count: int, seed: int) -> list[str]:
    """Draw count identities from palette using a seeded RNG."""
    if not palette:
        raise ValueError("palette must not be empty")
    rng = random.Random(seed)
    return [rng.choice(palette) for _ in range(count)]


class SpawnQueue:
    """Ordered, finite source of unit descriptors."""
    def __init__(self, identities: Sequence[str], ceiling: int, min_interval: float) -> None:
        if ceiling < 0:
            raise ValueError("ceiling must be >= 0")
        self.initial = list(identities)
        self.ceiling = ceiling
        self.min_interval = max(0.0, min_interval)
        self.pending: deque[str] = deque(self.initial)
        self.last_spawn_at = 0.0

    def __len__(self) -> int:
        return len(self.pending)

    @property
    def exhausted(self) -> bool:
        return not self.pending

    def try_create(self, clock: ClockState, population: int) -> UnitDescriptor | None:
        """Pop the next descriptor when the queue, ceiling and interval all allow it."""
        if not self.pending:
            return None
        if population >= self.ceiling:
            return None
        if clock.elapsed - self.last_spawn_at + 1e-9 < self.min_interval:
            return None
        self.last_spawn_at = clock.elapsed
        return UnitDescriptor(identity=self.pending.popleft())

    def reset(self, clock: ClockState) -> None:
        """Repopulate the backlog and restart spawn timing from clock."""
        self.pending = deque(self.initial)
        self.last_spawn_at = clock.elapsed
