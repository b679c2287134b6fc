from __future__ import annotations

"""
File: factory_twin/sim/clock.py
Purpose: Fixed-step simulation clock with pause/resume gating.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ClockState:
    """Read-only view of the clock handed to tick consumers."""
    tick: int
    elapsed: float
    paused: bool


class SimulationClock:
    """Advance simulated time by a constant delta per tick."""
    def __init__(self, dt: float) -> None:
        if dt <= 0:
            raise ValueError("dt must be positive")
        self.dt = dt
        self.tick = 0
        self.elapsed = 0.0
        self.paused = False

    def advance(self) -> float:
        """Return the delta for this tick, or 0.0 while paused."""
        if self.paused:
            return 0.0
        self.tick += 1
        # Derived from the tick count so long runs do not drift.
        self.elapsed = self.tick * self.dt
        return self.dt

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def toggle(self) -> bool:
        """Flip the paused flag and return the new value."""
        self.paused = not self.paused
        return self.paused

    def state(self) -> ClockState:
        return ClockState(tick=self.tick, elapsed=self.elapsed, paused=self.paused)
