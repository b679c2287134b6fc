from __future__ import annotations

"""
File: factory_twin/sim/transporter.py
Purpose: Gantry oscillator that ping-pongs between the pickup and drop points.
Key responsibilities:
- Advance a normalized phase in [0, 1] and flip direction at the bounds.
- Compute the cart position from the phase and the beam anchor.
- Apply bounded repositioning of the beam anchor.
"""

from dataclasses import dataclass
from math import isfinite


@dataclass
class TransporterState:
    """Serializable gantry state."""
    phase: float = 0.0
    direction: int = 1
    anchor: float = 0.0


class Transporter:
    """Reciprocating transfer mechanism coupling the two conveyor lanes."""
    def __init__(
        self,
        rate: float,
        pickup: tuple[float, float],
        drop: tuple[float, float],
        anchor: float = 0.0,
        max_step: float = 0.5,
    ) -> None:
        """pickup/drop are (x offset from anchor, z) pairs."""
        self.rate = rate
        self.pickup = pickup
        self.drop = drop
        self.max_step = abs(max_step)
        self.state = TransporterState(anchor=anchor)
        self._pending_anchor = anchor
        self.x, self.z = self._position()

    @property
    def phase(self) -> float:
        return self.state.phase

    @property
    def direction(self) -> int:
        return self.state.direction

    @property
    def anchor(self) -> float:
        return self.state.anchor

    def advance(self, delta: float) -> float:
        """Advance the phase by delta and return the new phase."""
        self.state.anchor = self._pending_anchor
        if isfinite(delta) and delta > 0:
            phase = self.state.phase + self.state.direction * delta * self.rate
            if phase >= 1.0:
                phase = 1.0
                self.state.direction = -1
            elif phase <= 0.0:
                phase = 0.0
                self.state.direction = 1
            self.state.phase = phase
        self.state.phase = min(1.0, max(0.0, self.state.phase))
        self.x, self.z = self._position()
        return self.state.phase

    def reposition(self, offset: float) -> float:
        """Queue an anchor shift, clamped to max_step, and return the applied step."""
        if not isfinite(offset):
            return 0.0
        step = max(-self.max_step, min(self.max_step, offset))
        self._pending_anchor += step
        return step

    def _position(self) -> tuple[float, float]:
        t = self.state.phase
        dx = self.pickup[0] + (self.drop[0] - self.pickup[0]) * t
        z = self.pickup[1] + (self.drop[1] - self.pickup[1]) * t
        return self.state.anchor + dx, z

    def snapshot(self) -> dict:
        return {
            "phase": round(self.state.phase, 4),
            "direction": self.state.direction,
            "anchor": round(self.state.anchor, 4),
            "x": round(self.x, 3),
            "z": round(self.z, 3),
        }
