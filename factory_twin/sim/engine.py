from __future__ import annotations

"""
File: factory_twin/sim/engine.py
Purpose: Deterministic tick engine for boxes moving through the cell.
Key responsibilities:
- Spawn boxes from the backlog under the population ceiling.
- Advance the gantry and every live box each tick.
- Enforce spacing on the inbound conveyor and gate the lift on gantry phase.
- Emit lifecycle events (spawn, lift, transfer, sorted, settled, reset).
"""

import random
from typing import Callable

from factory_twin.sim.entities import Lane, SimulationState, Station, Unit

EPSILON = 1e-9


class SimulationEngine:
    """Simulation engine that advances gantry and box state per tick."""
    def __init__(
        self,
        state: SimulationState,
        speed: float,
        min_spacing: float,
        event_sink: Callable[[dict], None] | None = None,
        seed: int = 0,
    ) -> None:
        """Initialize the engine with motion parameters."""
        self.state = state
        self.speed = max(0.0, speed)
        self.min_spacing = max(0.0, min_spacing)
        self.event_sink = event_sink or (lambda _event: None)
        self.rng = random.Random(seed)

    @property
    def population(self) -> int:
        return len(self.state.units)

    def step(self) -> bool:
        """Advance the simulation by one tick. Returns False while paused."""
        delta = self.state.clock.advance()
        if delta <= 0:
            return False
        self._maybe_spawn()
        self.state.transporter.advance(delta)
        self._advance_units(delta)
        return True

    def reset(self) -> None:
        """Destroy every live box and restart the spawn backlog and timer."""
        removed = len(self.state.units)
        self.state.units.clear()
        self.state.spawn_queue.reset(self.state.clock.state())
        self._emit("reset", None, removed=removed)

    def inbound_entry_clear(self) -> bool:
        """Return True when no approaching box sits within spacing of the entry."""
        layout = self.state.layout
        for unit in self.state.units:
            if unit.station is Station.APPROACHING and unit.lane is Lane.INBOUND:
                if unit.x - layout.inbound_entry_x < self.min_spacing - EPSILON:
                    return False
        return True

    def snapshot(self) -> dict:
        """Return a serializable snapshot of current sim state."""
        clock = self.state.clock
        queue = self.state.spawn_queue
        return {
            "tick": clock.tick,
            "elapsed": round(clock.elapsed, 6),
            "paused": clock.paused,
            "population": self.population,
            "ceiling": queue.ceiling,
            "queue_remaining": len(queue),
            "transporter": self.state.transporter.snapshot(),
            "units": [
                {
                    "id": u.id,
                    "identity": u.identity,
                    "station": u.station.value,
                    "lane": u.lane.value,
                    "x": round(u.x, 3),
                    "z": round(u.z, 3),
                }
                for u in sorted(self.state.units, key=lambda item: item.id)
            ],
        }

    def _maybe_spawn(self) -> None:
        if not self.inbound_entry_clear():
            return
        descriptor = self.state.spawn_queue.try_create(self.state.clock.state(), self.population)
        if descriptor is None:
            return
        layout = self.state.layout
        unit = Unit(
            id=self.state.next_unit_id,
            identity=descriptor.identity,
            x=layout.inbound_entry_x,
            z=layout.inbound_z,
            spawned_at=self.state.clock.elapsed,
        )
        self.state.next_unit_id += 1
        self.state.units.append(unit)
        self._emit("spawn", unit)

    def _advance_units(self, delta: float) -> None:
        """Advance every box once; approaching boxes go leader first."""
        approaching = sorted(
            (u for u in self.state.units if u.station is Station.APPROACHING),
            key=lambda u: (u.lane.value, -u.x, u.id),
        )
        leader: Unit | None = None
        for unit in approaching:
            if leader is not None and leader.lane is not unit.lane:
                leader = None
            self._advance_approaching(unit, delta, leader)
            leader = unit if unit.station is Station.APPROACHING else None

        # One transition per box per tick.
        handled = {unit.id for unit in approaching}
        for unit in self.state.units:
            if unit.id in handled:
                continue
            if unit.station is Station.LIFTING:
                self._advance_lifting(unit)
            elif unit.station is Station.TRANSFERRING:
                self._advance_transferring(unit, delta)
            elif unit.station is Station.SORTING:
                self._place_on_pallet(unit)

    def _advance_approaching(self, unit: Unit, delta: float, leader: Unit | None) -> None:
        layout = self.state.layout
        target = min(unit.x + self.speed * delta, layout.handoff_x)
        if leader is not None:
            target = min(target, leader.x - self.min_spacing)
        if target > unit.x:
            unit.x = target
        if unit.x >= layout.handoff_x - EPSILON:
            transporter = self.state.transporter
            unit.station = Station.LIFTING
            unit.lane = Lane.GANTRY
            unit.x, unit.z = transporter.x, transporter.z
            self._emit("lift", unit)

    def _advance_lifting(self, unit: Unit) -> None:
        layout = self.state.layout
        transporter = self.state.transporter
        if transporter.phase >= layout.handoff_threshold:
            unit.station = Station.TRANSFERRING
            unit.lane = Lane.OUTBOUND
            unit.x, unit.z = layout.outbound_entry_x, layout.outbound_z
            self._emit("transfer", unit)
            return
        unit.x, unit.z = transporter.x, transporter.z

    def _advance_transferring(self, unit: Unit, delta: float) -> None:
        layout = self.state.layout
        unit.x = min(unit.x + self.speed * delta, layout.sort_x)
        if unit.x >= layout.sort_x - EPSILON:
            unit.x = layout.sort_x
            unit.station = Station.SORTING
            self._emit("sorted", unit)

    def _place_on_pallet(self, unit: Unit) -> None:
        layout = self.state.layout
        unit.x = layout.pallet_x + (self.rng.random() - 0.5) * layout.pallet_footprint
        unit.z = layout.pallet_z + (self.rng.random() - 0.5) * layout.pallet_footprint
        unit.lane = Lane.PALLET
        unit.station = Station.SETTLED
        self._emit("settled", unit)

    def _emit(self, event: str, unit: Unit | None, **extra: object) -> None:
        clock = self.state.clock
        payload: dict = {"event": event, "tick": clock.tick, "elapsed": round(clock.elapsed, 6)}
        if unit is not None:
            payload.update(
                {
                    "unit_id": unit.id,
                    "identity": unit.identity,
                    "station": unit.station.value,
                    "x": round(unit.x, 3),
                    "z": round(unit.z, 3),
                }
            )
        payload.update(extra)
        self.event_sink(payload)
