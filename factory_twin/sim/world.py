from __future__ import annotations

"""
File: factory_twin/sim/world.py
Purpose: Deterministic construction of a simulation instance.
Key responsibilities:
- Resolve a profile (ceiling, spawn interval, backlog size).
- Pre-seed the spawn backlog from the box palette with a seeded RNG.
- Wire clock, gantry and backlog into a SimulationState.
"""

from typing import Callable, Sequence

from factory_twin.settings import BOX_COLORS, PROFILE_MAP, settings
from factory_twin.sim.clock import SimulationClock
from factory_twin.sim.engine import SimulationEngine
from factory_twin.sim.entities import Layout, SimulationState
from factory_twin.sim.spawn import SpawnQueue, seeded_identities
from factory_twin.sim.transporter import Transporter


def build_state(
    seed: int,
    profile: str,
    dt: float,
    gantry_rate: float,
    gantry_max_step: float,
    layout: Layout | None = None,
    palette: Sequence[str] = BOX_COLORS,
) -> SimulationState:
    """Build a fresh simulation state for the given profile."""
    if profile not in PROFILE_MAP:
        raise ValueError(f"invalid profile: {profile}")
    cfg = PROFILE_MAP[profile]
    layout = layout or Layout()

    identities = seeded_identities(palette, int(cfg["queue_size"]), seed)
    spawn_queue = SpawnQueue(
        identities,
        ceiling=int(cfg["ceiling"]),
        min_interval=float(cfg["spawn_interval_s"]),
    )
    transporter = Transporter(
        rate=gantry_rate,
        pickup=layout.gantry_pickup,
        drop=layout.gantry_drop,
        max_step=gantry_max_step,
    )
    return SimulationState(
        clock=SimulationClock(dt),
        transporter=transporter,
        spawn_queue=spawn_queue,
        layout=layout,
    )


def build_engine(event_sink: Callable[[dict], None] | None = None) -> SimulationEngine:
    """Build an engine from the environment settings."""
    state = build_state(
        seed=settings.sim_seed,
        profile=settings.sim_profile,
        dt=settings.sim_tick_dt,
        gantry_rate=settings.gantry_rate,
        gantry_max_step=settings.gantry_max_step,
    )
    return SimulationEngine(
        state=state,
        speed=settings.conveyor_speed,
        min_spacing=settings.min_spacing,
        event_sink=event_sink,
        seed=settings.sim_seed,
    )
